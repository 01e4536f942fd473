from __future__ import annotations

from conftest import ether, tcp_frame, udp_frame
from scapy.layers.inet import IP, UDP, IPOption_NOP
from scapy.layers.inet6 import IPv6, IPv6ExtHdrDestOpt, IPv6ExtHdrFragment, IPv6ExtHdrHopByHop
from scapy.layers.l2 import Dot1Q
from scapy.packet import Raw

from pyudpreplay.frames import Datagram, decode_udp


def ipv6_frame(*layers, payload=b"six"):
    packet = ether() / IPv6(src="fd00::1", dst="fd00::2")
    for layer in layers:
        packet = packet / layer
    return packet / UDP(sport=40000, dport=7000) / Raw(payload)


def test_ipv4_udp():
    frame = bytes(udp_frame(5000, b"hello"))
    datagram = decode_udp(frame)
    assert datagram == Datagram(5000, datagram.payload)
    assert datagram.port == 5000
    assert bytes(datagram.payload) == b"hello"


def test_payload_is_view_into_frame():
    frame = bytes(udp_frame(5000, b"hello"))
    datagram = decode_udp(frame)
    assert isinstance(datagram.payload, memoryview)
    assert datagram.payload.obj is frame


def test_empty_payload():
    frame = bytes(ether() / IP(src="10.0.0.1", dst="10.0.0.2") / UDP(sport=1, dport=53))
    datagram = decode_udp(frame)
    assert datagram.port == 53
    assert len(datagram.payload) == 0


def test_ethernet_padding_is_excluded():
    frame = bytes(udp_frame(5000, b"hi")) + b"\x00" * 16
    assert bytes(decode_udp(frame).payload) == b"hi"


def test_ipv4_options_are_skipped():
    packet = (
        ether()
        / IP(src="10.0.0.1", dst="10.0.0.2", options=[IPOption_NOP()] * 4)
        / UDP(sport=1, dport=9999)
        / Raw(b"opts")
    )
    frame = bytes(packet)
    assert frame[14] & 0x0F == 6
    datagram = decode_udp(frame)
    assert datagram.port == 9999
    assert bytes(datagram.payload) == b"opts"


def test_single_vlan_tag():
    packet = ether() / Dot1Q(vlan=10) / IP(src="10.0.0.1", dst="10.0.0.2") / UDP(dport=4000) / Raw(b"v")
    datagram = decode_udp(bytes(packet))
    assert datagram.port == 4000
    assert bytes(datagram.payload) == b"v"


def test_double_vlan_tag():
    packet = (
        ether()
        / Dot1Q(vlan=10)
        / Dot1Q(vlan=20)
        / IP(src="10.0.0.1", dst="10.0.0.2")
        / UDP(dport=4001)
        / Raw(b"qinq")
    )
    datagram = decode_udp(bytes(packet))
    assert datagram.port == 4001
    assert bytes(datagram.payload) == b"qinq"


def test_ipv6_udp():
    datagram = decode_udp(bytes(ipv6_frame()))
    assert datagram.port == 7000
    assert bytes(datagram.payload) == b"six"


def test_ipv6_extension_headers_are_skipped():
    frame = bytes(ipv6_frame(IPv6ExtHdrHopByHop(), IPv6ExtHdrDestOpt()))
    datagram = decode_udp(frame)
    assert datagram.port == 7000
    assert bytes(datagram.payload) == b"six"


def test_ipv6_atomic_fragment_is_decoded():
    frame = bytes(ipv6_frame(IPv6ExtHdrFragment(offset=0, m=0, id=1)))
    assert decode_udp(frame).port == 7000


def test_ipv6_fragment_is_not_decoded():
    frame = bytes(ipv6_frame(IPv6ExtHdrFragment(offset=0, m=1, id=1)))
    assert decode_udp(frame) is None


def test_ipv4_fragments_are_not_decoded():
    first = ether() / IP(src="10.0.0.1", dst="10.0.0.2", flags="MF") / UDP(dport=5000) / Raw(b"a" * 16)
    later = ether() / IP(src="10.0.0.1", dst="10.0.0.2", frag=2, proto=17) / Raw(b"b" * 16)
    assert decode_udp(bytes(first)) is None
    assert decode_udp(bytes(later)) is None


def test_tcp_is_not_udp():
    assert decode_udp(bytes(tcp_frame(80))) is None


def test_non_ip_ethertype():
    frame = bytes(ether() / Raw(b"\x00" * 28))
    arp = frame[:12] + b"\x08\x06" + frame[14:]
    assert decode_udp(arp) is None


def test_short_and_empty_frames():
    assert decode_udp(b"") is None
    assert decode_udp(b"\x00" * 10) is None
    assert decode_udp(bytes(udp_frame(5000, b"x"))[:30]) is None


def test_truncated_frame():
    frame = bytes(udp_frame(5000, b"truncated payload"))
    assert decode_udp(frame[:-3]) is None


def test_wrong_ip_version():
    frame = bytearray(bytes(udp_frame(5000, b"x")))
    frame[14] = 0x65  # version 6 inside an IPv4 ethertype
    assert decode_udp(bytes(frame)) is None


def test_bad_udp_length():
    too_short = ether() / IP(src="10.0.0.1", dst="10.0.0.2") / UDP(dport=5000, len=4) / Raw(b"abcd")
    too_long = ether() / IP(src="10.0.0.1", dst="10.0.0.2") / UDP(dport=5000, len=200) / Raw(b"abcd")
    assert decode_udp(bytes(too_short)) is None
    assert decode_udp(bytes(too_long)) is None


def test_udp_length_bounds_payload():
    # Trailing bytes inside the IP packet but past the UDP length are not payload
    packet = ether() / IP(src="10.0.0.1", dst="10.0.0.2") / UDP(dport=5000, len=10) / Raw(b"abcd")
    assert bytes(decode_udp(bytes(packet)).payload) == b"ab"
