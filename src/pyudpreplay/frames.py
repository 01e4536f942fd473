"""Link-layer frame decoding using construct.

This module locates the UDP datagram inside a captured Ethernet frame. It is
sans-io: it works on the bytes of one frame and never touches a socket or file.
Only the headers needed to find the UDP payload are parsed.
"""

from __future__ import annotations

from typing import NamedTuple

from construct import (
    BitsInteger,
    BitStruct,
    Bytes,
    Construct,
    ConstructError,
    Flag,
    Int8ub,
    Int16ub,
    Int32ub,
    Nibble,
    Padding,
    Struct,
)

# Ethertypes
ETHERTYPE_IPV4 = 0x0800
ETHERTYPE_IPV6 = 0x86DD
VLAN_ETHERTYPES = frozenset({0x8100, 0x88A8, 0x9100})  # 802.1Q, 802.1ad, legacy QinQ
MAX_VLAN_TAGS = 2

# IP protocol numbers
IPPROTO_UDP = 17
IPV6_HOP_BY_HOP = 0
IPV6_ROUTING = 43
IPV6_FRAGMENT = 44
IPV6_DESTINATION_OPTIONS = 60
IPV6_SKIPPABLE_HEADERS = frozenset({IPV6_HOP_BY_HOP, IPV6_ROUTING, IPV6_DESTINATION_OPTIONS})

ETHERNET_HEADER_LEN = 14
VLAN_TAG_LEN = 4
IPV4_MIN_HEADER_LEN = 20
IPV6_HEADER_LEN = 40
IPV6_EXTENSION_MIN_LEN = 8
UDP_HEADER_LEN = 8


EthernetHeader: Construct = Struct(
    "destination" / Bytes(6),
    "source" / Bytes(6),
    "ethertype" / Int16ub,
)

VlanTag: Construct = Struct(
    "tci" / Int16ub,  # PCP(3) + DEI(1) + VID(12)
    "ethertype" / Int16ub,  # Ethertype of whatever follows the tag
)

IPv4Header: Construct = Struct(
    "version_ihl" / BitStruct("version" / Nibble, "ihl" / Nibble),
    "tos" / Int8ub,
    "total_length" / Int16ub,  # Header + payload, excludes link-layer padding
    "identification" / Int16ub,
    "fragment"
    / BitStruct(
        "reserved" / Flag,
        "dont_fragment" / Flag,
        "more_fragments" / Flag,
        "offset" / BitsInteger(13),
    ),
    "ttl" / Int8ub,
    "protocol" / Int8ub,
    "checksum" / Int16ub,
    "source" / Bytes(4),
    "destination" / Bytes(4),
)

IPv6Header: Construct = Struct(
    "version_class_flow"
    / BitStruct(
        "version" / BitsInteger(4),
        "traffic_class" / BitsInteger(8),
        "flow_label" / BitsInteger(20),
    ),
    "payload_length" / Int16ub,  # Everything after this fixed header
    "next_header" / Int8ub,
    "hop_limit" / Int8ub,
    "source" / Bytes(16),
    "destination" / Bytes(16),
)

# Hop-by-hop, routing and destination options share this prefix
IPv6ExtensionHeader: Construct = Struct(
    "next_header" / Int8ub,
    "length" / Int8ub,  # In 8-octet units, not counting the first 8 octets
)

IPv6FragmentHeader: Construct = Struct(
    "next_header" / Int8ub,
    Padding(1),
    "fragment"
    / BitStruct(
        "offset" / BitsInteger(13),
        "reserved" / BitsInteger(2),
        "more_fragments" / Flag,
    ),
    "identification" / Int32ub,
)

UDPHeader: Construct = Struct(
    "source_port" / Int16ub,
    "destination_port" / Int16ub,
    "length" / Int16ub,  # Header + payload
    "checksum" / Int16ub,
)


class Datagram(NamedTuple):
    """A UDP datagram located inside a frame.

    ``payload`` is a view into the frame it was decoded from and must not be
    kept once that frame has been dealt with.
    """

    port: int
    payload: memoryview


def _parse_header(struct: Construct, frame: bytes, offset: int, size: int, end: int):
    """Parse a fixed-size header at offset, or return None if it does not fit."""
    if offset + size > end:
        return None
    return struct.parse(frame[offset : offset + size])


def _locate_ipv4(frame: bytes, offset: int) -> tuple[int, int] | None:
    """Return (udp_offset, ip_end) for an IPv4 packet carrying UDP."""
    header = _parse_header(IPv4Header, frame, offset, IPV4_MIN_HEADER_LEN, len(frame))
    if header is None or header.version_ihl.version != 4:
        return None

    header_len = header.version_ihl.ihl * 4
    ip_end = offset + header.total_length
    if header_len < IPV4_MIN_HEADER_LEN or header.total_length < header_len:
        return None
    if ip_end > len(frame):
        return None

    # Only the first fragment has a transport header, and not its whole payload
    if header.fragment.more_fragments or header.fragment.offset:
        return None

    if header.protocol != IPPROTO_UDP:
        return None
    return offset + header_len, ip_end


def _locate_ipv6(frame: bytes, offset: int) -> tuple[int, int] | None:
    """Return (udp_offset, ip_end) for an IPv6 packet carrying UDP."""
    header = _parse_header(IPv6Header, frame, offset, IPV6_HEADER_LEN, len(frame))
    if header is None or header.version_class_flow.version != 6:
        return None

    ip_end = offset + IPV6_HEADER_LEN + header.payload_length
    if ip_end > len(frame):
        return None

    next_header = header.next_header
    offset += IPV6_HEADER_LEN
    while next_header != IPPROTO_UDP:
        if next_header in IPV6_SKIPPABLE_HEADERS:
            ext = _parse_header(IPv6ExtensionHeader, frame, offset, 2, ip_end)
            if ext is None:
                return None
            ext_len = (ext.length + 1) * IPV6_EXTENSION_MIN_LEN
            if offset + ext_len > ip_end:
                return None
            next_header = ext.next_header
            offset += ext_len
        elif next_header == IPV6_FRAGMENT:
            frag = _parse_header(
                IPv6FragmentHeader, frame, offset, IPV6_EXTENSION_MIN_LEN, ip_end
            )
            if frag is None or frag.fragment.more_fragments or frag.fragment.offset:
                return None
            next_header = frag.next_header
            offset += IPV6_EXTENSION_MIN_LEN
        else:
            return None

    return offset, ip_end


def decode_udp(frame: bytes) -> Datagram | None:
    """Locate the UDP datagram carried by an Ethernet frame.

    Args:
        frame: Raw link-layer frame bytes, starting with an Ethernet II header

    Returns:
        Datagram with the destination port and a zero-copy payload view, or
        None if the frame does not carry a well-formed, unfragmented UDP datagram
    """
    try:
        ethernet = _parse_header(EthernetHeader, frame, 0, ETHERNET_HEADER_LEN, len(frame))
        if ethernet is None:
            return None

        ethertype = ethernet.ethertype
        offset = ETHERNET_HEADER_LEN
        for _ in range(MAX_VLAN_TAGS):
            if ethertype not in VLAN_ETHERTYPES:
                break
            tag = _parse_header(VlanTag, frame, offset, VLAN_TAG_LEN, len(frame))
            if tag is None:
                return None
            ethertype = tag.ethertype
            offset += VLAN_TAG_LEN

        if ethertype == ETHERTYPE_IPV4:
            located = _locate_ipv4(frame, offset)
        elif ethertype == ETHERTYPE_IPV6:
            located = _locate_ipv6(frame, offset)
        else:
            return None
        if located is None:
            return None

        udp_offset, ip_end = located
        udp = _parse_header(UDPHeader, frame, udp_offset, UDP_HEADER_LEN, ip_end)
        if udp is None:
            return None
        if udp.length < UDP_HEADER_LEN or udp_offset + udp.length > ip_end:
            return None
    except ConstructError:
        return None

    payload = memoryview(frame)[udp_offset + UDP_HEADER_LEN : udp_offset + udp.length]
    return Datagram(udp.destination_port, payload)
