from __future__ import annotations

import socket

import pytest
from scapy.layers.inet import IP, TCP, UDP
from scapy.layers.l2 import Ether
from scapy.packet import Raw
from scapy.utils import wrpcap

SRC_MAC = "02:00:00:00:00:01"
DST_MAC = "02:00:00:00:00:02"


def ether():
    # Explicit MACs, otherwise scapy tries to resolve the destination
    return Ether(src=SRC_MAC, dst=DST_MAC)


def udp_frame(dport, payload, sport=40000, dst="10.0.0.2"):
    return ether() / IP(src="10.0.0.1", dst=dst) / UDP(sport=sport, dport=dport) / Raw(payload)


def tcp_frame(dport, payload=b"tcp"):
    return ether() / IP(src="10.0.0.1", dst="10.0.0.2") / TCP(sport=40000, dport=dport) / Raw(payload)


@pytest.fixture
def write_capture(tmp_path):
    """Write scapy packets to a pcap file and return its path."""
    counter = 0

    def write(packets, name=None):
        nonlocal counter
        counter += 1
        path = tmp_path / (name or f"capture{counter}.pcap")
        wrpcap(str(path), packets)
        return path

    return write


@pytest.fixture
def receivers():
    """Open UDP sockets on 127.0.0.1 ephemeral ports to act as replay targets."""
    opened = []

    def open_receiver():
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind(("127.0.0.1", 0))
        sock.settimeout(2.0)
        opened.append(sock)
        return sock

    yield open_receiver
    for sock in opened:
        sock.close()
