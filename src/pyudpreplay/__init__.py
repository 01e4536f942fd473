"""pyudpreplay - Replay UDP traffic from packet captures.

This library re-sends the UDP payloads found in a pcap/pcapng capture to a
target host, keeping each datagram's original destination port, at a fixed
packet rate. A reference CLI is included.

Example:
    >>> from pyudpreplay import CaptureSource, run_replay
    >>> source = CaptureSource("traffic.pcap")
    >>> stats = run_replay(source, rate_pps=500, target="127.0.0.1")
    >>> print(stats.sent)
"""

import importlib.metadata as _importlib_metadata

from pyudpreplay.capture import CaptureError, CaptureSource
from pyudpreplay.frames import Datagram, decode_udp
from pyudpreplay.engine import (
    ReplayStats,
    SendError,
    SocketPool,
    SocketPoolError,
    TargetError,
    build_pool,
    discover_ports,
    replay,
    resolve_target,
    run_replay,
    send_interval_us,
)

__version__: str = _importlib_metadata.version(__package__ or __name__)

__all__ = [
    # Version
    "__version__",
    # Capture
    "CaptureSource",
    "CaptureError",
    # Decoding
    "Datagram",
    "decode_udp",
    # Replay engine
    "discover_ports",
    "build_pool",
    "replay",
    "run_replay",
    "resolve_target",
    "send_interval_us",
    "SocketPool",
    "ReplayStats",
    "TargetError",
    "SocketPoolError",
    "SendError",
]
