"""Two-pass UDP replay engine.

The first pass over a capture discovers every UDP destination port, then one
non-blocking outbound socket is opened per port, and a second pass sends each
datagram payload through the socket for its original destination port.

Pacing is a fixed sleep of ``1_000_000 // rate_pps`` microseconds after every
send. Capture timestamps are ignored on purpose: the goal is a bounded,
predictable output rate, not timing fidelity to the original capture.
"""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Mapping
from typing import Callable, Iterable, Iterator, Protocol

from pyudpreplay.frames import decode_udp

log = logging.getLogger(__name__)

DEFAULT_RATE = 1000  # Packets per second
DEFAULT_TARGET = "127.0.0.1"
DEFAULT_REPORT_EVERY = 1000  # Successful sends between progress reports
MICROSECONDS_PER_SECOND = 1_000_000


class FrameSource(Protocol):
    """Anything that can start a fresh forward-only pass over raw frames."""

    def frames(self) -> Iterator[bytes]: ...


class TargetError(ValueError):
    """The replay target cannot be resolved to an address."""


class SocketPoolError(OSError):
    """An outbound socket could not be created, bound, or configured."""


class SendError(OSError):
    """Sending a datagram failed during replay."""


class ReplayStats:
    """Counters for one replay pass.

    ``sent`` only ever counts datagrams handed to the kernel successfully.
    """

    def __init__(self) -> None:
        self.sent = 0
        self.bytes_sent = 0
        self.frames = 0
        self.skipped = 0  # Frames that are not UDP datagrams
        self.unmatched = 0  # Datagrams for ports with no pooled socket
        self.elapsed = 0.0  # Seconds spent in the replay pass

    def __repr__(self) -> str:
        return (
            f"ReplayStats(sent={self.sent}, bytes_sent={self.bytes_sent}, "
            f"frames={self.frames}, skipped={self.skipped}, unmatched={self.unmatched})"
        )


def send_interval_us(rate_pps: int) -> int:
    """Fixed delay after each send for a packets-per-second rate.

    Raises:
        ValueError: If rate_pps is not a positive integer
    """
    if isinstance(rate_pps, bool) or not isinstance(rate_pps, int) or rate_pps <= 0:
        raise ValueError(f"Rate must be a positive integer, got {rate_pps!r}")
    return MICROSECONDS_PER_SECOND // rate_pps


def check_report_every(report_every: int) -> None:
    """Raise ValueError unless report_every is a positive integer."""
    if isinstance(report_every, bool) or not isinstance(report_every, int) or report_every <= 0:
        raise ValueError(f"Report interval must be a positive integer, got {report_every!r}")


def destination(target: str | tuple, port: int) -> tuple:
    """Socket address for sending to port on target.

    target is either a numeric address or a sockaddr from resolve_target.
    """
    if isinstance(target, str):
        return (target, port)
    return (target[0], port, *target[2:])


def resolve_target(target: str) -> tuple[socket.AddressFamily, tuple]:
    """Resolve the replay target once, up front.

    Args:
        target: IPv4/IPv6 literal or host name

    Returns:
        Tuple of (address_family, sockaddr). An IPv6 sockaddr keeps its flow
        info and scope id, which link-local targets need

    Raises:
        TargetError: If the target does not resolve to an IPv4 or IPv6 address
    """
    try:
        infos = socket.getaddrinfo(target, None, type=socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        raise TargetError(f"Cannot resolve target {target!r}: {e}") from e

    for family, _type, _proto, _canonname, sockaddr in infos:
        if family in (socket.AF_INET, socket.AF_INET6):
            return family, sockaddr
    raise TargetError(f"Target {target!r} has no IPv4 or IPv6 address")


def discover_ports(source: FrameSource) -> frozenset[int]:
    """First pass: collect every UDP destination port in the capture.

    Frames that are not UDP are skipped.

    Raises:
        CaptureError: If the capture cannot be opened or read
    """
    ports = set()
    frames = 0
    for frame in source.frames():
        frames += 1
        datagram = decode_udp(frame)
        if datagram is not None:
            ports.add(datagram.port)

    log.debug("Discovery read %d frames, found %d UDP ports", frames, len(ports))
    return frozenset(ports)


class SocketPool(Mapping):
    """Read-only mapping of destination port to its outbound UDP socket."""

    def __init__(self, sockets: dict[int, socket.socket]) -> None:
        self._sockets = dict(sockets)

    def __getitem__(self, port: int) -> socket.socket:
        return self._sockets[port]

    def __iter__(self) -> Iterator[int]:
        return iter(self._sockets)

    def __len__(self) -> int:
        return len(self._sockets)

    def __repr__(self) -> str:
        return f"SocketPool(ports={sorted(self._sockets)})"

    def close(self) -> None:
        """Close every socket in the pool."""
        for sock in self._sockets.values():
            sock.close()

    def __enter__(self) -> SocketPool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _open_socket(family: socket.AddressFamily) -> socket.socket:
    sock = socket.socket(family, socket.SOCK_DGRAM)
    try:
        # Only the destination side is replayed; the local port is up to the OS
        sock.bind(("::" if family == socket.AF_INET6 else "0.0.0.0", 0))
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


def build_pool(
    ports: Iterable[int], family: socket.AddressFamily = socket.AF_INET
) -> SocketPool:
    """Open one non-blocking outbound UDP socket per destination port.

    Args:
        ports: Destination ports found by discover_ports
        family: Address family of the replay target

    Returns:
        SocketPool keyed by exactly the given ports

    Raises:
        SocketPoolError: If any socket cannot be created or bound; sockets
            opened before the failure are closed
    """
    sockets: dict[int, socket.socket] = {}
    try:
        for port in sorted(set(ports)):
            sockets[port] = _open_socket(family)
            log.debug("Port %d -> local %s", port, sockets[port].getsockname())
    except OSError as e:
        for sock in sockets.values():
            sock.close()
        raise SocketPoolError(f"Cannot open socket for port {port}: {e}") from e

    return SocketPool(sockets)


def replay(
    source: FrameSource,
    pool: Mapping[int, socket.socket],
    rate_pps: int,
    target_ip: str | tuple,
    *,
    report_every: int = DEFAULT_REPORT_EVERY,
    on_progress: Callable[[int], None] | None = None,
    stats: ReplayStats | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Second pass: send every UDP payload to target_ip at its original port.

    Args:
        source: Capture to read, from its first frame
        pool: Outbound socket per destination port
        rate_pps: Packets per second; each send is followed by a fixed sleep
        target_ip: Numeric address, or a sockaddr from resolve_target, every
            datagram is sent to
        report_every: Call on_progress after this many successful sends
        on_progress: Receives the running total of sent datagrams
        stats: Optional counters to fill in
        sleep: Sleep function taking seconds

    Returns:
        Number of datagrams sent

    Raises:
        ValueError: If rate_pps or report_every is not a positive integer
        CaptureError: If the capture cannot be opened or read, before or
            during the pass
        SendError: If any send fails; the pass stops at the first failure
    """
    interval = send_interval_us(rate_pps) / MICROSECONDS_PER_SECOND
    check_report_every(report_every)
    if stats is None:
        stats = ReplayStats()

    start = time.monotonic()
    try:
        for frame in source.frames():
            stats.frames += 1
            datagram = decode_udp(frame)
            if datagram is None:
                stats.skipped += 1
                continue

            sock = pool.get(datagram.port)
            if sock is None:
                stats.unmatched += 1
                log.debug("Dropping datagram for undiscovered port %d", datagram.port)
                continue

            try:
                sock.sendto(datagram.payload, destination(target_ip, datagram.port))
            except OSError as e:
                host = target_ip if isinstance(target_ip, str) else target_ip[0]
                raise SendError(
                    f"Send to {host}:{datagram.port} failed after "
                    f"{stats.sent} packets: {e}"
                ) from e

            stats.sent += 1
            stats.bytes_sent += len(datagram.payload)
            if on_progress is not None and stats.sent % report_every == 0:
                on_progress(stats.sent)

            sleep(interval)
    finally:
        stats.elapsed = time.monotonic() - start

    log.debug("Replay finished: %r", stats)
    return stats.sent


def run_replay(
    source: FrameSource,
    rate_pps: int = DEFAULT_RATE,
    target: str = DEFAULT_TARGET,
    *,
    report_every: int = DEFAULT_REPORT_EVERY,
    on_ports: Callable[[frozenset[int]], None] | None = None,
    on_progress: Callable[[int], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ReplayStats:
    """Discover ports, open the socket pool, and replay the capture.

    The pool is closed when the replay ends, whether or not it succeeded.

    Raises:
        ValueError: If rate_pps or report_every is not a positive integer
        TargetError: If target cannot be resolved
        CaptureError: If the capture cannot be opened or read
        SocketPoolError: If the socket pool cannot be built
        SendError: If any send fails
    """
    send_interval_us(rate_pps)
    check_report_every(report_every)
    family, target_ip = resolve_target(target)

    ports = discover_ports(source)
    if on_ports is not None:
        on_ports(ports)

    stats = ReplayStats()
    with build_pool(ports, family) as pool:
        replay(
            source,
            pool,
            rate_pps,
            target_ip,
            report_every=report_every,
            on_progress=on_progress,
            stats=stats,
            sleep=sleep,
        )
    return stats
