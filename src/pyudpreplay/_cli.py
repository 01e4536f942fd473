"""CLI application for replaying UDP traffic from a capture file.

This module provides a command-line interface that replays every UDP datagram
of a pcap/pcapng capture toward a target host, keeping each datagram's original
destination port and pacing sends to a fixed packet rate.
"""

from __future__ import annotations

import argparse
import logging
import sys

from pyudpreplay.capture import CaptureError, CaptureSource
from pyudpreplay.engine import (
    DEFAULT_RATE,
    DEFAULT_REPORT_EVERY,
    DEFAULT_TARGET,
    SendError,
    SocketPoolError,
    TargetError,
    run_replay,
)

EXIT_INTERRUPTED = 130


def positive_int(value: str) -> int:
    """argparse type for strictly positive integers."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {number}")
    return number


def format_ports(ports: frozenset[int]) -> str:
    if not ports:
        return "none"
    return ", ".join(str(port) for port in sorted(ports))


def replay_capture(
    input_path: str,
    rate: int = DEFAULT_RATE,
    target: str = DEFAULT_TARGET,
    report_every: int = DEFAULT_REPORT_EVERY,
) -> int:
    """Replay a capture file and print progress.

    Args:
        input_path: Path to the pcap/pcapng capture
        rate: Packets per second
        target: Host every datagram is sent to
        report_every: Print the running total after this many sends

    Returns:
        Exit code (0 for success, 1 for a capture, target, socket, or send error)
    """
    print(f"[*] Reading {input_path}...")
    source = CaptureSource(input_path)

    def on_ports(ports: frozenset[int]) -> None:
        print(f"[*] Found UDP ports: {format_ports(ports)}")
        print(f"[*] Opening {len(ports)} sockets")
        print(f"[*] Replaying to {target} at {rate} packets/s")

    def on_progress(sent: int) -> None:
        print(f"[*] Sent {sent} packets")

    try:
        stats = run_replay(
            source,
            rate,
            target,
            report_every=report_every,
            on_ports=on_ports,
            on_progress=on_progress,
        )
    except (CaptureError, TargetError, SocketPoolError, SendError) as e:
        print(f"[!] Error: {e}", file=sys.stderr)
        return 1

    print(f"[*] Total packets sent: {stats.sent}")
    if stats.unmatched:
        print(f"[*] Dropped {stats.unmatched} datagrams for undiscovered ports")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Replay UDP datagrams from a capture file to a target host",
        epilog="Each datagram keeps its original destination port. "
        "Capture timestamps are ignored; sends are paced to a fixed rate.",
    )
    parser.add_argument("--input", "-i", required=True, help="Input pcap/pcapng file")
    parser.add_argument(
        "--rate",
        "-r",
        type=positive_int,
        default=DEFAULT_RATE,
        help=f"Packets per second (default: {DEFAULT_RATE})",
    )
    parser.add_argument(
        "--target-ip",
        "-t",
        default=DEFAULT_TARGET,
        help=f"Target host (default: {DEFAULT_TARGET})",
    )
    parser.add_argument(
        "--report-every",
        type=positive_int,
        default=DEFAULT_REPORT_EVERY,
        help=f"Print progress every N packets (default: {DEFAULT_REPORT_EVERY})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        exit_code = replay_capture(
            args.input,
            rate=args.rate,
            target=args.target_ip,
            report_every=args.report_every,
        )
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\n[*] Interrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        print(f"\n[!] FATAL ERROR: {e}", file=sys.stderr)
        import traceback

        traceback.print_exc()
        sys.exit(2)
