"""Capture file access.

A capture is read with a forward-only scapy reader that cannot be rewound, so
a :class:`CaptureSource` hands out a fresh frame iterator for every pass over
the file. Each iterator owns its own reader and closes it when the pass ends.
"""

from __future__ import annotations

import logging
import os
import struct
from typing import Iterator

from scapy.data import DLT_EN10MB
from scapy.error import Scapy_Exception
from scapy.utils import RawPcapReader

log = logging.getLogger(__name__)

# libpcap MAXIMUM_SNAPLEN; scapy otherwise cuts every record to its 65535-byte MTU
MAX_FRAME_SIZE = 0x40000


class CaptureError(Exception):
    """The capture file is missing, unreadable, or not a valid pcap/pcapng file."""


class CaptureSource:
    """Replayable sequence of raw frames stored in a pcap or pcapng file."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = os.fspath(path)

    def __repr__(self) -> str:
        return f"CaptureSource({self.path!r})"

    def _open(self) -> RawPcapReader:
        try:
            # Falls back to RawPcapNgReader when the file is pcapng
            reader = RawPcapReader(self.path)
        except (OSError, Scapy_Exception, struct.error) as e:
            raise CaptureError(f"Cannot open capture {self.path}: {e}") from e

        linktype = getattr(reader, "linktype", None)
        log.debug("Opened %s (linktype=%s)", self.path, linktype)
        if linktype is not None and linktype != DLT_EN10MB:
            log.warning(
                "%s has link type %s, not Ethernet; frames will not decode as UDP",
                self.path,
                linktype,
            )
        return reader

    def frames(self) -> Iterator[bytes]:
        """Start a new pass over the capture.

        Yields:
            Raw frame bytes in capture order

        Raises:
            CaptureError: If the file cannot be opened or a record cannot be read
        """
        reader = self._open()
        max_size = max(getattr(reader, "snaplen", 0) or 0, MAX_FRAME_SIZE)
        with reader:
            while True:
                try:
                    data, _metadata = reader._read_packet(size=max_size)
                except EOFError:
                    return
                except (OSError, Scapy_Exception, struct.error) as e:
                    raise CaptureError(f"Error reading capture {self.path}: {e}") from e
                yield data
