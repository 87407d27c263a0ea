"""Reassembly of a raw serial byte stream into console lines."""

from __future__ import annotations

import codecs
import logging
from typing import List, Union

from typeguard import typechecked

from . import SERIAL_ENCODING

logger = logging.getLogger("serial_line_monitor.framer")


@typechecked
class LineFramer:
    """Turns byte chunks into trimmed, non-empty text lines.

    Bytes after the last newline are held in a partial buffer until the
    rest of the line arrives.  The result is independent of how the stream
    was split into chunks: an incremental decoder keeps multi-byte
    characters intact across chunk boundaries, and undecodable bytes are
    replaced rather than raised.

    Example::

        framer = LineFramer()
        framer.ingest(b"boot ok\\r\\nCloud con")   # -> ["boot ok"]
        framer.ingest(b"nected\\n")                # -> ["Cloud connected"]
    """

    def __init__(self, encoding: str = SERIAL_ENCODING) -> None:
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)("replace")
        self._partial = ""

    @property
    def partial(self) -> str:
        """Text received after the last complete line."""
        return self._partial

    def ingest(self, chunk: Union[bytes, bytearray]) -> List[str]:
        """Append *chunk* to the partial buffer and extract complete lines.

        Args:
            chunk: Raw bytes as read from the port.

        Returns:
            The completed lines in arrival order, trimmed, with empty lines
            dropped.  Empty when the chunk did not complete a line.
        """
        self._partial += self._decoder.decode(bytes(chunk), False)

        if self._partial.endswith("\n"):
            span = self._partial
            self._partial = ""
        else:
            last_newline = self._partial.rfind("\n")
            if last_newline < 0:
                return []
            span = self._partial[:last_newline + 1]
            self._partial = self._partial[last_newline + 1:]

        lines = []
        for piece in span.split("\n"):
            line = piece.strip()
            if line:
                lines.append(line)

        if lines:
            logger.debug(
                "[FRAMER] Extracted %d line(s), %d chars left in partial buffer",
                len(lines), len(self._partial),
            )
        return lines
