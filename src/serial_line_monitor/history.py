"""Append-only history of every console line seen by a monitor."""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional

from typeguard import typechecked

from .types import LinePredicate

logger = logging.getLogger("serial_line_monitor.history")


@typechecked
class LineHistory:
    """Ordered log of completed lines, in arrival order.

    Lines are never removed or reordered; ``reset()`` drops the whole log
    at the start of an independent test scenario so later waits cannot be
    satisfied by stale output.

    Positions (``mark()`` and the ``start`` of ``scan``) count every line
    ever appended, so a mark taken before a ``reset()`` still points at
    the lines that arrive after it.
    """

    def __init__(self) -> None:
        self._lines: List[str] = []
        self._base = 0

    def append(self, line: str) -> None:
        self._lines.append(line)

    def scan(self, predicate: LinePredicate, start: int = 0) -> Iterator[str]:
        """Lazily yield the lines matching *predicate*, oldest first.

        Only the lines present when ``scan`` is called are visited, so the
        iteration is finite even while new lines keep arriving.  Each call
        starts over from *start*.

        Args:
            predicate: Called with each candidate line.
            start: Position of the first line to consider (see ``mark()``).
                Positions of lines dropped by ``reset()`` select nothing.
        """
        lines = self._lines
        end = len(lines)
        for index in range(max(start - self._base, 0), end):
            line = lines[index]
            if predicate(line):
                yield line

    def first(self, predicate: LinePredicate, start: int = 0) -> Optional[str]:
        """Return the earliest matching line, or ``None``."""
        for line in self.scan(predicate, start):
            return line
        return None

    def latest(self, count: int = 1) -> List[str]:
        """Return the *count* most recent lines, oldest first."""
        if count <= 0:
            return []
        return self._lines[-count:]

    def mark(self) -> int:
        """Return the position of the next line, usable as ``start`` for later scans."""
        return self._base + len(self._lines)

    def reset(self) -> None:
        dropped = len(self._lines)
        self._base += dropped
        self._lines = []
        logger.debug("[HISTORY] Reset, dropped %d line(s), next position %d", dropped, self._base)

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._lines))
