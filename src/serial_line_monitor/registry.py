"""Registry of pending line waiters."""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
from collections import OrderedDict
from typing import Dict, Iterator, List, Optional

from typeguard import typechecked

from .types import LinePredicate

_monitor_ids = itertools.count(1)


@dataclasses.dataclass(eq=False)
class Monitor:
    """One pending "wait for a line" request.

    Attributes:
        monitor_id: Unique id, also the registry key.
        predicate: Called with each new line.
        description: Readable form of the predicate, used in errors.
        future: Completes with the matching line, or with an exception.
        registered_at: Event-loop time of registration.
        timeout_ms: Requested timeout, ``None`` for an unbounded wait.
        deadline: Event-loop time of expiry, ``None`` for an unbounded wait.
        timer: Handle of the deadline timer, cancelled on match.
    """
    monitor_id: int
    predicate: LinePredicate
    description: str
    future: asyncio.Future
    registered_at: float
    timeout_ms: Optional[int] = None
    deadline: Optional[float] = None
    timer: Optional[asyncio.TimerHandle] = None

    @classmethod
    def create(
        cls,
        predicate: LinePredicate,
        description: str,
        loop: asyncio.AbstractEventLoop,
        timeout_ms: Optional[int] = None,
    ) -> Monitor:
        now = loop.time()
        return cls(
            monitor_id=next(_monitor_ids),
            predicate=predicate,
            description=description,
            future=loop.create_future(),
            registered_at=now,
            timeout_ms=timeout_ms,
            deadline=now + timeout_ms / 1000.0 if timeout_ms is not None else None,
        )

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


@dataclasses.dataclass(frozen=True)
class PendingMonitorInfo:
    """Snapshot of one pending monitor for liveness reports."""
    monitor_id: int
    description: str
    age_seconds: float
    remaining_seconds: Optional[float]

    @property
    def unbounded(self) -> bool:
        return self.remaining_seconds is None


@typechecked
class MonitorRegistry:
    """Insertion-ordered collection of pending monitors, keyed by id.

    Entries are always pending: whoever resolves or rejects a monitor
    removes it in the same step.
    """

    def __init__(self) -> None:
        self._monitors: Dict[int, Monitor] = OrderedDict()

    def add(self, monitor: Monitor) -> None:
        if monitor.monitor_id in self._monitors:
            raise ValueError(f"Monitor {monitor.monitor_id} is already registered")
        self._monitors[monitor.monitor_id] = monitor

    def remove(self, monitor_id: int) -> Optional[Monitor]:
        """Remove and return a monitor, or ``None`` if it is not registered."""
        return self._monitors.pop(monitor_id, None)

    def get(self, monitor_id: int) -> Optional[Monitor]:
        return self._monitors.get(monitor_id)

    def snapshot(self) -> List[Monitor]:
        """Pending monitors in registration order, as a new list."""
        return list(self._monitors.values())

    def report(self, now: float) -> List[PendingMonitorInfo]:
        return [
            PendingMonitorInfo(
                monitor_id=m.monitor_id,
                description=m.description,
                age_seconds=now - m.registered_at,
                remaining_seconds=(
                    max(m.deadline - now, 0.0) if m.deadline is not None else None
                ),
            )
            for m in self._monitors.values()
        ]

    def __contains__(self, monitor_id: object) -> bool:
        return monitor_id in self._monitors

    def __len__(self) -> int:
        return len(self._monitors)

    def __iter__(self) -> Iterator[Monitor]:
        return iter(self.snapshot())
