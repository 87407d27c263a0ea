"""Matching of new lines against pending waiters.

The dispatcher owns the line history and the monitor registry.  Each new
line is appended to history and then offered to every pending monitor in
registration order; every monitor whose predicate accepts the line is
removed and resolved with it (fan-out), all before the next line is
handled.

Registering a wait is a single synchronous step (``begin_wait``): replay
history first, register only if nothing matched.  Since everything runs on
one event loop, no line can slip in between the replay and the
registration.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import List, Optional, Union

from typeguard import typechecked

from .exceptions import LineTimeoutError
from .history import LineHistory
from .predicates import describe
from .registry import Monitor, MonitorRegistry, PendingMonitorInfo
from .types import LinePredicate

logger = logging.getLogger("serial_line_monitor.dispatcher")


@dataclasses.dataclass(frozen=True)
class ImmediateMatch:
    """``begin_wait`` outcome: history already held a matching line."""
    line: str


@dataclasses.dataclass(frozen=True)
class Pending:
    """``begin_wait`` outcome: a monitor was registered."""
    monitor: Monitor


WaitOutcome = Union[ImmediateMatch, Pending]


@typechecked
class Dispatcher:
    """Resolves line waiters from history or from newly arriving lines."""

    def __init__(
        self,
        history: Optional[LineHistory] = None,
        registry: Optional[MonitorRegistry] = None,
    ) -> None:
        self.history = history if history is not None else LineHistory()
        self.registry = registry if registry is not None else MonitorRegistry()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def begin_wait(
        self,
        predicate: LinePredicate,
        timeout_ms: Optional[int] = None,
        since: int = 0,
    ) -> WaitOutcome:
        """Replay history, and register a monitor if nothing matched.

        Must be called from the event loop thread.

        Args:
            predicate: Called with each candidate line.  Exceptions raised
                during the replay propagate to the caller.
            timeout_ms: Deadline in milliseconds, ``None`` to wait forever.
            since: History index to replay from (see ``LineHistory.mark``).

        Returns:
            ``ImmediateMatch`` with the earliest matching history line, or
            ``Pending`` with the registered monitor.

        Raises:
            ValueError: If *timeout_ms* is not positive.
        """
        if timeout_ms is not None and timeout_ms <= 0:
            raise ValueError(
                f"Invalid wait timeout {timeout_ms} ms. Timeout must be a "
                f"positive integer, or None for an unbounded wait."
            )

        description = describe(predicate)
        line = self.history.first(predicate, since)
        if line is not None:
            logger.info("[MONITOR-REPLAY] %s matched history line %r", description, line)
            return ImmediateMatch(line)

        loop = asyncio.get_running_loop()
        monitor = Monitor.create(predicate, description, loop, timeout_ms)
        self.registry.add(monitor)
        if timeout_ms is not None:
            monitor.timer = loop.call_later(
                timeout_ms / 1000.0, self._expire, monitor.monitor_id,
            )
        monitor.future.add_done_callback(
            lambda _fut, monitor_id=monitor.monitor_id: self._discard(monitor_id)
        )

        logger.info(
            "[MONITOR-WAIT] #%d waiting for %s (timeout=%s, pending=%d)",
            monitor.monitor_id, description,
            f"{timeout_ms} ms" if timeout_ms is not None else "none",
            len(self.registry),
        )
        return Pending(monitor)

    async def wait(
        self,
        predicate: LinePredicate,
        timeout_ms: Optional[int] = None,
        since: int = 0,
    ) -> str:
        """Return the first line matching *predicate*, past or future.

        Raises:
            LineTimeoutError: If *timeout_ms* elapsed without a match.
        """
        outcome = self.begin_wait(predicate, timeout_ms, since)
        if isinstance(outcome, ImmediateMatch):
            return outcome.line
        return await outcome.monitor.future

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def dispatch(self, line: str) -> int:
        """Append *line* to history and resolve every monitor it matches.

        A predicate that raises rejects only its own monitor with that
        exception; the remaining monitors are still evaluated.

        Returns:
            Number of monitors resolved or rejected by this line.
        """
        self.history.append(line)

        completed = 0
        for monitor in self.registry.snapshot():
            if monitor.monitor_id not in self.registry:
                continue
            if monitor.future.done():
                # caller cancelled; its done-callback has not run yet
                self._discard(monitor.monitor_id)
                continue
            try:
                matched = monitor.predicate(line)
            except Exception as exc:
                logger.warning(
                    "[MONITOR-ERROR] #%d predicate %s raised %s: %s "
                    "(wait rejected)",
                    monitor.monitor_id, monitor.description, type(exc).__name__, exc,
                )
                self._finish(monitor, exception=exc)
                completed += 1
                continue
            if matched:
                logger.info(
                    "[MONITOR-MATCH] #%d %s matched %r",
                    monitor.monitor_id, monitor.description, line,
                )
                self._finish(monitor, line=line)
                completed += 1
        return completed

    def reject_all(self, exc: BaseException) -> int:
        """Reject every pending monitor with *exc* and empty the registry.

        Returns:
            Number of monitors rejected.
        """
        monitors = self.registry.snapshot()
        for monitor in monitors:
            if monitor.deadline is None:
                logger.warning(
                    "[MONITOR-CLOSE] #%d unbounded wait for %s was still pending",
                    monitor.monitor_id, monitor.description,
                )
            self._finish(monitor, exception=exc)
        return len(monitors)

    def pending_report(self) -> List[PendingMonitorInfo]:
        loop = asyncio.get_running_loop()
        return self.registry.report(loop.time())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finish(
        self,
        monitor: Monitor,
        line: Optional[str] = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        self.registry.remove(monitor.monitor_id)
        monitor.cancel_timer()
        if monitor.future.done():
            return
        if exception is not None:
            monitor.future.set_exception(exception)
        else:
            monitor.future.set_result(line)

    def _expire(self, monitor_id: int) -> None:
        monitor = self.registry.get(monitor_id)
        if monitor is None:
            return
        monitor.timer = None
        elapsed = asyncio.get_running_loop().time() - monitor.registered_at
        timeout_ms = monitor.timeout_ms if monitor.timeout_ms is not None else 0
        latest = self.history.latest(1)
        msg = (
            f"Timeout ({timeout_ms} ms) expired after {elapsed:.3f}s waiting for "
            f"{monitor.description}. {len(self.history)} line(s) in history, "
            f"last: {latest[0] if latest else '(none)'}"
        )
        logger.warning("[MONITOR-TIMEOUT] #%d %s", monitor_id, msg)
        self._finish(
            monitor,
            exception=LineTimeoutError(
                msg,
                description=monitor.description,
                timeout_ms=timeout_ms,
                elapsed_seconds=elapsed,
            ),
        )

    def _discard(self, monitor_id: int) -> None:
        monitor = self.registry.remove(monitor_id)
        if monitor is not None:
            monitor.cancel_timer()
            logger.info(
                "[MONITOR-CANCEL] #%d wait for %s was cancelled by its caller",
                monitor_id, monitor.description,
            )
