"""Serial line monitor: the object test scripts talk to.

One ``SerialLineMonitor`` owns everything for one serial channel: the line
framer, the line history, the registry of pending waits and the serial
connection.  It runs on an asyncio event loop; a reader pump task polls the
port and feeds every chunk through the framer, and each completed line is
fully dispatched before the next one is looked at.

Example::

    async def scenario():
        mgr = SerialConnectionManager("/dev/ttyACM0")
        async with SerialLineMonitor(mgr) as monitor:
            monitor.reset()
            await monitor.command("publish -c 2")
            await monitor.wait(line_contains("publishing counter=1"), timeout_ms=15000)
            mem = await monitor.json_command("freeMemory")
            print(mem["freeMemory"])

    asyncio.run(scenario())
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Iterator, List, Optional, Union

from typeguard import typechecked

from . import SERIAL_ENCODING, COMMAND_RESPONSE_TIMEOUT_MS
from .config import MonitorConfig
from .dispatcher import Dispatcher, ImmediateMatch, WaitOutcome
from .exceptions import MonitorClosedError, ResponseParseError, TransportError
from .framer import LineFramer
from .history import LineHistory
from .predicates import line_contains
from .registry import MonitorRegistry, PendingMonitorInfo
from .transport import SerialConnectionManager
from .types import JsonResponse, LinePredicate

logger = logging.getLogger("serial_line_monitor.monitor")


@typechecked
class SerialLineMonitor:
    """Watches a serial console and resolves line waits.

    The monitor can be used without a connection: ``feed()`` then accepts
    bytes from any source, and only the write path is unavailable.
    """

    def __init__(
        self,
        connection: Optional[SerialConnectionManager] = None,
        encoding: str = SERIAL_ENCODING,
        command_timeout_ms: int = COMMAND_RESPONSE_TIMEOUT_MS,
    ) -> None:
        """Initialize the monitor.

        Args:
            connection: Serial connection to pump and write to.  The monitor
                opens and closes it in ``start()`` / ``stop()``.
            encoding: Encoding for both received lines and written text.
            command_timeout_ms: Default response window for ``json_command``.
        """
        self.connection = connection
        self.encoding = encoding
        self.command_timeout_ms = command_timeout_ms
        self.framer = LineFramer(encoding)
        self.history = LineHistory()
        self.registry = MonitorRegistry()
        self.dispatcher = Dispatcher(self.history, self.registry)
        self._pump_task: Optional[asyncio.Task] = None
        self._failure: Optional[TransportError] = None
        self._stopped = False

    @classmethod
    def from_config(cls, config: MonitorConfig) -> SerialLineMonitor:
        return cls(
            config.connection_manager(),
            command_timeout_ms=config.command_timeout_ms,
        )

    @property
    def port_name(self) -> str:
        return self.connection.port if self.connection is not None else "(no port)"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, context: str = "start serial monitor") -> None:
        """Open the port and start the reader pump.

        Raises:
            TransportError: If there is no connection or it cannot be opened.
        """
        if self.connection is None:
            raise TransportError(
                f"[{context}] Cannot start serial monitor: no serial connection "
                f"was configured. Pass a SerialConnectionManager to the monitor."
            )
        if self.is_running():
            logger.debug("[MONITOR-START] [%s] Already running on %s", context, self.port_name)
            return

        self.connection.open(context)
        self._failure = None
        self._stopped = False
        self._pump_task = asyncio.get_running_loop().create_task(self._pump())
        logger.info("[MONITOR-START] [%s] Monitoring %s", context, self.port_name)

    async def stop(self) -> None:
        """Stop the pump, reject pending waits and close the port.

        Later waits are answered from history only, until ``start()`` runs
        again.
        """
        self._stopped = True
        task = self._pump_task
        self._pump_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        rejected = self.dispatcher.reject_all(
            MonitorClosedError(f"Serial monitor on {self.port_name} was stopped")
        )
        if rejected:
            logger.warning(
                "[MONITOR-STOP] Rejected %d pending wait(s) on %s", rejected, self.port_name,
            )

        if self.connection is not None:
            self.connection.close()
        logger.info(
            "[MONITOR-STOP] Stopped monitoring %s (%d line(s) in history)",
            self.port_name, len(self.history),
        )

    def is_running(self) -> bool:
        return self._pump_task is not None and not self._pump_task.done()

    def reset(self) -> None:
        """Forget all history so the next scenario starts clean.

        Pending waits and the partial line buffer are left alone.
        """
        self.history.reset()
        logger.info("[MONITOR-RESET] Line history cleared on %s", self.port_name)

    async def __aenter__(self) -> SerialLineMonitor:
        await self.start(context=f"Monitoring {self.port_name}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.stop()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def feed(self, chunk: Union[bytes, bytearray]) -> int:
        """Frame *chunk* and dispatch every completed line, one at a time.

        Returns:
            Number of lines completed by this chunk.
        """
        lines = self.framer.ingest(chunk)
        for line in lines:
            logger.debug("[SERIAL-LINE] %s", line)
            self.dispatcher.dispatch(line)
        return len(lines)

    async def _pump(self) -> None:
        assert self.connection is not None
        poll_interval_s = self.connection.poll_interval_s
        while True:
            try:
                chunk = self.connection.read_available(context="reader pump")
            except TransportError as exc:
                self._failure = exc
                closed = MonitorClosedError(
                    f"Serial monitor on {self.port_name} stopped reading: {exc}"
                )
                closed.__cause__ = exc
                rejected = self.dispatcher.reject_all(closed)
                logger.error(
                    "[MONITOR-PUMP] Reader stopped on %s, rejected %d pending wait(s)",
                    self.port_name, rejected,
                )
                return
            if chunk:
                self.feed(chunk)
                await asyncio.sleep(0)
            else:
                await asyncio.sleep(poll_interval_s)

    # ------------------------------------------------------------------
    # Waiting and history queries
    # ------------------------------------------------------------------

    def begin_wait(
        self,
        predicate: LinePredicate,
        timeout_ms: Optional[int] = None,
        *,
        since: int = 0,
    ) -> WaitOutcome:
        """Replay history, registering a monitor if nothing matched.

        Raises:
            MonitorClosedError: If the monitor was stopped or its reader pump
                failed and history holds no match, so the wait could never
                complete.
        """
        if self._failure is not None or self._stopped:
            line = self.history.first(predicate, since)
            if line is not None:
                return ImmediateMatch(line)
            if self._failure is not None:
                raise MonitorClosedError(
                    f"Serial monitor on {self.port_name} is no longer reading: {self._failure}"
                ) from self._failure
            raise MonitorClosedError(
                f"Serial monitor on {self.port_name} was stopped; "
                f"call start() before waiting for new lines"
            )
        return self.dispatcher.begin_wait(predicate, timeout_ms, since)

    async def wait(
        self,
        predicate: LinePredicate,
        timeout_ms: Optional[int] = None,
        *,
        since: int = 0,
    ) -> str:
        """Return the earliest line matching *predicate*, seen or still to come.

        Args:
            predicate: Called with each candidate line.
            timeout_ms: Deadline in milliseconds.  ``None`` waits until a
                match arrives, however long that takes.
            since: Only replay history from this ``mark()`` onward.

        Raises:
            LineTimeoutError: If the deadline elapsed first.
            MonitorClosedError: If the monitor stopped first.
        """
        outcome = self.begin_wait(predicate, timeout_ms, since=since)
        if isinstance(outcome, ImmediateMatch):
            return outcome.line
        return await outcome.monitor.future

    def scan(self, predicate: LinePredicate, start: int = 0) -> Iterator[str]:
        return self.history.scan(predicate, start)

    def check_history(self, predicate: LinePredicate) -> Optional[str]:
        """Return the earliest history line matching *predicate*, never waiting."""
        return self.history.first(predicate)

    def latest(self, count: int = 1) -> List[str]:
        return self.history.latest(count)

    def mark(self) -> int:
        return self.history.mark()

    def pending_report(self) -> List[PendingMonitorInfo]:
        """Describe every wait still pending, for liveness diagnostics."""
        return self.dispatcher.pending_report()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def write(self, text: str, context: str = "serial write") -> int:
        """Send *text* and return once the transport has accepted it.

        Raises:
            TransportError: If there is no open connection or the write
                fails.  Nothing is retried.
        """
        if self.connection is None:
            raise TransportError(
                f"[{context}] Cannot write {text!r}: no serial connection was configured."
            )
        data = text.encode(self.encoding)
        loop = asyncio.get_running_loop()
        n = await loop.run_in_executor(None, self.connection.write_all, data, context)
        logger.info("[MONITOR-WRITE] [%s] Sent %d bytes to %s: %r", context, n, self.port_name, text)
        return n

    async def command(self, text: str) -> int:
        """Send a console command followed by a newline."""
        return await self.write(text + "\n", context=f"command {text!r}")

    async def json_command(
        self,
        name: str,
        args: str = "",
        timeout_ms: Optional[int] = None,
    ) -> JsonResponse:
        """Send command *name* and decode its ``{"<name>": ...}`` response line.

        Only lines that arrive after the command is sent are considered.

        Raises:
            TransportError: If the command could not be sent.
            LineTimeoutError: If no response line arrived in time.
            ResponseParseError: If the response line holds no valid JSON object.
        """
        mark = self.mark()
        await self.command(f"{name} {args}".strip())

        key = json.dumps(name) + ":"
        line = await self.wait(
            line_contains("{" + key),
            timeout_ms if timeout_ms is not None else self.command_timeout_ms,
            since=mark,
        )

        start = line.index("{" + key)
        try:
            payload, _end = json.JSONDecoder().raw_decode(line, start)
        except json.JSONDecodeError as exc:
            raise ResponseParseError(
                f"Response to {name!r} on {self.port_name} is not valid JSON: {exc}. "
                f"Line: {line!r}",
                line=line,
            ) from exc

        logger.info("[MONITOR-JSON] %s -> %r", name, payload)
        return payload
