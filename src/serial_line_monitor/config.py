"""Monitor configuration from environment defaults or a JSON file."""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import Optional

from . import (
    SERIAL_MONITOR_PORT,
    SERIAL_BAUD_RATE,
    SERIAL_WRITE_TIMEOUT,
    SERIAL_POLL_INTERVAL_S,
    DEFAULT_WAIT_TIMEOUT_MS,
    COMMAND_RESPONSE_TIMEOUT_MS,
)
from .exceptions import SerialLineMonitorError
from .transport import SerialConnectionManager
from .types import ConfigDict

logger = logging.getLogger("serial_line_monitor.config")


@dataclasses.dataclass(frozen=True)
class MonitorConfig:
    """Settings needed to bring up a ``SerialLineMonitor``.

    Defaults come from the package constants, which read the
    ``SERIAL_MONITOR_*`` environment variables.
    """
    serial_port: str = SERIAL_MONITOR_PORT
    baud_rate: int = SERIAL_BAUD_RATE
    write_timeout: Optional[float] = SERIAL_WRITE_TIMEOUT
    poll_interval_s: float = SERIAL_POLL_INTERVAL_S
    wait_timeout_ms: int = DEFAULT_WAIT_TIMEOUT_MS
    command_timeout_ms: int = COMMAND_RESPONSE_TIMEOUT_MS
    xonxoff: bool = False
    rtscts: bool = False
    dsrdtr: bool = False

    @classmethod
    def from_dict(cls, data: ConfigDict) -> MonitorConfig:
        """Build a config from a mapping using the runner's JSON keys.

        Recognised keys: ``serialPort`` (required), ``baudRate``,
        ``writeTimeout``, ``pollInterval``, ``waitTimeoutMs``,
        ``commandTimeoutMs``, and the flow control switches ``xonxoff``,
        ``rtscts`` and ``dsrdtr``.
        """
        if not data.get("serialPort"):
            raise SerialLineMonitorError(
                "Missing serialPort path in monitor configuration. "
                'Add e.g. {"serialPort": "/dev/ttyACM0"}.'
            )
        defaults = cls()
        return cls(
            serial_port=str(data["serialPort"]),
            baud_rate=int(data.get("baudRate", defaults.baud_rate)),
            write_timeout=data.get("writeTimeout", defaults.write_timeout),
            poll_interval_s=float(data.get("pollInterval", defaults.poll_interval_s)),
            wait_timeout_ms=int(data.get("waitTimeoutMs", defaults.wait_timeout_ms)),
            command_timeout_ms=int(data.get("commandTimeoutMs", defaults.command_timeout_ms)),
            xonxoff=bool(data.get("xonxoff", defaults.xonxoff)),
            rtscts=bool(data.get("rtscts", defaults.rtscts)),
            dsrdtr=bool(data.get("dsrdtr", defaults.dsrdtr)),
        )

    @classmethod
    def from_json_file(cls, path: str) -> MonitorConfig:
        """Load a config from a JSON file such as the runner's ``config.json``."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as exc:
            raise SerialLineMonitorError(
                f"Cannot read monitor configuration {path}: {exc}"
            ) from exc
        except json.JSONDecodeError as exc:
            raise SerialLineMonitorError(
                f"Monitor configuration {path} is not valid JSON: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise SerialLineMonitorError(
                f"Monitor configuration {path} must contain a JSON object"
            )
        logger.info("[CONFIG] Loaded monitor configuration from %s", path)
        return cls.from_dict(data)

    def connection_manager(self) -> SerialConnectionManager:
        return SerialConnectionManager(
            self.serial_port,
            baud_rate=self.baud_rate,
            write_timeout=self.write_timeout,
            poll_interval_s=self.poll_interval_s,
            xonxoff=self.xonxoff,
            rtscts=self.rtscts,
            dsrdtr=self.dsrdtr,
        )
