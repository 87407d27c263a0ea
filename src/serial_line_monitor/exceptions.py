"""Custom exceptions for serial line monitoring."""

from __future__ import annotations

from typing import Optional


class SerialLineMonitorError(Exception):
    """Common base exception for all serial_line_monitor errors."""
    pass


class TransportError(SerialLineMonitorError):
    """Exception for serial transport errors.

    Raised when the serial port cannot be opened, configured, read from or
    written to, or when an operation needs an open port and none is open.
    Writes are never retried; a failed write raises before any dependent
    wait is started, so callers can tell "never sent" from "no response".
    """
    pass


class LineTimeoutError(SerialLineMonitorError, TimeoutError):
    """Exception for a wait whose deadline elapsed without a matching line.

    Attributes:
        description: Human-readable description of the predicate.
        timeout_ms: The timeout the wait was registered with.
        elapsed_seconds: Time between registration and expiry.
    """

    def __init__(
        self,
        message: str,
        *,
        description: str,
        timeout_ms: int,
        elapsed_seconds: float,
    ) -> None:
        super().__init__(message)
        self.description = description
        self.timeout_ms = timeout_ms
        self.elapsed_seconds = elapsed_seconds


class MonitorClosedError(SerialLineMonitorError):
    """Exception for waits rejected because the monitor stopped.

    Raised into every pending wait when the monitor is stopped or when the
    reader pump fails.  In the second case the ``TransportError`` is
    available as ``__cause__``.
    """
    pass


class ResponseParseError(SerialLineMonitorError):
    """Exception for a command response line whose JSON payload is invalid.

    Attributes:
        line: The matched line that could not be decoded.
    """

    def __init__(self, message: str, *, line: Optional[str] = None) -> None:
        super().__init__(message)
        self.line = line
