"""Serial port transport for the line monitor.

Wraps a pyserial port with the two primitives the monitor needs:

- ``read_available`` — non-blocking read of whatever bytes are waiting,
  polled by the monitor's reader pump.
- ``write_all`` — blocking write of every byte followed by a flush; the
  monitor runs it in an executor and treats its return as the transport's
  write acknowledgement.

Cross-platform: works on both Windows (COMx) and Linux
(/dev/ttyACM*, /dev/ttyUSB*, /dev/ttyS*).

Default line settings: 115200 8N1 (no flow control).
"""

from __future__ import annotations

import logging
import platform
from typing import List, Optional

import serial
import serial.tools.list_ports

from . import (
    SERIAL_BAUD_RATE,
    SERIAL_BYTESIZE,
    SERIAL_PARITY,
    SERIAL_STOPBITS,
    SERIAL_READ_TIMEOUT,
    SERIAL_WRITE_TIMEOUT,
    SERIAL_POLL_INTERVAL_S,
)
from .exceptions import TransportError

logger = logging.getLogger("serial_line_monitor.transport")

_IS_WINDOWS = platform.system() == "Windows"

# Map string parity values to pyserial constants
_PARITY_MAP = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
    "M": serial.PARITY_MARK,
    "S": serial.PARITY_SPACE,
}

# Map integer stopbits to pyserial constants
_STOPBITS_MAP = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}

# Map integer bytesize to pyserial constants
_BYTESIZE_MAP = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


class SerialConnectionManager:
    """Manages a serial port connection with automatic resource cleanup.

    Example::

        with SerialConnectionManager("/dev/ttyACM0") as mgr:
            mgr.write_all(b"version\\n", context="query version")
            chunk = mgr.read_available(context="poll")
    """

    def __init__(
        self,
        port: str,
        baud_rate: int = SERIAL_BAUD_RATE,
        bytesize: int = SERIAL_BYTESIZE,
        parity: str = SERIAL_PARITY,
        stopbits: int = SERIAL_STOPBITS,
        read_timeout: float = SERIAL_READ_TIMEOUT,
        write_timeout: Optional[float] = SERIAL_WRITE_TIMEOUT,
        xonxoff: bool = False,
        rtscts: bool = False,
        dsrdtr: bool = False,
        poll_interval_s: float = SERIAL_POLL_INTERVAL_S,
    ) -> None:
        """Initialize serial connection manager.

        Args:
            port: Serial port path — e.g. ``/dev/ttyACM0`` (Linux) or ``COM3`` (Windows).
            baud_rate: Baud rate (default: 115200).
            bytesize: Number of data bits (5, 6, 7, or 8; default: 8).
            parity: Parity setting — ``"N"``, ``"E"``, ``"O"``, ``"M"`` or ``"S"``.
            stopbits: Number of stop bits (1 or 2; default: 1).
            read_timeout: Driver read timeout in seconds.  Default: 0
                (non-blocking); the reader pump paces itself.
            write_timeout: Write timeout in seconds.  Default: 10.  ``None``
                blocks forever, ``0`` is non-blocking (short writes likely).
            xonxoff: Enable software flow control (XON/XOFF).
            rtscts: Enable hardware (RTS/CTS) flow control.
            dsrdtr: Enable hardware (DSR/DTR) flow control.
            poll_interval_s: Reader pump sleep between empty polls.
                Default: 0.01 (10 ms).

        Raises:
            TransportError: If any parameter value is invalid.
        """
        self.port = port
        self.baud_rate = baud_rate
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.xonxoff = xonxoff
        self.rtscts = rtscts
        self.dsrdtr = dsrdtr
        self.poll_interval_s = poll_interval_s
        self._serial: Optional[serial.Serial] = None

        # ---- Validate and resolve bytesize ----
        if bytesize not in _BYTESIZE_MAP:
            valid = ", ".join(str(k) for k in sorted(_BYTESIZE_MAP))
            raise TransportError(
                f"Invalid bytesize {bytesize!r} for port {port}. "
                f"Must be one of: {valid}. "
                f"Standard UART uses 8 data bits (bytesize=8)."
            )
        self.bytesize = _BYTESIZE_MAP[bytesize]

        # ---- Validate and resolve parity ----
        parity_upper = parity.upper()
        if parity_upper not in _PARITY_MAP:
            valid = ", ".join(f'"{k}"' for k in sorted(_PARITY_MAP))
            raise TransportError(
                f"Invalid parity {parity!r} for port {port}. "
                f"Must be one of: {valid}. "
                f'Standard UART uses no parity (parity="N").'
            )
        self.parity = _PARITY_MAP[parity_upper]

        # ---- Validate and resolve stopbits ----
        if stopbits not in _STOPBITS_MAP:
            valid = ", ".join(str(k) for k in sorted(_STOPBITS_MAP))
            raise TransportError(
                f"Invalid stopbits {stopbits!r} for port {port}. "
                f"Must be one of: {valid}. "
                f"Standard UART uses 1 stop bit (stopbits=1)."
            )
        self.stopbits = _STOPBITS_MAP[stopbits]

        if baud_rate <= 0:
            raise TransportError(
                f"Invalid baud rate {baud_rate!r} for port {port}. "
                f"Baud rate must be a positive integer. "
                f"Common values: 9600, 19200, 38400, 57600, 115200."
            )

        if write_timeout is not None and write_timeout < 0:
            raise TransportError(
                f"Invalid write_timeout {write_timeout!r} for port {port}. "
                f"Must be None (blocking), 0 (non-blocking), or a positive number."
            )

        if poll_interval_s <= 0:
            raise TransportError(
                f"Invalid poll_interval_s {poll_interval_s!r} for port {port}. "
                f"Must be a positive number of seconds (e.g. 0.01)."
            )

        logger.info(
            "[SERIAL-INIT] Configured %s — %d %d%s%s (write_timeout=%s, poll=%.3fs)",
            port, baud_rate, bytesize, parity, stopbits,
            f"{write_timeout:.2f}s" if write_timeout is not None else "None (blocking)",
            poll_interval_s,
        )

    def open(self, context: str) -> None:
        """Open the serial port.

        Args:
            context: Description of the purpose, embedded into error messages.

        Raises:
            TransportError: If the port cannot be opened.  The message
                includes the OS-level reason, the port path, and
                platform-specific troubleshooting hints.
        """
        if self._serial is not None and self._serial.is_open:
            logger.debug("[SERIAL-OPEN] [%s] Port %s is already open — skipping", context, self.port)
            return

        logger.info(
            "[SERIAL-OPEN] [%s] Opening %s at %d baud ...", context, self.port, self.baud_rate,
        )

        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baud_rate,
                bytesize=self.bytesize,
                parity=self.parity,
                stopbits=self.stopbits,
                timeout=self.read_timeout,
                write_timeout=self.write_timeout,
                xonxoff=self.xonxoff,
                rtscts=self.rtscts,
                dsrdtr=self.dsrdtr,
            )
            logger.info("[SERIAL-OPEN] [%s] Successfully opened %s", context, self.port)

        except serial.SerialException as exc:
            msg = (
                f"[{context}] Failed to open serial port {self.port} at {self.baud_rate} baud: {exc}. "
                f"{self._platform_hint()}"
            )
            logger.error("[SERIAL-OPEN] FAILED — %s", msg)
            raise TransportError(msg) from exc
        except OSError as exc:
            msg = (
                f"[{context}] OS error opening serial port {self.port}: {exc}. "
                f"{self._platform_hint()}"
            )
            logger.error("[SERIAL-OPEN] OS ERROR — %s", msg)
            raise TransportError(msg) from exc

    def is_open(self) -> bool:
        """Check whether the serial port is currently open."""
        return self._serial is not None and self._serial.is_open

    def close(self) -> None:
        """Close the serial port if open."""
        was_open = self.is_open()

        if self._serial is not None:
            try:
                self._serial.close()
            except Exception as exc:
                logger.warning(
                    "[SERIAL-CLOSE] Error closing port %s: %s", self.port, exc,
                )
            finally:
                self._serial = None

        if was_open:
            logger.info("[SERIAL-CLOSE] Closed %s", self.port)
        else:
            logger.debug(
                "[SERIAL-CLOSE] close() called on already-closed port %s", self.port,
            )

    def get_serial(self) -> serial.Serial:
        """Return the underlying ``serial.Serial`` object.

        Raises:
            TransportError: If the port is not open.
        """
        if self._serial is None or not self._serial.is_open:
            raise TransportError(
                f"Cannot access serial port {self.port}: port is not open. "
                f"Call open() or use the context manager first."
            )
        return self._serial

    # ---- I/O primitives ----

    def read_available(self, context: str) -> bytes:
        """Return every byte currently waiting, or ``b""`` if none.

        Never blocks.

        Raises:
            TransportError: If the port is not open or the read fails.
        """
        ser = self.get_serial()
        try:
            waiting = ser.in_waiting
            if waiting <= 0:
                return b""
            chunk = ser.read(waiting)
        except serial.SerialException as exc:
            msg = (
                f"[{context}] Serial read error on {self.port}: {exc}. "
                f"The device may have been disconnected or reset."
            )
            logger.error("[SERIAL-READ] ERROR — %s", msg)
            raise TransportError(msg) from exc
        except OSError as exc:
            msg = (
                f"[{context}] OS error reading from {self.port}: {exc}. "
                f"The device may have been physically removed."
            )
            logger.error("[SERIAL-READ] OS ERROR — %s", msg)
            raise TransportError(msg) from exc

        if chunk:
            logger.debug("[SERIAL-READ] [%s] +%d bytes from %s", context, len(chunk), self.port)
        return chunk

    def write_all(self, data: bytes, context: str) -> int:
        """Write *all* bytes to the serial port and flush the OS transmit buffer.

        Blocks until the driver has accepted every byte or the write timeout
        expires.  Returning normally is the write acknowledgement.

        Args:
            data: Bytes to write.
            context: Description of the purpose, embedded into error messages.

        Returns:
            Number of bytes written (always ``len(data)`` on success).

        Raises:
            TransportError: If the port is not open, the write fails or times
                out, or fewer bytes than requested were written.
        """
        ser = self.get_serial()
        try:
            n = ser.write(data)
            if n != len(data):
                raise TransportError(
                    f"[{context}] Short write on {self.port}: "
                    f"wrote {n}/{len(data)} bytes. "
                    f"This usually means write_timeout is 0 (non-blocking) "
                    f"and the kernel buffer is full."
                )
            ser.flush()
        except serial.SerialTimeoutException as exc:
            msg = (
                f"[{context}] Write to serial port {self.port} timed out after "
                f"{self.write_timeout}s: {exc}. Attempted to send {len(data)} bytes. "
                f"Check flow control settings and that the device is reading."
            )
            logger.error("[SERIAL-WRITE] TIMEOUT — %s", msg)
            raise TransportError(msg) from exc
        except serial.SerialException as exc:
            msg = (
                f"[{context}] Failed to write to serial port {self.port}: {exc}. "
                f"Attempted to send {len(data)} bytes: {data!r}. "
                f"The device may have been disconnected."
            )
            logger.error("[SERIAL-WRITE] ERROR — %s", msg)
            raise TransportError(msg) from exc
        except OSError as exc:
            msg = (
                f"[{context}] OS error writing to serial port {self.port}: {exc}. "
                f"The device may have been physically removed."
            )
            logger.error("[SERIAL-WRITE] OS ERROR — %s", msg)
            raise TransportError(msg) from exc

        logger.debug(
            "[SERIAL-WRITE] [%s] Wrote %d bytes to %s: %r",
            context, n, self.port, data[:100],
        )
        return n

    # ---- Context manager ----

    def __enter__(self) -> SerialConnectionManager:
        """Context manager entry — opens the serial port."""
        self.open(context=f"Opening {self.port}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Context manager exit — ensures the port is closed."""
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass

    # ---- Helpers ----

    @staticmethod
    def list_available_ports() -> List[str]:
        """Return the serial ports visible to the operating system."""
        ports = serial.tools.list_ports.comports()
        descriptions = []
        for p in ports:
            descriptions.append(f"{p.device} — {p.description}")
            logger.debug("[SERIAL-LIST] Found port: %s (%s)", p.device, p.description)
        return descriptions

    def _platform_hint(self) -> str:
        """Return a platform-specific troubleshooting hint."""
        available = ", ".join(p.device for p in serial.tools.list_ports.comports())
        if _IS_WINDOWS:
            return (
                "On Windows: verify the COM port number in Device Manager "
                "(Ports → COM & LPT). Ensure no other application (PuTTY, "
                "TeraTerm, particle serial monitor) has the port open. "
                f"Available ports: {available}."
            )
        return (
            "On Linux: verify the device path exists (ls /dev/ttyACM* /dev/ttyUSB* "
            "/dev/ttyS*). Ensure your user is in the 'dialout' group "
            "(sudo usermod -aG dialout $USER) and that no other process "
            "(minicom, screen, particle serial monitor) has the port open. "
            f"Available ports: {available}."
        )
