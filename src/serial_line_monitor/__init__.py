"""
Serial Line Monitor - wait for device console lines from automated tests

This package watches the line-oriented console output of a device attached
to a serial port and lets test scripts block until a matching line appears.
It includes:

- **Line framing** of the raw byte stream into trimmed, non-empty lines
- **Line history** so a wait can be satisfied by output that already arrived
- **Waiters** with per-wait timeouts, resolved in registration order
- **Command channel** for sending commands to the device console
- **Scenario helpers** for compound waits such as counter sequences

All state lives in one explicitly constructed ``SerialLineMonitor`` running on
an asyncio event loop.
"""

import logging
import os

logging.getLogger("serial_line_monitor").addHandler(logging.NullHandler())

__version__ = "0.1.0"

# Serial device path.  Override via SERIAL_MONITOR_PORT.
# On Windows this is a COM port (COM3, COM4, ...).
# On Linux this is a /dev/ttyACM*, /dev/ttyUSB* or /dev/ttyS* path.
SERIAL_MONITOR_PORT = os.environ.get("SERIAL_MONITOR_PORT", "/dev/ttyACM0")

# Serial line settings
SERIAL_BAUD_RATE = int(os.environ.get("SERIAL_MONITOR_BAUD", "115200"))
SERIAL_BYTESIZE = 8       # 8 data bits
SERIAL_PARITY = "N"       # No parity
SERIAL_STOPBITS = 1       # 1 stop bit
SERIAL_READ_TIMEOUT = 0   # seconds — non-blocking; the reader pump does its own pacing
SERIAL_WRITE_TIMEOUT = 10  # seconds — blocking with failsafe; prevents infinite hangs
SERIAL_POLL_INTERVAL_S = 0.01  # reader pump sleep between empty polls
SERIAL_ENCODING = "utf-8"

# Wait settings
DEFAULT_WAIT_TIMEOUT_MS = 15000      # used by the CLI and scenario helpers
COMMAND_RESPONSE_TIMEOUT_MS = 5000   # json_command response window
