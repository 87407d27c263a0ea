"""Command-line interface for the serial line monitor."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Optional

from . import (
    SERIAL_MONITOR_PORT,
    SERIAL_BAUD_RATE,
    DEFAULT_WAIT_TIMEOUT_MS,
    COMMAND_RESPONSE_TIMEOUT_MS,
)
from .config import MonitorConfig
from .exceptions import LineTimeoutError
from .monitor import SerialLineMonitor
from .predicates import line_contains, line_equals, line_matches, message_is
from .transport import SerialConnectionManager
from .types import LinePredicate


def create_monitor(args) -> SerialLineMonitor:
    """Create a monitor from --config, or from the port and flow control options."""
    if args.config:
        config = MonitorConfig.from_json_file(args.config)
    else:
        config = MonitorConfig(
            serial_port=args.serial_port,
            baud_rate=args.baud_rate,
            xonxoff=args.xonxoff,
            rtscts=args.rtscts,
            dsrdtr=args.dsrdtr,
        )
    return SerialLineMonitor.from_config(config)


def build_predicate(args) -> Optional[LinePredicate]:
    if args.equals is not None:
        return line_equals(args.equals)
    if args.contains is not None:
        return line_contains(args.contains)
    if args.regex is not None:
        return line_matches(args.regex)
    if args.message is not None:
        return message_is(args.message)
    return None


async def _watch(monitor: SerialLineMonitor, duration_ms: int) -> None:
    async with monitor:
        seen = 0
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_ms / 1000.0 if duration_ms > 0 else None
        while deadline is None or loop.time() < deadline:
            for line in monitor.scan(lambda line: True, seen):
                print(line, flush=True)
                seen += 1
            await asyncio.sleep(0.05)


def command_watch(args) -> int:
    """Print console lines as they arrive."""
    try:
        asyncio.run(_watch(create_monitor(args), args.duration))
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


async def _wait(monitor: SerialLineMonitor, predicate: LinePredicate, timeout_ms: int, send: Optional[str]) -> str:
    async with monitor:
        if send:
            await monitor.command(send)
        return await monitor.wait(predicate, timeout_ms if timeout_ms > 0 else None)


def command_wait(args) -> int:
    """Wait for a matching console line."""
    predicate = build_predicate(args)
    if predicate is None:
        print(
            "Error: give one of --equals, --contains, --regex or --message.",
            file=sys.stderr,
        )
        return 1

    try:
        line = asyncio.run(_wait(create_monitor(args), predicate, args.timeout, args.send))
        print(line)
        return 0
    except LineTimeoutError as e:
        print(
            f"[timed out after {e.elapsed_seconds:.1f}s waiting for {e.description}]",
            file=sys.stderr,
        )
        return 1
    except Exception as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


async def _command(monitor: SerialLineMonitor, text: str, json_name: Optional[str], timeout_ms: int):
    async with monitor:
        if json_name:
            args = text[len(json_name):].strip() if text.startswith(json_name) else text
            return await monitor.json_command(json_name, args, timeout_ms)
        await monitor.command(text)
        return None


def command_command(args) -> int:
    """Send a console command, optionally printing its JSON response."""
    try:
        response = asyncio.run(
            _command(create_monitor(args), args.console_command, args.json, args.timeout)
        )
        if response is not None:
            print(json.dumps(response))
        return 0
    except Exception as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_list(args) -> int:
    """List available serial ports."""
    ports = SerialConnectionManager.list_available_ports()
    if not ports:
        print("No serial ports found.")
    else:
        print("Available serial ports:")
        for p in ports:
            print(f"  {p}")
    return 0


def _add_port_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--serial-port", type=str, default=SERIAL_MONITOR_PORT,
        help=f"Serial port path (default: {SERIAL_MONITOR_PORT}, "
             f"or $SERIAL_MONITOR_PORT)",
    )
    parser.add_argument(
        "--baud-rate", type=int, default=SERIAL_BAUD_RATE,
        help=f"Baud rate (default: {SERIAL_BAUD_RATE})",
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help='JSON config file with a "serialPort" key. Overrides --serial-port.',
    )
    parser.add_argument(
        "--xonxoff", action="store_true",
        help="Enable software flow control (XON/XOFF)",
    )
    parser.add_argument(
        "--rtscts", action="store_true",
        help="Enable hardware (RTS/CTS) flow control",
    )
    parser.add_argument(
        "--dsrdtr", action="store_true",
        help="Enable hardware (DSR/DTR) flow control",
    )


def main() -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Serial Line Monitor - watch and wait for device console lines"
    )
    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    # Watch
    watch_parser = subparsers.add_parser("watch", help="Print console lines as they arrive")
    _add_port_arguments(watch_parser)
    watch_parser.add_argument(
        "--duration", type=int, default=0,
        help="Stop after this many milliseconds (default: 0, run until Ctrl+C)",
    )
    watch_parser.set_defaults(func=command_watch)

    # Wait
    wait_parser = subparsers.add_parser("wait", help="Wait for a matching console line")
    _add_port_arguments(wait_parser)
    match_group = wait_parser.add_mutually_exclusive_group()
    match_group.add_argument("--equals", type=str, default=None, help="Line equals this text")
    match_group.add_argument("--contains", type=str, default=None, help="Line contains this text")
    match_group.add_argument("--regex", type=str, default=None, help="Line matches this regex")
    match_group.add_argument(
        "--message", type=str, default=None,
        help="Log message (after the '[app] INFO:' prefix) equals this text",
    )
    wait_parser.add_argument(
        "--timeout", type=int, default=DEFAULT_WAIT_TIMEOUT_MS,
        help=f"Timeout in milliseconds, 0 for none (default: {DEFAULT_WAIT_TIMEOUT_MS})",
    )
    wait_parser.add_argument(
        "--send", type=str, default=None,
        help="Console command to send before waiting",
    )
    wait_parser.set_defaults(func=command_wait)

    # Command
    command_parser = subparsers.add_parser("command", help="Send a console command")
    _add_port_arguments(command_parser)
    command_parser.add_argument(
        "console_command", metavar="COMMAND",
        help="Command to send over the serial console",
    )
    command_parser.add_argument(
        "--json", type=str, default=None, metavar="NAME",
        help='Wait for a {"NAME": ...} response line and print it as JSON',
    )
    command_parser.add_argument(
        "--timeout", type=int, default=COMMAND_RESPONSE_TIMEOUT_MS,
        help=f"Response timeout in milliseconds for --json "
             f"(default: {COMMAND_RESPONSE_TIMEOUT_MS})",
    )
    command_parser.set_defaults(func=command_command)

    # List
    list_parser = subparsers.add_parser("list", help="List available serial ports")
    list_parser.set_defaults(func=command_list)

    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
