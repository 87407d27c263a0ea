"""Compound waits used by device test scenarios."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import List, Optional

from tqdm import tqdm

from . import DEFAULT_WAIT_TIMEOUT_MS
from .exceptions import LineTimeoutError
from .monitor import SerialLineMonitor
from .predicates import LineMatcher, line_matches

logger = logging.getLogger("serial_line_monitor.scenario")

PUBLISHING_TEMPLATE = "publishing counter={}"


def publishing_line(counter: int, template: str = PUBLISHING_TEMPLATE) -> str:
    """Text the firmware logs when it publishes event *counter*."""
    return template.format(counter)


def counter_line(counter: int, template: str = PUBLISHING_TEMPLATE) -> LineMatcher:
    """Match the line for *counter* but not for a longer number (3 vs 30)."""
    return line_matches(re.escape(publishing_line(counter, template)) + r"(?!\d)")


async def wait_for_counter_sequence(
    monitor: SerialLineMonitor,
    start: int,
    count: int,
    template: str = PUBLISHING_TEMPLATE,
    timeout_ms: Optional[int] = DEFAULT_WAIT_TIMEOUT_MS,
    show_progress: bool = False,
) -> List[str]:
    """Wait for ``count`` consecutive counter lines starting at ``start``.

    Each counter value is awaited in turn, so values already in the history
    are taken from there.  All waits share one overall deadline.

    Args:
        monitor: The running monitor.
        start: First counter value.
        count: Number of consecutive values.
        template: ``str.format`` template producing the text to look for.
        timeout_ms: Overall deadline, ``None`` for no deadline.
        show_progress: Display a tqdm progress bar.

    Returns:
        The matched lines, in counter order.

    Raises:
        LineTimeoutError: If the sequence did not complete in time.
    """
    if count <= 0:
        raise ValueError(f"Invalid counter sequence length {count}; must be positive.")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000.0 if timeout_ms is not None else None
    matched: List[str] = []

    logger.info(
        "[SCENARIO] Waiting for %d counter line(s) from %d (%r, timeout=%s)",
        count, start, template,
        f"{timeout_ms} ms" if timeout_ms is not None else "none",
    )

    description = (
        f"counter sequence {template.format(start)!r}..{template.format(start + count - 1)!r}"
    )
    started_at = loop.time()

    def sequence_timeout(counter: int) -> LineTimeoutError:
        return LineTimeoutError(
            f"Timeout ({timeout_ms} ms) expired waiting for {description}: "
            f"counter {counter} not seen ({len(matched)}/{count} matched)",
            description=description,
            timeout_ms=timeout_ms,
            elapsed_seconds=loop.time() - started_at,
        )

    with tqdm(total=count, desc="counter sequence", unit="line", disable=not show_progress) as bar:
        for counter in range(start, start + count):
            remaining_ms = None
            if deadline is not None:
                remaining_ms = int((deadline - loop.time()) * 1000)
                if remaining_ms <= 0:
                    raise sequence_timeout(counter)
            try:
                line = await monitor.wait(counter_line(counter, template), remaining_ms)
            except LineTimeoutError as exc:
                raise sequence_timeout(counter) from exc
            matched.append(line)
            bar.update(1)

    logger.info("[SCENARIO] Counter sequence %d..%d complete", start, start + count - 1)
    return matched
