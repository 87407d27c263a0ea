"""Line predicates with human-readable descriptions.

Every factory returns a ``LineMatcher``: a plain callable ``line -> bool``
that also carries a ``description`` used in log messages and timeout
errors.  Any other callable can be used as a predicate too; ``describe()``
falls back to its name.

Device OS firmware logs through ``Log.info`` in the form::

    0000012345 [app] INFO: publishing counter=3

``message_is`` and ``message_contains`` compare only the message part of
such lines, and fall back to the whole line when it has no log prefix.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Callable, Optional, Pattern, Union

from .types import LinePredicate

_DEVICE_LOG_RE = re.compile(
    r"^(?P<millis>\d+)\s+\[(?P<category>[^\]]*)\]\s+(?P<level>[A-Z]+):\s?(?P<message>.*)$"
)


@dataclasses.dataclass(frozen=True)
class DeviceLogLine:
    """A console line split into its Device OS log fields."""
    millis: int
    category: str
    level: str
    message: str


def parse_device_log_line(line: str) -> Optional[DeviceLogLine]:
    """Split a Device OS log line, or return ``None`` if it has no prefix."""
    match = _DEVICE_LOG_RE.match(line)
    if match is None:
        return None
    return DeviceLogLine(
        millis=int(match.group("millis")),
        category=match.group("category"),
        level=match.group("level"),
        message=match.group("message").strip(),
    )


def _message_of(line: str) -> str:
    parsed = parse_device_log_line(line)
    return parsed.message if parsed is not None else line


class LineMatcher:
    """Callable predicate with a description."""

    def __init__(self, test: Callable[[str], bool], description: str) -> None:
        self._test = test
        self.description = description

    def __call__(self, line: str) -> bool:
        return bool(self._test(line))

    def __repr__(self) -> str:
        return f"<LineMatcher {self.description}>"


def describe(predicate: LinePredicate) -> str:
    """Return a readable description of any predicate."""
    description = getattr(predicate, "description", None)
    if isinstance(description, str):
        return description
    name = getattr(predicate, "__name__", None)
    if name and name != "<lambda>":
        return name
    return repr(predicate)


def line_equals(text: str) -> LineMatcher:
    return LineMatcher(lambda line: line == text, f"line == {text!r}")


def line_contains(text: str) -> LineMatcher:
    return LineMatcher(lambda line: text in line, f"line contains {text!r}")


def line_matches(pattern: Union[str, Pattern[str]]) -> LineMatcher:
    """Match lines where the regular expression is found anywhere."""
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    return LineMatcher(
        lambda line: regex.search(line) is not None,
        f"line matches /{regex.pattern}/",
    )


def message_is(text: str) -> LineMatcher:
    return LineMatcher(lambda line: _message_of(line) == text, f"message == {text!r}")


def message_contains(text: str) -> LineMatcher:
    return LineMatcher(lambda line: text in _message_of(line), f"message contains {text!r}")


def all_of(*predicates: LinePredicate) -> LineMatcher:
    if not predicates:
        raise ValueError("all_of() needs at least one predicate")
    return LineMatcher(
        lambda line: all(p(line) for p in predicates),
        "(" + " and ".join(describe(p) for p in predicates) + ")",
    )


def any_of(*predicates: LinePredicate) -> LineMatcher:
    if not predicates:
        raise ValueError("any_of() needs at least one predicate")
    return LineMatcher(
        lambda line: any(p(line) for p in predicates),
        "(" + " or ".join(describe(p) for p in predicates) + ")",
    )
