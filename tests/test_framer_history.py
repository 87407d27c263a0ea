"""
Line framing, line history and predicate tests.

Pure in-memory tests — no serial port needed.

Run with full visibility:
    pytest tests/test_framer_history.py -v -s
"""

from __future__ import annotations

import pytest

try:
    from typeguard import TypeCheckError
    _TYPEGUARD_ERRORS = (TypeError, TypeCheckError)
except ImportError:
    _TYPEGUARD_ERRORS = (TypeError,)

from serial_line_monitor.framer import LineFramer
from serial_line_monitor.history import LineHistory
from serial_line_monitor.predicates import (
    DeviceLogLine,
    all_of,
    any_of,
    describe,
    line_contains,
    line_equals,
    line_matches,
    message_contains,
    message_is,
    parse_device_log_line,
)


def _report(label, detail=""):
    # type: (str, str) -> None
    if detail:
        print("  [{}] {}".format(label, detail))
    else:
        print("  [{}]".format(label))


def _frame_all(chunks):
    # type: (list) -> list
    framer = LineFramer()
    lines = []
    for chunk in chunks:
        lines.extend(framer.ingest(chunk))
    return lines


_STREAM = (
    b"0000001000 [app] INFO: booting\r\n"
    b"\r\n"
    b"   \n"
    b"0000002000 [app] INFO: Cloud connected\r\n"
    b"temp=21.5\xc2\xb0C\n"
    b"publishing counter=0\n"
    b"tail without newline"
)

_EXPECTED = [
    "0000001000 [app] INFO: booting",
    "0000002000 [app] INFO: Cloud connected",
    "temp=21.5°C",
    "publishing counter=0",
]


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Line Framer
# ═══════════════════════════════════════════════════════════════════════════

class TestLineFramer:
    """Byte chunks are reassembled into trimmed, non-empty lines."""

    def test_single_chunk(self):
        # type: () -> None
        _report("TEST", "Whole stream in one chunk")
        framer = LineFramer()
        lines = framer.ingest(_STREAM)
        assert lines == _EXPECTED
        assert framer.partial == "tail without newline"
        _report("PASS", "{} lines, partial kept".format(len(lines)))

    def test_byte_by_byte_split(self):
        # type: () -> None
        _report("TEST", "Stream delivered one byte at a time")
        chunks = [_STREAM[i:i + 1] for i in range(len(_STREAM))]
        assert _frame_all(chunks) == _EXPECTED
        _report("PASS", "Same lines as the single chunk")

    @pytest.mark.parametrize("size", [2, 3, 7, 16, 33])
    def test_fixed_size_splits(self, size):
        # type: (int) -> None
        chunks = [_STREAM[i:i + size] for i in range(0, len(_STREAM), size)]
        assert _frame_all(chunks) == _EXPECTED

    def test_multibyte_character_split_across_chunks(self):
        # type: () -> None
        _report("TEST", "UTF-8 degree sign split between two chunks")
        framer = LineFramer()
        assert framer.ingest(b"21.5\xc2") == []
        assert framer.ingest(b"\xb0C\n") == ["21.5°C"]
        _report("PASS", "Decoded intact")

    def test_no_newline_grows_partial(self):
        # type: () -> None
        framer = LineFramer()
        assert framer.ingest(b"abc") == []
        assert framer.ingest(b"def") == []
        assert framer.partial == "abcdef"
        assert framer.ingest(b"\n") == ["abcdef"]
        assert framer.partial == ""

    def test_chunk_ending_with_newline_resets_partial(self):
        # type: () -> None
        framer = LineFramer()
        assert framer.ingest(b"one\ntwo\n") == ["one", "two"]
        assert framer.partial == ""

    def test_remainder_after_last_newline_kept(self):
        # type: () -> None
        framer = LineFramer()
        assert framer.ingest(b"one\ntwo\nthr") == ["one", "two"]
        assert framer.partial == "thr"
        assert framer.ingest(b"ee\n") == ["three"]

    def test_invalid_bytes_are_opaque_text(self):
        # type: () -> None
        _report("TEST", "Undecodable bytes do not raise")
        lines = LineFramer().ingest(b"bad \xff\xfe byte\n")
        assert len(lines) == 1
        assert lines[0].startswith("bad ")
        assert lines[0].endswith(" byte")
        _report("PASS", repr(lines[0]))

    def test_bytearray_accepted(self):
        # type: () -> None
        assert LineFramer().ingest(bytearray(b"x\n")) == ["x"]

    def test_rejects_str(self):
        # type: () -> None
        with pytest.raises(_TYPEGUARD_ERRORS):
            LineFramer().ingest("not bytes\n")  # type: ignore[arg-type]


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Line History
# ═══════════════════════════════════════════════════════════════════════════

class TestLineHistory:
    """Append-only, restartable, predicate-scannable history."""

    def _history(self, *lines):
        # type: (*str) -> LineHistory
        history = LineHistory()
        for line in lines:
            history.append(line)
        return history

    def test_scan_all_in_arrival_order(self):
        # type: () -> None
        history = self._history("X1", "X2", "X3")
        assert list(history.scan(lambda line: True)) == ["X1", "X2", "X3"]

    def test_scan_is_restartable(self):
        # type: () -> None
        _report("TEST", "Two scans return identical results")
        history = self._history("a1", "b1", "a2")
        first = list(history.scan(line_contains("a")))
        second = list(history.scan(line_contains("a")))
        assert first == second == ["a1", "a2"]
        _report("PASS", "Restartable")

    def test_scan_is_lazy(self):
        # type: () -> None
        calls = []

        def predicate(line):
            # type: (str) -> bool
            calls.append(line)
            return True

        history = self._history("1", "2", "3")
        iterator = history.scan(predicate)
        assert calls == []
        assert next(iterator) == "1"
        assert calls == ["1"]

    def test_scan_ignores_lines_appended_during_iteration(self):
        # type: () -> None
        history = self._history("1", "2")
        seen = []
        for line in history.scan(lambda line: True):
            seen.append(line)
            history.append("late")
        assert seen == ["1", "2"]
        assert len(history) == 4

    def test_scan_from_mark(self):
        # type: () -> None
        history = self._history("old {\"counter\":1}")
        mark = history.mark()
        history.append("new {\"counter\":2}")
        assert list(history.scan(line_contains("counter"), mark)) == ["new {\"counter\":2}"]

    def test_first_returns_earliest(self):
        # type: () -> None
        history = self._history("X1", "X3", "X3 again")
        assert history.first(line_contains("X3")) == "X3"
        assert history.first(line_contains("nope")) is None

    def test_latest(self):
        # type: () -> None
        history = self._history("a", "b", "c")
        assert history.latest() == ["c"]
        assert history.latest(2) == ["b", "c"]
        assert history.latest(10) == ["a", "b", "c"]
        assert history.latest(0) == []

    def test_reset(self):
        # type: () -> None
        history = self._history("a", "b")
        history.reset()
        assert len(history) == 0
        assert list(history) == []
        assert history.first(lambda line: True) is None

    def test_mark_counts_lines_dropped_by_reset(self):
        # type: () -> None
        history = self._history("a", "b", "c")
        mark = history.mark()
        history.reset()
        assert history.mark() == mark == 3
        history.append("ack")
        assert history.first(line_contains("ack"), mark) == "ack"
        assert list(history.scan(lambda line: True, 0)) == ["ack"]
        assert history.first(lambda line: True, history.mark()) is None

    def test_reset_during_scan_keeps_snapshot(self):
        # type: () -> None
        history = self._history("a", "b")
        iterator = history.scan(lambda line: True)
        assert next(iterator) == "a"
        history.reset()
        assert list(iterator) == ["b"]

    def test_append_rejects_non_str(self):
        # type: () -> None
        with pytest.raises(_TYPEGUARD_ERRORS):
            LineHistory().append(42)  # type: ignore[arg-type]


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Predicates
# ═══════════════════════════════════════════════════════════════════════════

class TestPredicates:
    """Predicate factories, descriptions and Device OS log parsing."""

    def test_equals_and_contains(self):
        # type: () -> None
        assert line_equals("B")("B")
        assert not line_equals("B")("BB")
        assert line_contains("X3")("row X3 done")
        assert not line_contains("X3")("X4")

    def test_regex(self):
        # type: () -> None
        predicate = line_matches(r"counter=\d+$")
        assert predicate("publishing counter=12")
        assert not predicate("publishing counter=")
        assert "counter" in predicate.description

    def test_parse_device_log_line(self):
        # type: () -> None
        parsed = parse_device_log_line("0000012345 [app] INFO: Cloud connected")
        assert parsed == DeviceLogLine(
            millis=12345, category="app", level="INFO", message="Cloud connected",
        )
        assert parse_device_log_line("plain text") is None

    def test_message_is(self):
        # type: () -> None
        predicate = message_is("Cloud connected")
        assert predicate("0000012345 [app] INFO: Cloud connected")
        assert predicate("Cloud connected")
        assert not predicate("0000012345 [app] INFO: Cloud connected?")
        assert message_contains("counter=3")("0000000001 [app] INFO: publishing counter=3")

    def test_combinators(self):
        # type: () -> None
        both = all_of(line_contains("a"), line_contains("b"))
        either = any_of(line_equals("x"), line_equals("y"))
        assert both("ab") and not both("a")
        assert either("y") and not either("z")
        assert describe(both) == "(line contains 'a' and line contains 'b')"
        with pytest.raises(ValueError):
            all_of()

    def test_describe_plain_callables(self):
        # type: () -> None
        def is_ready(line):
            # type: (str) -> bool
            return line == "ready"

        assert describe(is_ready) == "is_ready"
        assert describe(line_equals("B")) == "line == 'B'"
        assert "lambda" in describe(lambda line: True)
