"""Parsing interval logs into their entries.

Parsing is lazy about histograms: each interval keeps its base64 text, so
the log can be scanned and filtered cheaply. Decode the histograms you need
with base64 and a :class:`~hdrcodec.deserializer.Deserializer`.

Comment lines and the CSV legend line are skipped. The ``StartTime`` and
``BaseTime`` header comments are reported as entries, as often as they
appear.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Callable, Union

from .log_writer import Duration, Tag
from .varint import U64_MAX

__all__ = [
    "StartTime",
    "BaseTime",
    "IntervalLogHistogram",
    "LogEntry",
    "LogIteratorError",
    "IntervalLogIterator",
    "parse_fract_sec_duration",
    "parse_start_time",
    "parse_base_time",
    "parse_interval_hist",
    "parse_comment_line",
    "parse_legend",
]

_NANOS_DIGITS = 9
_SECONDS_RE = re.compile(rb"\+?[0-9]+")
_DIGITS_RE = re.compile(rb"[0-9]+")
_FLOAT_RE = re.compile(rb"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_FLOAT_SPECIAL_RE = re.compile(rb"[+-]?(?:infinity|inf|nan)", re.IGNORECASE)


@dataclass(frozen=True)
class StartTime:
    """A StartTime header: seconds since the epoch."""

    timestamp: Duration


@dataclass(frozen=True)
class BaseTime:
    """A BaseTime header: seconds since the epoch."""

    timestamp: Duration


@dataclass(frozen=True)
class IntervalLogHistogram:
    """One interval histogram line, with the histogram still base64-encoded."""

    tag: Tag | None
    start_timestamp: Duration
    duration: Duration
    max: float
    encoded_histogram: str


LogEntry = Union[StartTime, BaseTime, IntervalLogHistogram]


class LogIteratorError(Exception):
    """Raised when a line of the log cannot be parsed."""

    def __init__(self, offset: int) -> None:
        self.offset = offset
        super().__init__(f"Parsing failed at offset {offset}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LogIteratorError):
            return NotImplemented
        return self.offset == other.offset

    def __hash__(self) -> int:
        return hash(self.offset)


class _NoMatch(ValueError):
    """The input does not match the expected syntax."""


def _literal(data: bytes, pos: int, literal: bytes) -> int:
    if not data.startswith(literal, pos):
        raise _NoMatch(f"expected {literal!r} at offset {pos}")
    return pos + len(literal)


def _take_until(data: bytes, pos: int, needle: bytes) -> tuple[bytes, int]:
    index = data.find(needle, pos)
    if index < 0:
        raise _NoMatch(f"{needle!r} not found after offset {pos}")
    return data[pos:index], index


def _skip_line(data: bytes, pos: int) -> int:
    """Skip past the next newline."""
    _, pos = _take_until(data, pos, b"\n")
    return pos + 1


def _fract_sec_duration(data: bytes, pos: int) -> tuple[Duration, int]:
    secs_bytes, pos = _take_until(data, pos, b".")
    if not _SECONDS_RE.fullmatch(secs_bytes):
        raise _NoMatch(f"invalid seconds {secs_bytes!r}")
    secs = int(secs_bytes)
    if secs > U64_MAX:
        raise _NoMatch(f"seconds {secs} out of range")
    pos = _literal(data, pos, b".")

    match = _DIGITS_RE.match(data, pos)
    if match is None:
        raise _NoMatch(f"expected fractional digits at offset {pos}")
    fraction = match.group()
    # only nanosecond precision is kept; extra digits are consumed and dropped
    nanos = int(fraction[:_NANOS_DIGITS].ljust(_NANOS_DIGITS, b"0"))
    return Duration(secs, nanos), match.end()


def _double(data: bytes, pos: int) -> tuple[float, int]:
    match = _FLOAT_SPECIAL_RE.match(data, pos) or _FLOAT_RE.match(data, pos)
    if match is None:
        raise _NoMatch(f"expected a number at offset {pos}")
    return float(match.group()), match.end()


def _header_time(data: bytes, pos: int, prefix: bytes) -> tuple[Duration, int]:
    pos = _literal(data, pos, prefix)
    duration, pos = _fract_sec_duration(data, pos)
    pos = _literal(data, pos, b" ")
    return duration, _skip_line(data, pos)


def _start_time(data: bytes, pos: int) -> tuple[StartTime, int]:
    duration, pos = _header_time(data, pos, b"#[StartTime: ")
    return StartTime(duration), pos


def _base_time(data: bytes, pos: int) -> tuple[BaseTime, int]:
    duration, pos = _header_time(data, pos, b"#[BaseTime: ")
    return BaseTime(duration), pos


def _tag(data: bytes, pos: int) -> tuple[Tag, int]:
    pos = _literal(data, pos, b"Tag=")
    raw, pos = _take_until(data, pos, b",")
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise _NoMatch("tag is not valid UTF-8") from exc
    return Tag._unchecked(text), pos + 1


def _interval_hist(data: bytes, pos: int) -> tuple[IntervalLogHistogram, int]:
    try:
        tag, pos = _tag(data, pos)
    except _NoMatch:
        tag = None
    start_timestamp, pos = _fract_sec_duration(data, pos)
    pos = _literal(data, pos, b",")
    duration, pos = _fract_sec_duration(data, pos)
    pos = _literal(data, pos, b",")
    max_value, pos = _double(data, pos)
    pos = _literal(data, pos, b",")
    raw, pos = _take_until(data, pos, b"\n")
    try:
        encoded = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise _NoMatch("encoded histogram is not valid UTF-8") from exc
    entry = IntervalLogHistogram(
        tag=tag,
        start_timestamp=start_timestamp,
        duration=duration,
        max=max_value,
        encoded_histogram=encoded.rstrip("\r"),
    )
    return entry, pos + 1


def _comment_line(data: bytes, pos: int) -> int:
    pos = _literal(data, pos, b"#")
    return _skip_line(data, pos)


def _legend(data: bytes, pos: int) -> int:
    pos = _literal(data, pos, b'"StartTimestamp"')
    return _skip_line(data, pos)


_ENTRY_PARSERS: tuple[Callable[[bytes, int], tuple[LogEntry, int]], ...] = (
    _start_time,
    _base_time,
    _interval_hist,
)
_IGNORED_PARSERS: tuple[Callable[[bytes, int], int], ...] = (_comment_line, _legend)


def parse_fract_sec_duration(data: bytes) -> tuple[Duration, bytes]:
    """Parse ``<secs>.<fraction>``; return the duration and the remaining input.

    Raises ValueError if the input does not start with such a number.
    """
    data = bytes(data)
    duration, pos = _fract_sec_duration(data, 0)
    return duration, data[pos:]


def parse_start_time(data: bytes) -> tuple[StartTime, bytes]:
    """Parse a ``#[StartTime: ...]`` line; return the entry and the rest."""
    data = bytes(data)
    entry, pos = _start_time(data, 0)
    return entry, data[pos:]


def parse_base_time(data: bytes) -> tuple[BaseTime, bytes]:
    """Parse a ``#[BaseTime: ...]`` line; return the entry and the rest."""
    data = bytes(data)
    entry, pos = _base_time(data, 0)
    return entry, data[pos:]


def parse_interval_hist(data: bytes) -> tuple[IntervalLogHistogram, bytes]:
    """Parse an interval histogram line; return the entry and the rest."""
    data = bytes(data)
    entry, pos = _interval_hist(data, 0)
    return entry, data[pos:]


def parse_comment_line(data: bytes) -> bytes:
    """Skip a ``#`` comment line and return the rest."""
    data = bytes(data)
    return data[_comment_line(data, 0):]


def parse_legend(data: bytes) -> bytes:
    """Skip the ``"StartTimestamp",...`` legend line and return the rest."""
    data = bytes(data)
    return data[_legend(data, 0):]


class IntervalLogIterator(Iterator[LogEntry]):
    """Iterate over the entries of an interval log given as UTF-8 bytes.

    Comments and the legend line are skipped. A line that cannot be parsed
    raises :class:`LogIteratorError` carrying its offset; iteration ends
    after that.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0
        self._ended = False

    def __iter__(self) -> IntervalLogIterator:
        return self

    def __next__(self) -> LogEntry:
        data = self._data
        while not self._ended:
            if self._pos >= len(data):
                self._ended = True
                break

            # header entries come first, or the plain comment parser would take them
            for parser in _ENTRY_PARSERS:
                try:
                    entry, self._pos = parser(data, self._pos)
                except _NoMatch:
                    continue
                return entry

            for skipper in _IGNORED_PARSERS:
                try:
                    self._pos = skipper(data, self._pos)
                except _NoMatch:
                    continue
                break
            else:
                self._ended = True
                raise LogIteratorError(self._pos)
        raise StopIteration