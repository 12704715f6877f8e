"""Writing interval logs: a header, then one line per interval histogram.

An interval log is a line-oriented text format. Header lines are comments
(``#...``), optionally including ``#[StartTime: ...]``, ``#[BaseTime: ...]``
and ``#[MaxValueDivisor: ...]`` entries. Each interval line holds an
optional tag, the interval's start timestamp and duration in fractional
seconds, the histogram's (scaled) max value, and the base64-encoded
serialized histogram.
"""

from __future__ import annotations

import base64
import enum
import io
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, BinaryIO, Union

from .deserializer import DeserializeError, Deserializer
from .v2 import V2DeflateSerializeError, V2SerializeError

__all__ = [
    "Duration",
    "Tag",
    "IntervalLogWriterErrorKind",
    "IntervalLogWriterError",
    "IntervalLogWriterBuilder",
    "IntervalLogWriter",
]

_NANOS_PER_SECOND = 1_000_000_000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_DISALLOWED_TAG_CHARS = frozenset(", \r\n")


@dataclass(frozen=True, order=True)
class Duration:
    """A non-negative span of time with nanosecond resolution.

    Nanoseconds of a second or more are carried over into ``seconds``.
    """

    seconds: int
    nanos: int = 0

    def __post_init__(self) -> None:
        if self.seconds < 0 or self.nanos < 0:
            raise ValueError("a duration cannot be negative")
        if self.nanos >= _NANOS_PER_SECOND:
            extra, nanos = divmod(self.nanos, _NANOS_PER_SECOND)
            object.__setattr__(self, "seconds", self.seconds + extra)
            object.__setattr__(self, "nanos", nanos)

    def as_seconds(self) -> float:
        """The duration as fractional seconds."""
        return self.seconds + self.nanos / _NANOS_PER_SECOND


@dataclass(frozen=True)
class Tag:
    """A tag for an interval histogram.

    Tags may not contain ',', '\\r', '\\n' or ' '.
    """

    value: str

    def __post_init__(self) -> None:
        if any(c in _DISALLOWED_TAG_CHARS for c in self.value):
            raise ValueError(f"tag {self.value!r} contains a disallowed character")

    @classmethod
    def _unchecked(cls, value: str) -> Tag:
        tag = object.__new__(cls)
        object.__setattr__(tag, "value", value)
        return tag

    def as_str(self) -> str:
        """The tag's text."""
        return self.value

    def __str__(self) -> str:
        return self.value


Timestamp = Union[datetime, Duration, int, float]


def _timestamp_as_fp_seconds(timestamp: Timestamp) -> float:
    """Seconds since the epoch; negative for times before it."""
    if isinstance(timestamp, Duration):
        return timestamp.as_seconds()
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        delta = timestamp - _EPOCH
        return delta.days * 86_400 + delta.seconds + delta.microseconds / 1_000_000
    if isinstance(timestamp, (int, float)):
        return float(timestamp)
    raise TypeError(f"unsupported timestamp type: {type(timestamp).__name__}")


class IntervalLogWriterErrorKind(enum.Enum):
    """Why writing an interval histogram failed."""

    SERIALIZE_ERROR = "Histogram serialization failed"
    IO_ERROR = "An i/o error occurred"


class IntervalLogWriterError(Exception):
    """Raised when an interval histogram cannot be written."""

    def __init__(self, kind: IntervalLogWriterErrorKind, detail: object) -> None:
        self.kind = kind
        super().__init__(f"{kind.value}: {detail}")


class IntervalLogWriter:
    """Writes comments and interval histograms to an interval log.

    Usually obtained from :meth:`IntervalLogWriterBuilder.begin_log_with`.
    """

    def __init__(self, writer: BinaryIO, serializer: Any, max_value_divisor: float = 1.0) -> None:
        self._writer = writer
        self._serializer = serializer
        self._max_value_divisor = max_value_divisor

    def _write_text(self, text: str) -> None:
        self._writer.write(text.encode("utf-8"))

    def write_comment(self, text: str) -> None:
        """Write a comment; text containing '\\n' becomes several comment lines."""
        self._write_text("".join(f"#{line}\n" for line in text.split("\n")))

    def write_histogram(
        self,
        histogram: Any,
        start_timestamp: Duration,
        duration: Duration,
        tag: Tag | str | None = None,
    ) -> None:
        """Write one interval histogram line.

        ``start_timestamp`` is seconds since the epoch, or since the log's
        StartTime/BaseTime if one is used; ``duration`` is the interval length.
        """
        if isinstance(tag, str):
            tag = Tag(tag)

        buffer = io.BytesIO()
        try:
            self._serializer.serialize(histogram, buffer)
        except (V2SerializeError, V2DeflateSerializeError, ValueError) as exc:
            raise IntervalLogWriterError(IntervalLogWriterErrorKind.SERIALIZE_ERROR, exc) from exc
        encoded = buffer.getvalue()

        try:
            decoded = Deserializer().deserialize(io.BytesIO(encoded))
        except DeserializeError as exc:
            raise IntervalLogWriterError(IntervalLogWriterErrorKind.SERIALIZE_ERROR, exc) from exc
        max_value = decoded.highest_equivalent(decoded.max_value) if decoded.max_value else 0

        prefix = f"Tag={tag.as_str()}," if tag is not None else ""
        line = (
            f"{prefix}{start_timestamp.as_seconds():.3f},{duration.as_seconds():.3f},"
            f"{max_value / self._max_value_divisor:.3f},"
            f"{base64.b64encode(encoded).decode('ascii')}\n"
        )
        try:
            self._write_text(line)
        except OSError as exc:
            raise IntervalLogWriterError(IntervalLogWriterErrorKind.IO_ERROR, exc) from exc


class IntervalLogWriterBuilder:
    """Collects header comments and timestamps, then starts a log."""

    def __init__(self) -> None:
        self._comments: list[str] = []
        self._start_time: float | None = None
        self._base_time: float | None = None
        self._max_value_divisor = 1.0

    def add_comment(self, text: str) -> IntervalLogWriterBuilder:
        """Add a header comment; '\\n' splits it into several lines."""
        self._comments.append(text)
        return self

    def with_start_time(self, timestamp: Timestamp) -> IntervalLogWriterBuilder:
        """Set the StartTime; only the most recent value is written."""
        self._start_time = _timestamp_as_fp_seconds(timestamp)
        return self

    def with_base_time(self, timestamp: Timestamp) -> IntervalLogWriterBuilder:
        """Set the BaseTime; only the most recent value is written."""
        self._base_time = _timestamp_as_fp_seconds(timestamp)
        return self

    def with_max_value_divisor(self, divisor: float) -> IntervalLogWriterBuilder:
        """Set the divisor applied to each interval's max value (default 1.0)."""
        self._max_value_divisor = float(divisor)
        return self

    def begin_log_with(self, writer: BinaryIO, serializer: Any) -> IntervalLogWriter:
        """Write the configured headers to ``writer`` and return a log writer."""
        log_writer = IntervalLogWriter(writer, serializer, self._max_value_divisor)

        for comment in self._comments:
            log_writer.write_comment(comment)
        if self._start_time is not None:
            log_writer._write_text(
                f"#[StartTime: {self._start_time:.3f} (seconds since epoch)]\n"
            )
        if self._base_time is not None:
            log_writer._write_text(f"#[BaseTime: {self._base_time:.3f} (seconds since epoch)]\n")
        if self._max_value_divisor != 1.0:
            log_writer._write_text(f"#[MaxValueDivisor: {self._max_value_divisor:.3f}]\n")

        return log_writer