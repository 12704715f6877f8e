"""Serialization of histogram counts in the V2 and V2 + DEFLATE binary formats.

A V2 record is a 40-byte big-endian header followed by the counts array,
encoded as zig-zag LEB128-64b9B varints. Runs of two or more zero counts are
collapsed into a single negative number giving the length of the run, and
the array is only written up to the last non-zero count.

The V2 + DEFLATE format wraps a complete V2 record in a zlib stream, behind
its own cookie and length.
"""

from __future__ import annotations

import enum
import itertools
import struct
import zlib
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any, BinaryIO

from .varint import I64_MAX, U64_MAX, varint_write, zigzag_encode

__all__ = [
    "V2_COOKIE",
    "V2_COMPRESSED_COOKIE",
    "V2_HEADER_SIZE",
    "SerializeErrorKind",
    "DeflateSerializeErrorKind",
    "HistogramCounts",
    "V2SerializeError",
    "V2DeflateSerializeError",
    "V2Serializer",
    "V2DeflateSerializer",
    "counts_array_max_encoded_size",
    "encode_counts",
]

V2_COOKIE_BASE = 0x1C84_9303
V2_COMPRESSED_COOKIE_BASE = 0x1C84_9304

V2_COOKIE = V2_COOKIE_BASE | 0x10
V2_COMPRESSED_COOKIE = V2_COMPRESSED_COOKIE_BASE | 0x10

V2_HEADER_SIZE = 40

U32_MAX = (1 << 32) - 1

# cookie, payload length, normalizing offset, digits, lowest, highest, int/double ratio
_V2_HEADER = struct.Struct(">IIIIQQd")
_COMPRESSED_HEADER = struct.Struct(">II")

_MAX_VARINT_BYTES = 9
_DEFLATE_LEVEL = 6


class SerializeErrorKind(enum.Enum):
    """Why V2 serialization failed."""

    COUNT_NOT_SERIALIZABLE = "A count above 2^63 - 1 cannot be zig-zag encoded"
    IO_ERROR = "An i/o operation failed"


class DeflateSerializeErrorKind(enum.Enum):
    """Why V2 + DEFLATE serialization failed."""

    INTERNAL_SERIALIZATION_ERROR = "The underlying serialization failed"
    IO_ERROR = "An i/o operation failed"


class V2SerializeError(Exception):
    """Raised when a histogram cannot be written in the V2 format."""

    def __init__(self, kind: SerializeErrorKind, detail: object = None) -> None:
        self.kind = kind
        message = kind.value if detail is None else f"{kind.value}: {detail}"
        super().__init__(message)


class V2DeflateSerializeError(Exception):
    """Raised when a histogram cannot be written in the V2 + DEFLATE format."""

    def __init__(self, kind: DeflateSerializeErrorKind, detail: object) -> None:
        self.kind = kind
        super().__init__(f"The underlying serialization failed: {detail}")


def _last_nonzero_index(counts: Sequence[int]) -> int:
    """Index of the last non-zero count, or 0 when every count is zero."""
    return next(
        (len(counts) - 1 - offset for offset, count in enumerate(reversed(counts)) if count),
        0,
    )


@dataclass
class HistogramCounts:
    """The parts of a histogram that the V2 format stores.

    ``counts`` is the histogram's full counts array; position ``i`` holds the
    count for the values that share the ``i``-th bucket slot.
    """

    lowest_discernible_value: int
    highest_trackable_value: int
    significant_value_digits: int
    counts: list[int]

    def __post_init__(self) -> None:
        self.counts = list(self.counts)
        if not 0 <= self.lowest_discernible_value <= U64_MAX:
            raise ValueError("lowest discernible value must fit in 64 unsigned bits")
        if not 0 <= self.highest_trackable_value <= U64_MAX:
            raise ValueError("highest trackable value must fit in 64 unsigned bits")
        if not 0 <= self.significant_value_digits <= U32_MAX:
            raise ValueError("significant value digits must fit in 32 unsigned bits")
        if not self.counts:
            raise ValueError("counts array must not be empty")
        if any(not 0 <= count <= U64_MAX for count in self.counts):
            raise ValueError("every count must fit in 64 unsigned bits")

    @property
    def index_limit(self) -> int:
        """Index of the last non-zero count, or 0 when nothing was recorded."""
        return _last_nonzero_index(self.counts)


def counts_array_max_encoded_size(length: int) -> int:
    """Upper bound on the encoded size of a counts array of ``length`` entries."""
    if length < 0:
        raise ValueError(f"length must not be negative, got {length}")
    return length * _MAX_VARINT_BYTES


def _counts_or_zero_runs(counts: Iterable[int]) -> Iterator[int]:
    """Yield counts as they are, with runs of zeros replaced by ``-run_length``."""
    for is_zero, run in itertools.groupby(counts, key=lambda count: count == 0):
        if is_zero:
            run_length = sum(1 for _ in run)
            yield -run_length if run_length > 1 else 0
            continue
        for count in run:
            if count > I64_MAX:
                raise V2SerializeError(SerializeErrorKind.COUNT_NOT_SERIALIZABLE)
            yield count


def encode_counts(histogram: Any) -> bytes:
    """Encode the counts array of ``histogram`` up to its last non-zero count."""
    counts = histogram.counts
    limit = _last_nonzero_index(counts)
    return b"".join(
        varint_write(zigzag_encode(number))
        for number in _counts_or_zero_runs(itertools.islice(counts, limit + 1))
    )


def _encode_v2(histogram: Any) -> bytes:
    payload = encode_counts(histogram)
    try:
        header = _V2_HEADER.pack(
            V2_COOKIE,
            len(payload),
            0,
            histogram.significant_value_digits,
            histogram.lowest_discernible_value,
            histogram.highest_trackable_value,
            1.0,
        )
    except struct.error as exc:
        raise ValueError(f"histogram parameters do not fit the V2 header: {exc}") from exc
    return header + payload


class V2Serializer:
    """Writes histograms in the V2 binary format."""

    def serialize(self, histogram: Any, writer: BinaryIO) -> int:
        """Write ``histogram`` to ``writer`` and return the number of bytes written."""
        data = _encode_v2(histogram)
        try:
            writer.write(data)
        except OSError as exc:
            raise V2SerializeError(SerializeErrorKind.IO_ERROR, exc) from exc
        return len(data)


class V2DeflateSerializer:
    """Writes histograms in the V2 + DEFLATE format.

    The compressed part uses the zlib wrapper around DEFLATE.
    """

    def serialize(self, histogram: Any, writer: BinaryIO) -> int:
        """Write ``histogram`` to ``writer`` and return the number of bytes written."""
        try:
            uncompressed = _encode_v2(histogram)
        except V2SerializeError as exc:
            raise V2DeflateSerializeError(
                DeflateSerializeErrorKind.INTERNAL_SERIALIZATION_ERROR, exc
            ) from exc

        compressed = zlib.compress(uncompressed, _DEFLATE_LEVEL)
        data = _COMPRESSED_HEADER.pack(V2_COMPRESSED_COOKIE, len(compressed)) + compressed
        try:
            writer.write(data)
        except OSError as exc:
            raise V2DeflateSerializeError(DeflateSerializeErrorKind.IO_ERROR, exc) from exc
        return len(data)