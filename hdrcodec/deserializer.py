"""Reading histograms back from the V2 and V2 + DEFLATE binary formats.

Both formats start with a cookie that identifies them, so a single
:class:`Deserializer` handles either one.
"""

from __future__ import annotations

import enum
import io
import struct
import zlib
from dataclasses import dataclass, field
from typing import BinaryIO

from .v2 import V2_COMPRESSED_COOKIE, V2_COOKIE
from .varint import U64_MAX, varint_read_slice, zigzag_decode

__all__ = [
    "DeserializeErrorKind",
    "DeserializeError",
    "DecodedHistogram",
    "Deserializer",
]

_U32 = struct.Struct(">I")
_LENGTH_AND_OFFSET = struct.Struct(">II")
_DIGITS = struct.Struct(">I")
_BOUNDS_AND_RATIO = struct.Struct(">QQd")

_MAX_SIGNIFICANT_DIGITS = 5
_MAX_DIGITS_FIELD = 0xFF


class DeserializeErrorKind(enum.Enum):
    """Why deserialization failed."""

    IO_ERROR = "An i/o operation failed"
    INVALID_COOKIE = "The cookie (first 4 bytes) did not match that for any supported format"
    UNSUPPORTED_FEATURE = "The histogram uses features that this implementation doesn't support"
    UNSUITABLE_COUNTER_TYPE = "A count exceeded what can be represented in the chosen counter type"
    INVALID_PARAMETERS = (
        "The serialized parameters were invalid(e.g. lowest value, highest value, etc)"
    )
    USIZE_TYPE_TOO_SMALL = (
        "The current system's pointer width cannot represent the encoded histogram"
    )
    ENCODED_ARRAY_TOO_LONG = (
        "The encoded array is longer than it should be for the histogram's value range"
    )


class DeserializeError(Exception):
    """Raised when an encoded histogram cannot be read."""

    def __init__(self, kind: DeserializeErrorKind, detail: object = None) -> None:
        self.kind = kind
        message = kind.value if detail is None else f"{kind.value}: {detail}"
        super().__init__(message)


@dataclass(frozen=True)
class _Layout:
    """Bucket geometry implied by a histogram's bounds and precision."""

    unit_magnitude: int
    sub_bucket_half_count_magnitude: int
    sub_bucket_count: int
    bucket_count: int

    @classmethod
    def for_bounds(cls, low: int, high: int, digits: int) -> _Layout:
        if low < 1:
            raise ValueError("lowest discernible value must be at least 1")
        if high < 2 * low:
            raise ValueError("highest trackable value must be at least twice the lowest")
        if digits > _MAX_SIGNIFICANT_DIGITS:
            raise ValueError("significant value digits must be at most 5")

        single_unit_limit = 2 * 10**digits
        unit_magnitude = low.bit_length() - 1
        sub_bucket_count_magnitude = (single_unit_limit - 1).bit_length()
        half_magnitude = max(sub_bucket_count_magnitude, 1) - 1
        if unit_magnitude + half_magnitude + 1 > 63:
            raise ValueError("precision cannot be represented beyond the lowest value")
        sub_bucket_count = 1 << (half_magnitude + 1)

        smallest_untrackable = sub_bucket_count << unit_magnitude
        buckets = 1
        while smallest_untrackable <= high:
            if smallest_untrackable > U64_MAX // 2:
                buckets += 1
                break
            smallest_untrackable <<= 1
            buckets += 1

        return cls(unit_magnitude, half_magnitude, sub_bucket_count, buckets)

    @property
    def sub_bucket_half_count(self) -> int:
        return self.sub_bucket_count // 2

    @property
    def counts_len(self) -> int:
        return (self.bucket_count + 1) * self.sub_bucket_half_count

    @property
    def unit_magnitude_mask(self) -> int:
        return (1 << self.unit_magnitude) - 1

    def value_for(self, index: int) -> int:
        bucket_index = (index >> self.sub_bucket_half_count_magnitude) - 1
        sub_bucket_index = (index & (self.sub_bucket_half_count - 1)) + self.sub_bucket_half_count
        if bucket_index < 0:
            sub_bucket_index -= self.sub_bucket_half_count
            bucket_index = 0
        return sub_bucket_index << (bucket_index + self.unit_magnitude)

    def _bucket_for(self, value: int) -> int:
        mask = (self.sub_bucket_count - 1) << self.unit_magnitude
        return (
            (value | mask).bit_length()
            - self.unit_magnitude
            - self.sub_bucket_half_count_magnitude
            - 1
        )

    def lowest_equivalent(self, value: int) -> int:
        bucket = self._bucket_for(value)
        sub_bucket = value >> (bucket + self.unit_magnitude)
        return sub_bucket << (bucket + self.unit_magnitude)

    def highest_equivalent(self, value: int) -> int:
        if value == U64_MAX:
            return U64_MAX
        bucket = self._bucket_for(value)
        sub_bucket = value >> (bucket + self.unit_magnitude)
        adjust = 1 if sub_bucket >= self.sub_bucket_count else 0
        range_size = 1 << (self.unit_magnitude + bucket + adjust)
        return min(self.lowest_equivalent(value) + range_size, U64_MAX) - 1


@dataclass
class DecodedHistogram:
    """A histogram restored from its binary form.

    ``counts`` is the full counts array for the histogram's value range;
    ``total_count``, ``max_value`` and ``min_non_zero_value`` are recomputed
    from it. ``min_non_zero_value`` stays at 2^64 - 1 when nothing above the
    first slot was recorded.
    """

    lowest_discernible_value: int
    highest_trackable_value: int
    significant_value_digits: int
    counts: list[int]
    total_count: int = 0
    max_value: int = 0
    min_non_zero_value: int = U64_MAX
    _layout: _Layout = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._layout = _Layout.for_bounds(
            self.lowest_discernible_value,
            self.highest_trackable_value,
            self.significant_value_digits,
        )

    @property
    def bucket_count(self) -> int:
        return self._layout.bucket_count

    @property
    def sub_bucket_count(self) -> int:
        return self._layout.sub_bucket_count

    @property
    def sub_bucket_half_count_magnitude(self) -> int:
        return self._layout.sub_bucket_half_count_magnitude

    @property
    def unit_magnitude(self) -> int:
        return self._layout.unit_magnitude

    def highest_equivalent(self, value: int) -> int:
        """Largest value that shares a count slot with ``value``."""
        return self._layout.highest_equivalent(value)

    def lowest_equivalent(self, value: int) -> int:
        """Smallest value that shares a count slot with ``value``."""
        return self._layout.lowest_equivalent(value)

    def _restat(self, total: int, min_index: int | None, max_index: int | None) -> None:
        layout = self._layout
        if max_index is not None:
            top = layout.highest_equivalent(layout.value_for(max_index))
            top |= layout.unit_magnitude_mask
            self.max_value = max(self.max_value, top)
        if min_index is not None:
            bottom = layout.value_for(min_index)
            if bottom > layout.unit_magnitude_mask:
                bottom &= ~layout.unit_magnitude_mask
                self.min_non_zero_value = min(self.min_non_zero_value, bottom)
        self.total_count = total


def _read_exact(reader: BinaryIO, size: int) -> bytes:
    try:
        data = reader.read(size)
    except OSError as exc:
        raise DeserializeError(DeserializeErrorKind.IO_ERROR, exc) from exc
    if data is None or len(data) < size:
        raise DeserializeError(DeserializeErrorKind.IO_ERROR, "failed to fill whole buffer")
    return bytes(data)


class Deserializer:
    """Reads histograms in any of the supported binary formats.

    ``max_count`` is the largest count a single slot may hold; larger counts
    are rejected, as they would be by a narrower counter type.
    """

    def __init__(self, max_count: int = U64_MAX) -> None:
        if not 1 <= max_count <= U64_MAX:
            raise ValueError("max_count must be in 1..2^64 - 1")
        self.max_count = max_count

    def deserialize(self, reader: BinaryIO) -> DecodedHistogram:
        """Read one encoded histogram from ``reader``."""
        (cookie,) = _U32.unpack(_read_exact(reader, _U32.size))
        if cookie == V2_COOKIE:
            return self._deserialize_v2(reader)
        if cookie == V2_COMPRESSED_COOKIE:
            return self._deserialize_v2_compressed(reader)
        raise DeserializeError(DeserializeErrorKind.INVALID_COOKIE)

    def _deserialize_v2_compressed(self, reader: BinaryIO) -> DecodedHistogram:
        (payload_len,) = _U32.unpack(_read_exact(reader, _U32.size))
        compressed = _read_exact(reader, payload_len)
        try:
            inflated = zlib.decompressobj().decompress(compressed)
        except zlib.error as exc:
            raise DeserializeError(DeserializeErrorKind.IO_ERROR, exc) from exc

        inner = io.BytesIO(inflated)
        (inner_cookie,) = _U32.unpack(_read_exact(inner, _U32.size))
        if inner_cookie != V2_COOKIE:
            raise DeserializeError(DeserializeErrorKind.INVALID_COOKIE)
        return self._deserialize_v2(inner)

    def _deserialize_v2(self, reader: BinaryIO) -> DecodedHistogram:
        payload_len, normalizing_offset = _LENGTH_AND_OFFSET.unpack(
            _read_exact(reader, _LENGTH_AND_OFFSET.size)
        )
        if normalizing_offset != 0:
            raise DeserializeError(DeserializeErrorKind.UNSUPPORTED_FEATURE)
        (digits,) = _DIGITS.unpack(_read_exact(reader, _DIGITS.size))
        if digits > _MAX_DIGITS_FIELD:
            raise DeserializeError(DeserializeErrorKind.INVALID_PARAMETERS)
        low, high, ratio = _BOUNDS_AND_RATIO.unpack(_read_exact(reader, _BOUNDS_AND_RATIO.size))
        if ratio != 1.0:
            raise DeserializeError(DeserializeErrorKind.UNSUPPORTED_FEATURE)

        try:
            layout = _Layout.for_bounds(low, high, digits)
        except ValueError as exc:
            raise DeserializeError(DeserializeErrorKind.INVALID_PARAMETERS, exc) from exc

        payload = memoryview(_read_exact(reader, payload_len))
        counts = [0] * layout.counts_len
        total = 0
        min_index: int | None = None
        max_index: int | None = None
        dest = 0
        position = 0

        while position < len(payload):
            try:
                encoded, consumed = varint_read_slice(payload[position:])
            except ValueError as exc:
                raise DeserializeError(DeserializeErrorKind.IO_ERROR, exc) from exc
            position += consumed
            number = zigzag_decode(encoded)

            if number < 0:
                dest += -number
                continue
            if number > self.max_count:
                raise DeserializeError(DeserializeErrorKind.UNSUITABLE_COUNTER_TYPE)
            if number > 0:
                if dest >= len(counts):
                    raise DeserializeError(DeserializeErrorKind.ENCODED_ARRAY_TOO_LONG)
                counts[dest] = number
                total = min(total + number, U64_MAX)
                max_index = dest
                if min_index is None and dest != 0:
                    min_index = dest
            dest += 1

        histogram = DecodedHistogram(low, high, digits, counts)
        histogram._restat(total, min_index, max_index)
        return histogram