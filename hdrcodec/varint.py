"""LEB128-64b9B variable-length integers and zig-zag encoding.

The encoding stores a 64-bit unsigned integer in at most nine bytes: the
first eight bytes each carry seven bits of payload plus a continuation bit,
and the ninth byte, if present, carries the top eight bits as-is.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Iterator
from typing import BinaryIO

U64_MAX = (1 << 64) - 1
I64_MIN = -(1 << 63)
I64_MAX = (1 << 63) - 1

MAX_VARINT_LENGTH = 9

__all__ = [
    "varint_write",
    "varint_read",
    "varint_read_slice",
    "zigzag_encode",
    "zigzag_decode",
    "smallest_number_in_n_byte_varint",
    "largest_number_in_n_byte_varint",
    "random_varint_encoded_length_values",
]


def varint_write(value: int) -> bytes:
    """Encode an unsigned 64-bit integer; the result is 1 to 9 bytes long."""
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"value {value} is outside the unsigned 64-bit range")

    out = bytearray()
    for chunk_index in range(MAX_VARINT_LENGTH - 1):
        chunk = (value >> (7 * chunk_index)) & 0x7F
        if value >> (7 * (chunk_index + 1)) == 0:
            out.append(chunk)
            return bytes(out)
        out.append(0x80 | chunk)
    # the last byte is written whole, without a continuation bit
    out.append(value >> 56)
    return bytes(out)


def _decode(next_byte: Callable[[], int]) -> tuple[int, int]:
    value = 0
    for index in range(MAX_VARINT_LENGTH - 1):
        b = next_byte()
        value |= (b & 0x7F) << (7 * index)
        if not b & 0x80:
            return value, index + 1
    value |= next_byte() << 56
    return value, MAX_VARINT_LENGTH


def varint_read(stream: BinaryIO) -> int:
    """Read one varint from a binary stream.

    Raises EOFError if the stream ends in the middle of the number.
    """

    def next_byte() -> int:
        data = stream.read(1)
        if not data:
            raise EOFError("stream ended inside a varint")
        return data[0]

    value, _ = _decode(next_byte)
    return value


def varint_read_slice(data: bytes) -> tuple[int, int]:
    """Decode a varint at the start of ``data``.

    Returns the decoded number and how many bytes were consumed. Raises
    ValueError if ``data`` ends before the number does.
    """
    view = memoryview(data)
    position = 0

    def next_byte() -> int:
        nonlocal position
        if position >= len(view):
            raise ValueError("data ended inside a varint")
        b = view[position]
        position += 1
        return b

    return _decode(next_byte)


def zigzag_encode(num: int) -> int:
    """Map a signed 64-bit integer to unsigned: 0→0, -1→1, 1→2, -2→3, ..."""
    if not I64_MIN <= num <= I64_MAX:
        raise ValueError(f"value {num} is outside the signed 64-bit range")
    return ((num << 1) ^ (num >> 63)) & U64_MAX


def zigzag_decode(encoded: int) -> int:
    """Inverse of :func:`zigzag_encode`."""
    if not 0 <= encoded <= U64_MAX:
        raise ValueError(f"value {encoded} is outside the unsigned 64-bit range")
    return (encoded >> 1) ^ -(encoded & 1)


def _check_byte_length(byte_length: int) -> None:
    if not 1 <= byte_length <= MAX_VARINT_LENGTH:
        raise ValueError(f"byte length must be in 1..9, got {byte_length}")


def _largest_number_in_7_bit_chunk(chunk_index: int) -> int:
    """Largest number with at least one bit set in the given 7-bit chunk."""
    if not 0 <= chunk_index <= 7:
        raise ValueError(f"chunk index must be in 0..7, got {chunk_index}")
    return (1 << (7 * (chunk_index + 1))) - 1


def smallest_number_in_n_byte_varint(byte_length: int) -> int:
    """Smallest number whose encoding takes exactly ``byte_length`` bytes."""
    _check_byte_length(byte_length)
    if byte_length == 1:
        return 0
    return largest_number_in_n_byte_varint(byte_length - 1) + 1


def largest_number_in_n_byte_varint(byte_length: int) -> int:
    """Largest number whose encoding takes exactly ``byte_length`` bytes."""
    _check_byte_length(byte_length)
    if byte_length == MAX_VARINT_LENGTH:
        return U64_MAX
    return _largest_number_in_7_bit_chunk(byte_length - 1)


def random_varint_encoded_length_values(rng: random.Random) -> Iterator[int]:
    """Yield random numbers whose encoded lengths are spread evenly over 1..9.

    The generator is endless; take as many values as needed.
    """
    ranges = [
        (
            smallest_number_in_n_byte_varint(length),
            largest_number_in_n_byte_varint(length)
            + (0 if length == MAX_VARINT_LENGTH else 1),
        )
        for length in range(1, MAX_VARINT_LENGTH + 1)
    ]
    while True:
        low, high = ranges[rng.randrange(len(ranges))]
        yield rng.randrange(low, high)