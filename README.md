# hdrcodec

`hdrcodec` reads and writes HdrHistogram data in its compact binary formats. It also reads and
writes the text interval logs built on those formats. It uses only the standard library.

## Modules

- `hdrcodec.varint`: LEB128-64b9B varints and zig-zag encoding.
  - `varint_write(value)` returns 1 to 9 bytes.
  - `varint_read(stream)` reads one varint from a binary stream. It raises `EOFError` if the
    stream ends inside a number.
  - `varint_read_slice(data)` returns `(value, bytes_consumed)`.
  - `zigzag_encode` and `zigzag_decode` map between signed and unsigned 64-bit values.
  - `smallest_number_in_n_byte_varint` and `largest_number_in_n_byte_varint` give the range of
    values that encode to a given length.
  - `random_varint_encoded_length_values(rng)` is an endless generator. Its values are spread
    evenly over the encoded lengths 1 to 9.
- `hdrcodec.v2`: the V2 and V2 + DEFLATE formats.
  - `HistogramCounts` holds the values to serialize.
  - `V2Serializer` and `V2DeflateSerializer` write a histogram.
  - `encode_counts` encodes a counts array on its own.
  - `counts_array_max_encoded_size` gives an upper bound on the encoded size.
  - `V2SerializeError` and `V2DeflateSerializeError` are raised when writing fails.
- `hdrcodec.deserializer`: reading histograms back.
  - `Deserializer` recognises either format by its cookie.
  - It returns a `DecodedHistogram`.
  - It raises `DeserializeError` when reading fails.
- `hdrcodec.log_writer`: writing interval logs.
  - `IntervalLogWriterBuilder` and `IntervalLogWriter` write the log.
  - `Duration` and `Tag` are the values a log line is built from.
  - `IntervalLogWriterError` is raised when a line cannot be written.
- `hdrcodec.log_reader`: parsing interval logs.
  - `IntervalLogIterator` walks the log.
  - It yields `StartTime`, `BaseTime` and `IntervalLogHistogram` entries.
  - It raises `LogIteratorError` on a line it cannot parse.
  - The single-line parsers are available as `parse_*` functions.

## Installing

```
pip install .
```

Run the tests with:

```
pip install ".[test]"
pytest
```

## Serializing a histogram

`HistogramCounts` holds four things:

- the lowest discernible value
- the highest trackable value
- the number of significant digits
- the full counts array

The counts array is laid out in HdrHistogram's bucket order. With bounds 1..2047 and 3 digits,
the array has 2048 slots, and slot `i` counts the value `i`.

```python
import io
from hdrcodec.v2 import HistogramCounts, V2Serializer
from hdrcodec.deserializer import Deserializer

counts = [0] * 2048
counts[1000] = 5
histogram = HistogramCounts(1, 2047, 3, counts)

buf = io.BytesIO()
written = V2Serializer().serialize(histogram, buf)   # number of bytes written

buf.seek(0)
decoded = Deserializer().deserialize(buf)
assert decoded.counts == counts
print(decoded.total_count, decoded.max_value)
```

The V2 payload stops at the last non-zero count. Each run of two or more zeros is written as a
single negative number.

`V2DeflateSerializer` is used the same way. It wraps the V2 record in zlib, under its own cookie.

### Reading histograms back

`DecodedHistogram` keeps the bounds, the digits and the counts array. It recomputes
`total_count`, `max_value` and `min_non_zero_value` from the counts. It also provides
`highest_equivalent` and `lowest_equivalent`.

`Deserializer(max_count=...)` rejects any count above the given limit. This stands in for a
narrower counter type.

### Errors

- `V2SerializeError` is raised, for example, when a count is above 2**63 - 1.
- `V2DeflateSerializeError` wraps the failures of the deflate serializer.
- `DeserializeError` has a `kind` attribute that says why reading failed:
  - the cookie is invalid
  - the data uses an unsupported feature, such as a non-zero normalizing offset or a conversion
    ratio other than 1.0
  - the parameters are invalid
  - a count is too large
  - the encoded array is longer than the value range allows
  - an i/o error occurred, which covers truncated input

## Writing an interval log

The writer writes bytes, so give it a binary file or a `BytesIO`.

```python
import io
from hdrcodec.log_writer import IntervalLogWriterBuilder, Duration, Tag
from hdrcodec.v2 import V2Serializer

out = io.BytesIO()
writer = (
    IntervalLogWriterBuilder()
    .add_comment("load test run")
    .with_start_time(1_500_000_040)
    .with_max_value_divisor(1_000_000.0)
    .begin_log_with(out, V2Serializer())
)
writer.write_comment("first interval")
writer.write_histogram(histogram, Duration(1, 234_000_000), Duration(5, 678_000_000), Tag("api"))
```

### Comments

Comments that contain newlines are split across several `#` lines.

### Header values

`with_start_time` and `with_base_time` each accept one of:

- a `datetime` (a naive one is taken as UTC)
- a `Duration`
- a number of seconds since the epoch

If a header value is set more than once, only the last setting is written. The start time and
the base time are each written as one header line. The max-value divisor is written as a header
line only when it differs from 1.0.

### Interval lines

Each interval line holds these fields, separated by commas:

- the optional tag
- the start timestamp
- the duration
- the max value divided by the divisor
- the base64-encoded serialized histogram

Numbers are written with three decimals.

### Tags

A tag may not contain `,`, `\r`, `\n` or a space. Passing a plain string in place of a `Tag`
applies the same check.

## Reading an interval log

```python
from hdrcodec.log_reader import IntervalLogIterator, IntervalLogHistogram, StartTime, BaseTime

for entry in IntervalLogIterator(out.getvalue()):
    if isinstance(entry, IntervalLogHistogram):
        print(entry.tag, entry.start_timestamp, entry.max)
    elif isinstance(entry, (StartTime, BaseTime)):
        print(type(entry).__name__, entry.timestamp)
```

The iterator skips comments and the `"StartTimestamp",...` legend line. It yields the other
entries in the order they appear.

Histograms stay base64-encoded, so scanning a large log is cheap. To get a histogram, decode it
with `base64` and pass the bytes to a `Deserializer`.

When a line cannot be parsed, the iterator raises `LogIteratorError` with the byte offset of that
line, and iteration then ends.

## What this package does not do

`hdrcodec` encodes and decodes histogram data. It does not record values or compute
percentiles, and it has no histogram type that does. You fill the counts array of
`HistogramCounts` yourself.

There is no command-line tool.