import base64
import io
import random

import pytest

from hdrcodec.deserializer import Deserializer
from hdrcodec.log_reader import (
    BaseTime,
    IntervalLogHistogram,
    IntervalLogIterator,
    LogIteratorError,
    StartTime,
    parse_base_time,
    parse_comment_line,
    parse_fract_sec_duration,
    parse_interval_hist,
    parse_legend,
    parse_start_time,
)
from hdrcodec.log_writer import Duration, IntervalLogWriterBuilder, Tag
from hdrcodec.v2 import HistogramCounts, V2Serializer
from hdrcodec.varint import U64_MAX


def _expected_interval(tag):
    return IntervalLogHistogram(
        tag=tag,
        start_timestamp=Duration(0, 127_000_000),
        duration=Duration(1, 7_000_000),
        max=2.769,
        encoded_histogram="couldBeBase64",
    )


def test_parse_duration_full_ns():
    dur, rest = parse_fract_sec_duration(b"123456.789012345foo")
    assert dur == Duration(123456, 789_012_345)
    assert rest == b"foo"


def test_parse_duration_scale_ns():
    dur, rest = parse_fract_sec_duration(b"123456.789012foo")
    assert dur == Duration(123456, 789_012_000)
    assert rest == b"foo"


def test_parse_duration_too_many_ns():
    dur, rest = parse_fract_sec_duration(b"123456.7890123456foo")
    assert dur == Duration(123456, 789_012_345)
    assert rest == b"foo"


def test_parse_duration_without_fraction_fails():
    with pytest.raises(ValueError):
        parse_fract_sec_duration(b"123456.foo")


def test_duration_fp_roundtrip_accuracy():
    rng = random.Random(1234)
    errors = []
    for _ in range(20_000):
        secs = rng.randrange(0, 2_000_000_000)
        nanos = rng.randrange(0, 1000) * 1_000_000
        dur = Duration(secs, nanos)
        text = f"{dur.as_seconds():.3f}".encode()
        dur2, rest = parse_fract_sec_duration(text)
        assert rest == b""
        if dur != dur2:
            errors.append((dur, dur2))
    assert errors == []


def test_parse_start_time_with_human_date():
    entry, rest = parse_start_time(
        b"#[StartTime: 1441812279.474 (seconds since epoch), Wed Sep 09 08:24:39 PDT 2015]\nfoo"
    )
    assert entry == StartTime(Duration(1441812279, 474_000_000))
    assert rest == b"foo"


def test_parse_start_time_without_human_date():
    entry, rest = parse_start_time(b"#[StartTime: 1441812279.474 (seconds since epoch)]\nfoo")
    assert entry == StartTime(Duration(1441812279, 474_000_000))
    assert rest == b"foo"


def test_parse_base_time():
    entry, rest = parse_base_time(b"#[BaseTime: 1441812279.474 (seconds since epoch)]\nfoo")
    assert entry == BaseTime(Duration(1441812279, 474_000_000))
    assert rest == b"foo"


def test_parse_start_time_rejects_base_time():
    with pytest.raises(ValueError):
        parse_start_time(b"#[BaseTime: 1441812279.474 (seconds since epoch)]\nfoo")


def test_parse_legend():
    data = (
        b'"StartTimestamp","Interval_Length","Interval_Max",'
        b'"Interval_Compressed_Histogram"\nfoo'
    )
    assert parse_legend(data) == b"foo"


def test_parse_comment():
    assert parse_comment_line(b"#SomeOtherComment\nfoo") == b"foo"


def test_parse_comment_without_newline_fails():
    with pytest.raises(ValueError):
        parse_comment_line(b"#no newline")


def test_parse_interval_hist_no_tag():
    entry, rest = parse_interval_hist(b"0.127,1.007,2.769,couldBeBase64\nfoo")
    assert entry == _expected_interval(None)
    assert rest == b"foo"


def test_parse_interval_hist_with_tag():
    entry, rest = parse_interval_hist(b"Tag=t,0.127,1.007,2.769,couldBeBase64\nfoo")
    assert entry == _expected_interval(Tag("t"))
    assert rest == b"foo"


def test_parse_interval_hist_trims_carriage_return():
    entry, rest = parse_interval_hist(b"1.5,2.25,3.0,abc\r\n")
    assert entry.encoded_histogram == "abc"
    assert entry.start_timestamp == Duration(1, 500_000_000)
    assert entry.duration == Duration(2, 250_000_000)
    assert entry.max == 3.0
    assert rest == b""


def test_iter_with_ignored_prefix():
    data = (
        b"#I'm a comment\n"
        b'"StartTimestamp",etc\n'
        b"Tag=t,0.127,1.007,2.769,couldBeBase64\n"
        b"#[StartTime: 1441812279.474 ...\n"
    )
    entries = list(IntervalLogIterator(data))
    assert entries == [
        _expected_interval(Tag("t")),
        StartTime(Duration(1441812279, 474_000_000)),
    ]


def test_iter_without_ignored_prefix():
    data = b"Tag=t,0.127,1.007,2.769,couldBeBase64\n#[StartTime: 1441812279.474 ...\n"
    entries = list(IntervalLogIterator(data))
    assert entries == [
        _expected_interval(Tag("t")),
        StartTime(Duration(1441812279, 474_000_000)),
    ]


def test_iter_multiple_entries_with_interleaved_ignored():
    data = (
        b"#I'm a comment\n"
        b'"StartTimestamp",etc\n'
        b"Tag=t,0.127,1.007,2.769,couldBeBase64\n"
        b"#Another comment\n"
        b"#[StartTime: 1441812279.474 ...\n"
        b"#Yet another comment\n"
        b"#[BaseTime: 1441812279.474 ...\n"
        b"#Enough with the comments\n"
    )
    entries = list(IntervalLogIterator(data))
    assert entries == [
        _expected_interval(Tag("t")),
        StartTime(Duration(1441812279, 474_000_000)),
        BaseTime(Duration(1441812279, 474_000_000)),
    ]


def test_iter_all_ignored_empty_iter():
    data = b"#I'm a comment\n\"StartTimestamp\",etc\n#Another comment\n"
    assert list(IntervalLogIterator(data)) == []


def test_iter_filter_by_start_timestamp():
    log = (
        b"#I'm a comment\n"
        b"Tag=a,0.123,1.007,2.769,base64EncodedHisto\n"
        b"1.456,1.007,2.769,base64EncodedHisto\n"
        b"3.789,1.007,2.769,base64EncodedHisto\n"
        b"Tag=b,4.123,1.007,2.769,base64EncodedHisto\n"
        b"5.456,1.007,2.769,base64EncodedHisto\n"
        b"#Another comment\n"
    )
    count = sum(
        1
        for entry in IntervalLogIterator(log)
        if isinstance(entry, IntervalLogHistogram) and entry.start_timestamp.seconds >= 3
    )
    assert count == 3


def test_iter_error_reports_offset_then_ends():
    iterator = IntervalLogIterator(b"#comment\ngarbage\n#later\n")
    with pytest.raises(LogIteratorError) as info:
        next(iterator)
    assert info.value.offset == 9
    assert info.value == LogIteratorError(9)
    with pytest.raises(StopIteration):
        next(iterator)


def test_iter_interval_without_newline_is_error():
    line = b"0.127,1.007,2.769,couldBeBase64"
    iterator = IntervalLogIterator(line)
    with pytest.raises(LogIteratorError) as info:
        next(iterator)
    assert info.value == LogIteratorError(0)
    assert info.value.offset == 0
    assert list(iterator) == []

    # The same line with its terminating newline parses.
    assert list(IntervalLogIterator(line + b"\n")) == [_expected_interval(None)]


def test_written_control_character_comments_still_parseable():
    control_chars = "".join(chr(c) for c in [*range(0x20), 0x7F, *range(0x80, 0xA0)])
    assert len(control_chars) == 2 * 16 + 1 + 2 * 16

    buf = io.BytesIO()
    writer = (
        IntervalLogWriterBuilder()
        .add_comment("unicode")
        .add_comment(control_chars)
        .add_comment("whew")
        .with_start_time(Duration(123, 456_000_000))
        .begin_log_with(buf, V2Serializer())
    )
    writer.write_comment("baz")

    entries = list(IntervalLogIterator(buf.getvalue()))
    assert entries == [StartTime(Duration(123, 456_000_000))]


def test_parse_known_interval_line_and_decode_histogram():
    line = b"Tag=t,1.234,5.678,0.000,HISTEwAAAAEAAAAAAAAAAwAAAAAAAAAB//////////8/8AAAAAAAAAA=\n"
    (entry,) = list(IntervalLogIterator(line))
    assert entry.tag == Tag("t")
    assert entry.start_timestamp == Duration(1, 234_000_000)
    assert entry.duration == Duration(5, 678_000_000)
    assert entry.max == 0.0

    decoded = Deserializer().deserialize(io.BytesIO(base64.b64decode(entry.encoded_histogram)))
    assert decoded.lowest_discernible_value == 1
    assert decoded.highest_trackable_value == U64_MAX
    assert decoded.significant_value_digits == 3
    assert decoded.total_count == 0


def test_written_log_roundtrip():
    histogram = HistogramCounts(1, U64_MAX, 3, [0])
    buf = io.BytesIO()
    writer = (
        IntervalLogWriterBuilder()
        .add_comment("header")
        .with_base_time(Duration(200, 0))
        .begin_log_with(buf, V2Serializer())
    )
    writer.write_histogram(histogram, Duration(1, 500_000_000), Duration(2, 0), Tag("x"))
    writer.write_histogram(histogram, Duration(3, 500_000_000), Duration(2, 0), None)

    entries = list(IntervalLogIterator(buf.getvalue()))
    assert entries[0] == BaseTime(Duration(200, 0))
    assert [e.tag for e in entries[1:]] == [Tag("x"), None]
    assert [e.start_timestamp for e in entries[1:]] == [
        Duration(1, 500_000_000),
        Duration(3, 500_000_000),
    ]
    assert entries[1].encoded_histogram == entries[2].encoded_histogram