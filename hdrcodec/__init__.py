"""Encoding and decoding of HdrHistogram V2 and V2 + DEFLATE histograms and interval logs."""

__version__ = "0.1.0"
__all__ = ["varint", "v2", "deserializer", "log_writer", "log_reader"]