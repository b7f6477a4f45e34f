"""Encoders for exporting the stored corpus."""

from shapekeeper.core.encoding.ndjson import encode_samples

__all__ = ["encode_samples"]
