"""NDJSON encoder for retained samples."""

import json
from collections.abc import Iterable

from shapekeeper.core.models import Sample


def encode_samples(samples: Iterable[Sample]) -> str:
    """Encode samples to newline-delimited JSON.

    Args:
        samples: An iterable of Sample objects.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if no samples.
    """
    lines = []
    for sample in samples:
        obj = {
            "id": sample.id,
            "fingerprint_id": sample.fingerprint_id,
            "captured_at": sample.captured_at,
            "request": {
                "headers": sample.request_headers,
                "body": sample.request_body,
                "query": sample.request_query,
            },
            "response": {
                "headers": sample.response_headers,
                "body": sample.response_body,
                "response_time_ms": sample.response_time_ms,
            },
        }
        lines.append(json.dumps(obj))

    if not lines:
        return ""

    return "\n".join(lines) + "\n"
