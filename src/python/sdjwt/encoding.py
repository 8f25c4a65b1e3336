"""Base64url and canonical JSON helpers.

Everything that ends up hashed or signed goes through these functions, so the
issuer and the verifier always agree on the exact bytes.
"""

import base64
import json
from typing import Any


def b64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Base64url decode with padding restoration."""
    s += "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s)


def canonical_json(value: Any) -> str:
    """Return canonical JSON with sorted keys and no whitespace."""
    return json.dumps(
        value,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        allow_nan=False,
    )


def json_segment(value: Any) -> str:
    """Encode a JSON object as one compact-serialization segment."""
    return b64url_encode(canonical_json(value).encode("utf-8"))


def decode_json_segment(segment: str) -> Any:
    """Inverse of :func:`json_segment`."""
    return json.loads(b64url_decode(segment))
