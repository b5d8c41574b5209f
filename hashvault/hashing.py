# -*- coding: utf-8 -*-
"""Content digests and file identifiers."""

import hashlib
import hmac
import re
import secrets
import time

from .utils import Stream, computehash

DEFAULT_ALGORITHM = "sha256"

_HEX_RE = re.compile(r"[a-f0-9]+", re.IGNORECASE)


def digest(payload, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Return the lowercase hex digest of `payload` (bytes or readable)."""
    stream = Stream(payload)
    try:
        return computehash(stream, algorithm)
    finally:
        stream.close()


def is_valid_digest(value, algorithm: str = DEFAULT_ALGORITHM) -> bool:
    """Return whether `value` looks like a hex digest produced by `algorithm`."""
    if not value or not isinstance(value, str):
        return False
    if len(value) != hashlib.new(algorithm).digest_size * 2:
        return False
    return bool(_HEX_RE.fullmatch(value))


def digests_match(expected: str, actual: str) -> bool:
    """Compare two hex digests case-insensitively in constant time."""
    if not expected or not actual:
        return False
    return hmac.compare_digest(
        expected.lower().encode("ascii", "replace"),
        actual.lower().encode("ascii", "replace"),
    )


def generate_file_id(original_name: str, owner: str) -> str:
    """Return a fresh 32 character hex identifier for a logical file."""
    seed = f"{original_name}_{owner}_{time.time_ns()}_{secrets.token_hex(8)}"
    return hashlib.md5(seed.encode("utf8")).hexdigest()
