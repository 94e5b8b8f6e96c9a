"""Digests for cache keys.

xxhash64 for in-process plan-cache keys, SHA256 when a digest has to be
stable across machines (e.g. plans persisted by a caller).
"""

from collections.abc import Callable
from enum import Enum
import hashlib

import xxhash

FIELD_SEPARATOR = "\x00"


class Algorithm(str, Enum):
    XXHASH64 = "xxhash64"
    SHA256 = "sha256"


_DIGESTS: dict[Algorithm, Callable[[bytes], str]] = {
    Algorithm.XXHASH64: lambda data: xxhash.xxh64(data).hexdigest(),
    Algorithm.SHA256: lambda data: hashlib.sha256(data).hexdigest(),
}


def hash_string(text: str, algorithm: Algorithm = Algorithm.XXHASH64, truncate: int | None = None) -> str:
    """
    Hex digest of ``text``.

    Raises:
        ValueError: If algorithm is unknown
    """
    try:
        digest = _DIGESTS[Algorithm(algorithm)]
    except ValueError as e:
        raise ValueError(f"Unknown algorithm: {algorithm}") from e
    result = digest(text.encode("utf-8"))
    return result[:truncate] if truncate else result


def hash_fields(*fields: str, algorithm: Algorithm = Algorithm.XXHASH64) -> str:
    """
    Digest of several fields, order-sensitive.

    Examples:
        >>> hash_fields("prompt", "detail") == hash_fields("prompt", "detail")
        True
    """
    return hash_string(FIELD_SEPARATOR.join(fields), algorithm)


__all__ = ["Algorithm", "hash_string", "hash_fields"]
