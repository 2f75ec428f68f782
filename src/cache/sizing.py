"""
Payload sizing and compression for cache accounting.
"""

import json
import logging
import pickle
import zlib
from typing import Any

logger = logging.getLogger(__name__)


def payload_size(value: Any) -> int:
    """
    Return the size in bytes used to account for a cached value.

    Bytes count as-is, text as its UTF-8 encoding and anything else as its
    JSON encoding. Values JSON cannot represent fall back to their `str()`.
    """
    if value is None:
        return 0
    if isinstance(value, bytes | bytearray | memoryview):
        return len(value)
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    try:
        encoded = json.dumps(value, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        encoded = str(value)
    return len(encoded.encode("utf-8"))


def compress_payload(value: Any, threshold: int | None) -> tuple[Any, int, bool]:
    """
    Compress a value whose payload size reaches `threshold`.

    Args:
        value: Value to store
        threshold: Minimum payload size in bytes to compress (None disables)

    Returns:
        (stored value, stored size in bytes, compressed flag). The value is
        kept as-is when it is under the threshold, cannot be pickled, or does
        not get smaller.
    """
    size = payload_size(value)
    if threshold is None or size < threshold:
        return value, size, False

    try:
        packed = zlib.compress(pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL))
    except (pickle.PicklingError, TypeError, AttributeError) as e:
        logger.warning(f"Compression failed, storing uncompressed: {e}")
        return value, size, False

    if len(packed) >= size:
        return value, size, False
    return packed, len(packed), True


def decompress_payload(data: bytes) -> Any:
    """Restore a value produced by `compress_payload`."""
    return pickle.loads(zlib.decompress(data))
