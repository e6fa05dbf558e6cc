"""Key layout of the observation namespace.

    b"e" b":" <pair id>                  identity key, newest observation of a pair
    b"e" b":" <pair id> <i64 big-endian> one observation per timestamp

The pair id is not length-prefixed, so a scan over ``pair_key("USD")`` also
covers "USD2CNY", "USD2JPY" and so on.
"""

from __future__ import annotations

import struct

EXCHANGE_RATE_PREFIX = b"e"
SEP = b":"

_I64 = struct.Struct(">q")


def to_key(prefix: bytes, ident: bytes) -> bytes:
    return prefix + SEP + ident


def to_key_i64(prefix: bytes, ident: bytes, value: int) -> bytes:
    return to_key(prefix, ident) + _I64.pack(value)


def pair_key(pair: str) -> bytes:
    return to_key(EXCHANGE_RATE_PREFIX, pair.encode("utf-8"))


def pair_key_at(pair: str, timestamp: int) -> bytes:
    return to_key_i64(EXCHANGE_RATE_PREFIX, pair.encode("utf-8"), timestamp)


def prefix_upper_bound(prefix: bytes) -> bytes | None:
    """Smallest key greater than every key starting with `prefix`.

    Returns None when no such key exists (empty or all-0xFF prefix).
    """
    stripped = prefix.rstrip(b"\xff")
    if not stripped:
        return None
    return stripped[:-1] + bytes([stripped[-1] + 1])


__all__ = [
    "EXCHANGE_RATE_PREFIX",
    "SEP",
    "pair_key",
    "pair_key_at",
    "prefix_upper_bound",
    "to_key",
    "to_key_i64",
]
