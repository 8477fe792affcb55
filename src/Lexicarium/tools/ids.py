"""Deterministic document identifiers (Crockford base32).

Identifiers allocated during an import are derived from stable inputs rather
than drawn at random, so running the same import twice targets the same
documents:

- 20 chars = the top 100 bits of a SHA-256 digest
- Crockford base32 alphabet: 0123456789ABCDEFGHJKMNPQRSTVWXYZ
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any, Final

import orjson

_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ID_LENGTH: Final[int] = 20


def _encode_base32(value: int, length: int) -> str:
    chars: list[str] = []
    for _ in range(length):
        value, rem = divmod(value, 32)
        chars.append(_ALPHABET[rem])
    chars.reverse()
    return "".join(chars)


def derive_id(*components: str) -> str:
    """Derive a 20-char identifier from ordered string components."""
    # Length-prefixed framing avoids delimiter collision ambiguity
    framed: list[bytes] = []
    for value in components:
        raw = value.encode("utf-8")
        framed.append(len(raw).to_bytes(4, "big", signed=False))
        framed.append(raw)
    digest = hashlib.sha256(b"".join(framed)).digest()
    value = int.from_bytes(digest, "big") >> (256 - 5 * ID_LENGTH)
    return _encode_base32(value, ID_LENGTH)


def remap_id(collection: str, tenant: str, original_id: str) -> str:
    """Identifier for a record whose original id belongs to another tenant."""
    return derive_id("remap", collection, tenant, original_id)


def content_id(collection: str, record: Mapping[str, Any]) -> str:
    """Identifier for an id-less record, derived from its canonical content."""
    body = orjson.dumps(dict(record), option=orjson.OPT_SORT_KEYS)
    return derive_id("content", collection, body.decode("utf-8"))


def is_derived_id(s: str) -> bool:
    if len(s) != ID_LENGTH:
        return False
    return all(ch in _ALPHABET for ch in s)
