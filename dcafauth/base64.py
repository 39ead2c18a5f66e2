"""Base64 encoding and a lenient decoder for DCAF payloads."""

from __future__ import annotations

import binascii

ALPHABET = b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
PAD = b"="

_VALID = frozenset(ALPHABET)


def encode(data: bytes) -> bytes:
    """Return the padded base64 encoding of *data*."""
    return binascii.b2a_base64(bytes(data), newline=False)


def decode(data: bytes | str) -> bytes:
    """Decode base64 *data*.

    Characters outside the base64 alphabet are ignored and decoding stops
    at the first padding character. A trailing group of a single symbol
    carries no complete byte and is dropped.
    """
    if isinstance(data, str):
        data = data.encode("ascii", errors="ignore")
    head, _, _ = bytes(data).partition(PAD)
    symbols = bytes(c for c in head if c in _VALID)
    if len(symbols) % 4 == 1:
        symbols = symbols[:-1]
    if not symbols:
        return b""
    padded = symbols + PAD * (-len(symbols) % 4)
    return binascii.a2b_base64(padded)