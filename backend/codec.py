# backend/codec.py
"""Reversible compression for stored CV HTML.

Tokens are zlib-deflated UTF-8 wrapped in URL-safe base64, so they fit in a
plain text column. Base64 never contains ``<``, which is how legacy rows that
still hold raw HTML are told apart from tokens.
"""
import base64
import binascii
import zlib

DOCTYPE_PREFIX = "<!doctype"

# Lone surrogates are valid in a JS string; keep them round-trippable
_ENCODING_ERRORS = "surrogatepass"


class DecompressionError(ValueError):
    """Raised when a stored token cannot be decoded back into text."""


def looks_like_document(value: str) -> bool:
    return value.lstrip()[:len(DOCTYPE_PREFIX)].lower() == DOCTYPE_PREFIX


def compress(text: str) -> str:
    raw = text.encode("utf-8", _ENCODING_ERRORS)
    return base64.urlsafe_b64encode(zlib.compress(raw, 9)).decode("ascii")


def decompress(token: str) -> str:
    """Inverse of compress(); already-decompressed documents pass through unchanged."""
    if looks_like_document(token):
        return token
    try:
        raw = zlib.decompress(base64.urlsafe_b64decode(token.encode("ascii")))
        return raw.decode("utf-8", _ENCODING_ERRORS)
    except (binascii.Error, zlib.error, UnicodeError, ValueError) as e:
        raise DecompressionError(f"Malformed compressed content: {e}") from e
