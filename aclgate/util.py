"""
Utility functions for aclgate.

Provides canonical JSON serialization, hashing, key-material encoding,
and time utilities.
"""

import json
import hashlib
import base64
import binascii
import time
import hmac
import secrets
from typing import Any, Union


def canonicalize(obj: Any) -> bytes:
    """
    Convert object to canonical JSON bytes.

    Canonical JSON:
    - Lexicographically sorted keys
    - No whitespace
    - UTF-8 encoded
    """
    s = json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return s.encode('utf-8')


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def sha256_bytes(data: Union[bytes, str]) -> bytes:
    """Compute SHA-256 hash and return as bytes."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64url_encode(b: bytes) -> str:
    """URL-safe base64 encode bytes to string (no padding)."""
    return base64.urlsafe_b64encode(b).rstrip(b'=').decode('ascii')


def b64url_decode(s: str) -> bytes:
    """URL-safe base64 decode string to bytes (handles missing padding)."""
    # Add padding if needed
    padding = 4 - (len(s) % 4)
    if padding != 4:
        s += '=' * padding
    return base64.urlsafe_b64decode(s.encode('ascii'))


def decode_key_material(s: str) -> bytes:
    """
    Decode a public key or signature.

    Clients built on libsodium send URL-safe base64 without padding;
    standard padded base64 is accepted as well.

    Raises:
        ValueError: If the string is not base64 in either alphabet
    """
    s = s.strip()
    try:
        if '+' in s or '/' in s:
            padding = 4 - (len(s.rstrip('=')) % 4)
            s = s.rstrip('=') + ('=' * padding if padding != 4 else '')
            return base64.b64decode(s.encode('ascii'), validate=True)
        return b64url_decode(s.rstrip('='))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"not base64: {e}") from e


def payload_text(payload: Any) -> str:
    """
    Text form of a payload used for content addressing.

    Strings hash as-is; any other JSON value hashes as compact JSON with
    keys in the order the client sent them.
    """
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(',', ':'), ensure_ascii=False)


def payload_digest(payload: Any) -> str:
    """SHA-256 of the payload text, standard base64 with padding."""
    return b64e(sha256_bytes(payload_text(payload)))


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)


def generate_id(length: int = 16) -> str:
    """Generate a cryptographically secure random ID."""
    return secrets.token_hex(length)


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    Useful for logging.
    """
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]
