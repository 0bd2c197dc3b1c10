"""
Boundary Serialization
======================
Every integer that leaves the owner (public modulus, ciphertexts,
blinding values, derived shares) travels as a decimal string, never as a
native JSON number: magnitudes exceed the 64-bit range.
"""

import hashlib
import json
from typing import Any, Dict, Mapping


def encode_int(value: int) -> str:
    """Render a non-negative integer as a canonical decimal string"""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Expected int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"Boundary integers are non-negative, got {value}")
    return str(value)


def decode_int(text: Any) -> int:
    """
    Parse a decimal string produced by encode_int.

    Signs, whitespace and anything other than ASCII digits are rejected.
    """
    if not isinstance(text, str):
        raise TypeError(f"Expected decimal string, got {type(text).__name__}")
    if not text or not (text.isascii() and text.isdigit()):
        raise ValueError(f"Not a decimal integer string: {text!r}")
    return int(text, 10)


def encode_fields(values: Mapping[str, int]) -> Dict[str, str]:
    """Encode every value of a field -> integer mapping"""
    return {name: encode_int(value) for name, value in values.items()}


def decode_fields(values: Mapping[str, Any]) -> Dict[str, int]:
    """Decode every value of a field -> decimal string mapping"""
    return {name: decode_int(value) for name, value in values.items()}


def checksum(payload: Mapping[str, Any]) -> str:
    """Short SHA-256 digest over canonical JSON"""
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()[:16]
