"""Validation and normalization of credential fields."""
from __future__ import annotations

import base64
import binascii
import re
from typing import Optional, Union

from .exceptions import InvalidParameter, InvalidSecret, UnsupportedType

OTP_TYPES = ("totp", "hotp")
ALGORITHMS = ("SHA1", "SHA256", "SHA512")

DEFAULT_TYPE = "totp"
DEFAULT_ALGORITHM = "SHA1"
DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30
MAX_DIGITS = 10

_SECRET_CHARS = re.compile(r"^[A-Z2-7]+=*$")

IntLike = Union[int, str, None]


def normalize_secret(secret: Optional[str]) -> str:
    if secret is None:
        return ""
    cleaned = re.sub(r"\s+", "", secret).replace("-", "")
    return cleaned.upper()


def decode_secret(secret: Optional[str]) -> bytes:
    """Decode a Base32 secret (any case, spacing or padding) into key bytes."""
    normalized = normalize_secret(secret).rstrip("=")
    if not normalized or not _SECRET_CHARS.match(normalized):
        raise InvalidSecret(field="secret")
    padding = len(normalized) % 8
    if padding:
        normalized += "=" * (8 - padding)
    try:
        key = base64.b32decode(normalized)
    except (binascii.Error, ValueError) as exc:
        raise InvalidSecret(field="secret") from exc
    if not key:
        raise InvalidSecret(field="secret")
    return key


def validate_secret(secret: Optional[str]) -> str:
    """Return the stored form of ``secret``: uppercase, no spacing, no padding."""
    decode_secret(secret)
    return normalize_secret(secret).rstrip("=")


def validate_algorithm(algorithm: Optional[str]) -> str:
    if not algorithm:
        return DEFAULT_ALGORITHM
    normalized = str(algorithm).strip().upper().replace("-", "")
    if normalized not in ALGORITHMS:
        raise InvalidParameter(f"Unsupported algorithm: {algorithm}", field="algorithm")
    return normalized


def _positive_int(value: IntLike, default: int, field: str) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise InvalidParameter(f"Invalid {field}: {value!r}", field=field)
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParameter(f"Invalid {field}: {value!r}", field=field) from exc
    if number <= 0:
        raise InvalidParameter(f"{field} must be a positive integer", field=field)
    return number


def validate_digits(digits: IntLike) -> int:
    number = _positive_int(digits, DEFAULT_DIGITS, "digits")
    if number > MAX_DIGITS:
        raise InvalidParameter(f"digits must be between 1 and {MAX_DIGITS}", field="digits")
    return number


def validate_period(period: IntLike) -> int:
    return _positive_int(period, DEFAULT_PERIOD, "period")


def validate_counter(counter: IntLike) -> int:
    if counter is None or counter == "":
        return 0
    try:
        number = int(counter)
    except (TypeError, ValueError) as exc:
        raise InvalidParameter(f"Invalid counter: {counter!r}", field="counter") from exc
    if number < 0:
        raise InvalidParameter("counter must not be negative", field="counter")
    return number


def validate_otp_type(otp_type: Optional[str]) -> str:
    if not otp_type:
        return DEFAULT_TYPE
    normalized = otp_type.strip().lower()
    if normalized not in OTP_TYPES:
        raise UnsupportedType(
            f"Unsupported OTP type: {otp_type}. Only TOTP and HOTP are supported.",
            field="type",
        )
    return normalized


def validate_name(name: Optional[str]) -> str:
    stripped = (name or "").strip()
    if not stripped:
        raise InvalidParameter("Account name is required", field="name")
    return stripped
