"""
otp_core.py — TOTP / HOTP code generation (RFC 4226 & RFC 6238).

Pure functions, no I/O: the only outside input is the wall clock, and every
function that reads it also accepts an explicit ``timestamp`` so callers and
tests can pin the time.

Two layers:
- ``hotp`` / ``totp`` raise ``OTPError`` subclasses on bad input. They are the
  building blocks for code that wants exceptions.
- ``generate_code`` / ``code_for`` never raise. They return a ``CodeResult``
  which is either a code or a typed error, so a display loop that refreshes
  every second cannot mistake a failure for a valid code.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import struct
import time
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import quote

from .exceptions import OTPError
from .validators import (
    DEFAULT_ALGORITHM,
    DEFAULT_DIGITS,
    DEFAULT_PERIOD,
    decode_secret,
    validate_algorithm,
    validate_counter,
    validate_digits,
    validate_otp_type,
    validate_period,
)

logger = logging.getLogger(__name__)

# --- Config / constants ----------------------------------------------------
DEFAULT_TIME_STEP = DEFAULT_PERIOD

_HASHES = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}


@dataclass(frozen=True)
class CodeResult:
    """Outcome of a code generation: ``code`` on success, ``error`` otherwise.

    ``remaining`` is the number of seconds the code stays valid (TOTP only).
    """

    code: Optional[str] = None
    remaining: Optional[int] = None
    error: Optional[OTPError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.code is not None

    def __bool__(self) -> bool:
        return self.ok


# --- RFC helpers -----------------------------------------------------------
def int_to_bytes(i: int) -> bytes:
    """8-byte big-endian counter, as RFC 4226 requires."""
    return struct.pack(">Q", i)


def dynamic_truncate(hmac_digest: bytes) -> int:
    """
    RFC 4226 dynamic truncation.

    The low 4 bits of the last byte select an offset; the 4 bytes starting
    there, with the top bit cleared, form an unsigned 31-bit integer.
    """
    offset = hmac_digest[-1] & 0x0F
    code = (
        ((hmac_digest[offset] & 0x7F) << 24)
        | ((hmac_digest[offset + 1] & 0xFF) << 16)
        | ((hmac_digest[offset + 2] & 0xFF) << 8)
        | (hmac_digest[offset + 3] & 0xFF)
    )
    return code


def hotp(
    secret_b32: str,
    counter: int,
    digits: int = DEFAULT_DIGITS,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """
    HOTP code for ``counter`` (RFC 4226).

    Steps:
    1. Base32-decode secret -> raw key bytes
    2. Message = 8-byte big-endian counter
    3. HMAC(key, message) with the selected hash
    4. Dynamic truncation -> 31-bit integer
    5. Reduce modulo 10^digits and zero-pad

    Raises:
        InvalidSecret: the secret is not decodable Base32
        InvalidParameter: digits, counter or algorithm are out of range
    """
    key = decode_secret(secret_b32)
    digits = validate_digits(digits)
    counter = validate_counter(counter)
    digestmod = _HASHES[validate_algorithm(algorithm)]

    digest = hmac.new(key, int_to_bytes(counter), digestmod).digest()
    otp_val = dynamic_truncate(digest) % (10 ** digits)
    return str(otp_val).zfill(digits)


def totp(
    secret_b32: str,
    timestamp: Optional[float] = None,
    timestep: int = DEFAULT_TIME_STEP,
    t0: int = 0,
    digits: int = DEFAULT_DIGITS,
    algorithm: str = DEFAULT_ALGORITHM,
) -> Tuple[str, int]:
    """
    TOTP code (RFC 6238): HOTP with counter = floor((now - T0) / X).

    Arguments:
        secret_b32: Base32 secret
        timestamp: epoch seconds (time.time() when None)
        timestep: X, seconds per code
        t0: start of the first time step
        digits: code length
        algorithm: SHA1, SHA256 or SHA512

    Returns:
        (code, remaining_seconds)
    """
    timestep = validate_period(timestep)
    if timestamp is None:
        timestamp = time.time()
    elapsed = int(timestamp) - t0
    counter = elapsed // timestep
    code = hotp(secret_b32, counter, digits, algorithm)
    return code, timestep - (elapsed % timestep)


def seconds_remaining(period: int = DEFAULT_TIME_STEP, timestamp: Optional[float] = None) -> int:
    """Seconds until the current time step ends, in ``1..period``.

    Callers drive a countdown by calling this once per second.
    """
    if period <= 0:
        raise ValueError("period must be a positive number of seconds")
    if timestamp is None:
        timestamp = time.time()
    return period - (int(timestamp) % period)


def generate_code(
    secret: str,
    algorithm: str = DEFAULT_ALGORITHM,
    digits: int = DEFAULT_DIGITS,
    period: int = DEFAULT_TIME_STEP,
    counter: Optional[int] = None,
    timestamp: Optional[float] = None,
) -> CodeResult:
    """Current code for a credential's parameters; never raises.

    ``counter`` switches to HOTP; otherwise the counter comes from the clock.
    """
    try:
        if counter is not None:
            return CodeResult(code=hotp(secret, counter, digits, algorithm))
        code, remaining = totp(secret, timestamp, period, 0, digits, algorithm)
        return CodeResult(code=code, remaining=remaining)
    except OTPError as exc:
        logger.warning("Could not generate code: %s", exc.message)
        return CodeResult(error=exc)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected failure while generating code")
        return CodeResult(error=OTPError(str(exc)))


def code_for(credential, timestamp: Optional[float] = None) -> CodeResult:
    """``generate_code`` for a stored credential (HOTP uses its stored counter)."""
    counter = credential.counter if credential.otp_type == "hotp" else None
    return generate_code(
        credential.secret,
        credential.algorithm,
        credential.digits,
        credential.period,
        counter=counter,
        timestamp=timestamp,
    )


# --- otpauth URI synthesis -------------------------------------------------
def build_otpauth_uri(
    secret_b32: str,
    name: str,
    issuer: str = "",
    algorithm: Optional[str] = None,
    digits: Optional[int] = None,
    period: Optional[int] = None,
    otp_type: str = "totp",
    counter: Optional[int] = None,
) -> str:
    """
    Build an otpauth:// URI that authenticator apps can import.

    - TOTP: otpauth://totp/{issuer}:{name}?secret=...&issuer=...&algorithm=...&digits=...&period=...
    - HOTP: otpauth://hotp/{issuer}:{name}?secret=...&issuer=...&algorithm=...&digits=...&counter=...

    Issuer and name are percent-encoded; parameters left as None are omitted
    so the reader falls back to its defaults.
    """
    otp_type = validate_otp_type(otp_type)
    label = quote(name or "", safe="@")
    if issuer:
        label = f"{quote(issuer, safe='@')}:{label}"
    elif ":" in (name or ""):
        # empty issuer prefix, so the name's own colon is not read as the separator
        label = f":{label}"
    params = [f"secret={quote(secret_b32, safe='')}"]
    if issuer:
        params.append(f"issuer={quote(issuer, safe='@')}")
    if algorithm:
        params.append(f"algorithm={quote(str(algorithm), safe='')}")
    if digits:
        params.append(f"digits={quote(str(digits), safe='')}")
    if otp_type == "hotp":
        params.append(f"counter={counter or 0}")
    elif period:
        params.append(f"period={quote(str(period), safe='')}")
    return f"otpauth://{otp_type}/{label}?{'&'.join(params)}"
