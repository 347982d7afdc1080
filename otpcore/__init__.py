"""
otpcore package
===============

TOTP/HOTP codes (RFC 4226 & RFC 6238) and the reader that turns scanned QR
text into validated authenticator accounts.

──────────────────────────────────────────────
Core algorithm
──────────────────────────────────────────────
- HOTP: code = Truncate(HMAC(key=secret, msg=counter)) mod 10^digits
- TOTP: HOTP with counter = floor(now / period), 30 s by default
- Dynamic truncation: 4 bytes at offset (last byte & 0x0F), top bit cleared

──────────────────────────────────────────────
Accepted scan formats
──────────────────────────────────────────────
- otpauth://totp/Issuer:account?secret=...&issuer=...
- otpauth-migration://offline?data=...   (Google Authenticator export)
- {"secret": "...", "name": "...", "issuer": "..."}
- secret=...&name=...&issuer=...
- a bare Base32 secret of at least 16 characters

──────────────────────────────────────────────
Quick use
──────────────────────────────────────────────
    from otpcore import parse, code_for, ParseError

    account = parse("otpauth://totp/Example:alice@example.com?secret=JBSWY3DPEHPK3PXP&issuer=Example")
    if not isinstance(account, ParseError):
        result = code_for(account)
        print(result.code, "valid for", result.remaining, "s")
"""
from .credential import Credential, new_credential
from .exceptions import (
    InvalidFormat,
    InvalidMigrationPayload,
    InvalidParameter,
    InvalidSecret,
    MissingSecret,
    NoSecretFound,
    OTPError,
    ParseError,
    ParseFailure,
    UnknownType,
    UnsupportedType,
)
from .migration import decode_migration_uri, encode_migration_uri
from .otp_core import (
    CodeResult,
    build_otpauth_uri,
    code_for,
    generate_code,
    hotp,
    seconds_remaining,
    totp,
)
from .uri_parser import parse, parse_all, parse_credentials

__all__ = [
    "CodeResult",
    "Credential",
    "InvalidFormat",
    "InvalidMigrationPayload",
    "InvalidParameter",
    "InvalidSecret",
    "MissingSecret",
    "NoSecretFound",
    "OTPError",
    "ParseError",
    "ParseFailure",
    "UnknownType",
    "UnsupportedType",
    "build_otpauth_uri",
    "code_for",
    "decode_migration_uri",
    "encode_migration_uri",
    "generate_code",
    "hotp",
    "new_credential",
    "parse",
    "parse_all",
    "parse_credentials",
    "seconds_remaining",
    "totp",
]
