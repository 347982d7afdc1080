"""Typed failures raised by the OTP core.

Every error carries a stable ``code`` (used by the HTTP API and the CLI) and
a ``message`` that can be shown to the user as-is.
"""
from __future__ import annotations

from typing import Optional


class OTPError(Exception):
    code = "otp_error"
    default_message = "Could not process the authentication data."

    def __init__(self, message: Optional[str] = None, *, field: Optional[str] = None):
        self.message = message or self.default_message
        self.field = field
        super().__init__(self.message)

    def to_dict(self) -> dict:
        data = {"error": self.code, "message": self.message}
        if self.field:
            data["field"] = self.field
        return data


class ParseError(OTPError):
    code = "parse_error"


class InvalidFormat(ParseError):
    code = "invalid_format"
    default_message = "The QR code does not contain a valid authentication URL. Please check the format."


class MissingSecret(ParseError):
    code = "missing_secret"
    default_message = "The QR code is missing the required secret key. Please ensure it contains a valid secret."


class NoSecretFound(ParseError):
    code = "no_secret_found"
    default_message = "No secret key was found in the scanned data."


class UnsupportedType(ParseError):
    code = "unsupported_type"
    default_message = "This type of authentication is not supported. Please use TOTP or HOTP."


class UnknownType(ParseError):
    code = "unknown_type"
    default_message = "Could not determine the authentication type. Please check the QR code."


class InvalidMigrationPayload(ParseError):
    code = "invalid_migration_payload"
    default_message = "The migration QR code could not be read."


class InvalidSecret(ParseError):
    code = "invalid_secret"
    default_message = "The secret key is not valid Base32."


class InvalidParameter(ParseError):
    code = "invalid_parameter"
    default_message = "One of the account parameters is not valid."


class ParseFailure(ParseError):
    code = "parse_failure"
    default_message = "Could not read the authentication data."


class MissingOtpType(ParseError):
    """Internal signal: the URI has no type segment. Triggers one retry."""

    code = "missing_otp_type"
    default_message = "Missing OTP type."
