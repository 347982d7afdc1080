"""The persisted account record."""
from __future__ import annotations

import dataclasses
import time
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .otp_core import build_otpauth_uri
from .validators import (
    validate_algorithm,
    validate_counter,
    validate_digits,
    validate_name,
    validate_otp_type,
    validate_period,
    validate_secret,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class Credential:
    """One TOTP/HOTP account. Updates replace the whole record."""

    id: str
    name: str
    issuer: str
    secret: str
    algorithm: str = "SHA1"
    digits: int = 6
    period: int = 30
    created_at: int = 0
    otp_type: str = "totp"
    counter: int = 0

    @property
    def label(self) -> str:
        return f"{self.issuer}:{self.name}" if self.issuer else self.name

    def to_uri(self) -> str:
        return build_otpauth_uri(
            self.secret,
            self.name,
            self.issuer,
            algorithm=self.algorithm,
            digits=self.digits,
            period=self.period,
            otp_type=self.otp_type,
            counter=self.counter,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "issuer": self.issuer,
            "secret": self.secret,
            "algorithm": self.algorithm,
            "digits": self.digits,
            "period": self.period,
            "createdAt": self.created_at,
            "type": self.otp_type,
            "counter": self.counter,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Credential":
        """Rebuild a stored record, validating every field.

        Older backups carry no ``type``/``counter``; they read as TOTP.
        """
        if not data.get("id"):
            raise ValueError("stored account has no id")
        return cls(
            id=str(data["id"]),
            name=validate_name(data.get("name")),
            issuer=(data.get("issuer") or "").strip(),
            secret=validate_secret(data.get("secret")),
            algorithm=validate_algorithm(data.get("algorithm")),
            digits=validate_digits(data.get("digits")),
            period=validate_period(data.get("period")),
            created_at=int(data.get("createdAt") or 0),
            otp_type=validate_otp_type(data.get("type")),
            counter=validate_counter(data.get("counter")),
        )

    def replace(self, **changes: Any) -> "Credential":
        """Copy with ``changes`` applied and re-validated; id and created_at are kept."""
        changes.pop("id", None)
        changes.pop("created_at", None)
        updated = dataclasses.replace(self, **changes)
        return new_credential(
            name=updated.name,
            secret=updated.secret,
            issuer=updated.issuer,
            algorithm=updated.algorithm,
            digits=updated.digits,
            period=updated.period,
            otp_type=updated.otp_type,
            counter=updated.counter,
            credential_id=self.id,
            created_at=self.created_at,
        )


def new_credential(
    name: str,
    secret: str,
    issuer: Optional[str] = "",
    algorithm: Optional[str] = None,
    digits: Any = None,
    period: Any = None,
    otp_type: Optional[str] = None,
    counter: Any = None,
    credential_id: Optional[str] = None,
    created_at: Optional[int] = None,
) -> Credential:
    """Validate and normalize user or parser input into a new ``Credential``.

    A fresh id and creation time are assigned unless given.

    Raises:
        InvalidSecret, InvalidParameter, UnsupportedType
    """
    return Credential(
        id=credential_id or uuid.uuid4().hex,
        name=validate_name(name),
        issuer=(issuer or "").strip(),
        secret=validate_secret(secret),
        algorithm=validate_algorithm(algorithm),
        digits=validate_digits(digits),
        period=validate_period(period),
        created_at=created_at if created_at is not None else _now_ms(),
        otp_type=validate_otp_type(otp_type),
        counter=validate_counter(counter),
    )
