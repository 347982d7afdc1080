"""Google Authenticator ``otpauth-migration://`` payloads.

The ``data`` parameter is Base64 of a protobuf ``MigrationPayload``::

    message MigrationPayload {
      repeated OtpParameters otp_parameters = 1;
      int32 version = 2; int32 batch_size = 3; int32 batch_index = 4; int32 batch_id = 5;
    }
    message OtpParameters {
      bytes secret = 1; string name = 2; string issuer = 3;
      Algorithm algorithm = 4; DigitCount digits = 5; OtpType type = 6; int64 counter = 7;
    }

Only this one message pair is needed, so the wire format is read and
written directly instead of through generated protobuf classes.
"""
from __future__ import annotations

import base64
import binascii
import logging
import random
import re
from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote, unquote

from .credential import Credential, new_credential
from .exceptions import InvalidMigrationPayload, OTPError

logger = logging.getLogger(__name__)

MIGRATION_SCHEME = "otpauth-migration://"
MIGRATION_PREFIX = MIGRATION_SCHEME + "offline?data="

# enum values of the Google Authenticator export format
ALGORITHM_MAP = {0: "SHA1", 1: "SHA1", 2: "SHA256", 3: "SHA512", 4: "MD5"}
DIGIT_COUNT_MAP = {0: 6, 1: 6, 2: 8}
OTP_TYPE_MAP = {0: "totp", 1: "hotp", 2: "totp"}

_ALGORITHM_CODES = {"SHA1": 1, "SHA256": 2, "SHA512": 3}
_DIGIT_CODES = {6: 1, 8: 2}
_TYPE_CODES = {"hotp": 1, "totp": 2}

_DATA_PARAM = re.compile(r"[?&]data=([^&#\s]*)", re.IGNORECASE)
_MIGRATION_URI = re.compile(r"otpauth-migration://[^\s\"']*", re.IGNORECASE)

WIRETYPE_VARINT = 0
WIRETYPE_FIXED64 = 1
WIRETYPE_LENGTH_DELIMITED = 2
WIRETYPE_FIXED32 = 5


class _WireReader:
    """Minimal protobuf wire format reader."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.data)

    def read_varint(self) -> int:
        result = 0
        shift = 0
        while True:
            if self.pos >= len(self.data):
                raise InvalidMigrationPayload("Truncated migration payload")
            b = self.data[self.pos]
            self.pos += 1
            result |= (b & 0x7F) << shift
            if not b & 0x80:
                return result
            shift += 7
            if shift > 63:
                raise InvalidMigrationPayload("Malformed varint in migration payload")

    def read_tag(self) -> Tuple[int, int]:
        tag = self.read_varint()
        return tag >> 3, tag & 0x07

    def read_length_delimited(self) -> bytes:
        length = self.read_varint()
        end = self.pos + length
        if end > len(self.data):
            raise InvalidMigrationPayload("Truncated migration payload")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def skip_field(self, wire_type: int) -> None:
        if wire_type == WIRETYPE_VARINT:
            self.read_varint()
        elif wire_type == WIRETYPE_LENGTH_DELIMITED:
            self.read_length_delimited()
        elif wire_type in (WIRETYPE_FIXED64, WIRETYPE_FIXED32):
            size = 8 if wire_type == WIRETYPE_FIXED64 else 4
            if self.pos + size > len(self.data):
                raise InvalidMigrationPayload("Truncated migration payload")
            self.pos += size
        else:
            raise InvalidMigrationPayload(f"Unknown wire type {wire_type} in migration payload")


def _varint(n: int) -> bytes:
    out = bytearray()
    while True:
        to_write = n & 0x7F
        n >>= 7
        if n:
            out.append(to_write | 0x80)
        else:
            out.append(to_write)
            return bytes(out)


def _len_delimited(field: int, payload: bytes) -> bytes:
    return _varint((field << 3) | WIRETYPE_LENGTH_DELIMITED) + _varint(len(payload)) + payload


def _varint_field(field: int, value: int) -> bytes:
    return _varint((field << 3) | WIRETYPE_VARINT) + _varint(value)


def is_migration_uri(text: str) -> bool:
    return text.strip().lower().startswith(MIGRATION_SCHEME)


def find_migration_uri(text: str) -> Optional[str]:
    """The first ``otpauth-migration://`` URI anywhere in ``text``."""
    match = _MIGRATION_URI.search(text)
    return match.group(0) if match else None


def extract_payload(uri: str) -> bytes:
    """Raw protobuf bytes from the ``data`` parameter of a migration URI."""
    match = _DATA_PARAM.search(uri.strip())
    data = unquote(match.group(1)) if match else ""
    if not data:
        raise InvalidMigrationPayload("Invalid migration data format")
    data = data.replace(" ", "+").replace("-", "+").replace("_", "/")
    data += "=" * (-len(data) % 4)
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidMigrationPayload("Migration data is not valid Base64") from exc


def _parse_otp_parameters(chunk: bytes) -> dict:
    reader = _WireReader(chunk)
    params = {"secret": b"", "name": "", "issuer": "", "algorithm": 0, "digits": 0, "type": 0, "counter": 0}
    while not reader.at_end():
        field, wire_type = reader.read_tag()
        if field in (1, 2, 3) and wire_type == WIRETYPE_LENGTH_DELIMITED:
            value = reader.read_length_delimited()
            if field == 1:
                params["secret"] = value
            else:
                params["name" if field == 2 else "issuer"] = value.decode("utf-8", errors="replace")
        elif field in (4, 5, 6, 7) and wire_type == WIRETYPE_VARINT:
            key = {4: "algorithm", 5: "digits", 6: "type", 7: "counter"}[field]
            params[key] = reader.read_varint()
        else:
            reader.skip_field(wire_type)
    return params


def _split_name(name: str, issuer: str) -> Tuple[str, str]:
    # exports often carry "Issuer:account" in the name field
    if ":" in name:
        prefix, rest = name.split(":", 1)
        if not issuer:
            issuer = prefix.strip()
        if prefix.strip() == issuer:
            name = rest
    return name.strip(), issuer.strip()


def _to_credential(params: dict) -> Credential:
    algorithm = ALGORITHM_MAP.get(params["algorithm"], "SHA1")
    name, issuer = _split_name(params["name"], params["issuer"])
    secret = base64.b32encode(params["secret"]).decode("ascii").rstrip("=")
    return new_credential(
        name=name or "Unknown Account",
        secret=secret,
        issuer=issuer,
        algorithm=algorithm,
        digits=DIGIT_COUNT_MAP.get(params["digits"], 6),
        otp_type=OTP_TYPE_MAP.get(params["type"], "totp"),
        counter=params["counter"],
    )


def decode_migration_payload(raw: bytes) -> List[Credential]:
    """All usable accounts of a ``MigrationPayload``.

    Accounts that cannot be represented (MD5, empty secret) are skipped.

    Raises:
        InvalidMigrationPayload: malformed payload or no usable account
    """
    reader = _WireReader(raw)
    credentials: List[Credential] = []
    seen = 0
    while not reader.at_end():
        field, wire_type = reader.read_tag()
        if field != 1 or wire_type != WIRETYPE_LENGTH_DELIMITED:
            reader.skip_field(wire_type)
            continue
        seen += 1
        params = _parse_otp_parameters(reader.read_length_delimited())
        try:
            credentials.append(_to_credential(params))
        except OTPError as exc:
            logger.warning("Skipping migrated account %r: %s", params["name"], exc.message)
    if not credentials:
        raise InvalidMigrationPayload(
            "The migration QR code contains no usable accounts." if seen else None
        )
    logger.info("Decoded %d of %d migrated accounts", len(credentials), seen)
    return credentials


def decode_migration_uri(uri: str) -> List[Credential]:
    if not is_migration_uri(uri):
        raise InvalidMigrationPayload()
    return decode_migration_payload(extract_payload(uri))


def encode_migration_payload(
    credentials: Iterable[Credential], batch_index: int = 0, batch_size: int = 1
) -> bytes:
    parts = []
    for credential in credentials:
        digits = _DIGIT_CODES.get(credential.digits)
        if digits is None:
            logger.warning(
                "%s uses %d digits; exported as unspecified", credential.label, credential.digits
            )
            digits = 0
        if credential.period != 30:
            logger.warning("%s uses a %ds period, which migration QR codes cannot carry",
                           credential.label, credential.period)
        otp = b"".join(
            [
                _len_delimited(1, base64.b32decode(credential.secret + "=" * (-len(credential.secret) % 8))),
                _len_delimited(2, credential.name.encode("utf-8")),
                _len_delimited(3, credential.issuer.encode("utf-8")),
                _varint_field(4, _ALGORITHM_CODES[credential.algorithm]),
                _varint_field(5, digits),
                _varint_field(6, _TYPE_CODES[credential.otp_type]),
                _varint_field(7, credential.counter),
            ]
        )
        parts.append(_len_delimited(1, otp))
    parts.append(_varint_field(2, 1))
    parts.append(_varint_field(3, batch_size))
    parts.append(_varint_field(4, batch_index))
    parts.append(_varint_field(5, random.getrandbits(31)))
    return b"".join(parts)


def encode_migration_uri(
    credentials: Iterable[Credential], batch_index: int = 0, batch_size: int = 1
) -> str:
    payload = encode_migration_payload(credentials, batch_index, batch_size)
    data = base64.b64encode(payload).decode("ascii")
    return MIGRATION_PREFIX + quote(data, safe="")
