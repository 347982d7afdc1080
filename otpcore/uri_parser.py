"""Turn scanned or pasted text into validated credentials.

Input is classified in a fixed order:

1. an ``otpauth-migration://`` batch export anywhere in the text
2. an ``otpauth://`` URI anywhere in the text
3. a JSON object
4. a URL query string
5. a bare Base32 secret

Shapes 3-5 are rewritten into a canonical otpauth URI first, so every path
ends in the same URI reader.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Dict, List, Mapping, Optional, Sequence, Union
from urllib.parse import parse_qsl, unquote, unquote_plus, urlsplit

from .credential import Credential, new_credential
from .exceptions import (
    InvalidFormat,
    MissingOtpType,
    MissingSecret,
    NoSecretFound,
    ParseError,
    ParseFailure,
    UnknownType,
)
from .migration import decode_migration_uri, find_migration_uri
from .otp_core import build_otpauth_uri
from .validators import OTP_TYPES, validate_otp_type

logger = logging.getLogger(__name__)

OTPAUTH_SCHEME = "otpauth://"
MIN_BARE_SECRET_LENGTH = 16
MAX_TYPE_RETRIES = 1

UNKNOWN_ACCOUNT = "Unknown Account"
UNKNOWN_SERVICE = "Unknown Service"

_OTPAUTH_URI = re.compile(r"otpauth://[^\s\"']*", re.IGNORECASE)
_SECRET_PARAM = re.compile(r"[?&]secret=([^&#\s]*)", re.IGNORECASE)
_NON_BASE32 = re.compile(r"[^A-Z2-7]", re.IGNORECASE)
_TYPE_WORD = re.compile(r"[A-Za-z]+")

# accepted field names, checked in order; the first non-empty one wins
JSON_ALIASES: Dict[str, Sequence[str]] = {
    "secret": ("secret", "secretKey", "key"),
    "name": ("name", "account", "accountName"),
    "issuer": ("issuer", "service", "provider"),
    "algorithm": ("algorithm",),
    "digits": ("digits",),
    "period": ("period",),
}
QUERY_ALIASES: Dict[str, Sequence[str]] = {
    "secret": ("secret", "key"),
    "name": ("name", "account"),
    "issuer": ("issuer", "service"),
    "algorithm": ("algorithm",),
    "digits": ("digits",),
    "period": ("period",),
}

ParseResult = Union[Credential, ParseError]


def _pick(source: Mapping, aliases: Dict[str, Sequence[str]]) -> Dict[str, Optional[str]]:
    fields: Dict[str, Optional[str]] = {}
    for field, names in aliases.items():
        fields[field] = None
        for name in names:
            value = source.get(name)
            if value is not None and value != "":
                fields[field] = str(value)
                break
    return fields


def _uri_from_fields(fields: Mapping[str, Optional[str]]) -> str:
    return build_otpauth_uri(
        fields["secret"],
        fields["name"] or "Unknown",
        fields["issuer"] or "",
        algorithm=fields["algorithm"],
        digits=fields["digits"],
        period=fields["period"],
    )


def _uri_from_json(text: str) -> Optional[str]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    fields = _pick(data, JSON_ALIASES)
    if fields["secret"] is None:
        raise NoSecretFound("No secret found in JSON")
    return _uri_from_fields(fields)


def _uri_from_query(text: str) -> Optional[str]:
    query = text.split("?", 1)[1] if "?" in text else text
    params: Dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        params.setdefault(key, value)
    fields = _pick(params, QUERY_ALIASES)
    if fields["secret"] is None:
        if any(fields.values()):
            raise NoSecretFound("No secret found in parameters")
        return None
    return _uri_from_fields(fields)


def _uri_from_bare_secret(text: str) -> str:
    cleaned = _NON_BASE32.sub("", text).upper()
    if len(cleaned) < MIN_BARE_SECRET_LENGTH:
        raise InvalidFormat()
    return f"{OTPAUTH_SCHEME}totp/Unknown?secret={cleaned}"


def canonical_uri(text: str) -> str:
    """The otpauth URI that ``text`` stands for (shapes 2-5)."""
    match = _OTPAUTH_URI.search(text)
    if match:
        return match.group(0)
    uri = _uri_from_json(text)
    if uri is None:
        uri = _uri_from_query(text)
    if uri is None:
        uri = _uri_from_bare_secret(text)
    return uri


def _otp_type(parts) -> str:
    """The type segment of a split otpauth URI.

    ``otpauth://Example:alice?...`` and ``otpauth://?secret=...`` carry no
    type and raise ``MissingOtpType``; a word followed by a label path is a
    type, possibly an unsupported one.
    """
    host = parts.netloc
    if host.lower() in OTP_TYPES:
        return host.lower()
    if _TYPE_WORD.fullmatch(host) and parts.path.startswith("/"):
        return validate_otp_type(host)
    raise MissingOtpType()


def _force_totp(text: str) -> str:
    return re.sub(r"otpauth:/*", f"{OTPAUTH_SCHEME}totp/", text, count=1, flags=re.IGNORECASE)


def _split_label(path: str):
    raw_label = path[1:] if path.startswith("/") else path
    if ":" in raw_label:
        prefix, account = raw_label.split(":", 1)
        return unquote(prefix).strip(), unquote(account).strip()
    label = unquote(raw_label)
    if ":" in label:
        prefix, account = label.split(":", 1)
        return prefix.strip(), account.strip()
    return "", label.strip()


def _name_from_path(path: str) -> str:
    segments = [segment for segment in path.split("/") if segment]
    if not segments or segments[-1].lower() in OTP_TYPES:
        return ""
    return unquote(segments[-1]).split(":")[-1].strip()


def _credential_from_uri(uri: str) -> Credential:
    parts = urlsplit(uri)
    otp_type = _otp_type(parts)

    query: Dict[str, str] = {}
    for key, value in parse_qsl(parts.query):
        query.setdefault(key, value)

    secret = query.get("secret")
    if not secret:
        match = _SECRET_PARAM.search(uri)
        secret = unquote_plus(match.group(1)) if match else ""
    if not secret.strip():
        raise MissingSecret()

    label_issuer, name = _split_label(parts.path)
    issuer = (query.get("issuer") or "").strip() or label_issuer
    if not name:
        name = _name_from_path(parts.path)
    if not name and not issuer:
        name, issuer = UNKNOWN_ACCOUNT, UNKNOWN_SERVICE
    elif not name:
        name = UNKNOWN_ACCOUNT

    return new_credential(
        name=name,
        secret=secret,
        issuer=issuer,
        algorithm=query.get("algorithm"),
        digits=query.get("digits"),
        period=query.get("period"),
        otp_type=otp_type,
        counter=query.get("counter"),
    )


def parse_credentials(raw_text: Optional[str], retries_left: int = MAX_TYPE_RETRIES) -> List[Credential]:
    """Every credential in ``raw_text``; raises ``ParseError`` subclasses.

    A URI without a type is retried once as TOTP; ``retries_left`` bounds that.
    """
    text = (raw_text or "").strip()
    migration_uri = find_migration_uri(text)
    if migration_uri:
        return decode_migration_uri(migration_uri)

    uri = canonical_uri(text)
    try:
        return [_credential_from_uri(uri)]
    except MissingOtpType:
        if retries_left <= 0:
            raise UnknownType()
        logger.debug("OTP type missing, retrying as TOTP")
        return parse_credentials(_force_totp(text), retries_left - 1)


def parse_all(raw_text: Optional[str]) -> Union[List[Credential], ParseError]:
    """Like ``parse`` but keeps every account of a migration batch."""
    try:
        return parse_credentials(raw_text)
    except ParseError as exc:
        logger.info("Rejected scanned text (%s, %d chars)", exc.code, len(raw_text or ""))
        return exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected failure while parsing scanned text")
        return ParseFailure(f"Could not read the authentication data: {exc}")


def parse(raw_text: Optional[str]) -> ParseResult:
    """A credential for ``raw_text``, or the ``ParseError`` explaining why not.

    Never raises. For a migration batch the first account is returned; use
    ``parse_all`` to import the whole batch.
    """
    result = parse_all(raw_text)
    if isinstance(result, ParseError):
        return result
    return result[0]
