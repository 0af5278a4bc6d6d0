from __future__ import annotations

import base64
import json
import math
import time
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from cryptography.hazmat.primitives.asymmetric import rsa
from jwt import algorithms
from jwt import exceptions as jwt_exceptions

from .errors import (
    CertificateError,
    ExpiredTokenError,
    InvalidAlgorithmError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    KeyNotFoundError,
    MalformedSegmentError,
    MalformedTokenError,
    MissingAudienceError,
)

SUPPORTED_ALGORITHM = "RS256"

_RS256 = algorithms.RSAAlgorithm(algorithms.RSAAlgorithm.SHA256)


@dataclass(frozen=True)
class Token:
    """A verified ID token issued by the identity provider."""

    issuer: str
    audience: str
    issued_at: datetime
    expire_at: datetime
    local_id: str
    email: str | None
    email_verified: bool
    provider_id: str | None
    display_name: str | None
    photo_url: str | None
    # Kept so the token can be forwarded to the provider's account APIs.
    token_string: str

    @property
    def expired(self) -> bool:
        return datetime.now(timezone.utc) > self.expire_at

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("token_string")
        data["issued_at"] = int(self.issued_at.timestamp())
        data["expire_at"] = int(self.expire_at.timestamp())
        return data


def decode_segment(segment: str) -> bytes:
    """Decode one base64url JWT segment, restoring stripped padding."""
    remainder = len(segment) % 4
    if remainder == 2:
        segment += "=="
    elif remainder == 3:
        segment += "="
    # b64decode maps "-_" onto "+/" before validating, so reject those up front.
    if "+" in segment or "/" in segment:
        raise MalformedSegmentError("segment is not base64url encoded")
    try:
        return base64.b64decode(segment, altchars=b"-_", validate=True)
    except ValueError as exc:
        raise MalformedSegmentError(f"invalid base64url segment: {exc}") from exc


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name}")


def _decode_json_segment(segment: str) -> dict[str, Any]:
    try:
        obj = json.loads(decode_segment(segment), parse_constant=_reject_constant)
    except (MalformedSegmentError, ValueError) as exc:
        raise MalformedTokenError() from exc
    if not isinstance(obj, dict):
        raise MalformedTokenError()
    return obj


def _optional(claims: dict[str, Any], *names: str, kind: type | tuple[type, ...] = str) -> Any:
    for name in names:
        value = claims.get(name)
        if value is None:
            continue
        # bool is an int subclass; never let true/false stand in for a timestamp.
        if isinstance(value, bool) and kind is not bool:
            raise MalformedTokenError(f"claim {name} has the wrong type")
        if not isinstance(value, kind):
            raise MalformedTokenError(f"claim {name} has the wrong type")
        if isinstance(value, float) and not math.isfinite(value):
            raise MalformedTokenError(f"claim {name} is not a finite number")
        return value
    return None


def _parse_claims(segment: str) -> dict[str, Any]:
    claims = _decode_json_segment(segment)
    iat = _optional(claims, "iat", kind=(int, float)) or 0
    exp = _optional(claims, "exp", kind=(int, float)) or 0
    return {
        "iss": _optional(claims, "iss") or "",
        "aud": _optional(claims, "aud") or "",
        "iat": _timestamp(iat),
        "exp": exp,
        "expire_at": _timestamp(exp),
        "user_id": _optional(claims, "user_id", "sub") or "",
        "email": _optional(claims, "email"),
        "verified": bool(_optional(claims, "verified", "email_verified", kind=bool)),
        "provider_id": _optional(claims, "provider_id", "providerId"),
        "display_name": _optional(claims, "display_name"),
        "photo_url": _optional(claims, "photo_url"),
    }


def _parse_header(segment: str) -> tuple[str, str]:
    header = _decode_json_segment(segment)
    alg = header.get("alg", "")
    kid = header.get("kid", "")
    if not isinstance(alg, str) or not isinstance(kid, str):
        raise MalformedTokenError()
    return alg, kid


def _timestamp(value: float) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise MalformedTokenError("timestamp out of range") from exc


def verify_token(
    token: str,
    audiences: Sequence[str],
    issuers: Sequence[str] | None,
    certs: Any,
    *,
    now: float | None = None,
) -> Token:
    """Verify an ID token and return the typed result.

    A token is valid if and only if:

    1. its ``iss`` is one of ``issuers`` (skipped when ``issuers`` is empty);
    2. its ``aud`` is one of ``audiences``;
    3. it is not expired according to ``exp``;
    4. it is RS256-signed by the certificate named by its ``kid``.

    The first failing check decides the raised error. Expiry is evaluated
    before the signature, but a ``Token`` is only ever returned once the
    signature has been verified.
    """
    if not audiences:
        raise MissingAudienceError()
    parts = token.split(".")
    if len(parts) != 3:
        raise MalformedTokenError()

    claims = _parse_claims(parts[1])
    if issuers and claims["iss"] not in issuers:
        raise InvalidIssuerError()
    if claims["aud"] not in audiences:
        raise InvalidAudienceError()
    current = time.time() if now is None else float(now)
    if current > claims["exp"]:
        raise ExpiredTokenError()

    alg, kid = _parse_header(parts[0])
    if alg != SUPPORTED_ALGORITHM:
        raise InvalidAlgorithmError()
    try:
        cert = certs.cert(kid)
    except (CertificateError, LookupError) as exc:
        raise KeyNotFoundError() from exc

    try:
        signature = decode_segment(parts[2])
    except MalformedSegmentError as exc:
        raise MalformedTokenError() from exc
    public_key = cert.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise InvalidSignatureError("certificate does not hold an RSA key")
    signing_input = f"{parts[0]}.{parts[1]}".encode("ascii")
    if not _RS256.verify(signing_input, public_key, signature):
        raise InvalidSignatureError()

    return Token(
        issuer=claims["iss"],
        audience=claims["aud"],
        issued_at=claims["iat"],
        expire_at=claims["expire_at"],
        local_id=claims["user_id"],
        email=claims["email"],
        email_verified=claims["verified"],
        provider_id=claims["provider_id"],
        display_name=claims["display_name"],
        photo_url=claims["photo_url"],
        token_string=token,
    )


def format_token_error(exc: jwt_exceptions.PyJWTError, *, include_cause: bool = False) -> str:
    """Short message for end users.

    The chained certificate error is only added with ``include_cause``; it
    names the certificates endpoint and is meant for operators, not visitors.
    """
    if include_cause and isinstance(exc, KeyNotFoundError) and exc.__cause__ is not None:
        return f"{exc}: {exc.__cause__}"
    if isinstance(exc, jwt_exceptions.ExpiredSignatureError):
        return "token is expired"
    if isinstance(exc, jwt_exceptions.InvalidSignatureError):
        return "signature verification failed"
    return str(exc)
