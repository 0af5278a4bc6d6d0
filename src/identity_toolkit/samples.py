from __future__ import annotations

import datetime as dt
import time
from typing import Any

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

DEMO_ISSUER = "https://identitytoolkit.google.com/"
DEMO_AUDIENCE = "demo-client.apps.googleusercontent.com"
DEMO_KID = "demo-kid"


def generate_signing_material(common_name: str = "Identity Toolkit Demo") -> tuple[str, str]:
    """Return ``(private_key_pem, certificate_pem)`` for a fresh self-signed RSA key."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")

    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = dt.datetime.now(dt.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - dt.timedelta(minutes=5))
        .not_valid_after(now + dt.timedelta(days=365))
        .sign(private_key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")
    return private_pem, cert_pem


def sample_claims(
    *,
    issuer: str = DEMO_ISSUER,
    audience: str = DEMO_AUDIENCE,
    exp_seconds: int = 3600,
    now: int | None = None,
    **extra: Any,
) -> dict[str, Any]:
    issued = int(time.time()) if now is None else int(now)
    claims: dict[str, Any] = {
        "iss": issuer,
        "aud": audience,
        "iat": issued,
        "exp": issued + int(exp_seconds),
        "user_id": "16109857760607106080",
        "email": "demo-user@example.com",
        "verified": True,
        "provider_id": "google.com",
        "display_name": "Demo User",
        "photo_url": "https://example.com/picture/16109857760607106080",
    }
    claims.update(extra)
    return claims


def sign_sample_token(
    claims: dict[str, Any],
    private_pem: str,
    kid: str | None = DEMO_KID,
    alg: str = "RS256",
) -> str:
    headers = {"kid": kid} if kid is not None else None
    return jwt.encode(claims, key=private_pem, algorithm=alg, headers=headers)


def generate_sample(exp_seconds: int = 3600, kid: str = DEMO_KID) -> dict[str, Any]:
    """Everything needed to exercise verification offline."""
    private_pem, cert_pem = generate_signing_material()
    claims = sample_claims(exp_seconds=exp_seconds)
    return {
        "token": sign_sample_token(claims, private_pem, kid=kid),
        "kid": kid,
        "certs": {kid: cert_pem},
        "private_key_pem": private_pem,
        "aud": claims["aud"],
        "iss": claims["iss"],
    }
