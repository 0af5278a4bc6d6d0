from __future__ import annotations

from jwt import exceptions as jwt_exceptions


class TokenError(jwt_exceptions.PyJWTError):
    """Base class for every ID token verification failure."""


class MissingAudienceError(TokenError, ValueError):
    def __init__(self, message: str = "missing audiences for token validation") -> None:
        super().__init__(message)


class MalformedTokenError(TokenError, jwt_exceptions.DecodeError):
    def __init__(self, message: str = "malformed token") -> None:
        super().__init__(message)


class InvalidAlgorithmError(TokenError, jwt_exceptions.InvalidAlgorithmError):
    def __init__(self, message: str = "invalid algorithm") -> None:
        super().__init__(message)


class InvalidIssuerError(TokenError, jwt_exceptions.InvalidIssuerError):
    def __init__(self, message: str = "invalid issuer") -> None:
        super().__init__(message)


class InvalidAudienceError(TokenError, jwt_exceptions.InvalidAudienceError):
    def __init__(self, message: str = "invalid audience") -> None:
        super().__init__(message)


class ExpiredTokenError(TokenError, jwt_exceptions.ExpiredSignatureError):
    def __init__(self, message: str = "token expired") -> None:
        super().__init__(message)


class KeyNotFoundError(TokenError, jwt_exceptions.PyJWKClientError):
    """Raised when the token's key id cannot be resolved.

    The certificate cache error that caused it, if any, is chained as
    ``__cause__``.
    """

    def __init__(self, message: str = "key not found") -> None:
        super().__init__(message)


class InvalidSignatureError(TokenError, jwt_exceptions.InvalidSignatureError):
    def __init__(self, message: str = "invalid signature") -> None:
        super().__init__(message)


class MalformedSegmentError(ValueError):
    """A JWT segment is not valid unpadded base64url."""


class CertificateError(Exception):
    """Base class for certificate cache failures."""


class CertificateFetchError(CertificateError):
    """Downloading or parsing the provider certificates failed."""


class CertificateNotFoundError(CertificateError, LookupError):
    def __init__(self, key_id: str) -> None:
        super().__init__(f"certificate not found for: {key_id}")
        self.key_id = key_id


class ConfigError(ValueError):
    """The client configuration is incomplete or invalid."""
