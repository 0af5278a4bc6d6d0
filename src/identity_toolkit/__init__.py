from .certs import Certificates
from .client import Client
from .config import Config, load_config
from .core import Token, decode_segment, verify_token
from .errors import (
    CertificateError,
    CertificateFetchError,
    CertificateNotFoundError,
    ConfigError,
    ExpiredTokenError,
    InvalidAlgorithmError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    KeyNotFoundError,
    MalformedTokenError,
    MissingAudienceError,
    TokenError,
)
from .version import __version__

__all__ = [
    "CertificateError",
    "CertificateFetchError",
    "CertificateNotFoundError",
    "Certificates",
    "Client",
    "Config",
    "ConfigError",
    "ExpiredTokenError",
    "InvalidAlgorithmError",
    "InvalidAudienceError",
    "InvalidIssuerError",
    "InvalidSignatureError",
    "KeyNotFoundError",
    "MalformedTokenError",
    "MissingAudienceError",
    "Token",
    "TokenError",
    "__version__",
    "decode_segment",
    "load_config",
    "verify_token",
]
