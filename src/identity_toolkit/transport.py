"""Outbound HTTP transport for calls to the identity provider.

Every call goes through an :class:`urllib.request.OpenerDirector` whose
handler chain sets the client User-Agent and applies one of the credential
variants below. Callers only ever see the opener, so the certificate cache
and the client treat every credential kind the same way.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.parse
import urllib.request
from collections.abc import Callable
from typing import Any

import jwt

from .version import __version__

logger = logging.getLogger(__name__)

USER_AGENT = f"identity-toolkit-python/{__version__}"
IDENTITYTOOLKIT_SCOPE = "https://www.googleapis.com/auth/identitytoolkit"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

_ASSERTION_LIFETIME = 3600
# Refresh access tokens this many seconds before the provider says they expire.
_EXPIRY_MARGIN = 60


def with_query_param(url: str, name: str, value: str) -> str:
    """Return ``url`` with ``name=value`` in its query unless ``name`` is already set."""
    parts = urllib.parse.urlsplit(url)
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    if any(key == name for key, _ in query):
        return url
    query.append((name, value))
    return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(query)))


class APIKeyCredentials:
    """Authorizes requests with the server API key as a ``key`` query parameter."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("api key must not be empty")
        self.api_key = api_key

    def apply(self, request: urllib.request.Request) -> None:
        request.full_url = with_query_param(request.full_url, "key", self.api_key)


class AccessTokenCredentials:
    """Bearer credentials supplied by the hosting platform.

    ``token_source`` is either a fixed access token or a callable returning a
    current one; the callable is invoked for every request.
    """

    def __init__(self, token_source: str | Callable[[], str]) -> None:
        self._token_source = token_source

    def access_token(self) -> str:
        if callable(self._token_source):
            return self._token_source()
        return self._token_source

    def apply(self, request: urllib.request.Request) -> None:
        request.add_unredirected_header("Authorization", f"Bearer {self.access_token()}")


class ServiceAccountCredentials:
    """OAuth2 service account credentials (JWT bearer grant).

    A short-lived RS256 assertion signed with the service account key is
    exchanged for an access token, which is cached until shortly before it
    expires.
    """

    def __init__(
        self,
        email: str,
        private_key_pem: str | bytes,
        *,
        scope: str = IDENTITYTOOLKIT_SCOPE,
        token_uri: str = GOOGLE_TOKEN_URI,
        opener: Any = None,
    ) -> None:
        if not email:
            raise ValueError("service account email must not be empty")
        if not private_key_pem:
            raise ValueError("service account private key must not be empty")
        self.email = email
        self.scope = scope
        self.token_uri = token_uri
        self._private_key = private_key_pem
        # Token requests must not go through the authorizing opener itself.
        self._opener = opener or urllib.request.build_opener()
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    def assertion(self, now: int | None = None) -> str:
        issued = int(time.time()) if now is None else int(now)
        claims = {
            "iss": self.email,
            "scope": self.scope,
            "aud": self.token_uri,
            "iat": issued,
            "exp": issued + _ASSERTION_LIFETIME,
        }
        return jwt.encode(claims, key=self._private_key, algorithm="RS256")

    def _fetch_token(self) -> tuple[str, float]:
        body = urllib.parse.urlencode(
            {
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": self.assertion(),
            }
        ).encode("ascii")
        req = urllib.request.Request(
            self.token_uri,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        with self._opener.open(req, timeout=10) as response:
            payload = json.loads(response.read().decode("utf-8"))
        if not isinstance(payload, dict) or not isinstance(payload.get("access_token"), str):
            raise ValueError("token endpoint returned no access_token")
        expires_in = payload.get("expires_in", _ASSERTION_LIFETIME)
        if not isinstance(expires_in, (int, float)):
            raise ValueError("token endpoint returned an invalid expires_in")
        return payload["access_token"], time.time() + float(expires_in)

    def access_token(self) -> str:
        with self._lock:
            if self._token is None or time.time() >= self._expires_at - _EXPIRY_MARGIN:
                self._token, self._expires_at = self._fetch_token()
                logger.debug("minted access token for service account %s", self.email)
            return self._token

    def apply(self, request: urllib.request.Request) -> None:
        request.add_unredirected_header("Authorization", f"Bearer {self.access_token()}")


Credentials = APIKeyCredentials | AccessTokenCredentials | ServiceAccountCredentials


class CredentialsHandler(urllib.request.BaseHandler):
    # Run before the default handlers so the credentials are part of the request.
    handler_order = 400

    def __init__(self, credentials: Credentials) -> None:
        self.credentials = credentials

    def http_request(self, request: urllib.request.Request) -> urllib.request.Request:
        self.credentials.apply(request)
        return request

    https_request = http_request


def build_transport(
    credentials: Credentials | None = None,
    *,
    user_agent: str = USER_AGENT,
) -> urllib.request.OpenerDirector:
    handlers: list[urllib.request.BaseHandler] = []
    if credentials is not None:
        handlers.append(CredentialsHandler(credentials))
    opener = urllib.request.build_opener(*handlers)
    opener.addheaders = [("User-Agent", user_agent)]
    return opener


def credentials_from_config(config: Any) -> Credentials | None:
    """Pick the credential variant the configuration provides material for."""
    if config.service_account and config.pem_key:
        return ServiceAccountCredentials(config.service_account, config.pem_key)
    if config.server_api_key:
        return APIKeyCredentials(config.server_api_key)
    return None
