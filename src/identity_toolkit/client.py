from __future__ import annotations

import logging
from http.cookies import CookieError, SimpleCookie
from typing import Any

from .certs import Certificates
from .config import Config
from .core import Token, format_token_error, verify_token
from .errors import CertificateError, TokenError
from .transport import build_transport, credentials_from_config, with_query_param

logger = logging.getLogger(__name__)


class Client:
    """Validates identity toolkit sessions for one relying party.

    The ID token lives in a cookie (``cookie_name``); :meth:`validate_token`
    accepts it only when it was issued for ``client_id``.
    """

    def __init__(
        self,
        config: Config,
        transport: Any = None,
        *,
        certs: Certificates | None = None,
    ) -> None:
        self.config = config.normalize()
        if transport is None:
            transport = build_transport(credentials_from_config(self.config))
        self.transport = transport
        if certs is None:
            certs_url = with_query_param(self.config.certs_url, "key", self.config.server_api_key)
            certs = Certificates(certs_url, transport)
            if not self.config.lazy_certs:
                try:
                    certs.load_if_necessary()
                except CertificateError:
                    certs.close()
                    raise
        self.certs = certs

    def token_from_cookie_header(self, header: str | None) -> str | None:
        if not header:
            return None
        cookie = SimpleCookie()
        try:
            cookie.load(header)
        except CookieError:
            return None
        morsel = cookie.get(self.config.cookie_name)
        if morsel is None or not morsel.value:
            return None
        return morsel.value

    def token_from_request(self, request: Any) -> str | None:
        """Extract the ID token from anything exposing ``headers.get("Cookie")``."""
        return self.token_from_cookie_header(request.headers.get("Cookie"))

    def validate_token(self, token: str) -> Token:
        try:
            return verify_token(token, [self.config.client_id], self.config.issuers, self.certs)
        except TokenError as exc:
            logger.debug(
                "token rejected: %s (%s)",
                type(exc).__name__,
                format_token_error(exc, include_cause=True),
            )
            raise

    def close(self) -> None:
        self.certs.close()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
