from __future__ import annotations

import json
import logging
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from .client import Client
from .core import format_token_error
from .errors import TokenError

logger = logging.getLogger(__name__)


class IdentityHandler(BaseHTTPRequestHandler):
    """Serves the signed-in user's identity, read from the session cookie.

    Bind a :class:`Client` with :func:`make_handler` before serving.
    """

    server_version = "IdentityToolkit/0.1"
    client: Client

    def end_headers(self) -> None:
        self.send_header("Cache-Control", "no-store")
        self.send_header("X-Content-Type-Options", "nosniff")
        self.send_header("X-Frame-Options", "DENY")
        self.send_header("Content-Security-Policy", "default-src 'none'")
        self.send_header("Cross-Origin-Opener-Policy", "same-origin")
        self.send_header("Cross-Origin-Resource-Policy", "same-origin")
        super().end_headers()

    def _send_json(self, payload: dict[str, Any], status: HTTPStatus = HTTPStatus.OK) -> None:
        data = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        path = self.path.split("?", 1)[0]
        if path == "/healthz":
            self._send_json({"ok": True})
            return
        if path == "/api/whoami":
            token = self.client.token_from_request(self)
            if token is None:
                self._send_json({"error": "not signed in"}, status=HTTPStatus.UNAUTHORIZED)
                return
            try:
                verified = self.client.validate_token(token)
            except TokenError as exc:
                self._send_json(
                    {"error": format_token_error(exc)}, status=HTTPStatus.UNAUTHORIZED
                )
                return
            self._send_json({"success": True, "user": verified.as_dict()})
            return
        self.send_error(HTTPStatus.NOT_FOUND, "Not found")

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002 - stdlib signature
        logger.info("%s - %s", self.address_string(), format % args)


def make_handler(client: Client) -> type[IdentityHandler]:
    return type("BoundIdentityHandler", (IdentityHandler,), {"client": client})


def serve(client: Client, host: str = "127.0.0.1", port: int = 8000) -> None:
    server = ThreadingHTTPServer((host, port), make_handler(client))
    print(f"Identity toolkit session server running on http://{host}:{port}")
    try:
        server.serve_forever()
    finally:
        server.server_close()
        client.close()
