from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import pytest
from cryptography import x509

from identity_toolkit.samples import generate_signing_material


class SigningMaterial:
    def __init__(self, private_pem: str, cert_pem: str) -> None:
        self.private_pem = private_pem
        self.cert_pem = cert_pem
        self.cert = x509.load_pem_x509_certificate(cert_pem.encode("utf-8"))


@pytest.fixture(scope="session")
def signing() -> SigningMaterial:
    return SigningMaterial(*generate_signing_material())


@pytest.fixture(scope="session")
def other_signing() -> SigningMaterial:
    return SigningMaterial(*generate_signing_material("Other Signer"))


class ProviderStub:
    """Scriptable stand-in for the provider's certificate endpoint."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.status = 200
        self.body: bytes = b"{}"
        self.cache_control: str | None = "public, max-age=3600"
        # Advertised Content-Length; None means the real body length.
        self.content_length: int | None = None
        self.requests: list[dict[str, Any]] = []
        self.base_url = ""

    def respond(
        self,
        *,
        certs: dict[str, str] | None = None,
        body: bytes | None = None,
        status: int = 200,
        cache_control: str | None = "public, max-age=3600",
        content_length: int | None = None,
    ) -> None:
        with self.lock:
            if certs is not None:
                self.body = json.dumps(certs).encode("utf-8")
            elif body is not None:
                self.body = body
            self.status = status
            self.cache_control = cache_control
            self.content_length = content_length

    @property
    def request_count(self) -> int:
        with self.lock:
            return len(self.requests)

    def url(self, path: str = "/publicKeys") -> str:
        return self.base_url + path


def _make_handler(stub: ProviderStub) -> type[BaseHTTPRequestHandler]:
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
            with stub.lock:
                stub.requests.append(
                    {"path": self.path, "method": "GET", "headers": self.headers}
                )
                status, body, cache_control = stub.status, stub.body, stub.cache_control
                length = stub.content_length if stub.content_length is not None else len(body)
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(length))
            if cache_control is not None:
                self.send_header("Cache-Control", cache_control)
            self.end_headers()
            self.wfile.write(body)

        def do_POST(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
            length = int(self.headers.get("Content-Length", "0"))
            form = self.rfile.read(length).decode("utf-8")
            with stub.lock:
                stub.requests.append(
                    {
                        "path": self.path,
                        "method": "POST",
                        "headers": self.headers,
                        "body": form,
                    }
                )
            data = json.dumps({"access_token": "sa-access-token", "expires_in": 3600}).encode()
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            pass

    return Handler


@pytest.fixture()
def provider() -> Iterator[ProviderStub]:
    stub = ProviderStub()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(stub))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    host_text = host.decode("ascii") if isinstance(host, bytes) else host
    stub.base_url = f"http://{host_text}:{port}"
    try:
        yield stub
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)
