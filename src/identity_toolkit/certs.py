"""Self-refreshing cache of the identity provider's public certificates.

The provider publishes its signing certificates as a JSON object keyed by key
id::

    {
      "40QoZg": "-----BEGIN CERTIFICATE-----...-----END CERTIFICATE-----",
      "5DaIwB": "-----BEGIN CERTIFICATE-----...-----END CERTIFICATE-----"
    }

The cache keeps them for as long as the response's ``Cache-Control:
max-age`` allows and refetches them on a background timer. A failed refetch
keeps the previous certificates and retries after a short interval.
"""

from __future__ import annotations

import http.client
import json
import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Mapping
from http import HTTPStatus
from types import MappingProxyType
from typing import Any, cast

from cryptography import x509

from .errors import CertificateError, CertificateFetchError, CertificateNotFoundError
from .transport import build_transport

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TIME = 3600.0
RETRY_INTERVAL = 30.0
DEFAULT_TIMEOUT = 10.0

_MAX_AGE_PREFIX = "max-age="
_EMPTY: Mapping[str, x509.Certificate] = MappingProxyType({})


def parse_certs(body: bytes) -> dict[str, x509.Certificate]:
    """Parse the certificates response; any bad entry fails the whole response."""
    try:
        obj = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CertificateFetchError(f"certificates response is not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise CertificateFetchError("certificates response must be a JSON object")

    certs: dict[str, x509.Certificate] = {}
    for key_id, pem_text in cast(dict[str, Any], obj).items():
        if not isinstance(pem_text, str):
            raise CertificateFetchError(f"certificate for {key_id} must be a PEM string")
        try:
            certs[key_id] = x509.load_pem_x509_certificate(pem_text.encode("utf-8"))
        except ValueError as exc:
            raise CertificateFetchError(f"invalid certificate for {key_id}: {exc}") from exc
    return certs


def cache_time(cache_control: str | None) -> float:
    """Seconds to trust a certificates response, from its Cache-Control header.

    The endpoint should always send a valid ``max-age``. When it does not,
    fall back to a default so the endpoint is not hammered.
    """
    for directive in (cache_control or "").split(","):
        directive = directive.strip()
        if directive.startswith(_MAX_AGE_PREFIX):
            value = directive[len(_MAX_AGE_PREFIX) :]
            if value.isascii() and value.isdigit():
                return float(int(value))
    return DEFAULT_CACHE_TIME


def redact_url(url: str) -> str:
    """Drop the query and fragment, which may carry the server API key."""
    return urllib.parse.urlsplit(url)._replace(query="", fragment="").geturl()


def download_certs(
    url: str,
    transport: Any,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> tuple[dict[str, x509.Certificate], float]:
    safe_url = redact_url(url)
    req = urllib.request.Request(url, headers={"Accept": "application/json"})
    try:
        with transport.open(req, timeout=timeout) as response:
            status = int(response.status)
            delay = cache_time(response.headers.get("Cache-Control"))
            body = response.read()
    except urllib.error.HTTPError as exc:
        raise CertificateFetchError(f"get {safe_url}: {exc.code} {exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise CertificateFetchError(f"get {safe_url}: {exc.reason}") from exc
    except (http.client.HTTPException, OSError) as exc:
        raise CertificateFetchError(f"get {safe_url}: {type(exc).__name__}: {exc}") from exc
    except ValueError as exc:
        # urllib echoes the full URL, query included, in these messages.
        raise CertificateFetchError(f"get {safe_url}: invalid request") from exc
    if status != HTTPStatus.OK:
        raise CertificateFetchError(f"get {safe_url}: unexpected status {status}")
    return parse_certs(body), delay


class Certificates:
    """Provider certificates indexed by key id ("kid").

    Safe to share between threads. Construction is lazy; use :meth:`load`
    for an eager, synchronous first fetch. Once loaded, the certificates are
    refreshed in the background for as long as the instance is open.
    """

    def __init__(
        self,
        url: str | None,
        transport: Any = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        certs: Mapping[str, x509.Certificate] | None = None,
    ) -> None:
        if transport is None:
            transport = build_transport()
        self.url = url
        self._transport = transport
        self._timeout = timeout

        self._lock = threading.Lock()
        self._load_lock = threading.Lock()
        self._certs: Mapping[str, x509.Certificate] = _EMPTY
        self._error: CertificateError | None = None
        self._timer: threading.Timer | None = None
        self._interval: float | None = None
        self._loaded = False
        self._closed = False
        if certs is not None:
            self._certs = MappingProxyType(dict(certs))
            self._loaded = True

    @classmethod
    def load(cls, url: str, transport: Any = None, **kwargs: Any) -> Certificates:
        """Download the certificates now; raise if the first fetch fails."""
        cache = cls(url, transport, **kwargs)
        try:
            cache.load_if_necessary()
        except CertificateError:
            cache.close()
            raise
        return cache

    def load_if_necessary(self) -> None:
        """Run the first fetch unless loaded or a refresh is already scheduled."""
        with self._load_lock:
            if self._started():
                return
            self.refresh()
            with self._lock:
                error = None if self._loaded else self._error
            if error is not None:
                raise error

    def cert(self, key_id: str) -> x509.Certificate:
        """Return the certificate for ``key_id``.

        When the key id is unknown, the last refresh error is raised if there
        is one, since it is the likely reason the key is missing.
        """
        if not self._started():
            try:
                self.load_if_necessary()
            except CertificateError:
                logger.debug("lazy certificate load failed for %s", redact_url(self.url or ""))
        with self._lock:
            certs, error = self._certs, self._error
        found = certs.get(key_id)
        if found is not None:
            return found
        if error is not None:
            raise error
        raise CertificateNotFoundError(key_id)

    def refresh(self) -> None:
        """Fetch the certificates once and schedule the next refresh."""
        if self.url is None:
            raise CertificateFetchError("no certificates url configured")
        try:
            certs, delay = download_certs(self.url, self._transport, timeout=self._timeout)
        except CertificateFetchError as exc:
            logger.warning(
                "certificate refresh failed url=%s error=%s retry_in=%.0fs",
                redact_url(self.url),
                exc,
                RETRY_INTERVAL,
            )
            self._install(None, exc, RETRY_INTERVAL)
            return
        logger.info(
            "certificates refreshed url=%s keys=%d next_refresh_in=%.0fs",
            redact_url(self.url),
            len(certs),
            delay,
        )
        self._install(MappingProxyType(certs), None, delay)

    def _install(
        self,
        certs: Mapping[str, x509.Certificate] | None,
        error: CertificateError | None,
        delay: float,
    ) -> None:
        with self._lock:
            if self._closed:
                return
            self._error = error
            if certs is not None:
                self._certs = certs
                self._loaded = True
            self._schedule(delay)

    def _schedule(self, delay: float) -> None:
        # Caller holds self._lock.
        if self._timer is not None:
            self._timer.cancel()
        timer = threading.Timer(delay, self._run_scheduled_refresh)
        timer.daemon = True
        self._timer = timer
        self._interval = delay
        timer.start()
        logger.debug("next certificate refresh in %.0fs", delay)

    def _run_scheduled_refresh(self) -> None:
        try:
            self.refresh()
        except Exception as exc:  # noqa: BLE001 - keep the refresh loop alive
            url = redact_url(self.url) if self.url else None
            logger.exception("unexpected error refreshing certificates from %s", url)
            error = CertificateFetchError(f"get {url}: unexpected {type(exc).__name__}")
            error.__cause__ = exc
            self._install(None, error, RETRY_INTERVAL)

    def _started(self) -> bool:
        with self._lock:
            return self._loaded or self._timer is not None or self._closed

    def close(self) -> None:
        """Cancel the pending refresh; the cached certificates stay readable."""
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def __enter__(self) -> Certificates:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def key_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._certs)

    @property
    def last_error(self) -> CertificateError | None:
        with self._lock:
            return self._error

    @property
    def refresh_interval(self) -> float | None:
        """Delay used for the currently scheduled refresh, if any."""
        with self._lock:
            return self._interval if self._timer is not None else None
