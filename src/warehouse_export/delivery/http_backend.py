from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests
from requests.auth import HTTPBasicAuth

from warehouse_export.catalog.records import Backend
from warehouse_export.exceptions.errors import DeliveryError
from warehouse_export.logging.logger import get_logger, register_secret

log = get_logger("delivery.http_backend")


@dataclass(frozen=True)
class DeliveryReceipt:
    url: str
    status_code: int
    bytes_sent: int


class BackendDelivery:
    """Uploads export files to a backend with ``PUT <backend.url><filename>``.

    Only https targets are accepted; the check happens before any connection
    is opened. Redirects are never followed, so a 3xx answer is a failed
    delivery. Without an injected ``session`` every delivery opens its own,
    which lets one instance serve several threads.
    """

    def __init__(self, timeout_seconds: float = 30, session: Optional[requests.Session] = None):
        self.timeout_seconds = timeout_seconds
        self.session = session

    @staticmethod
    def target_url(backend: Backend, filename: str) -> str:
        return f"{backend.url}{filename}"

    def deliver(self, backend: Backend, filename: str, data: bytes) -> DeliveryReceipt:
        url = self.target_url(backend, filename)
        parsed = urlparse(url)
        if parsed.scheme.lower() != "https" or not parsed.netloc:
            raise DeliveryError(f"Refusing to deliver over a non-https URL: {url}", backend=backend.name)

        auth = None
        if backend.username:
            register_secret(backend.password)
            auth = HTTPBasicAuth(backend.username, backend.password or "")

        log.info("Delivering file", extra={"backend": backend.name, "url": url, "bytes": len(data)})
        try:
            if self.session is not None:
                resp = self._put(self.session, url, data, auth)
            else:
                with requests.Session() as session:
                    resp = self._put(session, url, data, auth)
        except requests.Timeout as e:
            raise DeliveryError(f"Timed out delivering to {url}", backend=backend.name) from e
        except requests.RequestException as e:
            raise DeliveryError(f"Could not connect to {url}: {e}", backend=backend.name) from e

        if 300 <= resp.status_code < 400:
            raise DeliveryError(
                f"Backend redirected {url} to {resp.headers.get('Location', '?')}; redirects are not followed",
                backend=backend.name,
                status_code=resp.status_code,
            )
        if not 200 <= resp.status_code < 300:
            raise DeliveryError(
                f"Backend answered HTTP {resp.status_code} for {url}",
                backend=backend.name,
                status_code=resp.status_code,
            )

        log.info("Delivered file", extra={"backend": backend.name, "status": resp.status_code})
        return DeliveryReceipt(url=url, status_code=resp.status_code, bytes_sent=len(data))

    def _put(self, session: requests.Session, url: str, data: bytes, auth) -> requests.Response:
        return session.put(
            url,
            data=data,
            auth=auth,
            headers={"Content-Type": "text/csv; charset=utf-8"},
            timeout=self.timeout_seconds,
            allow_redirects=False,
        )
