from __future__ import annotations

import logging
import re
import time
from typing import Any

import requests

from delta_wizard.errors import BackendError, error_message
from delta_wizard.settings import settings

logger = logging.getLogger(__name__)

_FILENAME_RE = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE)


def filename_from_disposition(header: str | None, fallback: str) -> str:
    if not header:
        return fallback
    m = _FILENAME_RE.search(header)
    return m.group(1).strip() if m else fallback


class ApiClient:
    """JSON-over-HTTP client bound to one backend base URL.

    One method call is one request: no retries, no caching, no backoff.
    """

    def __init__(
        self,
        base_url: str | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self.timeout = timeout if timeout is not None else settings.api_timeout

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self.url(path)
        t0 = time.time()
        resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        logger.debug("%s %s -> %s (%.3fs)", method, url, resp.status_code, time.time() - t0)
        if not resp.ok:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            message = error_message(payload, resp.status_code)
            logger.error("%s %s failed: %s", method, url, message)
            raise BackendError(resp.status_code, message, payload)
        return resp

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        resp = self._send(method, path, params=_clean_params(params), json=json)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        return self.request("POST", path, params=params, json=json)

    def put(self, path: str, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        return self.request("PUT", path, params=params, json=json)

    def delete(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("DELETE", path, params=params)

    def download(self, path: str, params: dict[str, Any] | None, fallback_name: str) -> tuple[str, bytes]:
        resp = self._send("GET", path, params=_clean_params(params))
        name = filename_from_disposition(resp.headers.get("Content-Disposition"), fallback_name)
        return name, resp.content


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    # Drop unset filters so they never reach the query string.
    if params is None:
        return None
    return {k: v for k, v in params.items() if v is not None}
