"""Authorised HTTP transport for the Display & Video 360 REST API.

The transport owns everything below the resource layer: building absolute
URLs from API-relative URIs, attaching JSON headers, following
``nextPageToken`` paging and retrying transient failures with exponential
backoff. Credentials are refreshed between attempts so that an expired token
does not exhaust the retry budget.

Authentication is delegated to :class:`google.auth.transport.requests.AuthorizedSession`
which adds the ``Authorization: Bearer`` header for the wrapped credentials.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional
from urllib.parse import quote

import requests
from google.auth.transport.requests import AuthorizedSession, Request

from dv360sync.templates import append_query

logger = logging.getLogger(__name__)

DEFAULT_API_ENDPOINT = "https://displayvideo.googleapis.com"
DEFAULT_API_VERSION = "v1"
DEFAULT_TIMEOUT = 60
RETRYABLE_STATUSES = frozenset({401, 408, 429, 500, 502, 503, 504})
JSON_HEADERS: Mapping[str, str] = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


class TransportError(RuntimeError):
    """Base error raised when an API request cannot be completed."""


class ApiResponseError(TransportError):
    """Raised for non-2xx responses; carries the status and response body."""

    def __init__(self, status: int, body: str, *, method: str = "", url: str = "") -> None:
        super().__init__(body or f"HTTP {status}")
        self.status = status
        self.body = body
        self.method = method
        self.url = url

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES


class BackoffController:
    """Bounded retry loop with exponential delays."""

    def __init__(
        self,
        base: float = 0.5,
        maximum: float = 32.0,
        attempts: int = 5,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base = base
        self.maximum = maximum
        self.attempts = max(1, attempts)
        self._sleep = sleep

    def schedule(self) -> List[float]:
        delays: List[float] = []
        for attempt in range(self.attempts):
            delay = min(self.base * (2**attempt), self.maximum)
            delays.append(delay)
        return delays

    def retry(
        self,
        operation: Callable[[], Any],
        *,
        should_retry: Callable[[Exception], bool],
        before_retry: Optional[Callable[[Exception], None]] = None,
    ) -> Any:
        for attempt, delay in enumerate(self.schedule(), start=1):
            try:
                return operation()
            except Exception as exc:
                if attempt == self.attempts or not should_retry(exc):
                    raise
                logger.warning("API retry %s/%s due to %s", attempt, self.attempts, exc)
                self._sleep(delay)
                if before_retry is not None:
                    before_retry(exc)
        return None


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, ApiResponseError):
        return exc.retryable
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


class HttpTransport:
    """Execute DV360 API requests and return parsed JSON bodies."""

    def __init__(
        self,
        credentials=None,
        *,
        session=None,
        api_endpoint: str = DEFAULT_API_ENDPOINT,
        api_version: str = DEFAULT_API_VERSION,
        max_pages: Optional[int] = None,
        timeout: float = DEFAULT_TIMEOUT,
        backoff: Optional[BackoffController] = None,
    ) -> None:
        if session is None:
            if credentials is None:
                raise TransportError("Either credentials or an HTTP session must be provided.")
            session = AuthorizedSession(credentials)
        self._credentials = credentials
        self._session = session
        self._base_url = f"{api_endpoint.rstrip('/')}/{api_version.strip('/')}"
        self._max_pages = max_pages
        self._timeout = timeout
        self._backoff = backoff or BackoffController()

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_url(self, uri: str) -> str:
        return f"{self._base_url}/{uri.lstrip('/')}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_pages(self, uri: str) -> Iterator[Dict[str, Any]]:
        """Yield every page of a GET request, following ``nextPageToken``."""

        base_url = self.build_url(uri)
        url = base_url
        pages = 0
        while True:
            page = self._send("GET", url)
            pages += 1
            yield page
            token = page.get("nextPageToken")
            if not token:
                return
            if self._max_pages is not None and pages >= self._max_pages:
                logger.warning("Stopped paging %s after %s pages", base_url, pages)
                return
            url = append_query(base_url, "pageToken", quote(str(token), safe=""))

    def get(self, uri: str) -> Dict[str, Any]:
        return self._send("GET", self.build_url(uri))

    def post(self, uri: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return self._send("POST", self.build_url(uri), payload)

    def patch(self, uri: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return self._send("PATCH", self.build_url(uri), payload)

    def delete(self, uri: str) -> Dict[str, Any]:
        return self._send("DELETE", self.build_url(uri))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _send(self, method: str, url: str, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return self._backoff.retry(
            lambda: self._send_once(method, url, payload),
            should_retry=_is_transient,
            before_retry=lambda exc: self._refresh_credentials(),
        )

    def _send_once(self, method: str, url: str, payload: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        logger.info("Fetching %s request from %s", method, url)
        data = json.dumps(payload) if payload is not None else None
        if data is not None:
            logger.debug("Request body: %s", data)
        response = self._session.request(
            method,
            url,
            data=data,
            headers=dict(JSON_HEADERS),
            timeout=self._timeout,
        )
        status = int(response.status_code)
        text = response.text or ""
        if status // 100 != 2:
            raise ApiResponseError(status, text, method=method, url=url)
        if not text.strip():
            return {}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TransportError(f"Invalid JSON in response from {url}: {exc.msg}") from exc
        return parsed if isinstance(parsed, dict) else {"value": parsed}

    def _refresh_credentials(self) -> None:
        if self._credentials is None:
            return
        try:
            self._credentials.refresh(Request())
        except Exception as exc:  # google.auth raises RefreshError and transport errors
            logger.warning("Credential refresh failed: %s", exc)


__all__ = [
    "ApiResponseError",
    "BackoffController",
    "DEFAULT_API_ENDPOINT",
    "DEFAULT_API_VERSION",
    "HttpTransport",
    "JSON_HEADERS",
    "RETRYABLE_STATUSES",
    "TransportError",
]
