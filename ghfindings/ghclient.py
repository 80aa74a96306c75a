"""A small GitHub REST client with a token-bucket rate limiter."""

from __future__ import annotations

import re
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlsplit

import requests

DEFAULT_BASE_URL = "https://api.github.com"
ACCEPT_HEADER = "application/vnd.github+json"
API_VERSION = "2022-11-28"
REQUEST_TIMEOUT = 30.0

_LINK_RE = re.compile(r'<([^>]*)>\s*;\s*rel="([^"]*)"')


class RateLimiter:
    """A thread-safe token bucket: ``rate`` tokens per second, up to ``burst`` at once."""

    def __init__(self, rate: float, burst: int) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate = float(rate)
        self.burst = int(burst)
        self._tokens = float(burst)
        self._last = time.monotonic()
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Take one token, sleeping until it is available; return the time slept."""
        with self._lock:
            now = time.monotonic()
            elapsed = max(0.0, now - self._last)
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            self._last = now
            self._tokens -= 1.0
            delay = -self._tokens / self.rate if self._tokens < 0 else 0.0
        if delay > 0:
            time.sleep(delay)
        return delay


class GitHubAPIError(Exception):
    """A failed API request; ``status_code`` is None when no response arrived."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.headers: Mapping[str, str] = headers if headers is not None else {}


@dataclass
class ApiResponse:
    """A successful API response."""

    data: Any
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    next_page: int = 0


def parse_next_page(link_header: str | None) -> int:
    """Return the page number of the ``rel="next"`` link, or 0 when there is none."""
    if not link_header:
        return 0
    for url, rel in _LINK_RE.findall(link_header):
        if "next" not in rel.split():
            continue
        pages = parse_qs(urlsplit(url).query).get("page")
        if not pages:
            return 0
        try:
            return int(pages[0])
        except ValueError:
            return 0
    return 0


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text.strip()


class GitHubClient:
    """Issues authenticated GET requests against the GitHub REST API."""

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": ACCEPT_HEADER,
            "X-GitHub-Api-Version": API_VERSION,
        }

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def get(self, path: str, params: Mapping[str, Any] | None = None) -> ApiResponse:
        """GET ``path`` and return the decoded JSON; raise GitHubAPIError on failure."""
        url = self._url(path)
        try:
            response = self.session.get(
                url, params=params, headers=self._headers, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as exc:
            raise GitHubAPIError(f"GET {url}: {exc}") from exc

        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GET {response.url}: {response.status_code} {_error_detail(response)}",
                response.status_code,
                response.headers,
            )
        try:
            data = response.json() if response.content else None
        except ValueError as exc:
            raise GitHubAPIError(
                f"GET {response.url}: invalid JSON in response",
                response.status_code,
                response.headers,
            ) from exc
        return ApiResponse(
            data=data,
            status_code=response.status_code,
            headers=response.headers,
            next_page=parse_next_page(response.headers.get("Link")),
        )