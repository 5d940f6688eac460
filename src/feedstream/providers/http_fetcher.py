from __future__ import annotations

from typing import Protocol

import httpx

from ..config import DEFAULT_USER_AGENT
from ..errors import TransientFetchError
from ..schemas import FetchResponse

ACCEPT_HEADER = (
    "application/rss+xml, application/atom+xml, application/feed+json, "
    "application/json, application/xml, text/xml, */*"
)


class Fetcher(Protocol):
    def fetch(self, url: str, headers: dict[str, str], timeout: float) -> FetchResponse:
        ...


def classify_error(exc: Exception) -> tuple[str, int | None, str]:
    if isinstance(exc, httpx.TimeoutException):
        return "TIMEOUT", None, f"timed out: {exc}" if str(exc) else "timed out"
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code)
    if isinstance(exc, httpx.RequestError):
        return "NETWORK", None, str(exc) or exc.__class__.__name__
    return "UNKNOWN", None, str(exc) or exc.__class__.__name__


def classify_status(code: int) -> tuple[str, int, str]:
    message = f"HTTP {code}"
    if 400 <= code < 500:
        if code in {401, 403}:
            return "BLOCKED", code, message
        if code in {404, 410}:
            return "NOT_FOUND", code, message
        return "HTTP_4XX", code, message
    if 500 <= code < 600:
        return "HTTP_5XX", code, message
    return "HTTP_ERROR", code, message


class HttpFetcher:
    """Fetch capability on top of ``httpx``. URL safety checks belong to the caller."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = 10,
    ) -> None:
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout_seconds, follow_redirects=True)
        self.user_agent = user_agent

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def fetch(self, url: str, headers: dict[str, str], timeout: float) -> FetchResponse:
        request_headers = {"User-Agent": self.user_agent, "Accept": ACCEPT_HEADER}
        request_headers.update(headers)
        try:
            response = self.client.get(url, headers=request_headers, timeout=timeout)
        except httpx.HTTPError as exc:
            kind, code, message = classify_error(exc)
            raise TransientFetchError(message, kind=kind, status_code=code) from exc

        return FetchResponse(
            status=response.status_code,
            headers={key.lower(): value for key, value in response.headers.items()},
            body=response.content,
        )
