from __future__ import annotations

from pathlib import Path

import pytest

from feedstream.config import get_settings
from feedstream.errors import TransientFetchError
from feedstream.schemas import FetchResponse


@pytest.fixture
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    db_path = tmp_path / "feedstream_test.db"
    env_path = tmp_path / ".env"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("FEEDSTREAM_DB_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("FEEDSTREAM_ENV_FILE", str(env_path))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("POLITENESS_DELAY_MS", "0")
    for key in (
        "HTTP_TIMEOUT_SECONDS",
        "MAX_CONCURRENCY",
        "MAX_PER_HOST",
        "RETENTION_CAP",
        "CIRCUIT_FAIL_THRESHOLD",
        "USER_AGENT",
        "LINK_AGGREGATOR_HOSTS",
        "DEFAULT_OWNER",
    ):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeFetcher:
    """Serve canned responses per URL and record the request headers."""

    def __init__(self, responses: dict[str, list[FetchResponse | Exception]] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, dict[str, str]]] = []

    def queue(self, url: str, *responses: FetchResponse | Exception) -> None:
        self.responses.setdefault(url, []).extend(responses)

    def fetch(self, url: str, headers: dict[str, str], timeout: float) -> FetchResponse:
        self.calls.append((url, dict(headers)))
        pending = self.responses.get(url)
        if not pending:
            raise TransientFetchError("connection refused", kind="NETWORK")
        response = pending.pop(0) if len(pending) > 1 else pending[0]
        if isinstance(response, Exception):
            raise response
        return response


def ok(body: str | bytes, **headers: str) -> FetchResponse:
    data = body.encode("utf-8") if isinstance(body, str) else body
    return FetchResponse(
        status=200,
        headers={key.replace("_", "-").lower(): value for key, value in headers.items()},
        body=data,
    )


def rss(*items: str, title: str = "Example Feed", extra: str = "") -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">'
        f"<channel><title>{title}</title><link>https://example.com/</link>{extra}"
        + "".join(items)
        + "</channel></rss>"
    )


def rss_item(
    guid: str,
    title: str,
    pub_date: str | None = "Mon, 01 Jan 2024 00:00:00 GMT",
    description: str = "",
) -> str:
    date = f"<pubDate>{pub_date}</pubDate>" if pub_date else ""
    return (
        f"<item><guid>{guid}</guid><title>{title}</title>"
        f"<link>https://example.com/{guid}</link>{date}"
        f"<description>{description}</description></item>"
    )


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()
