from __future__ import annotations

import logging

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import FakeFetcher, ok, rss, rss_item
from feedstream.config import get_settings
from feedstream.db import init_db, session_factory, session_scope
from feedstream.errors import NotFound, TransientFetchError, UnparsableContent
from feedstream.models import Article, Source
from feedstream.schemas import FetchResponse, SyncResult
from feedstream.services.feed_store import FeedStore
from feedstream.services.search_digest import build_digest
from feedstream.services.sync_service import SyncService

FEED_URL = "https://example.com/feed.xml"


def _setup(fetcher: FakeFetcher, retention_cap: int = 500, **source_fields) -> tuple[SyncService, str]:
    settings = get_settings()
    init_db(settings)
    with session_scope(settings) as session:
        source = Source(owner_id="alice", source_url=FEED_URL, title=FEED_URL, **source_fields)
        session.add(source)
        session.commit()
        source_id = source.id
    service = SyncService(fetcher=fetcher, session_factory=session_factory(settings), retention_cap=retention_cap)
    return service, source_id


def _load_source(source_id: str) -> Source:
    with session_scope(get_settings()) as session:
        return session.get(Source, source_id)


def _articles(source_id: str) -> list[Article]:
    with session_scope(get_settings()) as session:
        return list(
            session.scalars(select(Article).where(Article.source_id == source_id).order_by(Article.external_id)).all()
        )


def test_first_sync_inserts_and_refreshes_source(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(
        FEED_URL,
        ok(rss(rss_item("a", "First", description="<b>Bold</b> text"), rss_item("b", "Second")), etag='"v1"'),
    )
    service, source_id = _setup(fetcher)

    result = service.sync_source(source_id, "alice")

    assert result == SyncResult(new_articles=2, updated=0)
    source = _load_source(source_id)
    assert source.title == "Example Feed"
    assert source.site_url == "https://example.com/"
    assert source.kind == "plain-feed"
    assert source.etag == '"v1"'
    assert source.consecutive_failures == 0
    assert source.last_sync_at is not None

    first = _articles(source_id)[0]
    assert first.title == "First"
    assert first.search_digest == build_digest("First", "<b>Bold</b> text", "<b>Bold</b> text")
    assert first.search_digest == "first bold text bold text"


def test_second_sync_of_unchanged_feed_is_idempotent(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"), rss_item("b", "Second"))))
    service, source_id = _setup(fetcher)

    service.sync_source(source_id, "alice")
    result = service.sync_source(source_id, "alice")

    assert result == SyncResult(new_articles=0, updated=0)
    assert len(_articles(source_id)) == 2


def test_changed_title_updates_article(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "A"))), ok(rss(rss_item("a", "B"))))
    service, source_id = _setup(fetcher)

    service.sync_source(source_id, "alice")
    result = service.sync_source(source_id, "alice")

    assert result == SyncResult(new_articles=0, updated=1)
    articles = _articles(source_id)
    assert len(articles) == 1
    assert articles[0].title == "B"
    assert articles[0].search_digest.startswith("b")


def test_not_modified_short_circuits(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(
        FEED_URL,
        ok(rss(rss_item("a", "First")), etag='"v1"', last_modified="Mon, 01 Jan 2024 00:00:00 GMT"),
        FetchResponse(status=304, headers={}, body=b""),
    )
    service, source_id = _setup(fetcher)
    service.sync_source(source_id, "alice")

    with session_scope(get_settings()) as session:
        source = session.get(Source, source_id)
        source.consecutive_failures = 3
        session.commit()

    result = service.sync_source(source_id, "alice")

    assert result == SyncResult()
    _, headers = fetcher.calls[-1]
    assert headers["If-None-Match"] == '"v1"'
    assert headers["If-Modified-Since"] == "Mon, 01 Jan 2024 00:00:00 GMT"
    source = _load_source(source_id)
    assert source.consecutive_failures == 0
    assert [article.title for article in _articles(source_id)] == ["First"]


def test_validators_fall_back_to_previous_values(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First")), etag='"v1"'), ok(rss(rss_item("a", "First"))))
    service, source_id = _setup(fetcher)

    service.sync_source(source_id, "alice")
    service.sync_source(source_id, "alice")

    assert _load_source(source_id).etag == '"v1"'


def test_transport_failure_records_health_and_reraises(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, TransientFetchError("timed out", kind="TIMEOUT"))
    service, source_id = _setup(fetcher)

    with pytest.raises(TransientFetchError):
        service.sync_source(source_id, "alice")
    with pytest.raises(TransientFetchError):
        service.sync_source(source_id, "alice")

    source = _load_source(source_id)
    assert source.consecutive_failures == 2
    assert source.last_error == "timed out"


def test_http_error_status_is_a_failure(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, FetchResponse(status=503, headers={}, body=b"busy"))
    service, source_id = _setup(fetcher)

    with pytest.raises(TransientFetchError) as exc_info:
        service.sync_source(source_id, "alice")

    assert exc_info.value.kind == "HTTP_5XX"
    assert exc_info.value.status_code == 503
    source = _load_source(source_id)
    assert source.last_error == "HTTP 503"
    assert source.consecutive_failures == 1


def test_unparsable_body_keeps_existing_articles(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"))), ok("<html><body>moved</body></html>"))
    service, source_id = _setup(fetcher)
    service.sync_source(source_id, "alice")

    with pytest.raises(UnparsableContent):
        service.sync_source(source_id, "alice")

    assert [article.title for article in _articles(source_id)] == ["First"]
    source = _load_source(source_id)
    assert source.consecutive_failures == 1
    assert source.title == "Example Feed"


def test_success_resets_failure_counter(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, TransientFetchError("connection reset", kind="NETWORK"), ok(rss(rss_item("a", "First"))))
    service, source_id = _setup(fetcher)

    with pytest.raises(TransientFetchError):
        service.sync_source(source_id, "alice")
    service.sync_source(source_id, "alice")

    source = _load_source(source_id)
    assert source.consecutive_failures == 0
    assert source.last_error is None


def test_unknown_or_foreign_source_is_not_found(isolated_env):
    fetcher = FakeFetcher()
    service, source_id = _setup(fetcher)

    with pytest.raises(NotFound):
        service.sync_source("missing", "alice")
    with pytest.raises(NotFound):
        service.sync_source(source_id, "mallory")
    assert fetcher.calls == []


def test_paused_source_is_a_no_op(isolated_env):
    fetcher = FakeFetcher()
    service, source_id = _setup(fetcher, is_paused=True)

    assert service.sync_source(source_id, "alice") == SyncResult()
    assert fetcher.calls == []
    assert _load_source(source_id).consecutive_failures == 0


def test_duplicate_entries_are_collapsed(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"), rss_item("a", "First again"))))
    service, source_id = _setup(fetcher)

    result = service.sync_source(source_id, "alice")

    assert result.new_articles == 1
    assert [article.title for article in _articles(source_id)] == ["First"]


def test_pruning_keeps_most_recent_and_drops_undated_first(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(
        FEED_URL,
        ok(
            rss(
                rss_item("a", "Jan 1", pub_date="Mon, 01 Jan 2024 00:00:00 GMT"),
                rss_item("b", "Jan 2", pub_date="Tue, 02 Jan 2024 00:00:00 GMT"),
                rss_item("c", "Jan 3", pub_date="Wed, 03 Jan 2024 00:00:00 GMT"),
                rss_item("d", "Undated", pub_date=None),
            )
        ),
    )
    service, source_id = _setup(fetcher, retention_cap=2)

    result = service.sync_source(source_id, "alice")

    assert result.new_articles == 4
    assert sorted(article.title for article in _articles(source_id)) == ["Jan 2", "Jan 3"]


def test_prune_without_overflow_deletes_nothing(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"))))
    service, source_id = _setup(fetcher)
    service.sync_source(source_id, "alice")

    with session_scope(get_settings()) as session:
        assert FeedStore(session).prune_articles(source_id, keep=5) == 0


def test_prune_failure_is_logged_and_does_not_fail_sync(isolated_env, monkeypatch, caplog):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"), rss_item("b", "Second"), rss_item("c", "Third"))))
    service, source_id = _setup(fetcher, retention_cap=1)

    def broken_count(self, source_id: str) -> int:
        raise OperationalError("SELECT count(*)", {}, Exception("database is locked"))

    monkeypatch.setattr(FeedStore, "count_articles", broken_count)

    with caplog.at_level(logging.WARNING, logger="feedstream.services.sync_service"):
        result = service.sync_source(source_id, "alice")

    assert result == SyncResult(new_articles=3, updated=0)
    assert len(_articles(source_id)) == 3
    source = _load_source(source_id)
    assert source.consecutive_failures == 0
    assert source.last_error is None
    assert any(
        record.levelno == logging.WARNING and "Retention pruning failed" in record.getMessage()
        for record in caplog.records
    )
