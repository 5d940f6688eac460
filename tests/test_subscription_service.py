from __future__ import annotations

import pytest

from conftest import FakeFetcher, ok, rss, rss_item
from feedstream.config import get_settings
from feedstream.db import init_db, session_factory
from feedstream.errors import NotFound, TransientFetchError
from feedstream.services.subscription_service import SubscriptionService, search_terms
from feedstream.services.sync_service import SyncService

FEED_URL = "https://example.com/feed.xml"


def _service(fetcher: FakeFetcher) -> SubscriptionService:
    settings = get_settings()
    init_db(settings)
    factory = session_factory(settings)
    return SubscriptionService(sync_service=SyncService(fetcher=fetcher, session_factory=factory), session_factory=factory)


def test_subscribe_runs_first_sync(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"))))
    service = _service(fetcher)

    source, result = service.subscribe("alice", FEED_URL)

    assert result.new_articles == 1
    assert source.title == "Example Feed"
    assert source.site_url == "https://example.com/"
    assert [item.id for item in service.list_sources("alice")] == [source.id]


def test_subscribe_twice_returns_existing_source(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"))))
    service = _service(fetcher)

    first, _ = service.subscribe("alice", FEED_URL)
    second, result = service.subscribe("alice", FEED_URL)

    assert second.id == first.id
    assert result.new_articles == 0
    assert len(fetcher.calls) == 1


def test_subscribe_keeps_source_when_first_sync_fails(isolated_env):
    service = _service(FakeFetcher())

    with pytest.raises(TransientFetchError):
        service.subscribe("alice", FEED_URL)

    sources = service.list_sources("alice")
    assert len(sources) == 1
    assert sources[0].consecutive_failures == 1
    assert sources[0].title == FEED_URL


def test_pause_resume_and_remove(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"))))
    service = _service(fetcher)
    source, _ = service.subscribe("alice", FEED_URL)

    assert service.pause("alice", source.id).is_paused is True
    assert service.resume("alice", source.id).is_paused is False

    service.remove("alice", source.id)

    assert service.list_sources("alice") == []
    with pytest.raises(NotFound):
        service.sync_service.sync_source(source.id, "alice")
    with pytest.raises(NotFound):
        service.pause("alice", source.id)


def test_resubscribe_after_remove_revives_source(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"))))
    service = _service(fetcher)
    source, _ = service.subscribe("alice", FEED_URL)
    service.remove("alice", source.id)

    revived, _ = service.subscribe("alice", FEED_URL)

    assert revived.id == source.id
    assert revived.deleted_at is None


def test_other_owner_cannot_touch_source(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(FEED_URL, ok(rss(rss_item("a", "First"))))
    service = _service(fetcher)
    source, _ = service.subscribe("alice", FEED_URL)

    with pytest.raises(NotFound):
        service.remove("mallory", source.id)


def test_search_matches_every_term_newest_first(isolated_env):
    fetcher = FakeFetcher()
    fetcher.queue(
        FEED_URL,
        ok(
            rss(
                rss_item("a", "Python release notes", pub_date="Mon, 01 Jan 2024 00:00:00 GMT"),
                rss_item("b", "Python packaging", pub_date="Wed, 03 Jan 2024 00:00:00 GMT", description="release day"),
                rss_item("c", "Rust release", pub_date="Tue, 02 Jan 2024 00:00:00 GMT"),
                rss_item("d", "Undated python release", pub_date=None),
            )
        ),
    )
    service = _service(fetcher)
    service.subscribe("alice", FEED_URL)

    hits = service.search("alice", "PYTHON release of")

    assert [hit.title for hit in hits] == ["Python packaging", "Python release notes", "Undated python release"]
    assert hits[0].source_title == "Example Feed"
    assert service.search("bob", "python") == []
    assert service.search("alice", "a an") == []
    assert len(service.search("alice", "release", limit=2)) == 2


def test_search_terms():
    assert search_terms("  The  Big a of Fox ") == ["the", "big", "fox"]
    assert search_terms("") == []
