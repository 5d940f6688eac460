from __future__ import annotations

import logging

from ..db import SessionFactory
from ..errors import NotFound
from ..models import SOURCE_KIND_PLAIN, Source, utcnow
from ..schemas import SearchHit, SyncResult
from .feed_store import FeedStore
from .sync_service import SyncService

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 50
MIN_TERM_LENGTH = 3


def search_terms(query: str) -> list[str]:
    return [term for term in query.lower().split() if len(term) >= MIN_TERM_LENGTH]


class SubscriptionService:
    def __init__(self, sync_service: SyncService, session_factory: SessionFactory) -> None:
        self.sync_service = sync_service
        self.session_factory = session_factory

    def subscribe(self, owner_id: str, url: str) -> tuple[Source, SyncResult]:
        """Create a source for ``url`` and run its first sync.

        An existing live subscription is returned as-is. A previously removed
        one is revived with fresh health state. When the first sync fails the
        source stays subscribed with its failure recorded and the error
        propagates.
        """

        url = url.strip()
        if not url:
            raise ValueError("url is required")

        with self.session_factory() as session:
            store = FeedStore(session)
            source = store.get_source_by_url(owner_id, url)
            if source is not None and source.deleted_at is None:
                return source, SyncResult()
            if source is None:
                source = store.add_source(
                    Source(owner_id=owner_id, source_url=url, title=url, kind=SOURCE_KIND_PLAIN)
                )
            else:
                source.deleted_at = None
                source.is_paused = False
                source.consecutive_failures = 0
                source.last_error = None
                source.etag = None
                source.last_modified = None
            store.commit()
            source_id = source.id

        logger.info("Subscribed %s to %s", owner_id, url)
        result = self.sync_service.sync_source(source_id, owner_id)
        return self.get(owner_id, source_id), result

    def get(self, owner_id: str, source_id: str) -> Source:
        with self.session_factory() as session:
            source = FeedStore(session).get_source(source_id, owner_id)
            if source is None:
                raise NotFound(f"source {source_id} not found")
            return source

    def list_sources(self, owner_id: str) -> list[Source]:
        with self.session_factory() as session:
            return FeedStore(session).list_sources(owner_id, include_paused=True)

    def pause(self, owner_id: str, source_id: str) -> Source:
        return self._update(owner_id, source_id, is_paused=True)

    def resume(self, owner_id: str, source_id: str) -> Source:
        return self._update(owner_id, source_id, is_paused=False)

    def remove(self, owner_id: str, source_id: str) -> Source:
        return self._update(owner_id, source_id, deleted_at=utcnow())

    def _update(self, owner_id: str, source_id: str, **fields) -> Source:
        with self.session_factory() as session:
            store = FeedStore(session)
            source = store.get_source(source_id, owner_id)
            if source is None:
                raise NotFound(f"source {source_id} not found")
            for name, value in fields.items():
                setattr(source, name, value)
            store.commit()
            return source

    def search(self, owner_id: str, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[SearchHit]:
        terms = search_terms(query)
        if not terms:
            return []
        with self.session_factory() as session:
            rows = FeedStore(session).search_articles(owner_id, terms, limit=max(limit, 1))
            return [
                SearchHit(
                    article_id=article.id,
                    source_title=source.title or source.source_url,
                    title=article.title,
                    url=article.url,
                    published_at=article.published_at,
                )
                for article, source in rows
            ]
