from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from ..config import DEFAULT_LINK_AGGREGATOR_HOSTS
from ..db import SessionFactory
from ..errors import NotFound, PruneError, TransientFetchError
from ..models import Article, Source, utcnow
from ..providers.feed_parser import parse_feed
from ..providers.http_fetcher import Fetcher, classify_status
from ..schemas import FetchResponse, ParsedEntry, ParsedSource, SyncResult
from .feed_store import FeedStore
from .search_digest import build_digest

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_CAP = 500


def has_changed(existing: Article, entry: ParsedEntry) -> bool:
    return (
        existing.title != entry.title
        or existing.summary != entry.summary
        or existing.content != entry.content
    )


class SyncService:
    """Drive one source through fetch, parse, diff and persist.

    Each call opens its own session, so a ``SyncService`` can be shared by
    batch workers. Calls for the same source id are serialized in-process.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        session_factory: SessionFactory,
        timeout_seconds: float = 10,
        retention_cap: int = DEFAULT_RETENTION_CAP,
        link_aggregator_hosts: tuple[str, ...] = DEFAULT_LINK_AGGREGATOR_HOSTS,
    ) -> None:
        self.fetcher = fetcher
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self.retention_cap = max(retention_cap, 1)
        self.link_aggregator_hosts = link_aggregator_hosts
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def sync_source(self, source_id: str, owner_id: str) -> SyncResult:
        with self._source_lock(source_id), self.session_factory() as session:
            return self._sync(FeedStore(session), source_id=source_id, owner_id=owner_id)

    @contextmanager
    def _source_lock(self, source_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(source_id, threading.Lock())
        with lock:
            yield

    def _sync(self, store: FeedStore, source_id: str, owner_id: str) -> SyncResult:
        source = store.get_source(source_id, owner_id)
        if source is None:
            raise NotFound(f"source {source_id} not found")
        if source.is_paused:
            logger.info("Skipping paused source %s", source.source_url)
            return SyncResult()

        try:
            response = self.fetcher.fetch(
                source.source_url,
                self._conditional_headers(source),
                self.timeout_seconds,
            )
            if response.status == 304:
                source.last_sync_at = utcnow()
                source.consecutive_failures = 0
                store.commit()
                return SyncResult()
            if not 200 <= response.status < 300:
                kind, code, message = classify_status(response.status)
                raise TransientFetchError(message, kind=kind, status_code=code)

            parsed = parse_feed(response.body, source.source_url, self.link_aggregator_hosts)
            result = self._apply(store, source, parsed, response)
        except Exception as exc:
            store.rollback()
            self._record_failure(store, source, exc)
            raise

        self._prune(store, source)
        return result

    def _conditional_headers(self, source: Source) -> dict[str, str]:
        headers: dict[str, str] = {}
        if source.etag:
            headers["If-None-Match"] = source.etag
        if source.last_modified:
            headers["If-Modified-Since"] = source.last_modified
        return headers

    def _apply(self, store: FeedStore, source: Source, parsed: ParsedSource, response: FetchResponse) -> SyncResult:
        source.title = parsed.title or source.title or source.source_url
        if parsed.site_url:
            source.site_url = parsed.site_url
        source.kind = parsed.kind
        source.etag = response.header("etag") or source.etag
        source.last_modified = response.header("last-modified") or source.last_modified

        result = SyncResult()
        seen: set[str] = set()
        for entry in parsed.entries:
            if entry.external_id in seen:
                continue
            seen.add(entry.external_id)

            existing = store.find_article(source.id, entry.external_id)
            if existing is None:
                store.add_article(self._new_article(source, entry))
                result.new_articles += 1
                continue
            if not has_changed(existing, entry):
                continue
            existing.title = entry.title
            existing.summary = entry.summary
            existing.content = entry.content
            existing.thumbnail_url = entry.thumbnail_url
            existing.search_digest = build_digest(entry.title, entry.summary, entry.content)
            result.updated += 1

        source.consecutive_failures = 0
        source.last_error = None
        source.last_sync_at = utcnow()
        store.commit()
        return result

    def _new_article(self, source: Source, entry: ParsedEntry) -> Article:
        return Article(
            id=entry.id,
            source_id=source.id,
            external_id=entry.external_id,
            title=entry.title,
            author=entry.author,
            summary=entry.summary,
            content=entry.content,
            url=entry.url,
            published_at=entry.published_at,
            media_kind=entry.media_kind,
            thumbnail_url=entry.thumbnail_url,
            enclosure_url=entry.enclosure_url,
            enclosure_mime_type=entry.enclosure_mime_type,
            search_digest=build_digest(entry.title, entry.summary, entry.content),
            fetched_at=utcnow(),
        )

    def _record_failure(self, store: FeedStore, source: Source, exc: Exception) -> None:
        source.last_error = str(exc) or exc.__class__.__name__
        source.consecutive_failures = (source.consecutive_failures or 0) + 1
        store.commit()

    def _prune(self, store: FeedStore, source: Source) -> None:
        try:
            removed = store.prune_articles(source.id, keep=self.retention_cap)
        except PruneError:
            logger.warning("Retention pruning failed for %s", source.source_url, exc_info=True)
            return
        if removed:
            logger.info("Pruned %d old articles from %s", removed, source.source_url)
