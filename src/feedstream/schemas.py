from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class ParsedEntry:
    id: str
    external_id: str
    title: str
    content: str
    url: str | None = None
    author: str | None = None
    summary: str | None = None
    published_at: datetime | None = None
    media_kind: str = "none"
    thumbnail_url: str | None = None
    enclosure_url: str | None = None
    enclosure_mime_type: str | None = None


@dataclass(slots=True)
class ParsedSource:
    title: str
    site_url: str | None
    kind: str
    entries: list[ParsedEntry] = field(default_factory=list)


@dataclass(slots=True)
class FetchResponse:
    status: int
    headers: dict[str, str]
    body: bytes

    def header(self, name: str) -> str | None:
        value = self.headers.get(name.lower())
        if value is None:
            return None
        value = value.strip()
        return value or None


@dataclass(slots=True)
class SyncResult:
    new_articles: int = 0
    updated: int = 0


@dataclass(slots=True)
class BatchResult:
    total_sources: int = 0
    successful: int = 0
    failed: int = 0
    new_articles: int = 0
    skipped: int = 0
    cancelled: bool = False


@dataclass(slots=True)
class SearchHit:
    article_id: str
    source_title: str
    title: str
    url: str | None
    published_at: datetime | None
