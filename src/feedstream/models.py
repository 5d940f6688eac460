from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base

SOURCE_KIND_PLAIN = "plain-feed"
SOURCE_KIND_LINK_AGGREGATOR = "link-aggregator-feed"
SOURCE_KIND_VIDEO_CHANNEL = "video-channel-feed"
SOURCE_KIND_PODCAST = "podcast-feed"
SOURCE_KIND_JSON = "structured-json-feed"

MEDIA_KIND_NONE = "none"
MEDIA_KIND_VIDEO = "video"
MEDIA_KIND_AUDIO_PODCAST = "audio-podcast"
MEDIA_KIND_EMBEDDED_VIDEO = "embedded-video"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_source_id() -> str:
    return str(uuid.uuid4())


class Source(Base):
    __tablename__ = "sources"
    __table_args__ = (UniqueConstraint("owner_id", "source_url", name="uq_source_owner_url"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_source_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    site_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    kind: Mapped[str] = mapped_column(String(50), nullable=False, default=SOURCE_KIND_PLAIN)
    etag: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_modified: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    articles: Mapped[list[Article]] = relationship(
        back_populates="source", cascade="all, delete", passive_deletes=True
    )


class Article(Base):
    __tablename__ = "articles"
    __table_args__ = (UniqueConstraint("source_id", "external_id", name="uq_article_source_external"),)

    # Derived ids are only unique per source: two owners may subscribe to the same URL.
    source_id: Mapped[str] = mapped_column(
        ForeignKey("sources.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    external_id: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    media_kind: Mapped[str] = mapped_column(String(50), nullable=False, default=MEDIA_KIND_NONE)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    enclosure_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    enclosure_mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    search_digest: Mapped[str] = mapped_column(Text, nullable=False, default="")
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    source: Mapped[Source] = relationship(back_populates="articles")
