from __future__ import annotations

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import PruneError
from ..models import Article, Source


class FeedStore:
    """Source and article persistence for one session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_source(self, source_id: str, owner_id: str) -> Source | None:
        return self.session.scalar(
            select(Source).where(
                Source.id == source_id,
                Source.owner_id == owner_id,
                Source.deleted_at.is_(None),
            )
        )

    def get_source_by_url(self, owner_id: str, source_url: str) -> Source | None:
        return self.session.scalar(
            select(Source).where(
                Source.owner_id == owner_id,
                Source.source_url == source_url,
            )
        )

    def list_sources(self, owner_id: str, include_paused: bool = False) -> list[Source]:
        stmt = select(Source).where(Source.owner_id == owner_id, Source.deleted_at.is_(None))
        if not include_paused:
            stmt = stmt.where(Source.is_paused.is_(False))
        return list(self.session.scalars(stmt.order_by(Source.created_at.asc(), Source.id.asc())).all())

    def add_source(self, source: Source) -> Source:
        self.session.add(source)
        self.session.flush()
        return source

    def find_article(self, source_id: str, external_id: str) -> Article | None:
        return self.session.scalar(
            select(Article).where(
                Article.source_id == source_id,
                Article.external_id == external_id,
            )
        )

    def add_article(self, article: Article) -> None:
        self.session.add(article)

    def count_articles(self, source_id: str) -> int:
        return int(
            self.session.scalar(select(func.count()).select_from(Article).where(Article.source_id == source_id))
            or 0
        )

    def prune_articles(self, source_id: str, keep: int) -> int:
        """Delete all but the ``keep`` most recent articles; null dates count as oldest."""

        try:
            if self.count_articles(source_id) <= keep:
                return 0
            overflow = self.session.scalars(
                select(Article.id)
                .where(Article.source_id == source_id)
                .order_by(
                    Article.published_at.is_(None).asc(),
                    Article.published_at.desc(),
                    Article.fetched_at.desc(),
                    Article.id.asc(),
                )
                .offset(max(keep, 0))
            ).all()
            if not overflow:
                return 0
            self.session.execute(
                delete(Article).where(Article.source_id == source_id, Article.id.in_(overflow))
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PruneError(f"pruning source {source_id} failed: {exc}") from exc
        return len(overflow)

    def search_articles(self, owner_id: str, terms: list[str], limit: int = 50) -> list[tuple[Article, Source]]:
        if not terms:
            return []
        conditions = [
            or_(
                Article.search_digest.contains(term, autoescape=True),
                func.lower(Article.title).contains(term, autoescape=True),
            )
            for term in terms
        ]
        stmt = (
            select(Article, Source)
            .join(Source, Source.id == Article.source_id)
            .where(Source.owner_id == owner_id, Source.deleted_at.is_(None), and_(*conditions))
            .order_by(Article.published_at.is_(None).asc(), Article.published_at.desc())
            .limit(limit)
        )
        return [(article, source) for article, source in self.session.execute(stmt).all()]

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
