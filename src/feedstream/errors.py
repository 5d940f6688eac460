from __future__ import annotations


class FeedStreamError(Exception):
    """Base class for errors raised by the ingestion engine."""


class UnparsableContent(FeedStreamError):
    """Neither a JSON Feed nor a recognizable XML feed root could be extracted."""


class NotFound(FeedStreamError):
    """The source id is unknown, owned by someone else, or soft-deleted."""


class TransientFetchError(FeedStreamError):
    """Timeout, transport failure or non-success HTTP status."""

    def __init__(self, message: str, kind: str = "UNKNOWN", status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class PruneError(FeedStreamError):
    """Retention pruning failed. Never fails a sync."""
