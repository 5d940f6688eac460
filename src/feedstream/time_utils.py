from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

from dateutil.parser import ParserError
from dateutil.parser import parse as parse_date

logger = logging.getLogger(__name__)

# Abbreviations seen in RSS pubDate values that dateutil does not resolve on its own.
TZINFOS = {
    "EST": timezone(timedelta(hours=-5)),
    "EDT": timezone(timedelta(hours=-4)),
    "CST": timezone(timedelta(hours=-6)),
    "CDT": timezone(timedelta(hours=-5)),
    "MST": timezone(timedelta(hours=-7)),
    "MDT": timezone(timedelta(hours=-6)),
    "PST": timezone(timedelta(hours=-8)),
    "PDT": timezone(timedelta(hours=-7)),
    "GMT": timezone.utc,
    "UTC": timezone.utc,
    "Z": timezone.utc,
    "BST": timezone(timedelta(hours=1)),
    "CET": timezone(timedelta(hours=1)),
    "CEST": timezone(timedelta(hours=2)),
}


def ensure_aware(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an RFC 822, ISO 8601 or free-form date; ``None`` when nothing usable comes out."""

    if not value:
        return None
    text = value.strip()
    if not text:
        return None

    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is not None:
        return ensure_aware(parsed).astimezone(timezone.utc)

    try:
        parsed = parse_date(text, tzinfos=TZINFOS)
    except (ParserError, ValueError, OverflowError, TypeError):
        logger.debug("Could not parse date: %s", text)
        return None
    return ensure_aware(parsed).astimezone(timezone.utc)
