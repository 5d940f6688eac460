"""Per-entry normalization: identity, title/content fallbacks, media, dates.

Every "first non-empty of ..." rule is an ordered tuple of extractor
functions, tried in sequence by :func:`first_non_empty`.
"""

from __future__ import annotations

import hashlib
import html
import logging
import re
from collections.abc import Callable, Sequence
from typing import Any
from urllib.parse import parse_qs, urlparse

from ..models import (
    MEDIA_KIND_AUDIO_PODCAST,
    MEDIA_KIND_EMBEDDED_VIDEO,
    MEDIA_KIND_NONE,
    MEDIA_KIND_VIDEO,
)
from ..schemas import ParsedEntry
from ..time_utils import parse_datetime
from .xml_tree import ElementNode, Node, as_list, attr, child, text_of

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"
VIDEO_THUMBNAIL_TEMPLATE = "https://i.ytimg.com/vi/{video_id}/maxresdefault.jpg"

Extractor = Callable[[Any], str | None]

_AGGREGATOR_IMAGE_PATTERNS = (
    re.compile(r'href="(https://i\.redd\.it/[a-zA-Z0-9]+\.(?:jpg|jpeg|png|gif))"'),
    re.compile(r'src="(https://i\.redd\.it/[a-zA-Z0-9]+\.(?:jpg|jpeg|png|gif))"'),
    re.compile(r'src="(https://preview\.redd\.it/[^"]+)"'),
    re.compile(r'src="(https://external-preview\.redd\.it/[^"]+)"'),
)


def article_id(source_url: str, identity: str) -> str:
    return hashlib.sha256(f"{source_url}|{identity}".encode("utf-8")).hexdigest()


def first_non_empty(extractors: Sequence[Extractor], item: Any) -> str | None:
    for extractor in extractors:
        value = extractor(item)
        if value is not None and value.strip():
            return value.strip()
    return None


def classify_media(enclosure_type: str | None, video_id: str | None) -> str:
    if video_id:
        return MEDIA_KIND_VIDEO
    mime = (enclosure_type or "").strip().lower()
    if mime.startswith("audio/"):
        return MEDIA_KIND_AUDIO_PODCAST
    if mime.startswith("video/"):
        return MEDIA_KIND_EMBEDDED_VIDEO
    return MEDIA_KIND_NONE


def video_thumbnail(video_id: str) -> str:
    return VIDEO_THUMBNAIL_TEMPLATE.format(video_id=video_id)


def extract_video_id(url: str | None) -> str | None:
    if not url:
        return None
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower().removeprefix("www.")
    path = parsed.path or ""

    if host == "youtu.be":
        candidate = path.lstrip("/").split("/")[0]
        return candidate or None
    if host in {"youtube.com", "m.youtube.com"}:
        values = parse_qs(parsed.query).get("v")
        if values and values[0]:
            return values[0]
        for prefix in ("/embed/", "/v/", "/shorts/"):
            if path.startswith(prefix):
                candidate = path[len(prefix):].split("/")[0]
                return candidate or None
    return None


def scrape_aggregator_thumbnail(*bodies: str | None) -> str | None:
    for body in bodies:
        if not body:
            continue
        for pattern in _AGGREGATOR_IMAGE_PATTERNS:
            match = pattern.search(body)
            if match:
                return match.group(1).replace("&amp;", "&")
    return None


def _best_effort_thumbnail(*bodies: str | None) -> str | None:
    try:
        return scrape_aggregator_thumbnail(*bodies)
    except Exception:  # noqa: BLE001
        logger.debug("Thumbnail scraping failed", exc_info=True)
        return None


# XML extractors


def resolve_link(node: Node | None) -> str | None:
    """Resolve a bare ``<link>text</link>`` or an Atom ``<link href=...>`` list."""

    fallback: str | None = None
    for item in as_list(node):
        if isinstance(item, ElementNode):
            rel = (item.attributes.get("rel") or "alternate").strip().lower()
            value = (item.attributes.get("href") or item.text or "").strip()
            if not value:
                continue
            if rel == "alternate":
                return value
            if fallback is None and rel not in {"self", "enclosure", "hub", "replies"}:
                fallback = value
        else:
            value = text_of(item)
            if value:
                return value
    return fallback


def _xml_field(name: str) -> Extractor:
    def extract(item: Node) -> str | None:
        return text_of(child(item, name)) or None

    return extract


def _xml_nested(outer: str, inner: str) -> Extractor:
    def extract(item: Node) -> str | None:
        return text_of(child(child(item, outer), inner)) or None

    return extract


def _xml_link(item: Node) -> str | None:
    return resolve_link(child(item, "link"))


def _xml_author(item: Node) -> str | None:
    node = child(item, "author")
    return text_of(child(node, "name")) or text_of(node) or None


XML_TITLE_EXTRACTORS: tuple[Extractor, ...] = (_xml_field("title"), _xml_field("dc:title"), _xml_link)
XML_IDENTITY_EXTRACTORS: tuple[Extractor, ...] = (_xml_field("guid"), _xml_field("id"), _xml_link, _xml_field("title"))
XML_CONTENT_EXTRACTORS: tuple[Extractor, ...] = (
    _xml_field("content:encoded"),
    _xml_field("content"),
    _xml_field("description"),
    _xml_field("summary"),
    _xml_nested("media:group", "media:description"),
)
XML_SUMMARY_EXTRACTORS: tuple[Extractor, ...] = (
    _xml_field("description"),
    _xml_field("summary"),
    _xml_field("itunes:summary"),
)
XML_AUTHOR_EXTRACTORS: tuple[Extractor, ...] = (_xml_field("dc:creator"), _xml_author, _xml_field("itunes:author"))
XML_DATE_EXTRACTORS: tuple[Extractor, ...] = (
    _xml_field("pubDate"),
    _xml_field("published"),
    _xml_field("dc:date"),
    _xml_field("updated"),
    _xml_field("issued"),
    _xml_field("modified"),
)
XML_THUMBNAIL_EXTRACTORS: tuple[Extractor, ...] = (
    lambda item: attr(child(item, "media:thumbnail"), "url"),
    lambda item: attr(child(child(item, "media:group"), "media:thumbnail"), "url"),
    lambda item: attr(child(item, "itunes:image"), "href"),
)


def _xml_enclosure(item: Node) -> tuple[str | None, str | None]:
    enclosure = child(item, "enclosure")
    url = attr(enclosure, "url")
    if url:
        return url, attr(enclosure, "type")
    for link in as_list(child(item, "link")):
        if isinstance(link, ElementNode) and (link.attributes.get("rel") or "").lower() == "enclosure":
            href = (link.attributes.get("href") or "").strip()
            if href:
                return href, (link.attributes.get("type") or "").strip() or None
    return None, None


def normalize_xml_entry(item: Node, source_url: str, scrape_thumbnails: bool = False) -> ParsedEntry:
    title = first_non_empty(XML_TITLE_EXTRACTORS, item) or UNTITLED
    identity = first_non_empty(XML_IDENTITY_EXTRACTORS, item) or title
    link = _xml_link(item)
    content = first_non_empty(XML_CONTENT_EXTRACTORS, item) or ""
    summary = first_non_empty(XML_SUMMARY_EXTRACTORS, item)

    enclosure_url, enclosure_type = _xml_enclosure(item)
    video_id = text_of(child(item, "yt:videoId")) or None
    media_kind = classify_media(enclosure_type, video_id)

    thumbnail_url = video_thumbnail(video_id) if video_id else first_non_empty(XML_THUMBNAIL_EXTRACTORS, item)
    if scrape_thumbnails and not thumbnail_url:
        thumbnail_url = _best_effort_thumbnail(content, summary)

    return ParsedEntry(
        id=article_id(source_url, identity),
        external_id=identity,
        title=title,
        content=content,
        url=link,
        author=first_non_empty(XML_AUTHOR_EXTRACTORS, item),
        summary=summary,
        published_at=parse_datetime(first_non_empty(XML_DATE_EXTRACTORS, item)),
        media_kind=media_kind,
        thumbnail_url=thumbnail_url,
        enclosure_url=enclosure_url,
        enclosure_mime_type=enclosure_type,
    )


# JSON Feed extractors


def _json_str(key: str) -> Extractor:
    def extract(item: dict) -> str | None:
        value = item.get(key)
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            return str(value)
        return None

    return extract


def _json_author(item: dict) -> str | None:
    author = item.get("author")
    if isinstance(author, dict) and isinstance(author.get("name"), str):
        return author["name"]
    authors = item.get("authors")
    if isinstance(authors, list):
        for entry in authors:
            if isinstance(entry, dict) and isinstance(entry.get("name"), str) and entry["name"].strip():
                return entry["name"]
    return None


JSON_TITLE_EXTRACTORS: tuple[Extractor, ...] = (_json_str("title"), _json_str("url"))
JSON_IDENTITY_EXTRACTORS: tuple[Extractor, ...] = (_json_str("id"), _json_str("url"), _json_str("title"))
JSON_CONTENT_EXTRACTORS: tuple[Extractor, ...] = (
    _json_str("content_html"),
    _json_str("content_text"),
    _json_str("summary"),
)
JSON_DATE_EXTRACTORS: tuple[Extractor, ...] = (_json_str("date_published"), _json_str("date_modified"))
JSON_THUMBNAIL_EXTRACTORS: tuple[Extractor, ...] = (_json_str("image"), _json_str("banner_image"))


def _json_attachment(item: dict) -> tuple[str | None, str | None]:
    attachments = item.get("attachments")
    if not isinstance(attachments, list):
        return None, None
    for attachment in attachments:
        if not isinstance(attachment, dict):
            continue
        url = attachment.get("url")
        if isinstance(url, str) and url.strip():
            mime = attachment.get("mime_type")
            return url.strip(), mime.strip() if isinstance(mime, str) and mime.strip() else None
    return None, None


def normalize_json_item(item: dict, source_url: str) -> ParsedEntry:
    title = html.unescape(first_non_empty(JSON_TITLE_EXTRACTORS, item) or UNTITLED)
    identity = first_non_empty(JSON_IDENTITY_EXTRACTORS, item) or title
    url = first_non_empty((_json_str("url"), _json_str("external_url")), item)
    summary = first_non_empty((_json_str("summary"),), item)

    enclosure_url, enclosure_type = _json_attachment(item)
    video_id = extract_video_id(url)
    media_kind = classify_media(enclosure_type, video_id)
    thumbnail_url = first_non_empty(JSON_THUMBNAIL_EXTRACTORS, item)
    if video_id and not thumbnail_url:
        thumbnail_url = video_thumbnail(video_id)

    return ParsedEntry(
        id=article_id(source_url, identity),
        external_id=identity,
        title=title,
        content=first_non_empty(JSON_CONTENT_EXTRACTORS, item) or "",
        url=url,
        author=_json_author(item),
        summary=html.unescape(summary) if summary else None,
        published_at=parse_datetime(first_non_empty(JSON_DATE_EXTRACTORS, item)),
        media_kind=media_kind,
        thumbnail_url=thumbnail_url,
        enclosure_url=enclosure_url,
        enclosure_mime_type=enclosure_type,
    )
