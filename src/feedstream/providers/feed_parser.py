from __future__ import annotations

import html
import json
from typing import Any
from urllib.parse import urlparse

from ..config import DEFAULT_LINK_AGGREGATOR_HOSTS
from ..errors import UnparsableContent
from ..models import (
    MEDIA_KIND_AUDIO_PODCAST,
    SOURCE_KIND_JSON,
    SOURCE_KIND_LINK_AGGREGATOR,
    SOURCE_KIND_PLAIN,
    SOURCE_KIND_PODCAST,
    SOURCE_KIND_VIDEO_CHANNEL,
)
from ..schemas import ParsedEntry, ParsedSource
from .entry_normalizer import normalize_json_item, normalize_xml_entry, resolve_link
from .xml_tree import ElementNode, Node, as_list, child, first, parse_document, text_of

VIDEO_CHANNEL_HOSTS = ("youtube.com",)
VIDEO_ID_MARKER = "yt:videoId"


def _host_matches(source_url: str, hosts: tuple[str, ...]) -> bool:
    try:
        host = (urlparse(source_url).hostname or "").lower()
    except ValueError:
        return False
    return any(host == candidate or host.endswith(f".{candidate}") for candidate in hosts)


def _contains_marker(raw: bytes | str, marker: str) -> bool:
    if isinstance(raw, bytes):
        return marker.encode("utf-8") in raw
    return marker in raw


def _looks_like_json(raw: bytes | str) -> bool:
    if isinstance(raw, bytes):
        return raw.lstrip(b"\xef\xbb\xbf").lstrip().startswith(b"{")
    return raw.lstrip("\ufeff").lstrip().startswith("{")


def _decode_json(raw: bytes | str) -> Any:
    if isinstance(raw, bytes):
        return json.loads(raw.lstrip(b"\xef\xbb\xbf"))
    return json.loads(raw.lstrip("\ufeff"))


def parse_feed(
    raw: bytes | str | dict,
    source_url: str,
    link_aggregator_hosts: tuple[str, ...] = DEFAULT_LINK_AGGREGATOR_HOSTS,
) -> ParsedSource:
    """Detect the wire format of ``raw`` and normalize it.

    JSON is tried first when the payload is already structured or starts with
    ``{``; a decode failure falls through to XML. RSS 2.0, Atom and RDF roots
    are recognized. Anything else raises :class:`UnparsableContent`.
    """

    if isinstance(raw, dict):
        return _parse_json_feed(raw, source_url)

    if _looks_like_json(raw):
        try:
            document = _decode_json(raw)
        except ValueError:
            document = None
        if isinstance(document, dict):
            return _parse_json_feed(document, source_url)

    return _parse_xml_feed(raw, source_url, link_aggregator_hosts)


def _parse_json_feed(document: dict, source_url: str) -> ParsedSource:
    items = document.get("items")
    if isinstance(items, dict):
        items = [items]
    elif not isinstance(items, list):
        items = []

    entries = [normalize_json_item(item, source_url) for item in items if isinstance(item, dict)]

    title = document.get("title")
    site_url = document.get("home_page_url")
    kind = SOURCE_KIND_VIDEO_CHANNEL if _host_matches(source_url, VIDEO_CHANNEL_HOSTS) else SOURCE_KIND_JSON
    return ParsedSource(
        title=html.unescape(title.strip()) if isinstance(title, str) else "",
        site_url=(site_url.strip() or None) if isinstance(site_url, str) else None,
        kind=kind,
        entries=entries,
    )


def _locate_channel(root_name: str, root: Node) -> tuple[Node, Node]:
    """Return ``(metadata node, entry container)`` for RSS 2.0, Atom or RDF roots."""

    if root_name == "rss":
        channel = first(child(root, "channel"))
        if isinstance(channel, ElementNode):
            return channel, channel
    if root_name == "feed":
        return root, root
    if root_name == "rdf:RDF":
        channel = first(child(root, "channel"))
        return (channel if isinstance(channel, ElementNode) else root), root
    raise UnparsableContent(f"no RSS, Atom or RDF feed root found (root element <{root_name}>)")


def _has_itunes_metadata(channel: Node) -> bool:
    head = first(channel)
    if not isinstance(head, ElementNode):
        return False
    return any(name.startswith("itunes:") for name in head.children)


def _infer_kind(
    raw: bytes | str,
    source_url: str,
    channel: Node,
    entries: list[ParsedEntry],
    is_aggregator: bool,
) -> str:
    if _host_matches(source_url, VIDEO_CHANNEL_HOSTS) or _contains_marker(raw, VIDEO_ID_MARKER):
        return SOURCE_KIND_VIDEO_CHANNEL
    if is_aggregator:
        return SOURCE_KIND_LINK_AGGREGATOR
    if _has_itunes_metadata(channel) or any(entry.media_kind == MEDIA_KIND_AUDIO_PODCAST for entry in entries):
        return SOURCE_KIND_PODCAST
    return SOURCE_KIND_PLAIN


def _parse_xml_feed(raw: bytes | str, source_url: str, link_aggregator_hosts: tuple[str, ...]) -> ParsedSource:
    root_name, root = parse_document(raw)
    channel, container = _locate_channel(root_name, root)

    is_aggregator = _host_matches(source_url, link_aggregator_hosts)
    items = child(container, "item") or child(container, "entry")
    entries = [
        normalize_xml_entry(item, source_url, scrape_thumbnails=is_aggregator)
        for item in as_list(items)
    ]

    title = text_of(child(channel, "title")) or text_of(child(channel, "dc:title"))
    return ParsedSource(
        title=title,
        site_url=resolve_link(child(channel, "link")),
        kind=_infer_kind(raw, source_url, channel, entries, is_aggregator),
        entries=entries,
    )
