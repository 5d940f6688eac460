from __future__ import annotations

import re

CONTENT_PREFIX_CHARS = 1000

_TAG_RE = re.compile(r"<[^>]*>")


def build_digest(title: str, summary: str | None = None, content: str | None = None) -> str:
    """Lowercased, tag-stripped ``title + summary + first 1000 chars of content``.

    Pure and deterministic: recomputing it for a stored article gives the
    stored value back.
    """

    parts = [title]
    if summary:
        parts.append(summary)
    if content:
        parts.append(content[:CONTENT_PREFIX_CHARS])
    return _TAG_RE.sub("", " ".join(parts)).lower()
