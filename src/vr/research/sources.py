"""
Source deduplication for grounded research citations.

Citations from the three research stages are merged into a single list keyed
by normalized URL. The first occurrence wins, so the merged list keeps
first-seen order across problem evidence, competitor analysis and market
signals.
"""

from __future__ import annotations

from typing import Iterable
from urllib.parse import urlsplit

from vr.types import ResearchSource


def normalize_url(url: str) -> str:
    """Normalize a URL to the key used for deduplication.

    The whole URL is lowercased and reduced to host + path. Scheme, query
    string and fragment are dropped, and trailing slashes are stripped from
    the path (an empty path becomes "/").

    >>> normalize_url("HTTP://Example.com/a/b/")
    'example.com/a/b'
    >>> normalize_url("https://example.com/a?x=1#top")
    'example.com/a'
    """
    lowered = url.strip().lower()
    try:
        parts = urlsplit(lowered)
    except ValueError:
        return lowered

    if not parts.netloc:
        return lowered

    path = parts.path.rstrip("/") or "/"
    return f"{parts.netloc}{path}"


def merge_sources(*source_lists: Iterable[ResearchSource]) -> list[ResearchSource]:
    """Concatenate source lists and drop later duplicates by normalized URL."""
    seen: set[str] = set()
    merged: list[ResearchSource] = []
    for sources in source_lists:
        for source in sources:
            key = normalize_url(source.url)
            if key in seen:
                continue
            seen.add(key)
            merged.append(source)
    return merged
