from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import urlparse

from groundsearch.models.records import SourceRecord


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def clean_content(text: str, max_length: int = 8000) -> str:
    """Collapse whitespace and trim to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def extract_domain(url: str) -> str:
    """Lower-cased host of a URL, or an empty string."""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def deduplicate_records(records: Iterable[SourceRecord]) -> list[SourceRecord]:
    """Keep the first record seen for each URL, in input order.

    Records without a URL cannot be cited and are dropped.
    """
    seen: set[str] = set()
    unique: list[SourceRecord] = []
    for record in records:
        if not record.url or record.url in seen:
            continue
        seen.add(record.url)
        unique.append(record)
    return unique
