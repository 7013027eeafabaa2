from __future__ import annotations

import hashlib
from typing import Any

from tavily import AsyncTavilyClient

from groundsearch.config import settings
from groundsearch.models.records import SourceRecord


def record_id(prefix: str, url: str) -> str:
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:10]
    return f"{prefix}-{digest}"


def _published_year(value: Any) -> int | None:
    if not isinstance(value, str) or len(value) < 4 or not value[:4].isdigit():
        return None
    return int(value[:4])


async def search(
    query: str,
    *,
    search_depth: str = "advanced",
    max_results: int = 10,
    topic: str = "general",
    time_range: str | None = None,
) -> list[SourceRecord]:
    """Execute a Tavily web search and map hits to source records."""
    client = AsyncTavilyClient(api_key=settings.tavily_api_key)

    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "topic": topic,
    }
    if time_range:
        kwargs["time_range"] = time_range

    response = await client.search(**kwargs)

    return [
        SourceRecord(
            id=record_id("web", r.get("url", "")),
            title=r.get("title", ""),
            url=r.get("url", ""),
            snippet=r.get("content") or None,
            published=_published_year(r.get("published_date")),
            source_id="web",
            metadata={"provider": "tavily", "score": r.get("score", 0.0)},
        )
        for r in response.get("results", [])
        if r.get("url")
    ]
