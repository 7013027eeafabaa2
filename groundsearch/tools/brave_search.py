from __future__ import annotations

from typing import Any

import httpx

from groundsearch.config import settings
from groundsearch.models.records import SourceRecord
from groundsearch.tools.tavily_search import record_id

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"

FRESHNESS_MAP = {
    "day": "pd",
    "week": "pw",
    "month": "pm",
    "year": "py",
}


def _age_year(item: dict[str, Any]) -> int | None:
    page_age = item.get("page_age") or ""
    if len(page_age) >= 4 and page_age[:4].isdigit():
        return int(page_age[:4])
    return None


async def search(
    query: str,
    *,
    max_results: int = 10,
    time_range: str | None = None,
) -> list[SourceRecord]:
    """Execute a Brave web search and normalize results."""
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    params: dict[str, Any] = {
        "q": query,
        "count": max_results,
    }
    if time_range and time_range in FRESHNESS_MAP:
        params["freshness"] = FRESHNESS_MAP[time_range]

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(
            BRAVE_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": settings.brave_api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()

    raw_results = payload.get("web", {}).get("results", [])
    total = max(len(raw_results), 1)
    mapped: list[SourceRecord] = []
    for idx, item in enumerate(raw_results):
        url = item.get("url", "")
        if not url:
            continue
        snippets = item.get("extra_snippets", []) or []
        description = item.get("description", "") or ""
        content = description.strip() or " ".join(snippets).strip()
        # No relevance score in this response shape; rank order stands in.
        score = max(0.0, 1.0 - (idx / total))
        mapped.append(
            SourceRecord(
                id=record_id("web", url),
                title=item.get("title", ""),
                url=url,
                snippet=content or None,
                published=_age_year(item),
                source_id="web",
                metadata={"provider": "brave", "score": score},
            )
        )
    return mapped
