from __future__ import annotations

from dataclasses import dataclass

from groundsearch.config import settings
from groundsearch.errors import StepPreconditionError
from groundsearch.models.records import SourceRecord
from groundsearch.services.logger import logger
from groundsearch.tools import brave_search, tavily_search


@dataclass
class SearchResponse:
    results: list[SourceRecord]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


async def search(
    query: str,
    *,
    search_depth: str = "advanced",
    max_results: int = 10,
    time_range: str | None = None,
) -> SearchResponse:
    provider = settings.search_provider.lower().strip()
    use_fallback = settings.search_fallback_to_tavily

    if provider == "tavily":
        results = await tavily_search.search(
            query=query,
            search_depth=search_depth,
            max_results=max_results,
            time_range=time_range,
        )
        return SearchResponse(results=results, provider="tavily")

    if provider == "brave":
        try:
            results = await brave_search.search(
                query=query,
                max_results=max_results,
                time_range=time_range,
            )
            if results or not use_fallback:
                return SearchResponse(results=results, provider="brave")
            fallback_reason = "brave returned zero results"
        except Exception as e:
            if not use_fallback:
                raise
            fallback_reason = str(e)

        logger.warning(f"Brave search fell back to Tavily: {fallback_reason}")
        fallback_results = await tavily_search.search(
            query=query,
            search_depth=search_depth,
            max_results=max_results,
            time_range=time_range,
        )
        return SearchResponse(
            results=fallback_results,
            provider="tavily",
            fallback_from="brave",
            fallback_reason=fallback_reason,
        )

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")


async def search_web(query: str, k: int = 10, model: str | None = None) -> list[SourceRecord]:
    """Up to ``k`` records for ``query``; an empty list when nothing matched.

    ``model`` is the tool model the caller runs under. It must be on the
    allowlist when one is configured.
    """
    allowed = settings.allowed_tool_model_list
    if model and allowed and model not in allowed:
        raise StepPreconditionError(f"Tool model '{model}' is not allowed for web search")
    response = await search(query, max_results=k)
    return response.results[:k]
