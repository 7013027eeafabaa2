from __future__ import annotations

from urllib.parse import quote_plus

import httpx

from groundsearch.models.records import SourceRecord
from groundsearch.services.logger import logger
from groundsearch.tools.tavily_search import record_id

WOLFRAM_RESULT_URL = "https://api.wolframalpha.com/v1/result"
WOLFRAM_PUBLIC_URL = "https://www.wolframalpha.com/input?i="


async def wolfram_query(query: str, app_id: str, *, timeout: float = 20.0) -> list[SourceRecord]:
    """Short-answer Wolfram|Alpha lookup.

    Never raises: a missing app id, an unanswerable query (HTTP 501) or any
    transport failure yields an empty list so a search fan-out can go on.
    """
    if not app_id:
        logger.warning("Wolfram|Alpha app id is missing; skipping query")
        return []

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(WOLFRAM_RESULT_URL, params={"appid": app_id, "i": query})
        if response.status_code == 501:
            logger.info(f"Wolfram|Alpha could not answer the query: {query}")
            return []
        response.raise_for_status()
        answer = response.text.strip()
    except httpx.HTTPError as exc:
        logger.error(f"Wolfram|Alpha call failed: {exc}")
        return []

    if not answer:
        return []
    public_url = WOLFRAM_PUBLIC_URL + quote_plus(query)
    return [
        SourceRecord(
            id=record_id("wolfram", public_url),
            title=f'Wolfram|Alpha Result for "{query}"',
            url=public_url,
            snippet=answer,
            source_id="wolfram",
        )
    ]
