from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

from groundsearch.models.records import Evidence, SourceRecord
from groundsearch.tools.claims import extract_claims
from groundsearch.tools.ingest import IngestedPage, ingest_url
from groundsearch.tools.search_provider import search_web
from groundsearch.tools.wolfram import wolfram_query


@dataclass
class Toolkit:
    """External side-effecting tools the pipeline calls; swapped out in tests."""

    search_web: Callable[..., Awaitable[list[SourceRecord]]] = search_web
    wolfram_query: Callable[..., Awaitable[list[SourceRecord]]] = wolfram_query
    ingest_url: Callable[[str], Awaitable[IngestedPage]] = ingest_url
    extract_claims: Callable[..., Awaitable[list[Evidence]]] = extract_claims
