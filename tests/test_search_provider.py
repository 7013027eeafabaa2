from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from groundsearch.tools import search_provider
from tests.conftest import make_record


@pytest.mark.asyncio
async def test_search_provider_uses_tavily_when_configured():
    with patch("groundsearch.tools.search_provider.settings") as mock_settings, patch(
        "groundsearch.tools.search_provider.tavily_search.search",
        AsyncMock(return_value=[make_record(1)]),
    ):
        mock_settings.search_provider = "tavily"

        result = await search_provider.search("query", max_results=3)

    assert result.provider == "tavily"
    assert [r.id for r in result.results] == ["r1"]


@pytest.mark.asyncio
async def test_brave_failure_falls_back_to_tavily():
    with patch("groundsearch.tools.search_provider.settings") as mock_settings, patch(
        "groundsearch.tools.search_provider.brave_search.search",
        AsyncMock(side_effect=RuntimeError("brave down")),
    ), patch(
        "groundsearch.tools.search_provider.tavily_search.search",
        AsyncMock(return_value=[make_record(2)]),
    ):
        mock_settings.search_provider = "brave"
        mock_settings.search_fallback_to_tavily = True

        result = await search_provider.search("query", max_results=3)

    assert result.provider == "tavily"
    assert result.fallback_from == "brave"
    assert result.fallback_reason == "brave down"


@pytest.mark.asyncio
async def test_brave_failure_raises_without_fallback():
    with patch("groundsearch.tools.search_provider.settings") as mock_settings, patch(
        "groundsearch.tools.search_provider.brave_search.search",
        AsyncMock(side_effect=RuntimeError("brave down")),
    ):
        mock_settings.search_provider = "brave"
        mock_settings.search_fallback_to_tavily = False

        with pytest.raises(RuntimeError):
            await search_provider.search("query")


@pytest.mark.asyncio
async def test_search_provider_raises_when_provider_unsupported():
    with patch("groundsearch.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "unknown-provider"

        with pytest.raises(ValueError):
            await search_provider.search("query")
