from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

from groundsearch.agents.base import AgentResult, BaseAgent
from groundsearch.config import settings
from groundsearch.models.job import ResearchBrief
from groundsearch.models.records import SourceRecord
from groundsearch.models.results import FacetResearchOutput
from groundsearch.services.prompt_store import render_prompt
from groundsearch.tools.search_provider import search_web

SearchFn = Callable[..., Awaitable[list[SourceRecord]]]


class FacetResearchAgent(BaseAgent):
    """Researches one facet of the brief with web search tool access.

    Runs in text mode: the reply is kept as written for the synthesis step,
    and every record returned by a search is collected as a source.
    """

    name = "FacetResearchAgent"
    prompt_key = "facet_research.user"
    json_mode = False
    timeout = settings.timeout_facet_s

    def __init__(self, model: str, search: SearchFn | None = None, **kwargs: Any):
        super().__init__(model, **kwargs)
        self.search = search or search_web
        self.sources: list[SourceRecord] = []
        self.queries: list[str] = []

    @property
    def tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": "web_search",
                "description": render_prompt("facet_research.tool_description"),
                "input_schema": {
                    "type": "object",
                    "properties": {
                        "query": {
                            "type": "string",
                            "description": "The search query. Be specific and targeted.",
                        },
                        "max_results": {
                            "type": "integer",
                            "description": "Number of results to return (1-10).",
                            "default": 5,
                        },
                    },
                    "required": ["query"],
                },
            }
        ]

    async def handle_tool_call(self, tool_name: str, tool_input: dict[str, Any]) -> str:
        if tool_name != "web_search":
            raise NotImplementedError(f"Unknown tool: {tool_name}")

        query = str(tool_input.get("query", "")).strip()
        if not query:
            return "Error: empty query."
        k = min(max(int(tool_input.get("max_results", 5) or 5), 1), 10)
        self.queries.append(query)

        results = await self.search(query, k, model=self.model)
        self.sources.extend(results)
        if not results:
            return f"No results for '{query}'."
        return f"Found {len(results)} results for '{query}':\n" + "\n".join(
            json.dumps({"id": r.id, "title": r.title, "url": r.url, "snippet": (r.snippet or "")[:300]})
            for r in results
        )

    async def research(self, facet_name: str, brief: ResearchBrief) -> AgentResult[FacetResearchOutput]:
        prompt = self.build_prompt(
            facet_name=facet_name,
            brief_json=brief.model_dump_json(by_alias=True, indent=2),
        )
        result = await self.run(prompt, max_turns=settings.facet_max_turns)
        output = FacetResearchOutput(result_text=str(result.value or ""), sources=list(self.sources))
        return AgentResult(output, result.prompt)
