from __future__ import annotations

from typing import Sequence

from groundsearch.agents.base import AgentResult
from groundsearch.agents.facet_research import FacetResearchAgent, SearchFn
from groundsearch.agents.specialists import (
    AnswererAgent,
    ConversationAgent,
    FollowUpAgent,
    InsightPackAgent,
    OrchestrationAgent,
    ResearchSynthesisAgent,
    ScreeningAgent,
)
from groundsearch.models.job import ChatMessage, JobModels, ResearchBrief, ResearchJob
from groundsearch.models.plan import ExecutionPlan
from groundsearch.models.records import SourceRecord
from groundsearch.models.results import (
    DeepResearchResult,
    FacetResearchOutput,
    FinalAnswererResult,
    InsightPackResult,
    ScopingReply,
    ScreeningResult,
)
from groundsearch.services.gateway import ReasoningGateway


class ResearchAgents:
    """Every agent a job needs, bound to that job's models and pre-prompt.

    Facet research runs on the tool model; everything else on the
    reasoning model.
    """

    def __init__(
        self,
        models: JobModels,
        *,
        gateway: ReasoningGateway | None = None,
        pre_prompt: str = "",
        search: SearchFn | None = None,
    ):
        self.models = models
        self.gateway = gateway
        self.pre_prompt = pre_prompt
        self.search = search

    @classmethod
    def for_job(
        cls,
        job: ResearchJob,
        *,
        gateway: ReasoningGateway | None = None,
        search: SearchFn | None = None,
    ) -> "ResearchAgents":
        return cls(job.models, gateway=gateway, pre_prompt=job.pre_prompt, search=search)

    def _kwargs(self) -> dict:
        return {"gateway": self.gateway, "pre_prompt": self.pre_prompt}

    async def converse(
        self,
        brief: ResearchBrief,
        history: Sequence[ChatMessage],
        message: str,
    ) -> AgentResult[ScopingReply]:
        agent = ConversationAgent(self.models.reasoning, **self._kwargs())
        return await agent.converse(brief, history, message)

    async def plan(self, brief: ResearchBrief, *, model: str | None = None) -> AgentResult[ExecutionPlan]:
        agent = OrchestrationAgent(model or self.models.reasoning, **self._kwargs())
        return await agent.plan(brief)

    async def research_facet(self, facet_name: str, brief: ResearchBrief) -> AgentResult[FacetResearchOutput]:
        # A fresh agent per facet keeps collected sources separate.
        agent = FacetResearchAgent(self.models.tool, search=self.search, **self._kwargs())
        return await agent.research(facet_name, brief)

    async def synthesize(
        self,
        facet_summaries: str,
        sources: Sequence[SourceRecord],
    ) -> AgentResult[DeepResearchResult]:
        agent = ResearchSynthesisAgent(self.models.reasoning, **self._kwargs())
        return await agent.synthesize(facet_summaries, sources)

    async def screen(self, records: Sequence[SourceRecord], brief: ResearchBrief) -> AgentResult[ScreeningResult]:
        agent = ScreeningAgent(self.models.reasoning, **self._kwargs())
        return await agent.screen(records, brief)

    async def insight_pack(self, job: ResearchJob) -> AgentResult[InsightPackResult]:
        agent = InsightPackAgent(self.models.reasoning, **self._kwargs())
        return await agent.analyze(job)

    async def answer(self, job: ResearchJob) -> AgentResult[FinalAnswererResult]:
        agent = AnswererAgent(self.models.reasoning, **self._kwargs())
        return await agent.answer(job)

    async def follow_up(
        self,
        answer: FinalAnswererResult,
        history: Sequence[ChatMessage],
        question: str,
    ) -> AgentResult[str]:
        agent = FollowUpAgent(self.models.reasoning, **self._kwargs())
        return await agent.ask(answer, history, question)
