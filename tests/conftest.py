"""Shared fakes: agents and tools that never touch the network."""
from __future__ import annotations

from typing import Any

import pytest

from groundsearch.agents.base import AgentResult
from groundsearch.errors import IngestBlockedError
from groundsearch.models.job import JobModels, ResearchBrief, ResearchJob
from groundsearch.models.plan import ExecutionPlan, step_adapter
from groundsearch.models.records import Evidence, SourceRecord
from groundsearch.models.results import (
    DeepResearchResult,
    FacetResearchOutput,
    FinalAnswererResult,
    InsightPackResult,
    ScopingReply,
    ScreeningResult,
    SynthesisReport,
)
from groundsearch.services.job_store import JobStore
from groundsearch.services.pipeline import PipelineCallbacks, StepHandlers
from groundsearch.services.trace_log import TraceLog
from groundsearch.services.job_service import JobService
from groundsearch.tools.ingest import IngestedPage


def make_record(n: int, *, year: int | None = 2024, domain: str = "example.com") -> SourceRecord:
    return SourceRecord(
        id=f"r{n}",
        title=f"Source number {n}",
        url=f"https://{domain}/article-{n}",
        snippet=f"Snippet for source {n}",
        published=year,
    )


def make_evidence(n: int, **fields: Any) -> Evidence:
    return Evidence(
        id=f"e{n}",
        title=f"Evidence number {n}",
        url=f"https://example.com/evidence-{n}",
        year=2024,
        **fields,
    )


def make_plan(*steps: dict[str, Any]) -> ExecutionPlan:
    return ExecutionPlan(plan_id="plan-test", steps=[step_adapter.validate_python(s) for s in steps])


def make_job(plan: ExecutionPlan | None = None, **fields: Any) -> ResearchJob:
    fields.setdefault("brief", ResearchBrief(objective="How fast is solar adoption growing?"))
    return ResearchJob(
        id="job-test",
        models=JobModels(reasoning="reasoning-model", tool="tool-model"),
        plan=plan,
        **fields,
    )


class FakeAgents:
    """Stands in for ResearchAgents; records every call it receives."""

    def __init__(self):
        self.calls: list[tuple[str, Any]] = []
        self.screen_results: list[ScreeningResult] = []
        self.facet_sources: dict[str, list[SourceRecord]] = {}
        self.plan_result: ExecutionPlan | None = None
        self.plan_errors: list[Exception] = []
        self.follow_up_error: Exception | None = None
        self.answer_result = FinalAnswererResult(
            answer="Solar adoption is accelerating [S1].",
            markdown_body="Installed capacity doubled [S1].",
        )

    async def converse(self, brief, history, message):
        self.calls.append(("converse", message))
        return AgentResult(
            ScopingReply(reply="What timeframe?", outline={"key_questions": ["Q1"]}),
            f"converse:{message}",
        )

    async def plan(self, brief, *, model=None):
        self.calls.append(("plan", model))
        if self.plan_errors:
            raise self.plan_errors.pop(0)
        return AgentResult(self.plan_result, "plan-prompt")

    async def research_facet(self, facet_name, brief):
        self.calls.append(("research_facet", facet_name))
        sources = self.facet_sources.get(facet_name, [])
        return AgentResult(
            FacetResearchOutput(result_text=f"Findings about {facet_name}", sources=sources),
            f"facet:{facet_name}",
        )

    async def synthesize(self, facet_summaries, sources):
        self.calls.append(("synthesize", facet_summaries))
        return AgentResult(
            DeepResearchResult(overall_assessment="Consistent picture", sources=list(sources)),
            "synthesis-prompt",
        )

    async def screen(self, records, brief):
        self.calls.append(("screen", len(records)))
        if self.screen_results:
            return AgentResult(self.screen_results.pop(0), "screen-prompt")
        kept = [Evidence(id=r.id, title=r.title, url=r.url, year=r.published) for r in records]
        return AgentResult(ScreeningResult(kept=kept, dropped_count=0), "screen-prompt")

    async def insight_pack(self, job):
        self.calls.append(("insight_pack", len(job.evidence)))
        return AgentResult(
            InsightPackResult(synthesis_report=SynthesisReport(markdown="Prices fell 40% [S1].")),
            "insight-prompt",
        )

    async def answer(self, job):
        self.calls.append(("answer", len(job.evidence)))
        return AgentResult(self.answer_result, "answer-prompt")

    async def follow_up(self, answer, history, question):
        self.calls.append(("follow_up", question))
        if self.follow_up_error is not None:
            raise self.follow_up_error
        return AgentResult(f"Answer to: {question}", "follow-up-prompt")

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


class FakeToolkit:
    """Side-effecting tools with canned results."""

    def __init__(self):
        self.search_results: list[SourceRecord] = [make_record(1), make_record(2)]
        self.search_error: Exception | None = None
        self.wolfram_results: list[SourceRecord] = []
        self.wolfram_error: Exception | None = None
        self.blocked_urls: set[str] = set()
        self.claims: list[Evidence] = [make_evidence(1), make_evidence(2)]
        self.claims_error: Exception | None = None
        self.calls: list[tuple[str, Any]] = []

    async def search_web(self, query, k=10, model=None):
        self.calls.append(("search_web", query))
        if self.search_error is not None:
            raise self.search_error
        return list(self.search_results)

    async def wolfram_query(self, query, app_id, **kwargs):
        self.calls.append(("wolfram_query", query))
        if self.wolfram_error is not None:
            raise self.wolfram_error
        return list(self.wolfram_results)

    async def ingest_url(self, url):
        self.calls.append(("ingest_url", url))
        if url in self.blocked_urls:
            raise IngestBlockedError(url, "403 Forbidden")
        return IngestedPage(url=url, title="Ingested page", text="Readable page text.", method="soup")

    async def extract_claims(self, model, text, source_url, *, gateway=None, system=""):
        self.calls.append(("extract_claims", source_url))
        if self.claims_error is not None:
            raise self.claims_error
        return list(self.claims)


class Recorder:
    """Collects everything the runner reports through its callbacks."""

    def __init__(self):
        self.jobs: list[ResearchJob] = []
        self.statuses: list[str] = []
        self.traces = []

    def callbacks(self) -> PipelineCallbacks:
        return PipelineCallbacks(
            update_job=self.jobs.append,
            set_job_status=self.statuses.append,
            log_trace=self.traces.append,
        )


@pytest.fixture
def agents():
    return FakeAgents()


@pytest.fixture
def toolkit():
    return FakeToolkit()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def handlers(agents, toolkit):
    return StepHandlers(agents, toolkit, screen_batch_size=10)


@pytest.fixture
def store(tmp_path):
    return JobStore(base_dir=str(tmp_path / "jobs"))


@pytest.fixture
def service(store, agents, toolkit):
    return JobService(store, TraceLog(), toolkit=toolkit, agents_factory=lambda job: agents)
