from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Literal, Optional

from pydantic import BaseModel, Field

from groundsearch.models.plan import ExecutionPlan
from groundsearch.models.records import Evidence, SourceRecord
from groundsearch.models.results import (
    DeepResearchResult,
    FinalAnswererResult,
    InsightPackResult,
)


class JobStatus(StrEnum):
    DRAFT = "Draft"
    PLANNING = "Planning"
    RUNNING = "Running"
    COMPARING = "Comparing"
    ANSWERING = "Answering"
    SYNTHESIZING = "Synthesizing"
    COMPLETE = "Complete"
    ERROR = "Error"


class Timeframe(BaseModel):
    from_year: int = Field(default_factory=lambda: date.today().year - 5, alias="from")
    to_year: int = Field(default_factory=lambda: date.today().year, alias="to")

    model_config = {"populate_by_name": True}


class BriefScope(BaseModel):
    timeframe: Timeframe = Field(default_factory=Timeframe)
    domains: list[str] = []
    comparators: list[str] = []
    geography: str = ""


class ResearchBrief(BaseModel):
    objective: str = ""
    key_questions: list[str] = []
    scope: BriefScope = Field(default_factory=BriefScope)
    deliverable: str = "A cited narrative report with a comparison matrix."
    success_criteria: list[str] = []
    assumptions: list[str] = []
    inferred_fields: list[str] = []


class FacetFinding(BaseModel):
    """Output of one RESEARCH_FACET step, kept on the job until synthesis."""

    text: str
    sources: list[SourceRecord] = []


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    text: str


class JobModels(BaseModel):
    reasoning: str
    tool: str


class JobConfig(BaseModel):
    allow_tool_plan_fallback: bool = True
    wolfram_enabled: bool = False
    wolfram_app_id: str = ""


class ResearchJob(BaseModel):
    id: str
    title: str = "Untitled Research Job"
    status: JobStatus = JobStatus.DRAFT
    models: JobModels
    config: JobConfig = Field(default_factory=JobConfig)
    pre_prompt: str = ""
    brief: Optional[ResearchBrief] = None
    plan: Optional[ExecutionPlan] = None
    sources: list[SourceRecord] = []
    evidence: list[Evidence] = []
    facet_findings: dict[str, FacetFinding] = {}
    insight_pack_result: Optional[InsightPackResult] = None
    answerer_result: Optional[FinalAnswererResult] = None
    deep_research_result: Optional[DeepResearchResult] = None
    chat_history: list[ChatMessage] = []
    follow_up_history: list[ChatMessage] = []
    last_error: Optional[str] = None


class JobSnapshot(BaseModel):
    """The versioned subset of a job: what the user edits plus plan and status."""

    pre_prompt: str = ""
    brief: ResearchBrief = Field(default_factory=ResearchBrief)
    status: JobStatus = JobStatus.DRAFT
    plan: Optional[ExecutionPlan] = None
    markdown: Optional[str] = None


class JobVersion(BaseModel):
    version: int
    timestamp: float
    snapshot: JobSnapshot
