"""Structured artifacts returned by the analysis agents.

Fields default generously: these shapes come back from a model and partial
answers are better kept than rejected.
"""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from groundsearch.models.records import Evidence, SourceRecord

Confidence = Literal["high", "medium", "low"]


# --- Deep research ---


class FacetClaim(BaseModel):
    summary: str
    source_ids: list[str] = []
    confidence: Confidence = "low"
    why_high_value: str = ""


class FacetAttempts(BaseModel):
    queries: list[str] = []
    auxiliary: list[str] = []


class FacetResult(BaseModel):
    claims: list[FacetClaim] = []
    coverage: Literal["direct", "indirect", "none"] = "none"
    tried: FacetAttempts = Field(default_factory=FacetAttempts)
    note_if_missing: Optional[str] = None


class DeepResearchResult(BaseModel):
    facet_results: dict[str, FacetResult] = {}
    overall_assessment: str = ""
    sources: list[SourceRecord] = []


class FacetResearchOutput(BaseModel):
    result_text: str
    sources: list[SourceRecord] = []


# --- Screening ---


class ScreeningResult(BaseModel):
    kept: list[Evidence] = []
    dropped_count: Optional[int] = None


# --- Insight pack ---


class ThemeRelationDetails(BaseModel):
    relation: Literal["supports", "contradicts", "neutral"] = "neutral"
    note: str = ""
    evidence_ids: list[str] = []


class ThemeRelation(BaseModel):
    platform: str
    details: ThemeRelationDetails = Field(default_factory=ThemeRelationDetails)


class Theme(BaseModel):
    name: str
    conflict_score: float = 0.0
    corroboration_count: int = 0
    contradiction_count: int = 0
    relations: list[ThemeRelation] = []


class ComparisonResult(BaseModel):
    themes: list[Theme] = []


class SynthesisReport(BaseModel):
    markdown: str = ""
    rationale_summary: str = ""
    uncertainties: list[str] = []


class NextStep(BaseModel):
    description: str
    search_query: str = ""
    reason: str = ""
    priority: Literal["high", "medium", "low"] = "medium"


class SourceAnalysis(BaseModel):
    source_id: str
    role: Literal["primary", "official", "peer_reviewed", "reputable_media", "blog", "forum"] = "blog"
    provenance_hints: str = ""


class PlatformCount(BaseModel):
    platform: str
    count: int = 0


class MetaTrace(BaseModel):
    high_conflict_themes: list[str] = []
    sparse_evidence_themes: list[str] = []
    platform_source_counts: list[PlatformCount] = []
    source_analysis: list[SourceAnalysis] = []


class InsightPackResult(BaseModel):
    comparison_result: ComparisonResult = Field(default_factory=ComparisonResult, alias="comparisonResult")
    synthesis_report: SynthesisReport = Field(default_factory=SynthesisReport, alias="synthesisReport")
    next_steps: list[NextStep] = Field(default_factory=list, alias="nextSteps")
    brief_refinements: list[str] = []
    meta_trace: MetaTrace = Field(default_factory=MetaTrace)

    model_config = {"populate_by_name": True}


# --- Final answer ---


class ThemeConfidence(BaseModel):
    theme: str
    confidence: Confidence = "low"
    reason: str = ""
    sources: list[str] = []


class HighValueSourceReason(BaseModel):
    id: str
    why: str = ""


class FinalAnswererResult(BaseModel):
    answer: str = ""
    markdown_body: str = ""
    theme_confidences: list[ThemeConfidence] = []
    next_steps: list[str] = []
    high_value_sources: list[HighValueSourceReason] = []
    uncertainties: list[str] = []
    rationale_summary: str = ""


class HighValueSource(BaseModel):
    s_tag: str
    title: str
    score: int
    reasons: list[str] = []


# --- Scoping conversation ---


class ScopingReply(BaseModel):
    reply: str
    outline: Optional[dict] = None
