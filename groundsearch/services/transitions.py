"""Named job transitions.

Every change the pipeline or the job service makes to a job is a typed event
applied with `apply(job, event)`. Transitions never mutate their input; they
return an updated deep copy.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from groundsearch.models.job import (
    ChatMessage,
    FacetFinding,
    JobStatus,
    ResearchBrief,
    ResearchJob,
)
from groundsearch.models.plan import ExecutionPlan, StepStatus
from groundsearch.models.records import Evidence, SourceRecord
from groundsearch.models.results import (
    DeepResearchResult,
    FinalAnswererResult,
    InsightPackResult,
)


class TransitionError(ValueError):
    """An event does not apply to the job it was given."""


# --- Step lifecycle ---


@dataclass(frozen=True, slots=True)
class StepStarted:
    step_id: str


@dataclass(frozen=True, slots=True)
class StepCompleted:
    step_id: str
    result: Any = None
    duration_ms: int = 0


@dataclass(frozen=True, slots=True)
class StepFailed:
    step_id: str
    message: str
    duration_ms: int = 0


@dataclass(frozen=True, slots=True)
class StepBlocked:
    step_id: str
    message: str
    duration_ms: int = 0


@dataclass(frozen=True, slots=True)
class StepReset:
    step_id: str


# --- Job state ---


@dataclass(frozen=True, slots=True)
class StatusChanged:
    status: JobStatus


@dataclass(frozen=True, slots=True)
class ErrorCleared:
    pass


@dataclass(frozen=True, slots=True)
class ErrorRecorded:
    message: str


@dataclass(frozen=True, slots=True)
class SourcesAppended:
    records: tuple[SourceRecord, ...]


@dataclass(frozen=True, slots=True)
class FacetRecorded:
    facet_name: str
    text: str
    sources: tuple[SourceRecord, ...] = ()


@dataclass(frozen=True, slots=True)
class ResearchSynthesized:
    result: DeepResearchResult
    evidence: tuple[Evidence, ...]


@dataclass(frozen=True, slots=True)
class EvidenceScreened:
    evidence: tuple[Evidence, ...]


@dataclass(frozen=True, slots=True)
class EvidenceAppended:
    evidence: tuple[Evidence, ...]


@dataclass(frozen=True, slots=True)
class InsightPackStored:
    result: InsightPackResult


@dataclass(frozen=True, slots=True)
class AnswerStored:
    result: FinalAnswererResult


@dataclass(frozen=True, slots=True)
class PlanAssigned:
    plan: Optional[ExecutionPlan]


@dataclass(frozen=True, slots=True)
class BriefUpdated:
    brief: ResearchBrief
    title: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PrePromptChanged:
    text: str


@dataclass(frozen=True, slots=True)
class ChatAppended:
    messages: tuple[ChatMessage, ...] = field(default_factory=tuple)
    follow_up: bool = False


JobEvent = (
    StepStarted
    | StepCompleted
    | StepFailed
    | StepBlocked
    | StepReset
    | StatusChanged
    | ErrorCleared
    | ErrorRecorded
    | SourcesAppended
    | FacetRecorded
    | ResearchSynthesized
    | EvidenceScreened
    | EvidenceAppended
    | InsightPackStored
    | AnswerStored
    | PlanAssigned
    | BriefUpdated
    | PrePromptChanged
    | ChatAppended
)


def _step_update(job: ResearchJob, step_id: str, **update: Any) -> ResearchJob:
    if job.plan is None:
        raise TransitionError(f"Job {job.id} has no plan")
    index = job.plan.step_index(step_id)
    if index is None:
        raise TransitionError(f"Step {step_id} not found in plan {job.plan.plan_id}")
    steps = list(job.plan.steps)
    steps[index] = steps[index].model_copy(update=update)
    plan = job.plan.model_copy(update={"steps": steps})
    return job.model_copy(update={"plan": plan})


def _step_action(job: ResearchJob, step_id: str) -> str:
    step = job.plan.get_step(step_id) if job.plan else None
    return step.action if step else step_id


def _started(job: ResearchJob, e: StepStarted) -> ResearchJob:
    return _step_update(job, e.step_id, status=StepStatus.RUNNING, result=None, duration_ms=None)


def _completed(job: ResearchJob, e: StepCompleted) -> ResearchJob:
    return _step_update(
        job, e.step_id, status=StepStatus.COMPLETED, result=e.result, duration_ms=e.duration_ms
    )


def _failed(job: ResearchJob, e: StepFailed) -> ResearchJob:
    updated = _step_update(
        job, e.step_id, status=StepStatus.FAILED, result=e.message, duration_ms=e.duration_ms
    )
    return updated.model_copy(
        update={
            "status": JobStatus.ERROR,
            "last_error": f"Step '{_step_action(job, e.step_id)}' failed: {e.message}",
        }
    )


def _blocked(job: ResearchJob, e: StepBlocked) -> ResearchJob:
    updated = _step_update(
        job, e.step_id, status=StepStatus.CORS_BLOCKED, result=e.message, duration_ms=e.duration_ms
    )
    return updated.model_copy(update={"status": JobStatus.RUNNING})


def _reset(job: ResearchJob, e: StepReset) -> ResearchJob:
    return _step_update(job, e.step_id, status=StepStatus.PENDING, result=None, duration_ms=None)


def _status(job: ResearchJob, e: StatusChanged) -> ResearchJob:
    return job.model_copy(update={"status": e.status})


def _error_cleared(job: ResearchJob, e: ErrorCleared) -> ResearchJob:
    return job.model_copy(update={"last_error": None})


def _error_recorded(job: ResearchJob, e: ErrorRecorded) -> ResearchJob:
    return job.model_copy(update={"last_error": e.message})


def _sources_appended(job: ResearchJob, e: SourcesAppended) -> ResearchJob:
    return job.model_copy(update={"sources": [*job.sources, *e.records]})


def _facet_recorded(job: ResearchJob, e: FacetRecorded) -> ResearchJob:
    findings = dict(job.facet_findings)
    findings[e.facet_name] = FacetFinding(text=e.text, sources=list(e.sources))
    return job.model_copy(update={"facet_findings": findings})


def _synthesized(job: ResearchJob, e: ResearchSynthesized) -> ResearchJob:
    return job.model_copy(
        update={
            "deep_research_result": e.result,
            "evidence": list(e.evidence),
            "sources": [],
            "facet_findings": {},
        }
    )


def _screened(job: ResearchJob, e: EvidenceScreened) -> ResearchJob:
    return job.model_copy(update={"evidence": list(e.evidence), "sources": []})


def _evidence_appended(job: ResearchJob, e: EvidenceAppended) -> ResearchJob:
    return job.model_copy(update={"evidence": [*job.evidence, *e.evidence]})


def _insight_stored(job: ResearchJob, e: InsightPackStored) -> ResearchJob:
    return job.model_copy(update={"insight_pack_result": e.result})


def _answer_stored(job: ResearchJob, e: AnswerStored) -> ResearchJob:
    return job.model_copy(update={"answerer_result": e.result})


def _plan_assigned(job: ResearchJob, e: PlanAssigned) -> ResearchJob:
    return job.model_copy(update={"plan": e.plan})


def _brief_updated(job: ResearchJob, e: BriefUpdated) -> ResearchJob:
    update: dict[str, Any] = {"brief": e.brief}
    if e.title:
        update["title"] = e.title
    return job.model_copy(update=update)


def _pre_prompt(job: ResearchJob, e: PrePromptChanged) -> ResearchJob:
    return job.model_copy(update={"pre_prompt": e.text})


def _chat_appended(job: ResearchJob, e: ChatAppended) -> ResearchJob:
    if e.follow_up:
        return job.model_copy(update={"follow_up_history": [*job.follow_up_history, *e.messages]})
    return job.model_copy(update={"chat_history": [*job.chat_history, *e.messages]})


_REDUCERS: dict[type, Callable[[ResearchJob, Any], ResearchJob]] = {
    StepStarted: _started,
    StepCompleted: _completed,
    StepFailed: _failed,
    StepBlocked: _blocked,
    StepReset: _reset,
    StatusChanged: _status,
    ErrorCleared: _error_cleared,
    ErrorRecorded: _error_recorded,
    SourcesAppended: _sources_appended,
    FacetRecorded: _facet_recorded,
    ResearchSynthesized: _synthesized,
    EvidenceScreened: _screened,
    EvidenceAppended: _evidence_appended,
    InsightPackStored: _insight_stored,
    AnswerStored: _answer_stored,
    PlanAssigned: _plan_assigned,
    BriefUpdated: _brief_updated,
    PrePromptChanged: _pre_prompt,
    ChatAppended: _chat_appended,
}


def apply(job: ResearchJob, event: JobEvent) -> ResearchJob:
    """Return a copy of ``job`` with ``event`` applied."""
    try:
        reducer = _REDUCERS[type(event)]
    except KeyError as exc:
        raise TransitionError(f"Unknown job event: {type(event).__name__}") from exc
    return reducer(job.model_copy(deep=True), event)


def apply_all(job: ResearchJob, *events: JobEvent) -> ResearchJob:
    for event in events:
        job = apply(job, event)
    return job
