"""Plan runner.

`execute_plan` drives a job's plan step by step, strictly in order. After
every step the job is persisted through the callbacks. A blocked ingest
pauses the run with the step left `CORS_BLOCKED`; any other error fails the
step, puts the job in `Error` and stops. Recovery is always an explicit
call back into `execute_plan` with `resume=True`.
"""
from __future__ import annotations

import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from groundsearch.agents.suite import ResearchAgents
from groundsearch.config import settings
from groundsearch.errors import (
    IngestBlockedError,
    ScreeningEmptyError,
    SearchUnavailableError,
    StepPreconditionError,
)
from groundsearch.models.job import JobStatus, ResearchBrief, ResearchJob
from groundsearch.models.plan import (
    RESUMABLE_STATUSES,
    TOOL_ACTIONS,
    AnswerStep,
    CompareStep,
    ExecutionPlan,
    ExecutionStep,
    IngestStep,
    ResearchFacetStep,
    ScreenStep,
    SearchStep,
    StepAction,
    StepStatus,
    SynthesizeResearchStep,
)
from groundsearch.models.records import Evidence, SourceRecord
from groundsearch.models.trace import TraceEvent, now_ms
from groundsearch.services import logger as log_service
from groundsearch.services.fanout import Err, Ok, best_effort
from groundsearch.services.transitions import (
    AnswerStored,
    ErrorCleared,
    ErrorRecorded,
    EvidenceScreened,
    FacetRecorded,
    InsightPackStored,
    JobEvent,
    ResearchSynthesized,
    SourcesAppended,
    StatusChanged,
    StepBlocked,
    StepCompleted,
    StepFailed,
    StepStarted,
    apply,
)
from groundsearch.tools.citations import enforce_citations_and_uncertainties, post_process_final_answer
from groundsearch.tools.scoring import score_credibility, score_evidence
from groundsearch.tools.tavily_search import record_id
from groundsearch.tools.toolkit import Toolkit
from groundsearch.tools.web_utils import deduplicate_records

RETRY_RECOMMENDATION = "Please check the error and retry the step."
PASTE_RECOMMENDATION = "Please paste page content in the UI to proceed."

MaybeAwaitable = Optional[Awaitable[None]]


@dataclass
class PipelineCallbacks:
    """How the runner reports progress. Each callback may be sync or async."""

    update_job: Callable[[ResearchJob], MaybeAwaitable]
    set_job_status: Callable[[JobStatus], MaybeAwaitable]
    log_trace: Callable[[TraceEvent], MaybeAwaitable]


@dataclass
class StepOutput:
    result: Any = None
    prompt: Optional[str] = None


def snapshot(value: Any) -> Any:
    """JSON-ready copy of a step result for storage and traces."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [snapshot(v) for v in value]
    if isinstance(value, dict):
        return {k: snapshot(v) for k, v in value.items()}
    return value


async def _call(callback: Callable[..., MaybeAwaitable], *args: Any) -> None:
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


class RunContext:
    """The job being run plus the callbacks it reports through."""

    def __init__(self, job: ResearchJob, callbacks: PipelineCallbacks):
        self.job = job
        self.callbacks = callbacks

    def apply(self, *events: JobEvent) -> ResearchJob:
        for event in events:
            self.job = apply(self.job, event)
        return self.job

    async def persist(self) -> None:
        await _call(self.callbacks.update_job, self.job)

    async def set_status(self, status: JobStatus) -> None:
        if self.job.status != status:
            self.apply(StatusChanged(status))
        await _call(self.callbacks.set_job_status, status)

    async def trace(self, **fields: Any) -> None:
        if fields.get("duration_ms") is not None and fields.get("end_ts") is None:
            fields["end_ts"] = now_ms()
        await _call(self.callbacks.log_trace, TraceEvent(**fields))

    async def info(self, step_id: str, summary: str, *, status: str = "info", **fields: Any) -> None:
        await self.trace(step_id=step_id, action="INFO", status=status, summary=summary, **fields)

    def require_brief(self, action: str) -> ResearchBrief:
        if self.job.brief is None:
            raise StepPreconditionError(f"Cannot run {action} without a research brief.")
        return self.job.brief

    def require_evidence(self, action: str) -> list[Evidence]:
        if not self.job.evidence:
            raise StepPreconditionError(f"Cannot run {action} step without evidence.")
        return self.job.evidence


def _evidence_from_record(record: SourceRecord) -> Evidence:
    return Evidence(
        id=record.id,
        title=record.title,
        url=record.url,
        year=record.published,
        source_id=record.source_id,
        snippet=record.snippet,
        quant_score=float(score_credibility(record).score),
        matches_questions=True,
        within_timeframe=True,
        has_comparators=True,
        has_quant_outcomes=False,
    )


class StepHandlers:
    """One handler per step kind; construction fails if a kind is left out."""

    def __init__(
        self,
        agents: ResearchAgents,
        toolkit: Toolkit | None = None,
        *,
        screen_batch_size: int | None = None,
    ):
        self.agents = agents
        self.toolkit = toolkit or Toolkit()
        self.screen_batch_size = max(screen_batch_size or settings.screen_batch_size, 1)
        self._handlers: dict[StepAction, Callable[[RunContext, Any], Awaitable[StepOutput]]] = {
            StepAction.RESEARCH_FACET: self.research_facet,
            StepAction.SYNTHESIZE_RESEARCH: self.synthesize_research,
            StepAction.SEARCH: self.search,
            StepAction.INGEST: self.ingest,
            StepAction.SCREEN: self.screen,
            StepAction.COMPARE: self.compare,
            StepAction.ANSWER: self.answer,
        }
        missing = set(StepAction) - set(self._handlers)
        if missing:
            raise TypeError(f"No handler for step kinds: {sorted(missing)}")

    async def dispatch(self, ctx: RunContext, step: ExecutionStep) -> StepOutput:
        return await self._handlers[StepAction(step.action)](ctx, step)

    async def research_facet(self, ctx: RunContext, step: ResearchFacetStep) -> StepOutput:
        brief = ctx.require_brief(step.action)
        await ctx.set_status(JobStatus.RUNNING)
        facet_name = step.params.facet_name
        outcome = await self.agents.research_facet(facet_name, brief)
        output = outcome.value
        ctx.apply(FacetRecorded(facet_name, output.result_text, tuple(output.sources)))
        return StepOutput(
            {"summary": output.result_text, "sources_found": len(output.sources)},
            outcome.prompt,
        )

    async def synthesize_research(self, ctx: RunContext, step: SynthesizeResearchStep) -> StepOutput:
        await ctx.set_status(JobStatus.SYNTHESIZING)
        findings = ctx.job.facet_findings
        if not findings:
            raise StepPreconditionError("Cannot run SYNTHESIZE_RESEARCH without facet research findings.")

        unique = deduplicate_records(s for finding in findings.values() for s in finding.sources)
        summaries = "\n\n".join(f"### {name}\n{finding.text}" for name, finding in findings.items())
        outcome = await self.agents.synthesize(summaries, unique)
        result = outcome.value

        evidence = tuple(_evidence_from_record(r) for r in result.sources)
        ctx.apply(ResearchSynthesized(result, evidence))
        return StepOutput(result, outcome.prompt)

    async def search(self, ctx: RunContext, step: SearchStep) -> StepOutput:
        query = step.params.query
        config = ctx.job.config
        branches: dict[str, Awaitable[list[SourceRecord]]] = {
            "Web Search": self.toolkit.search_web(query, step.params.k, model=ctx.job.models.tool),
        }
        if config.wolfram_enabled and config.wolfram_app_id:
            branches["Wolfram|Alpha"] = self.toolkit.wolfram_query(query, config.wolfram_app_id)

        outcomes = await best_effort(branches)
        records: list[SourceRecord] = []
        for outcome in outcomes:
            if isinstance(outcome, Ok):
                records.extend(outcome.value)
                await ctx.info(step.id, f"{outcome.name} found {len(outcome.value)} sources.")
            elif isinstance(outcome, Err):
                await ctx.trace(
                    step_id=step.id,
                    action="ERROR",
                    status="failed",
                    summary=f"{outcome.name} failed.",
                    error=str(outcome.error),
                )

        errors = [o for o in outcomes if isinstance(o, Err)]
        if len(errors) == len(outcomes):
            raise SearchUnavailableError(
                "All search branches failed: " + "; ".join(f"{e.name}: {e.error}" for e in errors)
            )
        ctx.apply(SourcesAppended(tuple(records)))
        return StepOutput(records)

    async def ingest(self, ctx: RunContext, step: IngestStep) -> StepOutput:
        page = await self.toolkit.ingest_url(step.params.url)
        ctx.apply(
            SourcesAppended(
                (
                    SourceRecord(
                        id=record_id("ingest", page.url),
                        title=page.title,
                        url=page.url,
                        snippet=page.text[:1000],
                        source_id="ingest",
                    ),
                )
            )
        )
        return StepOutput({"title": page.title, "text": page.text, "method": page.method})

    async def screen(self, ctx: RunContext, step: ScreenStep) -> StepOutput:
        sources = list(ctx.job.sources)
        if not sources:
            await ctx.info(step.id, "No sources found to screen. Skipping step.", parent_step_id=step.action)
            return StepOutput({"kept": [], "dropped_count": 0})
        brief = ctx.require_brief(step.action)

        size = self.screen_batch_size
        batches = [sources[i : i + size] for i in range(0, len(sources), size)]
        kept: list[Evidence] = []
        dropped = 0
        prompt: Optional[str] = None
        for number, batch in enumerate(batches, start=1):
            await ctx.info(
                step.id,
                f"Screening batch {number} of {len(batches)} ({len(batch)} sources)...",
                status="running",
            )
            outcome = await self.agents.screen(batch, brief)
            # A batch cannot keep more records than it was given.
            batch_kept = outcome.value.kept[: len(batch)]
            kept.extend(batch_kept)
            reported = outcome.value.dropped_count
            dropped += reported if reported is not None else len(batch) - len(batch_kept)
            prompt = outcome.prompt

        if len(kept) + dropped != len(sources):
            dropped = len(sources) - len(kept)

        if not kept:
            raise ScreeningEmptyError(
                f"Screening complete, but no usable evidence was found from {len(sources)} source(s).",
                kept=0,
                dropped_count=dropped,
            )

        scored = score_evidence(kept)
        await ctx.info(
            step.id,
            f"Screening complete. Kept and scored {len(scored)} sources, dropped {dropped}.",
            parent_step_id=step.action,
        )
        ctx.apply(EvidenceScreened(tuple(scored)))
        return StepOutput({"kept": scored, "dropped_count": dropped}, prompt)

    async def compare(self, ctx: RunContext, step: CompareStep) -> StepOutput:
        await ctx.set_status(JobStatus.COMPARING)
        ctx.require_evidence(step.action)
        ctx.require_brief(f"{step.action} step")
        outcome = await self.agents.insight_pack(ctx.job)
        result = enforce_citations_and_uncertainties(outcome.value)
        ctx.apply(InsightPackStored(result))
        return StepOutput(result, outcome.prompt)

    async def answer(self, ctx: RunContext, step: AnswerStep) -> StepOutput:
        await ctx.set_status(JobStatus.ANSWERING)
        ctx.require_evidence(step.action)
        outcome = await self.agents.answer(ctx.job)
        result = post_process_final_answer(outcome.value)
        ctx.apply(AnswerStored(result))
        return StepOutput(result, outcome.prompt)


def find_start_index(plan: ExecutionPlan, resume: bool, resume_step_id: Optional[str]) -> Optional[int]:
    """Index of the first step to run, or None when there is nothing left to do."""
    if resume_step_id:
        explicit = plan.step_index(resume_step_id)
        if explicit is not None:
            return explicit
    if plan.is_complete():
        return None
    if not resume:
        return 0
    for index, step in enumerate(plan.steps):
        if step.status in RESUMABLE_STATUSES:
            return index
    # Left Running by an interrupted run.
    for index, step in enumerate(plan.steps):
        if step.status != StepStatus.COMPLETED:
            return index
    return None


def _model_for(job: ResearchJob, action: str) -> str:
    return job.models.tool if action in TOOL_ACTIONS else job.models.reasoning


def _check_tool_model(job: ResearchJob, action: str) -> None:
    allowed = settings.allowed_tool_model_list
    if action in TOOL_ACTIONS and allowed and job.models.tool not in allowed:
        raise StepPreconditionError(
            f"{action} must use a designated tool model. Current tool model is '{job.models.tool}'."
        )


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


async def execute_plan(
    job: ResearchJob,
    callbacks: PipelineCallbacks,
    resume: bool = False,
    resume_step_id: Optional[str] = None,
    *,
    handlers: StepHandlers | None = None,
) -> ResearchJob:
    """Run ``job``'s plan until it completes, fails or pauses.

    Never raises: a step error, or a callback that fails while reporting,
    leaves the job in `Error`. The final job is returned.
    """
    ctx = RunContext(job, callbacks)
    try:
        await _run_plan(ctx, resume, resume_step_id, handlers)
    except Exception as exc:
        await _abort(ctx, exc)
    return ctx.job


async def _run_plan(
    ctx: RunContext,
    resume: bool,
    resume_step_id: Optional[str],
    handlers: StepHandlers | None,
) -> None:
    job = ctx.job
    plan = job.plan
    if plan is None or not plan.steps:
        await ctx.info("system", "No plan to execute.")
        return

    if handlers is None:
        toolkit = Toolkit()
        handlers = StepHandlers(ResearchAgents.for_job(job, search=toolkit.search_web), toolkit)

    if resume:
        suffix = f" from step {resume_step_id}" if resume_step_id else ""
        await ctx.info("system", f"Resuming plan execution{suffix}.")
    else:
        await ctx.info("system", "Starting plan execution.")

    start = find_start_index(plan, resume, resume_step_id)
    if start is None:
        await ctx.info("system", "Plan already complete.")
        await ctx.set_status(JobStatus.COMPLETE)
        return

    ctx.apply(ErrorCleared())
    if resume:
        await ctx.set_status(JobStatus.RUNNING)
    await ctx.persist()

    for step in plan.steps[start:]:
        t0 = time.monotonic()
        action = step.action
        ctx.apply(StepStarted(step.id))
        await ctx.persist()
        await ctx.trace(
            step_id=step.id,
            parent_step_id=action,
            action=action,
            agent=step.agent,
            status="running",
            summary=f"Executing {action} using {step.agent or 'pipeline'}",
            model=_model_for(ctx.job, action),
            input_snapshot={
                "params": step.params.model_dump(),
                "specialist_instructions": step.specialist_instructions,
            },
        )
        log_service.log_research_step(ctx.job.id, step.id, action, "running")

        try:
            _check_tool_model(ctx.job, action)
            current = ctx.job.plan.get_step(step.id)
            output = await handlers.dispatch(ctx, current)
        except IngestBlockedError as exc:
            if action != StepAction.INGEST:
                await _fail_step(ctx, step, exc, _elapsed_ms(t0))
                return
            duration_ms = _elapsed_ms(t0)
            await ctx.trace(
                step_id=step.id,
                parent_step_id=action,
                action=action,
                agent=step.agent,
                status="info",
                summary="Execution paused due to CORS block on URL.",
                recommendation=PASTE_RECOMMENDATION,
                duration_ms=duration_ms,
                error="CORS_BLOCKED",
                input_snapshot=step.params.model_dump(),
            )
            ctx.apply(StepBlocked(step.id, str(exc), duration_ms))
            await ctx.set_status(JobStatus.RUNNING)
            await ctx.persist()
            log_service.log_research_step(ctx.job.id, step.id, action, "paused", {"url": exc.url})
            return
        except Exception as exc:
            await _fail_step(ctx, step, exc, _elapsed_ms(t0))
            return

        duration_ms = _elapsed_ms(t0)
        result = snapshot(output.result)
        ctx.apply(StepCompleted(step.id, result, duration_ms))
        await ctx.persist()
        await ctx.trace(
            step_id=step.id,
            parent_step_id=action,
            action=action,
            agent=step.agent,
            status="success",
            summary="Step completed successfully.",
            duration_ms=duration_ms,
            output_snapshot=result,
            input_snapshot={"prompt": output.prompt} if output.prompt else None,
        )
        log_service.log_research_step(ctx.job.id, step.id, action, "completed", {"duration_ms": duration_ms})

    await ctx.set_status(JobStatus.COMPLETE)
    await ctx.persist()
    await ctx.info("system", "Plan finished successfully.", status="success")


async def _fail_step(ctx: RunContext, step: ExecutionStep, exc: Exception, duration_ms: int) -> None:
    message = str(exc) or exc.__class__.__name__
    recommendation = getattr(exc, "recommendation", None) or RETRY_RECOMMENDATION
    output_snapshot = None
    if isinstance(exc, ScreeningEmptyError):
        output_snapshot = {"kept": [], "dropped_count": exc.dropped_count}

    ctx.apply(StepFailed(step.id, message, duration_ms))
    await ctx.persist()
    await ctx.trace(
        step_id=step.id,
        parent_step_id=step.action,
        action=step.action,
        agent=step.agent,
        status="failed",
        summary=f"Step failed: {message}",
        duration_ms=duration_ms,
        error=message,
        recommendation=recommendation,
        output_snapshot=output_snapshot,
    )
    log_service.log_research_step(ctx.job.id, step.id, step.action, "failed", {"error": message})


async def _abort(ctx: RunContext, exc: Exception) -> None:
    """Settle the job in `Error` after a failure outside any step handler."""
    message = f"Run aborted: {str(exc) or exc.__class__.__name__}"
    running = ctx.job.plan.running_steps() if ctx.job.plan else []
    if running:
        ctx.apply(StepFailed(running[0].id, message))
    else:
        ctx.apply(StatusChanged(JobStatus.ERROR), ErrorRecorded(message))
    log_service.log_event("run_aborted", message, job_id=ctx.job.id, error=repr(exc))
    try:
        await ctx.persist()
        await ctx.info(
            running[0].id if running else "system",
            message,
            status="failed",
            error=str(exc),
            recommendation=RETRY_RECOMMENDATION,
        )
    except Exception as report_exc:
        log_service.log_event("run_abort_unreported", message, job_id=ctx.job.id, error=repr(report_exc))
