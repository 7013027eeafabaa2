"""Job commands: everything the API and CLI can ask of a research job.

`JobService` owns the in-process job cache, the snapshot store and the trace
log, and makes sure only one pipeline run per job is in flight.
"""
from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

from pydantic import ValidationError

from groundsearch.agents.suite import ResearchAgents
from groundsearch.config import settings
from groundsearch.errors import (
    GroundSearchError,
    JobBusyError,
    StepPreconditionError,
)
from groundsearch.models.job import (
    ChatMessage,
    JobConfig,
    JobModels,
    JobSnapshot,
    JobStatus,
    JobVersion,
    ResearchBrief,
    ResearchJob,
)
from groundsearch.models.plan import IngestStep, StepAction, StepStatus
from groundsearch.models.results import ScopingReply
from groundsearch.models.trace import TraceEvent
from groundsearch.services.export import export_markdown
from groundsearch.services.gateway import ReasoningGateway
from groundsearch.services.job_store import JobStore
from groundsearch.services.logger import logger
from groundsearch.services.pipeline import PipelineCallbacks, StepHandlers, execute_plan, snapshot
from groundsearch.services.prompt_store import system_prompt
from groundsearch.services.trace_log import TraceLog
from groundsearch.services.transitions import (
    BriefUpdated,
    ChatAppended,
    ErrorCleared,
    ErrorRecorded,
    EvidenceAppended,
    PlanAssigned,
    PrePromptChanged,
    StatusChanged,
    StepCompleted,
    StepReset,
    apply,
    apply_all,
)
from groundsearch.tools.scoring import score_evidence
from groundsearch.tools.toolkit import Toolkit

PLAN_STEP_ID = "plan-generation"
MANUAL_INGEST_ERROR = "Manual ingest for step '{step_id}' failed. See step details for the error."
DEFAULT_TITLE = "Untitled Research Job"

AgentsFactory = Callable[[ResearchJob], ResearchAgents]


def merge_outline(brief: ResearchBrief, outline: Optional[dict[str, Any]]) -> ResearchBrief:
    """Fold a scoping outline into the current brief, ignoring empty values."""
    if not outline:
        return brief
    merged = brief.model_dump(by_alias=True)
    for key, value in outline.items():
        if value in (None, "", [], {}):
            continue
        if key == "scope" and isinstance(value, dict):
            merged["scope"] = {**merged["scope"], **{k: v for k, v in value.items() if v not in (None, "")}}
        else:
            merged[key] = value
    try:
        return ResearchBrief.model_validate(merged)
    except ValidationError as exc:
        logger.warning(f"Ignoring scoping outline that does not fit a brief: {exc.error_count()} error(s)")
        return brief


class JobService:
    def __init__(
        self,
        store: JobStore | None = None,
        traces: TraceLog | None = None,
        *,
        gateway: ReasoningGateway | None = None,
        toolkit: Toolkit | None = None,
        agents_factory: AgentsFactory | None = None,
    ):
        self.store = store or JobStore()
        self.traces = traces or TraceLog()
        self.gateway = gateway
        self.toolkit = toolkit or Toolkit()
        self.agents_factory = agents_factory or self._default_agents
        self._jobs: dict[str, ResearchJob] = {}
        self._running: set[str] = set()

    def _default_agents(self, job: ResearchJob) -> ResearchAgents:
        return ResearchAgents.for_job(job, gateway=self.gateway, search=self.toolkit.search_web)

    # --- Persistence ---

    @staticmethod
    def _snapshot(job: ResearchJob) -> JobSnapshot:
        return JobSnapshot(
            pre_prompt=job.pre_prompt,
            brief=job.brief or ResearchBrief(),
            status=job.status,
            plan=job.plan,
            markdown=export_markdown(job) if job.answerer_result else None,
        )

    def _save(self, job: ResearchJob) -> ResearchJob:
        previous = self._jobs.get(job.id)
        self.store.save_job(job)
        self._jobs[job.id] = job
        current = self._snapshot(job)
        if previous is None or self._snapshot(previous) != current:
            self.store.append(
                job.id,
                pre_prompt=current.pre_prompt,
                brief=current.brief,
                status=current.status,
                plan=current.plan,
                markdown=current.markdown,
            )
        return job

    def _set_status(self, job_id: str, status: JobStatus) -> None:
        job = self.get_job(job_id)
        if job.status != status:
            self._save(apply(job, StatusChanged(status)))

    def _trace(self, job_id: str, **fields: Any) -> TraceEvent:
        event = TraceEvent(**fields)
        self.traces.append(job_id, event)
        return event

    def _callbacks(self, job_id: str) -> PipelineCallbacks:
        return PipelineCallbacks(
            update_job=self._save,
            set_job_status=lambda status: self._set_status(job_id, status),
            log_trace=lambda event: self.traces.append(job_id, event),
        )

    # --- Run guard ---

    def is_running(self, job_id: str) -> bool:
        return job_id in self._running

    def ensure_idle(self, job_id: str) -> None:
        if job_id in self._running:
            raise JobBusyError(job_id)

    @asynccontextmanager
    async def _exclusive(self, job_id: str) -> AsyncIterator[None]:
        self.ensure_idle(job_id)
        self._running.add(job_id)
        try:
            yield
        finally:
            self._running.discard(job_id)
            self.traces.close(job_id)

    async def _run(
        self,
        job: ResearchJob,
        *,
        resume: bool = False,
        resume_step_id: Optional[str] = None,
    ) -> ResearchJob:
        handlers = StepHandlers(self.agents_factory(job), self.toolkit)
        result = await execute_plan(
            job, self._callbacks(job.id), resume, resume_step_id, handlers=handlers
        )
        # The runner's final state wins even when persisting it failed.
        self._jobs[result.id] = result
        return result

    # --- CRUD ---

    def create_job(
        self,
        objective: str = "",
        *,
        title: Optional[str] = None,
        reasoning_model: Optional[str] = None,
        tool_model: Optional[str] = None,
        pre_prompt: str = "",
    ) -> ResearchJob:
        job = ResearchJob(
            id=uuid.uuid4().hex[:12],
            title=title or (objective[:80] if objective else DEFAULT_TITLE),
            models=JobModels(
                reasoning=reasoning_model or settings.reasoning_model,
                tool=tool_model or settings.tool_model,
            ),
            config=JobConfig(
                allow_tool_plan_fallback=settings.allow_tool_plan_fallback,
                wolfram_enabled=settings.wolfram_enabled,
                wolfram_app_id=settings.wolfram_app_id,
            ),
            pre_prompt=pre_prompt,
            brief=ResearchBrief(objective=objective) if objective else None,
        )
        self.store.create(job.id, self._snapshot(job))
        self.store.save_job(job)
        self._jobs[job.id] = job
        logger.info(f"Created job {job.id}: {job.title}")
        return job

    def get_job(self, job_id: str) -> ResearchJob:
        job = self._jobs.get(job_id)
        if job is None:
            job = self.store.load_job(job_id)
            self._jobs[job_id] = job
        return job

    def list_jobs(self) -> list[ResearchJob]:
        return self.store.list_jobs()

    def delete_job(self, job_id: str) -> None:
        self.ensure_idle(job_id)
        self.get_job(job_id)
        self.store.delete(job_id)
        self._jobs.pop(job_id, None)
        self.traces.clear(job_id)

    def clone_job(self, job_id: str, brief_overrides: Optional[dict[str, Any]] = None) -> ResearchJob:
        original = self.get_job(job_id)
        brief = merge_outline(original.brief or ResearchBrief(), brief_overrides)
        clone = ResearchJob(
            id=uuid.uuid4().hex[:12],
            title=f"{original.title} (copy)",
            models=original.models,
            config=original.config,
            pre_prompt=original.pre_prompt,
            brief=brief,
        )
        self.store.clone(job_id, clone.id, brief.model_dump(by_alias=True))
        self.store.save_job(clone)
        self._jobs[clone.id] = clone
        return clone

    def list_versions(self, job_id: str) -> list[JobVersion]:
        self.get_job(job_id)
        return self.store.list_versions(job_id)

    def trace(self, job_id: str) -> list[TraceEvent]:
        return self.traces.events(job_id)

    # --- Brief ---

    async def scope(self, job_id: str, message: str) -> ScopingReply:
        """One scoping-conversation turn; the reply's outline is merged into the brief."""
        async with self._exclusive(job_id):
            job = self.get_job(job_id)
            brief = job.brief or ResearchBrief()
            agents = self.agents_factory(job)
            outcome = await agents.converse(brief, job.chat_history, message)
            reply: ScopingReply = outcome.value

            new_brief = merge_outline(brief, reply.outline)
            title = None
            if job.title == DEFAULT_TITLE and new_brief.objective:
                title = new_brief.objective[:80]
            job = apply_all(
                self.get_job(job_id),
                ChatAppended((ChatMessage(role="user", text=message), ChatMessage(role="model", text=reply.reply))),
                BriefUpdated(new_brief, title=title),
            )
            self._save(job)
            return reply

    def update_brief(self, job_id: str, brief: ResearchBrief) -> ResearchJob:
        self.ensure_idle(job_id)
        job = self.get_job(job_id)
        title = brief.objective[:80] if job.title == DEFAULT_TITLE and brief.objective else None
        return self._save(apply(job, BriefUpdated(brief, title=title)))

    def set_pre_prompt(self, job_id: str, text: str) -> ResearchJob:
        self.ensure_idle(job_id)
        return self._save(apply(self.get_job(job_id), PrePromptChanged(text.strip())))

    # --- Planning and execution ---

    async def generate_plan(self, job_id: str, *, auto_execute: bool = True) -> ResearchJob:
        async with self._exclusive(job_id):
            job = self.get_job(job_id)
            if job.brief is None or not job.brief.objective.strip():
                raise StepPreconditionError("Cannot generate a plan without a research objective.")

            job = self._save(apply(job, StatusChanged(JobStatus.PLANNING)))
            self._trace(job_id, step_id=PLAN_STEP_ID, status="running", summary="Generating execution plan...")
            agents = self.agents_factory(job)
            t0 = time.monotonic()
            try:
                try:
                    outcome = await agents.plan(job.brief)
                except GroundSearchError as exc:
                    if not job.config.allow_tool_plan_fallback:
                        raise
                    self._trace(
                        job_id,
                        step_id=PLAN_STEP_ID,
                        summary="Reasoning model failed. Retrying with tool model as fallback...",
                        error=str(exc),
                        fallback_used=True,
                        model=job.models.tool,
                    )
                    outcome = await agents.plan(job.brief, model=job.models.tool)
            except GroundSearchError as exc:
                message = str(exc)
                logger.error(f"Plan generation failed for job {job_id}: {message}")
                job = self._save(apply_all(job, StatusChanged(JobStatus.ERROR), ErrorRecorded(message)))
                self._trace(job_id, step_id=PLAN_STEP_ID, action="ERROR", status="failed", error=message)
                return job

            plan = outcome.value
            job = self._save(
                apply_all(job, PlanAssigned(plan), StatusChanged(JobStatus.RUNNING), ErrorCleared())
            )
            self._trace(
                job_id,
                step_id=PLAN_STEP_ID,
                status="success",
                summary="Plan generated successfully.",
                duration_ms=int((time.monotonic() - t0) * 1000),
                input_snapshot={"prompt": outcome.prompt},
                output_snapshot=snapshot(plan),
            )
            if not auto_execute:
                return job

            self._trace(job_id, summary="Auto-starting execution...")
            return await self._run(job)

    async def execute(
        self,
        job_id: str,
        *,
        resume: bool = False,
        resume_step_id: Optional[str] = None,
    ) -> ResearchJob:
        async with self._exclusive(job_id):
            job = self.get_job(job_id)
            if job.plan is None:
                raise StepPreconditionError("Job has no plan to execute.")
            return await self._run(job, resume=resume, resume_step_id=resume_step_id)

    async def retry_step(self, job_id: str, step_id: str) -> ResearchJob:
        async with self._exclusive(job_id):
            job = self.get_job(job_id)
            if job.plan is None or job.plan.get_step(step_id) is None:
                raise StepPreconditionError(f"Step {step_id} not found in job {job_id}.")
            job = self._save(apply(job, StepReset(step_id)))
            return await self._run(job, resume=True, resume_step_id=step_id)

    def blocked_ingest_step(self, job_id: str, step_id: str, content: str) -> IngestStep:
        """The ingest step waiting for ``content``; raises if it cannot take it."""
        job = self.get_job(job_id)
        step = job.plan.get_step(step_id) if job.plan else None
        if step is None or step.action != StepAction.INGEST:
            raise StepPreconditionError(f"Step {step_id} is not an ingest step of job {job_id}.")
        if step.status != StepStatus.CORS_BLOCKED:
            raise StepPreconditionError(f"Step {step_id} is not waiting for manual content.")
        if not content.strip():
            raise StepPreconditionError("Pasted content is empty.")
        return step

    async def submit_manual_content(self, job_id: str, step_id: str, content: str) -> ResearchJob:
        """Complete a blocked ingest step from pasted page text, then resume the run."""
        async with self._exclusive(job_id):
            step = self.blocked_ingest_step(job_id, step_id, content)
            job = self.get_job(job_id)

            url = step.params.url
            t0 = time.monotonic()
            self._trace(
                job_id,
                step_id=step_id,
                action="TOOL_CALL",
                status="running",
                summary=f"Manually ingesting content for {url}",
                input_snapshot={"text_length": len(content), "url": url},
            )
            try:
                claims = await self.toolkit.extract_claims(
                    job.models.tool, content, url, gateway=self.gateway, system=system_prompt(job.pre_prompt)
                )
            except GroundSearchError as exc:
                self._trace(
                    job_id,
                    step_id=step_id,
                    action="ERROR",
                    status="failed",
                    error=str(exc),
                    duration_ms=int((time.monotonic() - t0) * 1000),
                )
                return self._save(apply(job, ErrorRecorded(MANUAL_INGEST_ERROR.format(step_id=step_id))))

            duration_ms = int((time.monotonic() - t0) * 1000)
            evidence = score_evidence(claims)
            job = self._save(
                apply_all(
                    job,
                    EvidenceAppended(tuple(evidence)),
                    StepCompleted(step_id, {"extracted": len(evidence)}, (step.duration_ms or 0) + duration_ms),
                    ErrorCleared(),
                )
            )
            self._trace(
                job_id,
                step_id=step_id,
                action="TOOL_RESPONSE",
                status="success",
                summary=f"Successfully extracted {len(evidence)} claims. Resuming pipeline.",
                duration_ms=duration_ms,
                output_snapshot=snapshot(evidence),
            )
            return await self._run(job, resume=True)

    # --- After the answer ---

    async def ask_follow_up(self, job_id: str, question: str) -> str:
        """Answer a question about a finished job. Failures come back as the model's reply."""
        async with self._exclusive(job_id):
            job = self.get_job(job_id)
            if job.answerer_result is None:
                raise StepPreconditionError("Job has no answer to ask about yet.")

            history = list(job.follow_up_history)
            self._save(apply(job, ChatAppended((ChatMessage(role="user", text=question),), follow_up=True)))
            try:
                outcome = await self.agents_factory(job).follow_up(job.answerer_result, history, question)
                text = outcome.value or "(no answer)"
            except GroundSearchError as exc:
                logger.error(f"Follow-up failed for job {job_id}: {exc}")
                text = f"Sorry, an error occurred while processing your question: {exc}"

            self._save(apply(self.get_job(job_id), ChatAppended((ChatMessage(role="model", text=text),), follow_up=True)))
            return text

    def export_markdown(self, job_id: str) -> str:
        job = self.get_job(job_id)
        if job.answerer_result is None:
            raise StepPreconditionError("Job has no final answer to export.")
        return export_markdown(job)
