from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from sse_starlette.sse import EventSourceResponse

from groundsearch.api.deps import get_job_service
from groundsearch.errors import GroundSearchError, JobBusyError, JobNotFoundError, StepPreconditionError
from groundsearch.models.job import JobVersion, ResearchBrief, ResearchJob
from groundsearch.models.results import ScopingReply
from groundsearch.models.schemas import (
    AcceptedResponse,
    CloneRequest,
    CreateJobRequest,
    ExecuteRequest,
    FollowUpRequest,
    FollowUpResponse,
    JobSummary,
    ManualContentRequest,
    PrePromptRequest,
    ScopeRequest,
)
from groundsearch.models.trace import TraceEvent
from groundsearch.services import logger as log_service
from groundsearch.services.job_service import JobService

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@contextmanager
def http_errors() -> Iterator[None]:
    """Map service errors onto HTTP status codes."""
    try:
        yield
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except JobBusyError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except StepPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


async def _run_detached(job_id: str, command: Callable[[], Awaitable[Any]]) -> None:
    try:
        await command()
    except GroundSearchError as e:
        log_service.log_event(
            event_type="background_command_failed",
            message=f"Background command failed for job {job_id}",
            error=str(e),
        )


def _schedule(
    background: BackgroundTasks,
    service: JobService,
    job_id: str,
    command: Callable[[], Awaitable[Any]],
) -> AcceptedResponse:
    with http_errors():
        service.get_job(job_id)
        service.ensure_idle(job_id)
    background.add_task(_run_detached, job_id, command)
    return AcceptedResponse(job_id=job_id)


@router.post("", response_model=ResearchJob)
async def create_job(request: CreateJobRequest, service: JobService = Depends(get_job_service)):
    return service.create_job(
        request.objective,
        title=request.title,
        reasoning_model=request.reasoning_model,
        tool_model=request.tool_model,
        pre_prompt=request.pre_prompt,
    )


@router.get("", response_model=list[JobSummary])
async def list_jobs(service: JobService = Depends(get_job_service)):
    return [
        JobSummary(id=j.id, title=j.title, status=j.status, last_error=j.last_error)
        for j in service.list_jobs()
    ]


@router.get("/{job_id}", response_model=ResearchJob)
async def get_job(job_id: str, service: JobService = Depends(get_job_service)):
    with http_errors():
        return service.get_job(job_id)


@router.delete("/{job_id}")
async def delete_job(job_id: str, service: JobService = Depends(get_job_service)):
    with http_errors():
        service.delete_job(job_id)
    return {"deleted": job_id}


@router.post("/{job_id}/clone", response_model=ResearchJob)
async def clone_job(job_id: str, request: CloneRequest, service: JobService = Depends(get_job_service)):
    with http_errors():
        return service.clone_job(job_id, request.brief or None)


@router.get("/{job_id}/versions", response_model=list[JobVersion])
async def list_versions(job_id: str, service: JobService = Depends(get_job_service)):
    with http_errors():
        return service.list_versions(job_id)


@router.post("/{job_id}/scope", response_model=ScopingReply)
async def scope(job_id: str, request: ScopeRequest, service: JobService = Depends(get_job_service)):
    with http_errors():
        try:
            return await service.scope(job_id, request.message)
        except GroundSearchError as e:
            if isinstance(e, (JobNotFoundError, JobBusyError, StepPreconditionError)):
                raise
            raise HTTPException(status_code=502, detail=str(e)) from e


@router.put("/{job_id}/brief", response_model=ResearchJob)
async def update_brief(job_id: str, brief: ResearchBrief, service: JobService = Depends(get_job_service)):
    with http_errors():
        return service.update_brief(job_id, brief)


@router.put("/{job_id}/pre-prompt", response_model=ResearchJob)
async def set_pre_prompt(job_id: str, request: PrePromptRequest, service: JobService = Depends(get_job_service)):
    with http_errors():
        return service.set_pre_prompt(job_id, request.text)


@router.post("/{job_id}/plan", response_model=AcceptedResponse, status_code=202)
async def generate_plan(
    job_id: str,
    background: BackgroundTasks,
    service: JobService = Depends(get_job_service),
):
    with http_errors():
        job = service.get_job(job_id)
        if job.brief is None or not job.brief.objective.strip():
            raise StepPreconditionError("Cannot generate a plan without a research objective.")
    return _schedule(background, service, job_id, lambda: service.generate_plan(job_id))


@router.post("/{job_id}/execute", response_model=AcceptedResponse, status_code=202)
async def execute(
    job_id: str,
    request: ExecuteRequest,
    background: BackgroundTasks,
    service: JobService = Depends(get_job_service),
):
    with http_errors():
        if service.get_job(job_id).plan is None:
            raise StepPreconditionError("Job has no plan to execute.")
    return _schedule(
        background,
        service,
        job_id,
        lambda: service.execute(job_id, resume=request.resume, resume_step_id=request.step_id),
    )


@router.post("/{job_id}/steps/{step_id}/retry", response_model=AcceptedResponse, status_code=202)
async def retry_step(
    job_id: str,
    step_id: str,
    background: BackgroundTasks,
    service: JobService = Depends(get_job_service),
):
    with http_errors():
        job = service.get_job(job_id)
        if job.plan is None or job.plan.get_step(step_id) is None:
            raise StepPreconditionError(f"Step {step_id} not found in job {job_id}.")
    return _schedule(background, service, job_id, lambda: service.retry_step(job_id, step_id))


@router.post("/{job_id}/steps/{step_id}/content", response_model=AcceptedResponse, status_code=202)
async def submit_manual_content(
    job_id: str,
    step_id: str,
    request: ManualContentRequest,
    background: BackgroundTasks,
    service: JobService = Depends(get_job_service),
):
    with http_errors():
        service.blocked_ingest_step(job_id, step_id, request.content)
    return _schedule(
        background,
        service,
        job_id,
        lambda: service.submit_manual_content(job_id, step_id, request.content),
    )


@router.post("/{job_id}/follow-up", response_model=FollowUpResponse)
async def follow_up(job_id: str, request: FollowUpRequest, service: JobService = Depends(get_job_service)):
    with http_errors():
        return FollowUpResponse(answer=await service.ask_follow_up(job_id, request.question))


@router.get("/{job_id}/export", response_class=PlainTextResponse)
async def export_markdown(job_id: str, service: JobService = Depends(get_job_service)):
    with http_errors():
        return PlainTextResponse(service.export_markdown(job_id), media_type="text/markdown")


@router.get("/{job_id}/trace", response_model=list[TraceEvent])
async def get_trace(job_id: str, service: JobService = Depends(get_job_service)):
    with http_errors():
        service.get_job(job_id)
    return service.trace(job_id)


@router.get("/{job_id}/trace/stream")
async def stream_trace(job_id: str, service: JobService = Depends(get_job_service)):
    """SSE stream of trace events: replays history, then follows the active run."""
    with http_errors():
        service.get_job(job_id)

    async def event_generator():
        if not service.is_running(job_id):
            for event in service.trace(job_id):
                yield {"event": "trace", "data": event.model_dump_json()}
            yield {"event": "done", "data": "{}"}
            return
        async for event in service.traces.subscribe(job_id):
            yield {"event": "trace", "data": event.model_dump_json()}
        yield {"event": "done", "data": "{}"}

    return EventSourceResponse(event_generator())
