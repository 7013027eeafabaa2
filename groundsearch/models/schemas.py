from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from groundsearch.models.job import JobStatus


class CreateJobRequest(BaseModel):
    objective: str = ""
    title: Optional[str] = None
    reasoning_model: Optional[str] = None
    tool_model: Optional[str] = None
    pre_prompt: str = ""


class JobSummary(BaseModel):
    id: str
    title: str
    status: JobStatus
    last_error: Optional[str] = None


class ScopeRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)


class PrePromptRequest(BaseModel):
    text: str = Field("", max_length=8000)


class ExecuteRequest(BaseModel):
    resume: bool = False
    step_id: Optional[str] = None


class ManualContentRequest(BaseModel):
    content: str = Field(..., min_length=1)


class FollowUpRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=4000)


class FollowUpResponse(BaseModel):
    answer: str


class CloneRequest(BaseModel):
    brief: dict[str, Any] = {}


class AcceptedResponse(BaseModel):
    job_id: str
    status: str = "accepted"
