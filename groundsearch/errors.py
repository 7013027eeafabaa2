from __future__ import annotations

from enum import StrEnum


class GroundSearchError(Exception):
    """Base class for errors raised by the research pipeline."""


class GatewayErrorKind(StrEnum):
    TIMEOUT = "Timeout"
    RATE_LIMITED = "RateLimited"
    MALFORMED = "Malformed"
    OTHER = "Other"


class GatewayError(GroundSearchError):
    def __init__(self, kind: GatewayErrorKind, message: str, *, attempts: int = 1):
        super().__init__(message)
        self.kind = kind
        self.attempts = attempts

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.args[0]}"


class IngestBlockedError(GroundSearchError):
    """The page fetch was refused by the content origin or the fetch proxy."""

    def __init__(self, url: str, reason: str = ""):
        super().__init__(f"CORS_BLOCKED: {url}" + (f" ({reason})" if reason else ""))
        self.url = url
        self.reason = reason


class StepPreconditionError(GroundSearchError):
    """A step was dispatched without the job state it depends on."""


class ScreeningEmptyError(GroundSearchError):
    recommendation = "Try refining the research scope or search queries in the plan."

    def __init__(self, message: str, *, kept: int = 0, dropped_count: int = 0):
        super().__init__(message)
        self.kept = kept
        self.dropped_count = dropped_count


class SearchUnavailableError(GroundSearchError):
    """Every branch of a search fan-out failed."""


class JobNotFoundError(GroundSearchError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobBusyError(GroundSearchError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} already has a pipeline run in progress")
        self.job_id = job_id
