from __future__ import annotations

from functools import lru_cache

from groundsearch.services.job_service import JobService


@lru_cache(maxsize=1)
def get_job_service() -> JobService:
    """Process-wide job service shared by every route."""
    return JobService()
