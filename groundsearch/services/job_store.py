from __future__ import annotations

import json
import re
import time
from pathlib import Path
from typing import Any, Optional

from groundsearch.config import settings
from groundsearch.errors import JobNotFoundError
from groundsearch.models.job import JobSnapshot, JobStatus, ResearchJob, JobVersion
from groundsearch.services import logger as log_service

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class JobStore:
    """Local persistence for jobs.

    Each job has an append-only version history (one JSON line per
    `JobVersion`) and a current full-job document used to resume runs.
    """

    def __init__(self, *, base_dir: str | None = None):
        self.base_dir = Path(base_dir or settings.job_store_dir)
        self.versions_dir = self.base_dir / "versions"
        self.jobs_dir = self.base_dir / "jobs"
        self.versions_dir.mkdir(parents=True, exist_ok=True)
        self.jobs_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _check_id(job_id: str) -> str:
        if not _SAFE_ID.match(job_id or ""):
            raise JobNotFoundError(job_id)
        return job_id

    def _versions_path(self, job_id: str) -> Path:
        return self.versions_dir / f"{self._check_id(job_id)}.jsonl"

    def _job_path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{self._check_id(job_id)}.json"

    # --- Version history ---

    def list_versions(self, job_id: str) -> list[JobVersion]:
        path = self._versions_path(job_id)
        if not path.exists():
            return []
        versions: list[JobVersion] = []
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    versions.append(JobVersion.model_validate_json(line))
        return versions

    def _write_version(self, job_id: str, version: JobVersion) -> None:
        with self._versions_path(job_id).open("a", encoding="utf-8") as f:
            f.write(version.model_dump_json(by_alias=True) + "\n")
        log_service.log_job_store("append", job_id, version=version.version)

    def create(self, job_id: str, snapshot: Optional[JobSnapshot] = None) -> list[JobVersion]:
        """Start a history with version 1; a job that already has one is left alone."""
        versions = self.list_versions(job_id)
        if versions:
            return versions
        initial = JobVersion(version=1, timestamp=time.time(), snapshot=snapshot or JobSnapshot())
        self._write_version(job_id, initial)
        return [initial]

    def get(self, job_id: str) -> JobSnapshot:
        """Latest snapshot, creating an empty history on first access."""
        return self.create(job_id)[-1].snapshot

    def append(self, job_id: str, **update: Any) -> JobVersion:
        versions = self.list_versions(job_id)
        previous = versions[-1].snapshot if versions else JobSnapshot()
        merged = {**previous.model_dump(by_alias=True), **update}
        version = JobVersion(
            version=len(versions) + 1,
            timestamp=time.time(),
            snapshot=JobSnapshot.model_validate(merged),
        )
        self._write_version(job_id, version)
        return version

    def clone(
        self,
        original_id: str,
        new_id: str,
        brief_overrides: Optional[dict[str, Any]] = None,
    ) -> list[JobVersion]:
        original = self.get(original_id)
        brief = original.brief
        if brief_overrides:
            brief = brief.model_validate({**brief.model_dump(by_alias=True), **brief_overrides})
        snapshot = original.model_copy(update={"brief": brief, "status": JobStatus.DRAFT, "plan": None})
        path = self._versions_path(new_id)
        if path.exists():
            path.unlink()
        version = JobVersion(version=1, timestamp=time.time(), snapshot=snapshot)
        self._write_version(new_id, version)
        return [version]

    def delete(self, job_id: str) -> None:
        for path in (self._versions_path(job_id), self._job_path(job_id)):
            if path.exists():
                path.unlink()
        log_service.log_job_store("delete", job_id)

    # --- Full job documents ---

    def save_job(self, job: ResearchJob) -> None:
        path = self._job_path(job.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(job.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        tmp.replace(path)

    def load_job(self, job_id: str) -> ResearchJob:
        path = self._job_path(job_id)
        if not path.exists():
            raise JobNotFoundError(job_id)
        try:
            return ResearchJob.model_validate_json(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            log_service.log_job_store("load", job_id, status="error", error=str(exc))
            raise

    def list_jobs(self) -> list[ResearchJob]:
        jobs: list[ResearchJob] = []
        for path in sorted(self.jobs_dir.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True):
            try:
                jobs.append(ResearchJob.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as exc:
                log_service.log_job_store("list", path.stem, status="error", error=str(exc))
        return jobs

    def exists(self, job_id: str) -> bool:
        return self._job_path(job_id).exists()
