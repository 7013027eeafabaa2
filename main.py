"""GroundSearch - grounded research pipeline

Simple CLI for running a research job end to end.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from groundsearch.models.job import JobStatus
from groundsearch.models.trace import TraceEvent
from groundsearch.services.job_service import JobService

STATUS_MARKS = {"running": "[~]", "success": "[+]", "failed": "[!]", "info": "[*]", "pending": "[ ]"}


def print_event(event: TraceEvent) -> None:
    mark = STATUS_MARKS.get(event.status, "[*]")
    line = f"{mark} {event.step_id} {event.action}"
    if event.summary:
        line += f": {event.summary}"
    if event.duration_ms is not None:
        line += f" ({event.duration_ms}ms)"
    print(line)
    if event.error:
        print(f"    error: {event.error}")
    if event.recommendation:
        print(f"    hint: {event.recommendation}")


async def follow_trace(service: JobService, job_id: str) -> None:
    async for event in service.traces.subscribe(job_id):
        print_event(event)


async def run_research(
    objective: str,
    reasoning_model: str | None = None,
    tool_model: str | None = None,
    pre_prompt: str = "",
    output: str | None = None,
) -> int:
    """Create a job, plan it and run the plan, printing trace events as they arrive."""
    print(f"Research objective: {objective}")
    print("-" * 50)

    service = JobService()
    job = service.create_job(
        objective,
        reasoning_model=reasoning_model,
        tool_model=tool_model,
        pre_prompt=pre_prompt,
    )
    print(f"Job: {job.id}")

    watcher = asyncio.create_task(follow_trace(service, job.id))
    job = await service.generate_plan(job.id)
    await watcher

    if job.status == JobStatus.ERROR:
        print(f"\n[!] Error: {job.last_error or 'Unknown error'}")
        return 1
    if job.status != JobStatus.COMPLETE:
        print(f"\n[*] Job paused ({job.status}). Resume it through the API once the blocked step is resolved.")
        return 2

    report = service.export_markdown(job.id)
    print(f"\n{'=' * 50}")
    print("REPORT:")
    print(f"{'=' * 50}")
    print(report)
    if output:
        Path(output).write_text(report, encoding="utf-8")
        print(f"Saved report to {output}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="GroundSearch research pipeline")
    parser.add_argument("--objective", "-q", required=True, help="Research objective")
    parser.add_argument("--model", "-m", help="Reasoning model (default: from config)")
    parser.add_argument("--tool-model", "-t", help="Tool model (default: from config)")
    parser.add_argument("--pre-prompt", default="", help="Extra instructions applied to every agent")
    parser.add_argument("--output", "-o", help="Write the markdown report to this file")

    args = parser.parse_args()

    sys.exit(
        asyncio.run(
            run_research(args.objective, args.model, args.tool_model, args.pre_prompt, args.output)
        )
    )


if __name__ == "__main__":
    main()
