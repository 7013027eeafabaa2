from __future__ import annotations

from groundsearch.models.job import ResearchJob
from groundsearch.models.results import FinalAnswererResult


def _bullets(lines: list[str], title: str, items: list[str]) -> None:
    if not items:
        return
    lines.append(f"## {title}")
    lines.extend(f"- {item}" for item in items)
    lines.append("")


def export_markdown(job: ResearchJob) -> str:
    """Render a job's final answer as a standalone markdown report."""
    answer: FinalAnswererResult | None = job.answerer_result
    if answer is None:
        raise ValueError(f"Job {job.id} has no final answer to export")

    title = job.brief.objective if job.brief and job.brief.objective else job.title
    lines: list[str] = [f"# {title}", "", "## Executive Summary", answer.answer, ""]

    if answer.markdown_body:
        lines.extend(["## Findings", answer.markdown_body, ""])

    if answer.theme_confidences:
        lines.append("## Confidence by Theme")
        lines.extend(
            f"- **{t.theme}**: {t.confidence}" + (f" ({t.reason})" if t.reason else "")
            for t in answer.theme_confidences
        )
        lines.append("")

    _bullets(lines, "Uncertainties", answer.uncertainties)
    _bullets(lines, "Next Steps", answer.next_steps)

    lines.append("## Sources")
    for index, item in enumerate(job.evidence, start=1):
        lines.append(f"[S{index}]: {item.title or 'Untitled'} ({item.url})")
    return "\n".join(lines).rstrip() + "\n"
