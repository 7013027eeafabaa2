"""Post-processing that keeps model prose honest about what it can cite.

Assertive sentences without an ``[S#]`` tag are moved out of the body and
into the uncertainties list.
"""
from __future__ import annotations

import re

from groundsearch.models.results import FinalAnswererResult, InsightPackResult

CITATION = re.compile(r"\[S\d+\]")
_VERBS = (
    "is", "are", "was", "were", "proves", "shows", "demonstrates", "indicates",
    "confirms", "establishes", "does", "suggests", "means", "causes", "leads to",
    "results in", "has", "will",
)
_ANSWER_VERBS = _VERBS + ("must", "should", "can", "could")
INSIGHT_ASSERTIVE = re.compile(r"\b(?:" + "|".join(_VERBS) + r")\b", re.IGNORECASE)
ANSWER_ASSERTIVE = re.compile(r"\b(?:" + "|".join(_ANSWER_VERBS) + r")\b", re.IGNORECASE)

INSIGHT_SENTENCE = re.compile(r"[A-Z][^.!?]+[.!?]")
ANSWER_SENTENCE = re.compile(r"(^|\n)(\s*)([*-]?\s*[A-Z][^.!?]+[.!?])")
GAPS_HEADER = re.compile(r"(Unknowns / gaps|What is uncertain or missing)", re.IGNORECASE)
FILLERS = (
    re.compile(r"^In summary,\s*"),
    re.compile(r"^Overall,\s*"),
    re.compile(r"^This report shows\s*"),
    re.compile(r"^To conclude,\s*"),
    re.compile(r"^Finally,\s*", re.IGNORECASE),
)
EXCESS_NEWLINES = re.compile(r"(\r\n|\n){3,}")


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def enforce_citations_and_uncertainties(result: InsightPackResult) -> InsightPackResult:
    report = result.synthesis_report
    if not report.markdown:
        return result

    unsupported = [
        sentence.strip()
        for sentence in INSIGHT_SENTENCE.findall(report.markdown)
        if len(sentence) > 15 and INSIGHT_ASSERTIVE.search(sentence) and not CITATION.search(sentence)
    ]

    markdown = report.markdown
    uncertainties = list(report.uncertainties)
    if unsupported:
        for claim in unsupported:
            markdown = markdown.replace(claim, "", 1)
        gaps = "\n".join(f'- Could not verify: "{claim}"' for claim in unsupported)
        if GAPS_HEADER.search(markdown):
            markdown = GAPS_HEADER.sub(lambda m: f"{m.group(0)}\n{gaps}", markdown, count=1)
        else:
            markdown += f"\n\n- Unknowns / gaps\n{gaps}"
        uncertainties.extend(f'Could not verify: "{claim}"' for claim in unsupported)

    markdown = markdown.strip()
    for filler in FILLERS:
        markdown = filler.sub("", markdown).strip()
    markdown = EXCESS_NEWLINES.sub("\n\n", markdown).strip()

    new_report = report.model_copy(update={"markdown": markdown, "uncertainties": _dedupe(uncertainties)})
    return result.model_copy(update={"synthesis_report": new_report})


def _looks_like_header(sentence: str) -> bool:
    stripped = sentence.strip()
    return len(stripped.split()) < 5 and not stripped.endswith(".")


def post_process_final_answer(result: FinalAnswererResult) -> FinalAnswererResult:
    if not result.markdown_body:
        return result

    unsupported: list[str] = []

    def _filter(match: re.Match[str]) -> str:
        sentence = match.group(3)
        if CITATION.search(sentence):
            return match.group(0)
        if ANSWER_ASSERTIVE.search(sentence) and not _looks_like_header(sentence) and len(sentence) > 20:
            unsupported.append(re.sub(r"^[*-]\s*", "", sentence.strip()))
            return match.group(1)
        return match.group(0)

    markdown = ANSWER_SENTENCE.sub(_filter, result.markdown_body)
    markdown = EXCESS_NEWLINES.sub("\n\n", markdown).strip()
    return result.model_copy(
        update={
            "markdown_body": markdown,
            "uncertainties": _dedupe([*result.uncertainties, *unsupported]),
        }
    )
