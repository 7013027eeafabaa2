"""Heuristic source scoring: credibility for screening, value for the answerer."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from groundsearch.models.records import Evidence, SourceRecord
from groundsearch.models.results import HighValueSource
from groundsearch.tools.web_utils import extract_domain

JOURNAL_DOMAINS = (
    "nature.com",
    "sciencemag.org",
    "thelancet.com",
    "nejm.org",
    "arxiv.org",
    "acm.org",
    "ieee.org",
)
NEWS_DOMAINS = ("reuters.com", "apnews.com", "bbc.com", "wsj.com")
UNTITLED = {"untitled", "untitled search result"}


@dataclass(slots=True)
class CredibilityScore:
    score: int
    breakdown: list[str] = field(default_factory=list)


def _provenance_points(domain: str) -> int:
    if not domain:
        return 0
    if domain.endswith(".gov"):
        return 25
    if domain.endswith(".edu"):
        return 22
    if any(d in domain for d in JOURNAL_DOMAINS):
        return 25
    if any(d in domain for d in NEWS_DOMAINS):
        return 20
    if "wikipedia.org" in domain:
        return 10
    return 5


def score_credibility(record: SourceRecord | Evidence, current_year: int | None = None) -> CredibilityScore:
    """Score a record 0..100 from recency (40), provenance (25), relevance (20) and completeness (15)."""
    if record.source_id == "wolfram":
        return CredibilityScore(95, ["High-confidence computational result from Wolfram|Alpha."])

    year_now = current_year or date.today().year
    published = record.published if isinstance(record, SourceRecord) else record.year
    breakdown: list[str] = []

    recency = 0.0
    if published and published > 1970:
        age = max(0, year_now - published)
        recency = max(0.0, 40.0 - age * 4)
    breakdown.append(f"Recency: {recency:.0f}/40")

    provenance = _provenance_points(extract_domain(record.url))
    breakdown.append(f"Provenance: {provenance}/25")

    relevance = 0.0
    snippet = record.snippet or ""
    if len(snippet) > 50:
        relevance = min(20.0, len(snippet) / 250 * 20)
    breakdown.append(f"Relevance: {relevance:.0f}/20")

    completeness = 0
    title = (record.title or "").strip()
    if title.lower() not in UNTITLED and len(title) > 5:
        completeness += 10
    if record.url:
        completeness += 5
    breakdown.append(f"Completeness: {completeness}/15")

    total = recency + provenance + relevance + completeness
    return CredibilityScore(round(min(100.0, total)), breakdown)


def score_evidence(items: Sequence[Evidence], current_year: int | None = None) -> list[Evidence]:
    """Copies of ``items`` with ``quant_score`` filled in."""
    return [
        item.model_copy(update={"quant_score": float(score_credibility(item, current_year).score)})
        for item in items
    ]


def _bare_domain(url: str) -> str:
    domain = extract_domain(url)
    return domain[4:] if domain.startswith("www.") else domain


def calculate_high_value_score(
    evidence: Evidence,
    all_evidence: Sequence[Evidence],
    current_year: int | None = None,
) -> HighValueSource:
    """Weighted value of one evidence item relative to the whole set.

    Credibility 35%, recency 20%, provenance 20%, minus a 10% weighted
    penalty when several items share a domain.
    """
    year_now = current_year or date.today().year
    index = next((i for i, e in enumerate(all_evidence) if e.id == evidence.id), -1)
    reasons: list[str] = []

    quant = evidence.quant_score or 50
    score = quant * 0.35
    reasons.append(f"Credibility score: {quant:.0f}")

    recency = 0
    if evidence.year and evidence.year > 1970:
        age = max(0, year_now - evidence.year)
        recency = max(0, 100 - age * 10)
        if recency > 50:
            reasons.append(f"Recent ({evidence.year})")
    score += recency * 0.20

    provenance = 50
    domain = _bare_domain(evidence.url)
    if evidence.source_id == "wolfram":
        provenance = 100
        reasons.append("Computational result via Wolfram|Alpha")
    elif not domain:
        provenance = 20
    elif domain.endswith(".gov"):
        provenance = 100
        reasons.append("Official .gov source")
    elif domain.endswith(".edu"):
        provenance = 90
        reasons.append("Academic .edu source")
    elif any(d in domain for d in JOURNAL_DOMAINS):
        provenance = 100
        reasons.append("Peer-reviewed journal")
    elif any(d in domain for d in NEWS_DOMAINS):
        provenance = 85
        reasons.append("Reputable news source")
    score += provenance * 0.20

    if evidence.source_id != "wolfram" and domain:
        same_domain = sum(
            1 for e in all_evidence if e.source_id != "wolfram" and _bare_domain(e.url) == domain
        )
        if same_domain > 1:
            score -= min(50, (same_domain - 1) * 20) * 0.10
            reasons.append(f"One of {same_domain} sources from same domain")

    return HighValueSource(
        s_tag=f"[S{index + 1}]",
        title=evidence.title,
        score=round(max(0.0, min(100.0, score))),
        reasons=reasons,
    )
