from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class SourceRecord(BaseModel):
    """Lightweight search hit, before screening."""

    id: str
    title: str = ""
    url: str = ""
    snippet: Optional[str] = None
    published: Optional[int] = None  # publication year
    source_id: str = "web"
    metadata: dict[str, Any] = {}


class QualitativeScores(BaseModel):
    rigor: Optional[float] = None
    bias: Optional[float] = None
    relevance: Optional[float] = None
    clarity: Optional[float] = None
    justification: Optional[str] = None


class Evidence(BaseModel):
    """Screened, credibility-scored record eligible for citation."""

    id: str
    title: str = ""
    url: str = ""
    year: Optional[int] = None
    key_outcome: Optional[str] = None
    sample_size: Optional[int] = None
    citation_count: Optional[int] = None
    source_id: str = "web"
    snippet: Optional[str] = None
    notes: list[str] = []
    quant_score: Optional[float] = None
    qual: Optional[QualitativeScores] = None
    matches_questions: bool = False
    within_timeframe: bool = False
    has_comparators: bool = False
    has_quant_outcomes: bool = False

    def as_record(self) -> SourceRecord:
        return SourceRecord(
            id=self.id,
            title=self.title,
            url=self.url,
            snippet=self.snippet,
            published=self.year,
            source_id=self.source_id,
        )
