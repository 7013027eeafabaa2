from __future__ import annotations

import time
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TraceAction = Literal[
    "RESEARCH_FACET",
    "SYNTHESIZE_RESEARCH",
    "SEARCH",
    "INGEST",
    "SCREEN",
    "COMPARE",
    "ANSWER",
    "TOOL_CALL",
    "TOOL_RESPONSE",
    "INFO",
    "ERROR",
]
TraceStatus = Literal["pending", "running", "success", "failed", "info"]


def now_ms() -> int:
    return int(time.time() * 1000)


class TraceEvent(BaseModel):
    """One unit of pipeline work. Never mutated after it is appended."""

    model_config = ConfigDict(frozen=True)

    step_id: str = "system"
    parent_step_id: Optional[str] = None
    action: TraceAction = "INFO"
    agent: Optional[str] = None
    status: TraceStatus = "info"
    model: Optional[str] = None
    start_ts: int = Field(default_factory=now_ms)
    end_ts: Optional[int] = None
    duration_ms: Optional[int] = None
    summary: str = ""
    input_snapshot: Any = None
    output_snapshot: Any = None
    fallback_used: bool = False
    error: Optional[str] = None
    recommendation: Optional[str] = None
