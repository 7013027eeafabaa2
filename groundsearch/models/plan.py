from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class StepAction(StrEnum):
    RESEARCH_FACET = "RESEARCH_FACET"
    SYNTHESIZE_RESEARCH = "SYNTHESIZE_RESEARCH"
    SEARCH = "SEARCH"
    INGEST = "INGEST"
    SCREEN = "SCREEN"
    COMPARE = "COMPARE"
    ANSWER = "ANSWER"


# Steps whose trace is tagged with the tool model rather than the reasoning model.
TOOL_ACTIONS = frozenset({StepAction.SEARCH, StepAction.INGEST, StepAction.RESEARCH_FACET})


class StepStatus(StrEnum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CORS_BLOCKED = "CORS_BLOCKED"


RESUMABLE_STATUSES = frozenset({StepStatus.PENDING, StepStatus.FAILED, StepStatus.CORS_BLOCKED})


class FacetParams(BaseModel):
    facet_name: str


class SearchParams(BaseModel):
    query: str
    k: int = 10


class IngestParams(BaseModel):
    url: str


class NoParams(BaseModel):
    pass


class _StepBase(BaseModel):
    id: str
    agent: str = ""
    expects: str = ""
    specialist_instructions: Optional[str] = None
    status: StepStatus = StepStatus.PENDING
    result: Any = None
    duration_ms: Optional[int] = None


class ResearchFacetStep(_StepBase):
    action: Literal["RESEARCH_FACET"] = "RESEARCH_FACET"
    expects: str = "FacetResult"
    params: FacetParams


class SynthesizeResearchStep(_StepBase):
    action: Literal["SYNTHESIZE_RESEARCH"] = "SYNTHESIZE_RESEARCH"
    expects: str = "DeepResearchResult"
    params: NoParams = Field(default_factory=NoParams)


class SearchStep(_StepBase):
    action: Literal["SEARCH"] = "SEARCH"
    expects: str = "RecordLite[]"
    params: SearchParams


class IngestStep(_StepBase):
    action: Literal["INGEST"] = "INGEST"
    expects: str = "RecordLite[]"
    params: IngestParams


class ScreenStep(_StepBase):
    action: Literal["SCREEN"] = "SCREEN"
    expects: str = "Evidence[]"
    params: NoParams = Field(default_factory=NoParams)


class CompareStep(_StepBase):
    action: Literal["COMPARE"] = "COMPARE"
    expects: str = "Report"
    params: NoParams = Field(default_factory=NoParams)


class AnswerStep(_StepBase):
    action: Literal["ANSWER"] = "ANSWER"
    expects: str = "FinalAnswer"
    params: NoParams = Field(default_factory=NoParams)


ExecutionStep = Annotated[
    Union[
        ResearchFacetStep,
        SynthesizeResearchStep,
        SearchStep,
        IngestStep,
        ScreenStep,
        CompareStep,
        AnswerStep,
    ],
    Field(discriminator="action"),
]

step_adapter: TypeAdapter[ExecutionStep] = TypeAdapter(ExecutionStep)


class PlanEvaluation(BaseModel):
    success_criteria: list[str] = []
    risks: list[str] = []


class ExecutionPlan(BaseModel):
    """Ordered list of typed steps. Only step status/result/duration change after generation."""

    plan_id: str
    rationale_summary: str = ""
    source_selection: list[str] = []
    steps: list[ExecutionStep]
    evaluation: PlanEvaluation = Field(default_factory=PlanEvaluation)

    def step_index(self, step_id: str) -> int | None:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return None

    def get_step(self, step_id: str) -> ExecutionStep | None:
        index = self.step_index(step_id)
        return None if index is None else self.steps[index]

    def running_steps(self) -> list[ExecutionStep]:
        return [s for s in self.steps if s.status == StepStatus.RUNNING]

    def is_complete(self) -> bool:
        return bool(self.steps) and all(s.status == StepStatus.COMPLETED for s in self.steps)
