"""Tests for named job transitions."""
import pytest

from groundsearch.models.job import ChatMessage, JobStatus, ResearchBrief
from groundsearch.models.plan import StepStatus
from groundsearch.models.results import DeepResearchResult
from groundsearch.services.transitions import (
    BriefUpdated,
    ChatAppended,
    EvidenceScreened,
    FacetRecorded,
    ResearchSynthesized,
    SourcesAppended,
    StepBlocked,
    StepCompleted,
    StepFailed,
    StepReset,
    StepStarted,
    TransitionError,
    apply,
    apply_all,
)
from tests.conftest import make_evidence, make_job, make_plan, make_record

PLAN = make_plan(
    {"id": "s1", "action": "SEARCH", "params": {"query": "q"}},
    {"id": "s2", "action": "SCREEN"},
)


def test_apply_returns_a_copy():
    job = make_job(PLAN)
    updated = apply(job, StepStarted("s1"))

    assert updated.plan.get_step("s1").status == StepStatus.RUNNING
    assert job.plan.get_step("s1").status == StepStatus.PENDING


def test_step_completed_records_result_and_duration():
    job = apply_all(make_job(PLAN), StepStarted("s1"), StepCompleted("s1", ["a"], 42))
    step = job.plan.get_step("s1")

    assert step.status == StepStatus.COMPLETED
    assert step.result == ["a"]
    assert step.duration_ms == 42


def test_step_failed_puts_job_in_error():
    job = apply(make_job(PLAN), StepFailed("s2", "nothing kept", 7))

    assert job.status == JobStatus.ERROR
    assert job.last_error == "Step 'SCREEN' failed: nothing kept"
    assert job.plan.get_step("s2").result == "nothing kept"


def test_step_blocked_keeps_job_running():
    job = apply(make_job(PLAN, status=JobStatus.RUNNING), StepBlocked("s1", "CORS_BLOCKED: url", 3))

    assert job.status == JobStatus.RUNNING
    assert job.plan.get_step("s1").status == StepStatus.CORS_BLOCKED


def test_step_reset_clears_result():
    job = apply_all(make_job(PLAN), StepFailed("s1", "boom"), StepReset("s1"))
    step = job.plan.get_step("s1")

    assert step.status == StepStatus.PENDING
    assert step.result is None
    assert step.duration_ms is None


def test_unknown_step_raises():
    with pytest.raises(TransitionError):
        apply(make_job(PLAN), StepStarted("missing"))


def test_step_event_without_plan_raises():
    with pytest.raises(TransitionError):
        apply(make_job(None), StepStarted("s1"))


def test_unknown_event_raises():
    with pytest.raises(TransitionError):
        apply(make_job(PLAN), object())


def test_screening_replaces_evidence_and_clears_sources():
    job = make_job(PLAN, sources=[make_record(1)], evidence=[make_evidence(9)])
    job = apply(job, EvidenceScreened((make_evidence(1), make_evidence(2))))

    assert [e.id for e in job.evidence] == ["e1", "e2"]
    assert job.sources == []


def test_synthesis_consumes_facet_findings():
    job = apply_all(
        make_job(PLAN),
        FacetRecorded("pricing", "text", (make_record(1),)),
        SourcesAppended((make_record(2),)),
    )
    assert "pricing" in job.facet_findings

    job = apply(job, ResearchSynthesized(DeepResearchResult(), (make_evidence(1),)))

    assert job.facet_findings == {}
    assert job.sources == []
    assert len(job.evidence) == 1


def test_brief_update_only_renames_when_asked():
    job = make_job(PLAN, title="Original")
    job = apply(job, BriefUpdated(ResearchBrief(objective="New")))
    assert job.title == "Original"

    job = apply(job, BriefUpdated(ResearchBrief(objective="New"), title="New"))
    assert job.title == "New"


def test_chat_append_targets_the_right_history():
    job = apply_all(
        make_job(PLAN),
        ChatAppended((ChatMessage(role="user", text="scope"),)),
        ChatAppended((ChatMessage(role="user", text="follow"),), follow_up=True),
    )

    assert [m.text for m in job.chat_history] == ["scope"]
    assert [m.text for m in job.follow_up_history] == ["follow"]
