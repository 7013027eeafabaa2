"""Tests for the plan runner."""
from __future__ import annotations

import pytest

from groundsearch.config import settings
from groundsearch.errors import ScreeningEmptyError
from groundsearch.models.job import FacetFinding, JobConfig, JobStatus
from groundsearch.models.plan import StepAction, StepStatus
from groundsearch.models.results import ScreeningResult
from groundsearch.models.records import Evidence
from groundsearch.services.pipeline import (
    PASTE_RECOMMENDATION,
    PipelineCallbacks,
    execute_plan,
    find_start_index,
)
from tests.conftest import make_evidence, make_job, make_plan, make_record


def _statuses(job):
    return {s.id: s.status for s in job.plan.steps}


def _failed_traces(recorder):
    return [t for t in recorder.traces if t.status == "failed"]


FULL_PLAN = (
    {"id": "s1", "action": "SEARCH", "agent": "SearchAgent", "params": {"query": "solar adoption", "k": 5}},
    {"id": "s2", "action": "SCREEN", "agent": "ScreeningAgent"},
    {"id": "s3", "action": "COMPARE", "agent": "InsightPackAgent"},
    {"id": "s4", "action": "ANSWER", "agent": "AnswererAgent"},
)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_full_plan_completes(self, handlers, agents, recorder):
        job = make_job(make_plan(*FULL_PLAN))

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.status == JobStatus.COMPLETE
        assert all(s == StepStatus.COMPLETED for s in _statuses(result).values())
        assert len(result.evidence) == 2
        assert result.sources == []
        assert result.insight_pack_result is not None
        assert result.answerer_result.answer.startswith("Solar adoption")
        assert agents.names() == ["screen", "insight_pack", "answer"]
        assert recorder.traces[-1].summary == "Plan finished successfully."
        assert recorder.traces[-1].status == "success"

    @pytest.mark.asyncio
    async def test_at_most_one_step_running_in_every_persisted_job(self, handlers, recorder):
        job = make_job(make_plan(*FULL_PLAN))

        await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert recorder.jobs
        for persisted in recorder.jobs:
            assert len(persisted.plan.running_steps()) <= 1

    @pytest.mark.asyncio
    async def test_does_not_mutate_input_job(self, handlers, recorder):
        job = make_job(make_plan(*FULL_PLAN))

        await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert job.status == JobStatus.DRAFT
        assert all(s == StepStatus.PENDING for s in _statuses(job).values())

    @pytest.mark.asyncio
    async def test_traces_tag_steps_with_the_right_model(self, handlers, recorder):
        job = make_job(make_plan(*FULL_PLAN))

        await execute_plan(job, recorder.callbacks(), handlers=handlers)

        running = {t.step_id: t.model for t in recorder.traces if t.status == "running" and t.action != "INFO"}
        assert running["s1"] == "tool-model"
        assert running["s3"] == "reasoning-model"

    @pytest.mark.asyncio
    async def test_success_trace_carries_prompt(self, handlers, recorder):
        job = make_job(make_plan(*FULL_PLAN))

        await execute_plan(job, recorder.callbacks(), handlers=handlers)

        done = [t for t in recorder.traces if t.step_id == "s4" and t.status == "success"]
        assert done[0].input_snapshot == {"prompt": "answer-prompt"}
        assert done[0].end_ts is not None

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self, handlers):
        seen = []

        async def update_job(job):
            seen.append(("job", job.status))

        async def set_status(status):
            seen.append(("status", status))

        async def log_trace(event):
            seen.append(("trace", event.summary))

        job = make_job(make_plan(*FULL_PLAN))
        callbacks = PipelineCallbacks(update_job=update_job, set_job_status=set_status, log_trace=log_trace)

        result = await execute_plan(job, callbacks, handlers=handlers)

        assert result.status == JobStatus.COMPLETE
        assert ("status", JobStatus.COMPLETE) in seen
        assert ("trace", "Plan finished successfully.") in seen


class TestResume:
    @pytest.mark.asyncio
    async def test_completed_plan_is_a_no_op(self, handlers, agents, toolkit, recorder):
        plan = make_plan(*({**s, "status": "Completed"} for s in FULL_PLAN))
        job = make_job(plan, status=JobStatus.RUNNING)

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.status == JobStatus.COMPLETE
        assert agents.calls == []
        assert toolkit.calls == []
        assert "Plan already complete." in [t.summary for t in recorder.traces]

    @pytest.mark.asyncio
    async def test_resume_starts_at_first_unfinished_step(self, handlers, toolkit, agents, recorder):
        plan = make_plan(
            {**FULL_PLAN[0], "status": "Completed"},
            {**FULL_PLAN[1], "status": "Failed", "result": "boom"},
            FULL_PLAN[2],
            FULL_PLAN[3],
        )
        job = make_job(plan, status=JobStatus.ERROR, sources=[make_record(1)], last_error="boom")

        result = await execute_plan(job, recorder.callbacks(), resume=True, handlers=handlers)

        assert toolkit.calls == []
        assert agents.names()[0] == "screen"
        assert result.status == JobStatus.COMPLETE
        assert result.last_error is None
        assert recorder.traces[0].summary == "Resuming plan execution."

    @pytest.mark.asyncio
    async def test_explicit_step_id_reruns_completed_step(self, handlers, toolkit, recorder):
        plan = make_plan(
            {**FULL_PLAN[0], "status": "Completed"},
            {"id": "s2", "action": "SEARCH", "params": {"query": "second query"}, "status": "Completed"},
        )
        job = make_job(plan, status=JobStatus.COMPLETE)

        result = await execute_plan(job, recorder.callbacks(), resume=True, resume_step_id="s2", handlers=handlers)

        assert toolkit.calls == [("search_web", "second query")]
        assert _statuses(result) == {"s1": StepStatus.COMPLETED, "s2": StepStatus.COMPLETED}
        assert len(result.sources) == 2

    def test_find_start_index(self):
        plan = make_plan(
            {**FULL_PLAN[0], "status": "Completed"},
            {**FULL_PLAN[1], "status": "CORS_BLOCKED"},
            FULL_PLAN[2],
        )
        assert find_start_index(plan, False, None) == 0
        assert find_start_index(plan, True, None) == 1
        assert find_start_index(plan, True, "s1") == 0
        assert find_start_index(plan, True, "missing") == 1

    def test_find_start_index_picks_up_interrupted_running_step(self):
        plan = make_plan({**FULL_PLAN[0], "status": "Completed"}, {**FULL_PLAN[1], "status": "Running"})
        assert find_start_index(plan, True, None) == 1


class TestScreen:
    @pytest.mark.asyncio
    async def test_batches_by_configured_size(self, handlers, agents, recorder):
        records = [make_record(n) for n in range(12)]
        job = make_job(make_plan(FULL_PLAN[1]), sources=records)

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert agents.calls == [("screen", 10), ("screen", 2)]
        summaries = [t.summary for t in recorder.traces]
        assert "Screening batch 1 of 2 (10 sources)..." in summaries
        assert "Screening batch 2 of 2 (2 sources)..." in summaries
        assert len(result.evidence) == 12
        assert all(e.quant_score is not None for e in result.evidence)

    @pytest.mark.asyncio
    async def test_zero_kept_fails_with_counts(self, handlers, agents, recorder):
        job = make_job(make_plan(FULL_PLAN[1], FULL_PLAN[2]), sources=[make_record(n) for n in range(3)])
        agents.screen_results = [ScreeningResult(kept=[], dropped_count=None)]

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.status == JobStatus.ERROR
        assert _statuses(result) == {"s2": StepStatus.FAILED, "s3": StepStatus.PENDING}
        assert result.last_error.startswith("Step 'SCREEN' failed:")
        failed = _failed_traces(recorder)[-1]
        assert failed.output_snapshot == {"kept": [], "dropped_count": 3}
        assert failed.recommendation == ScreeningEmptyError.recommendation

    @pytest.mark.asyncio
    async def test_counts_reconcile_with_total(self, handlers, agents, recorder):
        records = [make_record(n) for n in range(3)]
        keep = Evidence(id="r0", title="Source number 0", url=records[0].url)
        agents.screen_results = [ScreeningResult(kept=[keep], dropped_count=5)]
        job = make_job(make_plan(FULL_PLAN[1]), sources=records)

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        step = result.plan.get_step("s2")
        assert len(step.result["kept"]) == 1
        assert step.result["dropped_count"] == 2

    @pytest.mark.asyncio
    async def test_no_sources_is_skipped(self, handlers, agents, recorder):
        job = make_job(make_plan(FULL_PLAN[1]))

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert agents.calls == []
        assert result.status == JobStatus.COMPLETE
        assert result.plan.get_step("s2").result == {"kept": [], "dropped_count": 0}


class TestIngest:
    @pytest.mark.asyncio
    async def test_blocked_ingest_pauses_run(self, handlers, toolkit, agents, recorder):
        url = "https://blocked.example.com/report"
        toolkit.blocked_urls.add(url)
        plan = make_plan({"id": "s1", "action": "INGEST", "params": {"url": url}}, FULL_PLAN[1])
        job = make_job(plan)

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert _statuses(result) == {"s1": StepStatus.CORS_BLOCKED, "s2": StepStatus.PENDING}
        assert result.status == JobStatus.RUNNING
        assert agents.calls == []
        paused = [t for t in recorder.traces if t.error == "CORS_BLOCKED"]
        assert paused[0].recommendation == PASTE_RECOMMENDATION
        assert recorder.jobs[-1].plan.get_step("s1").status == StepStatus.CORS_BLOCKED

    @pytest.mark.asyncio
    async def test_successful_ingest_adds_source(self, handlers, recorder):
        url = "https://open.example.com/report"
        job = make_job(make_plan({"id": "s1", "action": "INGEST", "params": {"url": url}}))

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.status == JobStatus.COMPLETE
        assert [s.source_id for s in result.sources] == ["ingest"]
        assert result.sources[0].url == url
        assert result.plan.get_step("s1").result["method"] == "soup"


class TestDeepResearch:
    @pytest.mark.asyncio
    async def test_facets_then_synthesis_become_evidence(self, handlers, agents, recorder):
        agents.facet_sources = {
            "pricing": [make_record(1), make_record(2)],
            "policy": [make_record(2)],
        }
        plan = make_plan(
            {"id": "f1", "action": "RESEARCH_FACET", "params": {"facet_name": "pricing"}},
            {"id": "f2", "action": "RESEARCH_FACET", "params": {"facet_name": "policy"}},
            {"id": "f3", "action": "SYNTHESIZE_RESEARCH"},
        )
        job = make_job(plan)

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.status == JobStatus.COMPLETE
        assert len(result.evidence) == 2
        assert result.sources == []
        assert result.facet_findings == {}
        assert result.deep_research_result.overall_assessment == "Consistent picture"
        summaries = dict(agents.calls)["synthesize"]
        assert "### pricing\nFindings about pricing" in summaries
        assert "### policy" in summaries
        assert JobStatus.SYNTHESIZING in recorder.statuses

    @pytest.mark.asyncio
    async def test_findings_survive_resume(self, handlers, agents, recorder):
        plan = make_plan(
            {"id": "f1", "action": "RESEARCH_FACET", "params": {"facet_name": "pricing"}, "status": "Completed"},
            {"id": "f2", "action": "RESEARCH_FACET", "params": {"facet_name": "policy"}},
            {"id": "f3", "action": "SYNTHESIZE_RESEARCH"},
        )
        job = make_job(
            plan,
            status=JobStatus.RUNNING,
            facet_findings={"pricing": FacetFinding(text="Earlier pricing notes", sources=[make_record(1)])},
        )

        result = await execute_plan(job, recorder.callbacks(), resume=True, handlers=handlers)

        assert agents.names() == ["research_facet", "synthesize"]
        summaries = dict(agents.calls)["synthesize"]
        assert "### pricing\nEarlier pricing notes" in summaries
        assert "### policy\nFindings about policy" in summaries
        assert result.facet_findings == {}

    @pytest.mark.asyncio
    async def test_synthesis_without_findings_fails(self, handlers, recorder):
        job = make_job(make_plan({"id": "f1", "action": "SYNTHESIZE_RESEARCH"}))

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.status == JobStatus.ERROR
        assert "facet research findings" in result.last_error


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_stops_the_loop(self, handlers, agents, recorder):
        job = make_job(make_plan(FULL_PLAN[2], FULL_PLAN[3]))

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert _statuses(result) == {"s3": StepStatus.FAILED, "s4": StepStatus.PENDING}
        assert result.status == JobStatus.ERROR
        assert result.last_error == "Step 'COMPARE' failed: Cannot run COMPARE step without evidence."
        assert agents.calls == []
        assert _failed_traces(recorder)[-1].recommendation == "Please check the error and retry the step."

    @pytest.mark.asyncio
    async def test_answer_requires_evidence(self, handlers, recorder):
        result = await execute_plan(make_job(make_plan(FULL_PLAN[3])), recorder.callbacks(), handlers=handlers)

        assert result.plan.get_step("s4").status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_agent_error_fails_step(self, handlers, agents, recorder):
        async def broken(job):
            raise RuntimeError("model unavailable")

        agents.answer = broken
        job = make_job(make_plan(FULL_PLAN[3]), evidence=[make_evidence(1)])

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.status == JobStatus.ERROR
        assert result.plan.get_step("s4").result == "model unavailable"

    @pytest.mark.asyncio
    async def test_disallowed_tool_model_fails_tool_step(self, handlers, toolkit, recorder, monkeypatch):
        monkeypatch.setattr(settings, "allowed_tool_models", "approved-model")
        job = make_job(make_plan(FULL_PLAN[0]))

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.status == JobStatus.ERROR
        assert "tool-model" in result.last_error
        assert toolkit.calls == []


class TestSearch:
    @pytest.mark.asyncio
    async def test_partial_failure_still_succeeds(self, handlers, toolkit, recorder):
        toolkit.wolfram_error = RuntimeError("wolfram down")
        job = make_job(make_plan(FULL_PLAN[0]), config=JobConfig(wolfram_enabled=True, wolfram_app_id="APP"))

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.plan.get_step("s1").status == StepStatus.COMPLETED
        assert len(result.sources) == 2
        errors = [t for t in recorder.traces if t.action == "ERROR"]
        assert errors[0].summary == "Wolfram|Alpha failed."
        assert "Web Search found 2 sources." in [t.summary for t in recorder.traces]

    @pytest.mark.asyncio
    async def test_all_branches_failing_fails_step(self, handlers, toolkit, recorder):
        toolkit.search_error = RuntimeError("search down")
        toolkit.wolfram_error = RuntimeError("wolfram down")
        job = make_job(make_plan(FULL_PLAN[0]), config=JobConfig(wolfram_enabled=True, wolfram_app_id="APP"))

        result = await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert result.status == JobStatus.ERROR
        assert "All search branches failed" in result.last_error

    @pytest.mark.asyncio
    async def test_wolfram_skipped_without_app_id(self, handlers, toolkit, recorder):
        job = make_job(make_plan(FULL_PLAN[0]), config=JobConfig(wolfram_enabled=True))

        await execute_plan(job, recorder.callbacks(), handlers=handlers)

        assert [name for name, _ in toolkit.calls] == ["search_web"]


def test_every_step_kind_has_a_handler(handlers):
    assert set(handlers._handlers) == set(StepAction)


@pytest.mark.asyncio
async def test_empty_plan_reports_nothing_to_do(handlers, recorder):
    result = await execute_plan(make_job(None), recorder.callbacks(), handlers=handlers)

    assert result.status == JobStatus.DRAFT
    assert recorder.traces[0].summary == "No plan to execute."


class TestCallbackFailures:
    @pytest.mark.asyncio
    async def test_storage_error_mid_step_ends_in_error(self, handlers, recorder):
        def update_job(job):
            if job.plan.get_step("s2").status == StepStatus.RUNNING:
                raise OSError("disk full")
            recorder.jobs.append(job)

        callbacks = PipelineCallbacks(
            update_job=update_job,
            set_job_status=recorder.statuses.append,
            log_trace=recorder.traces.append,
        )
        job = make_job(make_plan(*FULL_PLAN))

        result = await execute_plan(job, callbacks, handlers=handlers)

        assert result.status == JobStatus.ERROR
        assert _statuses(result) == {
            "s1": StepStatus.COMPLETED,
            "s2": StepStatus.FAILED,
            "s3": StepStatus.PENDING,
            "s4": StepStatus.PENDING,
        }
        assert "disk full" in result.last_error
        assert recorder.jobs[-1].status == JobStatus.ERROR
        assert _failed_traces(recorder)[-1].step_id == "s2"

    @pytest.mark.asyncio
    async def test_failing_callbacks_never_escape(self, handlers):
        def broken(_):
            raise OSError("store unavailable")

        callbacks = PipelineCallbacks(update_job=broken, set_job_status=broken, log_trace=broken)
        job = make_job(make_plan(*FULL_PLAN))

        result = await execute_plan(job, callbacks, handlers=handlers)

        assert result.status == JobStatus.ERROR
        assert "store unavailable" in result.last_error
        assert not result.plan.running_steps()
