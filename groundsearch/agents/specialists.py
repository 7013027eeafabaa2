"""Single-shot agents. Each renders one catalog prompt and parses one reply."""
from __future__ import annotations

import json
from typing import Any, Sequence

from groundsearch.agents.base import AgentResult, BaseAgent
from groundsearch.config import settings
from groundsearch.models.job import ChatMessage, ResearchBrief, ResearchJob
from groundsearch.models.plan import ExecutionPlan, StepStatus
from groundsearch.models.records import SourceRecord
from groundsearch.models.results import (
    DeepResearchResult,
    FinalAnswererResult,
    InsightPackResult,
    ScopingReply,
    ScreeningResult,
)
from groundsearch.services.gateway import validate_payload
from groundsearch.tools.scoring import calculate_high_value_score


def _history_text(history: Sequence[ChatMessage]) -> str:
    return "\n".join(f"{m.role.upper()}: {m.text}" for m in history) or "(none)"


def _records_json(records: Sequence[SourceRecord]) -> str:
    return json.dumps(
        [{"id": r.id, "title": r.title, "url": r.url, "snippet": r.snippet} for r in records],
        indent=2,
    )


class ConversationAgent(BaseAgent):
    name = "ConversationAgent"
    prompt_key = "conversation.user"
    result_schema = ScopingReply
    timeout = settings.timeout_conversation_s

    async def converse(
        self,
        brief: ResearchBrief,
        history: Sequence[ChatMessage],
        message: str,
    ) -> AgentResult[ScopingReply]:
        prompt = self.build_prompt(
            brief_json=brief.model_dump_json(by_alias=True, indent=2),
            history=_history_text(history),
            message=message,
        )
        return await self.run(prompt)


class OrchestrationAgent(BaseAgent):
    name = "OrchestrationAgent"
    prompt_key = "orchestration.user"
    timeout = settings.timeout_plan_s

    @staticmethod
    def normalize_plan(payload: Any) -> ExecutionPlan:
        """Give every step an id and reset it to Pending before validating."""
        if not isinstance(payload, dict):
            payload = {"steps": payload}
        steps = payload.get("steps") or []
        normalized = []
        for index, step in enumerate(steps):
            if isinstance(step, dict):
                step = {**step, "id": str(step.get("id") or f"step-{index + 1}")}
                step["status"] = StepStatus.PENDING.value
                step.pop("result", None)
                step.pop("duration_ms", None)
                step.setdefault("params", {})
            normalized.append(step)
        payload = {**payload, "steps": normalized}
        payload.setdefault("plan_id", "plan-1")
        return validate_payload(payload, ExecutionPlan)

    async def plan(self, brief: ResearchBrief) -> AgentResult[ExecutionPlan]:
        prompt = self.build_prompt(brief_json=brief.model_dump_json(by_alias=True, indent=2))
        result = await self.run(prompt)
        return AgentResult(self.normalize_plan(result.value), result.prompt)


class ResearchSynthesisAgent(BaseAgent):
    name = "ResearchSynthesisAgent"
    prompt_key = "synthesis.user"
    result_schema = DeepResearchResult
    max_tokens = 16384
    timeout = settings.timeout_synthesis_s

    async def synthesize(
        self,
        facet_summaries: str,
        sources: Sequence[SourceRecord],
    ) -> AgentResult[DeepResearchResult]:
        prompt = self.build_prompt(facet_summaries=facet_summaries, sources_json=_records_json(sources))
        return await self.run(prompt)


class ScreeningAgent(BaseAgent):
    name = "ScreeningAgent"
    prompt_key = "screening.user"
    result_schema = ScreeningResult
    timeout = settings.timeout_screen_s

    async def screen(
        self,
        records: Sequence[SourceRecord],
        brief: ResearchBrief,
    ) -> AgentResult[ScreeningResult]:
        prompt = self.build_prompt(
            records_json=_records_json(records),
            brief_json=brief.model_dump_json(by_alias=True, indent=2),
        )
        return await self.run(prompt)


class InsightPackAgent(BaseAgent):
    name = "InsightPackAgent"
    prompt_key = "insight_pack.user"
    result_schema = InsightPackResult
    max_tokens = 16384
    timeout = settings.timeout_insight_pack_s

    async def analyze(self, job: ResearchJob) -> AgentResult[InsightPackResult]:
        sources_context = [
            {
                "sTag": f"[S{i + 1}]",
                "title": e.title,
                "url": e.url,
                "year": e.year,
                "quant_score": e.quant_score,
                "source_id": e.source_id,
            }
            for i, e in enumerate(job.evidence)
        ]
        prompt = self.build_prompt(sources_context=json.dumps(sources_context, indent=2))
        return await self.run(prompt)


def _deep_research_summary(result: DeepResearchResult | None) -> str:
    if result is None:
        return "No deep research data available."
    missing = [
        f"- {facet.replace('_', ' ')}: {fr.note_if_missing}"
        for facet, fr in result.facet_results.items()
        if fr.note_if_missing
    ]
    claims = [
        f"- {facet.replace('_', ' ')}: {c.summary} (Confidence: {c.confidence}, Sources: {', '.join(c.source_ids)})"
        for facet, fr in result.facet_results.items()
        for c in fr.claims
    ]
    return "\n".join(
        [
            f"Overall Assessment: {result.overall_assessment or 'Not available.'}",
            "Key Missing Info:",
            "\n".join(missing) or "None reported.",
            "Key Claims Found:",
            "\n".join(claims) or "No specific claims extracted.",
        ]
    )


class AnswererAgent(BaseAgent):
    name = "AnswererAgent"
    prompt_key = "answerer.user"
    result_schema = FinalAnswererResult
    max_tokens = 16384
    timeout = settings.timeout_answer_s

    def context_for(self, job: ResearchJob) -> dict[str, str]:
        evidence = job.evidence
        source_metadata = []
        for i, item in enumerate(evidence):
            hv = calculate_high_value_score(item, evidence)
            source_metadata.append(
                f"[S{i + 1}]: {item.title} (Credibility: {item.quant_score}, HV Score: {hv.score}, URL: {item.url})"
            )

        pack = job.insight_pack_result
        if pack is None:
            comparison = "No comparison analysis available."
            prior = "No prior synthesis draft available."
        else:
            comparison = "\n".join(
                f"Theme: {t.name} (Corroboration: {t.corroboration_count}, Contradiction: {t.contradiction_count})"
                for t in pack.comparison_result.themes
            ) or "No themes identified."
            prior = pack.synthesis_report.markdown or "No prior synthesis draft available."

        return {
            "user_question": job.brief.objective if job.brief else "",
            "source_metadata": "\n".join(source_metadata),
            "deep_research_summary": _deep_research_summary(job.deep_research_result),
            "comparison_summary": comparison,
            "prior_synthesis": prior,
        }

    async def answer(self, job: ResearchJob) -> AgentResult[FinalAnswererResult]:
        return await self.run(self.build_prompt(**self.context_for(job)))


class FollowUpAgent(BaseAgent):
    name = "FollowUpAgent"
    prompt_key = "follow_up.user"
    json_mode = False
    timeout = settings.timeout_follow_up_s

    async def ask(
        self,
        answer: FinalAnswererResult,
        history: Sequence[ChatMessage],
        question: str,
    ) -> AgentResult[str]:
        initial_context = "\n".join(
            [
                "PREVIOUS ANSWER SUMMARY:",
                f"Takeaway: {answer.answer}",
                f"Themes: {', '.join(t.theme for t in answer.theme_confidences)}",
                f"High-Value Sources: {', '.join(s.id for s in answer.high_value_sources)}",
                "Full Body (for context):",
                answer.markdown_body,
            ]
        )
        prompt = self.build_prompt(
            initial_context=initial_context,
            history=_history_text(history),
            question=question,
        )
        result = await self.run(prompt)
        return AgentResult(str(result.value or "").strip(), result.prompt)
