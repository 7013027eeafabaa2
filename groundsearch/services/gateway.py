"""Reasoning gateway: one narrow entry point for every model call.

Each call gets a timeout, retries with backoff, and shape enforcement. JSON-mode
replies are unwrapped from markers or code fences, tolerated for trailing
commas and validated against an optional pydantic schema. Failures surface
as ``GatewayError`` tagged with a ``GatewayErrorKind``.
"""
from __future__ import annotations

import asyncio
import json
import random
import re
import time
from dataclasses import dataclass, field
from typing import Any

import openai
from pydantic import BaseModel, TypeAdapter, ValidationError

from groundsearch.config import settings
from groundsearch.errors import GatewayError, GatewayErrorKind
from groundsearch.llm_client import MessageResponse, ToolUseBlock, Usage
from groundsearch.llm_client import client as llm_client
from groundsearch.services import logger as log_service

JSON_START = "<<<JSON_START>>>"
JSON_END = "<<<JSON_END>>>"
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)

Schema = type[BaseModel] | TypeAdapter | None


@dataclass
class GatewayResponse:
    text: str
    value: Any = None
    tool_calls: list[ToolUseBlock] = field(default_factory=list)
    assistant_content: list[Any] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    prompt: str = ""


def extract_json_payload(raw_text: str) -> Any:
    """Parse a model reply that should contain one JSON object or array."""
    text = (raw_text or "").strip()

    start_marker = text.find(JSON_START)
    if start_marker >= 0:
        end_marker = text.find(JSON_END, start_marker)
        text = text[start_marker + len(JSON_START) : end_marker if end_marker >= 0 else None]
    else:
        fenced = _FENCE.search(text)
        if fenced:
            text = fenced.group(1)
    text = text.strip()

    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        raise GatewayError(GatewayErrorKind.MALFORMED, "No JSON object or array in model response")
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        raise GatewayError(GatewayErrorKind.MALFORMED, "Unterminated JSON in model response")

    candidate = _TRAILING_COMMA.sub(r"\1", text[start : end + 1])
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise GatewayError(GatewayErrorKind.MALFORMED, f"Invalid JSON in model response: {exc}") from exc


def validate_payload(payload: Any, schema: Schema) -> Any:
    if schema is None:
        return payload
    try:
        if isinstance(schema, TypeAdapter):
            return schema.validate_python(payload)
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise GatewayError(
            GatewayErrorKind.MALFORMED,
            f"Model response does not match expected shape: {exc.error_count()} error(s)",
        ) from exc


def classify_error(exc: BaseException) -> GatewayErrorKind:
    if isinstance(exc, GatewayError):
        return exc.kind
    if isinstance(exc, (TimeoutError, openai.APITimeoutError)):
        return GatewayErrorKind.TIMEOUT
    if isinstance(exc, openai.RateLimitError) or getattr(exc, "status_code", None) == 429:
        return GatewayErrorKind.RATE_LIMITED
    return GatewayErrorKind.OTHER


def _prompt_text(conversation: list[dict[str, Any]]) -> str:
    for message in reversed(conversation):
        if message.get("role") == "user" and isinstance(message.get("content"), str):
            return message["content"]
    return ""


class ReasoningGateway:
    def __init__(
        self,
        client: Any | None = None,
        *,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        rate_limit_base_delay: float | None = None,
    ):
        self._client = client
        self.max_retries = max(int(max_retries or settings.llm_max_retries), 1)
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.llm_retry_base_delay
        )
        self.rate_limit_base_delay = (
            rate_limit_base_delay
            if rate_limit_base_delay is not None
            else settings.llm_rate_limit_base_delay
        )

    @property
    def client(self) -> Any:
        return self._client or llm_client()

    def backoff_delay(self, kind: GatewayErrorKind, attempt: int) -> float:
        if kind == GatewayErrorKind.RATE_LIMITED:
            return self.rate_limit_base_delay * (2**attempt) + random.uniform(0, 1)
        return self.retry_base_delay * (attempt + 1)

    async def call(
        self,
        model: str,
        conversation: list[dict[str, Any]],
        *,
        system: str = "",
        json_mode: bool = False,
        schema: Schema = None,
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
        timeout: float = 60.0,
        caller: str = "gateway",
    ) -> GatewayResponse:
        """Run one model turn.

        A reply that requests tool calls is returned unparsed; the caller runs
        the tools and calls again. Otherwise JSON mode parses and validates the
        reply, and text mode returns it as-is.
        """
        prompt = _prompt_text(conversation)
        last_error: GatewayError | None = None

        for attempt in range(self.max_retries):
            t0 = time.monotonic()
            try:
                response: MessageResponse = await asyncio.wait_for(
                    self.client.messages.create(
                        model=model,
                        max_tokens=max_tokens or 8192,
                        system=system,
                        messages=conversation,
                        tools=tools,
                    ),
                    timeout=timeout,
                )
                result = self._shape(response, json_mode=json_mode, schema=schema, prompt=prompt)
            except Exception as exc:
                kind = classify_error(exc)
                message = "Model call timed out" if kind == GatewayErrorKind.TIMEOUT else str(exc)
                last_error = GatewayError(kind, message, attempts=attempt + 1)
                log_service.log_llm_call(
                    model=model,
                    caller=caller,
                    duration_ms=int((time.monotonic() - t0) * 1000),
                    attempt=attempt + 1,
                    status=kind.value,
                    error=message,
                )
                if attempt + 1 < self.max_retries:
                    await asyncio.sleep(self.backoff_delay(kind, attempt))
                continue

            log_service.log_llm_call(
                model=model,
                caller=caller,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                duration_ms=int((time.monotonic() - t0) * 1000),
                attempt=attempt + 1,
            )
            return result

        assert last_error is not None
        raise last_error

    @staticmethod
    def _shape(
        response: MessageResponse,
        *,
        json_mode: bool,
        schema: Schema,
        prompt: str,
    ) -> GatewayResponse:
        text = response.text
        tool_calls = response.tool_calls
        shaped = GatewayResponse(
            text=text,
            tool_calls=tool_calls,
            assistant_content=list(response.content),
            usage=response.usage,
            prompt=prompt,
        )
        if tool_calls:
            return shaped
        if json_mode:
            shaped.value = validate_payload(extract_json_payload(text), schema)
        else:
            shaped.value = text
        return shaped


_gateway: ReasoningGateway | None = None


def gateway() -> ReasoningGateway:
    global _gateway
    if _gateway is None:
        _gateway = ReasoningGateway()
    return _gateway
