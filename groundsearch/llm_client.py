"""OpenRouter client factory with a messages-style adapter over the OpenAI SDK."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from groundsearch.config import settings


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class TextBlock:
    text: str
    type: str = "text"


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = "tool_use"


@dataclass
class MessageResponse:
    content: list[Any]
    usage: Usage

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content if b.type == "text").strip()

    @property
    def tool_calls(self) -> list[ToolUseBlock]:
        return [b for b in self.content if b.type == "tool_use"]


def _block_field(block: Any, name: str) -> Any:
    if isinstance(block, dict):
        return block.get(name)
    return getattr(block, name, None)


class OpenRouterMessages:
    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str) -> int:
        # Some GPT-5-compatible gateways reject temperature=0.
        return 1 if "gpt-5" in (model or "").lower() else 0

    def _to_openai_messages(self, system: str, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        mapped: list[dict[str, Any]] = []
        if system:
            mapped.append({"role": "system", "content": system})

        for message in messages:
            role = message["role"]
            content = message["content"]

            if isinstance(content, str):
                mapped.append({"role": role, "content": content})
                continue

            if role == "assistant":
                text_parts: list[str] = []
                tool_calls: list[dict[str, Any]] = []
                for block in content:
                    btype = _block_field(block, "type")
                    if btype == "text" and _block_field(block, "text"):
                        text_parts.append(_block_field(block, "text"))
                    elif btype == "tool_use":
                        tool_calls.append(
                            {
                                "id": _block_field(block, "id"),
                                "type": "function",
                                "function": {
                                    "name": _block_field(block, "name"),
                                    "arguments": json.dumps(_block_field(block, "input") or {}),
                                },
                            }
                        )
                msg: dict[str, Any] = {
                    "role": "assistant",
                    "content": "\n".join(text_parts) if text_parts else None,
                }
                if tool_calls:
                    msg["tool_calls"] = tool_calls
                mapped.append(msg)
                continue

            for tool_result in content:
                if tool_result.get("type") != "tool_result":
                    continue
                tool_content = str(tool_result.get("content", ""))
                if tool_result.get("is_error"):
                    tool_content = f"ERROR: {tool_content}"
                mapped.append(
                    {
                        "role": "tool",
                        "tool_call_id": tool_result.get("tool_use_id", ""),
                        "content": tool_content,
                    }
                )

        return mapped

    @staticmethod
    def _to_openai_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
                },
            }
            for t in tools
        ]

    @staticmethod
    def _from_openai_response(response: Any) -> MessageResponse:
        choice = response.choices[0].message
        content: list[Any] = []

        text = getattr(choice, "content", None)
        if text:
            content.append(TextBlock(text=text))

        for tc in getattr(choice, "tool_calls", None) or []:
            try:
                arguments = json.loads(getattr(tc.function, "arguments", "{}") or "{}")
            except json.JSONDecodeError:
                arguments = {}
            content.append(ToolUseBlock(id=tc.id, name=tc.function.name, input=arguments))

        usage = getattr(response, "usage", None)
        return MessageResponse(
            content=content,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    async def create(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> MessageResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._to_openai_messages(system, messages),
            "max_tokens": max_tokens,
            "temperature": self._temperature_for_model(model),
        }
        if tools:
            kwargs["tools"] = self._to_openai_tools(tools)
            kwargs["tool_choice"] = "auto"

        response = await self._client.chat.completions.create(**kwargs)
        return self._from_openai_response(response)


class OpenRouterClient:
    def __init__(self, openai_client: Any):
        self.messages = OpenRouterMessages(openai_client)


def get_client() -> OpenRouterClient:
    """Build an OpenRouter client through the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return OpenRouterClient(AsyncOpenAI(api_key=settings.openrouter_api_key, base_url=base_url))


_client: OpenRouterClient | None = None


def client() -> OpenRouterClient:
    """Get or create the shared LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
