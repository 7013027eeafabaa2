from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from groundsearch.services import logger as log_service
from groundsearch.services.gateway import GatewayResponse, ReasoningGateway, Schema
from groundsearch.services.gateway import gateway as default_gateway
from groundsearch.services.prompt_store import render_prompt
from groundsearch.services.prompt_store import system_prompt as compose_system_prompt

T = TypeVar("T")

FINALIZE_MESSAGE = "Stop calling tools now and reply with the final answer in the requested format."


@dataclass(slots=True)
class AgentResult(Generic[T]):
    """What an agent produced, together with the prompt that produced it."""

    value: T
    prompt: str


class BaseAgent:
    """Base agent that wraps the gateway tool-use loop.

    Subclasses set `prompt_key`, optionally `tools` and `result_schema`, and
    override `handle_tool_call` when they define tools. `run` returns an
    `AgentResult` carrying the parsed value and the user prompt sent.
    """

    name: str = "base"
    prompt_key: str = ""
    tools: list[dict[str, Any]] = []
    result_schema: Schema = None
    json_mode: bool = True
    max_tokens: int = 8192
    timeout: float = 60.0

    def __init__(
        self,
        model: str,
        gateway: ReasoningGateway | None = None,
        pre_prompt: str = "",
    ):
        self.model = model
        self.gateway = gateway or default_gateway()
        self.pre_prompt = pre_prompt.strip()

    @property
    def system_prompt(self) -> str:
        return compose_system_prompt(self.pre_prompt)

    def build_prompt(self, **values: Any) -> str:
        return render_prompt(self.prompt_key, **values)

    async def handle_tool_call(self, tool_name: str, tool_input: dict[str, Any]) -> str:
        """Execute a tool call and return the text handed back to the model.

        Must be overridden by subclasses that define tools.
        """
        raise NotImplementedError(f"Tool {tool_name} not handled")

    async def _call(self, messages: list[dict[str, Any]], *, with_tools: bool) -> GatewayResponse:
        return await self.gateway.call(
            self.model,
            messages,
            system=self.system_prompt,
            json_mode=self.json_mode,
            schema=self.result_schema,
            tools=self.tools if with_tools and self.tools else None,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
            caller=self.name,
        )

    async def run(self, user_message: str, *, max_turns: int = 1) -> AgentResult[Any]:
        messages: list[dict[str, Any]] = [{"role": "user", "content": user_message}]

        for _ in range(max(max_turns, 1)):
            response = await self._call(messages, with_tools=True)
            if not response.tool_calls:
                return AgentResult(response.value, user_message)

            messages.append({"role": "assistant", "content": response.assistant_content})
            tool_results = []
            for tool_block in response.tool_calls:
                try:
                    result_text = await self.handle_tool_call(tool_block.name, tool_block.input)
                    tool_results.append({
                        "type": "tool_result",
                        "tool_use_id": tool_block.id,
                        "content": result_text,
                    })
                except Exception as e:
                    log_service.log_event(
                        event_type="tool_error",
                        message=f"{self.name} tool {tool_block.name} failed",
                        error=str(e),
                    )
                    tool_results.append({
                        "type": "tool_result",
                        "tool_use_id": tool_block.id,
                        "content": f"Error: {e}",
                        "is_error": True,
                    })
            messages.append({"role": "user", "content": tool_results})

        # Out of turns: one last call without tools forces a final reply.
        messages.append({"role": "user", "content": FINALIZE_MESSAGE})
        response = await self._call(messages, with_tools=False)
        return AgentResult(response.value, user_message)
