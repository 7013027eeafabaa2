"""Prompt catalog backed by ``prompts/prompts.json``.

Entries are addressed by dotted keys (``screening.user``) and rendered with
``string.Template``. An entry is either a string or a list of lines.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"
GUARDRAILS_KEY = "system.guardrails"
PRE_PROMPT_HEADER = "USER PRE-PROMPT:"


class PromptCatalog:
    """Loads the catalog lazily and reloads it when the file changes on disk."""

    def __init__(self, path: Path = PROMPTS_PATH):
        self.path = path
        self._entries: dict[str, Any] | None = None
        self._mtime_ns: int | None = None

    def _load(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._entries is None or self._mtime_ns != mtime_ns:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError(f"Prompt catalog {self.path} must be a JSON object.")
            self._entries = payload
            self._mtime_ns = mtime_ns
        return self._entries

    def template(self, key: str) -> str:
        node: Any = self._load()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Prompt key not found: {key}")
            node = node[part]
        if isinstance(node, list) and all(isinstance(line, str) for line in node):
            return "\n".join(node)
        if not isinstance(node, str):
            raise TypeError(f"Prompt '{key}' must be a string or a list of lines")
        return node

    def render(self, key: str, **values: Any) -> str:
        template = Template(self.template(key))
        try:
            return template.substitute(**values)
        except KeyError as exc:
            raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc

    def system_prompt(self, pre_prompt: str = "") -> str:
        """Guardrails, followed by the job's pre-prompt when it has one."""
        guardrails = self.render(GUARDRAILS_KEY)
        pre_prompt = pre_prompt.strip()
        if not pre_prompt:
            return guardrails
        return f"{guardrails}\n\n{PRE_PROMPT_HEADER}\n{pre_prompt}"

    def invalidate(self) -> None:
        self._entries = None
        self._mtime_ns = None


catalog = PromptCatalog()


def render_prompt(key: str, **values: Any) -> str:
    return catalog.render(key, **values)


def system_prompt(pre_prompt: str = "") -> str:
    return catalog.system_prompt(pre_prompt)
