from __future__ import annotations

import os

import pytest

from groundsearch.services.prompt_store import PromptCatalog, render_prompt, system_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt("facet_research.user", facet_name="pricing", brief_json='{"objective": "Solar"}')
    assert "'pricing' facet" in prompt
    assert '{"objective": "Solar"}' in prompt
    assert "$" not in prompt


def test_render_prompt_joins_line_lists():
    prompt = render_prompt("claims.user", source_url="https://example.com", text="Body text")
    assert "\n" in prompt
    assert "https://example.com" in prompt


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError) as exc_info:
        render_prompt("screening.user", records_json="[]")
    assert "brief_json" in str(exc_info.value)


def test_catalog_reloads_after_file_changes(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text('{"greet": "Hello $name"}', encoding="utf-8")
    catalog = PromptCatalog(path)
    assert catalog.render("greet", name="Ada") == "Hello Ada"

    path.write_text('{"greet": ["Hi $name", "Bye"]}', encoding="utf-8")
    os.utime(path, ns=(0, path.stat().st_mtime_ns + 1_000_000))

    assert catalog.render("greet", name="Ada") == "Hi Ada\nBye"


def test_catalog_rejects_nested_section_as_prompt(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text('{"screening": {"user": "x"}}', encoding="utf-8")

    with pytest.raises(TypeError):
        PromptCatalog(path).render("screening")


def test_system_prompt_appends_pre_prompt():
    guardrails = render_prompt("system.guardrails")

    assert system_prompt("  ") == guardrails
    assert system_prompt(" Cite primary sources. ") == f"{guardrails}\n\nUSER PRE-PROMPT:\nCite primary sources."
