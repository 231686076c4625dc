from __future__ import annotations

import pytest

from app.services.prompts import get_prompt_definitions, render_prompt


def test_prompt_definitions_include_metadata() -> None:
    prompts = get_prompt_definitions()
    assert prompts
    for prompt in prompts:
        assert prompt.key
        assert prompt.description
        assert prompt.used_by
        assert prompt.template


def test_render_prompt_supports_known_prompt_keys() -> None:
    rendered = render_prompt(
        "performance_insight_user",
        context_json='{"contractor_name":"Acme"}',
    )
    assert "Write performance insights" in rendered
    assert '{"contractor_name":"Acme"}' in rendered

    system = render_prompt("performance_insight_system")
    assert "strongest_headline" in system


def test_render_prompt_rejects_unknown_keys_and_missing_variables() -> None:
    with pytest.raises(KeyError):
        render_prompt("draft_email_user")
    with pytest.raises(ValueError):
        render_prompt("performance_insight_user")
