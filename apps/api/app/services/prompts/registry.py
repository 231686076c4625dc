from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PromptDefinition:
    key: str
    description: str
    used_by: str
    template: str


_PROMPTS: dict[str, PromptDefinition] = {
    "performance_insight_system": PromptDefinition(
        key="performance_insight_system",
        description=(
            "System instructions for contractor performance narratives. "
            "Forces strict JSON output with a headline and a short insight for the strongest "
            "and weakest performance dimension."
        ),
        used_by="app/services/insights/narrative.py::_generate_with_openai",
        template=(
            "You are a federal contracting market analyst. Explain a contractor's standing against "
            "its peer group using only the scores provided. Do not invent facts or figures. "
            "Return strict JSON with keys: strongest_headline, strongest_insight, "
            "weakest_headline, weakest_insight.\n"
            "- headlines: <= 80 characters, plain text.\n"
            "- insights: <= 320 characters, plain text, one or two sentences."
        ),
    ),
    "performance_insight_user": PromptDefinition(
        key="performance_insight_user",
        description=(
            "User prompt carrying the selected strongest/weakest dimensions, all percentile "
            "scores and the peer group context for one contractor."
        ),
        used_by="app/services/insights/narrative.py::_generate_with_openai",
        template=(
            "Write performance insights for this contractor from the JSON payload below. "
            "Scores are peer percentiles from 0 to 100.\n\n"
            "{context_json}"
        ),
    ),
}


def get_prompt_definitions() -> list[PromptDefinition]:
    return list(_PROMPTS.values())


def render_prompt(key: str, **variables: str) -> str:
    prompt = _PROMPTS.get(key)
    if prompt is None:
        raise KeyError(f"Unknown prompt key: {key}")

    try:
        return prompt.template.format(**variables)
    except KeyError as exc:
        missing_key = str(exc).strip("'")
        raise ValueError(f"Missing variable '{missing_key}' for prompt '{key}'") from exc
