from __future__ import annotations

import json
import logging
import os

from app.core.config import get_settings
from app.services.profiles.insights import InsightNarrative, InsightSelection
from app.services.prompts import render_prompt

logger = logging.getLogger(__name__)

NARRATIVE_KEYS = ("strongest_headline", "strongest_insight", "weakest_headline", "weakest_insight")


def _standing(score: float) -> str:
    if score >= 90:
        return "top decile"
    if score >= 75:
        return "top quartile"
    if score >= 50:
        return "above the peer median"
    if score >= 25:
        return "below the peer median"
    return "bottom quartile"


def _peer_phrase(selection: InsightSelection) -> str:
    group_size = selection.peer_context.get("group_size") or 0
    naics = selection.peer_context.get("naics_code")
    if group_size and naics:
        return f"{group_size} peers in NAICS {naics}"
    if group_size:
        return f"{group_size} peers"
    return "its peer group"


def _clip(text: str, limit: int) -> str:
    normalized = " ".join(text.split())
    if len(normalized) > limit:
        return f"{normalized[: limit - 3].rstrip()}..."
    return normalized


def compose_template_narrative(selection: InsightSelection) -> InsightNarrative:
    strongest = selection.strongest
    weakest = selection.weakest
    peers = _peer_phrase(selection)
    return InsightNarrative(
        strongest_headline=f"{strongest.label}: {_standing(strongest.score)}",
        strongest_insight=(
            f"{selection.contractor_name} scores {strongest.score:.0f} on {strongest.label.lower()}, "
            f"placing it in the {_standing(strongest.score)} against {peers}."
            if strongest.score >= 50
            else f"{selection.contractor_name} scores {strongest.score:.0f} on {strongest.label.lower()}, "
            f"its best dimension against {peers}."
        ),
        weakest_headline=f"{weakest.label}: {_standing(weakest.score)}",
        weakest_insight=(
            f"{weakest.label} is the weakest dimension at {weakest.score:.0f}, "
            f"{_standing(weakest.score)} relative to {peers}."
        ),
        source="template",
    )


def _generate_with_openai(selection: InsightSelection) -> InsightNarrative | None:
    settings = get_settings()
    if settings.llm_provider.strip().lower() != "openai":
        return None

    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        return None

    try:
        from openai import OpenAI
    except Exception:
        logger.exception("openai_sdk_missing_for_insights")
        return None

    context = {
        "contractor_name": selection.contractor_name,
        "strongest_attribute": {"name": selection.strongest.label, "score": selection.strongest.score},
        "weakest_attribute": {"name": selection.weakest.label, "score": selection.weakest.score},
        "all_scores": selection.all_scores,
        "peer_group": selection.peer_context,
    }
    messages = [
        {"role": "system", "content": render_prompt("performance_insight_system")},
        {
            "role": "user",
            "content": render_prompt(
                "performance_insight_user",
                context_json=json.dumps(context, ensure_ascii=True),
            ),
        },
    ]

    try:
        client = OpenAI(api_key=api_key)
        response = client.chat.completions.create(
            model=settings.llm_model,
            messages=messages,
            temperature=0.2,
            response_format={"type": "json_object"},
        )
        content = (response.choices[0].message.content or "").strip()
        parsed = json.loads(content) if content else {}
    except Exception:
        logger.exception(
            "openai_insight_generation_failed",
            extra={"llm_model": settings.llm_model, "entity_key": selection.entity_key},
        )
        return None

    if not isinstance(parsed, dict) or not all(isinstance(parsed.get(key), str) and parsed[key].strip() for key in NARRATIVE_KEYS):
        logger.warning("openai_insight_response_incomplete", extra={"entity_key": selection.entity_key})
        return None

    return InsightNarrative(
        strongest_headline=_clip(parsed["strongest_headline"], 80),
        strongest_insight=_clip(parsed["strongest_insight"], 320),
        weakest_headline=_clip(parsed["weakest_headline"], 80),
        weakest_insight=_clip(parsed["weakest_insight"], 320),
        source="openai",
    )


def generate_narrative(selection: InsightSelection) -> InsightNarrative:
    narrative = _generate_with_openai(selection)
    if narrative is not None:
        return narrative
    return compose_template_narrative(selection)
