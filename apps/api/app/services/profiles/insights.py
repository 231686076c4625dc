from __future__ import annotations

from dataclasses import dataclass, field

from app.core.errors import MissingFinancialData
from app.services.profiles.types import (
    AIInsightsPayload,
    FinancialPayload,
    MarketInsights,
    NetworkInsights,
    PerformanceInsights,
)

# Fixed scan order; ties resolve to the first dimension encountered here.
DIMENSION_ORDER: tuple[str, ...] = (
    "awards",
    "revenue",
    "pipeline",
    "duration",
    "growth",
    "network_activity",
)

DIMENSION_LABELS: dict[str, str] = {
    "awards": "Awards Captured",
    "revenue": "Revenue Performance",
    "pipeline": "Pipeline Development",
    "duration": "Portfolio Duration",
    "growth": "Growth Rate",
    "network_activity": "Network Activity",
}

PRIME_CLASSIFICATIONS = {"Pure Prime", "Teaming Prime"}
SUB_CLASSIFICATIONS = {"Pure Sub", "Iceberg Sub"}
HYBRID_CLASSIFICATIONS = {"Hybrid"}

TOP_PERFORMANCE_TIERS = {"Top 10%", "Top 25%"}


@dataclass(frozen=True)
class InsightAttribute:
    dimension: str
    label: str
    score: float


@dataclass(frozen=True)
class InsightSelection:
    entity_key: str
    contractor_name: str
    strongest: InsightAttribute
    weakest: InsightAttribute
    all_scores: dict[str, float]
    peer_context: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class InsightNarrative:
    strongest_headline: str
    strongest_insight: str
    weakest_headline: str
    weakest_insight: str
    source: str = "template"


def select_insight_attributes(financial: FinancialPayload) -> InsightSelection:
    """Pick the strongest and weakest scored dimension of a financial payload.

    The composite score is never a candidate. Dimensions without a score are
    skipped. Raises ``MissingFinancialData`` when no dimension is scored.
    """
    scores = financial.performance_scores
    scored: list[tuple[str, float]] = []
    for dimension in DIMENSION_ORDER:
        value = getattr(scores, dimension)
        if value is None:
            continue
        scored.append((dimension, float(value)))

    if not scored:
        raise MissingFinancialData(
            "Performance scores required for insight generation",
            {"entity_key": financial.entity_key},
        )

    strongest = scored[0]
    weakest = scored[0]
    for dimension, value in scored[1:]:
        if value > strongest[1]:
            strongest = (dimension, value)
        if value < weakest[1]:
            weakest = (dimension, value)

    peer = financial.peer_group
    return InsightSelection(
        entity_key=financial.entity_key,
        contractor_name=financial.recipient_name,
        strongest=InsightAttribute(strongest[0], DIMENSION_LABELS[strongest[0]], strongest[1]),
        weakest=InsightAttribute(weakest[0], DIMENSION_LABELS[weakest[0]], weakest[1]),
        all_scores={dimension: value for dimension, value in scored},
        peer_context={
            "naics_code": peer.naics_code,
            "group_size": peer.group_size,
            "entity_classification": peer.entity_classification or financial.entity_classification,
        },
    )


def market_insights(financial: FinancialPayload) -> MarketInsights:
    insights = MarketInsights()
    if financial.peer_group.performance_tier in TOP_PERFORMANCE_TIERS:
        insights.competitive_advantages.append("Industry-leading performance metrics")

    growth = financial.blended_growth_score
    if growth is not None and growth > 75:
        insights.competitive_advantages.append("Strong growth trajectory")
        insights.market_opportunities.append("Expansion into adjacent markets")
    elif growth is not None and growth < 25:
        insights.risk_factors.append("Below-average growth performance")
        insights.strategic_recommendations.append("Focus on growth initiatives")

    if financial.peer_group.market_share_percent > 10:
        insights.competitive_advantages.append("Significant market presence")
    return insights


def network_insights(financial: FinancialPayload) -> NetworkInsights:
    insights = NetworkInsights()
    classification = financial.entity_classification
    if classification in PRIME_CLASSIFICATIONS:
        insights.primary_relationships.extend(["Government agencies", "Subcontractors"])
        insights.network_strength = "Strong"
    elif classification in SUB_CLASSIFICATIONS:
        insights.primary_relationships.append("Prime contractors")
        insights.diversification_level = "Low"
    elif classification in HYBRID_CLASSIFICATIONS:
        insights.primary_relationships.extend(["Government agencies", "Prime contractors", "Subcontractors"])
        insights.network_strength = "Strong"
        insights.diversification_level = "High"

    if financial.agency_focus == "Defense":
        insights.primary_relationships.append("Defense agencies")
    else:
        insights.primary_relationships.append("Civilian agencies")
    return insights


def build_ai_insights(
    financial: FinancialPayload,
    narrative: InsightNarrative,
    confidence_score: int,
) -> AIInsightsPayload:
    return AIInsightsPayload(
        performance_insights=PerformanceInsights(
            strongest_headline=narrative.strongest_headline,
            strongest_insight=narrative.strongest_insight,
            weakest_headline=narrative.weakest_headline,
            weakest_insight=narrative.weakest_insight,
            confidence_score=confidence_score,
        ),
        market_insights=market_insights(financial),
        network_insights=network_insights(financial),
    )
