"""Research coverage and gap detection over a session's query history.

Both coverage detection and the gap catalog are rule tables so the advisor can
be tuned without touching the scanning logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CoverageRule:
    category: str
    block_types: frozenset[str] = frozenset()
    query_keywords: tuple[str, ...] = ()

    def covers(self, block_types: set[str], query_text: str) -> bool:
        if self.block_types & block_types:
            return True
        return any(keyword in query_text for keyword in self.query_keywords)


COVERAGE_RULES: tuple[CoverageRule, ...] = (
    CoverageRule(
        "products",
        block_types=frozenset({"product-cards", "product-recommendation", "product-hero", "best-pick"}),
    ),
    CoverageRule("recipes", block_types=frozenset({"recipe-cards", "recipe-hero"})),
    CoverageRule("reviews", block_types=frozenset({"testimonials"})),
    CoverageRule("warranty", query_keywords=("warranty", "guarantee", "return")),
    CoverageRule("specs", block_types=frozenset({"specs-table", "engineering-specs"})),
    CoverageRule("comparisons", block_types=frozenset({"comparison-table"})),
    CoverageRule("accessories", query_keywords=("accessor", "container", "attachment")),
)


@dataclass(frozen=True)
class GapDefinition:
    type: str
    query: str
    label: str
    explanation: str
    stages: frozenset[str]

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type,
            "query": self.query,
            "label": self.label,
            "explanation": self.explanation,
        }


GAP_CATALOG: tuple[GapDefinition, ...] = (
    GapDefinition(
        type="recipes",
        query="blender recipes",
        label="Recipes",
        explanation="See what you can make with your blender.",
        stages=frozenset({"exploring", "comparing", "deciding"}),
    ),
    GapDefinition(
        type="reviews",
        query="blender customer reviews",
        label="Customer Reviews",
        explanation="Hear from real owners.",
        stages=frozenset({"comparing", "deciding"}),
    ),
    GapDefinition(
        type="warranty",
        query="blender warranty coverage",
        label="Warranty Coverage",
        explanation="Check what the warranty covers and for how long.",
        stages=frozenset({"comparing", "deciding"}),
    ),
    GapDefinition(
        type="specs",
        query="blender specifications",
        label="Technical Specs",
        explanation="See detailed specifications and measurements.",
        stages=frozenset({"comparing"}),
    ),
    GapDefinition(
        type="comparisons",
        query="compare blender models",
        label="Model Comparison",
        explanation="See models side by side.",
        stages=frozenset({"exploring", "comparing"}),
    ),
    GapDefinition(
        type="accessories",
        query="blender accessories",
        label="Accessories",
        explanation="Compatible containers and bowls expand capabilities.",
        stages=frozenset({"deciding"}),
    ),
)


def compute_research_coverage(entries: list[dict[str, Any]]) -> dict[str, bool]:
    coverage = {rule.category: False for rule in COVERAGE_RULES}
    for entry in entries:
        block_types = {str(value) for value in entry.get("blockTypes") or []}
        query_text = str(entry.get("query") or "").lower()
        for rule in COVERAGE_RULES:
            if not coverage[rule.category] and rule.covers(block_types, query_text):
                coverage[rule.category] = True
    return coverage


def find_research_gaps(entries: list[dict[str, Any]], journey_stage: str = "exploring") -> list[dict[str, str]]:
    coverage = compute_research_coverage(entries)
    return [
        gap.to_dict()
        for gap in GAP_CATALOG
        if not coverage.get(gap.type, False) and journey_stage in gap.stages
    ]
