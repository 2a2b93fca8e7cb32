"""Interprets compacted browsing signals into an intent profile via the reasoning model.

The reasoning call is best-effort: transport errors, timeouts, missing or
malformed JSON all resolve to a deterministic keyword-driven fallback profile
with confidence 0.5, so callers always receive a usable profile.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import time
from typing import Any, Callable

from pydantic import ValidationError

from gensite_advisor.cohere_utils import (
    CohereClient,
    CohereConfig,
    api_key_configured,
    extract_json_object,
    make_client,
    run_with_timeout,
)
from gensite_advisor.event_compactor import DEFAULT_MAX_EVENTS, compact_events, extract_products, select_recent
from gensite_advisor.intent_profile import IntentProfile
from gensite_advisor.signals import SEARCH, InteractionEvent, coerce_events, search_event


_LOGGER = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5

SIGNAL_INTERPRETATION_PROMPT = """You interpret a shopper's browsing behaviour on a kitchen blender store to understand what they want.

## Task
From the browsing signals, work out:
1. What the person is trying to accomplish.
2. Their specific needs or concerns.
3. Where they are in their decision journey.
4. What content would help them most next.

## Signal format (compact JSON)
{
  "searches": ["query1", "query2"],          // explicit intent, highest priority
  "ref": "google:\\"search terms\\"",         // arrival source and search query
  "journey": [                               // chronological actions
    {"t": 0, "a": "page", "d": "Home"},      // t=seconds from start, a=action, d=description
    {"t": 8, "a": "page", "d": "Recipe Center", "c": "recipe"},  // c=category for significant actions
    {"t": 15, "a": "click", "d": "A3500", "p": "A3500"}          // p=product when known
  ],
  "products": ["A3500", "E310"],             // products encountered
  "scrolls": {"/recipes": 100},              // max scroll depth per page
  "timeSpent": {"/a3500": 120},              // max seconds per page
  "currentQuery": "...",                     // optional, what they just asked
  "previousQueries": [...],                  // optional, earlier questions this session
  "profileHints": {...}                      // optional, low-confidence hints
}
Action codes: page, click, video, video_done.

## Guidelines
- Search queries and currentQuery are explicit intent; weight them above everything else.
- Several product pages or compare pages suggest comparison shopping.
- Deep scrolling combined with long time on a page means strong interest.
- kids/children/family/picky eater: family focus. baby/infant/toddler/puree: new parent.
- gift/wedding/registry: buying for someone else. financing/reconditioned: price sensitive.

## Output (JSON only, no prose)
{
  "interpretation": {
    "primaryIntent": "specific goal",
    "specificNeeds": ["..."],
    "emotionalContext": "what they may be feeling",
    "journeyStage": "exploring|comparing|deciding",
    "keyInsights": ["..."]
  },
  "classification": {
    "intentType": "discovery|comparison|product-detail|use-case|specs|reviews|price|recommendation|support|gift|medical|accessibility|partnership",
    "confidence": 0.0,
    "entities": {
      "products": ["..."],
      "useCases": ["e.g. smoothies, soups, kids_recipes, baby_food"],
      "features": ["..."],
      "priceRange": "budget|mid|premium|null"
    },
    "journeyStage": "exploring|comparing|deciding"
  },
  "contentRecommendation": {
    "heroTone": "how the hero should speak to them",
    "prioritizeBlocks": ["block types"],
    "avoidBlocks": ["block types"],
    "specialGuidance": "free text"
  }
}"""


@dataclass(frozen=True)
class FallbackRule:
    keywords: tuple[str, ...]
    primary_intent: str
    use_cases: tuple[str, ...]
    emotional_context: str | None = None
    specific_needs: tuple[str, ...] = ()

    def matches(self, queries: list[str]) -> bool:
        return any(keyword in query for query in queries for keyword in self.keywords)


# First matching rule wins.
FALLBACK_RULES: tuple[FallbackRule, ...] = (
    FallbackRule(
        keywords=("kid", "child", "family", "picky"),
        primary_intent="Find family-friendly recipes and blender options",
        emotional_context="parent looking for solutions",
        use_cases=("kids_recipes", "family_meals"),
        specific_needs=("Kid-friendly recipes", "Ways to make healthy food appealing to children"),
    ),
    FallbackRule(
        keywords=("baby", "puree", "infant"),
        primary_intent="Make homemade baby food",
        emotional_context="caring new parent",
        use_cases=("baby_food", "purees"),
        specific_needs=("Baby food preparation", "Safe puree textures"),
    ),
    FallbackRule(
        keywords=("smoothie",),
        primary_intent="Make great smoothies",
        use_cases=("smoothies",),
    ),
    FallbackRule(
        keywords=("soup",),
        primary_intent="Make hot soups",
        use_cases=("soups", "hot_blending"),
    ),
    FallbackRule(
        keywords=("gift", "wedding"),
        primary_intent="Find the perfect blender as a gift",
        emotional_context="thoughtful gift-giver",
        use_cases=("gift",),
    ),
)

DEFAULT_PRIMARY_INTENT = "Find the right product"
DEFAULT_EMOTIONAL_CONTEXT = "curious shopper"

COMPARE_CATEGORIES = frozenset({"compare", "comparison"})
DECIDING_CATEGORIES = frozenset({"add_to_cart", "cart", "shipping"})


def _stage_is_comparing(events: list[InteractionEvent], products: list[str]) -> bool:
    return len(products) >= 2 or any(event.category in COMPARE_CATEGORIES for event in events)


def _stage_is_deciding(events: list[InteractionEvent], products: list[str]) -> bool:
    return any(event.category in DECIDING_CATEGORIES for event in events)


# Applied in order; the last matching rule sets the stage.
STAGE_RULES: tuple[tuple[str, Callable[[list[InteractionEvent], list[str]], bool]], ...] = (
    ("comparing", _stage_is_comparing),
    ("deciding", _stage_is_deciding),
)


def infer_journey_stage(events: list[InteractionEvent], products: list[str]) -> str:
    stage = "exploring"
    for candidate, predicate in STAGE_RULES:
        if predicate(events, products):
            stage = candidate
    return stage


def build_fallback_interpretation(
    events: list[InteractionEvent],
    products: list[str],
) -> IntentProfile:
    queries = [
        str(event.data.get("query") or "").lower()
        for event in events
        if event.type == SEARCH and event.data.get("query")
    ]

    rule = next((candidate for candidate in FALLBACK_RULES if candidate.matches(queries)), None)
    primary_intent = rule.primary_intent if rule else DEFAULT_PRIMARY_INTENT
    emotional_context = (rule.emotional_context if rule else None) or DEFAULT_EMOTIONAL_CONTEXT
    use_cases = list(rule.use_cases) if rule else []
    specific_needs = list(rule.specific_needs) if rule else []

    journey_stage = infer_journey_stage(events, products)

    return IntentProfile.model_validate(
        {
            "interpretation": {
                "primaryIntent": primary_intent,
                "specificNeeds": specific_needs,
                "emotionalContext": emotional_context,
                "journeyStage": journey_stage,
                "keyInsights": [f"Based on {len(events)} browsing signals"],
            },
            "classification": {
                "intentType": "comparison" if len(products) >= 2 else "discovery",
                "confidence": FALLBACK_CONFIDENCE,
                "entities": {
                    "products": list(products),
                    "useCases": use_cases,
                    "features": [],
                },
                "journeyStage": journey_stage,
            },
            "contentRecommendation": {
                "heroTone": "welcoming and helpful",
                "prioritizeBlocks": ["hero", "product-cards"],
                "avoidBlocks": [],
                "specialGuidance": "",
            },
        }
    )


@dataclass
class InterpretationContext:
    """Everything known about the visitor at interpretation time."""

    events: list[InteractionEvent] = field(default_factory=list)
    query: str | None = None
    previous_queries: list[Any] = field(default_factory=list)
    profile_hints: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "InterpretationContext":
        query = str(raw.get("query") or "").strip() or None
        previous = raw.get("previousQueries")
        hints = raw.get("profileHints") or raw.get("profile")
        return cls(
            events=coerce_events(raw.get("signals") or raw.get("events")),
            query=query,
            previous_queries=list(previous) if isinstance(previous, list) else [],
            profile_hints=dict(hints) if isinstance(hints, dict) else None,
        )


def build_interpretation_payload(summary: dict[str, Any], context: InterpretationContext) -> dict[str, Any]:
    payload = dict(summary)

    if context.previous_queries:
        payload["previousQueries"] = list(context.previous_queries)

    if context.query:
        payload["currentQuery"] = context.query

    hints = context.profile_hints or {}
    segments = [str(value) for value in hints.get("segments") or [] if str(value).strip()]
    use_cases = [
        str(value)
        for value in (hints.get("useCases") or hints.get("use_cases") or [])
        if str(value).strip()
    ]
    if segments or use_cases:
        payload["profileHints"] = {"segments": segments, "useCases": use_cases}

    return payload


class IntentInterpreter:
    def __init__(
        self,
        *,
        client: CohereClient | None = None,
        config: CohereConfig | None = None,
        timeout_seconds: float = 25.0,
        max_events: int = DEFAULT_MAX_EVENTS,
    ) -> None:
        self.client = client
        self.cfg = config or CohereConfig.from_env()
        self.timeout_seconds = max(1.0, float(timeout_seconds))
        self.max_events = max(1, int(max_events))

    @property
    def ai_enabled(self) -> bool:
        return self.client is not None or api_key_configured()

    def _ensure_client(self) -> CohereClient:
        if self.client is None:
            self.client = make_client()
        return self.client

    def interpret_signals(
        self,
        context: InterpretationContext,
        *,
        preset: str | None = None,
    ) -> IntentProfile:
        events = select_recent(context.events, self.max_events)
        summary = compact_events(events, max_events=self.max_events)
        products = extract_products(events)
        payload = build_interpretation_payload(summary, context)

        _LOGGER.info(
            "Interpreting %d signals (query=%r, previous_queries=%d, products=%d).",
            len(events),
            context.query,
            len(context.previous_queries),
            len(products),
        )

        if not self.ai_enabled:
            _LOGGER.info("Reasoning service not configured; using fallback interpretation.")
            return build_fallback_interpretation(events, products)

        model = self.cfg.reasoning_model(preset)
        try:
            client = self._ensure_client()
            raw = run_with_timeout(
                "Signal interpretation request",
                lambda: client.chat_text(
                    prompt=json.dumps(payload, separators=(",", ":"), ensure_ascii=False),
                    system=SIGNAL_INTERPRETATION_PROMPT,
                    model=model,
                    temperature=0.2,
                ),
                self.timeout_seconds,
            )
            profile = IntentProfile.model_validate(extract_json_object(raw))
        except (RuntimeError, ValueError, ValidationError) as exc:
            _LOGGER.warning("Signal interpretation fell back to heuristics: %s", exc)
            return build_fallback_interpretation(events, products)

        if products and not profile.classification.entities.products:
            profile.classification.entities.products = list(products)

        _LOGGER.info(
            "Interpretation result: intent=%r stage=%s use_cases=%s",
            profile.interpretation.primary_intent,
            profile.journey_stage,
            profile.classification.entities.use_cases,
        )
        return profile

    def interpret_query(self, query: str, *, preset: str | None = None) -> IntentProfile:
        cleaned = query.strip()
        context = InterpretationContext(
            events=[search_event(cleaned, timestamp=time.time() * 1000.0)],
            query=cleaned or None,
        )
        return self.interpret_signals(context, preset=preset)
