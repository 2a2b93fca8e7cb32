"""Schema for the structured intent profile returned by signal interpretation."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


JourneyStage = Literal["exploring", "comparing", "deciding"]
IntentType = Literal[
    "discovery",
    "comparison",
    "product-detail",
    "use-case",
    "specs",
    "reviews",
    "price",
    "recommendation",
    "support",
    "gift",
    "medical",
    "accessibility",
    "partnership",
]

JOURNEY_STAGES: tuple[str, ...] = ("exploring", "comparing", "deciding")


class _ProfileModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Interpretation(_ProfileModel):
    primary_intent: str = Field(min_length=1)
    specific_needs: list[str] = Field(default_factory=list)
    emotional_context: str = ""
    journey_stage: JourneyStage
    key_insights: list[str] = Field(default_factory=list)


class Entities(_ProfileModel):
    products: list[str] = Field(default_factory=list)
    use_cases: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    price_range: str | None = None
    ingredients: list[str] = Field(default_factory=list)


class Classification(_ProfileModel):
    intent_type: IntentType
    confidence: float = Field(ge=0.0, le=1.0)
    entities: Entities = Field(default_factory=Entities)
    journey_stage: JourneyStage


class ContentRecommendation(_ProfileModel):
    hero_tone: str = ""
    prioritize_blocks: list[str] = Field(default_factory=list)
    avoid_blocks: list[str] = Field(default_factory=list)
    special_guidance: str = ""


class IntentProfile(_ProfileModel):
    """Interpretation, classification and content guidance for one visitor.

    ``classification.journey_stage`` always mirrors ``interpretation.journey_stage``;
    the interpretation is the authoritative copy.
    """

    interpretation: Interpretation
    classification: Classification
    content_recommendation: ContentRecommendation = Field(default_factory=ContentRecommendation)

    @model_validator(mode="after")
    def _align_journey_stage(self) -> "IntentProfile":
        if self.classification.journey_stage != self.interpretation.journey_stage:
            self.classification.journey_stage = self.interpretation.journey_stage
        return self

    @property
    def journey_stage(self) -> str:
        return self.interpretation.journey_stage

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
