"""Shared pytest fixtures for the advisor tests."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gensite_advisor.cohere_utils import CohereClient, CohereConfig
from gensite_advisor.db import AdvisorDB
from gensite_advisor.service import AdvisorConfig, AdvisorService
from gensite_advisor.signals import InteractionEvent


T0 = 1_700_000_000_000.0

# Each text is embedded as keyword counts over this vocabulary, plus a small
# constant so that no vector is all zeros.
VOCABULARY = ("smoothie", "soup", "baby", "dessert", "kitchen", "bright")


def keyword_vector(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(word)) + 0.01 for word in VOCABULARY]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def no_cohere_env(monkeypatch):
    """Keep real credentials in the developer's shell out of every test."""
    for name in (
        "COHERE_API_KEY",
        "GS_COHERE_CONFIG_PATH",
        "GS_DEFAULT_PRESET",
        "GS_CHAT_MODEL",
        "GS_FAST_MODEL",
        "GS_QUALITY_MODEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def cohere_config() -> CohereConfig:
    return CohereConfig(
        chat_model="chat-model",
        fast_model="fast-model",
        quality_model="quality-model",
        embed_model="embed-model",
        default_preset="production",
    )


@pytest.fixture
def advisor_config(tmp_path: Path) -> AdvisorConfig:
    return AdvisorConfig(
        data_dir=tmp_path,
        interpret_timeout_seconds=5.0,
        request_timeout_seconds=5.0,
        max_events=50,
        embed_batch_size=100,
    )


@pytest.fixture
def db(tmp_path: Path) -> AdvisorDB:
    return AdvisorDB(tmp_path / "test.db")


# ---------------------------------------------------------------------------
# Cohere client fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def keyword_embedding():
    return keyword_vector


@pytest.fixture
def fake_client() -> MagicMock:
    """A client whose embeddings are keyword counts and whose chat output is set per test."""
    client = MagicMock(spec=CohereClient)
    client.embed_texts.side_effect = lambda *, texts, model, input_type: [keyword_vector(t) for t in texts]
    client.chat_text.return_value = ""
    return client


@pytest.fixture
def service(advisor_config, cohere_config, fake_client) -> AdvisorService:
    return AdvisorService(config=advisor_config, cohere_config=cohere_config, client=fake_client)


@pytest.fixture
def offline_service(advisor_config, cohere_config) -> AdvisorService:
    """A service with no client and no API key configured."""
    return AdvisorService(config=advisor_config, cohere_config=cohere_config)


# ---------------------------------------------------------------------------
# Events and payloads
# ---------------------------------------------------------------------------


def make_event(kind: str, offset_seconds: float, **kwargs) -> InteractionEvent:
    return InteractionEvent(type=kind, timestamp=T0 + offset_seconds * 1000.0, **kwargs)


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def browsing_events() -> list[InteractionEvent]:
    """A short visit: arrive from Google, read a recipe page, open two product pages."""
    return [
        make_event("referrer", 0, category="referrer", weight=0.05, data={"domain": "google", "searchQuery": "blender soup"}),
        make_event("page_view", 0, category="home", weight=0.05, data={"h1": "Home", "path": "/"}),
        make_event("page_view", 8, category="recipe", weight=0.15, data={"h1": "Recipe Center", "path": "/recipes"}),
        make_event("scroll", 12, category="scroll", weight=0.05, data={"depth": 50, "page": {"path": "/recipes"}}),
        make_event("scroll", 14, category="scroll", weight=0.05, data={"depth": 100, "page": {"path": "/recipes"}}),
        make_event(
            "page_view",
            20,
            category="product",
            weight=0.15,
            data={"h1": "Ascent® A3500 - Brushed Stainless", "path": "/a3500", "price": "$649.95"},
        ),
        make_event("time_on_page", 140, category="time_on_page", weight=0.1, data={"seconds": 120, "path": "/a3500"}),
        make_event("click", 150, category="product", weight=0.15, product="E310", data={"text": "E310"}),
    ]


@pytest.fixture
def valid_profile_json() -> str:
    return json.dumps(
        {
            "interpretation": {
                "primaryIntent": "Compare premium blenders for soups",
                "specificNeeds": ["hot soup capability"],
                "emotionalContext": "careful researcher",
                "journeyStage": "comparing",
                "keyInsights": ["Viewed two models"],
            },
            "classification": {
                "intentType": "comparison",
                "confidence": 0.82,
                "entities": {"products": ["A3500", "E310"], "useCases": ["soups"], "features": [], "priceRange": "premium"},
                "journeyStage": "comparing",
            },
            "contentRecommendation": {
                "heroTone": "confident",
                "prioritizeBlocks": ["comparison-table"],
                "avoidBlocks": [],
                "specialGuidance": "",
            },
        }
    )


@pytest.fixture
def recipes() -> list[dict]:
    return [
        {
            "id": "green-smoothie",
            "name": "Green Smoothie",
            "description": "A bright smoothie with spinach.",
            "category": "Smoothies",
            "ingredients": [{"item": "spinach"}, {"item": "banana"}],
            "dietaryTags": ["vegan"],
            "url": "https://example.com/recipes/green-smoothie",
            "images": {"primary": "https://example.com/img/green.jpg"},
            "servings": 2,
        },
        {
            "id": "tomato-soup",
            "name": "Tomato Soup",
            "description": "A hot soup blended in minutes.",
            "category": "Soups",
            "ingredients": ["tomatoes", "basil"],
            "url": "https://example.com/recipes/tomato-soup",
        },
        {
            "name": "Baby Pear Puree",
            "description": "A smooth baby food.",
            "category": "Baby Food",
            "url": "https://example.com/recipes/baby-pear-puree",
        },
    ]


@pytest.fixture
def hero_images() -> list[dict]:
    return [
        {
            "url": "https://example.com/media_abc123.jpg?width=2000",
            "content_description": "Bright kitchen counter with a smoothie",
            "primary_category": "lifestyle",
            "secondary_tags": ["minimal"],
            "mood": "fresh",
            "dominant_colors": ["green", "white"],
            "text_placement": "left",
            "background_tone": "light",
            "aspect_ratio": "16:9",
            "quality_score": 9,
        }
    ]
