"""Advisor service wiring signal interpretation, session context and content retrieval."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Any

from gensite_advisor.cohere_utils import CohereClient, CohereConfig, api_key_configured, make_client
from gensite_advisor.content_index import HERO_IMAGE, RECIPE, ContentIndexer
from gensite_advisor.db import AdvisorDB
from gensite_advisor.intent_profile import JOURNEY_STAGES
from gensite_advisor.session_context import DBSessionStorage, SessionContextManager
from gensite_advisor.signal_interpreter import IntentInterpreter, InterpretationContext
from gensite_advisor.vector_store import SQLiteVectorIndex


_LOGGER = logging.getLogger(__name__)


class EmbeddingServiceUnavailable(RuntimeError):
    pass


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except Exception:
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except Exception:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class AdvisorConfig:
    data_dir: Path
    interpret_timeout_seconds: float
    request_timeout_seconds: float
    max_events: int
    embed_batch_size: int

    @classmethod
    def from_env(cls) -> "AdvisorConfig":
        return cls(
            data_dir=Path(os.getenv("GS_DATA_DIR", "").strip() or "data"),
            interpret_timeout_seconds=_env_float("GS_INTERPRET_TIMEOUT_SECONDS", 25.0),
            request_timeout_seconds=_env_float("GS_COHERE_TIMEOUT_SECONDS", 20.0),
            max_events=_env_int("GS_MAX_EVENTS", 50),
            embed_batch_size=_env_int("GS_EMBED_BATCH_SIZE", 100),
        )


def _require_stage(stage: str) -> str:
    cleaned = (stage or "").strip().lower()
    if cleaned not in JOURNEY_STAGES:
        raise ValueError(f"journey stage must be one of: {', '.join(JOURNEY_STAGES)}")
    return cleaned


def _require_session_id(session_id: str) -> str:
    cleaned = (session_id or "").strip()
    if not cleaned:
        raise ValueError("A session id is required.")
    return cleaned


class AdvisorService:
    def __init__(
        self,
        *,
        config: AdvisorConfig | None = None,
        cohere_config: CohereConfig | None = None,
        client: CohereClient | None = None,
    ) -> None:
        self.config = config or AdvisorConfig.from_env()
        self.cfg = cohere_config or CohereConfig.from_env()
        self.client = client
        self.db = AdvisorDB(self.config.data_dir / "gensite_advisor.db")
        self.index = SQLiteVectorIndex(self.db)
        self.interpreter = IntentInterpreter(
            client=client,
            config=self.cfg,
            timeout_seconds=self.config.interpret_timeout_seconds,
            max_events=self.config.max_events,
        )
        self._indexer: ContentIndexer | None = None

    @property
    def ai_enabled(self) -> bool:
        return self.client is not None or api_key_configured()

    def _ensure_indexer(self) -> ContentIndexer:
        if self._indexer is not None:
            return self._indexer
        if not self.ai_enabled:
            raise EmbeddingServiceUnavailable("COHERE_API_KEY is not set.")
        if self.client is None:
            self.client = make_client()
        self._indexer = ContentIndexer(
            client=self.client,
            index=self.index,
            config=self.cfg,
            batch_size=self.config.embed_batch_size,
            request_timeout_seconds=self.config.request_timeout_seconds,
        )
        return self._indexer

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def session(self, session_id: str) -> SessionContextManager:
        return SessionContextManager(DBSessionStorage(self.db, _require_session_id(session_id)))

    def get_session(self, session_id: str) -> dict[str, Any]:
        manager = self.session(session_id)
        context = manager.get_context()
        return {
            "context": context,
            "hasContext": bool(context["queries"]),
            "products": manager.get_all_products(),
            "ingredients": manager.get_all_ingredients(),
            "coverage": manager.get_research_coverage(),
            "summary": manager.format_summary(),
        }

    def record_query(self, session_id: str, entry: dict[str, Any]) -> dict[str, Any]:
        if not str(entry.get("query") or "").strip():
            raise ValueError("Query entry needs a non-empty query.")
        manager = self.session(session_id)
        stored = manager.add_query(entry)
        return {
            "entry": stored,
            "queryCount": manager.get_consecutive_query_count(),
            "sessionId": manager.get_session_id(),
        }

    def research_gaps(self, session_id: str, stage: str = "exploring") -> dict[str, Any]:
        safe_stage = _require_stage(stage)
        return {
            "journeyStage": safe_stage,
            "gaps": self.session(session_id).get_research_gaps(safe_stage),
        }

    def clear_session(self, session_id: str) -> dict[str, Any]:
        self.session(session_id).clear()
        return {"cleared": True}

    # ------------------------------------------------------------------
    # Interpretation
    # ------------------------------------------------------------------

    def interpret(
        self,
        *,
        context: InterpretationContext,
        session_id: str | None = None,
        preset: str | None = None,
    ) -> dict[str, Any]:
        manager = self.session(session_id) if session_id else None
        if manager is not None and not context.previous_queries:
            context.previous_queries = manager.build_retrieval_context()["previousQueries"]

        profile = self.interpreter.interpret_signals(context, preset=preset)
        payload: dict[str, Any] = {"profile": profile.to_dict()}
        if manager is not None:
            payload["researchGaps"] = manager.get_research_gaps(profile.journey_stage)
        return payload

    # ------------------------------------------------------------------
    # Content index
    # ------------------------------------------------------------------

    def embed_recipes(self, recipes: list[dict[str, Any]], *, batch_size: int | None = None) -> dict[str, Any]:
        if not recipes:
            raise ValueError("No recipes provided")
        result = self._ensure_indexer().embed_batch(recipes, content_type=RECIPE, batch_size=batch_size)
        result["totalRecipes"] = result.pop("total")
        return result

    def embed_hero_images(self, images: list[dict[str, Any]]) -> dict[str, Any]:
        if not images:
            raise ValueError("No images provided")
        # Hero image sets are small; one batch.
        result = self._ensure_indexer().embed_batch(images, content_type=HERO_IMAGE, batch_size=len(images))
        result["totalImages"] = result.pop("total")
        return result

    def embed_single(self, recipe: dict[str, Any]) -> dict[str, Any]:
        return self._ensure_indexer().embed_single(recipe)

    def query_content(self, *, query: str, top_k: int = 5, content_type: str | None = None) -> dict[str, Any]:
        return self._ensure_indexer().query(query, top_k=top_k, content_type=content_type)

    def status(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "aiEnabled": self.ai_enabled,
            "embedModel": self.cfg.embed_model,
            "index": self.index.describe(),
        }
