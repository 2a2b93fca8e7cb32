"""Per-tab session context: bounded, deduplicated query history for contextual browsing.

State lives in a session-scoped key/value storage under a fixed key and is
written back after every mutation. ``add_query`` reads and writes inside one
storage update, so overlapping requests for the same tab never drop an entry.
Stored entries are re-normalized on read; a damaged value never reaches callers.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
import urllib.parse
import uuid
from typing import Any, Callable, Protocol

from gensite_advisor.db import AdvisorDB
from gensite_advisor.research_gaps import compute_research_coverage, find_research_gaps


_LOGGER = logging.getLogger(__name__)

CONTEXT_KEY = "gensite-session-context"
MAX_HISTORY = 10
DEFAULT_CONFIDENCE = 0.5


class SessionStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def update_item(self, key: str, update: Callable[[str | None], str]) -> str: ...

    def remove_item(self, key: str) -> None: ...


class MemorySessionStorage:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def update_item(self, key: str, update: Callable[[str | None], str]) -> str:
        with self._lock:
            value = update(self._items.get(key))
            self._items[key] = value
        return value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class DBSessionStorage:
    """Storage for one browsing tab, backed by the advisor SQLite database."""

    def __init__(self, db: AdvisorDB, scope_id: str) -> None:
        self.db = db
        self.scope_id = scope_id

    def get_item(self, key: str) -> str | None:
        return self.db.get_item(self.scope_id, key)

    def set_item(self, key: str, value: str) -> None:
        self.db.set_item(self.scope_id, key, value)

    def update_item(self, key: str, update: Callable[[str | None], str]) -> str:
        return self.db.update_item(self.scope_id, key, update)

    def remove_item(self, key: str) -> None:
        self.db.remove_item(self.scope_id, key)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def normalize_entry(entry: dict[str, Any]) -> dict[str, Any]:
    entities = entry.get("entities") if isinstance(entry.get("entities"), dict) else {}
    confidence = entry.get("confidence")
    try:
        confidence_value = float(confidence) if confidence is not None else DEFAULT_CONFIDENCE
    except (TypeError, ValueError):
        confidence_value = DEFAULT_CONFIDENCE
    if not math.isfinite(confidence_value):
        confidence_value = DEFAULT_CONFIDENCE

    return {
        "query": str(entry.get("query") or ""),
        "timestamp": entry.get("timestamp") or _now_ms(),
        "intent": str(entry.get("intent") or "general"),
        "entities": {
            "products": _string_list(entities.get("products")),
            "ingredients": _string_list(entities.get("ingredients")),
            "goals": _string_list(entities.get("goals")),
        },
        "generatedPath": str(entry.get("generatedPath") or ""),
        "recommendedProducts": _string_list(entry.get("recommendedProducts")),
        "recommendedRecipes": _string_list(entry.get("recommendedRecipes")),
        "blockTypes": _string_list(entry.get("blockTypes")),
        "journeyStage": str(entry.get("journeyStage") or "exploring"),
        "confidence": max(0.0, min(1.0, confidence_value)),
        "nextBestAction": str(entry.get("nextBestAction") or ""),
    }


class SessionContextManager:
    def __init__(self, storage: SessionStorage, *, key: str = CONTEXT_KEY, max_history: int = MAX_HISTORY) -> None:
        self.storage = storage
        self.key = key
        self.max_history = max(1, int(max_history))

    @staticmethod
    def _fresh_context() -> dict[str, Any]:
        now = _now_ms()
        return {
            "queries": [],
            "sessionStart": now,
            "lastUpdated": now,
            "sessionId": str(uuid.uuid4()),
        }

    def _write(self, context: dict[str, Any]) -> None:
        self.storage.set_item(self.key, json.dumps(context))

    def _parse(self, stored: str | None) -> dict[str, Any] | None:
        """Decode a stored context with every entry normalized; None when missing or unusable."""
        if not stored:
            return None
        try:
            context = json.loads(stored)
        except ValueError:
            _LOGGER.warning("Discarding unreadable session context under %r.", self.key)
            return None
        if not isinstance(context, dict) or not isinstance(context.get("queries", []), list):
            _LOGGER.warning("Discarding malformed session context under %r.", self.key)
            return None
        context["queries"] = [normalize_entry(q) for q in context.get("queries", []) if isinstance(q, dict)]
        return context

    def get_context(self) -> dict[str, Any]:
        """Return the stored context, or a fresh one when missing or unreadable."""
        context = self._parse(self.storage.get_item(self.key))
        if context is None:
            return self._fresh_context()
        if not context.get("sessionId"):
            context["sessionId"] = str(uuid.uuid4())
            self._write(context)
        return context

    # The session-facing name used by callers that only read.
    get = get_context

    def add_query(self, entry: dict[str, Any]) -> dict[str, Any]:
        normalized = normalize_entry(entry)

        def apply(stored: str | None) -> str:
            context = self._parse(stored) or self._fresh_context()
            if not context.get("sessionId"):
                context["sessionId"] = str(uuid.uuid4())
            queries: list[dict[str, Any]] = context["queries"]

            # A repeat of the latest query (e.g. a reload) replaces it.
            if queries and queries[-1]["query"] == normalized["query"]:
                queries[-1] = normalized
            else:
                queries.append(normalized)
                if len(queries) > self.max_history:
                    context["queries"] = queries[-self.max_history :]

            context["lastUpdated"] = _now_ms()
            return json.dumps(context)

        self.storage.update_item(self.key, apply)
        return normalized

    def build_context_param(self) -> dict[str, Any]:
        context = self.get_context()
        return {
            "previousQueries": [
                {
                    "query": q.get("query", ""),
                    "intent": q.get("intent", "general"),
                    "entities": q.get("entities", {}),
                    "recommendedProducts": q.get("recommendedProducts", []),
                    "recommendedRecipes": q.get("recommendedRecipes", []),
                    "blockTypes": q.get("blockTypes", []),
                    "journeyStage": q.get("journeyStage", "exploring"),
                    "confidence": q.get("confidence", DEFAULT_CONFIDENCE),
                    "nextBestAction": q.get("nextBestAction", ""),
                }
                for q in context["queries"]
            ],
        }

    # Projection used as interpreter "previous queries" context.
    build_retrieval_context = build_context_param

    def build_encoded_context_param(self) -> str:
        return urllib.parse.quote(json.dumps(self.build_context_param(), separators=(",", ":")), safe="")

    def has_context(self) -> bool:
        return len(self.get_context()["queries"]) > 0

    def get_session_id(self) -> str:
        return str(self.get_context()["sessionId"])

    def get_consecutive_query_count(self) -> int:
        return len(self.get_context()["queries"])

    def get_last_query(self) -> dict[str, Any] | None:
        queries = self.get_context()["queries"]
        return queries[-1] if queries else None

    def _collect_entities(self, field_name: str) -> list[str]:
        values: list[str] = []
        seen: set[str] = set()
        for q in self.get_context()["queries"]:
            entities = q.get("entities") or {}
            for value in entities.get(field_name) or []:
                if value not in seen:
                    seen.add(value)
                    values.append(value)
        return values

    def get_all_products(self) -> list[str]:
        return self._collect_entities("products")

    def get_all_ingredients(self) -> list[str]:
        return self._collect_entities("ingredients")

    def clear(self) -> None:
        self.storage.remove_item(self.key)

    def format_summary(self) -> str:
        queries = self.get_context()["queries"]
        if not queries:
            return "No previous queries in this session."
        return "\n".join(f'{i + 1}. "{q.get("query", "")}" ({q.get("intent", "general")})' for i, q in enumerate(queries))

    def get_research_coverage(self) -> dict[str, bool]:
        return compute_research_coverage(self.get_context()["queries"])

    def get_research_gaps(self, journey_stage: str = "exploring") -> list[dict[str, str]]:
        return find_research_gaps(self.get_context()["queries"], journey_stage)
