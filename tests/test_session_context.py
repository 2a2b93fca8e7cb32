"""Tests for gensite_advisor.session_context."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import json
import urllib.parse

import pytest

from gensite_advisor.session_context import (
    CONTEXT_KEY,
    MAX_HISTORY,
    DBSessionStorage,
    MemorySessionStorage,
    SessionContextManager,
    normalize_entry,
)


@pytest.fixture
def storage() -> MemorySessionStorage:
    return MemorySessionStorage()


@pytest.fixture
def manager(storage) -> SessionContextManager:
    return SessionContextManager(storage)


# ---------------------------------------------------------------------------
# Entry normalization
# ---------------------------------------------------------------------------


class TestNormalizeEntry:
    def test_defaults(self):
        entry = normalize_entry({"query": "soup"})
        assert entry["intent"] == "general"
        assert entry["journeyStage"] == "exploring"
        assert entry["confidence"] == 0.5
        assert entry["entities"] == {"products": [], "ingredients": [], "goals": []}
        assert entry["timestamp"] > 0

    def test_confidence_zero_is_kept(self):
        assert normalize_entry({"query": "x", "confidence": 0})["confidence"] == 0.0

    def test_confidence_is_clamped(self):
        assert normalize_entry({"query": "x", "confidence": 3})["confidence"] == 1.0
        assert normalize_entry({"query": "x", "confidence": "n/a"})["confidence"] == 0.5


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class TestHistory:
    def test_empty_context(self, manager):
        assert manager.get()["queries"] == []
        assert not manager.has_context()
        assert manager.get_last_query() is None
        assert manager.format_summary() == "No previous queries in this session."

    def test_history_capped_to_most_recent(self, manager):
        for i in range(MAX_HISTORY + 3):
            manager.add_query({"query": f"q{i}"})

        queries = manager.get_context()["queries"]
        assert len(queries) == MAX_HISTORY
        assert queries[0]["query"] == "q3"
        assert manager.get_last_query()["query"] == f"q{MAX_HISTORY + 2}"

    def test_repeat_of_latest_query_replaces_it(self, manager):
        manager.add_query({"query": "soup", "intent": "general"})
        manager.add_query({"query": "soup", "intent": "recipe"})

        assert manager.get_consecutive_query_count() == 1
        assert manager.get_last_query()["intent"] == "recipe"

    def test_non_consecutive_repeats_are_kept(self, manager):
        for query in ("soup", "smoothie", "soup"):
            manager.add_query({"query": query})
        assert [q["query"] for q in manager.get_context()["queries"]] == ["soup", "smoothie", "soup"]

    def test_session_id_is_stable(self, manager):
        manager.add_query({"query": "soup"})
        assert manager.get_session_id() == manager.get_session_id()

    def test_corrupt_storage_yields_fresh_context(self, storage, manager):
        storage.set_item(CONTEXT_KEY, "{not json")
        context = manager.get_context()
        assert context["queries"] == []
        manager.add_query({"query": "soup"})
        assert manager.get_consecutive_query_count() == 1

    def test_missing_session_id_is_assigned(self, storage, manager):
        storage.set_item(CONTEXT_KEY, json.dumps({"queries": [{"query": "a"}, "junk"]}))
        context = manager.get_context()
        assert context["sessionId"]
        assert [q["query"] for q in context["queries"]] == ["a"]
        assert context["queries"][0]["entities"] == {"products": [], "ingredients": [], "goals": []}
        assert json.loads(storage.get_item(CONTEXT_KEY))["sessionId"] == context["sessionId"]

    def test_stored_entities_of_the_wrong_type_are_reset(self, storage, manager):
        stored = {"sessionId": "s-1", "queries": [{"query": "a", "entities": ["A3500"]}]}
        storage.set_item(CONTEXT_KEY, json.dumps(stored))
        assert manager.get_all_products() == []
        assert manager.get_context()["queries"][0]["entities"]["goals"] == []

    def test_unhashable_stored_products_are_dropped(self, storage, manager):
        entry = {"query": "a", "entities": {"products": [["x"], "A3500"], "ingredients": [{"item": "kale"}]}}
        storage.set_item(CONTEXT_KEY, json.dumps({"sessionId": "s-1", "queries": [entry]}))
        assert manager.get_all_products() == ["A3500"]
        assert manager.get_all_ingredients() == []

    def test_add_query_after_malformed_history(self, storage, manager):
        stored = {"sessionId": "s-1", "queries": [{"query": "a", "confidence": "NaN", "blockTypes": "hero"}]}
        storage.set_item(CONTEXT_KEY, json.dumps(stored))
        manager.add_query({"query": "b"})

        queries = manager.get_context()["queries"]
        assert [q["query"] for q in queries] == ["a", "b"]
        assert queries[0]["confidence"] == 0.5
        assert manager.get_session_id() == "s-1"

    def test_clear(self, manager, storage):
        manager.add_query({"query": "soup"})
        manager.clear()
        assert storage.get_item(CONTEXT_KEY) is None
        assert not manager.has_context()


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


class TestProjections:
    def test_entities_collected_without_duplicates(self, manager):
        manager.add_query({"query": "a", "entities": {"products": ["A3500"], "ingredients": ["kale"]}})
        manager.add_query({"query": "b", "entities": {"products": ["A3500", "E310"], "ingredients": ["kale", "mango"]}})
        assert manager.get_all_products() == ["A3500", "E310"]
        assert manager.get_all_ingredients() == ["kale", "mango"]

    def test_context_param_drops_timestamps(self, manager):
        manager.add_query({"query": "soup", "blockTypes": ["recipe-cards"], "confidence": 0.9})
        previous = manager.build_context_param()["previousQueries"]
        assert previous == [
            {
                "query": "soup",
                "intent": "general",
                "entities": {"products": [], "ingredients": [], "goals": []},
                "recommendedProducts": [],
                "recommendedRecipes": [],
                "blockTypes": ["recipe-cards"],
                "journeyStage": "exploring",
                "confidence": 0.9,
                "nextBestAction": "",
            }
        ]

    def test_encoded_context_param_round_trips(self, manager):
        manager.add_query({"query": "hot soup?"})
        decoded = json.loads(urllib.parse.unquote(manager.build_encoded_context_param()))
        assert decoded["previousQueries"][0]["query"] == "hot soup?"

    def test_format_summary(self, manager):
        manager.add_query({"query": "soup", "intent": "recipe"})
        manager.add_query({"query": "A3500 price"})
        assert manager.format_summary() == '1. "soup" (recipe)\n2. "A3500 price" (general)'

    def test_research_gaps_follow_history(self, manager):
        manager.add_query({"query": "soup", "blockTypes": ["recipe-cards"]})
        gap_types = [gap["type"] for gap in manager.get_research_gaps("deciding")]
        assert "recipes" not in gap_types
        assert "reviews" in gap_types


# ---------------------------------------------------------------------------
# SQLite-backed storage
# ---------------------------------------------------------------------------


class TestDBSessionStorage:
    def test_sessions_are_isolated(self, db):
        first = SessionContextManager(DBSessionStorage(db, "tab-1"))
        second = SessionContextManager(DBSessionStorage(db, "tab-2"))

        first.add_query({"query": "soup"})

        assert first.has_context()
        assert not second.has_context()

    def test_history_survives_new_manager(self, db):
        SessionContextManager(DBSessionStorage(db, "tab-1")).add_query({"query": "soup"})
        reopened = SessionContextManager(DBSessionStorage(db, "tab-1"))
        assert reopened.get_last_query()["query"] == "soup"

    def test_update_item_passes_current_value(self, db):
        storage = DBSessionStorage(db, "tab-1")
        seen = []

        def append(current):
            seen.append(current)
            return (current or "") + "x"

        assert storage.update_item("counter", append) == "x"
        assert storage.update_item("counter", append) == "xx"
        assert seen == [None, "x"]
        assert db.get_item("tab-1", "counter") == "xx"

    def test_failed_update_leaves_value_untouched(self, db):
        db.set_item("tab-1", "counter", "x")

        def explode(_current):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            db.update_item("tab-1", "counter", explode)
        assert db.get_item("tab-1", "counter") == "x"

    def test_concurrent_adds_are_all_kept(self, db):
        def record(index):
            SessionContextManager(DBSessionStorage(db, "tab-1")).add_query({"query": f"q{index}"})

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(record, range(MAX_HISTORY)))

        queries = SessionContextManager(DBSessionStorage(db, "tab-1")).get_context()["queries"]
        assert sorted(q["query"] for q in queries) == sorted(f"q{i}" for i in range(MAX_HISTORY))


class TestMemorySessionStorage:
    def test_update_item(self, storage):
        assert storage.update_item("k", lambda current: "a" if current is None else current + "b") == "a"
        assert storage.update_item("k", lambda current: current + "b") == "ab"
        assert storage.get_item("k") == "ab"

    def test_concurrent_adds_are_all_kept(self, storage):
        def record(index):
            SessionContextManager(storage).add_query({"query": f"q{index}"})

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(record, range(MAX_HISTORY)))

        assert len(SessionContextManager(storage).get_context()["queries"]) == MAX_HISTORY
