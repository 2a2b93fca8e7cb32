"""Tests for gensite_advisor.cohere_utils: JSON extraction, presets, client parsing."""

from __future__ import annotations

import json
import time
from unittest.mock import patch

import pytest

from gensite_advisor.cohere_utils import (
    CohereClient,
    CohereConfig,
    api_key_configured,
    extract_json_object,
    make_client,
    run_with_timeout,
)


def _client(**kwargs) -> CohereClient:
    params = {"api_key": "k", "base_url": "https://api.example.com/v2/", "timeout_seconds": 5, "max_retries": 1}
    params.update(kwargs)
    return CohereClient(**params)


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------


class TestExtractJsonObject:
    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_object_inside_markdown_fence(self):
        text = 'Here you go:\n```json\n{"a": {"b": [1, 2]}}\n```\nThanks!'
        assert extract_json_object(text) == {"a": {"b": [1, 2]}}

    def test_braces_inside_strings_are_ignored(self):
        assert extract_json_object('{"note": "use {curly} braces", "n": 2} trailing }') == {
            "note": "use {curly} braces",
            "n": 2,
        }

    def test_escaped_quotes_inside_strings(self):
        assert extract_json_object(r'{"q": "say \"hi\" {"}') == {"q": 'say "hi" {'}

    @pytest.mark.parametrize("text", ["", "no json here", '{"a": 1', "{not json}"])
    def test_invalid_input_raises_value_error(self, text):
        with pytest.raises(ValueError):
            extract_json_object(text)


# ---------------------------------------------------------------------------
# Model presets
# ---------------------------------------------------------------------------


class TestCohereConfig:
    def test_presets_map_to_models(self, cohere_config):
        assert cohere_config.reasoning_model("fast") == "fast-model"
        assert cohere_config.reasoning_model("quality") == "quality-model"
        assert cohere_config.reasoning_model("production") == "chat-model"

    def test_missing_preset_uses_default(self, cohere_config):
        assert cohere_config.reasoning_model(None) == "chat-model"

    def test_unknown_preset_falls_back_to_default(self, cohere_config):
        assert cohere_config.reasoning_model("turbo") == "chat-model"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("GS_FAST_MODEL", "my-fast")
        monkeypatch.setenv("GS_DEFAULT_PRESET", "fast")
        cfg = CohereConfig.from_env()
        assert cfg.reasoning_model() == "my-fast"

    def test_quality_model_is_independent_of_chat_model(self, monkeypatch):
        monkeypatch.setenv("GS_CHAT_MODEL", "my-chat")
        cfg = CohereConfig.from_env()
        assert cfg.reasoning_model("production") == "my-chat"
        assert cfg.reasoning_model("quality") == "command-a-03-2025"

    def test_quality_model_from_env(self, monkeypatch):
        monkeypatch.setenv("GS_QUALITY_MODEL", "my-quality")
        assert CohereConfig.from_env().reasoning_model("quality") == "my-quality"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TestCohereClient:
    def test_retries_clamped_to_one(self):
        assert _client(max_retries=5).max_retries == 1
        assert _client(max_retries=0).max_retries == 0

    def test_base_url_trailing_slash_stripped(self):
        assert _client().base_url == "https://api.example.com/v2"

    def test_chat_text_sends_system_and_user_messages(self):
        client = _client()
        response = {"message": {"content": [{"type": "text", "text": '{"ok": true}'}]}}
        with patch.object(CohereClient, "_post_json", return_value=response) as post:
            text = client.chat_text(prompt="signals", system="rules", model="m")
        assert text == '{"ok": true}'
        path, payload = post.call_args.args
        assert path == "/chat"
        assert [m["role"] for m in payload["messages"]] == ["system", "user"]

    def test_embed_texts_parses_float_embeddings(self):
        client = _client()
        response = {"embeddings": {"float": [[0.1, 0.2], [0.3, 0.4]]}}
        with patch.object(CohereClient, "_post_json", return_value=response) as post:
            vectors = client.embed_texts(texts=["a", "b"], model="m", input_type="search_document")
        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        assert post.call_args.args[1]["input_type"] == "search_document"

    def test_embed_texts_shape_mismatch(self):
        client = _client()
        with patch.object(CohereClient, "_post_json", return_value={"embeddings": {"float": [[0.1]]}}):
            with pytest.raises(RuntimeError):
                client.embed_texts(texts=["a", "b"], model="m", input_type="search_query")

    def test_embed_texts_rejects_blank_input(self):
        with pytest.raises(ValueError):
            _client().embed_texts(texts=["a", "  "], model="m", input_type="search_query")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_run_with_timeout_returns_value(self):
        assert run_with_timeout("op", lambda: 42, 5) == 42

    def test_run_with_timeout_wraps_errors(self):
        def boom():
            raise KeyError("x")

        with pytest.raises(RuntimeError, match="op failed"):
            run_with_timeout("op", boom, 5)

    def test_run_with_timeout_times_out(self):
        with pytest.raises(RuntimeError, match="timed out"):
            run_with_timeout("slow op", lambda: time.sleep(1.5), 1)

    def test_api_key_from_private_config(self, tmp_path, monkeypatch):
        config_path = tmp_path / "cohere.json"
        config_path.write_text(json.dumps({"api_key": "secret", "base_url": "https://private/v2"}), encoding="utf-8")
        monkeypatch.setenv("GS_COHERE_CONFIG_PATH", str(config_path))

        assert api_key_configured()
        client = make_client()
        assert client.api_key == "secret"
        assert client.base_url == "https://private/v2"

    def test_make_client_without_key(self):
        assert not api_key_configured()
        with pytest.raises(RuntimeError):
            make_client()
