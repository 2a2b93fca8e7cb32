"""Cohere API helpers for chat/embed, model presets and private endpoint config."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import urllib.error
import urllib.request


_LOGGER = logging.getLogger(__name__)
_COHERE_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="cohere-call")

DEFAULT_BASE_URL = "https://api.cohere.com/v2"
DEFAULT_PRESET = "production"


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
    return value if value >= 0 else default


@dataclass(frozen=True)
class CohereConfig:
    chat_model: str
    fast_model: str
    quality_model: str
    embed_model: str
    default_preset: str

    @classmethod
    def from_env(cls) -> "CohereConfig":
        return cls(
            chat_model=os.getenv("GS_CHAT_MODEL", "command-r-08-2024"),
            fast_model=os.getenv("GS_FAST_MODEL", "command-r7b-12-2024"),
            quality_model=os.getenv("GS_QUALITY_MODEL", "command-a-03-2025"),
            embed_model=os.getenv("GS_EMBED_MODEL", "embed-v4.0"),
            default_preset=os.getenv("GS_DEFAULT_PRESET", DEFAULT_PRESET).strip() or DEFAULT_PRESET,
        )

    @property
    def presets(self) -> dict[str, str]:
        return {
            "production": self.chat_model,
            "fast": self.fast_model,
            "quality": self.quality_model,
        }

    def reasoning_model(self, preset: str | None = None) -> str:
        presets = self.presets
        key = (preset or "").strip().lower() or self.default_preset
        if key not in presets:
            _LOGGER.warning("Unknown model preset %r; using %r.", preset, self.default_preset)
            key = self.default_preset
        return presets.get(key, self.chat_model)


class CohereClient:
    def __init__(self, *, api_key: str, base_url: str, timeout_seconds: float, max_retries: int) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = max(1.0, float(timeout_seconds))
        # A single retry at most; a failing reasoning call must resolve quickly to the fallback.
        self.max_retries = max(0, min(int(max_retries), 1))

    def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = json.dumps(payload).encode("utf-8")
        endpoint = f"{self.base_url}{path}"
        request = urllib.request.Request(
            endpoint,
            data=body,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                    return json.loads(response.read().decode("utf-8"))
            except urllib.error.HTTPError as exc:
                response_body = exc.read().decode("utf-8", errors="ignore")
                retryable = exc.code in {408, 409, 429, 500, 502, 503, 504}
                if retryable and attempt < self.max_retries:
                    time.sleep(0.4 * (2**attempt))
                    continue
                raise RuntimeError(
                    f"Cohere request failed ({exc.code}) at {path}: {response_body or exc.reason}"
                ) from exc
            except urllib.error.URLError as exc:
                last_error = exc
                if attempt < self.max_retries:
                    time.sleep(0.4 * (2**attempt))
                    continue
                raise RuntimeError(f"Cohere request failed at {path}: {exc.reason}") from exc

        raise RuntimeError(f"Cohere request failed at {path}: {last_error}")

    @staticmethod
    def _extract_chat_text(payload: dict[str, Any]) -> str:
        message = payload.get("message")
        if not isinstance(message, dict):
            return ""

        content = message.get("content")
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            parts: list[str] = []
            for chunk in content:
                if isinstance(chunk, dict):
                    text = chunk.get("text")
                    if isinstance(text, str):
                        parts.append(text)
            return "\n".join(parts).strip()
        return ""

    @staticmethod
    def _extract_embeddings(payload: dict[str, Any]) -> list[list[float]]:
        embeddings = payload.get("embeddings")
        if isinstance(embeddings, list):
            rows = embeddings
        elif isinstance(embeddings, dict) and isinstance(embeddings.get("float"), list):
            rows = embeddings["float"]
        else:
            return []

        out: list[list[float]] = []
        for row in rows:
            if isinstance(row, list):
                try:
                    out.append([float(value) for value in row])
                except Exception:
                    continue
        return out

    def chat_text(
        self,
        *,
        prompt: str,
        model: str,
        system: str | None = None,
        temperature: float = 0.2,
    ) -> str:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        response = self._post_json("/chat", payload)
        return self._extract_chat_text(response)

    def embed_texts(
        self,
        *,
        texts: list[str],
        model: str,
        input_type: str,
    ) -> list[list[float]]:
        cleaned = [str(text).strip() for text in texts]
        if not cleaned:
            return []
        if any(not text for text in cleaned):
            raise ValueError("Embedding inputs must be non-empty strings.")

        payload = {
            "model": model,
            "texts": cleaned,
            "input_type": input_type,
            "embedding_types": ["float"],
        }
        response = self._post_json("/embed", payload)
        vectors = self._extract_embeddings(response)
        if len(vectors) != len(cleaned):
            raise RuntimeError("Cohere embedding response shape mismatch.")
        return vectors


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the first balanced ``{...}`` object found in free-form model output.

    Braces inside JSON strings are ignored while matching, so nested objects and
    prose before or after the object (including markdown fences) are tolerated.
    """
    raw = text or ""
    start = raw.find("{")
    if start == -1:
        raise ValueError("Model response does not contain a JSON object.")

    depth = 0
    in_string = False
    escaped = False
    end = -1
    for index in range(start, len(raw)):
        ch = raw[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                end = index
                break

    if end == -1:
        raise ValueError(f"Unbalanced JSON object in model response: {raw[start:start + 200]}")

    parsed = json.loads(raw[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Model response JSON is not an object.")
    return parsed


def run_with_timeout(operation: str, fn, timeout_seconds: float):
    safe_timeout = max(1.0, float(timeout_seconds))
    future = _COHERE_EXECUTOR.submit(fn)
    try:
        return future.result(timeout=safe_timeout)
    except FutureTimeoutError as exc:
        future.cancel()
        raise RuntimeError(f"{operation} timed out after {int(round(safe_timeout))}s.") from exc
    except Exception as exc:
        raise RuntimeError(f"{operation} failed: {exc}") from exc


def _load_private_endpoint_overrides() -> dict[str, Any]:
    config_path = os.getenv("GS_COHERE_CONFIG_PATH", "").strip()
    if not config_path:
        return {}

    path = Path(config_path)
    if not path.exists() or not path.is_file():
        return {}

    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        _LOGGER.warning("Ignoring unreadable Cohere config at %s.", config_path)
        return {}

    if not isinstance(parsed, dict):
        return {}
    return parsed


def api_key_configured() -> bool:
    if os.getenv("COHERE_API_KEY", "").strip():
        return True
    return bool(str(_load_private_endpoint_overrides().get("api_key", "")).strip())


def make_client() -> CohereClient:
    overrides = _load_private_endpoint_overrides()

    api_key = os.getenv("COHERE_API_KEY", "").strip()
    if not api_key:
        api_key = str(overrides.get("api_key", "")).strip()
    if not api_key:
        raise RuntimeError("COHERE_API_KEY is not set.")

    timeout_seconds = _env_float("GS_COHERE_TIMEOUT_SECONDS", float(overrides.get("timeout_seconds", 20.0) or 20.0))
    max_retries = _env_int("GS_COHERE_MAX_RETRIES", int(overrides.get("max_retries", 1) or 1))
    base_url = os.getenv("COHERE_API_BASE_URL", "").strip() or str(
        overrides.get("base_url", DEFAULT_BASE_URL)
    ).strip()

    return CohereClient(
        api_key=api_key,
        base_url=base_url or DEFAULT_BASE_URL,
        timeout_seconds=timeout_seconds,
        max_retries=max_retries,
    )
