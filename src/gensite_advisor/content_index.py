"""Builds searchable text for recipes and hero images, embeds them in batches and queries the index."""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import logging
from typing import Any

from gensite_advisor.cohere_utils import CohereClient, CohereConfig, run_with_timeout
from gensite_advisor.vector_store import SQLiteVectorIndex, VectorRecord


_LOGGER = logging.getLogger(__name__)

RECIPE = "recipe"
HERO_IMAGE = "hero-image"
CONTENT_TYPES = (RECIPE, HERO_IMAGE)

METADATA_TEXT_LIMIT = 2000
DEFAULT_BATCH_SIZE = 100


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _joined(values: Any, separator: str = ", ") -> str:
    if not isinstance(values, list):
        return ""
    return separator.join(_text(value) for value in values if _text(value))


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _url_hash(url: str, length: int) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:length]


def build_recipe_search_text(recipe: dict[str, Any]) -> str:
    parts = [_text(recipe.get("name"))]
    if _text(recipe.get("description")):
        parts.append(_text(recipe.get("description")))
    if _text(recipe.get("category")):
        parts.append(f"Category: {_text(recipe.get('category'))}")
    if _text(recipe.get("subcategory")):
        parts.append(f"Type: {_text(recipe.get('subcategory'))}")

    ingredients = recipe.get("ingredients")
    if isinstance(ingredients, list):
        items = [
            _text(ingredient.get("item")) if isinstance(ingredient, dict) else _text(ingredient)
            for ingredient in ingredients
        ]
        items = [item for item in items if item]
        if items:
            parts.append(f"Ingredients: {', '.join(items)}")

    dietary = _joined(recipe.get("dietaryTags"))
    if dietary:
        parts.append(f"Dietary: {dietary}")

    for label, key in (
        ("Difficulty", "difficulty"),
        ("Time", "totalTime"),
        ("Container", "requiredContainer"),
        ("Program", "recommendedProgram"),
    ):
        if _text(recipe.get(key)):
            parts.append(f"{label}: {_text(recipe.get(key))}")

    return ". ".join(part for part in parts if part)


def build_hero_image_search_text(image: dict[str, Any]) -> str:
    parts = [
        _text(image.get("content_description")),
        f"Category: {_text(image.get('primary_category'))}",
        f"Mood: {_text(image.get('mood'))}",
    ]
    tags = _joined(image.get("secondary_tags"))
    if tags:
        parts.append(f"Style: {tags}")
    colors = _joined(image.get("dominant_colors"))
    if colors:
        parts.append(f"Colors: {colors}")
    parts.append(
        f"Layout: {_text(image.get('aspect_ratio'))}, text placement {_text(image.get('text_placement'))}, "
        f"{_text(image.get('background_tone'))} background"
    )
    return ". ".join(part for part in parts if part)


def build_search_text(item: dict[str, Any], content_type: str = RECIPE) -> str:
    if content_type == HERO_IMAGE:
        return build_hero_image_search_text(item)
    return build_recipe_search_text(item)


def recipe_vector_id(recipe: dict[str, Any]) -> str:
    recipe_id = _text(recipe.get("id"))
    if recipe_id:
        return f"recipe-{recipe_id}"
    url = _text(recipe.get("url"))
    if not url:
        raise ValueError("Recipe needs an id or url to derive a vector id.")
    return f"recipe-{_url_hash(url, 16)}"


def hero_image_vector_id(image: dict[str, Any]) -> str:
    url = _text(image.get("url"))
    if not url:
        raise ValueError("Hero image needs a url to derive a vector id.")
    # Media URLs carry a content hash: .../media_<hash>.jpg?width=...
    if "media_" in url:
        fragment = url.split("media_", 1)[1].split(".", 1)[0]
        if fragment:
            return f"hero-{fragment}"
    return f"hero-{_url_hash(url, 32)}"


def build_recipe_vector(recipe: dict[str, Any], embedding: list[float]) -> VectorRecord:
    servings = recipe.get("servings")
    images = recipe.get("images") if isinstance(recipe.get("images"), dict) else {}
    return VectorRecord(
        id=recipe_vector_id(recipe),
        values=list(embedding),
        metadata={
            "content_type": RECIPE,
            "source_url": _text(recipe.get("url")),
            "page_title": _text(recipe.get("name")),
            "chunk_text": build_recipe_search_text(recipe)[:METADATA_TEXT_LIMIT],
            "recipe_category": _text(recipe.get("category")),
            "recipe_image_url": _text(images.get("primary")),
            "difficulty": _text(recipe.get("difficulty")),
            "dietary_tags": _joined(recipe.get("dietaryTags"), ","),
            "servings": str(servings) if servings is not None else "",
            "total_time": _text(recipe.get("totalTime")),
            "indexed_at": _utc_now(),
        },
    )


def build_hero_image_vector(image: dict[str, Any], embedding: list[float]) -> VectorRecord:
    quality = image.get("quality_score")
    return VectorRecord(
        id=hero_image_vector_id(image),
        values=list(embedding),
        metadata={
            "content_type": HERO_IMAGE,
            "source_url": _text(image.get("url")),
            "chunk_text": build_hero_image_search_text(image)[:METADATA_TEXT_LIMIT],
            "primary_category": _text(image.get("primary_category")),
            "secondary_tags": _joined(image.get("secondary_tags"), ","),
            "mood": _text(image.get("mood")),
            "dominant_colors": _joined(image.get("dominant_colors"), ","),
            "text_placement": _text(image.get("text_placement")),
            "background_tone": _text(image.get("background_tone")),
            "aspect_ratio": _text(image.get("aspect_ratio")),
            "quality_score": str(quality) if quality is not None else "",
            "indexed_at": _utc_now(),
        },
    )


_VECTOR_BUILDERS = {
    RECIPE: build_recipe_vector,
    HERO_IMAGE: build_hero_image_vector,
}


class ContentIndexer:
    def __init__(
        self,
        *,
        client: CohereClient,
        index: SQLiteVectorIndex,
        config: CohereConfig | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        request_timeout_seconds: float = 20.0,
    ) -> None:
        self.client = client
        self.index = index
        self.cfg = config or CohereConfig.from_env()
        self.batch_size = max(1, int(batch_size))
        self.request_timeout_seconds = request_timeout_seconds

    def _embed(self, texts: list[str], *, input_type: str) -> list[list[float]]:
        return run_with_timeout(
            "Embedding request",
            lambda: self.client.embed_texts(texts=texts, model=self.cfg.embed_model, input_type=input_type),
            self.request_timeout_seconds,
        )

    def embed_batch(
        self,
        items: list[dict[str, Any]],
        *,
        content_type: str = RECIPE,
        batch_size: int | None = None,
    ) -> dict[str, Any]:
        """Embed and upsert items batch by batch; a failed batch is recorded and skipped."""
        if content_type not in _VECTOR_BUILDERS:
            raise ValueError(f"content_type must be one of: {', '.join(CONTENT_TYPES)}")
        build_vector = _VECTOR_BUILDERS[content_type]
        size = max(1, int(batch_size or self.batch_size))

        processed = 0
        batches = 0
        failed_batches = 0
        errors: list[str] = []

        for batch_number, start in enumerate(range(0, len(items), size), start=1):
            batch = items[start : start + size]
            try:
                texts = [build_search_text(item, content_type) for item in batch]
                embeddings = self._embed(texts, input_type="search_document")
                if len(embeddings) != len(batch):
                    raise RuntimeError(f"expected {len(batch)} embeddings, got {len(embeddings)}")
                vectors = [build_vector(item, embedding) for item, embedding in zip(batch, embeddings)]
                self.index.upsert(vectors)
            except (RuntimeError, ValueError) as exc:
                failed_batches += 1
                errors.append(f"Batch {batch_number}: {exc}")
                _LOGGER.warning("Embedding batch %d (%d %s items) failed: %s", batch_number, len(batch), content_type, exc)
                continue

            processed += len(batch)
            batches += 1
            _LOGGER.info("Processed batch %d: %d %s items", batch_number, len(batch), content_type)

        attempted = batches + failed_batches
        return {
            "success": attempted == 0 or batches > 0,
            "processed": processed,
            "batches": batches,
            "errors": errors,
            "total": len(items),
        }

    def embed_single(self, recipe: dict[str, Any]) -> dict[str, Any]:
        recipe_vector_id(recipe)  # raises before any embedding call when the recipe has no id or url
        text = build_recipe_search_text(recipe)
        embeddings = self._embed([text], input_type="search_document")
        if len(embeddings) != 1:
            raise RuntimeError("Embedding service returned an unexpected vector count.")
        vector = build_recipe_vector(recipe, embeddings[0])
        self.index.upsert([vector])
        return {"success": True, "id": vector.id, "textLength": len(text)}

    def query(self, text: str, *, top_k: int = 5, content_type: str | None = None) -> dict[str, Any]:
        cleaned = text.strip()
        if not cleaned:
            raise ValueError("Query text is required.")
        if content_type is not None and content_type not in CONTENT_TYPES:
            raise ValueError(f"contentType must be one of: {', '.join(CONTENT_TYPES)}")

        embeddings = self._embed([cleaned], input_type="search_query")
        if not embeddings:
            raise RuntimeError("Embedding service returned no vector for the query.")

        matches = self.index.query(
            embeddings[0],
            top_k=max(1, int(top_k)),
            filter={"content_type": content_type} if content_type else None,
        )
        return {
            "query": cleaned,
            "contentType": content_type or "all",
            "results": [
                {
                    "id": match["id"],
                    "score": match["score"],
                    "title": match["metadata"].get("page_title"),
                    "category": match["metadata"].get("recipe_category") or match["metadata"].get("primary_category"),
                    "mood": match["metadata"].get("mood"),
                    "url": match["metadata"].get("source_url"),
                }
                for match in matches
            ],
        }

    def status(self) -> dict[str, Any]:
        return {"status": "ok", "index": self.index.describe(), "embedModel": self.cfg.embed_model}
