"""Vector index over SQLite with numpy cosine search.

Vectors are replaced whole on upsert (embedding and metadata together), keyed by
their stable id, so re-indexing an item overwrites instead of duplicating it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

import numpy as np

from gensite_advisor.db import AdvisorDB
from gensite_advisor.retrieval import top_k_cosine


_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class VectorRecord:
    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return str(self.metadata.get("content_type") or "")


class SQLiteVectorIndex:
    def __init__(self, db: AdvisorDB) -> None:
        self.db = db

    def upsert(self, vectors: list[VectorRecord]) -> int:
        rows: list[tuple[str, str, int, bytes, dict[str, Any]]] = []
        for record in vectors:
            values = np.asarray(record.values, dtype=np.float32)
            if values.ndim != 1 or values.shape[0] == 0:
                raise ValueError(f"Vector {record.id!r} must be a non-empty 1-D list of floats.")
            rows.append((record.id, record.content_type, int(values.shape[0]), values.tobytes(), dict(record.metadata)))
        if rows:
            self.db.upsert_vectors(rows)
        return len(rows)

    def query(
        self,
        vector: list[float],
        *,
        top_k: int = 5,
        filter: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        query_vector = np.asarray(vector, dtype=np.float32)
        conditions = dict(filter or {})
        content_type = conditions.pop("content_type", None)

        rows = [
            row
            for row in self.db.list_vectors(str(content_type) if content_type is not None else None)
            if row["dim"] == query_vector.shape[0]
            and all(row["metadata"].get(key) == value for key, value in conditions.items())
        ]
        if not rows:
            return []

        embeddings = np.vstack([np.frombuffer(row["vector"], dtype=np.float32) for row in rows])
        norms = np.linalg.norm(embeddings, axis=1).astype(np.float32)
        idx, scores = top_k_cosine(query_vector, embeddings, norms, max(1, int(top_k)))
        return [
            {
                "id": rows[int(row_idx)]["id"],
                "score": float(score),
                "metadata": rows[int(row_idx)]["metadata"],
            }
            for row_idx, score in zip(idx, scores)
        ]

    def describe(self) -> dict[str, Any]:
        counts = self.db.vector_counts()
        dimensions = self.db.vector_dimensions()
        if len(dimensions) > 1:
            _LOGGER.warning("Vector index holds mixed dimensions: %s", dimensions)
        return {
            "vectorCount": sum(counts.values()),
            "dimensions": dimensions[0] if len(dimensions) == 1 else dimensions,
            "contentTypes": counts,
        }
