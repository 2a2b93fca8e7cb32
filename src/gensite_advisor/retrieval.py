"""Dense retrieval helpers."""

from __future__ import annotations

import numpy as np


def top_k_cosine(
    query: np.ndarray,
    embeddings: np.ndarray,
    norms: np.ndarray,
    k: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Return row indices and cosine scores of the ``k`` rows closest to ``query``."""
    if embeddings.ndim != 2 or embeddings.shape[0] == 0 or k <= 0:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float32)
    if query.shape[0] != embeddings.shape[1]:
        raise ValueError(
            f"Query dimension {query.shape[0]} does not match index dimension {embeddings.shape[1]}."
        )

    query_norm = float(np.linalg.norm(query))
    denom = norms * (query_norm if query_norm > 0 else 1.0)
    denom = np.where(denom > 0, denom, 1.0)
    scores = (embeddings @ query) / denom

    k = min(int(k), scores.shape[0])
    if k < scores.shape[0]:
        candidates = np.argpartition(-scores, k - 1)[:k]
    else:
        candidates = np.arange(scores.shape[0])
    order = candidates[np.argsort(-scores[candidates], kind="stable")]
    return order, scores[order].astype(np.float32)
