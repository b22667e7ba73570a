"""Deterministic text embeddings and vector similarity.

Provides a hashed bag-of-words embedding: each lowercased token is hashed
with MD5 into one of EMBEDDING_DIM buckets, bucket counts are accumulated
and the vector is L2-normalized. The function is a placeholder for a
semantic model, so every consumer receives it as an ``Embedder`` callable
and never hashes text itself.

Vectors are numpy float32 arrays and are stored in SQLite as raw float32
BLOBs.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable, Iterable, Sequence

import numpy as np

EMBEDDING_DIM = 128

_TOKEN_RE = re.compile(r"\w+")

Embedder = Callable[[str], np.ndarray]
"""Signature shared by every component that needs text embeddings."""


def _tokenize(text: str) -> list[str]:
    lowered = text.lower()
    tokens = _TOKEN_RE.findall(lowered)
    # Text made only of punctuation still gets a non-zero vector
    return tokens or lowered.split()


def _bucket(token: str) -> int:
    digest = hashlib.md5(token.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") % EMBEDDING_DIM


def embed(text: str) -> np.ndarray:
    """Embed text into a unit-length vector of EMBEDDING_DIM floats.

    Identical text always yields identical vectors. Empty or blank text
    yields the zero vector, the only non-unit output.

    Args:
        text: Text to embed.

    Returns:
        float32 array of shape (EMBEDDING_DIM,).
    """
    vector = np.zeros(EMBEDDING_DIM, dtype=np.float32)
    for token in _tokenize(text or ""):
        vector[_bucket(token)] += 1.0
    norm = float(np.linalg.norm(vector))
    if norm > 0:
        vector /= norm
    return vector


def embed_batch(texts: Iterable[str], embedder: Embedder = embed) -> list[np.ndarray]:
    """Embed several texts in order."""
    return [embedder(text) for text in texts]


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: If the vectors have different lengths.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(
            f"Vectors must have the same dimensions: {va.shape[0]} != {vb.shape[0]}"
        )
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def calculate_centroid(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """Unit-normalized mean of a set of vectors.

    Raises:
        ValueError: If no vectors are given.
    """
    if len(vectors) == 0:
        raise ValueError("Cannot calculate centroid of an empty set of vectors")
    centroid = np.mean(np.vstack(vectors), axis=0).astype(np.float32)
    norm = float(np.linalg.norm(centroid))
    if norm > 0:
        centroid /= norm
    return centroid


def similarity_matrix(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """Pairwise cosine similarities; rows with zero norm are all zeros."""
    if len(vectors) == 0:
        return np.zeros((0, 0), dtype=np.float64)
    matrix = np.vstack(vectors).astype(np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms == 0.0, 1.0, norms)
    unit = np.where(norms == 0.0, 0.0, matrix / safe)
    return unit @ unit.T


def cluster_by_similarity(vectors: Sequence[np.ndarray], threshold: float) -> list[list[int]]:
    """Group vector indices into connected components of the similarity graph.

    Two indices share a component when a chain of pairs with similarity at
    or above ``threshold`` links them. Components are ordered by their
    smallest index and list indices in ascending order, so the grouping is
    independent of pair visiting order and re-clustering merged output
    yields singletons only.

    Args:
        vectors: Vectors to cluster.
        threshold: Minimum pair similarity for an edge.

    Returns:
        List of index groups covering every input index exactly once.
    """
    count = len(vectors)
    parent = list(range(count))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    sims = similarity_matrix(vectors)
    rows, cols = np.nonzero(np.triu(sims >= threshold, k=1))
    for i, j in zip(rows.tolist(), cols.tolist(), strict=True):
        root_i, root_j = find(i), find(j)
        if root_i != root_j:
            parent[max(root_i, root_j)] = min(root_i, root_j)

    groups: dict[int, list[int]] = {}
    for i in range(count):
        groups.setdefault(find(i), []).append(i)
    return [groups[root] for root in sorted(groups)]


def to_blob(vector: np.ndarray) -> bytes:
    """Serialize a vector to a float32 BLOB."""
    return np.asarray(vector, dtype=np.float32).tobytes()


def from_blob(blob: bytes | None) -> np.ndarray | None:
    """Deserialize a float32 BLOB, or None for a NULL column."""
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).copy()


__all__ = [
    "EMBEDDING_DIM",
    "Embedder",
    "calculate_centroid",
    "cluster_by_similarity",
    "cosine_similarity",
    "embed",
    "embed_batch",
    "from_blob",
    "similarity_matrix",
    "to_blob",
]
