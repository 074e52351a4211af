"""Vector math shared by the vector store and the pipeline."""

from typing import Sequence

import numpy as np


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two embedding vectors.

    Formula: cos(θ) = (a · b) / (||a|| × ||b||)

    Args:
        vec1: First embedding vector
        vec2: Second embedding vector

    Returns:
        Similarity score from -1 (opposite) to 1 (identical).
        Returns 0.0 if either vector has zero magnitude.

    Raises:
        ValueError: If the vectors differ in length
    """
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)

    if a.shape != b.shape:
        raise ValueError(f"Vectors must have the same length ({a.size} != {b.size})")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    # Guard against floating point drift outside [-1, 1]
    return max(-1.0, min(1.0, similarity))


def normalize(vector: Sequence[float]) -> list:
    """Scale a vector to unit length; zero vectors are returned unchanged."""
    arr = np.asarray(vector, dtype=float)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr.tolist()
    return (arr / norm).tolist()
