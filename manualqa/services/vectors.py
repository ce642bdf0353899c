"""
Vector Math

Cosine similarity and L2 normalization over plain float sequences.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from manualqa.core.errors import DimensionMismatch


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector has zero norm. The result is clamped
    to [-1, 1] to absorb floating point drift.

    Raises:
        DimensionMismatch: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatch(
            f"Cannot compare vectors of length {len(a)} and {len(b)}"
        )

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0

    score = float(np.dot(va, vb)) / magnitude
    return max(-1.0, min(1.0, score))


def l2_normalize(vector: Sequence[float]) -> list[float]:
    """Scale to unit length. A zero vector is returned unchanged."""
    v = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(v))
    if norm == 0.0:
        return v.tolist()
    return (v / norm).tolist()
