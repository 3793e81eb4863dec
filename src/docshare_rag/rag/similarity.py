"""Vector similarity scoring."""

from collections.abc import Sequence

import numpy as np
from numpy.linalg import norm


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors, in [-1, 1].

    Returns 0.0 when either vector is all zeros or when the dimensions differ.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0

    magnitude = norm(va) * norm(vb)
    if magnitude == 0:
        return 0.0

    score = np.dot(va, vb) / magnitude
    if not np.isfinite(score):
        return 0.0
    return float(np.clip(score, -1.0, 1.0))
