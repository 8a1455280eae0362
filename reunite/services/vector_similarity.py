"""Cosine similarity over embedding vectors and Jaccard over attribute maps."""
from __future__ import annotations

from typing import Dict, Optional, Sequence

import numpy as np

from reunite.domain.errors import DimensionMismatch


def cosine(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    a = np.asarray(vec_a, dtype="float64").ravel()
    b = np.asarray(vec_b, dtype="float64").ravel()
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatch(a.shape[0], b.shape[0])
    na = np.linalg.norm(a)
    nb = np.linalg.norm(b)
    if na == 0 or nb == 0:
        return 0.0
    sim = float(np.dot(a, b) / (na * nb))
    # float error can push |sim| a hair past 1
    return max(-1.0, min(1.0, sim))


def _pairs(attrs: Optional[Dict[str, str]]) -> set:
    return {f"{k}:{v}" for k, v in (attrs or {}).items()}


def jaccard(attrs_a: Optional[Dict[str, str]], attrs_b: Optional[Dict[str, str]]) -> float:
    set_a = _pairs(attrs_a)
    set_b = _pairs(attrs_b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def max_pairwise_cosine(vectors_a: Sequence[Sequence[float]],
                        vectors_b: Sequence[Sequence[float]]) -> Optional[float]:
    """Best cosine across two sets of image embeddings; None if either is empty."""
    best: Optional[float] = None
    for va in vectors_a or []:
        for vb in vectors_b or []:
            try:
                sim = cosine(va, vb)
            except DimensionMismatch:
                continue
            if best is None or sim > best:
                best = sim
    return best
