"""Composite lost/found confidence, 0-100.

Two weighting policies exist and are never blended:

- ``semantic`` (canonical): 0.15 time + 0.25 distance + 0.60 text, where text is
  the LLM same-object judgment (lexical fallback).
- ``attribute``: 0.3 distance + 0.2 time + 0.3 text + 0.2 category, where text is
  0.6 embedding cosine + 0.4 attribute Jaccard and category is 100 on an exact
  category match (the flat +20).

Corroborating signals (embedding cosine, attribute Jaccard, image cosine) are
always reported in the breakdown.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from reunite.domain.errors import DimensionMismatch, ValidationError
from reunite.models.reports import Report, ScoreBreakdown, ScoreResult
from reunite.scripts.logging_config import log_score_breakdown
from reunite.services import geo_time
from reunite.services.text_similarity import TextSimilarityScorer
from reunite.services.vector_similarity import cosine, jaccard, max_pairwise_cosine


@dataclass(frozen=True)
class ScoringWeights:
    policy: str
    time: float
    distance: float
    text: float
    category: float = 0.0
    # attribute policy only: split of the text component
    text_cosine_share: float = 0.6
    text_jaccard_share: float = 0.4


SEMANTIC_WEIGHTS = ScoringWeights(policy="semantic", time=0.15, distance=0.25, text=0.60)
ATTRIBUTE_WEIGHTS = ScoringWeights(policy="attribute", time=0.2, distance=0.3, text=0.3, category=0.2)

POLICIES = {
    "semantic": SEMANTIC_WEIGHTS,
    "attribute": ATTRIBUTE_WEIGHTS,
}


def weights_for(policy: str) -> ScoringWeights:
    try:
        return POLICIES[policy.lower()]
    except KeyError:
        raise ValidationError(f"unknown scoring policy: {policy}") from None


def _embedding_similarity(lost: Report, found: Report) -> Optional[float]:
    if not lost.text_embedding or not found.text_embedding:
        return None
    try:
        return cosine(lost.text_embedding, found.text_embedding)
    except DimensionMismatch:
        return None


def _same_category(lost: Report, found: Report) -> bool:
    return lost.category.strip().lower() == found.category.strip().lower()


class ScoringEngine:
    def __init__(self, text_scorer: TextSimilarityScorer, weights: ScoringWeights = SEMANTIC_WEIGHTS):
        self.text_scorer = text_scorer
        self.weights = weights

    def score(self, lost: Report, found: Report) -> ScoreResult:
        if lost.kind != "lost" or found.kind != "found":
            raise ValidationError(f"score expects (lost, found), got ({lost.kind}, {found.kind})")
        w = self.weights

        t_score = geo_time.time_score(lost.occurred_at, found.occurred_at)
        d_score = geo_time.distance_score(lost.location, found.location)
        attr_sim = jaccard(lost.attributes, found.attributes)
        emb_sim = _embedding_similarity(lost, found)
        img_sim = max_pairwise_cosine(lost.image_embeddings, found.image_embeddings)
        cat_score = 100.0 if _same_category(lost, found) else 0.0

        if w.policy == "attribute" and emb_sim is not None:
            text = (w.text_cosine_share * max(emb_sim, 0.0) + w.text_jaccard_share * attr_sim) * 100.0
            source = "embedding"
        else:
            text, source = self.text_scorer.score(lost.title, lost.description, found.title, found.description)

        composite = t_score * w.time + d_score * w.distance + text * w.text + cat_score * w.category
        composite = round(geo_time.clamp(composite), 2)

        breakdown = ScoreBreakdown(
            time_score=round(t_score, 2),
            distance_score=round(d_score, 2),
            text_score=round(float(text), 2),
            text_source=source,
            category_score=cat_score,
            attribute_similarity=round(attr_sim, 4),
            embedding_similarity=round(emb_sim, 4) if emb_sim is not None else None,
            image_similarity=round(img_sim, 4) if img_sim is not None else None,
            policy=w.policy,
        )
        log_score_breakdown(lost.id, found.id, composite, breakdown.model_dump())
        return ScoreResult(composite=composite, breakdown=breakdown)
