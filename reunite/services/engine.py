"""Wires stores, capabilities and services from settings.

The API routers and scripts share one Engine per process via ``get_engine()``;
tests build their own with explicit parts.
"""
from __future__ import annotations

from typing import Optional

from config import settings
from reunite.scripts.logging_config import get_logger
from reunite.services.candidate_matcher import CandidateMatcher
from reunite.services.claims import ClaimStateMachine
from reunite.services.duplicate_guard import DuplicateGuard
from reunite.services.embeddings import EmbeddingService, get_embedding_service
from reunite.services.memory_store import create_memory_stores
from reunite.services.notifications import NotificationService, NotificationSink, StoreNotificationSink
from reunite.services.report_service import ReportService
from reunite.services.scoring import ScoringEngine, ScoringWeights, weights_for
from reunite.services.semantic_judge import LLMSemanticJudge, SemanticJudge
from reunite.services.store import Stores
from reunite.services.text_similarity import TextSimilarityScorer

logger = get_logger("engine")


def create_stores(backend: Optional[str] = None) -> Stores:
    backend = (backend or settings.STORE_BACKEND).lower()
    if backend == "firestore":
        from reunite.services.firestore_store import create_firestore_stores
        return create_firestore_stores()
    if backend != "memory":
        logger.warning("unknown STORE_BACKEND=%s, using memory", backend)
    return create_memory_stores()


class Engine:
    def __init__(self, stores: Stores, embedder: EmbeddingService,
                 judge: Optional[SemanticJudge] = None,
                 weights: Optional[ScoringWeights] = None,
                 sink: Optional[NotificationSink] = None):
        self.stores = stores
        self.embedder = embedder
        self.sink = sink or StoreNotificationSink(stores.notifications)
        self.text_scorer = TextSimilarityScorer(judge=judge)
        self.scoring = ScoringEngine(self.text_scorer, weights or weights_for(settings.SCORING_POLICY))
        self.matcher = CandidateMatcher(stores, self.scoring, embedder, self.sink)
        self.claims = ClaimStateMachine(stores, self.sink, scoring=self.scoring,
                                        pair_locks=self.matcher.pair_locks)
        self.reports = ReportService(stores, embedder, self.matcher, DuplicateGuard(stores.reports))
        self.notifications = NotificationService(stores.notifications)

    def close(self) -> None:
        self.matcher.close()
        self.text_scorer.close()


_singleton: Optional[Engine] = None


def get_engine() -> Engine:
    global _singleton
    if _singleton:
        return _singleton
    _singleton = Engine(
        stores=create_stores(),
        embedder=get_embedding_service(),
        judge=LLMSemanticJudge(),
        weights=weights_for(settings.SCORING_POLICY),
    )
    logger.info("engine ready store=%s policy=%s embedder=%s",
                settings.STORE_BACKEND, settings.SCORING_POLICY, _singleton.embedder.name)
    return _singleton


def set_engine(engine: Optional[Engine]) -> None:
    global _singleton
    if _singleton is not None and _singleton is not engine:
        _singleton.close()
    _singleton = engine
