from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence

from config import settings
from reunite.domain.errors import DimensionMismatch, DuplicateSubmission
from reunite.models.reports import utcnow
from reunite.scripts.logging_config import get_logger
from reunite.services.store import ReportStore
from reunite.services.vector_similarity import cosine

logger = get_logger("matching")

DUPLICATE_MESSAGE = "You posted a very similar item recently. Please wait before posting duplicates."


class DuplicateGuard:
    """Rejects a report that repeats one of the owner's recent reports.

    Same owner, kind and category, created within the window, and text
    embedding cosine above the threshold. Reports without a usable embedding
    never count as duplicates.
    """

    def __init__(self, reports: ReportStore, window_hours: Optional[float] = None,
                 threshold: Optional[float] = None):
        self.reports = reports
        self.window = timedelta(hours=window_hours if window_hours is not None else settings.DUPLICATE_WINDOW_HOURS)
        self.threshold = threshold if threshold is not None else settings.DUPLICATE_SIMILARITY_THRESHOLD

    def check(self, owner_id: str, kind: str, category: str,
              text_embedding: Optional[Sequence[float]], now: Optional[datetime] = None) -> None:
        if not text_embedding:
            return
        since = (now or utcnow()) - self.window
        recent = self.reports.query(kind=kind, owner_id=owner_id, category=category, created_after=since)
        for prior in recent:
            if not prior.text_embedding:
                continue
            try:
                sim = cosine(text_embedding, prior.text_embedding)
            except DimensionMismatch:
                continue
            if sim > self.threshold:
                logger.info("duplicate submission blocked owner=%s prior=%s cosine=%.4f", owner_id, prior.id, sim)
                raise DuplicateSubmission(DUPLICATE_MESSAGE)
