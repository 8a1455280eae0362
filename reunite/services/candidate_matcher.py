"""Candidate discovery for a newly persisted report.

Scan: opposite-kind open reports -> eligibility (time direction) -> parallel
scoring on a bounded pool -> threshold -> deterministic order -> persist
pending matches and notify both owners.

Invariant: a Match always pairs one lost and one found report, and the found
event is never earlier than the lost event minus the reporting-delay window.
"""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import List, Optional, Tuple

from config import settings
from reunite.domain import report_schema as schema
from reunite.domain.errors import EmbeddingUnavailable, NotFound, Unauthorized, ValidationError
from reunite.models.reports import Match, PotentialMatch, Report, ScoreResult
from reunite.scripts.logging_config import get_logger, log_match_event, log_scan_summary
from reunite.services.embeddings import EmbeddingService
from reunite.services.locks import KeyedLock
from reunite.services.notifications import NotificationSink, safe_notify
from reunite.services.scoring import ScoringEngine
from reunite.services.store import Stores

logger = get_logger("matching")

Scored = Tuple[Report, ScoreResult]


def as_pair(report: Report, candidate: Report) -> Tuple[Report, Report]:
    """(lost, found) regardless of which side is the new report."""
    return (report, candidate) if report.kind == "lost" else (candidate, report)


def embedding_text(report: Report) -> str:
    return f"{report.title} {report.description}".strip()


class CandidateMatcher:
    def __init__(self, stores: Stores, scoring: ScoringEngine, embedder: EmbeddingService,
                 sink: NotificationSink, auto_threshold: Optional[float] = None,
                 potential_threshold: Optional[float] = None,
                 pre_lost_window_hours: Optional[float] = None,
                 max_workers: Optional[int] = None):
        self.stores = stores
        self.scoring = scoring
        self.embedder = embedder
        self.sink = sink
        self.auto_threshold = auto_threshold if auto_threshold is not None else settings.AUTO_MATCH_THRESHOLD
        self.potential_threshold = (potential_threshold if potential_threshold is not None
                                    else settings.POTENTIAL_MATCH_THRESHOLD)
        self.pre_lost_window = timedelta(hours=pre_lost_window_hours if pre_lost_window_hours is not None
                                         else settings.PRE_LOST_WINDOW_HOURS)
        self._pool = ThreadPoolExecutor(max_workers=max_workers or settings.MATCH_WORKERS,
                                        thread_name_prefix="score")
        self.pair_locks = KeyedLock()

    # ------------------------------------------------------------------
    # candidate selection
    # ------------------------------------------------------------------
    def eligible(self, lost: Report, found: Report) -> bool:
        if lost.kind != "lost" or found.kind != "found":
            return False
        return found.occurred_at >= lost.occurred_at - self.pre_lost_window

    def open_candidates(self, report: Report) -> List[Report]:
        out = []
        for cand in self.stores.reports.query(kind=schema.opposite_kind(report.kind),
                                              statuses=schema.OPEN_REPORT_STATUSES):
            if cand.id == report.id or cand.owner_id == report.owner_id:
                continue
            if self.eligible(*as_pair(report, cand)):
                out.append(cand)
        return out

    def _ensure_embedding(self, report: Report) -> Optional[Report]:
        if report.text_embedding:
            return report
        try:
            vec = self.embedder.embed_text(embedding_text(report))
        except EmbeddingUnavailable as e:
            logger.warning("candidate skipped, no embedding report=%s reason=%s", report.id, e.reason)
            return None
        try:
            return self.stores.reports.update_fields(report.id, {"text_embedding": vec})
        except NotFound:
            logger.info("candidate deleted while embedding report=%s", report.id)
            return None

    # ------------------------------------------------------------------
    # scoring
    # ------------------------------------------------------------------
    def _score_one(self, report: Report, cand: Report) -> Optional[Scored]:
        try:
            lost, found = as_pair(report, cand)
            return cand, self.scoring.score(lost, found)
        except Exception as e:
            logger.error("scoring failed report=%s candidate=%s err=%s: %s",
                         report.id, cand.id, type(e).__name__, e)
            return None

    def score_candidates(self, report: Report, candidates: List[Report]) -> List[Scored]:
        """Score every candidate in parallel; sorted by composite desc, then id."""
        futures = [self._pool.submit(self._score_one, report, c) for c in candidates]
        results = [r for r in (f.result() for f in futures) if r is not None]
        results.sort(key=lambda item: (-item[1].composite, item[0].id))
        return results

    # ------------------------------------------------------------------
    # persisted auto matches
    # ------------------------------------------------------------------
    def match_new_report(self, report: Report) -> List[Match]:
        """Persist pending matches above the auto threshold.

        Raises EmbeddingUnavailable if ``report`` has no text embedding; the
        caller keeps the report and surfaces a warning.
        """
        if not report.text_embedding:
            logger.error("matching skipped, report %s has no text embedding", report.id)
            raise EmbeddingUnavailable(f"report {report.id} has no text embedding; matching skipped")
        t0 = time.time()
        candidates = self.open_candidates(report)
        ready = [c for c in (self._ensure_embedding(c) for c in candidates)
                 if c is not None and c.status in schema.OPEN_REPORT_STATUSES]
        scored = self.score_candidates(report, ready)
        accepted = [(c, s) for c, s in scored if s.composite >= self.auto_threshold]
        created = []
        for cand, result in accepted:
            match = self._persist(report, cand, result)
            if match is not None:
                created.append(match)
        log_scan_summary({
            "report_id": report.id,
            "candidates": len(candidates),
            "scored": len(scored),
            "skipped": len(candidates) - len(scored),
            "accepted": len(accepted),
            "duration": round(time.time() - t0, 3),
        })
        return created

    def _persist(self, report: Report, cand: Report, result: ScoreResult) -> Optional[Match]:
        lost, found = as_pair(report, cand)
        with self.pair_locks.hold((lost.id, found.id)):
            if self.stores.matches.find_pair(lost.id, found.id):
                return None
            match = self.stores.matches.add(Match(
                lost_report_id=lost.id,
                found_report_id=found.id,
                lost_owner_id=lost.owner_id,
                found_owner_id=found.owner_id,
                confidence=result.composite,
                breakdown=result.breakdown,
                origin="auto",
            ))
        log_match_event("match_created", {"match_id": match.id, "lost": lost.id, "found": found.id,
                                          "confidence": match.confidence})
        for owner_report in (report, cand):
            safe_notify(
                self.sink, owner_report.owner_id, "match_found", "Potential Match Found!",
                f'We found a potential match for your {owner_report.kind} item "{owner_report.title}".',
                {"match_id": match.id, "report_id": owner_report.id},
            )
        return match

    # ------------------------------------------------------------------
    # on-demand ranking (never persisted)
    # ------------------------------------------------------------------
    def potential_matches(self, lost_report_id: str, acting_user_id: str,
                          limit: Optional[int] = None) -> List[PotentialMatch]:
        report = self.stores.reports.get(lost_report_id)
        if report is None:
            raise NotFound("Item not found")
        if report.owner_id != acting_user_id:
            raise Unauthorized("Not authorized to view matches for this item")
        if report.kind != "lost":
            raise ValidationError("Potential matches are only available for lost items")
        limit = limit or settings.POTENTIAL_MATCH_LIMIT
        scored = self.score_candidates(report, self.open_candidates(report))
        return [
            PotentialMatch(report=cand, score=result.composite, breakdown=result.breakdown)
            for cand, result in scored
            if result.composite > self.potential_threshold
        ][:limit]

    def rescan_open_reports(self) -> int:
        """Re-run the scan for every open lost report; returns new matches created."""
        created = 0
        for lost in self.stores.reports.query(kind="lost", statuses=schema.OPEN_REPORT_STATUSES):
            ready = self._ensure_embedding(lost)
            if ready is None or ready.status not in schema.OPEN_REPORT_STATUSES:
                continue
            created += len(self.match_new_report(ready))
        logger.info("rescan finished new_matches=%d", created)
        return created

    def close(self) -> None:
        self._pool.shutdown(wait=False)
