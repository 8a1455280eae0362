"""Match lifecycle: pending -> confirmed | rejected.

confirm() needs both owners. The final confirmation writes the match and
both reports in one ``MatchStore.commit``, which also refuses the write when
either report already has a confirmed match. Transitions on one match are
serialized by a keyed lock, and the store re-checks the match version so a
concurrent writer elsewhere surfaces as ConcurrencyConflict (retried once).
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional

from reunite.domain import report_schema as schema
from reunite.domain.errors import ConcurrencyConflict, NotFound, Unauthorized, ValidationError
from reunite.models.reports import Match, Report
from reunite.scripts.logging_config import get_logger, log_match_event
from reunite.services.locks import KeyedLock
from reunite.services.notifications import NotificationSink, safe_notify
from reunite.services.scoring import ScoringEngine
from reunite.services.store import Stores

logger = get_logger("matching")

CONFLICT_RETRIES = 1

# a report in one of these already has its confirmed match
CLOSED_REPORT_STATUSES = ("matched", "returned")


class ClaimStateMachine:
    def __init__(self, stores: Stores, sink: NotificationSink, scoring: Optional[ScoringEngine] = None,
                 pair_locks: Optional[KeyedLock] = None):
        self.stores = stores
        self.sink = sink
        self.scoring = scoring
        self._match_locks = KeyedLock()
        # shared with CandidateMatcher: one writer per (lost, found) pair
        self._pair_locks = pair_locks if pair_locks is not None else KeyedLock()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _load(self, match_id: str) -> Match:
        match = self.stores.matches.get(match_id)
        if match is None:
            raise NotFound("Match not found")
        return match

    def _report(self, report_id: str) -> Report:
        report = self.stores.reports.get(report_id)
        if report is None:
            raise NotFound("Item not found")
        return report

    def _with_retry(self, match_id: str, step: Callable[[Match], Match]) -> Match:
        with self._match_locks.hold(match_id):
            for attempt in range(CONFLICT_RETRIES + 1):
                match = self._load(match_id)
                try:
                    return step(match)
                except ConcurrencyConflict:
                    if attempt >= CONFLICT_RETRIES:
                        raise
                    logger.warning("version conflict on match %s, retrying", match_id)
        raise ConcurrencyConflict(f"match {match_id} could not be updated")  # pragma: no cover

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    def confirm(self, match_id: str, acting_user_id: str, proof_details: Optional[str] = None) -> Match:
        """Record the acting owner's confirmation.

        Re-confirming by the same owner is a no-op: no write, no notification.
        """
        pending_notes: List[Callable[[], None]] = []

        def step(match: Match) -> Match:
            pending_notes.clear()
            role = match.role_of(acting_user_id)
            if role is None:
                raise Unauthorized("Not authorized to confirm this match")
            if match.status != "pending":
                raise ValidationError(f"Match is already {match.status}")
            flag = "confirmed_by_lost_user" if role == "lost" else "confirmed_by_found_user"
            if getattr(match, flag):
                return match

            updates: Dict[str, object] = {flag: True}
            if proof_details:
                updates["proof_details"] = proof_details
            updated = match.model_copy(update=updates)

            if updated.confirmed_by_lost_user and updated.confirmed_by_found_user:
                updated = updated.model_copy(update={"status": "confirmed"})
                # checked inside the commit: another match on either report may confirm concurrently
                saved = self.stores.matches.commit(
                    updated, match.version,
                    {updated.lost_report_id: "matched", updated.found_report_id: "matched"},
                    blocked_statuses=CLOSED_REPORT_STATUSES,
                )
                pending_notes.append(lambda: self._notify_confirmed(saved))
                log_match_event("match_confirmed", {"match_id": saved.id})
            else:
                saved = self.stores.matches.commit(updated, match.version)
                other = saved.found_owner_id if role == "lost" else saved.lost_owner_id
                pending_notes.append(lambda: safe_notify(
                    self.sink, other, "confirmation_pending", "Match Confirmation Pending",
                    "The other party confirmed the match. Please confirm too!",
                    {"match_id": saved.id},
                ))
                log_match_event("match_confirmation", {"match_id": saved.id, "role": role})
            return saved

        result = self._with_retry(match_id, step)
        for note in pending_notes:
            note()
        return result

    def _notify_confirmed(self, match: Match) -> None:
        safe_notify(self.sink, match.lost_owner_id, "match_confirmed", "Match Confirmed!",
                    "Both parties confirmed the match. You can now contact the finder.",
                    {"match_id": match.id, "other_user_id": match.found_owner_id})
        safe_notify(self.sink, match.found_owner_id, "match_confirmed", "Match Confirmed!",
                    "Both parties confirmed the match. You can now contact the owner.",
                    {"match_id": match.id, "other_user_id": match.lost_owner_id})

    def reject(self, match_id: str, acting_user_id: str) -> Match:
        notify_user: List[str] = []

        def step(match: Match) -> Match:
            notify_user.clear()
            role = match.role_of(acting_user_id)
            if role is None:
                raise Unauthorized("Not authorized to reject this match")
            if match.status == "rejected":
                return match
            if match.status == "confirmed":
                raise ValidationError("A confirmed match cannot be rejected")
            saved = self.stores.matches.commit(match.model_copy(update={"status": "rejected"}), match.version)
            notify_user.append(saved.found_owner_id if role == "lost" else saved.lost_owner_id)
            log_match_event("match_rejected", {"match_id": saved.id, "role": role})
            return saved

        result = self._with_retry(match_id, step)
        for uid in notify_user:
            safe_notify(self.sink, uid, "match_rejected", "Match Rejected",
                        "The other party rejected this match.", {"match_id": result.id})
        return result

    # ------------------------------------------------------------------
    # explicit claim by the lost-item owner
    # ------------------------------------------------------------------
    def claim(self, lost_report_id: str, found_report_id: str, acting_user_id: str) -> Match:
        lost = self._report(lost_report_id)
        found = self._report(found_report_id)
        if lost.kind != "lost" or found.kind != "found":
            raise ValidationError("A claim pairs one lost item with one found item")
        if lost.owner_id != acting_user_id:
            raise Unauthorized("Only the owner of the lost item can claim a found item")
        if found.owner_id == acting_user_id:
            raise ValidationError("You cannot claim your own found item")
        for r in (lost, found):
            if r.status not in schema.OPEN_REPORT_STATUSES:
                raise ValidationError(f"Item {r.id} is no longer open ({r.status})")

        with self._pair_locks.hold((lost.id, found.id)):
            for existing in self.stores.matches.find_pair(lost.id, found.id):
                if existing.status != "rejected":
                    return existing
            if self.scoring is None:
                raise ValidationError("Scoring is not configured")
            result = self.scoring.score(lost, found)
            match = self.stores.matches.add(Match(
                lost_report_id=lost.id,
                found_report_id=found.id,
                lost_owner_id=lost.owner_id,
                found_owner_id=found.owner_id,
                confidence=result.composite,
                breakdown=result.breakdown,
                origin="claim",
            ))
        log_match_event("claim_created", {"match_id": match.id, "lost": lost.id, "found": found.id})
        safe_notify(self.sink, found.owner_id, "claim_received", "Someone Claimed Your Found Item",
                    f'The owner of a lost item claimed "{found.title}". Review and confirm the match.',
                    {"match_id": match.id, "report_id": found.id})
        return match

    # ------------------------------------------------------------------
    # read side
    # ------------------------------------------------------------------
    def match_status(self, match_id: str, acting_user_id: str) -> Dict[str, object]:
        match = self._load(match_id)
        role = match.role_of(acting_user_id)
        if role is None:
            raise Unauthorized("Not authorized to view this match")
        return {
            "match": match,
            "user_role": role,
            "both_confirmed": match.confirmed_by_lost_user and match.confirmed_by_found_user,
            "is_resolved": match.status in ("confirmed", "rejected"),
        }

    def matches_for_report(self, report_id: str, acting_user_id: str) -> List[Match]:
        report = self._report(report_id)
        if report.owner_id != acting_user_id:
            raise Unauthorized("Not authorized to view matches for this item")
        return self.stores.matches.for_report(report_id)
