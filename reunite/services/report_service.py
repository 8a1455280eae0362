"""Owner-facing report lifecycle: create (embed -> guard -> persist -> match),
read, status edits and delete."""
from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Optional, Union

import pydantic

from reunite.domain import report_schema as schema
from reunite.domain.errors import EmbeddingUnavailable, NotFound, Unauthorized, ValidationError
from reunite.models.reports import Report, ReportCreation, ReportCreate, utcnow
from reunite.scripts.logging_config import get_logger
from reunite.services.candidate_matcher import CandidateMatcher, embedding_text
from reunite.services.duplicate_guard import DuplicateGuard
from reunite.services.embeddings import EmbeddingService
from reunite.services.locks import KeyedLock
from reunite.services.store import Stores

logger = get_logger("reports")

NO_EMBEDDING_WARNING = "Text embedding unavailable; automatic matching was skipped for this report."


def parse_payload(payload: Union[ReportCreate, Dict[str, Any]]) -> ReportCreate:
    if isinstance(payload, ReportCreate):
        return payload
    try:
        return ReportCreate.model_validate(payload)
    except pydantic.ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or "payload"
        raise ValidationError(f"{field}: {first.get('msg', 'invalid value')}") from e


class ReportService:
    def __init__(self, stores: Stores, embedder: EmbeddingService, matcher: CandidateMatcher,
                 guard: Optional[DuplicateGuard] = None):
        self.stores = stores
        self.embedder = embedder
        self.matcher = matcher
        self.guard = guard or DuplicateGuard(stores.reports)
        self._create_locks = KeyedLock()

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    def _embed_images(self, images: List[str], warnings: List[str]) -> List[List[float]]:
        vectors = []
        for idx, encoded in enumerate(images):
            try:
                raw = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError):
                warnings.append(f"Image {idx} is not valid base64 and was ignored.")
                continue
            try:
                vectors.append(self.embedder.embed_image(raw))
            except EmbeddingUnavailable as e:
                logger.warning("image %d skipped: %s", idx, e.reason)
                warnings.append(f"Image {idx} could not be processed and was ignored.")
        return vectors

    def create_report(self, owner_id: str, payload: Union[ReportCreate, Dict[str, Any]]) -> ReportCreation:
        if not (owner_id or "").strip():
            raise ValidationError("owner_id is required")
        data = parse_payload(payload)
        warnings: List[str] = []

        report = Report(
            owner_id=owner_id,
            kind=data.kind,
            title=data.title,
            description=data.description,
            category=data.category,
            attributes=data.attributes,
            location=data.location,
            occurred_at=data.occurred_at or utcnow(),
        )
        try:
            report.text_embedding = self.embedder.embed_text(embedding_text(report))
        except EmbeddingUnavailable as e:
            logger.warning("text embedding failed owner=%s: %s", owner_id, e.reason)
        report.image_embeddings = self._embed_images(data.images, warnings)

        with self._create_locks.hold((owner_id, report.category)):
            self.guard.check(owner_id, report.kind, report.category, report.text_embedding)
            report = self.stores.reports.add(report)
        logger.info("report created id=%s owner=%s kind=%s category=%s",
                    report.id, owner_id, report.kind, report.category)

        matches = []
        try:
            matches = self.matcher.match_new_report(report)
        except EmbeddingUnavailable:
            warnings.append(NO_EMBEDDING_WARNING)
        return ReportCreation(report=report, matches=matches, warnings=warnings)

    # ------------------------------------------------------------------
    # read
    # ------------------------------------------------------------------
    def _owned(self, report_id: str, acting_user_id: str) -> Report:
        report = self.stores.reports.get(report_id)
        if report is None:
            raise NotFound("Item not found")
        if report.owner_id != acting_user_id:
            raise Unauthorized("Not authorized to access this item")
        return report

    def get_report(self, report_id: str, acting_user_id: str) -> Report:
        return self._owned(report_id, acting_user_id)

    def list_reports(self, owner_id: str, kind: Optional[str] = None,
                     status: Optional[str] = None) -> List[Report]:
        if kind is not None and kind not in schema.REPORT_KINDS:
            raise ValidationError(f"Unknown kind: {kind}")
        if status is not None and status not in schema.REPORT_STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        return self.stores.reports.query(kind=kind, owner_id=owner_id,
                                         statuses=[status] if status else None)

    # ------------------------------------------------------------------
    # owner edits
    # ------------------------------------------------------------------
    def update_status(self, report_id: str, acting_user_id: str, status: str) -> Report:
        if status not in schema.REPORT_STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        report = self._owned(report_id, acting_user_id)
        if status == report.status:
            return report
        if schema.status_rank(status) < schema.status_rank(report.status):
            active = [m for m in self.stores.matches.for_report(report_id) if m.status != "rejected"]
            if active:
                raise ValidationError("Status cannot move backwards while the item has an active match")
        # fails with ConcurrencyConflict if a confirmation moved the status meanwhile
        updated = self.stores.reports.update_fields(report_id, {"status": status}, expected_status=report.status)
        logger.info("report status id=%s %s -> %s", report_id, report.status, status)
        return updated

    def delete_report(self, report_id: str, acting_user_id: str) -> int:
        """Delete the report and its matches; returns the number of matches removed."""
        self._owned(report_id, acting_user_id)
        if any(m.status == "pending" for m in self.stores.matches.for_report(report_id)):
            raise ValidationError("Item has a pending match; resolve or reject it first")
        removed = self.stores.matches.delete_for_report(report_id)
        self.stores.reports.delete(report_id)
        logger.info("report deleted id=%s matches_removed=%d", report_id, removed)
        return removed
