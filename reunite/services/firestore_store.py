"""Firestore-backed stores.

# Firestore layout
# reports/{report_id}              Report fields (location as {latitude, longitude})
# matches/{match_id}               Match fields, breakdown as a nested map, version counter
# notifications/{notification_id}  Notification fields

The confirmation write (match + both reports) runs in one Firestore
transaction with a version check on the match document.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore_v1 import FieldFilter

from config import settings
from reunite.domain.errors import ConcurrencyConflict, NotFound, ValidationError
from reunite.models.reports import Match, Notification, Report, utcnow
from reunite.scripts.logging_config import get_logger
from reunite.services.store import MatchStore, NotificationStore, ReportStore, Stores

logger = get_logger("firestore_store")

REPORTS = "reports"
MATCHES = "matches"
NOTIFICATIONS = "notifications"

# Firestore caps a write batch at 500 operations
BATCH_LIMIT = 400

M = TypeVar("M", Report, Match, Notification)

_db = None


def init_firebase() -> bool:
    """Initialize the default app from FIREBASE_CREDENTIALS_JSON_STRING or
    GOOGLE_APPLICATION_CREDENTIALS. Returns False when neither is set."""
    if firebase_admin._apps:
        return True
    if settings.FIREBASE_CREDENTIALS_JSON_STRING:
        cred = credentials.Certificate(json.loads(settings.FIREBASE_CREDENTIALS_JSON_STRING))
        logger.info("Firebase credentials loaded from FIREBASE_CREDENTIALS_JSON_STRING.")
    elif settings.GOOGLE_APPLICATION_CREDENTIALS:
        cred = credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS)
        logger.info("Firebase credentials loaded from GOOGLE_APPLICATION_CREDENTIALS file.")
    else:
        logger.warning("Firebase credentials not found. Firestore backend is unavailable.")
        return False
    firebase_admin.initialize_app(cred)
    logger.info("Firebase initialized successfully.")
    return True


def get_db():
    global _db
    if _db is None:
        _db = firestore.client()
    return _db


def to_doc(model) -> Dict[str, Any]:
    data = model.model_dump(mode="python")
    data.pop("id", None)
    return data


def from_doc(cls: Type[M], doc_id: str, data: Optional[Dict[str, Any]]) -> M:
    payload = dict(data or {})
    payload["id"] = doc_id
    return cls.model_validate(payload)


def _limit(items: list, limit: int) -> list:
    return items[:limit] if limit and limit > 0 else items


class FirestoreReportStore(ReportStore):
    def __init__(self, db=None):
        self.db = db or get_db()

    def _col(self):
        return self.db.collection(REPORTS)

    def get(self, report_id: str) -> Optional[Report]:
        snap = self._col().document(report_id).get()
        if not snap.exists:
            return None
        return from_doc(Report, snap.id, snap.to_dict())

    def add(self, report: Report) -> Report:
        self._col().document(report.id).set(to_doc(report))
        logger.info("firestore.write op=set doc=%s/%s", REPORTS, report.id)
        return report

    def update_fields(self, report_id: str, fields: Dict[str, Any],
                      expected_status: Optional[str] = None) -> Report:
        ref = self._col().document(report_id)
        changes = {**fields, "updated_at": utcnow()}
        if expected_status is None:
            if not ref.get().exists:
                raise NotFound(f"report {report_id} not found")
            ref.update(changes)
        else:
            @firestore.transactional
            def _run(transaction):
                snap = ref.get(transaction=transaction)
                if not snap.exists:
                    raise NotFound(f"report {report_id} not found")
                current = (snap.to_dict() or {}).get("status")
                if current != expected_status:
                    raise ConcurrencyConflict(
                        f"report {report_id} changed (status {current} != {expected_status})")
                transaction.update(ref, changes)

            _run(self.db.transaction())
        logger.info("firestore.write op=update doc=%s/%s fields=%s", REPORTS, report_id, sorted(fields))
        return self.get(report_id)

    def delete(self, report_id: str) -> bool:
        ref = self._col().document(report_id)
        if not ref.get().exists:
            return False
        ref.delete()
        return True

    def query(self, kind: Optional[str] = None, statuses: Optional[Iterable[str]] = None,
              owner_id: Optional[str] = None, category: Optional[str] = None,
              created_after: Optional[datetime] = None) -> List[Report]:
        # equality filters server side; status set and time window in memory
        # (avoids composite index requirements)
        q = self._col()
        if kind is not None:
            q = q.where(filter=FieldFilter("kind", "==", kind))
        if owner_id is not None:
            q = q.where(filter=FieldFilter("owner_id", "==", owner_id))
        if category is not None:
            q = q.where(filter=FieldFilter("category", "==", category))
        status_set = set(statuses) if statuses is not None else None
        out: List[Report] = []
        for snap in q.stream():
            r = from_doc(Report, snap.id, snap.to_dict())
            if status_set is not None and r.status not in status_set:
                continue
            if created_after is not None and r.created_at < created_after:
                continue
            out.append(r)
        out.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return out


class FirestoreMatchStore(MatchStore):
    def __init__(self, db=None):
        self.db = db or get_db()

    def _col(self):
        return self.db.collection(MATCHES)

    def get(self, match_id: str) -> Optional[Match]:
        snap = self._col().document(match_id).get()
        if not snap.exists:
            return None
        return from_doc(Match, snap.id, snap.to_dict())

    def add(self, match: Match) -> Match:
        self._col().document(match.id).set(to_doc(match))
        logger.info("firestore.write op=set doc=%s/%s", MATCHES, match.id)
        return match

    def _stream(self, *filters) -> List[Match]:
        q = self._col()
        for f in filters:
            q = q.where(filter=f)
        return [from_doc(Match, s.id, s.to_dict()) for s in q.stream()]

    def for_report(self, report_id: str) -> List[Match]:
        seen: Dict[str, Match] = {}
        for field in ("lost_report_id", "found_report_id"):
            for m in self._stream(FieldFilter(field, "==", report_id)):
                seen[m.id] = m
        return sorted(seen.values(), key=lambda m: (-m.confidence, m.id))

    def find_pair(self, lost_report_id: str, found_report_id: str) -> List[Match]:
        return self._stream(
            FieldFilter("lost_report_id", "==", lost_report_id),
            FieldFilter("found_report_id", "==", found_report_id),
        )

    def commit(self, match: Match, expected_version: int,
               report_statuses: Optional[Dict[str, str]] = None,
               blocked_statuses: Iterable[str] = ()) -> Match:
        blocked = set(blocked_statuses)
        match_ref = self._col().document(match.id)
        report_refs = {rid: self.db.collection(REPORTS).document(rid) for rid in (report_statuses or {})}
        now = utcnow()
        stored = match.model_copy(update={"version": expected_version + 1, "updated_at": now})

        @firestore.transactional
        def _run(transaction):
            snap = match_ref.get(transaction=transaction)
            if not snap.exists:
                raise NotFound(f"match {match.id} not found")
            current_version = (snap.to_dict() or {}).get("version", 0)
            if current_version != expected_version:
                raise ConcurrencyConflict(
                    f"match {match.id} changed (version {current_version} != {expected_version})")
            # all reads before writes
            for rid, ref in report_refs.items():
                report_snap = ref.get(transaction=transaction)
                if not report_snap.exists:
                    raise NotFound(f"report {rid} not found")
                status = (report_snap.to_dict() or {}).get("status")
                if status in blocked:
                    raise ValidationError(f"Item {rid} is already {status}")
            transaction.set(match_ref, to_doc(stored))
            for rid, ref in report_refs.items():
                transaction.update(ref, {"status": report_statuses[rid], "updated_at": now})

        _run(self.db.transaction())
        logger.info("firestore.write op=commit doc=%s/%s version=%d reports=%s",
                    MATCHES, match.id, stored.version, list(report_refs))
        return stored

    def delete_for_report(self, report_id: str) -> int:
        matches = self.for_report(report_id)
        batch = self.db.batch()
        count = 0
        for m in matches:
            batch.delete(self._col().document(m.id))
            count += 1
            if count % BATCH_LIMIT == 0:
                batch.commit()
                batch = self.db.batch()
        batch.commit()
        return count


class FirestoreNotificationStore(NotificationStore):
    def __init__(self, db=None):
        self.db = db or get_db()

    def _col(self):
        return self.db.collection(NOTIFICATIONS)

    def add(self, notification: Notification) -> Notification:
        self._col().document(notification.id).set(to_doc(notification))
        return notification

    def get(self, notification_id: str) -> Optional[Notification]:
        snap = self._col().document(notification_id).get()
        if not snap.exists:
            return None
        return from_doc(Notification, snap.id, snap.to_dict())

    def update(self, notification: Notification) -> Notification:
        ref = self._col().document(notification.id)
        if not ref.get().exists:
            raise NotFound(f"notification {notification.id} not found")
        ref.set(to_doc(notification))
        return notification

    def delete(self, notification_id: str) -> bool:
        ref = self._col().document(notification_id)
        if not ref.get().exists:
            return False
        ref.delete()
        return True

    def list_for_user(self, user_id: str, limit: int = 50, unread_only: bool = False) -> List[Notification]:
        q = self._col().where(filter=FieldFilter("user_id", "==", user_id))
        if unread_only:
            q = q.where(filter=FieldFilter("read", "==", False))
        # sorted in memory: user_id + created_at ordering would need a composite index
        out = [from_doc(Notification, s.id, s.to_dict()) for s in q.stream()]
        out.sort(key=lambda n: (n.created_at, n.id), reverse=True)
        return _limit(out, limit)

    def mark_all_read(self, user_id: str) -> int:
        unread = self.list_for_user(user_id, limit=0, unread_only=True)
        batch = self.db.batch()
        count = 0
        for n in unread:
            batch.update(self._col().document(n.id), {"read": True})
            count += 1
            if count % BATCH_LIMIT == 0:
                batch.commit()
                batch = self.db.batch()
        batch.commit()
        return count


def create_firestore_stores(db=None) -> Stores:
    db = db or get_db()
    return Stores(
        reports=FirestoreReportStore(db),
        matches=FirestoreMatchStore(db),
        notifications=FirestoreNotificationStore(db),
    )
