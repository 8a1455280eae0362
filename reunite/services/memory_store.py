"""In-process stores guarded by one shared lock.

All three stores share the backend lock, so ``MatchStore.commit`` writes the
match and both reports as one unit. Records are copied in and out; callers
never hold a reference into the store.
"""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from reunite.domain.errors import ConcurrencyConflict, NotFound, ValidationError
from reunite.models.reports import Match, Notification, Report, utcnow
from reunite.services.store import MatchStore, NotificationStore, ReportStore, Stores


class MemoryBackend:
    def __init__(self):
        self.lock = threading.RLock()
        self.reports: Dict[str, Report] = {}
        self.matches: Dict[str, Match] = {}
        self.notifications: Dict[str, Notification] = {}


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


def _limit(items: list, limit: int) -> list:
    return items[:limit] if limit and limit > 0 else items


class MemoryReportStore(ReportStore):
    def __init__(self, backend: MemoryBackend):
        self.b = backend

    def get(self, report_id: str) -> Optional[Report]:
        with self.b.lock:
            return _copy(self.b.reports.get(report_id))

    def add(self, report: Report) -> Report:
        with self.b.lock:
            self.b.reports[report.id] = _copy(report)
            return _copy(report)

    def update_fields(self, report_id: str, fields: Dict[str, Any],
                      expected_status: Optional[str] = None) -> Report:
        with self.b.lock:
            current = self.b.reports.get(report_id)
            if current is None:
                raise NotFound(f"report {report_id} not found")
            if expected_status is not None and current.status != expected_status:
                raise ConcurrencyConflict(
                    f"report {report_id} changed (status {current.status} != {expected_status})")
            stored = current.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
            self.b.reports[report_id] = stored
            return _copy(stored)

    def delete(self, report_id: str) -> bool:
        with self.b.lock:
            return self.b.reports.pop(report_id, None) is not None

    def query(self, kind: Optional[str] = None, statuses: Optional[Iterable[str]] = None,
              owner_id: Optional[str] = None, category: Optional[str] = None,
              created_after: Optional[datetime] = None) -> List[Report]:
        status_set = set(statuses) if statuses is not None else None
        with self.b.lock:
            out = [
                _copy(r) for r in self.b.reports.values()
                if (kind is None or r.kind == kind)
                and (status_set is None or r.status in status_set)
                and (owner_id is None or r.owner_id == owner_id)
                and (category is None or r.category == category)
                and (created_after is None or r.created_at >= created_after)
            ]
        out.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return out


class MemoryMatchStore(MatchStore):
    def __init__(self, backend: MemoryBackend):
        self.b = backend

    def get(self, match_id: str) -> Optional[Match]:
        with self.b.lock:
            return _copy(self.b.matches.get(match_id))

    def add(self, match: Match) -> Match:
        with self.b.lock:
            self.b.matches[match.id] = _copy(match)
            return _copy(match)

    def for_report(self, report_id: str) -> List[Match]:
        with self.b.lock:
            out = [_copy(m) for m in self.b.matches.values() if m.involves(report_id)]
        out.sort(key=lambda m: (-m.confidence, m.id))
        return out

    def find_pair(self, lost_report_id: str, found_report_id: str) -> List[Match]:
        with self.b.lock:
            return [
                _copy(m) for m in self.b.matches.values()
                if m.lost_report_id == lost_report_id and m.found_report_id == found_report_id
            ]

    def commit(self, match: Match, expected_version: int,
               report_statuses: Optional[Dict[str, str]] = None,
               blocked_statuses: Iterable[str] = ()) -> Match:
        blocked = set(blocked_statuses)
        with self.b.lock:
            current = self.b.matches.get(match.id)
            if current is None:
                raise NotFound(f"match {match.id} not found")
            if current.version != expected_version:
                raise ConcurrencyConflict(
                    f"match {match.id} changed (version {current.version} != {expected_version})")
            for rid in (report_statuses or {}):
                report = self.b.reports.get(rid)
                if report is None:
                    raise NotFound(f"report {rid} not found")
                if report.status in blocked:
                    raise ValidationError(f"Item {rid} is already {report.status}")
            now = utcnow()
            stored = match.model_copy(update={"version": expected_version + 1, "updated_at": now}, deep=True)
            self.b.matches[match.id] = stored
            for rid, status in (report_statuses or {}).items():
                self.b.reports[rid] = self.b.reports[rid].model_copy(update={"status": status, "updated_at": now})
            return _copy(stored)

    def delete_for_report(self, report_id: str) -> int:
        with self.b.lock:
            ids = [mid for mid, m in self.b.matches.items() if m.involves(report_id)]
            for mid in ids:
                del self.b.matches[mid]
            return len(ids)


class MemoryNotificationStore(NotificationStore):
    def __init__(self, backend: MemoryBackend):
        self.b = backend

    def add(self, notification: Notification) -> Notification:
        with self.b.lock:
            self.b.notifications[notification.id] = _copy(notification)
            return _copy(notification)

    def get(self, notification_id: str) -> Optional[Notification]:
        with self.b.lock:
            return _copy(self.b.notifications.get(notification_id))

    def update(self, notification: Notification) -> Notification:
        with self.b.lock:
            if notification.id not in self.b.notifications:
                raise NotFound(f"notification {notification.id} not found")
            self.b.notifications[notification.id] = _copy(notification)
            return _copy(notification)

    def delete(self, notification_id: str) -> bool:
        with self.b.lock:
            return self.b.notifications.pop(notification_id, None) is not None

    def list_for_user(self, user_id: str, limit: int = 50, unread_only: bool = False) -> List[Notification]:
        with self.b.lock:
            out = [
                _copy(n) for n in self.b.notifications.values()
                if n.user_id == user_id and (not unread_only or not n.read)
            ]
        out.sort(key=lambda n: (n.created_at, n.id), reverse=True)
        return _limit(out, limit)

    def mark_all_read(self, user_id: str) -> int:
        count = 0
        with self.b.lock:
            for nid, n in self.b.notifications.items():
                if n.user_id == user_id and not n.read:
                    self.b.notifications[nid] = n.model_copy(update={"read": True})
                    count += 1
        return count


def create_memory_stores() -> Stores:
    backend = MemoryBackend()
    return Stores(
        reports=MemoryReportStore(backend),
        matches=MemoryMatchStore(backend),
        notifications=MemoryNotificationStore(backend),
    )
