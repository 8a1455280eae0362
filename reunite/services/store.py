"""Persistence interfaces for reports, matches and notifications.

Implementations: ``memory_store`` (default, in-process) and
``firestore_store`` (firebase-admin). Stores hold no business rules; callers
pass preconditions in. Report writes are field-level, so a slow writer never
reverts a concurrent status change. The one multi-record write the engine
needs (match + both reports on confirmation) is ``MatchStore.commit``, which
must be atomic and version-checked.
"""
from __future__ import annotations

import abc
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from reunite.models.reports import Match, Notification, Report


class ReportStore(abc.ABC):
    @abc.abstractmethod
    def get(self, report_id: str) -> Optional[Report]:
        ...

    @abc.abstractmethod
    def add(self, report: Report) -> Report:
        ...

    @abc.abstractmethod
    def update_fields(self, report_id: str, fields: Dict[str, Any],
                      expected_status: Optional[str] = None) -> Report:
        """Write only ``fields`` (plus updated_at) and return the stored report.

        Raises NotFound if the report is gone and ConcurrencyConflict if
        ``expected_status`` is given and the stored status differs.
        """

    @abc.abstractmethod
    def delete(self, report_id: str) -> bool:
        ...

    @abc.abstractmethod
    def query(self, kind: Optional[str] = None, statuses: Optional[Iterable[str]] = None,
              owner_id: Optional[str] = None, category: Optional[str] = None,
              created_after: Optional[datetime] = None) -> List[Report]:
        """Reports matching every given filter, newest first."""


class MatchStore(abc.ABC):
    @abc.abstractmethod
    def get(self, match_id: str) -> Optional[Match]:
        ...

    @abc.abstractmethod
    def add(self, match: Match) -> Match:
        ...

    @abc.abstractmethod
    def for_report(self, report_id: str) -> List[Match]:
        ...

    @abc.abstractmethod
    def find_pair(self, lost_report_id: str, found_report_id: str) -> List[Match]:
        ...

    @abc.abstractmethod
    def commit(self, match: Match, expected_version: int,
               report_statuses: Optional[Dict[str, str]] = None,
               blocked_statuses: Iterable[str] = ()) -> Match:
        """Atomically write ``match`` (version bumped) and the given report statuses.

        Raises ConcurrencyConflict if the stored version is not ``expected_version``,
        NotFound if the match or a listed report no longer exists, and
        ValidationError if a report in ``report_statuses`` currently has a status
        in ``blocked_statuses``.
        """

    @abc.abstractmethod
    def delete_for_report(self, report_id: str) -> int:
        ...


class NotificationStore(abc.ABC):
    @abc.abstractmethod
    def add(self, notification: Notification) -> Notification:
        ...

    @abc.abstractmethod
    def get(self, notification_id: str) -> Optional[Notification]:
        ...

    @abc.abstractmethod
    def update(self, notification: Notification) -> Notification:
        ...

    @abc.abstractmethod
    def delete(self, notification_id: str) -> bool:
        ...

    @abc.abstractmethod
    def list_for_user(self, user_id: str, limit: int = 50, unread_only: bool = False) -> List[Notification]:
        ...

    @abc.abstractmethod
    def mark_all_read(self, user_id: str) -> int:
        ...

    def unread_count(self, user_id: str) -> int:
        return len(self.list_for_user(user_id, limit=0, unread_only=True))


class Stores:
    """Bundle handed to the services."""

    def __init__(self, reports: ReportStore, matches: MatchStore, notifications: NotificationStore):
        self.reports = reports
        self.matches = matches
        self.notifications = notifications
