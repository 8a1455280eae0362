"""Notification sink and recipient-side operations.

The engine only ever calls ``NotificationSink.notify``; delivery (push/email)
belongs to whatever consumes the notification store.
"""
from __future__ import annotations

import abc
from typing import Any, Dict, List, Optional

from reunite.domain.errors import NotFound, Unauthorized
from reunite.models.reports import Notification
from reunite.scripts.logging_config import get_logger
from reunite.services.store import NotificationStore

logger = get_logger("notifications")


class NotificationSink(abc.ABC):
    @abc.abstractmethod
    def notify(self, user_id: str, type: str, title: str, body: str,
               payload: Optional[Dict[str, Any]] = None) -> None:
        ...


class StoreNotificationSink(NotificationSink):
    def __init__(self, store: NotificationStore):
        self.store = store

    def notify(self, user_id: str, type: str, title: str, body: str,
               payload: Optional[Dict[str, Any]] = None) -> None:
        n = self.store.add(Notification(user_id=user_id, type=type, title=title, body=body,
                                        payload=payload or {}))
        logger.info("notification created id=%s user=%s type=%s", n.id, user_id, type)


def safe_notify(sink: NotificationSink, user_id: str, type: str, title: str, body: str,
                payload: Optional[Dict[str, Any]] = None) -> None:
    """Fire-and-forget: a failing sink never fails the transition that triggered it."""
    try:
        sink.notify(user_id, type, title, body, payload)
    except Exception as e:
        logger.error("notify failed user=%s type=%s err=%s", user_id, type, e)


class NotificationService:
    def __init__(self, store: NotificationStore):
        self.store = store

    def _owned(self, notification_id: str, user_id: str) -> Notification:
        n = self.store.get(notification_id)
        if n is None:
            raise NotFound("Notification not found")
        if n.user_id != user_id:
            raise Unauthorized("Not authorized to access this notification")
        return n

    def list_for_user(self, user_id: str, limit: int = 50, unread_only: bool = False) -> List[Notification]:
        return self.store.list_for_user(user_id, limit=limit, unread_only=unread_only)

    def mark_read(self, notification_id: str, user_id: str) -> Notification:
        n = self._owned(notification_id, user_id)
        if n.read:
            return n
        return self.store.update(n.model_copy(update={"read": True}))

    def mark_all_read(self, user_id: str) -> int:
        return self.store.mark_all_read(user_id)

    def delete(self, notification_id: str, user_id: str) -> None:
        self._owned(notification_id, user_id)
        self.store.delete(notification_id)

    def unread_count(self, user_id: str) -> int:
        return self.store.unread_count(user_id)
