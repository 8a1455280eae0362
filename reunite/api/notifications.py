from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from reunite.api.deps import current_user, engine, translate_errors
from reunite.models.reports import Notification
from reunite.services.engine import Engine

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationListResponse(BaseModel):
    user_id: str
    notifications: List[Notification]


class CountResponse(BaseModel):
    count: int


@router.get("", response_model=NotificationListResponse)
def list_notifications(limit: int = 50, unread_only: bool = False,
                       user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    items = eng.notifications.list_for_user(user_id, limit=limit, unread_only=unread_only)
    return NotificationListResponse(user_id=user_id, notifications=items)


@router.get("/unread-count", response_model=CountResponse)
def unread_count(user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    return CountResponse(count=eng.notifications.unread_count(user_id))


@router.post("/read-all", response_model=CountResponse)
def mark_all_read(user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    return CountResponse(count=eng.notifications.mark_all_read(user_id))


@router.post("/{notification_id}/read", response_model=Notification)
def mark_read(notification_id: str, user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        return eng.notifications.mark_read(notification_id, user_id)


@router.delete("/{notification_id}", status_code=204)
def delete_notification(notification_id: str, user_id: str = Depends(current_user),
                        eng: Engine = Depends(engine)):
    with translate_errors():
        eng.notifications.delete(notification_id, user_id)
