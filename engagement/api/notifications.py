from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from engagement.api.dependencies import get_inbox, get_notification_scheduler
from engagement.core.errors import NotFoundError
from engagement.features.notifications.delivery import InAppNotificationRepository
from engagement.features.notifications.scheduler import NotificationScheduler
from engagement.models.context import UserContext
from engagement.models.notification import SmartNotification

router = APIRouter(tags=["notifications"])


@router.post("/v1/notifications/schedule")
def schedule(
    context: UserContext,
    now: Optional[datetime] = Query(None),
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
):
    notifications = scheduler.analyze_and_schedule(context.user_id, context, now)
    return {"notifications": [n.to_dict() for n in notifications]}


@router.post("/v1/notifications/send")
def send(
    notification: SmartNotification,
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
):
    return scheduler.send(notification).to_dict()


@router.get("/v1/notifications/inbox")
def inbox(
    user_id: str = Query(..., min_length=1),
    unread_only: bool = Query(False),
    repository: InAppNotificationRepository = Depends(get_inbox),
):
    return {"notifications": repository.list_for_user(user_id, unread_only=unread_only)}


@router.post("/v1/notifications/inbox/{notification_id}/read")
def mark_read(
    notification_id: str,
    user_id: str = Query(..., min_length=1),
    repository: InAppNotificationRepository = Depends(get_inbox),
):
    if not repository.mark_read(user_id, notification_id):
        raise NotFoundError(f"Notification {notification_id} not found")
    return {"ok": True}
