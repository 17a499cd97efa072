"""
Channel dispatch for scheduled notifications.

Push, email and SMS transports live outside this service; their dispatchers
log the hand-off. In-app notifications are written to the inbox table so the
display surface can list and acknowledge them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, insert, select, update

from engagement.core.clock import Clock, SystemClock
from engagement.core.database import get_db_session, in_app_notifications
from engagement.core.logging import log_event
from engagement.models.notification import NotificationChannel, SmartNotification


class InAppNotificationRepository:
    """SQLAlchemy-backed inbox. One row per delivered in-app notification."""

    def __init__(self, session_factory=None, clock: Optional[Clock] = None):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()

    def save(self, notification: SmartNotification, created_at: Optional[datetime] = None) -> None:
        content = notification.content
        with get_db_session(self.session_factory) as session:
            session.execute(
                insert(in_app_notifications).values(
                    id=notification.id,
                    user_id=notification.user_id,
                    type=notification.type.value,
                    priority=notification.priority.value,
                    title=content.title,
                    body=content.body,
                    action_url=content.action_url,
                    payload=content.data,
                    scheduled_for=notification.scheduled_for,
                    expires_at=notification.expires_at,
                    created_at=created_at or self.clock.now(),
                    read_at=None,
                )
            )

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Dict[str, Any]]:
        """Newest first."""
        filters = [in_app_notifications.c.user_id == user_id]
        if unread_only:
            filters.append(in_app_notifications.c.read_at.is_(None))

        query = (
            select(in_app_notifications)
            .where(and_(*filters))
            .order_by(in_app_notifications.c.created_at.desc(), in_app_notifications.c.id)
            .limit(limit)
        )
        with get_db_session(self.session_factory) as session:
            rows = session.execute(query).mappings().all()
            return [self._row_to_dict(row) for row in rows]

    def mark_read(self, user_id: str, notification_id: str, read_at: Optional[datetime] = None) -> bool:
        """Returns False when the notification does not exist for this user."""
        stmt = (
            update(in_app_notifications)
            .where(
                and_(
                    in_app_notifications.c.id == notification_id,
                    in_app_notifications.c.user_id == user_id,
                )
            )
            .values(read_at=read_at or self.clock.now())
        )
        with get_db_session(self.session_factory) as session:
            result = session.execute(stmt)
            return result.rowcount > 0

    @staticmethod
    def _row_to_dict(row) -> Dict[str, Any]:
        def iso(value):
            return value.isoformat() if value else None

        return {
            "id": row["id"],
            "userId": row["user_id"],
            "type": row["type"],
            "priority": row["priority"],
            "title": row["title"],
            "body": row["body"],
            "actionUrl": row["action_url"],
            "data": row["payload"],
            "scheduledFor": iso(row["scheduled_for"]),
            "expiresAt": iso(row["expires_at"]),
            "createdAt": iso(row["created_at"]),
            "readAt": iso(row["read_at"]),
            "read": row["read_at"] is not None,
        }


class ChannelDispatcher:
    channel: NotificationChannel

    def dispatch(self, notification: SmartNotification) -> None:
        raise NotImplementedError


class LoggingDispatcher(ChannelDispatcher):
    """Hands the notification to an external transport by emitting a dispatch event."""

    def __init__(self, channel: NotificationChannel):
        self.channel = channel

    def dispatch(self, notification: SmartNotification) -> None:
        log_event(
            "info",
            "notification.dispatch",
            user_id=notification.user_id,
            event_type="notification.dispatch",
            extra={
                "notification_id": notification.id,
                "channel": self.channel.value,
                "notification_type": notification.type.value,
                "title": notification.content.title,
            },
        )


class InAppDispatcher(ChannelDispatcher):
    channel = NotificationChannel.IN_APP

    def __init__(self, repository: InAppNotificationRepository):
        self.repository = repository

    def dispatch(self, notification: SmartNotification) -> None:
        self.repository.save(notification)


class NotificationDelivery:
    """Routes a notification to the dispatcher for its channel. Dispatch errors propagate."""

    def __init__(self, dispatchers: Dict[NotificationChannel, ChannelDispatcher]):
        self.dispatchers = dict(dispatchers)

    @classmethod
    def default(
        cls, repository: Optional[InAppNotificationRepository] = None, clock: Optional[Clock] = None
    ) -> "NotificationDelivery":
        return cls(
            {
                NotificationChannel.PUSH: LoggingDispatcher(NotificationChannel.PUSH),
                NotificationChannel.EMAIL: LoggingDispatcher(NotificationChannel.EMAIL),
                NotificationChannel.SMS: LoggingDispatcher(NotificationChannel.SMS),
                NotificationChannel.IN_APP: InAppDispatcher(repository or InAppNotificationRepository(clock=clock)),
            }
        )

    def deliver(self, notification: SmartNotification) -> None:
        dispatcher = self.dispatchers.get(notification.channel)
        if dispatcher is None:
            raise ValueError(f"No dispatcher configured for channel {notification.channel.value}")
        dispatcher.dispatch(notification)
