"""
Notification domain model.

Templates are static configuration; SmartNotification is produced by a
scheduling pass and travels to the delivery layer, so it is validated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class NotificationType(str, Enum):
    PRACTICE_TIME = "PRACTICE_TIME"
    STREAK_RISK = "STREAK_RISK"
    PEER_ACTIVITY = "PEER_ACTIVITY"
    ACHIEVEMENT_CLOSE = "ACHIEVEMENT_CLOSE"
    HOUSE_EVENT = "HOUSE_EVENT"
    COMEBACK = "COMEBACK"
    MILESTONE = "MILESTONE"
    SOCIAL_NUDGE = "SOCIAL_NUDGE"


class NotificationChannel(str, Enum):
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    IN_APP = "IN_APP"
    SMS = "SMS"


class NotificationPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


# Lower rank sorts first.
PRIORITY_RANK: Dict[NotificationPriority, int] = {
    NotificationPriority.URGENT: 0,
    NotificationPriority.HIGH: 1,
    NotificationPriority.MEDIUM: 2,
    NotificationPriority.LOW: 3,
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NotificationContent(_CamelModel):
    title: str
    body: str
    action_url: Optional[str] = None
    image_url: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class NotificationReason(_CamelModel):
    reason: str
    user_state: Dict[str, Any] = Field(default_factory=dict)
    triggers: List[str] = Field(default_factory=list)


class SmartNotification(_CamelModel):
    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1, max_length=64)
    type: NotificationType
    priority: NotificationPriority
    channel: NotificationChannel
    content: NotificationContent
    scheduled_for: datetime
    expires_at: Optional[datetime] = None
    context: NotificationReason

    def sort_key(self):
        return (PRIORITY_RANK[self.priority], self.scheduled_for)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class NotificationTemplate:
    """
    One candidate message for a notification type.

    condition(ctx, env) -> bool, content(ctx, env) -> NotificationContent,
    timing(ctx, env) -> aware datetime or None. `env` carries the injected
    random source so templates with a chance component stay deterministic
    under test.
    """

    type: NotificationType
    priority: NotificationPriority
    condition: Callable[..., bool]
    content: Callable[..., NotificationContent]
    timing: Callable[..., Optional[datetime]]
    name: str = ""


@dataclass
class DeliveryResult:
    success: bool
    notification_id: str
    channel: NotificationChannel
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "notificationId": self.notification_id,
            "channel": self.channel.value,
            "error": self.error,
        }
