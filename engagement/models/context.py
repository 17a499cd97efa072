"""
Validated context shared by the streak, reward and notification engines.

Built once at the boundary (API request or caller-side assembly) from the
user profile, the archetype label and the latest streak numbers. Nothing
downstream reads loosely-typed dicts.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, time, timezone
from typing import List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from engagement.models.notification import NotificationChannel

NotificationFrequency = Literal["minimal", "balanced", "frequent"]
TimeOfDay = Literal["early_morning", "morning", "midday", "afternoon", "evening", "late_night"]

_HHMM = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


class TimeWindow(_CamelModel):
    """A daily wall-clock range, inclusive at both ends. start > end wraps midnight."""

    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _check_format(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError("time must be HH:MM (24h)")
        hour, minute = value.split(":")
        return f"{int(hour):02d}:{minute}"

    @property
    def start_time(self) -> time:
        return _parse_hhmm(self.start)

    @property
    def end_time(self) -> time:
        return _parse_hhmm(self.end)

    def contains(self, moment: datetime) -> bool:
        clock = moment.time().replace(second=0, microsecond=0)
        start, end = self.start_time, self.end_time
        if start <= end:
            return start <= clock <= end
        return clock >= start or clock <= end


class PracticeWindows(_CamelModel):
    morning: Optional[TimeWindow] = None
    midday: Optional[TimeWindow] = None
    evening: Optional[TimeWindow] = None


class NotificationPreferences(_CamelModel):
    notification_frequency: NotificationFrequency = "balanced"
    channels: List[NotificationChannel] = Field(
        default_factory=lambda: [NotificationChannel.PUSH, NotificationChannel.IN_APP]
    )


def resolve_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone: {name}") from exc


def time_of_day_for(moment: datetime) -> TimeOfDay:
    hour = moment.hour
    if 4 <= hour < 6:
        return "early_morning"
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 14:
        return "midday"
    if 14 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 22:
        return "evening"
    return "late_night"


class UserContext(_CamelModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    timezone: str = "UTC"
    local_time: datetime
    last_active_at: datetime
    current_streak: int = Field(0, ge=0)
    longest_streak: int = Field(0, ge=0)
    freeze_tokens: int = Field(0, ge=0)
    practice_windows: PracticeWindows = Field(default_factory=PracticeWindows)
    dnd_windows: List[TimeWindow] = Field(default_factory=list)
    house: str = Field(..., min_length=1)
    user_class: str = Field(..., min_length=1, alias="class")
    preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    last_streak_status: Optional[str] = None
    recent_reward_titles: List[str] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        resolve_zone(value)
        return value

    @model_validator(mode="after")
    def _localize(self) -> "UserContext":
        zone = resolve_zone(self.timezone)
        if self.local_time.tzinfo is None:
            self.local_time = self.local_time.replace(tzinfo=zone)
        else:
            self.local_time = self.local_time.astimezone(zone)
        if self.last_active_at.tzinfo is None:
            self.last_active_at = self.last_active_at.replace(tzinfo=timezone.utc)
        return self

    @property
    def zone(self) -> ZoneInfo:
        return resolve_zone(self.timezone)

    def at(self, moment: datetime) -> "UserContext":
        """Copy of this context with local_time moved to `moment` in the user's zone."""
        aware = moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
        return self.model_copy(update={"local_time": aware.astimezone(self.zone)})

    @property
    def days_since_active(self) -> int:
        return math.floor((self.local_time - self.last_active_at).total_seconds() / 86400)

    @property
    def hours_until_midnight(self) -> int:
        return 24 - self.local_time.hour

    def in_dnd(self) -> bool:
        return any(window.contains(self.local_time) for window in self.dnd_windows)


class RewardMetadata(_CamelModel):
    practice_type: Optional[str] = None
    streak_length: Optional[int] = Field(None, ge=0)
    time_of_day: Optional[TimeOfDay] = None
    house: Optional[str] = None
    consecutive_days: Optional[int] = Field(None, ge=0)


class RewardContext(_CamelModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    action: str = Field(..., min_length=1)
    metadata: RewardMetadata = Field(default_factory=RewardMetadata)
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            resolve_zone(value)
        return value

    @classmethod
    def from_user_context(
        cls,
        context: UserContext,
        *,
        action: str,
        practice_type: Optional[str] = None,
        consecutive_days: Optional[int] = None,
    ) -> "RewardContext":
        return cls(
            user_id=context.user_id,
            action=action,
            timezone=context.timezone,
            metadata=RewardMetadata(
                practice_type=practice_type,
                streak_length=context.current_streak,
                time_of_day=time_of_day_for(context.local_time),
                house=context.house,
                consecutive_days=consecutive_days if consecutive_days is not None else context.current_streak,
            ),
        )
