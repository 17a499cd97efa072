from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

StreakStatus = Literal["continued", "maintained", "grace_period_used", "frozen", "broken"]
ProtectionType = Literal["both", "freeze", "grace", "none"]


class StreakState(BaseModel):
    """
    Snapshot of a user's streak, owned and persisted by the caller.

    grace_period_used_this_streak resets whenever the streak breaks;
    freeze_tokens only drops on a frozen outcome and only grows on the
    earn-rate milestone.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    user_id: str = Field(..., min_length=1, max_length=64)
    current_streak: int = Field(0, ge=0)
    best_streak: int = Field(0, ge=0)
    last_check_in: Optional[datetime] = None
    freeze_tokens: int = Field(0, ge=0)
    grace_period_used_this_streak: bool = False
    total_practice_days: int = Field(0, ge=0)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class MilestoneInfo:
    streak: int
    is_milestone: bool
    milestone_name: Optional[str]
    next_milestone: Optional[int]
    next_milestone_name: Optional[str]
    days_until_next_milestone: Optional[int]

    def to_dict(self) -> dict:
        return {
            "streak": self.streak,
            "isMilestone": self.is_milestone,
            "milestoneName": self.milestone_name,
            "nextMilestone": self.next_milestone,
            "nextMilestoneName": self.next_milestone_name,
            "daysUntilNextMilestone": self.days_until_next_milestone,
        }


@dataclass(frozen=True)
class ProtectionStatus:
    has_protection: bool
    protection_type: ProtectionType
    freeze_tokens: int
    grace_period_available: bool
    message: str

    def to_dict(self) -> dict:
        return {
            "hasProtection": self.has_protection,
            "protectionType": self.protection_type,
            "freezeTokens": self.freeze_tokens,
            "gracePeriodAvailable": self.grace_period_available,
            "message": self.message,
        }


@dataclass(frozen=True)
class StreakCheckInResult:
    """Outcome of one check-in. Ephemeral; the caller persists the new StreakState."""

    new_streak_length: int
    streak_status: StreakStatus
    freeze_tokens_remaining: int
    comeback_bonus: bool
    previous_streak_length: int
    days_since_last_check_in: Optional[int]
    freeze_token_earned: bool
    message: str
    milestone: Optional[MilestoneInfo] = None

    def to_dict(self) -> dict:
        return {
            "newStreakLength": self.new_streak_length,
            "streakStatus": self.streak_status,
            "freezeTokensRemaining": self.freeze_tokens_remaining,
            "comebackBonus": self.comeback_bonus,
            "previousStreakLength": self.previous_streak_length,
            "daysSinceLastCheckIn": self.days_since_last_check_in,
            "freezeTokenEarned": self.freeze_token_earned,
            "message": self.message,
            "milestone": self.milestone.to_dict() if self.milestone else None,
        }


@dataclass(frozen=True)
class StreakOutlook:
    """What a check-in right now would do, without doing it."""

    would_be_status: StreakStatus
    days_since_last_check_in: Optional[int]
    checked_in_today: bool
    at_risk: bool
    message: str

    def to_dict(self) -> dict:
        return {
            "wouldBeStatus": self.would_be_status,
            "daysSinceLastCheckIn": self.days_since_last_check_in,
            "checkedInToday": self.checked_in_today,
            "atRisk": self.at_risk,
            "message": self.message,
        }
