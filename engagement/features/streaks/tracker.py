from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Tuple

from engagement.core.clock import ensure_aware
from engagement.models.streak import (
    MilestoneInfo,
    ProtectionStatus,
    StreakCheckInResult,
    StreakOutlook,
    StreakState,
    StreakStatus,
)


MILESTONES: List[Tuple[int, str]] = [
    (7, "Week Warrior"),
    (14, "Fortnight Focus"),
    (21, "Habit Formed"),
    (30, "Monthly Master"),
    (60, "Two-Month Titan"),
    (100, "Century Club"),
    (180, "Half-Year Hero"),
    (365, "Year of Dedication"),
]


class StreakTracker:
    """
    Deterministic check-in state machine with forgiveness rules.

    Pure: takes a StreakState and the current instant, returns the outcome
    and the next StreakState. Never reads the clock or a store.
    """

    FREEZE_TOKEN_EARN_RATE = 7  # one token per 7 consecutive days
    COMEBACK_THRESHOLD = 3  # days away that turn a break into a comeback
    FREEZE_MAX_GAP = 3  # largest gap a single freeze token can bridge

    def __init__(self, freeze_token_earn_rate: int = FREEZE_TOKEN_EARN_RATE):
        if freeze_token_earn_rate < 1:
            raise ValueError("freeze_token_earn_rate must be positive")
        self.freeze_token_earn_rate = freeze_token_earn_rate

    def check_in(self, state: StreakState, now: datetime) -> Tuple[StreakCheckInResult, StreakState]:
        now = ensure_aware(now)
        delta = self.days_between(state.last_check_in, now)
        status = self._transition(state, delta)
        previous = state.current_streak

        if status == "maintained":
            result = StreakCheckInResult(
                new_streak_length=previous,
                streak_status=status,
                freeze_tokens_remaining=state.freeze_tokens,
                comeback_bonus=False,
                previous_streak_length=previous,
                days_since_last_check_in=delta,
                freeze_token_earned=False,
                message="Already practiced today! Keep it up!",
            )
            return result, state

        tokens = state.freeze_tokens
        grace_used = state.grace_period_used_this_streak
        earned = False
        comeback = False

        if status == "continued" and delta is None:
            length = 1
            message = "Journey started! 1 day streak!"
        elif status == "continued":
            length = previous + 1
            if length % self.freeze_token_earn_rate == 0:
                tokens += 1
                earned = True
                message = f"{length} day streak! Earned a freeze token! 🛡️"
            else:
                message = f"Streak extended to {length} days!"
        elif status == "grace_period_used":
            length = previous + 1
            grace_used = True
            message = f"Grace period used. Your streak still grows to {length} days."
        elif status == "frozen":
            length = previous
            tokens -= 1
            message = f"Used a freeze token to protect your {length} day streak! 🛡️"
        else:
            length = 1
            grace_used = False
            comeback = delta is not None and delta >= self.COMEBACK_THRESHOLD
            if comeback:
                message = "Welcome back! Your resilience is inspiring. New streak started! 💪"
            else:
                message = f"Streak reset, but every day is a fresh start! Previous best: {max(state.best_streak, previous)} days"

        new_state = state.model_copy(
            update={
                "current_streak": length,
                "best_streak": max(state.best_streak, previous, length),
                "last_check_in": now,
                "freeze_tokens": tokens,
                "grace_period_used_this_streak": grace_used,
                "total_practice_days": state.total_practice_days + 1,
            }
        )

        milestone = None
        if length != previous:
            info = self.calculate_milestone(length)
            if info.is_milestone:
                milestone = info

        result = StreakCheckInResult(
            new_streak_length=length,
            streak_status=status,
            freeze_tokens_remaining=tokens,
            comeback_bonus=comeback,
            previous_streak_length=previous,
            days_since_last_check_in=delta,
            freeze_token_earned=earned,
            message=message,
            milestone=milestone,
        )
        return result, new_state

    def peek_status(self, state: StreakState, now: datetime) -> StreakOutlook:
        now = ensure_aware(now)
        delta = self.days_between(state.last_check_in, now)
        status = self._transition(state, delta)

        if delta is None:
            message = "Start your first practice!"
        elif delta == 0:
            message = "Practice completed today!"
        elif delta == 1:
            message = "Keep your streak alive today!"
        else:
            message = f"{delta} days since last practice"

        return StreakOutlook(
            would_be_status=status,
            days_since_last_check_in=delta,
            checked_in_today=delta == 0,
            at_risk=state.current_streak > 0 and delta == 1,
            message=message,
        )

    def calculate_milestone(self, streak: int) -> MilestoneInfo:
        name = next((label for days, label in MILESTONES if days == streak), None)
        upcoming = next(((days, label) for days, label in MILESTONES if days > streak), None)
        return MilestoneInfo(
            streak=streak,
            is_milestone=name is not None,
            milestone_name=name,
            next_milestone=upcoming[0] if upcoming else None,
            next_milestone_name=upcoming[1] if upcoming else None,
            days_until_next_milestone=(upcoming[0] - streak) if upcoming else None,
        )

    @staticmethod
    def get_protection_status(freeze_tokens: int, grace_period_used: bool) -> ProtectionStatus:
        tokens = max(0, freeze_tokens)
        grace_available = not grace_period_used
        token_text = f"{tokens} freeze token{'s' if tokens != 1 else ''}"

        if tokens > 0 and grace_available:
            protection, message = "both", f"Protected by {token_text} and your grace period."
        elif tokens > 0:
            protection, message = "freeze", f"Protected by {token_text}. Grace period already used."
        elif grace_available:
            protection, message = "grace", "Your grace period covers one missed day."
        else:
            protection, message = "none", "No protection left. Practice today to keep your streak."

        return ProtectionStatus(
            has_protection=protection != "none",
            protection_type=protection,
            freeze_tokens=tokens,
            grace_period_available=grace_available,
            message=message,
        )

    @staticmethod
    def days_between(last_check_in: Optional[datetime], now: datetime) -> Optional[int]:
        """Whole calendar days from the last check-in to now, in now's timezone. Future dates clamp to 0."""
        if last_check_in is None:
            return None
        now = ensure_aware(now)
        last_local = ensure_aware(last_check_in).astimezone(now.tzinfo)
        return max(0, (now.date() - last_local.date()).days)

    def _transition(self, state: StreakState, delta: Optional[int]) -> StreakStatus:
        if delta is None:
            return "continued"
        if delta == 0:
            return "maintained"
        if delta == 1:
            return "continued"
        if delta == 2 and not state.grace_period_used_this_streak:
            return "grace_period_used"
        if delta <= self.FREEZE_MAX_GAP and state.freeze_tokens > 0:
            return "frozen"
        return "broken"
