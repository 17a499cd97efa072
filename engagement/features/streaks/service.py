from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from engagement.core.clock import Clock, SystemClock, ensure_aware
from engagement.core.locks import UserLock, UserLockRegistry
from engagement.core.logging import log_event
from engagement.core.metrics import streak_check_ins_total
from engagement.features.streaks.tracker import StreakTracker
from engagement.models.context import resolve_zone
from engagement.models.streak import StreakCheckInResult, StreakOutlook, StreakState


class StreakService:
    """Serializes check-ins per user around the pure tracker and records the outcome."""

    def __init__(
        self,
        tracker: Optional[StreakTracker] = None,
        *,
        clock: Optional[Clock] = None,
        user_lock: Optional[UserLock] = None,
    ):
        self.tracker = tracker or StreakTracker()
        self.clock = clock or SystemClock()
        self.user_lock = user_lock or UserLockRegistry()

    def check_in(
        self,
        state: StreakState,
        now: Optional[datetime] = None,
        timezone: Optional[str] = None,
    ) -> Tuple[StreakCheckInResult, StreakState]:
        """
        Apply one check-in for the user.

        Calendar days are counted in `timezone` when given, otherwise in the
        timezone carried by `now` (UTC for the default clock).
        """
        moment = self._local_moment(now, timezone)
        with self.user_lock.hold(state.user_id):
            result, new_state = self.tracker.check_in(state, moment)

        streak_check_ins_total.inc(labels={"status": result.streak_status})
        log_event(
            "info",
            "streak.check_in",
            user_id=state.user_id,
            event_type="streak.check_in",
            extra={
                "status": result.streak_status,
                "previous_length": result.previous_streak_length,
                "new_length": result.new_streak_length,
                "freeze_tokens": result.freeze_tokens_remaining,
                "comeback": result.comeback_bonus,
                "days_since_last": result.days_since_last_check_in,
            },
        )
        if result.comeback_bonus:
            # Badge itself is awarded by the caller's achievements collaborator
            log_event("info", "streak.comeback", user_id=state.user_id, event_type="streak.comeback")
        return result, new_state

    def outlook(
        self, state: StreakState, now: Optional[datetime] = None, timezone: Optional[str] = None
    ) -> StreakOutlook:
        return self.tracker.peek_status(state, self._local_moment(now, timezone))

    def _local_moment(self, now: Optional[datetime], timezone: Optional[str]) -> datetime:
        moment = ensure_aware(now) if now is not None else self.clock.now()
        if timezone:
            moment = moment.astimezone(resolve_zone(timezone))
        return moment
