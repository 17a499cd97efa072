"""
Reward Service

Effect side of the reward engine: reads the fatigue counter, asks the engine
for a decision, records the grants, logs them. Fails open, since a missed
reward must never block the action that triggered the check.
"""

from __future__ import annotations

from typing import List, Optional

from engagement.core.clock import Clock, SystemClock
from engagement.core.errors import StateStoreError
from engagement.core.locks import UserLock, UserLockRegistry
from engagement.core.logging import log_event
from engagement.core.metrics import reward_check_failures_total, rewards_granted_total, state_store_errors_total
from engagement.core.store import CounterStore, apply_mutations, reward_count_key
from engagement.features.rewards.engine import RewardEngine
from engagement.models.context import RewardContext
from engagement.models.reward import VariableReward


class RewardService:
    def __init__(
        self,
        store: CounterStore,
        engine: Optional[RewardEngine] = None,
        *,
        clock: Optional[Clock] = None,
        user_lock: Optional[UserLock] = None,
    ):
        self.store = store
        self.engine = engine or RewardEngine()
        self.clock = clock or SystemClock()
        self.user_lock = user_lock or UserLockRegistry()

    def check_for_rewards(self, context: Optional[RewardContext]) -> List[VariableReward]:
        """
        Roll for rewards after a user action.

        Returns the granted rewards (possibly empty). Never raises.
        """
        if context is None:
            return []

        try:
            with self.user_lock.hold(context.user_id):
                now = self.clock.now()
                recent = self._recent_reward_count(context)
                rewards, mutations = self.engine.decide(context, recent, now)
                self._record(context, mutations)
        except Exception as exc:
            reward_check_failures_total.inc(labels={"stage": "decide"})
            log_event(
                "error",
                "reward.check_failed",
                user_id=context.user_id,
                event_type="reward.check_failed",
                error_code=getattr(exc, "code", "internal_error"),
                extra={"action": context.action, "error": exc},
                exc_info=True,
            )
            return []

        for reward in rewards:
            rewards_granted_total.inc(labels={"rarity": reward.rarity.value, "type": reward.type.value})
            log_event(
                "info",
                "reward.granted",
                user_id=context.user_id,
                event_type="reward.granted",
                extra={
                    "action": context.action,
                    "reward_id": reward.id,
                    "reward_type": reward.type.value,
                    "rarity": reward.rarity.value,
                    "title": reward.title,
                },
            )
        return rewards

    def _recent_reward_count(self, context: RewardContext) -> int:
        try:
            return self.store.get_int(reward_count_key(context.user_id))
        except StateStoreError as exc:
            # Unknown fatigue reads as fatigued
            state_store_errors_total.inc(labels={"operation": "reward_count_read"})
            log_event(
                "warning",
                "store.read_failed",
                user_id=context.user_id,
                event_type="store.read_failed",
                error_code=exc.code,
                extra={"stage": "reward_fatigue", "action": context.action, "error": exc},
            )
            return self.engine.fatigue_threshold + 1

    def _record(self, context: RewardContext, mutations) -> None:
        try:
            apply_mutations(self.store, mutations)
        except StateStoreError as exc:
            state_store_errors_total.inc(labels={"operation": "reward_count_write"})
            reward_check_failures_total.inc(labels={"stage": "record"})
            log_event(
                "warning",
                "store.write_failed",
                user_id=context.user_id,
                event_type="store.write_failed",
                error_code=exc.code,
                extra={"stage": "reward_fatigue", "action": context.action, "error": exc},
            )
