"""
Variable Reward Engine

Decides which surprise rewards an action earns. Pure: the caller supplies the
rolling fatigue count and the current instant, and receives the rewards plus
the counter mutations that record them. Nothing here touches a store.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from engagement.core.clock import DefaultRandom, RandomSource, ensure_aware
from engagement.core.store import reward_count_key
from engagement.features.rewards import pools
from engagement.models.context import RewardContext
from engagement.models.mutations import CounterMutation
from engagement.models.reward import ProbabilityModifier, RewardRarity, RewardType, VariableReward


class RewardEngine:
    """Tiered probability draws with streak, time-of-day and fatigue modifiers."""

    FATIGUE_THRESHOLD = 5
    FATIGUE_WINDOW_SECONDS = 86400
    WEEKEND_XP_MULTIPLIER = 2

    def __init__(
        self,
        random_source: Optional[RandomSource] = None,
        *,
        fatigue_threshold: int = FATIGUE_THRESHOLD,
        fatigue_window_seconds: int = FATIGUE_WINDOW_SECONDS,
    ):
        self.random_source = random_source or DefaultRandom()
        self.fatigue_threshold = fatigue_threshold
        self.fatigue_window_seconds = fatigue_window_seconds

    def probability_modifier(self, context: RewardContext, recent_reward_count: int) -> ProbabilityModifier:
        modifier = 1.0
        reasons: List[str] = []
        meta = context.metadata

        streak = meta.streak_length or 0
        if streak >= 30:
            modifier *= 2.0
            reasons.append("30+ day streak")
        elif streak >= 7:
            modifier *= 1.5
            reasons.append("7+ day streak")

        if meta.time_of_day == "early_morning":
            modifier *= 1.3
            reasons.append("Early bird bonus")
        elif meta.time_of_day == "late_night":
            modifier *= 1.2
            reasons.append("Night owl bonus")

        if (meta.consecutive_days or 0) >= 3:
            modifier *= 1.1
            reasons.append("Consistency bonus")

        if recent_reward_count > self.fatigue_threshold:
            modifier *= 0.5
            reasons.append("Cooldown period")

        return ProbabilityModifier(modifier=modifier, reasons=reasons)

    def decide(
        self,
        context: RewardContext,
        recent_reward_count: int,
        now: datetime,
    ) -> Tuple[List[VariableReward], List[CounterMutation]]:
        """
        Roll every rarity tier once, common first.

        Non-legendary tiers can all grant in the same pass; a legendary grant
        ends the pass. Tiers whose pools have nothing eligible are skipped.
        """
        now = ensure_aware(now)
        modifier = self.probability_modifier(context, recent_reward_count).modifier
        rewards: List[VariableReward] = []

        for rarity, base in pools.BASE_PROBABILITIES:
            draw = self.random_source.random()
            if draw >= base * modifier:
                continue

            reward = self._pick(rarity, context, now)
            if reward is None:
                continue
            rewards.append(reward)
            if rarity == RewardRarity.LEGENDARY:
                break

        if self.is_weekend(now, context.timezone):
            rewards = [self._apply_event_bonus(reward) for reward in rewards]

        key = reward_count_key(context.user_id)
        mutations = [CounterMutation.increment(key, self.fatigue_window_seconds) for _ in rewards]
        return rewards, mutations

    def _pick(self, rarity: RewardRarity, context: RewardContext, now: datetime) -> Optional[VariableReward]:
        eligible_types = pools.ELIGIBLE_TYPES.get(rarity, [])
        if not eligible_types:
            return None
        reward_type = self.random_source.choice(eligible_types)

        entries = [
            entry
            for entry in pools.REWARD_POOLS.get(reward_type, [])
            if entry.rarity == rarity and pools.condition_met(entry.condition, context)
        ]
        if not entries:
            return None
        entry = self.random_source.choice(entries)

        return pools.present_reward(
            reward_type,
            entry,
            context,
            reward_id=f"reward_{uuid.uuid4().hex}",
            now=now,
        )

    @staticmethod
    def is_weekend(now: datetime, timezone_name: Optional[str] = None) -> bool:
        local = ensure_aware(now)
        if timezone_name:
            local = local.astimezone(ZoneInfo(timezone_name))
        return local.weekday() >= 5

    def _apply_event_bonus(self, reward: VariableReward) -> VariableReward:
        if reward.type != RewardType.BONUS_XP:
            return reward
        multiplier = int(reward.value.get("multiplier", 1)) * self.WEEKEND_XP_MULTIPLIER
        base_xp = int(reward.value.get("baseXP", pools.BASE_XP))
        reward.value = {**reward.value, "multiplier": multiplier, "totalXP": base_xp * multiplier}
        reward.title = f"🎉 {reward.title} (Event Bonus!)"
        reward.decorative_art = pools.xp_art(multiplier)
        return reward
