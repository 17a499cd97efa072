"""
Static reward configuration: base odds, which reward types each rarity can
produce, the pools those types draw from, and the text/art shown on reveal.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Tuple

from engagement.models.context import RewardContext
from engagement.models.reward import RewardPoolEntry, RewardRarity, RewardType, VariableReward


# Evaluated in this order, common first.
BASE_PROBABILITIES: List[Tuple[RewardRarity, float]] = [
    (RewardRarity.COMMON, 0.15),
    (RewardRarity.UNCOMMON, 0.08),
    (RewardRarity.RARE, 0.03),
    (RewardRarity.EPIC, 0.01),
    (RewardRarity.LEGENDARY, 0.001),
]

ELIGIBLE_TYPES: Dict[RewardRarity, List[RewardType]] = {
    RewardRarity.COMMON: [RewardType.BONUS_XP, RewardType.PEER_SHOUTOUT],
    RewardRarity.UNCOMMON: [RewardType.BONUS_XP, RewardType.PEER_SHOUTOUT],
    RewardRarity.RARE: [RewardType.RARE_BADGE, RewardType.COLLECTIBLE_ART, RewardType.FREEZE_TOKEN],
    RewardRarity.EPIC: [
        RewardType.RARE_BADGE,
        RewardType.COLLECTIBLE_ART,
        RewardType.FREEZE_TOKEN,
        RewardType.HOUSE_GIFT,
        RewardType.SECRET_PRACTICE,
        RewardType.TITLE_UNLOCK,
    ],
    RewardRarity.LEGENDARY: [RewardType.HOUSE_GIFT, RewardType.SECRET_PRACTICE, RewardType.TITLE_UNLOCK],
}

BASE_XP = 10
BONUS_XP_LIFETIME = timedelta(hours=24)

REWARD_POOLS: Dict[RewardType, List[RewardPoolEntry]] = {
    RewardType.BONUS_XP: [
        RewardPoolEntry(RewardRarity.COMMON, "xp_2x", {"multiplier": 2}),
        RewardPoolEntry(RewardRarity.UNCOMMON, "xp_3x", {"multiplier": 3}),
    ],
    RewardType.PEER_SHOUTOUT: [
        RewardPoolEntry(RewardRarity.COMMON, "HOUSE_CHEER", {"audience": "house"}),
        RewardPoolEntry(RewardRarity.UNCOMMON, "CLASS_SPOTLIGHT", {"audience": "class"}),
    ],
    RewardType.RARE_BADGE: [
        RewardPoolEntry(RewardRarity.RARE, "SUNRISE_WARRIOR", {"badge": "SUNRISE_WARRIOR"}, condition="morning"),
        RewardPoolEntry(RewardRarity.RARE, "MIDNIGHT_SAGE", {"badge": "MIDNIGHT_SAGE"}, condition="night"),
        RewardPoolEntry(RewardRarity.RARE, "PERFECT_FORM", {"badge": "PERFECT_FORM"}),
        RewardPoolEntry(RewardRarity.RARE, "FLOW_STATE", {"badge": "FLOW_STATE"}),
        RewardPoolEntry(RewardRarity.EPIC, "TRANSCENDENT", {"badge": "TRANSCENDENT"}),
    ],
    RewardType.COLLECTIBLE_ART: [
        RewardPoolEntry(RewardRarity.RARE, "ENLIGHTENED_FACE", {"name": "Enlightened Face"}),
        RewardPoolEntry(RewardRarity.RARE, "MOUNTAIN_PEAK", {"name": "Mountain Peak"}),
        RewardPoolEntry(RewardRarity.EPIC, "COSMIC_BURST", {"name": "Cosmic Burst"}),
    ],
    RewardType.FREEZE_TOKEN: [
        RewardPoolEntry(RewardRarity.RARE, "FREEZE_1", {"tokens": 1}),
        RewardPoolEntry(RewardRarity.EPIC, "FREEZE_2", {"tokens": 2}),
    ],
    RewardType.HOUSE_GIFT: [
        RewardPoolEntry(RewardRarity.EPIC, "CUSTOM_AVATAR_FRAME", {"gift": "CUSTOM_AVATAR_FRAME"}),
        RewardPoolEntry(RewardRarity.EPIC, "HOUSE_BANNER", {"gift": "HOUSE_BANNER"}),
        RewardPoolEntry(RewardRarity.EPIC, "EXCLUSIVE_PRACTICE", {"gift": "EXCLUSIVE_PRACTICE"}),
        RewardPoolEntry(RewardRarity.LEGENDARY, "HOUSE_ELDER_TITLE", {"gift": "HOUSE_ELDER_TITLE"}),
    ],
    RewardType.SECRET_PRACTICE: [
        RewardPoolEntry(RewardRarity.EPIC, "MOONLIGHT_BREATH", {"practice": "Moonlight Breath"}),
        RewardPoolEntry(RewardRarity.LEGENDARY, "SILENT_HOUR", {"practice": "The Silent Hour"}),
    ],
    RewardType.TITLE_UNLOCK: [
        RewardPoolEntry(RewardRarity.EPIC, "KEEPER_OF_THE_FLAME", {"title": "Keeper of the Flame"}),
        RewardPoolEntry(RewardRarity.LEGENDARY, "HOUSE_LUMINARY", {"title": "House Luminary"}),
    ],
}

_CONDITION_TIMES = {
    "morning": {"morning", "early_morning"},
    "night": {"evening", "late_night"},
}

BADGE_TITLES = {
    "SUNRISE_WARRIOR": "Sunrise Warrior",
    "MIDNIGHT_SAGE": "Midnight Sage",
    "PERFECT_FORM": "Perfect Form",
    "FLOW_STATE": "Flow State Master",
    "TRANSCENDENT": "Transcendent Being",
}

BADGE_DESCRIPTIONS = {
    "SUNRISE_WARRIOR": "Completed practice before the world woke up",
    "MIDNIGHT_SAGE": "Practiced under the stars",
    "PERFECT_FORM": "Flawless execution detected",
    "FLOW_STATE": "Achieved deep flow state",
    "TRANSCENDENT": "Reached a higher plane",
}

BADGE_ART = {
    "SUNRISE_WARRIOR": "\n     ___\n    / ☀ \\\n   |     |\n    \\___/\n",
    "MIDNIGHT_SAGE": "\n     ___\n    / ★ \\\n   | ◐◑ |\n    \\___/\n",
    "PERFECT_FORM": "\n    ╔═══╗\n    ║ ✓ ║\n    ╚═══╝\n",
    "FLOW_STATE": "\n    ≈≈≈≈≈\n    ≈ ∞ ≈\n    ≈≈≈≈≈\n",
}

COLLECTIBLE_ART = {
    "Enlightened Face": "\n    .-\"-.\n   /     \\\n  | o   o |\n  |   >   |\n  |  ___  |\n   \\_____/\n",
    "Mountain Peak": "\n     /\\\n    /  \\\n   / /\\ \\\n  / /  \\ \\\n /_/    \\_\\\n   LEGEND\n",
    "Cosmic Burst": "\n  ✨ ★ ✨\n    \\|/\n  ---*---\n    /|\\\n  ✨ ★ ✨\n",
}

GIFT_TITLES = {
    "CUSTOM_AVATAR_FRAME": "Custom Avatar Frame",
    "HOUSE_BANNER": "House Banner",
    "EXCLUSIVE_PRACTICE": "Exclusive House Practice",
    "HOUSE_ELDER_TITLE": "House Elder",
}


def condition_met(condition, context: RewardContext) -> bool:
    if not condition:
        return True
    allowed = _CONDITION_TIMES.get(condition)
    if allowed is None:
        return True
    return context.metadata.time_of_day in allowed


def xp_art(multiplier: int) -> str:
    if multiplier >= 10:
        return f"\n    ╔══════╗\n    ║ {multiplier}x! ║\n    ╚══════╝\n"
    if multiplier >= 5:
        return f"\n    ┌──────┐\n    │ {multiplier}x! │\n    └──────┘\n"
    return f"[ {multiplier}x XP ]"


def present_reward(
    reward_type: RewardType,
    entry: RewardPoolEntry,
    context: RewardContext,
    *,
    reward_id: str,
    now: datetime,
) -> VariableReward:
    """Turn a pool entry into the reward object shown to the user."""
    house = context.metadata.house or "your house"

    if reward_type == RewardType.BONUS_XP:
        multiplier = int(entry.data["multiplier"])
        return VariableReward(
            id=reward_id,
            type=reward_type,
            rarity=entry.rarity,
            value={"multiplier": multiplier, "baseXP": BASE_XP, "totalXP": BASE_XP * multiplier},
            title=f"{multiplier}x XP Bonus!",
            description=f"Earned {BASE_XP * multiplier} XP instead of {BASE_XP}!",
            decorative_art=xp_art(multiplier),
            expires_at=now + BONUS_XP_LIFETIME,
        )

    if reward_type == RewardType.RARE_BADGE:
        badge = entry.data["badge"]
        return VariableReward(
            id=reward_id,
            type=reward_type,
            rarity=entry.rarity,
            value={"badge": badge},
            title=BADGE_TITLES.get(badge, "Mystery Badge"),
            description=BADGE_DESCRIPTIONS.get(badge, "A rare achievement"),
            decorative_art=BADGE_ART.get(badge, "[ ? ]"),
        )

    if reward_type == RewardType.COLLECTIBLE_ART:
        name = entry.data["name"]
        art = COLLECTIBLE_ART.get(name, "")
        return VariableReward(
            id=reward_id,
            type=reward_type,
            rarity=entry.rarity,
            value={"art": art, "name": name},
            title=f"Unlocked: {name}",
            description="A rare piece of art for your collection!",
            decorative_art=art,
        )

    if reward_type == RewardType.FREEZE_TOKEN:
        tokens = int(entry.data["tokens"])
        return VariableReward(
            id=reward_id,
            type=reward_type,
            rarity=entry.rarity,
            value={"tokens": tokens},
            title=f"+{tokens} Freeze Token{'s' if tokens != 1 else ''}",
            description="Extra protection for a day when life gets in the way.",
        )

    if reward_type == RewardType.PEER_SHOUTOUT:
        audience = entry.data.get("audience", "house")
        return VariableReward(
            id=reward_id,
            type=reward_type,
            rarity=entry.rarity,
            value={"audience": audience},
            title="Shoutout!" if audience == "house" else "Class Spotlight!",
            description=f"Your practice was celebrated across {house}." if audience == "house" else "Your class is cheering you on.",
        )

    if reward_type == RewardType.HOUSE_GIFT:
        gift = entry.data["gift"]
        return VariableReward(
            id=reward_id,
            type=reward_type,
            rarity=entry.rarity,
            value={"gift": gift, "house": house},
            title=f"Gift from {house}: {GIFT_TITLES.get(gift, 'Mystery Gift')}",
            description="Your house recognizes your dedication.",
        )

    if reward_type == RewardType.SECRET_PRACTICE:
        practice = entry.data["practice"]
        return VariableReward(
            id=reward_id,
            type=reward_type,
            rarity=entry.rarity,
            value={"practice": practice},
            title=f"Secret Practice: {practice}",
            description="A hidden practice has revealed itself to you.",
        )

    if reward_type == RewardType.TITLE_UNLOCK:
        title = entry.data["title"]
        return VariableReward(
            id=reward_id,
            type=reward_type,
            rarity=entry.rarity,
            value={"title": title},
            title=f"Title Unlocked: {title}",
            description="Wear it with pride.",
        )

    return VariableReward(
        id=reward_id,
        type=reward_type,
        rarity=entry.rarity,
        value=dict(entry.data),
        title="Mystery Reward!",
        description="Something special just for you",
    )
