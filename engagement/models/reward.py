from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class RewardRarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class RewardType(str, Enum):
    BONUS_XP = "bonus_xp"
    PEER_SHOUTOUT = "peer_shoutout"
    RARE_BADGE = "rare_badge"
    COLLECTIBLE_ART = "collectible_art"
    FREEZE_TOKEN = "freeze_token"
    HOUSE_GIFT = "house_gift"
    SECRET_PRACTICE = "secret_practice"
    TITLE_UNLOCK = "title_unlock"


@dataclass(frozen=True)
class RewardPoolEntry:
    rarity: RewardRarity
    key: str
    data: Dict[str, Any] = field(default_factory=dict)
    condition: Optional[str] = None  # "morning" | "night"


@dataclass
class VariableReward:
    id: str
    type: RewardType
    rarity: RewardRarity
    value: Dict[str, Any]
    title: str
    description: str
    decorative_art: Optional[str] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "rarity": self.rarity.value,
            "value": dict(self.value),
            "title": self.title,
            "description": self.description,
            "decorativeArt": self.decorative_art,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(frozen=True)
class ProbabilityModifier:
    modifier: float
    reasons: List[str]
