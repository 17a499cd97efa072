from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from engagement.api.dependencies import get_streak_service
from engagement.features.streaks.service import StreakService
from engagement.models.context import resolve_zone
from engagement.models.streak import StreakState

router = APIRouter(tags=["streaks"])


class CheckInRequest(BaseModel):
    state: StreakState
    now: Optional[datetime] = None
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            resolve_zone(value)
        return value


class ProtectionRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    freeze_tokens: int = Field(0, ge=0)
    grace_period_used: bool = False


@router.post("/v1/streaks/check-in")
def check_in(body: CheckInRequest, service: StreakService = Depends(get_streak_service)):
    """Apply one check-in and return the outcome plus the state the caller should persist."""
    result, state = service.check_in(body.state, body.now, body.timezone)
    return {"result": result.to_dict(), "state": state.to_dict()}


@router.post("/v1/streaks/status")
def streak_status(body: CheckInRequest, service: StreakService = Depends(get_streak_service)):
    return service.outlook(body.state, body.now, body.timezone).to_dict()


@router.get("/v1/streaks/milestones/{streak}")
def milestone(streak: int = Path(..., ge=0), service: StreakService = Depends(get_streak_service)):
    return service.tracker.calculate_milestone(streak).to_dict()


@router.post("/v1/streaks/protection")
def protection(body: ProtectionRequest, service: StreakService = Depends(get_streak_service)):
    return service.tracker.get_protection_status(body.freeze_tokens, body.grace_period_used).to_dict()
