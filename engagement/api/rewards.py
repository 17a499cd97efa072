from fastapi import APIRouter, Depends

from engagement.api.dependencies import get_reward_service
from engagement.features.rewards.service import RewardService
from engagement.models.context import RewardContext

router = APIRouter(tags=["rewards"])


@router.post("/v1/rewards/check")
def check_rewards(context: RewardContext, service: RewardService = Depends(get_reward_service)):
    """Roll for variable rewards after an action. Always 200; an empty list is a normal outcome."""
    rewards = service.check_for_rewards(context)
    return {"rewards": [reward.to_dict() for reward in rewards]}
