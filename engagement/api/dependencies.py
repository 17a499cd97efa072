"""FastAPI dependencies resolving the services wired onto app.state by create_app."""

from fastapi import Request

from engagement.core.store import CounterStore
from engagement.features.notifications.delivery import InAppNotificationRepository
from engagement.features.notifications.scheduler import NotificationScheduler
from engagement.features.rewards.service import RewardService
from engagement.features.streaks.service import StreakService


def get_streak_service(request: Request) -> StreakService:
    return request.app.state.streak_service


def get_reward_service(request: Request) -> RewardService:
    return request.app.state.reward_service


def get_notification_scheduler(request: Request) -> NotificationScheduler:
    return request.app.state.notification_scheduler


def get_inbox(request: Request) -> InAppNotificationRepository:
    return request.app.state.inbox


def get_counter_store(request: Request) -> CounterStore:
    return request.app.state.counter_store
