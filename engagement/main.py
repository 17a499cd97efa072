import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

# Load env from the working directory's .env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from engagement.api import health, notifications, rewards, streaks
from engagement.core.clock import Clock, DefaultRandom, RandomSource, SystemClock
from engagement.core.config import Settings, settings, validate_config
from engagement.core.database import create_all_tables, init_engine
from engagement.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from engagement.core.locks import UserLock, build_user_lock
from engagement.core.logging import configure_logging
from engagement.core.middleware.request_id import RequestIdMiddleware
from engagement.core.store import CounterStore, build_counter_store
from engagement.features.notifications.delivery import InAppNotificationRepository, NotificationDelivery
from engagement.features.notifications.scheduler import NotificationScheduler
from engagement.features.rewards.engine import RewardEngine
from engagement.features.rewards.service import RewardService
from engagement.features.streaks.service import StreakService
from engagement.features.streaks.tracker import StreakTracker


def create_app(
    settings_obj: Optional[Settings] = None,
    *,
    store: Optional[CounterStore] = None,
    clock: Optional[Clock] = None,
    random_source: Optional[RandomSource] = None,
    user_lock: Optional[UserLock] = None,
    inbox: Optional[InAppNotificationRepository] = None,
    delivery: Optional[NotificationDelivery] = None,
) -> FastAPI:
    """
    Build the engagement API with every collaborator explicitly wired.

    Anything not passed in is built from settings; tests pass a fixed clock,
    scripted randomness, an in-memory store and an SQLite inbox.
    """
    cfg = settings_obj or settings
    configure_logging(cfg.ENV)
    validate_config(strict=getattr(cfg, "CONFIG_STRICT", False), settings_obj=cfg)

    clock = clock or SystemClock()
    random_source = random_source or DefaultRandom()
    store = store or build_counter_store(cfg, clock=clock)
    user_lock = user_lock or build_user_lock(cfg)
    owns_database = inbox is None
    inbox = inbox or InAppNotificationRepository(clock=clock)
    delivery = delivery or NotificationDelivery.default(inbox)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("engagement")
        logger.info("Starting engagement service...")
        if owns_database:
            init_engine(cfg.DATABASE_URL)
            create_all_tables()
        try:
            yield
        finally:
            logger.info("Stopping engagement service...")

    app = FastAPI(title="Habit Engagement Engine", lifespan=lifespan)

    app.state.settings = cfg
    app.state.counter_store = store
    app.state.inbox = inbox
    app.state.streak_service = StreakService(
        StreakTracker(freeze_token_earn_rate=cfg.FREEZE_TOKEN_EARN_RATE),
        clock=clock,
        user_lock=user_lock,
    )
    app.state.reward_service = RewardService(
        store,
        RewardEngine(
            random_source,
            fatigue_threshold=cfg.REWARD_FATIGUE_THRESHOLD,
            fatigue_window_seconds=cfg.REWARD_FATIGUE_WINDOW_SECONDS,
        ),
        clock=clock,
        user_lock=user_lock,
    )
    app.state.notification_scheduler = NotificationScheduler(
        store,
        clock=clock,
        random_source=random_source,
        user_lock=user_lock,
        delivery=delivery,
        batch_limit=cfg.NOTIFICATION_BATCH_LIMIT,
        state_ttl_seconds=cfg.NOTIFICATION_STATE_TTL_SECONDS,
    )

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(streaks.router)
    app.include_router(rewards.router)
    app.include_router(notifications.router)
    app.include_router(health.router)

    return app


app = create_app()
