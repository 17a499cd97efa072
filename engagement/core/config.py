import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Counter store (cooldowns, daily quota, reward fatigue)
    REDIS_URL: str = "redis://localhost:6379/0"
    COUNTER_BACKEND: str = "redis"  # redis | memory

    # Per-user mutual exclusion
    LOCK_BACKEND: str = "local"  # local | redis
    LOCK_TIMEOUT_SECONDS: float = 5.0

    # In-app notification inbox
    DATABASE_URL: Optional[str] = "sqlite:///./engagement.db"

    # Streaks
    FREEZE_TOKEN_EARN_RATE: int = 7

    # Rewards
    REWARD_FATIGUE_THRESHOLD: int = 5
    REWARD_FATIGUE_WINDOW_SECONDS: int = 24 * 60 * 60

    # Notifications
    NOTIFICATION_BATCH_LIMIT: int = 3
    NOTIFICATION_STATE_TTL_SECONDS: int = 24 * 60 * 60

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate deployment configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets (credentials embedded in URLs) are never logged.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("engagement")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    if getattr(cfg, "COUNTER_BACKEND", "redis") not in ("redis", "memory"):
        problems.append("COUNTER_BACKEND must be 'redis' or 'memory'")
    if getattr(cfg, "LOCK_BACKEND", "local") not in ("local", "redis"):
        problems.append("LOCK_BACKEND must be 'local' or 'redis'")

    redis_url = getattr(cfg, "REDIS_URL", "") or ""
    if getattr(cfg, "COUNTER_BACKEND", "redis") == "redis" and not redis_url.startswith(("redis://", "rediss://", "unix://")):
        problems.append("REDIS_URL must be a redis:// or rediss:// URL")

    if str(getattr(cfg, "ENV", "development")).lower() == "production":
        # Counters held in process memory are lost on restart and not shared between workers
        if getattr(cfg, "COUNTER_BACKEND", "redis") == "memory":
            problems.append("COUNTER_BACKEND=memory is not allowed in production")
        if getattr(cfg, "LOCK_BACKEND", "local") == "local":
            problems.append("LOCK_BACKEND=local does not serialize across processes in production")
        if not getattr(cfg, "DATABASE_URL", None):
            problems.append("DATABASE_URL is required in production")

    if problems:
        message = f"Invalid configuration: {'; '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
