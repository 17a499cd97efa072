"""
Smart Notification Scheduler

Picks at most a few well-timed notifications per pass, honouring per-type
cooldowns, a daily cap by frequency preference, and do-not-disturb windows.
Sending is a separate step that commits cooldown and quota state before
dispatching.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from engagement.core.clock import Clock, DefaultRandom, RandomSource, SystemClock, ensure_aware
from engagement.core.errors import LockContentionError, StateStoreError
from engagement.core.locks import UserLock, UserLockRegistry
from engagement.core.logging import log_event
from engagement.core.metrics import notifications_scheduled_total, notifications_sent_total, state_store_errors_total
from engagement.core.store import CounterStore, apply_mutations, cooldown_key, daily_count_key
from engagement.features.notifications.delivery import NotificationDelivery
from engagement.features.notifications.templates import (
    NOTIFICATION_TYPE_ORDER,
    TYPE_COOLDOWN_PRIORITY,
    TemplateEnv,
    first_matching_template,
)
from engagement.models.context import UserContext
from engagement.models.mutations import CounterMutation
from engagement.models.notification import (
    DeliveryResult,
    NotificationChannel,
    NotificationPriority,
    NotificationReason,
    NotificationType,
    SmartNotification,
)


COOLDOWN_PERIODS: Dict[NotificationPriority, timedelta] = {
    NotificationPriority.LOW: timedelta(hours=4),
    NotificationPriority.MEDIUM: timedelta(hours=2),
    NotificationPriority.HIGH: timedelta(minutes=30),
    NotificationPriority.URGENT: timedelta(0),
}

DAILY_LIMITS: Dict[str, int] = {
    "minimal": 2,
    "balanced": 5,
    "frequent": 10,
}

NOTIFICATION_LIFETIME = timedelta(hours=24)


def epoch_millis(moment: datetime) -> int:
    """Epoch milliseconds, rounded up so a stamp never predates the send."""
    return math.ceil(ensure_aware(moment).timestamp() * 1000)


class NotificationScheduler:
    def __init__(
        self,
        store: CounterStore,
        *,
        clock: Optional[Clock] = None,
        random_source: Optional[RandomSource] = None,
        user_lock: Optional[UserLock] = None,
        delivery: Optional[NotificationDelivery] = None,
        batch_limit: int = 3,
        state_ttl_seconds: int = 86400,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.env = TemplateEnv(random=random_source or DefaultRandom())
        self.user_lock = user_lock or UserLockRegistry()
        self.delivery = delivery or NotificationDelivery.default(clock=self.clock)
        self.batch_limit = batch_limit
        self.state_ttl_seconds = state_ttl_seconds

    @staticmethod
    def cooldown_for(notification_type: NotificationType) -> timedelta:
        priority = TYPE_COOLDOWN_PRIORITY.get(notification_type, NotificationPriority.MEDIUM)
        return COOLDOWN_PERIODS[priority]

    @staticmethod
    def daily_limit(context: UserContext) -> int:
        return DAILY_LIMITS.get(context.preferences.notification_frequency, DAILY_LIMITS["balanced"])

    @staticmethod
    def select_channel(priority: NotificationPriority, context: UserContext) -> NotificationChannel:
        if priority == NotificationPriority.URGENT:
            return NotificationChannel.PUSH
        channels = context.preferences.channels
        return channels[0] if channels else NotificationChannel.IN_APP

    def analyze_and_schedule(
        self,
        user_id: str,
        context: Optional[UserContext],
        now: Optional[datetime] = None,
    ) -> List[SmartNotification]:
        """
        Run one scheduling pass for a user.

        When `now` is given the context's local time is moved to it;
        otherwise the context is used as supplied and cooldowns are measured
        against the injected clock. Returns at most `batch_limit`
        notifications ordered by (priority rank, scheduled time).
        """
        if context is None:
            return []
        if context.user_id != user_id:
            log_event(
                "warning",
                "notification.context_mismatch",
                user_id=user_id,
                event_type="notification.context_mismatch",
                extra={"context_user_id": context.user_id},
            )
            return []

        reference = ensure_aware(now) if now is not None else self.clock.now()
        ctx = context.at(reference) if now is not None else context

        try:
            if self._quota_reached(ctx):
                return []

            candidates: List[SmartNotification] = []
            for notification_type in NOTIFICATION_TYPE_ORDER:
                if self._on_cooldown(ctx, notification_type, reference):
                    continue
                candidate = self._candidate(ctx, notification_type, reference)
                if candidate is not None:
                    candidates.append(candidate)
        except Exception as exc:
            log_event(
                "error",
                "notification.schedule_failed",
                user_id=user_id,
                event_type="notification.schedule_failed",
                error_code=getattr(exc, "code", "internal_error"),
                extra={"error": exc},
                exc_info=True,
            )
            return []

        # Quiet hours override everything that matched
        if ctx.in_dnd():
            return []

        candidates.sort(key=lambda n: n.sort_key())
        batch = candidates[: self.batch_limit]
        for notification in batch:
            notifications_scheduled_total.inc(labels={"type": notification.type.value})
        log_event(
            "info",
            "notification.scheduled",
            user_id=user_id,
            event_type="notification.scheduled",
            extra={
                "candidates": len(candidates),
                "batch": [n.type.value for n in batch],
            },
        )
        return batch

    def _quota_reached(self, ctx: UserContext) -> bool:
        key = daily_count_key(ctx.user_id, ctx.local_time.date())
        try:
            sent_today = self.store.get_int(key)
        except StateStoreError as exc:
            self._log_read_failure(ctx.user_id, "daily_count", exc)
            return True
        return sent_today >= self.daily_limit(ctx)

    def _on_cooldown(self, ctx: UserContext, notification_type: NotificationType, reference: datetime) -> bool:
        try:
            raw = self.store.get(cooldown_key(ctx.user_id, notification_type.value))
            last_sent_ms = int(raw) if raw is not None else None
        except (StateStoreError, ValueError) as exc:
            self._log_read_failure(ctx.user_id, "cooldown", exc, notification_type=notification_type.value)
            return True
        if last_sent_ms is None:
            return False
        elapsed_ms = reference.timestamp() * 1000 - last_sent_ms
        return elapsed_ms < self.cooldown_for(notification_type).total_seconds() * 1000

    def _candidate(
        self, ctx: UserContext, notification_type: NotificationType, reference: datetime
    ) -> Optional[SmartNotification]:
        template = first_matching_template(notification_type, ctx, self.env)
        if template is None:
            return None
        scheduled_for = template.timing(ctx, self.env)
        if scheduled_for is None:
            return None

        return SmartNotification(
            id=f"{ctx.user_id}-{notification_type.value}-{int(reference.timestamp() * 1000)}",
            user_id=ctx.user_id,
            type=notification_type,
            priority=template.priority,
            channel=self.select_channel(template.priority, ctx),
            content=template.content(ctx, self.env),
            scheduled_for=scheduled_for,
            expires_at=scheduled_for + NOTIFICATION_LIFETIME,
            context=NotificationReason(
                reason=f"Matched template for {notification_type.value}",
                user_state={
                    "userId": ctx.user_id,
                    "currentStreak": ctx.current_streak,
                    "house": ctx.house,
                    "lastActiveAt": ctx.last_active_at.isoformat(),
                },
                triggers=[f"streak:{ctx.current_streak}", f"house:{ctx.house}"],
            ),
        )

    def send_mutations(self, notification: SmartNotification, now: datetime) -> List[CounterMutation]:
        """Cooldown stamp and daily-count increment that record a send."""
        local_day = self._local_day(notification, now)
        return [
            CounterMutation.set_value(
                cooldown_key(notification.user_id, notification.type.value),
                str(epoch_millis(now)),
                self.state_ttl_seconds,
            ),
            CounterMutation.increment(daily_count_key(notification.user_id, local_day), self.state_ttl_seconds),
        ]

    @staticmethod
    def _local_day(notification: SmartNotification, now: datetime) -> date:
        zone = notification.scheduled_for.tzinfo
        return now.astimezone(zone).date() if zone else now.date()

    def send(self, notification: SmartNotification, now: Optional[datetime] = None) -> DeliveryResult:
        """
        Commit cooldown and quota state, then dispatch.

        State is written first; a dispatch failure leaves it in place. If the
        state cannot be written the notification is not dispatched.
        """
        moment = ensure_aware(now) if now is not None else self.clock.now()
        user_id = notification.user_id

        try:
            with self.user_lock.hold(user_id):
                try:
                    apply_mutations(self.store, self.send_mutations(notification, moment))
                except StateStoreError as exc:
                    state_store_errors_total.inc(labels={"operation": "notification_state_write"})
                    self._record_outcome(notification, "not_sent")
                    log_event(
                        "warning",
                        "notification.not_sent",
                        user_id=user_id,
                        event_type="notification.not_sent",
                        error_code=exc.code,
                        extra={"notification_id": notification.id, "notification_type": notification.type.value},
                    )
                    return DeliveryResult(False, notification.id, notification.channel, error=exc.code)

                try:
                    self.delivery.deliver(notification)
                except Exception as exc:
                    self._record_outcome(notification, "failed")
                    log_event(
                        "error",
                        "notification.delivery_failed",
                        user_id=user_id,
                        event_type="notification.delivery_failed",
                        error_code="delivery_failed",
                        extra={
                            "notification_id": notification.id,
                            "notification_type": notification.type.value,
                            "channel": notification.channel.value,
                            "error": exc,
                        },
                        exc_info=True,
                    )
                    return DeliveryResult(False, notification.id, notification.channel, error=str(exc))
        except LockContentionError as exc:
            self._record_outcome(notification, "not_sent")
            return DeliveryResult(False, notification.id, notification.channel, error=exc.code)

        self._record_outcome(notification, "sent")
        log_event(
            "info",
            "notification.sent",
            user_id=user_id,
            event_type="notification.sent",
            extra={
                "notification_id": notification.id,
                "notification_type": notification.type.value,
                "channel": notification.channel.value,
                "priority": notification.priority.value,
            },
        )
        return DeliveryResult(True, notification.id, notification.channel)

    @staticmethod
    def _record_outcome(notification: SmartNotification, outcome: str) -> None:
        notifications_sent_total.inc(
            labels={"type": notification.type.value, "channel": notification.channel.value, "outcome": outcome}
        )

    @staticmethod
    def _log_read_failure(user_id: str, stage: str, exc: Exception, **fields) -> None:
        state_store_errors_total.inc(labels={"operation": f"{stage}_read"})
        log_event(
            "warning",
            "store.read_failed",
            user_id=user_id,
            event_type="store.read_failed",
            error_code=getattr(exc, "code", "state_store_unavailable"),
            extra={"stage": stage, "error": exc, **fields},
        )
