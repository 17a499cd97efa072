"""
Notification Scheduler Guardrail Tests

Verify:
1. Template matching and candidate shape (id, expiry, reason, triggers)
2. Cooldown enforcement per type
3. Daily cap by frequency preference, keyed on the user's local date
4. DND hard override (including windows that wrap midnight)
5. Batch shape: at most 3, ordered by (priority rank, scheduled time)
6. Channel selection
7. Store failures resolve toward not notifying
8. Send commits state before dispatch and never rolls it back
"""

from datetime import datetime, timedelta, timezone

import pytest

from engagement.core.clock import SequenceRandom
from engagement.core.errors import StateStoreError
from engagement.core.metrics import notifications_sent_total
from engagement.core.store import InMemoryCounterStore, cooldown_key, daily_count_key
from engagement.features.notifications.delivery import (
    ChannelDispatcher,
    InAppDispatcher,
    NotificationDelivery,
)
from engagement.features.notifications.scheduler import NotificationScheduler, epoch_millis
from engagement.features.notifications.templates import (
    TemplateEnv,
    first_matching_template,
    optimal_notification_time,
)
from engagement.models.notification import (
    PRIORITY_RANK,
    NotificationChannel,
    NotificationPriority,
    NotificationType,
)

LATE = datetime(2025, 1, 15, 22, 30, tzinfo=timezone.utc)
EVENING = {"evening": {"start": "20:00", "end": "23:00"}}


class RecordingDispatcher(ChannelDispatcher):
    def __init__(self, channel):
        self.channel = channel
        self.sent = []

    def dispatch(self, notification):
        self.sent.append(notification)


class BrokenDispatcher(ChannelDispatcher):
    channel = NotificationChannel.PUSH

    def dispatch(self, notification):
        raise ConnectionError("push gateway timed out")


class CooldownUnreadableStore(InMemoryCounterStore):
    def get(self, key):
        if key.startswith("cooldown:"):
            raise StateStoreError("cooldown shard down")
        return super().get(key)


@pytest.fixture
def push():
    return RecordingDispatcher(NotificationChannel.PUSH)


@pytest.fixture
def delivery(push, inbox):
    return NotificationDelivery(
        {
            NotificationChannel.PUSH: push,
            NotificationChannel.IN_APP: InAppDispatcher(inbox),
        }
    )


@pytest.fixture
def scheduler(store, clock, never_grant, user_lock, delivery):
    return NotificationScheduler(
        store, clock=clock, random_source=never_grant, user_lock=user_lock, delivery=delivery
    )


@pytest.fixture
def at_risk_context(make_context):
    return make_context(currentStreak=7, longestStreak=7, freezeTokens=1, practiceWindows=EVENING)


class TestCandidateSelection:
    def test_quiet_context_yields_nothing(self, scheduler, make_context):
        assert scheduler.analyze_and_schedule("user_123", make_context(), LATE) == []

    def test_matching_types_ordered_by_priority(self, scheduler, at_risk_context):
        batch = scheduler.analyze_and_schedule("user_123", at_risk_context, LATE)
        assert [n.type for n in batch] == [
            NotificationType.STREAK_RISK,
            NotificationType.MILESTONE,
            NotificationType.PRACTICE_TIME,
        ]
        assert [n.priority for n in batch] == [
            NotificationPriority.HIGH,
            NotificationPriority.HIGH,
            NotificationPriority.LOW,
        ]

    def test_candidate_shape(self, scheduler, at_risk_context):
        risk = scheduler.analyze_and_schedule("user_123", at_risk_context, LATE)[0]
        assert risk.id == f"user_123-STREAK_RISK-{int(LATE.timestamp() * 1000)}"
        assert risk.scheduled_for == LATE
        assert risk.expires_at == LATE + timedelta(hours=24)
        assert risk.content.title == "⚠️ 7 day streak at risk!"
        assert risk.content.body == "Complete a quick practice or use a freeze token"
        assert risk.context.reason == "Matched template for STREAK_RISK"
        assert risk.context.triggers == ["streak:7", "house:Phoenix"]
        assert risk.context.user_state["house"] == "Phoenix"
        assert risk.to_dict()["scheduledFor"].startswith("2025-01-15T22:30")

    def test_first_matching_template_wins(self, make_context):
        context = make_context(currentStreak=5, localTime=LATE)
        template = first_matching_template(NotificationType.STREAK_RISK, context, TemplateEnv())
        assert template.priority == NotificationPriority.HIGH

        gentler = make_context(currentStreak=1, localTime=LATE.replace(hour=20))
        template = first_matching_template(NotificationType.STREAK_RISK, gentler, TemplateEnv())
        assert template.name == "four_hours_left"

    def test_comeback_after_three_days(self, scheduler, make_context):
        context = make_context(lastActiveAt=LATE - timedelta(days=3))
        batch = scheduler.analyze_and_schedule("user_123", context, LATE)
        assert [n.type for n in batch] == [NotificationType.COMEBACK]
        assert batch[0].content.title == "Your Warrior practice misses you"

    def test_house_gathering_on_sunday(self, scheduler, make_context):
        sunday_morning = datetime(2025, 1, 19, 10, 0, tzinfo=timezone.utc)
        batch = scheduler.analyze_and_schedule("user_123", make_context(lastActiveAt=sunday_morning), sunday_morning)
        assert [n.type for n in batch] == [NotificationType.HOUSE_EVENT]
        assert batch[0].scheduled_for == sunday_morning.replace(hour=18)

    def test_social_nudge_for_lapsed_streak(self, scheduler, make_context):
        batch = scheduler.analyze_and_schedule("user_123", make_context(longestStreak=12), LATE)
        assert [n.type for n in batch] == [NotificationType.SOCIAL_NUDGE]

    def test_random_templates_use_injected_source(self, store, clock, user_lock, delivery, make_context):
        morning = LATE.replace(hour=7)
        always = NotificationScheduler(
            store, clock=clock, random_source=SequenceRandom([0.0]), user_lock=user_lock, delivery=delivery
        )
        batch = always.analyze_and_schedule("user_123", make_context(), morning)
        types = [n.type for n in batch]
        assert NotificationType.PEER_ACTIVITY in types
        assert NotificationType.ACHIEVEMENT_CLOSE in types
        peer = next(n for n in batch if n.type == NotificationType.PEER_ACTIVITY)
        assert peer.content.title == "3 Phoenixs are practicing now"

    def test_missing_context(self, scheduler):
        assert scheduler.analyze_and_schedule("user_123", None, LATE) == []

    def test_mismatched_user(self, scheduler, at_risk_context):
        assert scheduler.analyze_and_schedule("someone_else", at_risk_context, LATE) == []


class TestBatchShape:
    def test_never_more_than_three(self, store, clock, user_lock, delivery, at_risk_context):
        busy = NotificationScheduler(
            store, clock=clock, random_source=SequenceRandom([0.0]), user_lock=user_lock, delivery=delivery
        )
        batch = busy.analyze_and_schedule("user_123", at_risk_context, LATE)
        assert len(batch) == 3
        keys = [(PRIORITY_RANK[n.priority], n.scheduled_for) for n in batch]
        assert keys == sorted(keys)

    def test_custom_batch_limit(self, store, clock, never_grant, user_lock, delivery, at_risk_context):
        narrow = NotificationScheduler(
            store, clock=clock, random_source=never_grant, user_lock=user_lock, delivery=delivery, batch_limit=1
        )
        batch = narrow.analyze_and_schedule("user_123", at_risk_context, LATE)
        assert [n.type for n in batch] == [NotificationType.STREAK_RISK]


class TestCooldowns:
    def test_sent_type_suppressed_within_cooldown(self, scheduler, at_risk_context):
        risk = scheduler.analyze_and_schedule("user_123", at_risk_context, LATE)[0]
        assert scheduler.send(risk, now=LATE).success is True

        soon = scheduler.analyze_and_schedule("user_123", at_risk_context, LATE + timedelta(minutes=10))
        assert NotificationType.STREAK_RISK not in [n.type for n in soon]

        later = scheduler.analyze_and_schedule("user_123", at_risk_context, LATE + timedelta(minutes=31))
        assert NotificationType.STREAK_RISK in [n.type for n in later]

    def test_fractional_second_send_keeps_full_window(self, scheduler, at_risk_context):
        sent_at = LATE + timedelta(milliseconds=900)
        risk = scheduler.analyze_and_schedule("user_123", at_risk_context, sent_at)[0]
        assert scheduler.send(risk, now=sent_at).success is True

        almost = sent_at + timedelta(minutes=30) - timedelta(milliseconds=500)
        again = scheduler.analyze_and_schedule("user_123", at_risk_context, almost)
        assert NotificationType.STREAK_RISK not in [n.type for n in again]

    def test_stamp_rounds_up_to_the_millisecond(self):
        moment = datetime(2025, 1, 15, 22, 30, 0, 900_500, tzinfo=timezone.utc)
        assert epoch_millis(moment) == int(LATE.timestamp()) * 1000 + 901

    def test_cooldown_lengths(self):
        assert NotificationScheduler.cooldown_for(NotificationType.STREAK_RISK) == timedelta(minutes=30)
        assert NotificationScheduler.cooldown_for(NotificationType.PRACTICE_TIME) == timedelta(hours=2)
        assert NotificationScheduler.cooldown_for(NotificationType.PEER_ACTIVITY) == timedelta(hours=4)

    def test_unreadable_cooldown_counts_as_cooling_down(self, clock, never_grant, user_lock, delivery, at_risk_context):
        scheduler = NotificationScheduler(
            CooldownUnreadableStore(clock), clock=clock, random_source=never_grant, user_lock=user_lock, delivery=delivery
        )
        assert scheduler.analyze_and_schedule("user_123", at_risk_context, LATE) == []


class TestDailyCap:
    @pytest.mark.parametrize("frequency,limit", [("minimal", 2), ("balanced", 5), ("frequent", 10)])
    def test_limit_by_frequency(self, make_context, frequency, limit):
        context = make_context(preferences={"notificationFrequency": frequency})
        assert NotificationScheduler.daily_limit(context) == limit

    def test_minimal_allows_two_per_day(self, scheduler, make_context):
        context = make_context(
            currentStreak=7,
            practiceWindows=EVENING,
            preferences={"notificationFrequency": "minimal"},
        )
        batch = scheduler.analyze_and_schedule("user_123", context, LATE)
        for notification in batch[:2]:
            assert scheduler.send(notification, now=LATE).success is True

        assert scheduler.analyze_and_schedule("user_123", context, LATE + timedelta(minutes=45)) == []

        next_day = scheduler.analyze_and_schedule("user_123", context, LATE + timedelta(days=1))
        assert next_day != []

    def test_daily_key_uses_local_date(self, scheduler, store, make_context):
        # 22:30 UTC is already the next day in Tokyo
        context = make_context(timezone="Asia/Tokyo", currentStreak=6)
        batch = scheduler.analyze_and_schedule("user_123", context, LATE)
        assert batch[0].type == NotificationType.ACHIEVEMENT_CLOSE
        scheduler.send(batch[0], now=LATE)
        assert store.get_int(daily_count_key("user_123", LATE.date() + timedelta(days=1))) == 1

    def test_unreadable_daily_count_means_quota_reached(self, failing_store, clock, never_grant, user_lock, delivery, at_risk_context):
        scheduler = NotificationScheduler(
            failing_store, clock=clock, random_source=never_grant, user_lock=user_lock, delivery=delivery
        )
        assert scheduler.analyze_and_schedule("user_123", at_risk_context, LATE) == []


class TestDoNotDisturb:
    def test_dnd_discards_everything(self, scheduler, make_context):
        context = make_context(
            currentStreak=7,
            practiceWindows=EVENING,
            dndWindows=[{"start": "22:00", "end": "23:59"}],
        )
        assert scheduler.analyze_and_schedule("user_123", context, LATE) == []

    def test_dnd_wrapping_midnight(self, scheduler, make_context):
        context = make_context(currentStreak=7, dndWindows=[{"start": "22:00", "end": "07:00"}])
        assert scheduler.analyze_and_schedule("user_123", context, LATE + timedelta(hours=1)) == []
        assert scheduler.analyze_and_schedule("user_123", context, LATE.replace(hour=15)) != []

    def test_practice_timing_suppressed_in_dnd(self, make_context):
        context = make_context(practiceWindows=EVENING, dndWindows=[{"start": "22:00", "end": "23:00"}], localTime=LATE)
        template = first_matching_template(NotificationType.PRACTICE_TIME, context, TemplateEnv())
        assert template is not None
        assert template.timing(context, TemplateEnv()) is None
        assert optimal_notification_time(NotificationType.PRACTICE_TIME, context) is None

    def test_optimal_time_for_morning_window(self, make_context):
        morning = LATE.replace(hour=7, minute=30)
        context = make_context(practiceWindows={"morning": {"start": "07:00", "end": "09:00"}}, localTime=morning)
        assert optimal_notification_time(NotificationType.PRACTICE_TIME, context) == morning.replace(hour=7, minute=15)


class TestChannelSelection:
    def test_urgent_always_push(self, make_context):
        context = make_context(preferences={"channels": ["EMAIL"]})
        assert NotificationScheduler.select_channel(NotificationPriority.URGENT, context) == NotificationChannel.PUSH

    def test_first_preference(self, make_context):
        context = make_context(preferences={"channels": ["EMAIL", "PUSH"]})
        assert NotificationScheduler.select_channel(NotificationPriority.HIGH, context) == NotificationChannel.EMAIL

    def test_defaults_to_in_app(self, make_context):
        context = make_context(preferences={"channels": []})
        assert NotificationScheduler.select_channel(NotificationPriority.LOW, context) == NotificationChannel.IN_APP


class TestSend:
    def test_send_commits_state_and_dispatches(self, scheduler, store, push, at_risk_context):
        risk = scheduler.analyze_and_schedule("user_123", at_risk_context, LATE)[0]
        result = scheduler.send(risk, now=LATE)

        assert result.success is True
        assert result.channel == NotificationChannel.PUSH
        assert push.sent == [risk]
        assert store.get(cooldown_key("user_123", "STREAK_RISK")) == str(int(LATE.timestamp()) * 1000)
        assert store.get_int(daily_count_key("user_123", LATE.date())) == 1
        assert store.ttl(daily_count_key("user_123", LATE.date())) == pytest.approx(86400)
        assert notifications_sent_total.value({"type": "STREAK_RISK", "channel": "PUSH", "outcome": "sent"}) == 1.0

    def test_in_app_is_persisted(self, scheduler, inbox, make_context):
        context = make_context(currentStreak=7, practiceWindows=EVENING, preferences={"channels": ["IN_APP"]})
        risk = scheduler.analyze_and_schedule("user_123", context, LATE)[0]
        assert scheduler.send(risk, now=LATE).success is True

        stored = inbox.list_for_user("user_123")
        assert [row["id"] for row in stored] == [risk.id]
        assert stored[0]["read"] is False

    def test_inbox_timestamps_follow_the_clock(self, scheduler, inbox, clock, make_context):
        context = make_context(currentStreak=7, practiceWindows=EVENING, preferences={"channels": ["IN_APP"]})
        risk = scheduler.analyze_and_schedule("user_123", context, LATE)[0]
        scheduler.send(risk, now=LATE)

        created = inbox.list_for_user("user_123")[0]["createdAt"]
        assert created.startswith(clock.now().strftime("%Y-%m-%dT%H:%M:%S"))

        clock.advance(minutes=5)
        assert inbox.mark_read("user_123", risk.id) is True
        read_at = inbox.list_for_user("user_123")[0]["readAt"]
        assert read_at.startswith(clock.now().strftime("%Y-%m-%dT%H:%M:%S"))

    def test_dispatch_failure_keeps_state(self, store, clock, never_grant, user_lock, at_risk_context):
        scheduler = NotificationScheduler(
            store,
            clock=clock,
            random_source=never_grant,
            user_lock=user_lock,
            delivery=NotificationDelivery({NotificationChannel.PUSH: BrokenDispatcher()}),
        )
        risk = scheduler.analyze_and_schedule("user_123", at_risk_context, LATE)[0]
        result = scheduler.send(risk, now=LATE)

        assert result.success is False
        assert "push gateway" in result.error
        assert store.get(cooldown_key("user_123", "STREAK_RISK")) is not None
        assert store.get_int(daily_count_key("user_123", LATE.date())) == 1

    def test_unrecordable_send_is_not_dispatched(self, scheduler, failing_store, push, at_risk_context):
        risk = scheduler.analyze_and_schedule("user_123", at_risk_context, LATE)[0]
        scheduler.store = failing_store
        result = scheduler.send(risk, now=LATE)

        assert result.success is False
        assert result.error == "state_store_unavailable"
        assert push.sent == []

    def test_send_mutations_carry_expiry(self, scheduler, at_risk_context):
        risk = scheduler.analyze_and_schedule("user_123", at_risk_context, LATE)[0]
        mutations = scheduler.send_mutations(risk, LATE)
        assert [m.kind for m in mutations] == ["set", "incr"]
        assert all(m.ttl_seconds == 86400 for m in mutations)
