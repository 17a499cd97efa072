"""
Notification template catalog.

Each notification type has an ordered list of templates; a scheduling pass
takes the first one whose condition holds. Conditions, content and timing
all receive the validated UserContext plus a TemplateEnv carrying the
scheduler's random source.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from engagement.core.clock import DefaultRandom, RandomSource
from engagement.models.context import TimeWindow, UserContext
from engagement.models.notification import (
    NotificationContent,
    NotificationPriority,
    NotificationTemplate,
    NotificationType,
)


@dataclass
class TemplateEnv:
    random: RandomSource = field(default_factory=DefaultRandom)


# Fixed evaluation order for a scheduling pass.
NOTIFICATION_TYPE_ORDER: List[NotificationType] = [
    NotificationType.PRACTICE_TIME,
    NotificationType.STREAK_RISK,
    NotificationType.PEER_ACTIVITY,
    NotificationType.ACHIEVEMENT_CLOSE,
    NotificationType.HOUSE_EVENT,
    NotificationType.COMEBACK,
    NotificationType.MILESTONE,
    NotificationType.SOCIAL_NUDGE,
]

# Priority each type's cooldown is keyed on, independent of the template's own priority.
TYPE_COOLDOWN_PRIORITY: Dict[NotificationType, NotificationPriority] = {
    NotificationType.STREAK_RISK: NotificationPriority.HIGH,
    NotificationType.PRACTICE_TIME: NotificationPriority.MEDIUM,
    NotificationType.PEER_ACTIVITY: NotificationPriority.LOW,
    NotificationType.ACHIEVEMENT_CLOSE: NotificationPriority.MEDIUM,
    NotificationType.HOUSE_EVENT: NotificationPriority.LOW,
    NotificationType.COMEBACK: NotificationPriority.MEDIUM,
    NotificationType.MILESTONE: NotificationPriority.HIGH,
    NotificationType.SOCIAL_NUDGE: NotificationPriority.LOW,
}

HOUSE_GATHERING_HOUR = 18


def in_window(ctx: UserContext, window: Optional[TimeWindow]) -> bool:
    return window is not None and window.contains(ctx.local_time)


def _now(ctx: UserContext, env: TemplateEnv) -> Optional[datetime]:
    return ctx.local_time


def _practice_timing(timing):
    """Practice reminders are suppressed inside quiet hours."""

    def wrapped(ctx: UserContext, env: TemplateEnv) -> Optional[datetime]:
        if ctx.in_dnd():
            return None
        return timing(ctx, env)

    return wrapped


def _morning_start_timing(ctx: UserContext, env: TemplateEnv) -> Optional[datetime]:
    window = ctx.practice_windows.morning
    start = ctx.local_time.replace(
        hour=window.start_time.hour, minute=window.start_time.minute, second=0, microsecond=0
    )
    return start + timedelta(minutes=15)


def _house_gathering_timing(ctx: UserContext, env: TemplateEnv) -> Optional[datetime]:
    gathering = ctx.local_time.replace(hour=HOUSE_GATHERING_HOUR, minute=0, second=0, microsecond=0)
    return max(gathering, ctx.local_time)


def _peers_practicing_content(ctx: UserContext, env: TemplateEnv) -> NotificationContent:
    count = int(env.random.random() * 5) + 3
    return NotificationContent(
        title=f"{count} {ctx.house}s are practicing now",
        body="Join your house in morning practice",
        action_url="/house/live",
    )


NOTIFICATION_TEMPLATES: Dict[NotificationType, List[NotificationTemplate]] = {
    NotificationType.PRACTICE_TIME: [
        NotificationTemplate(
            type=NotificationType.PRACTICE_TIME,
            priority=NotificationPriority.MEDIUM,
            name="morning_gentle_start",
            condition=lambda ctx, env: in_window(ctx, ctx.practice_windows.morning) and ctx.current_streak < 7,
            content=lambda ctx, env: NotificationContent(
                title=f"Good morning, {ctx.house}",
                body=f"Start your day with intention. Your {ctx.user_class} practice awaits.",
                action_url="/practice/morning",
            ),
            timing=_practice_timing(_morning_start_timing),
        ),
        NotificationTemplate(
            type=NotificationType.PRACTICE_TIME,
            priority=NotificationPriority.MEDIUM,
            name="morning_streak_warrior",
            condition=lambda ctx, env: in_window(ctx, ctx.practice_windows.morning) and ctx.current_streak >= 7,
            content=lambda ctx, env: NotificationContent(
                title=f"Day {ctx.current_streak + 1} awaits! 🔥",
                body=f"Your dedication inspires us all, {ctx.house}. Ready?",
                action_url="/practice/morning",
            ),
            timing=_practice_timing(_now),
        ),
        NotificationTemplate(
            type=NotificationType.PRACTICE_TIME,
            priority=NotificationPriority.LOW,
            name="midday_reset",
            condition=lambda ctx, env: in_window(ctx, ctx.practice_windows.midday),
            content=lambda ctx, env: NotificationContent(
                title="Midday Reset",
                body="Take 5 minutes to recenter. Your future self will thank you.",
                action_url="/practice/midday",
            ),
            timing=_practice_timing(_now),
        ),
        NotificationTemplate(
            type=NotificationType.PRACTICE_TIME,
            priority=NotificationPriority.LOW,
            name="evening_wind_down",
            condition=lambda ctx, env: in_window(ctx, ctx.practice_windows.evening),
            content=lambda ctx, env: NotificationContent(
                title="Evening Practice Time",
                body="End your day with presence. Sleep better, wake stronger.",
                action_url="/practice/evening",
            ),
            timing=_practice_timing(_now),
        ),
    ],
    NotificationType.STREAK_RISK: [
        NotificationTemplate(
            type=NotificationType.STREAK_RISK,
            priority=NotificationPriority.HIGH,
            name="two_hours_left",
            condition=lambda ctx, env: ctx.current_streak >= 3 and ctx.hours_until_midnight <= 2,
            content=lambda ctx, env: NotificationContent(
                title=f"⚠️ {ctx.current_streak} day streak at risk!",
                body=(
                    "Complete a quick practice or use a freeze token"
                    if ctx.freeze_tokens > 0
                    else "2 hours left! Even 60 seconds counts."
                ),
                action_url="/practice/quick",
            ),
            timing=_now,
        ),
        NotificationTemplate(
            type=NotificationType.STREAK_RISK,
            priority=NotificationPriority.MEDIUM,
            name="four_hours_left",
            condition=lambda ctx, env: ctx.current_streak >= 1 and ctx.hours_until_midnight <= 4,
            content=lambda ctx, env: NotificationContent(
                title="Keep your streak alive",
                body=f"Don't let day {ctx.current_streak + 1} slip away. You've got this!",
                action_url="/dashboard",
            ),
            timing=_now,
        ),
    ],
    NotificationType.PEER_ACTIVITY: [
        NotificationTemplate(
            type=NotificationType.PEER_ACTIVITY,
            priority=NotificationPriority.LOW,
            name="morning_house_activity",
            condition=lambda ctx, env: 6 <= ctx.local_time.hour <= 9,
            content=_peers_practicing_content,
            timing=_now,
        ),
        NotificationTemplate(
            type=NotificationType.PEER_ACTIVITY,
            priority=NotificationPriority.LOW,
            name="house_on_fire",
            condition=lambda ctx, env: env.random.random() < 0.1,
            content=lambda ctx, env: NotificationContent(
                title=f"Your {ctx.house} house is on fire! 🔥",
                body="85% of members practiced yesterday. Keep the momentum!",
                action_url="/house",
            ),
            timing=_now,
        ),
    ],
    NotificationType.ACHIEVEMENT_CLOSE: [
        NotificationTemplate(
            type=NotificationType.ACHIEVEMENT_CLOSE,
            priority=NotificationPriority.MEDIUM,
            name="one_day_from_week_warrior",
            condition=lambda ctx, env: ctx.current_streak == 6,
            content=lambda ctx, env: NotificationContent(
                title="🏆 One day from Week Warrior!",
                body="Complete today's practice to unlock your first major badge",
                action_url="/achievements",
            ),
            timing=_now,
        ),
        NotificationTemplate(
            type=NotificationType.ACHIEVEMENT_CLOSE,
            priority=NotificationPriority.LOW,
            name="close_to_level_up",
            condition=lambda ctx, env: env.random.random() < 0.15,
            content=lambda ctx, env: NotificationContent(
                title="You're 87% to Level 5!",
                body="One more practice to level up and unlock new content",
                action_url="/progress",
            ),
            timing=_now,
        ),
    ],
    NotificationType.HOUSE_EVENT: [
        NotificationTemplate(
            type=NotificationType.HOUSE_EVENT,
            priority=NotificationPriority.LOW,
            name="sunday_gathering",
            condition=lambda ctx, env: ctx.local_time.weekday() == 6 and ctx.local_time.hour < 21,
            content=lambda ctx, env: NotificationContent(
                title=f"{ctx.house} gathers tonight",
                body="Join your house for the weekly group practice.",
                action_url="/house/events",
            ),
            timing=_house_gathering_timing,
        ),
    ],
    NotificationType.COMEBACK: [
        NotificationTemplate(
            type=NotificationType.COMEBACK,
            priority=NotificationPriority.LOW,
            name="three_days_away",
            condition=lambda ctx, env: ctx.days_since_active == 3,
            content=lambda ctx, env: NotificationContent(
                title=f"Your {ctx.user_class} practice misses you",
                body="Just 2 minutes to reconnect with your practice",
                action_url="/practice/welcome-back",
            ),
            timing=_now,
        ),
        NotificationTemplate(
            type=NotificationType.COMEBACK,
            priority=NotificationPriority.MEDIUM,
            name="seven_days_away",
            condition=lambda ctx, env: ctx.days_since_active == 7,
            content=lambda ctx, env: NotificationContent(
                title=f"The {ctx.house} house noticed your absence",
                body="Your journey continues whenever you're ready. We're here.",
                action_url="/welcome-back",
            ),
            timing=_now,
        ),
    ],
    NotificationType.MILESTONE: [
        NotificationTemplate(
            type=NotificationType.MILESTONE,
            priority=NotificationPriority.HIGH,
            name="first_week",
            condition=lambda ctx, env: ctx.current_streak == 7,
            content=lambda ctx, env: NotificationContent(
                title="🎉 One Week Strong!",
                body="You've earned the Week Warrior badge and a freeze token!",
                action_url="/achievements/week-warrior",
            ),
            timing=_now,
        ),
        NotificationTemplate(
            type=NotificationType.MILESTONE,
            priority=NotificationPriority.MEDIUM,
            name="thirty_days_approaching",
            condition=lambda ctx, env: ctx.current_streak == 25,
            content=lambda ctx, env: NotificationContent(
                title="5 days from a legendary milestone",
                body="The 30-day transformation badge awaits...",
                action_url="/milestones",
            ),
            timing=_now,
        ),
        NotificationTemplate(
            type=NotificationType.MILESTONE,
            priority=NotificationPriority.MEDIUM,
            name="streak_frozen",
            condition=lambda ctx, env: ctx.last_streak_status == "frozen",
            content=lambda ctx, env: NotificationContent(
                title="Your streak is safe 🛡️",
                body=f"A freeze token protected your {ctx.current_streak} day streak.",
                action_url="/dashboard",
            ),
            timing=_now,
        ),
    ],
    NotificationType.SOCIAL_NUDGE: [
        NotificationTemplate(
            type=NotificationType.SOCIAL_NUDGE,
            priority=NotificationPriority.LOW,
            name="house_misses_you",
            condition=lambda ctx, env: ctx.current_streak == 0 and ctx.longest_streak >= 7,
            content=lambda ctx, env: NotificationContent(
                title=f"Your {ctx.house} house misses you",
                body=f"You once held a {ctx.longest_streak} day streak. Day one starts now.",
                action_url="/house",
            ),
            timing=_now,
        ),
        NotificationTemplate(
            type=NotificationType.SOCIAL_NUDGE,
            priority=NotificationPriority.LOW,
            name="share_recent_reward",
            condition=lambda ctx, env: bool(ctx.recent_reward_titles),
            content=lambda ctx, env: NotificationContent(
                title=f"Share your {ctx.recent_reward_titles[0]}",
                body=f"Let {ctx.house} celebrate with you.",
                action_url="/share",
            ),
            timing=_now,
        ),
    ],
}


def first_matching_template(
    notification_type: NotificationType, ctx: UserContext, env: TemplateEnv
) -> Optional[NotificationTemplate]:
    for template in NOTIFICATION_TEMPLATES.get(notification_type, []):
        if template.condition(ctx, env):
            return template
    return None


def optimal_notification_time(
    notification_type: NotificationType, ctx: UserContext, env: Optional[TemplateEnv] = None
) -> Optional[datetime]:
    """When the first matching template would fire, or None during DND or with no match."""
    if ctx.in_dnd():
        return None
    env = env or TemplateEnv()
    template = first_matching_template(notification_type, ctx, env)
    if template is None:
        return None
    return template.timing(ctx, env)
