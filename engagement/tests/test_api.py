"""HTTP surface tests: routing, payload shapes and the error contract."""

import logging

import pytest
from fastapi.testclient import TestClient

from engagement.core.clock import SequenceRandom
from engagement.core.config import Settings
from engagement.main import create_app

LATE = "2025-01-15T22:30:00+00:00"


def user_context(**overrides):
    payload = {
        "userId": "user_123",
        "timezone": "UTC",
        "localTime": LATE,
        "lastActiveAt": LATE,
        "currentStreak": 7,
        "longestStreak": 7,
        "freezeTokens": 1,
        "practiceWindows": {"evening": {"start": "20:00", "end": "23:00"}},
        "house": "Phoenix",
        "class": "Warrior",
        "preferences": {"notificationFrequency": "balanced", "channels": ["IN_APP"]},
    }
    payload.update(overrides)
    return payload


def build_client(store, clock, user_lock, inbox, random_source=None):
    app = create_app(
        Settings(COUNTER_BACKEND="memory", LOCK_BACKEND="local"),
        store=store,
        clock=clock,
        random_source=random_source or SequenceRandom([0.99]),
        user_lock=user_lock,
        inbox=inbox,
    )
    return TestClient(app)


@pytest.fixture
def client(store, clock, user_lock, inbox):
    return build_client(store, clock, user_lock, inbox)


class TestStreakEndpoints:
    def test_check_in_returns_result_and_new_state(self, client):
        resp = client.post(
            "/v1/streaks/check-in",
            json={
                "state": {
                    "userId": "user_123",
                    "currentStreak": 5,
                    "bestStreak": 5,
                    "lastCheckIn": "2025-01-14T09:00:00+00:00",
                    "freezeTokens": 3,
                }
            },
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["result"]["newStreakLength"] == 6
        assert body["result"]["streakStatus"] == "continued"
        assert body["state"]["currentStreak"] == 6
        assert body["state"]["totalPracticeDays"] == 1

    def test_check_in_honours_explicit_now(self, client):
        resp = client.post(
            "/v1/streaks/check-in",
            json={
                "state": {"userId": "user_123", "currentStreak": 10, "lastCheckIn": "2025-01-13T09:00:00+00:00"},
                "now": "2025-01-15T09:00:00+00:00",
            },
        )
        assert resp.json()["result"]["streakStatus"] == "grace_period_used"

    def test_check_in_counts_days_in_given_timezone(self, client):
        # Tue 17:00 and Wed 04:00 Los Angeles are both Wednesday in UTC
        body = client.post(
            "/v1/streaks/check-in",
            json={
                "state": {"userId": "user_123", "currentStreak": 3, "lastCheckIn": "2025-01-15T01:00:00+00:00"},
                "timezone": "America/Los_Angeles",
            },
        ).json()
        assert body["result"]["streakStatus"] == "continued"
        assert body["result"]["newStreakLength"] == 4

    def test_check_in_rejects_unknown_timezone(self, client):
        resp = client.post(
            "/v1/streaks/check-in",
            json={"state": {"userId": "user_123"}, "timezone": "Mars/Olympus"},
        )
        assert resp.status_code == 422

    def test_status_peek(self, client):
        resp = client.post(
            "/v1/streaks/status",
            json={"state": {"userId": "user_123", "currentStreak": 3, "lastCheckIn": "2025-01-14T09:00:00+00:00"}},
        )
        assert resp.json()["atRisk"] is True

    def test_milestone(self, client):
        body = client.get("/v1/streaks/milestones/7").json()
        assert body["isMilestone"] is True
        assert body["milestoneName"] == "Week Warrior"

    def test_protection(self, client):
        body = client.post("/v1/streaks/protection", json={"freezeTokens": 0, "gracePeriodUsed": True}).json()
        assert body["protectionType"] == "none"
        assert body["hasProtection"] is False

    def test_invalid_state_rejected(self, client):
        resp = client.post("/v1/streaks/check-in", json={"state": {"userId": "", "currentStreak": -1}})
        assert resp.status_code == 422


class TestRewardEndpoint:
    def test_no_grant(self, client):
        resp = client.post(
            "/v1/rewards/check",
            json={"userId": "user_123", "action": "practice_complete", "metadata": {"streakLength": 3}},
        )
        assert resp.status_code == 200
        assert resp.json() == {"rewards": []}

    def test_grants_serialized(self, store, clock, user_lock, inbox):
        generous = build_client(store, clock, user_lock, inbox, SequenceRandom([0.0]))
        body = generous.post(
            "/v1/rewards/check",
            json={"userId": "user_123", "action": "practice_complete", "metadata": {"timeOfDay": "midday"}},
        ).json()
        assert [r["rarity"] for r in body["rewards"]] == ["common", "uncommon", "rare", "epic", "legendary"]
        assert body["rewards"][0]["value"]["totalXP"] == 20
        assert body["rewards"][0]["expiresAt"] is not None


class TestNotificationEndpoints:
    def test_schedule_send_and_read(self, client):
        scheduled = client.post("/v1/notifications/schedule", params={"now": LATE}, json=user_context()).json()
        notifications = scheduled["notifications"]
        assert [n["type"] for n in notifications] == ["STREAK_RISK", "MILESTONE", "PRACTICE_TIME"]
        assert notifications[0]["channel"] == "IN_APP"

        sent = client.post("/v1/notifications/send", json=notifications[0]).json()
        assert sent["success"] is True
        assert sent["notificationId"] == notifications[0]["id"]

        inbox = client.get("/v1/notifications/inbox", params={"user_id": "user_123", "unread_only": True}).json()
        assert [n["id"] for n in inbox["notifications"]] == [notifications[0]["id"]]

        read = client.post(
            f"/v1/notifications/inbox/{notifications[0]['id']}/read", params={"user_id": "user_123"}
        )
        assert read.json() == {"ok": True}

        unread = client.get("/v1/notifications/inbox", params={"user_id": "user_123", "unread_only": True}).json()
        assert unread["notifications"] == []

    def test_dnd_window_returns_empty(self, client):
        context = user_context(dndWindows=[{"start": "22:00", "end": "06:00"}])
        body = client.post("/v1/notifications/schedule", params={"now": LATE}, json=context).json()
        assert body == {"notifications": []}

    def test_bad_timezone_rejected(self, client):
        resp = client.post("/v1/notifications/schedule", json=user_context(timezone="Mars/Olympus"))
        assert resp.status_code == 422

    def test_user_id_limited_to_inbox_column_width(self, client):
        widest = client.post("/v1/notifications/schedule", params={"now": LATE}, json=user_context(userId="u" * 64))
        assert widest.status_code == 200
        too_long = client.post("/v1/notifications/schedule", params={"now": LATE}, json=user_context(userId="u" * 65))
        assert too_long.status_code == 422

    def test_unknown_notification_is_not_found(self, client):
        resp = client.post("/v1/notifications/inbox/missing/read", params={"user_id": "user_123"})
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"]["code"] == "not_found"
        assert body["error"]["request_id"] == resp.headers["x-request-id"]


class TestOperationalEndpoints:
    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}

    def test_readyz_reflects_store(self, client, failing_store, clock, user_lock, inbox):
        assert client.get("/readyz").status_code == 200
        degraded = build_client(failing_store, clock, user_lock, inbox)
        assert degraded.get("/readyz").status_code == 503

    def test_metrics_exposes_counters(self, client):
        client.get("/healthz")
        body = client.get("/metrics").text
        assert "# TYPE http_requests_total counter" in body
        assert 'path="/healthz"' in body

    def test_request_id_echoed_and_logged(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="engagement"):
            resp = client.get("/healthz", headers={"x-request-id": "rid-abc"})
        assert resp.headers["x-request-id"] == "rid-abc"
        assert any(getattr(r, "request_id", None) == "rid-abc" for r in caplog.records)
