"""
Tests for funnel and goal definition endpoints.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.adapters.log_notifier import LoggingGoalNotifier
from src.adapters.site_directory import KVSiteDirectory
from src.api import deps
from src.api.auth_utils import create_access_token
from src.api.errors import register_error_handlers
from src.api.routes import funnels, goals, track
from src.app_shell.rate_limit import RateLimiter

BROWSER_HEADERS = {
    "Origin": "https://www.example.com",
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "X-Forwarded-For": "192.0.2.44",
}
OWNER = {"Authorization": f"Bearer {create_access_token({'sub': 'user-1'})}"}
STRANGER = {"Authorization": f"Bearer {create_access_token({'sub': 'user-9'})}"}

SIGNUP_STEPS = [
    {"type": "page", "value": "/"},
    {"type": "page", "value": "/pricing", "name": "Pricing"},
    {"type": "event", "value": "signup"},
]

# --- Test Setup ---


@pytest.fixture
def notifier() -> LoggingGoalNotifier:
    return LoggingGoalNotifier()


@pytest.fixture
def app(kv_store, clock, rules, notifier) -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(track.router, prefix="/api/track")
    app.include_router(funnels.router, prefix="/api/funnels")
    app.include_router(goals.router, prefix="/api/goals")

    limiter = RateLimiter(rules.ingest.rate_limit, clock)
    app.dependency_overrides[deps.get_store] = lambda: kv_store
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_rules] = lambda: rules
    app.dependency_overrides[deps.get_rate_limiter] = lambda: limiter
    app.dependency_overrides[deps.get_notifier] = lambda: notifier

    KVSiteDirectory(kv_store).register("site-1", "user-1", "example.com")
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def send(client: TestClient, *events: dict) -> None:
    response = client.post(
        "/api/track", json={"siteId": "site-1", "events": list(events)}, headers=BROWSER_HEADERS
    )
    assert response.json()["processed"] == len(events)


def create_funnel(client: TestClient, steps=None) -> dict:
    response = client.post(
        "/api/funnels",
        json={"siteId": "site-1", "name": "Signup", "steps": steps or SIGNUP_STEPS},
        headers=OWNER,
    )
    assert response.status_code == 201, response.json()
    return response.json()["funnel"]


def create_goal(client: TestClient, **fields) -> dict:
    response = client.post("/api/goals", json={"siteId": "site-1", **fields}, headers=OWNER)
    assert response.status_code == 201, response.json()
    return response.json()["goal"]


# --- Funnels ---


class TestFunnelsApi:
    """CRUD plus evaluation on list."""

    def test_create(self, client) -> None:
        funnel = create_funnel(client)
        assert funnel["name"] == "Signup"
        assert [s["type"] for s in funnel["steps"]] == ["page", "page", "event"]
        assert funnel["created_at"] == "2026-01-14T12:00:00+00:00"

    def test_create_needs_two_steps(self, client) -> None:
        response = client.post(
            "/api/funnels",
            json={"siteId": "site-1", "name": "x", "steps": [{"type": "page", "value": "/"}]},
            headers=OWNER,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "too_few_steps"
        assert response.json()["field"] == "steps"

    def test_create_rejects_bad_step_type(self, client) -> None:
        response = client.post(
            "/api/funnels",
            json={"siteId": "site-1", "steps": [{"type": "page", "value": "/"}, {"type": "url", "value": "/x"}]},
            headers=OWNER,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_step_type"

    def test_create_on_foreign_site_is_403(self, client) -> None:
        response = client.post(
            "/api/funnels", json={"siteId": "site-1", "steps": SIGNUP_STEPS}, headers=STRANGER
        )
        assert response.status_code == 403

    def test_list_evaluates_sessions(self, client, clock) -> None:
        create_funnel(client)
        for event in ({"path": "/"}, {"path": "/pricing"}, {"type": "custom", "name": "signup"}):
            send(client, event)
            clock.advance(minutes=1)

        body = client.get("/api/funnels?siteId=site-1", headers=OWNER).json()

        funnel = body["funnels"][0]
        assert funnel["dateRange"] == {"startDate": "2026-01-01", "endDate": "2026-01-14"}
        assert funnel["data"]["sessions"] == 1
        assert [s["count"] for s in funnel["data"]["steps"]] == [1, 1, 1]
        assert funnel["data"]["steps"][1]["name"] == "Pricing"
        assert funnel["data"]["overallConversion"] == 100.0

    def test_partial_progress(self, client) -> None:
        create_funnel(client)
        send(client, {"path": "/"}, {"path": "/about"})

        steps = client.get("/api/funnels?siteId=site-1", headers=OWNER).json()["funnels"][0]["data"]["steps"]

        assert [s["count"] for s in steps] == [1, 0, 0]
        assert steps[1]["dropoff"] == 1
        assert steps[1]["dropoffRate"] == 100.0

    def test_rename(self, client) -> None:
        funnel = create_funnel(client)
        response = client.patch(
            "/api/funnels",
            json={"siteId": "site-1", "funnelId": funnel["id"], "name": "Checkout"},
            headers=OWNER,
        )
        assert response.status_code == 200
        assert response.json()["funnel"]["name"] == "Checkout"
        assert response.json()["funnel"]["steps"] == funnel["steps"]

    def test_update_requires_funnel_id(self, client) -> None:
        response = client.patch("/api/funnels", json={"siteId": "site-1"}, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["field"] == "funnelId"

    def test_update_unknown_is_404(self, client) -> None:
        response = client.patch(
            "/api/funnels", json={"siteId": "site-1", "funnelId": "nope", "name": "x"}, headers=OWNER
        )
        assert response.status_code == 404

    def test_delete(self, client) -> None:
        funnel = create_funnel(client)
        url = f"/api/funnels?siteId=site-1&funnelId={funnel['id']}"
        assert client.delete(url, headers=OWNER).json() == {"success": True}
        assert client.delete(url, headers=OWNER).status_code == 404
        assert client.get("/api/funnels?siteId=site-1", headers=OWNER).json() == {"funnels": []}


# --- Goals ---


class TestGoalsApi:
    """CRUD plus evaluation and notification on list."""

    def test_create_defaults(self, client) -> None:
        goal = create_goal(client)
        assert goal["metric"] == "pageviews"
        assert goal["period"] == "monthly"
        assert goal["comparison"] == "gte"
        assert goal["target"] == 1000

    def test_invalid_metric(self, client) -> None:
        response = client.post("/api/goals", json={"siteId": "site-1", "metric": "revenue"}, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid metric"

    def test_list_reports_progress(self, client) -> None:
        create_goal(client, name="Traffic", target=4)
        send(client, {"path": "/"}, {"path": "/a"})

        body = client.get("/api/goals?siteId=site-1", headers=OWNER).json()

        goal = body["goals"][0]
        assert goal["currentValue"] == 2
        assert goal["progress"] == 50.0
        assert goal["isComplete"] is False
        assert goal["dateRange"] == {"startDate": "2026-01-01", "endDate": "2026-01-14"}
        assert "bounce_rate" in body["metrics"]
        assert body["periods"] == ["daily", "weekly", "monthly", "yearly"]

    def test_completion_notifies_once(self, client, notifier) -> None:
        goal = create_goal(client, name="Traffic", target=2, notifyOnComplete=True)
        send(client, {"path": "/"}, {"path": "/a"}, {"path": "/b"})

        first = client.get("/api/goals?siteId=site-1", headers=OWNER).json()["goals"][0]
        client.get("/api/goals?siteId=site-1", headers=OWNER)

        assert first["isComplete"] is True
        assert first["completed_for"] == "2026-01-01"
        assert [n.goal_id for n in notifier.sent] == [goal["id"]]

    def test_update_and_delete(self, client) -> None:
        goal = create_goal(client, target=10)

        response = client.patch(
            "/api/goals",
            json={"siteId": "site-1", "goalId": goal["id"], "target": "25", "period": "weekly"},
            headers=OWNER,
        )
        assert response.json()["goal"]["target"] == 25
        assert response.json()["goal"]["period"] == "weekly"

        url = f"/api/goals?siteId=site-1&goalId={goal['id']}"
        assert client.delete(url, headers=OWNER).json() == {"success": True}
        assert client.delete(url, headers=OWNER).status_code == 404

    def test_foreign_user_cannot_list(self, client) -> None:
        create_goal(client)
        response = client.get("/api/goals?siteId=site-1", headers=STRANGER)
        assert response.status_code == 403
