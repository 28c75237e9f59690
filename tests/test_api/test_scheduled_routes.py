"""
Scheduled Publishing Routes Tests

Tests for:
- POST/GET/DELETE /api/scheduled
- GET /api/cron/publish-scheduled
"""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import M2M_API_KEY, RELAYER, SESSION_KEY_MANAGER, USER, make_settings
from fastapi.testclient import TestClient

from vauban_relay.api.app import create_app
from vauban_relay.chains import MockChainClient
from vauban_relay.services.scheduler import ScheduledPost

HEADERS = {"X-API-Key": M2M_API_KEY}


def post_data(**overrides):
    data = {
        "title": "Besieging Maastricht",
        "slug": "besieging-maastricht",
        "content": "In 1673 the first parallels were dug before Maastricht, and the town fell in two weeks. " * 2,
        "excerpt": "The first siege by parallels.",
        "tags": ["history"],
    }
    data.update(overrides)
    return data


def schedule_body(delay=timedelta(hours=1), **overrides):
    return {
        "scheduledAt": (datetime.now(UTC) + delay).isoformat(),
        "authorAddress": USER,
        "postData": post_data(**overrides),
    }


def add_due_post(client: TestClient, **overrides) -> ScheduledPost:
    scheduler = client.app.state.relay.scheduler
    post = ScheduledPost(
        scheduledAt=datetime.now(UTC) - timedelta(minutes=1),
        authorAddress=USER,
        postData=post_data(**overrides),
    )
    scheduler.store.save([*scheduler.store.load(), post])
    return post


@pytest.fixture
def make_client(event_bus):
    clients = []

    def _make(**setting_overrides):
        chain = MockChainClient(relayer_address=RELAYER, session_key_manager_address=SESSION_KEY_MANAGER)
        app = create_app(make_settings(**setting_overrides), chain_client=chain, event_bus=event_bus)
        client = TestClient(app, raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return client, chain

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


# =============================================================================
# /api/scheduled
# =============================================================================


class TestSchedulePost:
    """Tests for POST /api/scheduled."""

    def test_schedule(self, client, recorded_events, app_chain):
        response = client.post("/api/scheduled", json=schedule_body(), headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["post"]["status"] == "pending"
        assert body["post"]["postData"]["slug"] == "besieging-maastricht"
        assert body["message"].startswith("Post scheduled for ")
        assert len(recorded_events) == 1
        name, payload = recorded_events[0]
        assert name == "subject:scheduled"
        assert payload["subjectId"] == body["post"]["id"]
        assert payload["author"] == USER
        assert "scheduledAt" in payload
        assert app_chain.submitted == []

    def test_requires_api_key(self, client):
        response = client.post("/api/scheduled", json=schedule_body())

        assert response.status_code == 401

    @pytest.mark.parametrize("missing", ["scheduledAt", "authorAddress", "postData"])
    def test_missing_fields(self, client, recorded_events, missing):
        body = schedule_body()
        del body[missing]

        response = client.post("/api/scheduled", json=body, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields: scheduledAt, authorAddress, postData"
        assert recorded_events == []

    def test_past_time(self, client):
        response = client.post("/api/scheduled", json=schedule_body(delay=timedelta(minutes=-1)), headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "scheduledAt must be in the future"

    def test_invalid_post_data(self, client):
        response = client.post("/api/scheduled", json=schedule_body(slug="Not A Slug"), headers=HEADERS)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation error"
        assert ["postData", "slug"] in [d["loc"] for d in body["details"]]

    def test_non_object_body(self, client):
        response = client.post("/api/scheduled", json=["x"], headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"


class TestListScheduled:
    def test_list(self, client):
        client.post("/api/scheduled", json=schedule_body(delay=timedelta(days=1), slug="later-post"), headers=HEADERS)
        client.post("/api/scheduled", json=schedule_body(slug="sooner-post"), headers=HEADERS)

        response = client.get("/api/scheduled", headers=HEADERS)

        assert response.status_code == 200
        assert [p["postData"]["slug"] for p in response.json()["posts"]] == ["sooner-post", "later-post"]

    def test_filters(self, client):
        client.post("/api/scheduled", json=schedule_body(), headers=HEADERS)

        by_other = client.get("/api/scheduled", params={"author": RELAYER}, headers=HEADERS)
        published = client.get("/api/scheduled", params={"status": "published"}, headers=HEADERS)

        assert by_other.json() == {"posts": []}
        assert published.json() == {"posts": []}

    def test_invalid_status(self, client):
        response = client.get("/api/scheduled", params={"status": "archived"}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid status: archived"

    def test_requires_api_key(self, client):
        assert client.get("/api/scheduled").status_code == 401


class TestCancelScheduled:
    def test_cancel(self, client):
        post_id = client.post("/api/scheduled", json=schedule_body(), headers=HEADERS).json()["post"]["id"]

        response = client.delete("/api/scheduled", params={"id": post_id}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Scheduled post cancelled"}
        assert client.get("/api/scheduled", headers=HEADERS).json() == {"posts": []}

    def test_missing_id(self, client):
        response = client.delete("/api/scheduled", headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "Missing post id"

    def test_unknown_id(self, client):
        response = client.delete("/api/scheduled", params={"id": "nope"}, headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["error"] == "Scheduled post not found"


# =============================================================================
# /api/cron/publish-scheduled
# =============================================================================


class TestPublishScheduled:
    """Tests for GET /api/cron/publish-scheduled."""

    def test_publishes_due_posts(self, client, app_chain, recorded_events):
        due = add_due_post(client)
        client.post("/api/scheduled", json=schedule_body(slug="future-post"), headers=HEADERS)

        response = client.get("/api/cron/publish-scheduled")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["processed"] == 1
        assert body["published"] == 1
        assert body["failed"] == 0
        assert body["pendingRemaining"] == 1
        assert body["results"][0]["id"] == due.id
        assert len(app_chain.submitted) == 1
        assert recorded_events[-1][0] == "subject:published"

        listed = client.get("/api/scheduled", params={"status": "published"}, headers=HEADERS).json()["posts"]
        assert [p["id"] for p in listed] == [due.id]
        assert listed[0]["txHash"] == app_chain.submitted[0].tx_hash

    def test_secret_required_when_configured(self, make_client):
        client, chain = make_client(cron_secret="night-watch")
        add_due_post(client)

        unauthorized = client.get("/api/cron/publish-scheduled")
        wrong = client.get("/api/cron/publish-scheduled", headers={"Authorization": "Bearer day-watch"})
        authorized = client.get("/api/cron/publish-scheduled", headers={"Authorization": "Bearer night-watch"})

        assert unauthorized.status_code == 401
        assert wrong.status_code == 401
        assert authorized.status_code == 200
        assert authorized.json()["published"] == 1
        assert len(chain.submitted) == 1

    def test_production_without_secret(self, make_client):
        client, chain = make_client(app_env="production")
        add_due_post(client)

        response = client.get("/api/cron/publish-scheduled")

        assert response.status_code == 503
        assert response.json()["error"] == "Cron not configured"
        assert chain.submitted == []

    def test_publisher_not_configured(self, make_client):
        client, _ = make_client(blog_registry_address=None)

        response = client.get("/api/cron/publish-scheduled")

        assert response.status_code == 503
        assert response.json()["error"] == "M2M publishing not configured"

    def test_file_backed_schedule(self, make_client, tmp_path):
        path = tmp_path / "scheduled.json"
        client, _ = make_client(scheduled_posts_path=str(path))

        client.post("/api/scheduled", json=schedule_body(), headers=HEADERS)

        assert path.exists()
        assert '"besieging-maastricht"' in path.read_text()
