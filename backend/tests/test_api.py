"""HTTP surface with the service layer wired to in-memory doubles (lifespan not run)."""

import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from feed_engine.dependencies.services import get_redis_client, get_tuned_settings
from feed_engine.generators.registry import build_generators
from feed_engine.main import app
from feed_engine.models.base import get_db
from feed_engine.services.feed_service import FEED_NAMESPACE_KEY, FeedService
from feed_engine.services.snapshot_store import similarity_store

PROCESS_DELAY = "feed_engine.tasks.interaction_tasks.process_interaction.delay"


class FakeSession:
    """Assigns ids at flush like the database default would."""

    def __init__(self):
        self.added = []
        self.committed = False

    def add(self, obj):
        self.added.append(obj)

    async def get(self, model, key):
        return next((obj for obj in self.added if isinstance(obj, model) and obj.user_id == key), None)

    async def flush(self):
        for obj in self.added:
            if getattr(obj, "id", None) is None:
                obj.id = str(uuid.uuid4())

    async def commit(self):
        self.committed = True


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(index, async_redis, settings, session):
    async def override_db():
        yield session

    async def override_settings():
        return settings

    app.state.content_index = index
    app.state.feed_service = FeedService(index, async_redis, settings, build_generators(index, async_redis))
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_redis_client] = lambda: async_redis
    app.dependency_overrides[get_tuned_settings] = override_settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def catalogue(index):
    for n in range(6):
        index.add_content(("event", "fundraiser", "organization")[n % 3], f"c{n}", title=f"Item {n}")
    return index


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_feed_for_new_user(client, catalogue):
    response = client.post("/api/v1/feed", json={"user_id": "newcomer"})

    assert response.status_code == 200
    body = response.json()
    assert body["items"]
    assert body["metadata"]["cold_start"] is True
    first = body["items"][0]
    assert first["position"] == 0
    assert set(first["score_breakdown"]) >= {"relevance", "diversity", "quality"}


def test_expired_cursor_maps_to_410(client, catalogue, async_redis):
    first = client.post("/api/v1/feed", json={"user_id": "u1", "pagination": {"limit": 1}}).json()
    assert first["next_cursor"]

    async_redis.sync.incr(FEED_NAMESPACE_KEY.format(user_id="u1"))
    response = client.post(
        "/api/v1/feed",
        json={"user_id": "u1", "pagination": {"limit": 1, "cursor": first["next_cursor"]}},
    )

    assert response.status_code == 410
    assert response.json()["code"] == "cursor_expired"


def test_garbage_cursor_maps_to_400(client, catalogue):
    response = client.post("/api/v1/feed", json={"user_id": "u1", "pagination": {"cursor": "eyJnIjogMX0="}})

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_cursor"


@pytest.mark.parametrize("body", [
    {"user_id": ""},
    {"user_id": "u1", "pagination": {"limit": 51}},
    {"user_id": "u1", "content_types": ["podcast"]},
    {"user_id": "u1", "filters": {"trending_window": "3d"}},
])
def test_invalid_feed_requests_rejected(client, body):
    assert client.post("/api/v1/feed", json=body).status_code == 422


def test_feed_accepts_created_after_without_timezone(client, catalogue):
    response = client.post(
        "/api/v1/feed",
        json={"user_id": "newcomer", "filters": {"created_after": "2026-01-01T00:00:00"}},
    )

    assert response.status_code == 200
    assert response.json()["items"]


def test_track_interaction_queues_processing(client, session, async_redis):
    with patch(PROCESS_DELAY) as delay:
        response = client.post("/api/v1/interactions/track", json={
            "user_id": "u1",
            "content_type": "event",
            "content_id": "e1",
            "interaction_type": "view",
            "metadata": {"time_spent": 42, "scroll_depth": 0.5},
        })

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "accepted"
    delay.assert_called_once_with(body["interaction_id"])
    assert session.committed
    assert session.added[0].time_spent == 42
    assert FEED_NAMESPACE_KEY.format(user_id="u1") not in async_redis.sync.data


def test_significant_interaction_invalidates_feed(client, async_redis):
    with patch(PROCESS_DELAY):
        response = client.post("/api/v1/interactions/track", json={
            "user_id": "u1", "content_type": "fundraiser", "content_id": "f1", "interaction_type": "donate",
        })

    assert response.status_code == 202
    assert async_redis.sync.data[FEED_NAMESPACE_KEY.format(user_id="u1")] == "1"


def test_tracking_survives_broker_outage(client):
    with patch(PROCESS_DELAY, side_effect=ConnectionError("broker down")):
        response = client.post("/api/v1/interactions/track", json={
            "user_id": "u1", "content_type": "event", "content_id": "e1", "interaction_type": "like",
        })

    assert response.status_code == 202


def test_track_rejects_unknown_interaction_type(client):
    response = client.post("/api/v1/interactions/track", json={
        "user_id": "u1", "content_type": "event", "content_id": "e1", "interaction_type": "teleport",
    })
    assert response.status_code == 422


def test_profile_endpoint(client, index):
    index.add_affinity("u1", "t1", 0.7, last_interaction_at=datetime.now(timezone.utc))

    body = client.get("/api/v1/profile/u1", params={"refresh": True}).json()

    assert body["is_cold_start"] is False
    assert [tag["tag_id"] for tag in body["top_tags"]] == ["t1"]


def test_similar_users_endpoint(client, fake_redis):
    similarity_store.swap(fake_redis, {"built_at": "x", "neighbours": {"u1": [["u2", 0.9, 5], ["u3", 0.5, 3]]}})

    body = client.get("/api/v1/profile/u1/similar-users", params={"limit": 1}).json()

    assert body == [{"user_id": "u2", "similarity": 0.9, "shared_tag_count": 5}]


def test_recommended_tags_endpoint(client, index):
    now = datetime.now(timezone.utc)
    index.categories = {"t1": "cat-a", "t2": "cat-b"}
    index.tag_names = {"t2": "Oceans"}
    index.add_affinity("u1", "t1", 0.7, last_interaction_at=now)
    index.add_affinity("u2", "t2", 0.7, last_interaction_at=now)

    body = client.get("/api/v1/profile/u1/recommended-tags").json()

    assert body == [{
        "tag_id": "t2",
        "name": "Oceans",
        "category_id": "cat-b",
        "relevance": 1.0,
        "reason": "Popular in new interest areas",
    }]


def test_feed_preferences_default_for_new_user(client):
    body = client.get("/api/v1/profile/u1/feed-preferences").json()

    assert body == {
        "interest_weights": {},
        "content_type_preferences": {},
        "feed_algorithm": "mixed",
        "show_recommended_content": True,
    }


def test_feed_preferences_partial_updates_invalidate_feed(client, session, async_redis):
    first = client.put("/api/v1/profile/u1/feed-preferences", json={
        "feed_algorithm": "latest",
        "interest_weights": {"tag-a": 1.5},
    })
    second = client.put("/api/v1/profile/u1/feed-preferences", json={"show_recommended_content": False})

    assert first.status_code == 200
    assert second.json() == {
        "interest_weights": {"tag-a": 1.5},
        "content_type_preferences": {},
        "feed_algorithm": "latest",
        "show_recommended_content": False,
    }
    assert session.committed
    assert async_redis.sync.data[FEED_NAMESPACE_KEY.format(user_id="u1")] == "2"


@pytest.mark.parametrize("body", [
    {"feed_algorithm": "random"},
    {"interest_weights": {"tag-a": 3}},
    {"content_type_preferences": {"podcast": 10}},
])
def test_feed_preferences_reject_invalid_values(client, body):
    assert client.put("/api/v1/profile/u1/feed-preferences", json=body).status_code == 422
