"""Celery task bodies run eagerly against SQLite and the in-memory Redis."""

from contextlib import nullcontext
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from feed_engine.config import TUNING_KEY
from feed_engine.models.content import ContentTag
from feed_engine.models.tag_affinity import ProcessedInteraction, TagAffinity
from feed_engine.models.user_interaction import UserInteraction
from feed_engine.services import ingestion_service
from feed_engine.services.feed_service import FEED_NAMESPACE_KEY
from feed_engine.services.profile_service import PROFILE_KEY
from feed_engine.services.snapshot_store import similarity_store, trending_store
from feed_engine.tasks import index_tasks, interaction_tasks

RECOMPUTE_DELAY = "feed_engine.tasks.interaction_tasks.recompute_feed.delay"


@pytest.fixture
def wired(db_session, fake_redis, monkeypatch):
    """Point the task modules at the test session and Redis double."""
    for module in (interaction_tasks, index_tasks):
        monkeypatch.setattr(module, "SyncSessionLocal", lambda: nullcontext(db_session))
        monkeypatch.setattr(module, "get_sync_redis", lambda: fake_redis)
    db_session.add(ContentTag(tag_id="tag-a", content_type="event", content_id="e1", relevance_score=1.0))
    db_session.commit()
    return db_session


def _log(session, interaction_id, interaction_type="like", user_id="u1", age=timedelta(hours=1)):
    row = UserInteraction(
        id=interaction_id,
        user_id=user_id,
        content_type="event",
        content_id="e1",
        interaction_type=interaction_type,
        created_at=datetime.now(timezone.utc) - age,
    )
    session.add(row)
    session.commit()
    return row


def test_process_interaction_applies_under_user_lock(wired, fake_redis):
    _log(wired, "i-1")

    with patch(RECOMPUTE_DELAY) as recompute:
        assert interaction_tasks.process_interaction("i-1") == {"status": "applied"}

    assert fake_redis.locks_taken == ["affinity-lock:u1"]
    assert wired.query(TagAffinity).one().interaction_count == 1
    recompute.assert_not_called()


def test_significant_interaction_invalidates_and_recomputes(wired, fake_redis):
    _log(wired, "i-1", interaction_type="donate")
    fake_redis.set(PROFILE_KEY.format(user_id="u1"), "{}")

    with patch(RECOMPUTE_DELAY) as recompute:
        interaction_tasks.process_interaction("i-1")

    recompute.assert_called_once_with("u1")
    assert PROFILE_KEY.format(user_id="u1") not in fake_redis.data
    assert fake_redis.data[FEED_NAMESPACE_KEY.format(user_id="u1")] == "1"


def test_redelivered_task_is_a_duplicate(wired):
    _log(wired, "i-1", interaction_type="donate")

    with patch(RECOMPUTE_DELAY) as recompute:
        interaction_tasks.process_interaction("i-1")
        assert interaction_tasks.process_interaction("i-1") == {"status": "duplicate"}

    assert recompute.call_count == 1
    assert wired.query(TagAffinity).one().interaction_count == 1


def test_missing_interaction(wired):
    assert interaction_tasks.process_interaction("nope") == {"status": "missing"}


def test_catch_up_applies_log_and_advances_checkpoint(wired, fake_redis):
    for n in range(3):
        _log(wired, f"i-{n}", age=timedelta(minutes=30 - n))

    with patch(RECOMPUTE_DELAY):
        counts = interaction_tasks.ingest_pending_interactions()
        again = interaction_tasks.ingest_pending_interactions()

    assert counts["applied"] == 3
    assert again["applied"] == 0
    # the overlap re-reads the newest entries, which the ledger absorbs
    assert again["duplicate"] >= 2
    checkpoint = datetime.fromisoformat(fake_redis.get(interaction_tasks.CHECKPOINT_KEY))
    assert datetime.now(timezone.utc) - checkpoint < timedelta(minutes=29)


def test_catch_up_checkpoint_stops_at_first_failure(wired, fake_redis, monkeypatch):
    rows = [_log(wired, f"i-{n}", age=timedelta(minutes=30 - n)) for n in range(3)]
    failing_at = rows[1].created_at
    real = ingestion_service.process_interaction

    def flaky(session, interaction, settings):
        if interaction.id == "i-1":
            raise RuntimeError("lost connection")
        return real(session, interaction, settings)

    monkeypatch.setattr(ingestion_service, "process_interaction", flaky)
    with patch(RECOMPUTE_DELAY):
        counts = interaction_tasks.ingest_pending_interactions()

    assert counts["failed"] == 1
    assert counts["applied"] == 2
    checkpoint = datetime.fromisoformat(fake_redis.get(interaction_tasks.CHECKPOINT_KEY))
    assert checkpoint.replace(tzinfo=None) == failing_at.replace(tzinfo=None)


def test_catch_up_dead_letters_interaction_that_keeps_failing(wired, fake_redis, monkeypatch):
    fake_redis.data[TUNING_KEY] = {"ingest_max_attempts": "2"}
    rows = [_log(wired, f"i-{n}", age=timedelta(minutes=30 - n)) for n in range(3)]
    real = ingestion_service.process_interaction

    def broken(session, interaction, settings):
        if interaction.id == "i-1":
            raise RuntimeError("bad payload")
        return real(session, interaction, settings)

    monkeypatch.setattr(ingestion_service, "process_interaction", broken)
    with patch(RECOMPUTE_DELAY):
        first = interaction_tasks.ingest_pending_interactions()
        second = interaction_tasks.ingest_pending_interactions()

    assert first["failed"] == 1
    assert second["failed"] == 0
    assert second["dead_lettered"] == 1
    ledger = wired.get(ProcessedInteraction, "i-1")
    assert ledger.status == "failed"
    assert "RuntimeError" in ledger.detail
    assert "i-1" not in fake_redis.data[interaction_tasks.FAILURES_KEY]
    checkpoint = datetime.fromisoformat(fake_redis.get(interaction_tasks.CHECKPOINT_KEY))
    assert checkpoint.replace(tzinfo=None) == rows[2].created_at.replace(tzinfo=None)


def test_refresh_trending_publishes_each_window(wired, fake_redis):
    for n in range(6):
        _log(wired, f"t-{n}", user_id=f"user-{n}", age=timedelta(minutes=10))

    results = index_tasks.refresh_trending(["1h", "24h"])

    assert results == {"1h": 1, "24h": 1}
    snapshot = trending_store("1h").current_sync(fake_redis)
    assert [item["content_id"] for item in snapshot["items"]] == ["e1"]


def test_refresh_trending_isolates_bad_windows(wired):
    assert index_tasks.refresh_trending(["forever", "24h"]) == {"forever": "failed", "24h": 0}


def test_refresh_similarity_index(wired, fake_redis):
    now = datetime.now(timezone.utc)
    for user_id, scores in {"a": (0.9, 0.9, 0.5), "b": (0.8, 0.9, 0.6), "c": (0.05, 0.05, 0.05)}.items():
        for tag_n, score in enumerate(scores):
            wired.add(TagAffinity(
                user_id=user_id, tag_id=f"t{tag_n}", score=score, interaction_count=1,
                last_interaction_at=now, short_rate=1.0, long_rate=1.0, trend="stable",
            ))
    wired.commit()

    result = index_tasks.refresh_similarity_index()

    assert result["users"] == 2
    snapshot = similarity_store.current_sync(fake_redis)
    assert [entry[0] for entry in snapshot["neighbours"]["a"]] == ["b"]
