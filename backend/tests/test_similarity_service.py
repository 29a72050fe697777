from datetime import timedelta
from types import SimpleNamespace

import pytest

from feed_engine.services.similarity_service import (
    build_similarity_index,
    build_snapshot,
    build_vectors,
    cosine,
    find_similar_users,
    get_similar_users,
)
from feed_engine.services.snapshot_store import similarity_store
from fakes import NOW


def _rows(user_id, scores, last=NOW):
    return [
        SimpleNamespace(user_id=user_id, tag_id=tag_id, score=score, last_interaction_at=last)
        for tag_id, score in scores.items()
    ]


A = {"t1": 0.9, "t2": 0.9, "t3": 0.4063, "t4": 0.4063}
B = {"t1": 0.4063, "t2": 0.4063, "t3": 0.9, "t4": 0.9}


def test_cosine_of_mirrored_vectors():
    assert cosine(A, B) == pytest.approx(0.75, abs=1e-3)
    assert cosine(A, A) == pytest.approx(1.0)
    assert cosine(A, {}) == 0.0


def test_similar_user_included_with_shared_tag_count(settings):
    snapshot = build_snapshot(_rows("a", A) + _rows("b", B), settings, now=NOW)

    similar = find_similar_users(snapshot, "a", limit=10)

    assert len(similar) == 1
    assert similar[0].user_id == "b"
    assert similar[0].similarity == pytest.approx(0.75, abs=1e-3)
    assert similar[0].shared_tag_count == 4


def test_too_few_shared_tags_excluded(settings):
    vectors = {
        "a": {"t1": 0.9, "t2": 0.9},
        "b": {"t1": 0.9, "t2": 0.9, "t9": 0.5},
    }
    assert build_similarity_index(vectors, settings) == {}


def test_noise_floor_applies_after_decay(settings):
    stale = NOW - timedelta(weeks=30)
    vectors = build_vectors(_rows("a", {"t1": 0.5}, last=stale) + _rows("a", {"t2": 0.5}), NOW, settings)

    assert vectors == {"a": {"t2": 0.5}}


def test_neighbours_are_symmetric_and_capped(settings):
    settings = settings.with_overrides({"similarity_neighbors": 2})
    rows = _rows("a", A)
    for n in range(4):
        rows += _rows(f"n{n}", {"t1": 0.9, "t2": 0.9, "t3": 0.4063, "t4": 0.4063 + n * 0.05})

    snapshot = build_snapshot(rows, settings, now=NOW)

    assert len(find_similar_users(snapshot, "a", limit=10)) == 2
    assert any(user.user_id == "a" for user in find_similar_users(snapshot, "n0", limit=10))


def test_missing_snapshot_means_no_neighbours():
    assert find_similar_users(None, "a", limit=5) == []


async def test_get_similar_users_reads_published_snapshot(settings, fake_redis, async_redis):
    similarity_store.swap(fake_redis, build_snapshot(_rows("a", A) + _rows("b", B), settings, now=NOW))

    similar = await get_similar_users(async_redis, "b", limit=5)

    assert [user.user_id for user in similar] == ["a"]
