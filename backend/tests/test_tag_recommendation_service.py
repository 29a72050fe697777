import pytest

from feed_engine.services.snapshot_store import similarity_store
from feed_engine.services.tag_recommendation_service import recommend_tags
from fakes import NOW


@pytest.fixture
def catalogue(index):
    index.categories = {"t1": "cat-a", "t2": "cat-a", "t3": "cat-b", "t5": "cat-c", "t6": "cat-c"}
    index.tag_names = {"t1": "Climate", "t2": "Oceans", "t3": "Literacy", "t5": "Housing", "t6": "Food"}
    index.add_affinity("u1", "t1", 0.6)
    return index


async def test_popular_fallback_prefers_new_categories(catalogue, async_redis, settings):
    catalogue.add_affinity("u2", "t2", 0.5)
    catalogue.add_affinity("u3", "t2", 0.5)
    catalogue.add_affinity("u4", "t3", 0.5)

    recommendations = await recommend_tags(catalogue, async_redis, "u1", settings, now=NOW)

    assert [(r.tag_id, r.relevance, r.reason) for r in recommendations] == [
        ("t2", 1.0, "Popular among all users"),
        ("t3", 0.75, "Popular in new interest areas"),
    ]
    assert recommendations[0].name == "Oceans"
    assert recommendations[1].category_id == "cat-b"


async def test_neighbours_drive_recommendations_when_available(catalogue, fake_redis, async_redis, settings):
    similarity_store.swap(fake_redis, {
        "built_at": NOW.isoformat(),
        "neighbours": {"u1": [["n1", 0.8, 4], ["n2", 0.5, 3]]},
    })
    catalogue.add_affinity("n1", "t5", 0.6)
    catalogue.add_affinity("n1", "t1", 0.9)
    catalogue.add_affinity("n2", "t5", 0.4)
    catalogue.add_affinity("n2", "t6", 0.05)

    recommendations = await recommend_tags(catalogue, async_redis, "u1", settings, now=NOW)

    assert [r.tag_id for r in recommendations] == ["t5"]
    assert recommendations[0].relevance == pytest.approx(0.34)
    assert recommendations[0].reason == "Popular among users with similar interests"


async def test_nothing_to_recommend(index, async_redis, settings):
    index.add_affinity("u1", "t1", 0.6)
    assert await recommend_tags(index, async_redis, "u1", settings, now=NOW) == []


async def test_limit_applies(catalogue, async_redis, settings):
    catalogue.add_affinity("u2", "t2", 0.5)
    catalogue.add_affinity("u4", "t3", 0.5)
    catalogue.add_affinity("u5", "t6", 0.5)

    assert len(await recommend_tags(catalogue, async_redis, "u1", settings, limit=2, now=NOW)) == 2
