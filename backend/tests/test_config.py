import pytest

from feed_engine.config import TUNING_KEY, Settings, load_tuning, load_tuning_sync


def test_overrides_are_parsed_from_strings(settings):
    tuned = settings.with_overrides({"weight_diversity": "0.3", "organization_cap": b"1"})

    assert tuned.weight_diversity == 0.3
    assert tuned.organization_cap == 1
    assert settings.weight_diversity == 0.15


def test_unknown_keys_ignored(settings):
    assert settings.with_overrides({"nonsense": "1"}).model_dump() == settings.model_dump()


def test_invalid_values_keep_current_settings(settings):
    assert settings.with_overrides({"organization_cap": "many"}) is settings


def test_experiments_accept_json(settings):
    tuned = settings.with_overrides({"experiments": '{"x": {"traffic": 0.5, "variants": {"a": {}}}}'})
    assert tuned.experiments["x"].traffic == 0.5
    assert list(tuned.experiments["x"].variants) == ["a"]


@pytest.mark.parametrize("variant", [
    {"weights": {"diversity": "high"}},
    {"weights": {"diversity": -1}},
    {"caps": {"organization_cap": 0}},
])
def test_invalid_experiment_variants_keep_current_settings(settings, variant):
    overrides = {"experiments": {"x": {"traffic": 1.0, "variants": {"t": variant}}}}

    assert settings.with_overrides(overrides) is settings


async def test_load_tuning_merges_redis_hash(fake_redis, async_redis):
    fake_redis.data[TUNING_KEY] = {"feed_max_items": "30"}

    assert (await load_tuning(async_redis)).feed_max_items == 30
    assert load_tuning_sync(fake_redis).feed_max_items == 30


async def test_load_tuning_falls_back_when_redis_down(fake_redis, async_redis):
    fake_redis.fail = True

    assert (await load_tuning(async_redis)).feed_max_items == Settings().feed_max_items
    assert load_tuning_sync(fake_redis).feed_max_items == Settings().feed_max_items
