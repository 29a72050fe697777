"""In-memory doubles for Redis and the content index."""

import fnmatch
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from feed_engine.models.tag_affinity import TagAffinity
from feed_engine.services.entities import (
    ELIGIBLE_STATUSES,
    ContentMetadata,
    ContentRef,
    FeedPreferences,
    TagWeight,
    UserContext,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeRedis:
    """The slice of the redis-py API the engine uses, kept in a dict."""

    def __init__(self):
        self.data: dict[str, object] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False
        self.locks_taken: list[str] = []

    def _check(self):
        if self.fail:
            raise ConnectionError("redis down")

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value, ex=None, get=False):
        self._check()
        previous = self.data.get(key)
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return previous if get else True

    def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    def incr(self, key):
        self._check()
        value = int(self.data.get(key) or 0) + 1
        self.data[key] = str(value)
        return value

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return key in self.data

    def hgetall(self, key):
        self._check()
        return dict(self.data.get(key) or {})

    def hincrby(self, key, field, amount=1):
        self._check()
        mapping = self.data.setdefault(key, {})
        mapping[field] = str(int(mapping.get(field, 0)) + amount)
        return int(mapping[field])

    def hdel(self, key, *fields):
        self._check()
        mapping = self.data.get(key) or {}
        return sum(1 for field in fields if mapping.pop(field, None) is not None)

    def keys(self, pattern="*"):
        return [key for key in self.data if fnmatch.fnmatch(key, pattern)]

    def ping(self):
        self._check()
        return True

    @contextmanager
    def lock(self, name, timeout=None, blocking_timeout=None):
        self.locks_taken.append(name)
        yield


class FakeAsyncRedis:
    """Async facade over FakeRedis, sharing its storage."""

    def __init__(self, sync: FakeRedis | None = None):
        self.sync = sync or FakeRedis()

    async def get(self, key):
        return self.sync.get(key)

    async def set(self, key, value, ex=None, get=False):
        return self.sync.set(key, value, ex=ex, get=get)

    async def delete(self, *keys):
        return self.sync.delete(*keys)

    async def incr(self, key):
        return self.sync.incr(key)

    async def hgetall(self, key):
        return self.sync.hgetall(key)

    async def ping(self):
        return self.sync.ping()


class FakeContentIndex:
    """In-memory ContentIndex with the same async method surface."""

    def __init__(self):
        self.metadata: dict[ContentRef, ContentMetadata] = {}
        self.tags: dict[ContentRef, list[TagWeight]] = {}
        self.categories: dict[str, str] = {}
        self.tag_names: dict[str, str] = {}
        self.interactions = []
        self.affinities: list[TagAffinity] = []
        self.follows: dict[str, list[str]] = {}
        self.contexts: dict[str, UserContext] = {}
        self.preferences: dict[str, FeedPreferences] = {}
        self.calls: list[str] = []

    # Builders

    def add_content(self, content_type, content_id, tags=(), created_at=None, **fields):
        ref = ContentRef(content_type, content_id)
        self.metadata[ref] = ContentMetadata(ref=ref, created_at=created_at or NOW - timedelta(days=1), **fields)
        self.tags[ref] = [TagWeight(tag_id, relevance) for tag_id, relevance in tags]
        return ref

    def add_affinity(self, user_id, tag_id, score, last_interaction_at=None, interaction_count=1):
        row = TagAffinity(
            user_id=user_id,
            tag_id=tag_id,
            score=score,
            interaction_count=interaction_count,
            last_interaction_at=last_interaction_at or NOW,
            short_rate=1.0,
            long_rate=1.0,
            trend="stable",
        )
        self.affinities.append(row)
        return row

    # ContentIndex surface

    async def get_content_tags(self, ref):
        return list(self.tags.get(ref, []))

    async def get_tags_for_contents(self, refs):
        return {ref: list(self.tags[ref]) for ref in refs if ref in self.tags}

    async def find_content_by_tags(self, tag_ids, content_types, limit):
        self.calls.append("find_content_by_tags")
        tag_ids = set(tag_ids)
        content_types = set(content_types)
        matches = {}
        for ref, tags in sorted(self.tags.items()):
            if ref.content_type not in content_types:
                continue
            hits = [t for t in tags if t.tag_id in tag_ids]
            if hits:
                matches[ref] = hits
        return matches

    async def get_tag_categories(self, tag_ids=None):
        if tag_ids is None:
            return dict(self.categories)
        return {t: self.categories[t] for t in tag_ids if t in self.categories}

    async def get_tag_names(self, tag_ids):
        return {t: self.tag_names[t] for t in tag_ids if t in self.tag_names}

    async def get_content_metadata(self, ref):
        return self.metadata.get(ref)

    async def get_metadata_bulk(self, refs):
        return {ref: self.metadata[ref] for ref in refs if ref in self.metadata}

    async def list_eligible_content(self, content_types, created_since=None, organization_ids=None,
                                    with_location=False, limit=200):
        content_types = set(content_types)
        rows = [
            meta for meta in self.metadata.values()
            if meta.status in ELIGIBLE_STATUSES
            and meta.ref.content_type in content_types
            and (created_since is None or meta.created_at >= created_since)
            and (organization_ids is None or meta.organization_id in set(organization_ids))
            and (not with_location or meta.has_location)
        ]
        rows.sort(key=lambda m: (-m.created_at.timestamp(), m.ref.content_id))
        return rows[:limit]

    async def recent_interactions(self, since, user_ids=None, interaction_types=None, limit=5000):
        rows = [
            i for i in self.interactions
            if i.created_at >= since
            and (user_ids is None or i.user_id in set(user_ids))
            and (interaction_types is None or i.interaction_type in set(interaction_types))
        ]
        return rows[:limit]

    async def interacted_content(self, user_id, since):
        return {i.ref for i in self.interactions if i.user_id == user_id and i.created_at >= since}

    async def get_user_affinities(self, user_id):
        return [a for a in self.affinities if a.user_id == user_id]

    async def get_affinities_for_users(self, user_ids):
        user_ids = set(user_ids)
        return [a for a in self.affinities if a.user_id in user_ids]

    async def tag_popularity(self, min_score):
        counts = {}
        for a in self.affinities:
            if a.score >= min_score:
                counts[a.tag_id] = counts.get(a.tag_id, 0) + 1
        return counts

    async def get_followed_organizations(self, user_id):
        return sorted(self.follows.get(user_id, []))

    async def get_user_context(self, user_id):
        return self.contexts.get(user_id, UserContext(user_id=user_id))

    async def get_feed_preferences(self, user_id):
        return self.preferences.get(user_id, FeedPreferences())


