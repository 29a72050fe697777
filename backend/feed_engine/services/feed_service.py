"""Feed assembly — fan out generators, rank, cap, cache and paginate.

The ranked, capped list (at most ``feed_max_items``) is cached per user and
request fingerprint under a generation id. Cursors carry (generation, offset)
and only stay valid while that generation is cached. Invalidation bumps a
per-user namespace counter, which orphans every cached feed of that user at
once.
"""

import asyncio
import base64
import binascii
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from feed_engine.config import Settings
from feed_engine.generators.base import BaseGenerator, GenerationRequest
from feed_engine.services.content_index import ContentIndex
from feed_engine.services.diversity_service import DiversityCaps, paginate_with_caps
from feed_engine.services.entities import (
    CONTENT_TYPES,
    Candidate,
    ContentMetadata,
    RECOMMENDED_SOURCES,
    ContentRef,
    FeedItem,
    FeedPreferences,
    UserContext,
    UserProfile,
    ensure_utc,
)
from feed_engine.services.errors import CursorExpiredError, InvalidCursorError
from feed_engine.services.experiments import apply_treatments, assign_variants, describe
from feed_engine.services.geo import haversine_km, postal_code_to_coords
from feed_engine.services.profile_service import ProfileService
from feed_engine.services.ranking_service import RankingContext, WeightConfig, rank

logger = logging.getLogger(__name__)

FEED_NAMESPACE_KEY = "feed:{user_id}:ns"
FEED_KEY = "feed:{user_id}:{namespace}:{fingerprint}"


@dataclass(frozen=True)
class FeedFilters:
    organization_ids: tuple[str, ...] = ()
    created_after: datetime | None = None
    # Content keys ("event:123") the caller never wants to see
    exclude: tuple[str, ...] = ()
    max_distance_km: float | None = None

    def __post_init__(self):
        # Naive timestamps are taken as UTC
        if self.created_after is not None:
            object.__setattr__(self, "created_after", ensure_utc(self.created_after))

    def allows(self, meta: ContentMetadata, user: UserContext) -> bool:
        if self.organization_ids and meta.organization_id not in self.organization_ids:
            return False
        if self.created_after is not None and meta.created_at < self.created_after:
            return False
        if self.exclude and meta.ref.key() in self.exclude:
            return False
        if self.max_distance_km is not None:
            if not (meta.has_location and user.has_location):
                return False
            distance = haversine_km(user.latitude, user.longitude, meta.latitude, meta.longitude)
            if distance > self.max_distance_km:
                return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "organization_ids": sorted(self.organization_ids),
            "created_after": self.created_after.isoformat() if self.created_after else None,
            "exclude": sorted(self.exclude),
            "max_distance_km": self.max_distance_km,
        }


@dataclass(frozen=True)
class RequestContext:
    """Caller-supplied context; unset fields fall back to the stored user context."""

    latitude: float | None = None
    longitude: float | None = None
    postal_code: str | None = None
    session_id: str | None = None
    device_type: str | None = None
    recent_content_types: tuple[str, ...] = ()
    recent_organization_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class FeedRequest:
    content_types: tuple[str, ...] = CONTENT_TYPES
    filters: FeedFilters = field(default_factory=FeedFilters)
    limit: int = 20
    cursor: str | None = None
    context: RequestContext = field(default_factory=RequestContext)
    trending_window: str | None = None

    def fingerprint(self, settings: Settings) -> str:
        """Stable hash of everything that shapes the ranked list (not the cursor)."""
        location = None
        if self.context.latitude is not None and self.context.longitude is not None:
            location = [round(self.context.latitude, 2), round(self.context.longitude, 2)]
        payload = {
            "types": sorted(self.content_types),
            "filters": self.filters.to_dict(),
            "limit": self.limit,
            "window": self.trending_window or settings.trending_default_window,
            "location": location,
            "postal_code": self.context.postal_code,
        }
        return hashlib.sha1(json.dumps(payload, sort_keys=True).encode()).hexdigest()[:16]


@dataclass
class CachedFeed:
    generation: str
    items: list[FeedItem]
    page_offsets: list[int]
    metadata: dict[str, Any]

    def to_json(self) -> str:
        return json.dumps({
            "generation": self.generation,
            "items": [item.to_dict() for item in self.items],
            "page_offsets": self.page_offsets,
            "metadata": self.metadata,
        })

    @classmethod
    def from_json(cls, raw: str) -> "CachedFeed":
        data = json.loads(raw)
        return cls(
            generation=data["generation"],
            items=[FeedItem.from_dict(item) for item in data["items"]],
            page_offsets=list(data["page_offsets"]),
            metadata=data.get("metadata", {}),
        )


@dataclass
class FeedPage:
    items: list[FeedItem]
    next_cursor: str | None
    metadata: dict[str, Any]


def encode_cursor(generation: str, offset: int) -> str:
    raw = json.dumps({"g": generation, "o": offset}, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode()


def decode_cursor(cursor: str) -> tuple[str, int]:
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode()))
        generation, offset = data["g"], data["o"]
    except (binascii.Error, ValueError, KeyError, TypeError):
        raise InvalidCursorError("Malformed pagination cursor")
    if not isinstance(generation, str) or not isinstance(offset, int) or offset < 0:
        raise InvalidCursorError("Malformed pagination cursor")
    return generation, offset


@dataclass
class _Flight:
    task: asyncio.Future
    waiters: int = 0


class FeedService:
    """GenerateFeed: long-lived, shared by all requests of one process."""

    def __init__(
        self,
        index: ContentIndex,
        redis_client,
        settings: Settings,
        generators: list[BaseGenerator],
    ):
        self.index = index
        self.redis = redis_client
        self.settings = settings
        self.generators = generators
        self._inflight: dict[str, _Flight] = {}

    async def generate_feed(
        self,
        user_id: str,
        request: FeedRequest,
        settings: Settings | None = None,
        now: datetime | None = None,
    ) -> FeedPage:
        settings = settings or self.settings
        fingerprint = request.fingerprint(settings)
        key = FEED_KEY.format(
            user_id=user_id, namespace=await self._namespace(user_id), fingerprint=fingerprint
        )

        if request.cursor:
            generation, offset = decode_cursor(request.cursor)
            cached = await self._read(key)
            if cached is None or cached.generation != generation:
                raise CursorExpiredError(generation)
            return self._page(cached, offset, from_cache=True)

        cached = await self._read(key)
        if cached is not None:
            return self._page(cached, 0, from_cache=True)

        cached = await self._single_flight(key, lambda: self._compute(user_id, request, settings, key, now))
        return self._page(cached, 0, from_cache=False)

    async def invalidate(self, user_id: str) -> None:
        await self.redis.incr(FEED_NAMESPACE_KEY.format(user_id=user_id))

    # --- Computation ---

    async def _compute(
        self,
        user_id: str,
        request: FeedRequest,
        settings: Settings,
        key: str,
        now: datetime | None,
    ) -> CachedFeed:
        now = now or datetime.now(timezone.utc)
        content_types = tuple(t for t in request.content_types if t in CONTENT_TYPES) or CONTENT_TYPES

        context = await self._resolve_context(user_id, request.context)
        preferences = await self._load_preferences(user_id)
        profile = preferences.personalize(await self._load_profile(user_id, settings, now))
        generators = [
            generator for generator in self.generators
            if preferences.show_recommended_content or generator.name not in RECOMMENDED_SOURCES
        ]
        recently_seen = await self._recently_seen(user_id, settings, now)

        generation_request = GenerationRequest(
            user_id=user_id,
            profile=profile,
            context=context,
            content_types=content_types,
            now=now,
            settings=settings,
            trending_window=request.trending_window or settings.trending_default_window,
            recently_seen=recently_seen,
        )
        results = await asyncio.gather(
            *(self._run_generator(generator, generation_request) for generator in generators)
        )

        candidates: list[Candidate] = []
        generator_stats: dict[str, dict[str, Any]] = {
            generator.name: {"status": "disabled", "candidates": 0}
            for generator in self.generators if generator not in generators
        }
        for generator, (status, produced) in zip(generators, results):
            generator_stats[generator.name] = {"status": status, "candidates": len(produced)}
            candidates.extend(c for c in produced if c.ref.content_type in content_types)

        metadata = await self._metadata(candidates)
        metadata = {ref: meta for ref, meta in metadata.items() if request.filters.allows(meta, context)}

        weights = WeightConfig.for_algorithm(settings, preferences.feed_algorithm)
        ranked = rank(
            candidates,
            profile,
            RankingContext(
                user=context,
                metadata=metadata,
                now=now,
                weights=weights,
                location_radius_km=settings.location_radius_km,
            ),
        )

        assignments = assign_variants(user_id, settings.experiments)
        ranked, caps = apply_treatments(ranked, weights, DiversityCaps.from_settings(settings), assignments)
        items, offsets = paginate_with_caps(ranked, request.limit, settings.feed_max_items, caps)

        cached = CachedFeed(
            generation=uuid.uuid4().hex,
            items=items,
            page_offsets=offsets,
            metadata={
                "computed_at": now.isoformat(),
                "cold_start": profile.is_cold_start,
                "feed_algorithm": preferences.feed_algorithm,
                "content_types": list(content_types),
                "trending_window": generation_request.trending_window,
                "candidates": len(candidates),
                "generators": generator_stats,
                "experiments": describe(assignments),
            },
        )
        await self._write(key, cached, settings)
        logger.info(
            "Computed feed for user %s: %d candidates, %d items, %d pages",
            user_id, len(candidates), len(items), len(offsets),
        )
        return cached

    async def _run_generator(self, generator: BaseGenerator, request: GenerationRequest) -> tuple[str, list[Candidate]]:
        """Run one generator under its deadline; failures contribute nothing."""
        try:
            produced = await asyncio.wait_for(generator.generate(request), request.settings.generator_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Generator %s timed out for user %s", generator.name, request.user_id)
            return "timeout", []
        except Exception as e:
            logger.warning("Generator %s failed for user %s: %s", generator.name, request.user_id, e, exc_info=True)
            return "error", []
        return "ok", produced

    async def _resolve_context(self, user_id: str, overrides: RequestContext) -> UserContext:
        try:
            stored = await self.index.get_user_context(user_id)
        except Exception as e:
            logger.warning("User context lookup failed for %s: %s", user_id, e)
            stored = UserContext(user_id=user_id)

        latitude = overrides.latitude if overrides.latitude is not None else stored.latitude
        longitude = overrides.longitude if overrides.longitude is not None else stored.longitude
        postal_code = overrides.postal_code or stored.postal_code
        if overrides.postal_code and overrides.latitude is None:
            # A postal code sent with this request beats stored coordinates
            latitude = longitude = None
        if (latitude is None or longitude is None) and postal_code:
            location = await asyncio.to_thread(postal_code_to_coords, postal_code)
            if location:
                latitude, longitude = location.latitude, location.longitude

        return UserContext(
            user_id=user_id,
            latitude=latitude,
            longitude=longitude,
            postal_code=postal_code,
            session_id=overrides.session_id or stored.session_id,
            device_type=overrides.device_type or stored.device_type,
            recent_content_types=overrides.recent_content_types,
            recent_organization_ids=overrides.recent_organization_ids,
        )

    async def _load_preferences(self, user_id: str) -> FeedPreferences:
        try:
            return await self.index.get_feed_preferences(user_id)
        except Exception as e:
            logger.warning("Feed preferences unavailable for user %s, using defaults: %s", user_id, e)
            return FeedPreferences()

    async def _load_profile(self, user_id: str, settings: Settings, now: datetime) -> UserProfile:
        try:
            return await ProfileService(self.index, self.redis, settings).get_profile(user_id, now=now)
        except Exception as e:
            logger.warning("Profile unavailable for user %s, serving non-personalized feed: %s", user_id, e)
            return UserProfile(user_id=user_id, computed_at=now)

    async def _recently_seen(self, user_id: str, settings: Settings, now: datetime) -> frozenset[ContentRef]:
        try:
            seen = await self.index.interacted_content(user_id, now - timedelta(hours=settings.freshness_hours))
        except Exception as e:
            logger.warning("Recent interactions unavailable for user %s: %s", user_id, e)
            return frozenset()
        return frozenset(seen)

    async def _metadata(self, candidates: list[Candidate]) -> dict[ContentRef, ContentMetadata]:
        refs = {candidate.ref for candidate in candidates}
        if not refs:
            return {}
        try:
            return await self.index.get_metadata_bulk(refs)
        except Exception as e:
            logger.warning("Content metadata lookup failed for %d candidates: %s", len(refs), e)
            return {}

    # --- Cache ---

    async def _namespace(self, user_id: str) -> str:
        try:
            namespace = await self.redis.get(FEED_NAMESPACE_KEY.format(user_id=user_id))
        except Exception as e:
            logger.warning("Feed namespace read failed for %s: %s", user_id, e)
            return "0"
        if isinstance(namespace, bytes):
            namespace = namespace.decode()
        return namespace or "0"

    async def _read(self, key: str) -> CachedFeed | None:
        try:
            raw = await self.redis.get(key)
        except Exception as e:
            logger.warning("Feed cache read failed for %s: %s", key, e)
            return None
        if not raw:
            return None
        try:
            return CachedFeed.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable cached feed %s: %s", key, e)
            return None

    async def _write(self, key: str, cached: CachedFeed, settings: Settings) -> None:
        try:
            await self.redis.set(key, cached.to_json(), ex=settings.feed_cache_ttl_seconds)
        except Exception as e:
            logger.warning("Feed cache write failed for %s: %s", key, e)

    async def _single_flight(self, key: str, factory: Callable[[], Awaitable[CachedFeed]]) -> CachedFeed:
        """Coalesce concurrent misses on ``key`` into one computation.

        The computation is cancelled only when every waiter has gone away.
        """
        flight = self._inflight.get(key)
        if flight is None:
            flight = _Flight(asyncio.ensure_future(factory()))
            self._inflight[key] = flight

            def _done(_task, key=key, flight=flight):
                if self._inflight.get(key) is flight:
                    del self._inflight[key]

            flight.task.add_done_callback(_done)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            if flight.waiters == 1 and not flight.task.done():
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1

    # --- Pagination ---

    def _page(self, cached: CachedFeed, offset: int, from_cache: bool) -> FeedPage:
        total = len(cached.items)
        if offset >= total:
            if offset == total:
                return FeedPage([], None, self._page_metadata(cached, offset, 0, from_cache))
            raise InvalidCursorError("Cursor offset is past the end of the feed")
        if offset not in cached.page_offsets:
            raise InvalidCursorError("Cursor offset does not start a page")

        index = cached.page_offsets.index(offset)
        end = cached.page_offsets[index + 1] if index + 1 < len(cached.page_offsets) else total
        items = cached.items[offset:end]
        next_cursor = encode_cursor(cached.generation, end) if end < total else None
        return FeedPage(items, next_cursor, self._page_metadata(cached, offset, len(items), from_cache))

    @staticmethod
    def _page_metadata(cached: CachedFeed, offset: int, count: int, from_cache: bool) -> dict[str, Any]:
        metadata = dict(cached.metadata)
        metadata.update({
            "generation": cached.generation,
            "offset": offset,
            "count": count,
            "total_items": len(cached.items),
            "from_cache": from_cache,
        })
        return metadata


def invalidate_feed_sync(redis_client, user_id: str) -> None:
    """Orphan all cached feeds (and their cursors) for a user; worker side."""
    redis_client.incr(FEED_NAMESPACE_KEY.format(user_id=user_id))
