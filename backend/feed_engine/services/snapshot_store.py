"""Snapshot stores — wholesale-rebuilt indexes published by an atomic pointer swap.

Writers (Celery workers) store a new generation under its own key and then
repoint ``snapshot:{name}:current`` at it in a single SET. Readers resolve the
pointer first, so they see either the old or the new snapshot, never a mix.
The previous generation is kept alive briefly for readers already holding its
id.
"""

import json
import logging
import uuid
from typing import Any

logger = logging.getLogger(__name__)

RETIRED_GENERATION_TTL = 120


class SnapshotStore:
    def __init__(self, name: str, ttl_seconds: int = 7 * 24 * 3600):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.pointer_key = f"snapshot:{name}:current"
        # (generation, decoded payload) for the last snapshot this process read
        self._memo: tuple[str, Any] | None = None

    def data_key(self, generation: str) -> str:
        return f"snapshot:{self.name}:{generation}"

    def swap(self, redis_client, payload: Any) -> str:
        """Publish a new snapshot; returns its generation id."""
        generation = uuid.uuid4().hex
        redis_client.set(self.data_key(generation), json.dumps(payload), ex=self.ttl_seconds)
        previous = redis_client.set(self.pointer_key, generation, get=True)
        if previous:
            previous = previous.decode() if isinstance(previous, bytes) else previous
            redis_client.expire(self.data_key(previous), RETIRED_GENERATION_TTL)
        logger.info("Published %s snapshot generation %s", self.name, generation)
        return generation

    async def current(self, redis_client) -> Any | None:
        """Latest published snapshot, or the last one seen if the store is unreachable."""
        memo = self._memo
        try:
            generation = await redis_client.get(self.pointer_key)
            if generation is None:
                return memo[1] if memo else None
            generation = generation.decode() if isinstance(generation, bytes) else generation
            if memo and memo[0] == generation:
                return memo[1]

            raw = await redis_client.get(self.data_key(generation))
        except Exception as e:
            logger.warning("Snapshot %s unavailable, serving last known: %s", self.name, e)
            return memo[1] if memo else None

        if raw is None:
            logger.warning("Snapshot %s generation %s missing its data", self.name, generation)
            return memo[1] if memo else None

        payload = json.loads(raw)
        self._memo = (generation, payload)
        return payload

    def current_sync(self, redis_client) -> Any | None:
        generation = redis_client.get(self.pointer_key)
        if generation is None:
            return None
        generation = generation.decode() if isinstance(generation, bytes) else generation
        raw = redis_client.get(self.data_key(generation))
        return json.loads(raw) if raw is not None else None


similarity_store = SnapshotStore("similarity")


def trending_store(window: str) -> SnapshotStore:
    """One store per trending window, shared process-wide."""
    store = _trending_stores.get(window)
    if store is None:
        store = _trending_stores.setdefault(window, SnapshotStore(f"trending:{window}", ttl_seconds=24 * 3600))
    return store


_trending_stores: dict[str, SnapshotStore] = {}
