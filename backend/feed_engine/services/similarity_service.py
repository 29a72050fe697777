"""Similarity index — nearest-neighbour users by cosine similarity of tag-affinity vectors.

Only tags above the noise floor take part. An inverted index (tag -> users)
limits comparisons to pairs that share at least ``min_shared_tags`` tags,
avoiding a full pairwise pass over all users.
"""

import logging
import math
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from feed_engine.config import Settings
from feed_engine.services.affinity_service import effective_score
from feed_engine.services.snapshot_store import similarity_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarUser:
    user_id: str
    similarity: float
    shared_tag_count: int


def build_vectors(rows: Iterable[Any], now: datetime, settings: Settings) -> dict[str, dict[str, float]]:
    """Decayed affinity vectors per user, dropping tags under the noise floor.

    ``rows`` are TagAffinity-like objects (user_id, tag_id, score, last_interaction_at).
    """
    vectors: dict[str, dict[str, float]] = defaultdict(dict)
    for row in rows:
        value = effective_score(row.score, row.last_interaction_at, now, settings.affinity_weekly_decay)
        if value > settings.similarity_noise_floor:
            vectors[row.user_id][row.tag_id] = value
    return dict(vectors)


def cosine(a: dict[str, float], b: dict[str, float]) -> float:
    if not a or not b:
        return 0.0
    if len(a) > len(b):
        a, b = b, a
    dot = sum(value * b[tag] for tag, value in a.items() if tag in b)
    norm = math.sqrt(sum(v * v for v in a.values())) * math.sqrt(sum(v * v for v in b.values()))
    if norm == 0:
        return 0.0
    return max(0.0, min(1.0, dot / norm))


def build_similarity_index(vectors: dict[str, dict[str, float]], settings: Settings) -> dict[str, list[list]]:
    """Neighbour lists per user: ``[[other_user_id, similarity, shared_tags], ...]`` best first."""
    postings: dict[str, list[str]] = defaultdict(list)
    for user_id in sorted(vectors):
        for tag_id in vectors[user_id]:
            postings[tag_id].append(user_id)

    neighbours: dict[str, list[list]] = defaultdict(list)
    compared = 0
    for user_id in sorted(vectors):
        shared = Counter()
        for tag_id in vectors[user_id]:
            for other in postings[tag_id]:
                if other > user_id:
                    shared[other] += 1

        for other, shared_count in shared.items():
            if shared_count < settings.min_shared_tags:
                continue
            compared += 1
            similarity = cosine(vectors[user_id], vectors[other])
            if similarity < settings.similarity_threshold:
                continue
            similarity = round(similarity, 6)
            neighbours[user_id].append([other, similarity, shared_count])
            neighbours[other].append([user_id, similarity, shared_count])

    trimmed = {}
    for user_id, entries in neighbours.items():
        entries.sort(key=lambda e: (-e[1], e[0]))
        trimmed[user_id] = entries[: settings.similarity_neighbors]

    logger.info("Similarity index: %d users, %d pairs compared, %d users with neighbours",
                len(vectors), compared, len(trimmed))
    return trimmed


def build_snapshot(rows: Iterable[Any], settings: Settings, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    vectors = build_vectors(rows, now, settings)
    return {
        "built_at": now.isoformat(),
        "neighbours": build_similarity_index(vectors, settings),
    }


def find_similar_users(snapshot: dict[str, Any] | None, user_id: str, limit: int) -> list[SimilarUser]:
    """FindSimilarUsers over a published snapshot (empty when none has been built yet)."""
    if not snapshot:
        return []
    entries = snapshot.get("neighbours", {}).get(user_id, [])
    return [SimilarUser(other, similarity, shared) for other, similarity, shared in entries[:limit]]


async def get_similar_users(redis_client, user_id: str, limit: int) -> list[SimilarUser]:
    snapshot = await similarity_store.current(redis_client)
    return find_similar_users(snapshot, user_id, limit)
