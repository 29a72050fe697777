"""Diversity caps — greedy page filling over the ranked list.

Per page of size N: a content type at most ceil(N / 3) times, an originating
generator at most ceil(N / 5) times, an organization at most ``organization_cap``
times. Items skipped for a cap stay in the pool, in rank order, for later pages.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, fields, replace
from typing import Any

from feed_engine.config import Settings
from feed_engine.services.entities import FeedItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiversityCaps:
    content_type_divisor: int = 3
    source_divisor: int = 5
    organization_cap: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "DiversityCaps":
        return cls(
            content_type_divisor=settings.content_type_cap_divisor,
            source_divisor=settings.source_cap_divisor,
            organization_cap=settings.organization_cap,
        )

    def with_overrides(self, overrides: dict[str, Any]) -> "DiversityCaps":
        aliases = {"content_type_cap_divisor": "content_type_divisor", "source_cap_divisor": "source_divisor"}
        known = {f.name for f in fields(self)}
        values = {}
        for key, value in overrides.items():
            key = aliases.get(key, key)
            if key in known:
                values[key] = max(1, int(value))
        return replace(self, **values)

    def limits(self, page_size: int) -> tuple[int, int, int]:
        """(type cap, source cap, organization cap) for a page of ``page_size``."""
        return (
            math.ceil(page_size / self.content_type_divisor),
            math.ceil(page_size / self.source_divisor),
            self.organization_cap,
        )


def fill_page(pool: list[FeedItem], page_size: int, caps: DiversityCaps) -> tuple[list[FeedItem], list[FeedItem]]:
    """Take items from ``pool`` in order while they fit the caps; returns (page, leftover)."""
    type_cap, source_cap, org_cap = caps.limits(page_size)
    types: Counter = Counter()
    origins: Counter = Counter()
    organizations: Counter = Counter()

    page: list[FeedItem] = []
    leftover: list[FeedItem] = []
    for item in pool:
        if len(page) >= page_size:
            leftover.append(item)
            continue
        content_type = item.ref.content_type
        if (
            types[content_type] >= type_cap
            or origins[item.origin] >= source_cap
            or (item.organization_id and organizations[item.organization_id] >= org_cap)
        ):
            leftover.append(item)
            continue
        page.append(item)
        types[content_type] += 1
        origins[item.origin] += 1
        if item.organization_id:
            organizations[item.organization_id] += 1
    return page, leftover


def paginate_with_caps(
    items: list[FeedItem],
    page_size: int,
    max_items: int,
    caps: DiversityCaps,
) -> tuple[list[FeedItem], list[int]]:
    """Split the ranked list into capped pages.

    Returns the emitted items in page order (positions renumbered) and the
    offset at which each page starts. Items that fit no page are dropped.
    """
    pool = list(items)
    emitted: list[FeedItem] = []
    offsets: list[int] = []
    while pool and len(emitted) < max_items:
        target = min(page_size, max_items - len(emitted))
        page, pool = fill_page(pool, target, caps)
        if not page:
            break
        offsets.append(len(emitted))
        emitted.extend(page)

    if pool:
        logger.debug("Diversity caps left %d ranked items unplaced", len(pool))

    emitted = [replace(item, position=position) for position, item in enumerate(emitted)]
    return emitted, offsets
