"""Core value types shared by the profile, generator, ranking and feed layers."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, NamedTuple

ContentType = Literal["event", "fundraiser", "organization"]
CONTENT_TYPES: tuple[str, ...] = ("event", "fundraiser", "organization")
ELIGIBLE_STATUSES: tuple[str, ...] = ("published", "active")

INTERACTION_TYPES: tuple[str, ...] = (
    "view",
    "like",
    "share",
    "comment",
    "bookmark",
    "attend",
    "interest",
    "follow",
    "donate",
    "register",
    "click_through",
)

# Interactions that invalidate cached feeds/profiles and trigger a recompute
SIGNIFICANT_INTERACTIONS = frozenset({"donate", "attend", "follow", "bookmark"})

FEED_ALGORITHMS: tuple[str, ...] = ("latest", "relevance", "popularity", "mixed")
# Generators a user can switch off with show_recommended_content
RECOMMENDED_SOURCES = frozenset({"collaborative", "exploration"})


class ContentRef(NamedTuple):
    """Identity of a content item across types; the merge key for candidates."""

    content_type: str
    content_id: str

    def key(self) -> str:
        return f"{self.content_type}:{self.content_id}"

    @classmethod
    def parse(cls, key: str) -> "ContentRef":
        content_type, _, content_id = key.partition(":")
        return cls(content_type, content_id)


@dataclass(frozen=True)
class TagWeight:
    tag_id: str
    relevance: float


@dataclass(frozen=True)
class ContentMetadata:
    """The small common subset of fields the ranking core needs."""

    ref: ContentRef
    created_at: datetime
    status: str = "published"
    organization_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    starts_at: datetime | None = None
    title: str | None = None
    description: str | None = None
    image_url: str | None = None

    @property
    def is_eligible(self) -> bool:
        return self.status in ELIGIBLE_STATUSES

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class InteractionRecord:
    """Read-side view of one interaction log entry."""

    id: str
    user_id: str
    ref: ContentRef
    interaction_type: str
    created_at: datetime
    time_spent: float | None = None
    scroll_depth: float | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class UserContext:
    user_id: str
    latitude: float | None = None
    longitude: float | None = None
    postal_code: str | None = None
    session_id: str | None = None
    device_type: str | None = None
    # Content recently shown to the user in this session, for the diversity penalty
    recent_content_types: tuple[str, ...] = ()
    recent_organization_ids: tuple[str, ...] = ()

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class AffinityEntry:
    tag_id: str
    score: float
    interaction_count: int
    last_interaction_at: datetime
    trend: str


@dataclass
class UserProfile:
    user_id: str
    top_tags: list[AffinityEntry] = field(default_factory=list)
    content_type_preferences: dict[str, float] = field(default_factory=dict)
    peak_hours: list[int] = field(default_factory=list)
    peak_days: list[int] = field(default_factory=list)
    average_session_minutes: float = 0.0
    interaction_count: int = 0
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_cold_start(self) -> bool:
        return not self.top_tags

    def affinity_map(self) -> dict[str, float]:
        return {entry.tag_id: entry.score for entry in self.top_tags}

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "top_tags": [
                {
                    "tag_id": e.tag_id,
                    "score": e.score,
                    "interaction_count": e.interaction_count,
                    "last_interaction_at": e.last_interaction_at.isoformat(),
                    "trend": e.trend,
                }
                for e in self.top_tags
            ],
            "content_type_preferences": self.content_type_preferences,
            "peak_hours": self.peak_hours,
            "peak_days": self.peak_days,
            "average_session_minutes": self.average_session_minutes,
            "interaction_count": self.interaction_count,
            "computed_at": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserProfile":
        return cls(
            user_id=data["user_id"],
            top_tags=[
                AffinityEntry(
                    tag_id=e["tag_id"],
                    score=e["score"],
                    interaction_count=e["interaction_count"],
                    last_interaction_at=datetime.fromisoformat(e["last_interaction_at"]),
                    trend=e["trend"],
                )
                for e in data.get("top_tags", [])
            ],
            content_type_preferences=data.get("content_type_preferences", {}),
            peak_hours=data.get("peak_hours", []),
            peak_days=data.get("peak_days", []),
            average_session_minutes=data.get("average_session_minutes", 0.0),
            interaction_count=data.get("interaction_count", 0),
            computed_at=datetime.fromisoformat(data["computed_at"]),
        )


@dataclass(frozen=True)
class FeedPreferences:
    """Explicit per-user feed settings, layered over the learned profile."""

    interest_weights: dict[str, float] = field(default_factory=dict)
    content_type_preferences: dict[str, float] = field(default_factory=dict)
    feed_algorithm: str = "mixed"
    show_recommended_content: bool = True

    def content_type_shares(self) -> dict[str, float]:
        """Stated preferences as shares summing to 1; plural keys ("events") are accepted."""
        totals: dict[str, float] = {}
        for key, value in self.content_type_preferences.items():
            content_type = key[:-1] if key not in CONTENT_TYPES and key.endswith("s") else key
            if content_type in CONTENT_TYPES and value > 0:
                totals[content_type] = totals.get(content_type, 0.0) + value
        grand_total = sum(totals.values())
        if not grand_total:
            return {}
        return {content_type: round(value / grand_total, 4) for content_type, value in sorted(totals.items())}

    def personalize(self, profile: UserProfile) -> UserProfile:
        """Copy of ``profile`` with interest weights and stated type shares applied."""
        top_tags = profile.top_tags
        if self.interest_weights:
            top_tags = []
            for entry in profile.top_tags:
                score = min(1.0, entry.score * self.interest_weights.get(entry.tag_id, 1.0))
                if score > 0:
                    top_tags.append(replace(entry, score=score))
            top_tags.sort(key=lambda e: (-e.score, e.tag_id))
        shares = self.content_type_shares()
        return replace(
            profile,
            top_tags=top_tags,
            content_type_preferences=shares or profile.content_type_preferences,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "interest_weights": dict(self.interest_weights),
            "content_type_preferences": dict(self.content_type_preferences),
            "feed_algorithm": self.feed_algorithm,
            "show_recommended_content": self.show_recommended_content,
        }


@dataclass
class Candidate:
    """One generator's opinion about one content item."""

    ref: ContentRef
    raw_score: float
    source: str
    reasons: list[str] = field(default_factory=list)


@dataclass
class FeedItem:
    ref: ContentRef
    score: float
    score_breakdown: dict[str, float]
    reasons: list[str]
    sources: list[str]
    created_at: datetime
    organization_id: str | None = None
    position: int = 0

    @property
    def origin(self) -> str:
        """The generator that contributed the most raw score."""
        return self.sources[0] if self.sources else "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_type": self.ref.content_type,
            "content_id": self.ref.content_id,
            "score": self.score,
            "score_breakdown": self.score_breakdown,
            "reasons": self.reasons,
            "sources": self.sources,
            "created_at": self.created_at.isoformat(),
            "organization_id": self.organization_id,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedItem":
        return cls(
            ref=ContentRef(data["content_type"], data["content_id"]),
            score=data["score"],
            score_breakdown=data["score_breakdown"],
            reasons=list(data["reasons"]),
            sources=list(data["sources"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            organization_id=data.get("organization_id"),
            position=data.get("position", 0),
        )


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
