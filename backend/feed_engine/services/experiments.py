"""A/B experiment assignment and treatments.

Experiments are configured in settings (or the runtime tuning hash):

    {"diversity_boost": {"traffic": 0.5,
                         "variants": {"control": {},
                                      "treatment": {"weights": {"diversity": 0.25},
                                                    "caps": {"organization_cap": 1}}}}}

Assignment hashes (experiment, user) so a user stays in the same bucket for
as long as the configuration is unchanged.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from feed_engine.config import ExperimentConfig
from feed_engine.services.diversity_service import DiversityCaps
from feed_engine.services.entities import FeedItem
from feed_engine.services.ranking_service import WeightConfig, reweight

logger = logging.getLogger(__name__)

BUCKETS = 10_000


@dataclass(frozen=True)
class Assignment:
    experiment: str
    variant: str
    weights: dict[str, float] = field(default_factory=dict)
    caps: dict[str, int] = field(default_factory=dict)


def _bucket(*parts: str) -> int:
    digest = hashlib.sha256(":".join(parts).encode()).hexdigest()
    return int(digest[:8], 16) % BUCKETS


def assign_variants(user_id: str, experiments: dict[str, ExperimentConfig | dict[str, Any]]) -> list[Assignment]:
    """Variants the user is enrolled in, one per experiment at most.

    An experiment whose configuration does not validate enrols nobody.
    """
    assignments = []
    for name in sorted(experiments):
        try:
            config = ExperimentConfig.model_validate(experiments[name] or {})
        except ValidationError as e:
            logger.warning("Skipping invalid experiment %s: %s", name, e)
            continue
        if not config.variants:
            continue
        if _bucket(name, user_id) >= config.traffic * BUCKETS:
            continue
        variant_names = sorted(config.variants)
        chosen = variant_names[_bucket(name, user_id, "variant") % len(variant_names)]
        treatment = config.variants[chosen]
        assignments.append(Assignment(
            experiment=name,
            variant=chosen,
            weights=dict(treatment.weights),
            caps=dict(treatment.caps),
        ))
    return assignments


def apply_treatments(
    items: list[FeedItem],
    weights: WeightConfig,
    caps: DiversityCaps,
    assignments: list[Assignment],
) -> tuple[list[FeedItem], DiversityCaps]:
    """Apply variant weight and cap overrides to an already ranked list.

    Pure: the input list is never modified and no candidates are fetched.
    Later experiments win when two override the same field.
    """
    weight_overrides: dict[str, float] = {}
    cap_overrides: dict[str, int] = {}
    for assignment in assignments:
        weight_overrides.update(assignment.weights)
        cap_overrides.update(assignment.caps)

    if weight_overrides:
        items = reweight(items, weights.with_overrides(weight_overrides))
    if cap_overrides:
        caps = caps.with_overrides(cap_overrides)
    return items, caps


def describe(assignments: list[Assignment]) -> dict[str, str]:
    return {a.experiment: a.variant for a in assignments}
