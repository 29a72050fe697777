"""Generator package — import all generators to trigger @register_generator decorators."""

from feed_engine.generators.tag_affinity import TagAffinityGenerator  # noqa: F401
from feed_engine.generators.collaborative import CollaborativeGenerator  # noqa: F401
from feed_engine.generators.trending import TrendingGenerator  # noqa: F401
from feed_engine.generators.location import LocationGenerator  # noqa: F401
from feed_engine.generators.followed_organization import FollowedOrganizationGenerator  # noqa: F401
from feed_engine.generators.exploration import ExplorationGenerator  # noqa: F401
