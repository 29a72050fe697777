"""Generator registry — maps strategy names to candidate generator classes."""

import logging
from typing import Type

from feed_engine.generators.base import BaseGenerator

logger = logging.getLogger(__name__)

# Strategy name -> generator class mapping
_REGISTRY: dict[str, Type[BaseGenerator]] = {}


def register_generator(name: str):
    """Decorator to register a generator class under a strategy name."""
    def decorator(cls: Type[BaseGenerator]):
        cls.name = name
        _REGISTRY[name] = cls
        logger.debug(f"Registered candidate generator: {name}")
        return cls
    return decorator


def get_generator_class(name: str) -> Type[BaseGenerator] | None:
    """Look up the generator class for a strategy name."""
    return _REGISTRY.get(name)


def list_generators() -> list[str]:
    """List all registered strategies, in registration order."""
    return list(_REGISTRY.keys())


def build_generators(index, redis_client, names: list[str] | None = None) -> list[BaseGenerator]:
    """Instantiate the named generators (all registered ones by default)."""
    generators = []
    for name in names or list_generators():
        cls = get_generator_class(name)
        if cls is None:
            logger.warning(f"Unknown candidate generator requested: {name}")
            continue
        generators.append(cls(index, redis_client))
    return generators
