"""Component registry for the agent fleet engine.

Consensus algorithms and coordination modes register themselves by
*category* and *name* with ``@registry.register(...)``.  The engine looks the
handler up from the enum value instead of branching on it, so adding an
algorithm or a mode is purely additive.

A module-level ``registry`` holds the built-in handlers.  Tests or isolated
runs can build their own ``ComponentRegistry``.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONSENSUS = "consensus"
COORDINATION = "coordination"


def _key(name: str | Enum) -> str:
    return name.value if isinstance(name, Enum) else name


class ComponentRegistry:
    """Service locator keyed by ``(category, name)`` pairs.

    Names may be given as strings or as enum members; enum members are keyed
    by their value.

    Usage::

        @registry.register("consensus", ConsensusAlgorithm.MAJORITY)
        class MajorityAlgorithm(BaseConsensusAlgorithm):
            ...

        algorithm = registry.create("consensus", ConsensusAlgorithm.MAJORITY)
    """

    def __init__(self) -> None:
        # category -> name -> component (class or instance)
        self._components: dict[str, dict[str, Any]] = {}

    # ------------------------------------------------------------------ #
    #  Registration                                                       #
    # ------------------------------------------------------------------ #

    def register(
        self,
        category: str,
        name: str | Enum,
        *,
        overwrite: bool = False,
    ) -> Callable[[type[T]], type[T]]:
        """Decorator that registers the decorated class under ``(category, name)``.

        Raises ``ValueError`` on duplicates unless *overwrite* is ``True``.
        """

        def decorator(cls: type[T]) -> type[T]:
            self._set(category, _key(name), cls, overwrite=overwrite)
            return cls

        return decorator

    def register_instance(
        self,
        category: str,
        name: str | Enum,
        instance: Any,
        *,
        overwrite: bool = False,
    ) -> None:
        """Imperatively register a pre-built *instance* (or class)."""
        self._set(category, _key(name), instance, overwrite=overwrite)

    # ------------------------------------------------------------------ #
    #  Lookup                                                              #
    # ------------------------------------------------------------------ #

    def get(self, category: str, name: str | Enum) -> Any:
        """Return the component under ``(category, name)``; ``KeyError`` if absent."""
        key = _key(name)
        try:
            return self._components[category][key]
        except KeyError:
            available = self.list_category(category)
            raise KeyError(
                f"Component '{category}/{key}' not registered. "
                f"Available in '{category}': {available}"
            ) from None

    def create(self, category: str, name: str | Enum, *args: Any, **kwargs: Any) -> Any:
        """Instantiate a registered class (instances are returned as-is)."""
        component = self.get(category, name)
        if isinstance(component, type):
            return component(*args, **kwargs)
        return component

    def has(self, category: str, name: str | Enum) -> bool:
        return _key(name) in self._components.get(category, {})

    def list_category(self, category: str) -> list[str]:
        """Return the names registered under *category*."""
        return list(self._components.get(category, {}).keys())

    # ------------------------------------------------------------------ #
    #  Removal                                                             #
    # ------------------------------------------------------------------ #

    def unregister(self, category: str, name: str | Enum) -> Any:
        """Remove and return the component. Raises ``KeyError`` if missing."""
        key = _key(name)
        try:
            return self._components[category].pop(key)
        except KeyError:
            raise KeyError(f"Cannot unregister '{category}/{key}': not found.") from None

    # ------------------------------------------------------------------ #
    #  Internal helpers                                                    #
    # ------------------------------------------------------------------ #

    def _set(self, category: str, name: str, component: Any, *, overwrite: bool) -> None:
        bucket = self._components.setdefault(category, {})
        if not overwrite and name in bucket:
            raise ValueError(
                f"Component '{category}/{name}' is already registered as "
                f"{bucket[name]!r}. Pass overwrite=True to replace."
            )
        bucket[name] = component
        logger.debug("Registered %s/%s: %r", category, name, component)

    def __repr__(self) -> str:
        parts = [f"{cat}({len(ns)})" for cat, ns in self._components.items()]
        return f"<ComponentRegistry [{', '.join(parts)}]>"

    def __contains__(self, key: tuple[str, str | Enum]) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        category, name = key
        return self.has(category, name)


# ===================================================================== #
#  Global singleton                                                      #
# ===================================================================== #

registry = ComponentRegistry()
"""Module-level registry holding the built-in algorithms and modes."""
