"""Central strategy registry."""

from __future__ import annotations

import importlib
import inspect
import logging
import pkgutil
from typing import Iterator

from purger.errors import ConfigurationError
from purger.models.strategy import CleanStrategy

log = logging.getLogger(__name__)

_STRATEGY_PACKAGE = "purger.strategies"


class StrategyRegistry:
    """Stores and retrieves cleaning strategies by id."""

    def __init__(self) -> None:
        self._strategies: dict[str, CleanStrategy] = {}

    def register(self, strategy: CleanStrategy) -> None:
        """Register a strategy instance."""
        if strategy.id in self._strategies:
            log.warning("Strategy '%s' already registered, skipping duplicate", strategy.id)
            return
        self._strategies[strategy.id] = strategy
        log.debug("Registered strategy: %s (%s)", strategy.id, strategy.name)

    def get(self, strategy_id: str) -> CleanStrategy | None:
        return self._strategies.get(strategy_id)

    def get_all(self) -> list[CleanStrategy]:
        return list(self._strategies.values())

    def get_available(self) -> list[CleanStrategy]:
        """Get all strategies that can run on this system."""
        available = []
        for strategy in self._strategies.values():
            try:
                if strategy.is_available():
                    available.append(strategy)
            except Exception:
                log.exception("Error checking availability for strategy '%s'", strategy.id)
        return available

    def require(self, strategy_id: str) -> CleanStrategy:
        """Look up a strategy that must exist and be usable.

        Raises:
            ConfigurationError: If the id is unknown or the strategy is
                unavailable here.
        """
        strategy = self._strategies.get(strategy_id)
        if strategy is None:
            known = ", ".join(sorted(self._strategies)) or "none"
            raise ConfigurationError(f"Unknown clean strategy '{strategy_id}' (known: {known})")
        reason = strategy.unavailable_reason
        if reason is not None:
            raise ConfigurationError(f"Clean strategy '{strategy_id}' is unavailable: {reason}")
        return strategy

    def __len__(self) -> int:
        return len(self._strategies)

    def __iter__(self) -> Iterator[CleanStrategy]:
        return iter(self._strategies.values())

    def __contains__(self, strategy_id: str) -> bool:
        return strategy_id in self._strategies


def _find_strategies_in_module(module) -> list[type[CleanStrategy]]:
    """Find all concrete CleanStrategy subclasses defined in a module."""
    return [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, CleanStrategy)
        and obj is not CleanStrategy
        and not inspect.isabstract(obj)
        and obj.__module__ == module.__name__
    ]


def _load_builtin_strategies() -> list[type[CleanStrategy]]:
    package = importlib.import_module(_STRATEGY_PACKAGE)
    found: list[type[CleanStrategy]] = []
    for info in pkgutil.iter_modules(package.__path__, prefix=f"{_STRATEGY_PACKAGE}."):
        try:
            module = importlib.import_module(info.name)
        except Exception:
            log.exception("Failed to load strategy module: %s", info.name)
            continue
        found.extend(_find_strategies_in_module(module))
    return found


def load_strategies(registry: StrategyRegistry) -> None:
    """Discover and register the built-in strategies."""
    for cls in _load_builtin_strategies():
        try:
            registry.register(cls())
        except Exception:
            log.exception("Failed to instantiate strategy: %s", cls.__name__)
    log.debug("Loaded %d strategies", len(registry))


def default_registry() -> StrategyRegistry:
    """A registry holding every built-in strategy."""
    registry = StrategyRegistry()
    load_strategies(registry)
    return registry
