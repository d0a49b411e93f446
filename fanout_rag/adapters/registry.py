"""Adapter Registry.

Explicit name -> factory mapping, built once at process startup and handed
to the pipeline. There is no module-level registry and no registration
decorator; whoever wires the process decides which adapters exist.

Example:
    >>> registry = AdapterRegistry()
    >>> registry.register("pgvector", lambda: build_vector_adapter(settings))
    >>> adapters = registry.build(["pgvector"])
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from fanout_rag.adapters.protocols import SourceAdapterProtocol
from fanout_rag.core.exceptions import AdapterNotRegisteredError, ConfigurationError
from fanout_rag.core.logging import get_logger


logger = get_logger(__name__)

AdapterFactory = Callable[[], SourceAdapterProtocol]


class AdapterRegistry:
    """Mapping from adapter name to a zero-argument factory."""

    def __init__(self) -> None:
        self._factories: dict[str, AdapterFactory] = {}

    def register(self, name: str, factory: AdapterFactory) -> None:
        """Register a factory under ``name``.

        Raises:
            ConfigurationError: If the name is already taken.
        """
        if name in self._factories:
            raise ConfigurationError(
                f"Adapter '{name}' is already registered", field="adapter", value=name
            )
        self._factories[name] = factory

    def names(self) -> list[str]:
        return list(self._factories)

    def create(self, name: str) -> SourceAdapterProtocol:
        """Instantiate one adapter and check its descriptor name."""
        try:
            factory = self._factories[name]
        except KeyError:
            raise AdapterNotRegisteredError(name) from None
        adapter = factory()
        if adapter.descriptor.name != name:
            raise ConfigurationError(
                f"Factory for '{name}' built adapter '{adapter.descriptor.name}'",
                field="adapter",
                value=name,
            )
        return adapter

    def build(self, names: Iterable[str] | None = None) -> list[SourceAdapterProtocol]:
        """Instantiate the named adapters (all registered when empty/None)."""
        selected = list(names or []) or self.names()
        adapters = [self.create(name) for name in selected]
        logger.info("adapters_built", adapters=[a.descriptor.name for a in adapters])
        return adapters

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def __len__(self) -> int:
        return len(self._factories)
