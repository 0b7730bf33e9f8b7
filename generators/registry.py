"""Resource Module Registry — flat registration map of generator descriptors.

Usage::

    registry = ModuleRegistry()
    registry.register(MyKeyVaultGenerator())
    gen = registry.lookup("keyvault", TemplateDialect.BICEP, CloudProvider.AZURE)

A ``None`` lookup is never skipped by the engine; it becomes a validation
error for the resource that needed it.
"""
from __future__ import annotations

import logging

from schemas.composition import CloudProvider, CrossCuttingType, TemplateDialect
from generators.types import CrossCuttingGenerator, ResourceGenerator

_log = logging.getLogger(__name__)


def _key(name: str, dialect: TemplateDialect, provider: CloudProvider) -> tuple[str, str, str]:
    return (
        str(name).strip().lower(),
        TemplateDialect(dialect).value,
        CloudProvider(provider).value,
    )


class ModuleRegistry:
    """Generators keyed by ``(kind | type, dialect, provider)``.

    Populated once at startup, read-only afterwards.  Registering the same
    key twice is a programming error and raises ``ValueError``.
    """

    def __init__(self) -> None:
        self._resources: dict[tuple[str, str, str], ResourceGenerator] = {}
        self._cross_cutting: dict[tuple[str, str, str], CrossCuttingGenerator] = {}

    # ── Registration ──────────────────────────────────────────────

    def register(self, generator: ResourceGenerator) -> None:
        key = _key(generator.kind, generator.dialect, generator.provider)
        if key in self._resources:
            raise ValueError(f"Duplicate resource generator for {key}")
        self._resources[key] = generator

    def register_cross_cutting(self, generator: CrossCuttingGenerator) -> None:
        key = _key(CrossCuttingType(generator.type).value, generator.dialect, generator.provider)
        if key in self._cross_cutting:
            raise ValueError(f"Duplicate cross-cutting generator for {key}")
        self._cross_cutting[key] = generator

    # ── Lookup ────────────────────────────────────────────────────

    def lookup(
        self, kind: str, dialect: TemplateDialect, provider: CloudProvider,
    ) -> ResourceGenerator | None:
        return self._resources.get(_key(kind, dialect, provider))

    def lookup_cross_cutting(
        self, cc_type: CrossCuttingType, dialect: TemplateDialect, provider: CloudProvider,
    ) -> CrossCuttingGenerator | None:
        return self._cross_cutting.get(_key(CrossCuttingType(cc_type).value, dialect, provider))

    def kinds(self, dialect: TemplateDialect, provider: CloudProvider) -> list[str]:
        d, p = TemplateDialect(dialect).value, CloudProvider(provider).value
        return sorted(k for k, kd, kp in self._resources if kd == d and kp == p)

    def __len__(self) -> int:
        return len(self._resources) + len(self._cross_cutting)


def build_default_registry(catalog=None) -> ModuleRegistry:
    """Registry holding the bundled Bicep and Terraform generators (azure)."""
    from catalog.capabilities import DEFAULT_CATALOG
    from generators.core_modules import register_core_generators
    from generators.cross_cutting import register_cross_cutting_generators

    catalog = catalog or DEFAULT_CATALOG
    registry = ModuleRegistry()
    register_core_generators(registry, catalog)
    register_cross_cutting_generators(registry)
    _log.debug("Default registry built with %d generators", len(registry))
    return registry
