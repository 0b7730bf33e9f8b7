"""Generator contracts consumed by the composition engine.

Two narrow descriptor shapes, both satisfied structurally (no base class):

  ResourceGenerator      keyed by (resource kind, dialect, provider)
  CrossCuttingGenerator  keyed by (cross-cutting type, dialect, provider)

``output_names()`` is static so that ``OutputToInput`` edges can be
checked before anything is generated.  A generator that only learns its
outputs from configuration returns ``[]`` and the check moves to the
composer.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from schemas.composition import (
    CloudProvider,
    CrossCuttingType,
    ModuleResult,
    ResourceSpec,
    TemplateDialect,
)


@dataclass(frozen=True)
class GenerationContext:
    """Request-level values every generator may read."""
    service_name: str
    dialect: TemplateDialect
    provider: CloudProvider
    region: str
    environment: str
    tags: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class ResourceGenerator(Protocol):
    kind: str
    dialect: TemplateDialect
    provider: CloudProvider

    def can_generate(self, spec: ResourceSpec) -> bool: ...

    def generate_core(self, spec: ResourceSpec, context: GenerationContext) -> ModuleResult: ...

    def supported_cross_cutting(self) -> list[CrossCuttingType]: ...

    def output_names(self) -> list[str]: ...


@runtime_checkable
class CrossCuttingGenerator(Protocol):
    type: CrossCuttingType
    dialect: TemplateDialect
    provider: CloudProvider

    def can_generate(self, spec: ResourceSpec) -> bool: ...

    def generate_core(self, spec: ResourceSpec, context: GenerationContext) -> ModuleResult: ...

    def output_names(self) -> list[str]: ...

    def parent_inputs(self) -> dict[str, str]:
        """Input name → parent output name wired from the owning resource."""
        ...

    def required_config(self) -> list[str]: ...
