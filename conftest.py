"""Shared fakes and fixtures for the composition engine tests."""
from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field

import pytest

from generators.registry import ModuleRegistry, build_default_registry
from schemas.composition import (
    CloudProvider,
    CompositeRequest,
    CrossCuttingType,
    ModuleResult,
    ResourceSpec,
    TemplateDialect,
)

ECHO_KINDS = ("keyvault", "storage-account", "aks", "vnet", "log-analytics", "managed-identity")


# ═══════════════════════════════════════════════════════════════════
#  Echo generators
# ═══════════════════════════════════════════════════════════════════

def _echo_files(spec: ResourceSpec, dialect: TemplateDialect) -> dict[str, str]:
    ext = "bicep" if dialect == TemplateDialect.BICEP else "tf"
    body = json.dumps(spec.configuration, sort_keys=True, default=str)
    return {f"modules/{spec.id}/main.{ext}": body + "\n"}


@dataclass
class EchoGenerator:
    """Core generator whose module text is its received configuration.

    Each output resolves to the literal ``"<id>:<output>"`` so wiring can
    be asserted on plain strings.
    """
    kind: str
    dialect: TemplateDialect = TemplateDialect.BICEP
    provider: CloudProvider = CloudProvider.AZURE
    outputs: tuple[str, ...] = ("id", "resourceId")
    capabilities: tuple[CrossCuttingType, ...] = ()
    fail_on: tuple[str, ...] = ()
    decline: tuple[str, ...] = ()
    static_outputs: bool = True
    calls: list[ResourceSpec] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def can_generate(self, spec: ResourceSpec) -> bool:
        return spec.id not in self.decline

    def supported_cross_cutting(self) -> list[CrossCuttingType]:
        return list(self.capabilities)

    def output_names(self) -> list[str]:
        return list(self.outputs) if self.static_outputs else []

    def generate_core(self, spec: ResourceSpec, context) -> ModuleResult:
        with self._lock:
            self.calls.append(spec)
        if spec.id in self.fail_on:
            raise RuntimeError(f"boom: {spec.id}")
        return ModuleResult(
            files=_echo_files(spec, self.dialect),
            reference_handle=spec.id.replace("-", "_"),
            resource_type=f"Echo/{self.kind}",
            output_names=list(self.outputs),
            output_values={name: f"{spec.id}:{name}" for name in self.outputs},
        )

    def received(self, resource_id: str) -> dict:
        """Configuration handed to ``generate_core`` for ``resource_id``."""
        for spec in self.calls:
            if spec.id == resource_id:
                return spec.configuration
        raise KeyError(resource_id)


class FixedPathGenerator(EchoGenerator):
    """Writes to one path regardless of the unit id."""

    path: str = "shared/main.bicep"

    def generate_core(self, spec: ResourceSpec, context) -> ModuleResult:
        return ModuleResult({self.path: spec.id}, spec.id, "Fixed", ["id"])


@dataclass
class EchoCrossCutting:
    type: CrossCuttingType
    dialect: TemplateDialect = TemplateDialect.BICEP
    provider: CloudProvider = CloudProvider.AZURE
    outputs: tuple[str, ...] = ("id",)
    inputs_from_parent: dict[str, str] = field(default_factory=lambda: {"parentId": "id"})
    required: tuple[str, ...] = ()
    calls: list[ResourceSpec] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def can_generate(self, spec: ResourceSpec) -> bool:
        return True

    def output_names(self) -> list[str]:
        return list(self.outputs)

    def parent_inputs(self) -> dict[str, str]:
        return dict(self.inputs_from_parent)

    def required_config(self) -> list[str]:
        return list(self.required)

    def generate_core(self, spec: ResourceSpec, context) -> ModuleResult:
        with self._lock:
            self.calls.append(spec)
        return ModuleResult(
            files=_echo_files(spec, self.dialect),
            reference_handle=spec.id.replace("-", "_"),
            resource_type=f"Echo/{self.type.value}",
            output_names=list(self.outputs),
            output_values={name: f"{spec.id}:{name}" for name in self.outputs},
        )

    def received(self, unit_id: str) -> dict:
        for spec in self.calls:
            if spec.id == unit_id:
                return spec.configuration
        raise KeyError(unit_id)


def make_echo_registry(
    dialect: TemplateDialect = TemplateDialect.BICEP, overrides: dict | None = None,
) -> ModuleRegistry:
    """Echo generators for ``ECHO_KINDS`` and every cross-cutting type.

    ``overrides`` maps a kind to a pre-built generator.
    """
    overrides = overrides or {}
    registry = ModuleRegistry()
    for kind in ECHO_KINDS:
        registry.register(overrides.get(kind) or EchoGenerator(kind, dialect))
    for cc_type in CrossCuttingType:
        registry.register_cross_cutting(EchoCrossCutting(cc_type, dialect))
    return registry


def make_resource(rid: str, kind: str = "keyvault", **kwargs) -> ResourceSpec:
    return ResourceSpec(id=rid, name=kwargs.pop("name", rid), resource_kind=kind, **kwargs)


def make_request(*resources: ResourceSpec, **kwargs) -> CompositeRequest:
    kwargs.setdefault("service_name", "svc")
    return CompositeRequest(resources=list(resources), **kwargs)


# ═══════════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def echo_registry() -> ModuleRegistry:
    return make_echo_registry()


@pytest.fixture(scope="session")
def default_registry() -> ModuleRegistry:
    return build_default_registry()
