# schemas/composition.py — Domain types for composite infrastructure generation.
"""Typed domain model for the composition engine.

Every value the engine consumes or produces is defined here:

  - ``ResourceSpec``:            one resource in a composite request
  - ``ResourceDependency``:      an explicit user-declared edge
  - ``CrossCuttingAttachment``:  one cross-cutting concern on one resource
  - ``ComplianceMandate``:       a rule forcing a concern onto resources
  - ``CompositeRequest``:        the full declarative input
  - ``ModuleResult``:            what a generator hands back for one unit
  - ``UnitResult`` / ``CompositeResult``: the engine's output

All entities are constructed fresh per invocation.  Nothing here holds
state between runs.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ══════════════════════════════════════════════════════════════════
# Enums
# ══════════════════════════════════════════════════════════════════

class CrossCuttingType(str, Enum):
    PRIVATE_ENDPOINT = "PrivateEndpoint"
    DIAGNOSTIC_SETTINGS = "DiagnosticSettings"
    RBAC_ASSIGNMENT = "RBACAssignment"
    NETWORK_SECURITY_GROUP = "NetworkSecurityGroup"
    MANAGED_IDENTITY = "ManagedIdentity"
    PRIVATE_DNS_ZONE = "PrivateDNSZone"
    PUBLIC_IP_ADDRESS = "PublicIPAddress"
    SERVICE_ENDPOINT = "ServiceEndpoint"

    @property
    def slug(self) -> str:
        """Path-safe short name used in unit ids and module directories."""
        return _CROSS_CUTTING_SLUGS[self]


_CROSS_CUTTING_SLUGS: dict[CrossCuttingType, str] = {
    CrossCuttingType.PRIVATE_ENDPOINT: "private-endpoint",
    CrossCuttingType.DIAGNOSTIC_SETTINGS: "diagnostics",
    CrossCuttingType.RBAC_ASSIGNMENT: "rbac",
    CrossCuttingType.NETWORK_SECURITY_GROUP: "nsg",
    CrossCuttingType.MANAGED_IDENTITY: "identity",
    CrossCuttingType.PRIVATE_DNS_ZONE: "private-dns",
    CrossCuttingType.PUBLIC_IP_ADDRESS: "public-ip",
    CrossCuttingType.SERVICE_ENDPOINT: "service-endpoint",
}


class DependencyKind(str, Enum):
    CREATION_ORDER = "CreationOrder"
    OUTPUT_TO_INPUT = "OutputToInput"
    DEPLOYED_INTO = "DeployedInto"
    RESOURCE_REFERENCE = "ResourceReference"


class TemplateDialect(str, Enum):
    BICEP = "bicep"
    TERRAFORM = "terraform"


class CloudProvider(str, Enum):
    AZURE = "azure"
    AWS = "aws"
    GCP = "gcp"
    ON_PREMISES = "onpremises"


class Platform(str, Enum):
    AKS = "AKS"
    CONTAINER_APPS = "ContainerApps"
    APP_SERVICE = "AppService"
    FUNCTIONS = "Functions"
    VIRTUAL_MACHINES = "VirtualMachines"
    NETWORKING = "Networking"
    STORAGE = "Storage"
    DATABASE = "Database"
    SECURITY = "Security"
    MONITORING = "Monitoring"


class ArchitecturePattern(str, Enum):
    CUSTOM = "Custom"
    THREE_TIER = "ThreeTier"
    LANDING_ZONE = "LandingZone"
    AKS_WITH_VNET = "AksWithVNet"
    MICROSERVICES = "Microservices"
    SERVERLESS = "Serverless"
    DATA_PLATFORM = "DataPlatform"
    SCCA_COMPLIANT = "SccaCompliant"


class UnitStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class FailureKind(str, Enum):
    """Why a composite run did not fully succeed.

    ``generation`` is the only kind that still carries partial output;
    every other kind means nothing was generated.
    """
    VALIDATION = "validation"
    CYCLE = "cycle"
    COMPLIANCE = "compliance"
    GENERATION = "generation"
    ASSEMBLY = "assembly"


# ══════════════════════════════════════════════════════════════════
# Request side
# ══════════════════════════════════════════════════════════════════

@dataclass
class ResourceSpec:
    """One resource within a composite request.

    Disabled resources never become generation units, but their id stays
    reserved so that references to them fail with a precise message.
    """
    id: str
    name: str
    resource_kind: str
    platform: Platform | None = None
    parent_id: str | None = None
    configuration: dict[str, Any] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    enabled: bool = True


@dataclass
class ResourceDependency:
    """Explicit edge: ``target_id`` must exist before ``source_id``.

    ``output_name`` / ``input_name`` forward one of the target's outputs
    into the source's configuration.  Both are mandatory for
    ``OutputToInput`` edges.
    """
    source_id: str
    target_id: str
    kind: DependencyKind = DependencyKind.CREATION_ORDER
    output_name: str | None = None
    input_name: str | None = None

    @property
    def is_wired(self) -> bool:
        return bool(self.output_name and self.input_name)


@dataclass(frozen=True)
class OutputReference:
    """Pull ``output_name`` from resource ``target_id`` into ``input_name``."""
    target_id: str
    output_name: str
    input_name: str


@dataclass
class CrossCuttingAttachment:
    type: CrossCuttingType
    parent_resource_id: str
    config: dict[str, Any] = field(default_factory=dict)
    references: list[OutputReference] = field(default_factory=list)
    name: str | None = None
    origin: str = "explicit"   # explicit | mandate

    def __post_init__(self) -> None:
        self.type = CrossCuttingType(self.type)

    @property
    def unit_id(self) -> str:
        base = f"{self.parent_resource_id}-{self.type.slug}"
        return f"{base}-{self.name}" if self.name else base


@dataclass
class ComplianceMandate:
    """Force ``type`` onto every in-scope resource.

    Scope is ``kinds`` ∩ ``resource_ids`` (an empty list matches all).
    A strict mandate fails the request when an in-scope resource cannot
    support the concern; a non-strict one applies only where supported.
    """
    type: CrossCuttingType
    config: dict[str, Any] = field(default_factory=dict)
    references: list[OutputReference] = field(default_factory=list)
    kinds: list[str] = field(default_factory=list)
    resource_ids: list[str] = field(default_factory=list)
    strict: bool = True

    def __post_init__(self) -> None:
        self.type = CrossCuttingType(self.type)


@dataclass
class NetworkOverrides:
    private_endpoint_subnet_id: str | None = None
    vnet_id: str | None = None
    vnet_resource_id: str | None = None


@dataclass
class SecurityOverrides:
    private_endpoints_mandatory: bool = False
    diagnostics_mandatory: bool = False
    diagnostics_workspace_id: str | None = None
    diagnostics_workspace_resource_id: str | None = None
    rbac_principal_id: str | None = None
    rbac_role: str | None = None
    rbac_principal_type: str = "ServicePrincipal"
    managed_identity_mandatory: bool = False
    mandates: list[ComplianceMandate] = field(default_factory=list)


@dataclass
class CompositeRequest:
    service_name: str
    resources: list[ResourceSpec] = field(default_factory=list)
    dependencies: list[ResourceDependency] = field(default_factory=list)
    attachments: list[CrossCuttingAttachment] = field(default_factory=list)
    pattern: ArchitecturePattern = ArchitecturePattern.CUSTOM
    dialect: TemplateDialect = TemplateDialect.BICEP
    provider: CloudProvider = CloudProvider.AZURE
    region: str = "eastus"
    environment: str = "dev"
    tags: dict[str, str] = field(default_factory=dict)
    network: NetworkOverrides | None = None
    security: SecurityOverrides | None = None
    description: str = ""


# ══════════════════════════════════════════════════════════════════
# Result side
# ══════════════════════════════════════════════════════════════════

@dataclass
class ModuleResult:
    """What a generator produces for one unit.

    ``output_values`` may map an output name to the exact expression other
    modules should use; when absent the dialect's default expression
    (built from ``reference_handle``) is used.  ``input_names`` lists the
    parameters the module accepts; ``None`` means every configuration key.
    """
    files: dict[str, str]
    reference_handle: str
    resource_type: str
    output_names: list[str] = field(default_factory=list)
    output_values: dict[str, str] = field(default_factory=dict)
    entry_point: str | None = None
    input_names: list[str] | None = None


@dataclass
class UnitResult:
    unit_id: str
    resource_type: str
    success: bool
    status: UnitStatus
    error: str | None = None
    module_path: str | None = None
    output_names: list[str] = field(default_factory=list)
    unit_kind: str = "core"
    parent_id: str | None = None


@dataclass
class CompositeResult:
    files: dict[str, str] = field(default_factory=dict)
    unit_results: list[UnitResult] = field(default_factory=list)
    main_file_path: str | None = None
    module_paths: list[str] = field(default_factory=list)
    success: bool = False
    error_message: str | None = None
    failure_kind: FailureKind | None = None
    errors: list[str] = field(default_factory=list)
    execution_order: list[str] = field(default_factory=list)

    @property
    def generated_nothing(self) -> bool:
        """True for request, cycle, compliance and assembly failures."""
        return not self.files and self.failure_kind not in (None, FailureKind.GENERATION)

    @property
    def succeeded_units(self) -> list[str]:
        return [u.unit_id for u in self.unit_results if u.status == UnitStatus.SUCCEEDED]

    @property
    def skipped_units(self) -> list[str]:
        return [u.unit_id for u in self.unit_results if u.status == UnitStatus.SKIPPED]

    @property
    def failed_units(self) -> list[str]:
        return [u.unit_id for u in self.unit_results if u.status == UnitStatus.FAILED]
