"""JSON wire format for composite requests and results.

The JSON form mirrors the domain model with camelCase keys::

    {
      "serviceName": "orders",
      "dialect": "bicep",
      "resources": [{"id": "kv1", "resourceKind": "keyvault"}],
      "security": {"privateEndpointsMandatory": true},
      "network": {"privateEndpointSubnetId": "/subscriptions/.../subnets/pe"}
    }

Unknown keys are rejected.  ``region``, ``environment`` and ``dialect``
fall back to ``EngineSettings`` when omitted; a resource ``name`` falls
back to its ``id``.
"""
from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from engine.errors import RequestValidationError
from engine.settings import EngineSettings
from schemas.composition import (
    ArchitecturePattern,
    CloudProvider,
    ComplianceMandate,
    CompositeRequest,
    CompositeResult,
    CrossCuttingAttachment,
    CrossCuttingType,
    DependencyKind,
    FailureKind,
    NetworkOverrides,
    OutputReference,
    Platform,
    ResourceDependency,
    ResourceSpec,
    SecurityOverrides,
    TemplateDialect,
    UnitStatus,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ══════════════════════════════════════════════════════════════════
# Request
# ══════════════════════════════════════════════════════════════════

class ResourceSpecModel(_WireModel):
    id: str = Field(min_length=1)
    name: str | None = None
    resource_kind: str = Field(min_length=1)
    platform: Platform | None = None
    parent_id: str | None = None
    configuration: dict[str, Any] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True

    def to_domain(self) -> ResourceSpec:
        return ResourceSpec(
            id=self.id,
            name=self.name or self.id,
            resource_kind=self.resource_kind,
            platform=self.platform,
            parent_id=self.parent_id,
            configuration=dict(self.configuration),
            tags=dict(self.tags),
            enabled=self.enabled,
        )


class DependencyModel(_WireModel):
    source_id: str
    target_id: str
    kind: DependencyKind = DependencyKind.CREATION_ORDER
    output_name: str | None = None
    input_name: str | None = None

    def to_domain(self) -> ResourceDependency:
        return ResourceDependency(
            self.source_id, self.target_id, self.kind, self.output_name, self.input_name,
        )


class OutputReferenceModel(_WireModel):
    target_id: str
    output_name: str
    input_name: str

    def to_domain(self) -> OutputReference:
        return OutputReference(self.target_id, self.output_name, self.input_name)


class AttachmentModel(_WireModel):
    type: CrossCuttingType
    parent_resource_id: str
    config: dict[str, Any] = Field(default_factory=dict)
    references: list[OutputReferenceModel] = Field(default_factory=list)
    name: str | None = None

    def to_domain(self) -> CrossCuttingAttachment:
        return CrossCuttingAttachment(
            type=self.type,
            parent_resource_id=self.parent_resource_id,
            config=dict(self.config),
            references=[r.to_domain() for r in self.references],
            name=self.name,
        )


class MandateModel(_WireModel):
    type: CrossCuttingType
    config: dict[str, Any] = Field(default_factory=dict)
    references: list[OutputReferenceModel] = Field(default_factory=list)
    kinds: list[str] = Field(default_factory=list)
    resource_ids: list[str] = Field(default_factory=list)
    strict: bool = True

    def to_domain(self) -> ComplianceMandate:
        return ComplianceMandate(
            type=self.type,
            config=dict(self.config),
            references=[r.to_domain() for r in self.references],
            kinds=list(self.kinds),
            resource_ids=list(self.resource_ids),
            strict=self.strict,
        )


class NetworkModel(_WireModel):
    private_endpoint_subnet_id: str | None = None
    vnet_id: str | None = None
    vnet_resource_id: str | None = None

    def to_domain(self) -> NetworkOverrides:
        return NetworkOverrides(self.private_endpoint_subnet_id, self.vnet_id, self.vnet_resource_id)


class SecurityModel(_WireModel):
    private_endpoints_mandatory: bool = False
    diagnostics_mandatory: bool = False
    diagnostics_workspace_id: str | None = None
    diagnostics_workspace_resource_id: str | None = None
    rbac_principal_id: str | None = None
    rbac_role: str | None = None
    rbac_principal_type: str = "ServicePrincipal"
    managed_identity_mandatory: bool = False
    mandates: list[MandateModel] = Field(default_factory=list)

    def to_domain(self) -> SecurityOverrides:
        return SecurityOverrides(
            private_endpoints_mandatory=self.private_endpoints_mandatory,
            diagnostics_mandatory=self.diagnostics_mandatory,
            diagnostics_workspace_id=self.diagnostics_workspace_id,
            diagnostics_workspace_resource_id=self.diagnostics_workspace_resource_id,
            rbac_principal_id=self.rbac_principal_id,
            rbac_role=self.rbac_role,
            rbac_principal_type=self.rbac_principal_type,
            managed_identity_mandatory=self.managed_identity_mandatory,
            mandates=[m.to_domain() for m in self.mandates],
        )


class CompositeRequestModel(_WireModel):
    service_name: str = Field(min_length=1)
    resources: list[ResourceSpecModel] = Field(default_factory=list)
    dependencies: list[DependencyModel] = Field(default_factory=list)
    attachments: list[AttachmentModel] = Field(default_factory=list)
    pattern: ArchitecturePattern = ArchitecturePattern.CUSTOM
    dialect: TemplateDialect | None = None
    provider: CloudProvider = CloudProvider.AZURE
    region: str | None = None
    environment: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
    network: NetworkModel | None = None
    security: SecurityModel | None = None
    description: str = ""

    @field_validator("dialect", "provider", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    def to_domain(self, settings: EngineSettings | None = None) -> CompositeRequest:
        settings = settings or EngineSettings.from_env()
        return CompositeRequest(
            service_name=self.service_name,
            resources=[r.to_domain() for r in self.resources],
            dependencies=[d.to_domain() for d in self.dependencies],
            attachments=[a.to_domain() for a in self.attachments],
            pattern=self.pattern,
            dialect=self.dialect or settings.default_dialect,
            provider=self.provider,
            region=self.region or settings.default_region,
            environment=self.environment or settings.default_environment,
            tags=dict(self.tags),
            network=self.network.to_domain() if self.network else None,
            security=self.security.to_domain() if self.security else None,
            description=self.description,
        )


def load_request(
    payload: dict[str, Any] | str | bytes, settings: EngineSettings | None = None,
) -> CompositeRequest:
    """Parse a JSON document (text or already-decoded dict) into a request.

    Raises ``RequestValidationError`` listing every schema problem.
    """
    try:
        if isinstance(payload, (str, bytes)):
            model = CompositeRequestModel.model_validate_json(payload)
        else:
            model = CompositeRequestModel.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError([
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]) from exc
    return model.to_domain(settings)


# ══════════════════════════════════════════════════════════════════
# Result
# ══════════════════════════════════════════════════════════════════

class UnitResultModel(_WireModel):
    unit_id: str
    resource_type: str
    success: bool
    status: UnitStatus
    error: str | None = None
    module_path: str | None = None
    output_names: list[str] = Field(default_factory=list)
    unit_kind: str = "core"
    parent_id: str | None = None


class CompositeResultModel(_WireModel):
    success: bool
    failure_kind: FailureKind | None = None
    error_message: str | None = None
    errors: list[str] = Field(default_factory=list)
    main_file_path: str | None = None
    module_paths: list[str] = Field(default_factory=list)
    execution_order: list[str] = Field(default_factory=list)
    unit_results: list[UnitResultModel] = Field(default_factory=list)
    files: dict[str, str] | None = None


def dump_result(result: CompositeResult, include_files: bool = True) -> dict[str, Any]:
    """JSON-ready dict (camelCase keys) for a ``CompositeResult``."""
    model = CompositeResultModel(
        success=result.success,
        failure_kind=result.failure_kind,
        error_message=result.error_message,
        errors=list(result.errors),
        main_file_path=result.main_file_path,
        module_paths=list(result.module_paths),
        execution_order=list(result.execution_order),
        unit_results=[UnitResultModel.model_validate(asdict(u)) for u in result.unit_results],
        files=dict(result.files) if include_files else None,
    )
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def dumps_result(result: CompositeResult, include_files: bool = True) -> str:
    return json.dumps(dump_result(result, include_files), indent=2)
