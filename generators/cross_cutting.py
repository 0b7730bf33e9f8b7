"""Bundled cross-cutting generators (Bicep + Terraform, azure provider).

A cross-cutting unit renders one module under ``modules/<unit id>/``.
Module inputs are split in two:

  - ``params``: runtime values the orchestrator passes in, either
    literals or outputs wired from other modules (``resourceId``,
    ``subnetId``, ``workspaceId`` ...)
  - everything else in the configuration is inlined at render time
    (``groupId``, ``logCategories``, ``parentResourceType`` ...)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from catalog.capabilities import is_guid
from generators.core_modules import CORE_DEFINITIONS
from generators.rendering import identifier, template_environment
from generators.types import GenerationContext
from schemas.composition import (
    CloudProvider,
    CrossCuttingType,
    ModuleResult,
    ResourceSpec,
    TemplateDialect,
)

_log = logging.getLogger(__name__)

_ENV = template_environment(Path(__file__).parent / "templates")

_FALLBACK_API_VERSION = "2023-01-01"


@dataclass(frozen=True)
class CrossCuttingDefinition:
    template: str
    resource_type: str
    outputs: tuple[str, ...]
    params: tuple[str, ...]
    required: tuple[str, ...] = ()
    parent_inputs: tuple[tuple[str, str], ...] = (("resourceId", "resourceId"),)


CROSS_CUTTING_DEFINITIONS: dict[CrossCuttingType, CrossCuttingDefinition] = {
    CrossCuttingType.PRIVATE_ENDPOINT: CrossCuttingDefinition(
        "private_endpoint",
        "Microsoft.Network/privateEndpoints",
        ("privateEndpointId", "privateEndpointName", "networkInterfaceId"),
        ("resourceId", "subnetId", "privateDnsZoneId"),
        required=("subnetId", "groupId"),
    ),
    CrossCuttingType.DIAGNOSTIC_SETTINGS: CrossCuttingDefinition(
        "diagnostic_settings",
        "Microsoft.Insights/diagnosticSettings",
        ("diagnosticSettingId",),
        ("resourceId", "workspaceId"),
        required=("workspaceId",),
    ),
    CrossCuttingType.RBAC_ASSIGNMENT: CrossCuttingDefinition(
        "role_assignment",
        "Microsoft.Authorization/roleAssignments",
        ("roleAssignmentId",),
        ("resourceId", "principalId", "roleDefinitionId"),
        required=("principalId", "roleDefinitionId"),
    ),
    CrossCuttingType.NETWORK_SECURITY_GROUP: CrossCuttingDefinition(
        "network_security_group",
        "Microsoft.Network/networkSecurityGroups",
        ("nsgId", "nsgName"),
        ("resourceId",),
    ),
    CrossCuttingType.MANAGED_IDENTITY: CrossCuttingDefinition(
        "managed_identity",
        "Microsoft.ManagedIdentity/userAssignedIdentities",
        ("identityId", "principalId", "clientId"),
        ("resourceId",),
    ),
    CrossCuttingType.PRIVATE_DNS_ZONE: CrossCuttingDefinition(
        "private_dns_zone",
        "Microsoft.Network/privateDnsZones",
        ("dnsZoneId", "dnsZoneName"),
        ("resourceId", "vnetId"),
        required=("dnsZoneName",),
    ),
    CrossCuttingType.PUBLIC_IP_ADDRESS: CrossCuttingDefinition(
        "public_ip",
        "Microsoft.Network/publicIPAddresses",
        ("publicIpId", "ipAddress"),
        ("resourceId",),
    ),
    CrossCuttingType.SERVICE_ENDPOINT: CrossCuttingDefinition(
        "service_endpoint",
        "Microsoft.Network/virtualNetworks/subnets",
        ("subnetId",),
        ("vnetName",),
        required=("subnetName", "addressPrefix", "services"),
        parent_inputs=(("vnetName", "resourceName"),),
    ),
}


@dataclass
class TemplateCrossCuttingGenerator:
    type: CrossCuttingType
    dialect: TemplateDialect
    definition: CrossCuttingDefinition
    provider: CloudProvider = CloudProvider.AZURE

    def can_generate(self, spec: ResourceSpec) -> bool:
        """Required keys are enforced by the graph builder; nothing else to check."""
        return True

    def output_names(self) -> list[str]:
        return list(self.definition.outputs)

    def parent_inputs(self) -> dict[str, str]:
        return dict(self.definition.parent_inputs)

    def required_config(self) -> list[str]:
        return list(self.definition.required)

    def generate_core(self, spec: ResourceSpec, context: GenerationContext) -> ModuleResult:
        cfg = dict(spec.configuration)
        parent_kind = cfg.get("parentKind", "")
        parent_def = CORE_DEFINITIONS.get(parent_kind)
        ext = "bicep" if self.dialect == TemplateDialect.BICEP else "tf"
        template = _ENV.get_template(f"{self.definition.template}.{ext}.j2")
        text = template.render(
            spec=spec,
            cfg=cfg,
            context=context,
            parent_api_version=parent_def.api_version if parent_def else _FALLBACK_API_VERSION,
            bicep_rules=_bicep_rules(cfg.get("securityRules") or []),
        )
        path = f"modules/{spec.id}/main.{ext}"
        return ModuleResult(
            files={path: text},
            reference_handle=identifier(spec.id),
            resource_type=self.definition.resource_type,
            output_names=list(self.definition.outputs),
            entry_point=path,
            input_names=list(self.definition.params),
        )


def _bicep_rules(rules: list[dict]) -> list[dict]:
    """Flat rule dicts → ARM shape (``name`` + ``properties``)."""
    shaped = []
    for rule in rules:
        props = {k: v for k, v in rule.items() if k != "name"}
        shaped.append({"name": rule.get("name", f"rule-{len(shaped) + 1}"), "properties": props})
    return shaped


class RoleAssignmentGenerator(TemplateCrossCuttingGenerator):
    """Declines role identifiers the catalog could not resolve to a GUID."""

    def can_generate(self, spec: ResourceSpec) -> bool:
        role = spec.configuration.get("roleDefinitionId")
        if role is not None and not is_guid(str(role)):
            _log.debug("Role assignment %s declined: %r is not a role definition id", spec.id, role)
            return False
        return True


def register_cross_cutting_generators(registry) -> None:
    for cc_type, definition in CROSS_CUTTING_DEFINITIONS.items():
        cls = (
            RoleAssignmentGenerator
            if cc_type == CrossCuttingType.RBAC_ASSIGNMENT
            else TemplateCrossCuttingGenerator
        )
        for dialect in TemplateDialect:
            registry.register_cross_cutting(cls(cc_type, dialect, definition))
