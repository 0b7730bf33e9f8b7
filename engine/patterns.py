"""Architecture patterns expanded into concrete resource specs.

Every preset uses fixed resource ids and names derived from the request's
``service_name``.  Explicit request resources are appended after the
preset ones, so they may reference preset ids (``parent_id="vnet"``).
"""
from __future__ import annotations

import logging
from typing import Callable

from schemas.composition import (
    ArchitecturePattern,
    CompositeRequest,
    Platform,
    ResourceSpec,
)

_log = logging.getLogger(__name__)


# ── Subnet and NSG rule presets ───────────────────────────────────

def _subnet(name: str, prefix: str) -> dict:
    return {"name": name, "addressPrefix": prefix}


def _rule(name: str, priority: int, direction: str, access: str, port: str,
          source: str = "*", destination: str = "*", protocol: str = "Tcp") -> dict:
    return {
        "name": name,
        "priority": priority,
        "direction": direction,
        "access": access,
        "protocol": protocol,
        "sourcePortRange": "*",
        "destinationPortRange": port,
        "sourceAddressPrefix": source,
        "destinationAddressPrefix": destination,
    }


_DENY_ALL_INBOUND = _rule("Deny-All-Inbound", 4096, "Inbound", "Deny", "*", protocol="*")
_ALLOW_LB = _rule("Allow-AzureLoadBalancer", 200, "Inbound", "Allow", "*", source="AzureLoadBalancer", protocol="*")
_ALLOW_AZURE_CLOUD = _rule(
    "Allow-AzureCloud-Outbound", 200, "Outbound", "Allow", "443", destination="AzureCloud",
)

THREE_TIER_SUBNETS = [
    _subnet("web-tier", "10.0.1.0/24"),
    _subnet("app-tier", "10.0.2.0/24"),
    _subnet("data-tier", "10.0.3.0/24"),
]

AKS_SUBNETS = [
    _subnet("aks-system", "10.0.4.0/23"),
    _subnet("aks-user", "10.0.8.0/22"),
    _subnet("aks-ingress", "10.0.12.0/24"),
]

LANDING_ZONE_SUBNETS = [
    _subnet("management", "10.0.0.0/26"),
    _subnet("shared-services", "10.0.0.64/26"),
    _subnet("workload", "10.0.1.0/24"),
    _subnet("AzureFirewallSubnet", "10.0.255.0/26"),
    _subnet("AzureBastionSubnet", "10.0.255.64/26"),
]

WEB_TIER_RULES = [
    _rule("Allow-HTTP-Inbound", 100, "Inbound", "Allow", "80", source="Internet"),
    _rule("Allow-HTTPS-Inbound", 110, "Inbound", "Allow", "443", source="Internet"),
    _ALLOW_LB,
    _DENY_ALL_INBOUND,
    _rule("Allow-AppTier-Outbound", 100, "Outbound", "Allow", "8080", destination="10.0.2.0/24"),
    _ALLOW_AZURE_CLOUD,
]

APP_TIER_RULES = [
    _rule("Allow-WebTier-Inbound", 100, "Inbound", "Allow", "8080", source="10.0.1.0/24"),
    _ALLOW_LB,
    _DENY_ALL_INBOUND,
    _rule("Allow-DataTier-Outbound", 100, "Outbound", "Allow", "1433", destination="10.0.3.0/24"),
    _rule("Allow-DataTier-Redis", 110, "Outbound", "Allow", "6380", destination="10.0.3.0/24"),
    _ALLOW_AZURE_CLOUD,
]

DATA_TIER_RULES = [
    _rule("Allow-AppTier-Sql", 100, "Inbound", "Allow", "1433", source="10.0.2.0/24"),
    _rule("Allow-AppTier-Redis", 110, "Inbound", "Allow", "6380", source="10.0.2.0/24"),
    _DENY_ALL_INBOUND,
]


# ── Presets ───────────────────────────────────────────────────────

def _vnet(service: str, subnets: list[dict]) -> ResourceSpec:
    return ResourceSpec(
        id="vnet",
        name=f"{service}-vnet",
        resource_kind="vnet",
        platform=Platform.NETWORKING,
        configuration={"addressSpace": "10.0.0.0/16", "subnets": [dict(s) for s in subnets]},
    )


def _identity(service: str) -> ResourceSpec:
    return ResourceSpec("identity", f"{service}-identity", "managed-identity", Platform.SECURITY)


def _acr(service: str, **extra) -> ResourceSpec:
    # Registry names allow alphanumerics only
    return ResourceSpec(
        "acr", f"{service.replace('-', '')}acr", "container-registry", Platform.STORAGE,
        configuration={"sku": "Premium", **extra},
    )


def _keyvault(service: str, **config) -> ResourceSpec:
    return ResourceSpec("keyvault", f"{service}-kv", "keyvault", Platform.SECURITY, configuration=config)


def _app_insights(service: str, **config) -> ResourceSpec:
    return ResourceSpec(
        "app-insights", f"{service}-ai", "application-insights", Platform.MONITORING,
        configuration=config,
    )


def three_tier(service: str) -> list[ResourceSpec]:
    nsgs = [
        ResourceSpec(
            id=f"nsg-{tier}",
            name=f"{service}-nsg-{tier}",
            resource_kind="nsg",
            platform=Platform.NETWORKING,
            parent_id="vnet",
            configuration={"subnetName": f"{tier}-tier", "securityRules": [dict(r) for r in rules]},
        )
        for tier, rules in (("web", WEB_TIER_RULES), ("app", APP_TIER_RULES), ("data", DATA_TIER_RULES))
    ]
    return [_vnet(service, THREE_TIER_SUBNETS)] + nsgs


def aks_with_vnet(service: str) -> list[ResourceSpec]:
    return [
        _vnet(service, AKS_SUBNETS),
        _identity(service),
        _acr(service, adminEnabled=False),
        _keyvault(service, enableRbacAuthorization=True, enableSoftDelete=True, softDeleteRetentionInDays=90),
        ResourceSpec(
            id="aks",
            name=f"{service}-aks",
            resource_kind="aks",
            platform=Platform.AKS,
            parent_id="vnet",
            configuration={
                "nodeCount": 3,
                "vmSize": "Standard_D4s_v3",
                "enableWorkloadIdentity": True,
                "enablePrivateCluster": True,
                "systemSubnetName": "aks-system",
                "userSubnetName": "aks-user",
            },
        ),
    ]


def landing_zone(service: str) -> list[ResourceSpec]:
    return [
        _vnet(service, LANDING_ZONE_SUBNETS),
        ResourceSpec(
            "log-analytics", f"{service}-logs", "log-analytics", Platform.MONITORING,
            configuration={"retentionInDays": 90, "sku": "PerGB2018"},
        ),
        _keyvault(service, enableRbacAuthorization=True, enableSoftDelete=True),
        _identity(service),
        _acr(service),
        ResourceSpec(
            id="aks",
            name=f"{service}-aks",
            resource_kind="aks",
            platform=Platform.AKS,
            parent_id="vnet",
            configuration={"nodeCount": 3, "enableWorkloadIdentity": True, "subnetName": "workload"},
        ),
    ]


def microservices(service: str) -> list[ResourceSpec]:
    return aks_with_vnet(service) + [_app_insights(service, applicationType="web")]


def serverless(service: str) -> list[ResourceSpec]:
    return [
        ResourceSpec(
            "storage", f"{service.replace('-', '')}stor", "storage-account", Platform.STORAGE,
            configuration={"sku": "Standard_LRS", "kind": "StorageV2"},
        ),
        _app_insights(service),
        ResourceSpec(
            "functions", f"{service}-func", "function-app", Platform.FUNCTIONS,
            configuration={"runtime": "dotnet-isolated", "version": "4"},
        ),
    ]


def data_platform(service: str) -> list[ResourceSpec]:
    return [
        ResourceSpec(
            "storage", f"{service.replace('-', '')}datalake", "storage-account", Platform.STORAGE,
            configuration={"kind": "StorageV2", "isHnsEnabled": True, "sku": "Standard_LRS"},
        ),
        ResourceSpec("sql", f"{service}-sql", "sql-database", Platform.DATABASE, configuration={"sku": "S1"}),
        _keyvault(service),
    ]


def scca_compliant(service: str) -> list[ResourceSpec]:
    return landing_zone(service) + [
        ResourceSpec(
            "bastion", f"{service}-bastion", "bastion", Platform.SECURITY,
            parent_id="vnet", configuration={"subnetName": "AzureBastionSubnet"},
        ),
    ]


PATTERNS: dict[ArchitecturePattern, Callable[[str], list[ResourceSpec]]] = {
    ArchitecturePattern.THREE_TIER: three_tier,
    ArchitecturePattern.AKS_WITH_VNET: aks_with_vnet,
    ArchitecturePattern.LANDING_ZONE: landing_zone,
    ArchitecturePattern.MICROSERVICES: microservices,
    ArchitecturePattern.SERVERLESS: serverless,
    ArchitecturePattern.DATA_PLATFORM: data_platform,
    ArchitecturePattern.SCCA_COMPLIANT: scca_compliant,
}


def expand_pattern(request: CompositeRequest) -> list[ResourceSpec]:
    """Preset resources for ``request.pattern`` followed by ``request.resources``."""
    pattern = ArchitecturePattern(request.pattern)
    preset_factory = PATTERNS.get(pattern)
    preset = preset_factory(request.service_name) if preset_factory else []
    if preset:
        _log.info("Expanded pattern %s to %d resource(s)", pattern.value, len(preset))
    return preset + list(request.resources)
