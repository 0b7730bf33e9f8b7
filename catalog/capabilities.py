# catalog/capabilities.py — Static capability knowledge base.
"""Capability Catalog.

Read-only lookup tables keyed by normalised resource kind.  For each kind
the catalog records:

  - which cross-cutting concerns it supports
  - its private-link sub-resource (group id) and private DNS zone
  - its default diagnostic log categories
  - the external resource type and default platform

plus a built-in role name → role definition id table.

Tables are built once at import and exposed through immutable
structures, so a single ``CapabilityCatalog`` may be shared across
concurrent composite runs without locking.

Usage::

    from catalog.capabilities import DEFAULT_CATALOG

    DEFAULT_CATALOG.supports_capability("keyvault", CrossCuttingType.PRIVATE_ENDPOINT)
    DEFAULT_CATALOG.resolve_role_identifier("Key Vault Secrets User")
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

from schemas.composition import CrossCuttingType, Platform

PE = CrossCuttingType.PRIVATE_ENDPOINT
DIAG = CrossCuttingType.DIAGNOSTIC_SETTINGS
RBAC = CrossCuttingType.RBAC_ASSIGNMENT
NSG = CrossCuttingType.NETWORK_SECURITY_GROUP
MI = CrossCuttingType.MANAGED_IDENTITY
DNS = CrossCuttingType.PRIVATE_DNS_ZONE
PIP = CrossCuttingType.PUBLIC_IP_ADDRESS
SVC = CrossCuttingType.SERVICE_ENDPOINT

WILDCARD_LOG_CATEGORY = "allLogs"

_GUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def is_guid(value: str) -> bool:
    return bool(_GUID_RE.match(value or ""))


@dataclass(frozen=True)
class CapabilityEntry:
    kind: str
    resource_type: str
    capabilities: frozenset[CrossCuttingType]
    group_id: str | None = None
    dns_zone: str | None = None
    log_categories: tuple[str, ...] = ()
    platform: Platform | None = None


# ── Static tables ─────────────────────────────────────────────────

_DEFAULT_ENTRIES: tuple[CapabilityEntry, ...] = (
    CapabilityEntry(
        "keyvault", "Microsoft.KeyVault/vaults",
        frozenset({PE, DIAG, RBAC, DNS}),
        "vault", "privatelink.vaultcore.azure.net",
        ("AuditEvent", "AzurePolicyEvaluationDetails"),
        Platform.SECURITY,
    ),
    CapabilityEntry(
        "storage-account", "Microsoft.Storage/storageAccounts",
        frozenset({PE, DIAG, RBAC, NSG, DNS}),
        "blob", "privatelink.blob.core.windows.net",
        ("StorageRead", "StorageWrite", "StorageDelete"),
        Platform.STORAGE,
    ),
    CapabilityEntry(
        "sql-database", "Microsoft.Sql/servers",
        frozenset({PE, DIAG, DNS}),
        "sqlServer", "privatelink.database.windows.net",
        ("SQLSecurityAuditEvents", "QueryStoreRuntimeStatistics"),
        Platform.DATABASE,
    ),
    CapabilityEntry(
        "container-registry", "Microsoft.ContainerRegistry/registries",
        frozenset({PE, DIAG, RBAC, DNS}),
        "registry", "privatelink.azurecr.io",
        ("ContainerRegistryRepositoryEvents", "ContainerRegistryLoginEvents"),
        Platform.AKS,
    ),
    CapabilityEntry(
        "web-app", "Microsoft.Web/sites",
        frozenset({PE, DIAG, MI, DNS}),
        "sites", "privatelink.azurewebsites.net",
        ("AppServiceHTTPLogs", "AppServiceConsoleLogs", "AppServiceAppLogs"),
        Platform.APP_SERVICE,
    ),
    CapabilityEntry(
        "function-app", "Microsoft.Web/sites",
        frozenset({PE, DIAG, MI, DNS}),
        "sites", "privatelink.azurewebsites.net",
        ("FunctionAppLogs",),
        Platform.FUNCTIONS,
    ),
    CapabilityEntry(
        "container-app", "Microsoft.App/containerApps",
        frozenset({DIAG, MI}),
        None, None,
        ("ContainerAppConsoleLogs", "ContainerAppSystemLogs"),
        Platform.CONTAINER_APPS,
    ),
    CapabilityEntry(
        "container-apps-environment", "Microsoft.App/managedEnvironments",
        frozenset({PE, DIAG, DNS}),
        "managedEnvironments", "privatelink.azurecontainerapps.io",
        ("ContainerAppConsoleLogs", "ContainerAppSystemLogs"),
        Platform.CONTAINER_APPS,
    ),
    CapabilityEntry(
        "aks", "Microsoft.ContainerService/managedClusters",
        frozenset({DIAG, MI, RBAC, NSG}),
        None, None,
        ("kube-apiserver", "kube-audit", "kube-controller-manager",
         "kube-scheduler", "cluster-autoscaler"),
        Platform.AKS,
    ),
    CapabilityEntry(
        "vnet", "Microsoft.Network/virtualNetworks",
        frozenset({DIAG, NSG, SVC}),
        platform=Platform.NETWORKING,
    ),
    CapabilityEntry(
        "nsg", "Microsoft.Network/networkSecurityGroups",
        frozenset({DIAG}),
        log_categories=("NetworkSecurityGroupEvent", "NetworkSecurityGroupRuleCounter"),
        platform=Platform.NETWORKING,
    ),
    CapabilityEntry(
        "bastion", "Microsoft.Network/bastionHosts",
        frozenset({DIAG, PIP}),
        log_categories=("BastionAuditLogs",),
        platform=Platform.NETWORKING,
    ),
    CapabilityEntry(
        "managed-identity", "Microsoft.ManagedIdentity/userAssignedIdentities",
        frozenset({RBAC}),
        platform=Platform.SECURITY,
    ),
    CapabilityEntry(
        "log-analytics", "Microsoft.OperationalInsights/workspaces",
        frozenset({DIAG, RBAC}),
        log_categories=("Audit",),
        platform=Platform.MONITORING,
    ),
    CapabilityEntry(
        "application-insights", "Microsoft.Insights/components",
        frozenset({DIAG, RBAC}),
        platform=Platform.MONITORING,
    ),
    CapabilityEntry(
        "cognitive-services", "Microsoft.CognitiveServices/accounts",
        frozenset({PE, DIAG, RBAC, MI, DNS}),
        "account", "privatelink.cognitiveservices.azure.com",
        ("Audit", "RequestResponse"),
        Platform.SECURITY,
    ),
    CapabilityEntry(
        "event-hub", "Microsoft.EventHub/namespaces",
        frozenset({PE, DIAG, RBAC, DNS}),
        "namespace", "privatelink.servicebus.windows.net",
        ("OperationalLogs",),
    ),
    CapabilityEntry(
        "service-bus", "Microsoft.ServiceBus/namespaces",
        frozenset({PE, DIAG, RBAC, DNS}),
        "namespace", "privatelink.servicebus.windows.net",
        ("OperationalLogs",),
    ),
    CapabilityEntry(
        "iot-hub", "Microsoft.Devices/IotHubs",
        frozenset({PE, DIAG, DNS}),
        "iotHub", "privatelink.azure-devices.net",
        ("Connections",),
    ),
    CapabilityEntry(
        "cosmos-db", "Microsoft.DocumentDB/databaseAccounts",
        frozenset({PE, DIAG, RBAC, DNS}),
        "Sql", "privatelink.documents.azure.com",
        ("DataPlaneRequests",),
        Platform.DATABASE,
    ),
    CapabilityEntry(
        "redis", "Microsoft.Cache/redis",
        frozenset({PE, DIAG, DNS}),
        "redisCache", "privatelink.redis.cache.windows.net",
        ("ConnectedClientList",),
        Platform.DATABASE,
    ),
    CapabilityEntry(
        "search", "Microsoft.Search/searchServices",
        frozenset({PE, DIAG, RBAC, DNS}),
        "searchService", "privatelink.search.windows.net",
        ("OperationLogs",),
    ),
    CapabilityEntry(
        "virtual-machine", "Microsoft.Compute/virtualMachines",
        frozenset({DIAG, MI, RBAC, NSG, PIP}),
        platform=Platform.VIRTUAL_MACHINES,
    ),
)

KIND_ALIASES: Mapping[str, str] = MappingProxyType({
    "key-vault": "keyvault",
    "storage": "storage-account",
    "storageaccount": "storage-account",
    "sql": "sql-database",
    "sql-server": "sql-database",
    "acr": "container-registry",
    "containerregistry": "container-registry",
    "app-service": "web-app",
    "appservice": "web-app",
    "functions": "function-app",
    "containerapp": "container-app",
    "containerapps": "container-app",
    "managed-environment": "container-apps-environment",
    "kubernetes": "aks",
    "virtual-network": "vnet",
    "network-security-group": "nsg",
    "identity": "managed-identity",
    "user-assigned-identity": "managed-identity",
    "log-analytics-workspace": "log-analytics",
    "app-insights": "application-insights",
    "cognitive": "cognitive-services",
    "eventhub": "event-hub",
    "servicebus": "service-bus",
    "iothub": "iot-hub",
    "cosmos": "cosmos-db",
    "cosmosdb": "cosmos-db",
    "redis-cache": "redis",
    "cognitive-search": "search",
    "vm": "virtual-machine",
})

BUILT_IN_ROLE_IDS: Mapping[str, str] = MappingProxyType({
    "Key Vault Administrator": "00482a5a-887f-4fb3-b363-3b7fe8e74483",
    "Key Vault Secrets Officer": "b86a8fe4-44ce-4948-aee5-eccb2c155cd7",
    "Key Vault Secrets User": "4633458b-17de-408a-b874-0445c86b69e6",
    "Key Vault Crypto Officer": "14b46e9e-c2b7-41b4-b07b-48a6ebf60603",
    "Key Vault Certificates Officer": "a4417e6f-fecd-4de8-b567-7b0420556985",
    "Storage Blob Data Owner": "b7e6dc6d-f1e8-4753-8033-0f276bb0955b",
    "Storage Blob Data Contributor": "ba92f5b4-2d11-453d-a403-e96b0029c9fe",
    "Storage Blob Data Reader": "2a2b9908-6ea1-4ae2-8e65-a410df84e7d1",
    "Storage Queue Data Contributor": "974c5e8b-45b9-4653-ba55-5f855dd0fb88",
    "AcrPull": "7f951dda-4ed3-4680-a7ca-43fe172d538d",
    "AcrPush": "8311e382-0749-4cb8-b61a-304f252e45ec",
    "AcrDelete": "c2f4ef07-c644-48eb-af81-4b1b4947fb11",
    "Azure Kubernetes Service RBAC Admin": "3498e952-d568-435e-9b2c-8d77e338d7f7",
    "Azure Kubernetes Service RBAC Cluster Admin": "b1ff04bb-8a4e-4dc4-8eb5-8693973ce19b",
    "Azure Kubernetes Service Cluster User Role": "4abbcc35-e782-43d8-92c5-2d3f1bd2253f",
    "Contributor": "b24988ac-6180-42a0-ab88-20f7382dd24c",
    "Reader": "acdd72a7-3385-48ef-bd42-f606fba81ae7",
    "Owner": "8e3af657-a8ff-443c-a75c-2fe8c4bcb635",
})


# ── Catalog ───────────────────────────────────────────────────────

class CapabilityCatalog:
    """Immutable capability lookups.  No method has side effects."""

    def __init__(
        self,
        entries: Iterable[CapabilityEntry],
        role_ids: Mapping[str, str] | None = None,
        aliases: Mapping[str, str] | None = None,
    ):
        self._entries: Mapping[str, CapabilityEntry] = MappingProxyType(
            {e.kind: e for e in entries}
        )
        self._aliases: Mapping[str, str] = MappingProxyType(dict(aliases or {}))
        self._role_ids: Mapping[str, str] = MappingProxyType(dict(role_ids or {}))
        self._role_ids_folded: Mapping[str, str] = MappingProxyType(
            {name.casefold(): rid for name, rid in self._role_ids.items()}
        )

    @property
    def kinds(self) -> list[str]:
        return sorted(self._entries)

    def normalize_kind(self, kind: str) -> str:
        """Lower-case, dash-separated canonical kind (aliases resolved).

        Unknown kinds pass through normalised but otherwise unchanged so
        that registries may serve kinds the catalog does not describe.
        """
        key = (kind or "").strip().lower().replace("_", "-").replace(" ", "-")
        return self._aliases.get(key, key)

    def entry(self, kind: str) -> CapabilityEntry | None:
        return self._entries.get(self.normalize_kind(kind))

    def supports_capability(self, kind: str, cc_type: CrossCuttingType) -> bool:
        entry = self.entry(kind)
        return entry is not None and cc_type in entry.capabilities

    def supported_capabilities(self, kind: str) -> list[CrossCuttingType]:
        """Supported concerns in declaration order of ``CrossCuttingType``."""
        entry = self.entry(kind)
        if entry is None:
            return []
        return [t for t in CrossCuttingType if t in entry.capabilities]

    def group_id(self, kind: str) -> str | None:
        entry = self.entry(kind)
        return entry.group_id if entry else None

    def dns_zone_name(self, kind: str) -> str | None:
        entry = self.entry(kind)
        return entry.dns_zone if entry else None

    def default_log_categories(self, kind: str) -> list[str]:
        entry = self.entry(kind)
        if entry is None or not entry.log_categories:
            return [WILDCARD_LOG_CATEGORY]
        return list(entry.log_categories)

    def resource_type(self, kind: str) -> str | None:
        entry = self.entry(kind)
        return entry.resource_type if entry else None

    def default_platform(self, kind: str) -> Platform | None:
        entry = self.entry(kind)
        return entry.platform if entry else None

    def resolve_role_identifier(self, name_or_id: str) -> str:
        """GUIDs verbatim; built-in names mapped; anything else unchanged.

        An unknown name is not an error at this layer.  The role
        assignment generator rejects non-GUID identifiers later.
        """
        if not name_or_id or is_guid(name_or_id):
            return name_or_id
        if name_or_id in self._role_ids:
            return self._role_ids[name_or_id]
        return self._role_ids_folded.get(name_or_id.casefold(), name_or_id)


DEFAULT_CATALOG = CapabilityCatalog(_DEFAULT_ENTRIES, BUILT_IN_ROLE_IDS, KIND_ALIASES)
