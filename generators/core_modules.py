"""Bundled core resource generators (Bicep + Terraform, azure provider).

One ``TemplateResourceGenerator`` per (kind, dialect).  Each renders a
self-contained module directory ``modules/<resource id>/`` from the
Jinja2 templates under ``generators/templates``:

  bicep      main.bicep
  terraform  main.tf, variables.tf, outputs.tf

Every ``configuration`` key becomes a module parameter / variable so the
orchestrator can pass literals and wired outputs through unchanged.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from catalog.capabilities import CapabilityCatalog
from generators.rendering import (
    identifier,
    module_params,
    snake_case,
    template_environment,
)
from schemas.composition import (
    CloudProvider,
    CrossCuttingType,
    ModuleResult,
    ResourceSpec,
    TemplateDialect,
)
from generators.types import GenerationContext

_log = logging.getLogger(__name__)

_ENV = template_environment(Path(__file__).parent / "templates")


@dataclass(frozen=True)
class CoreDefinition:
    terraform_type: str
    api_version: str
    outputs: tuple[str, ...]
    skus: tuple[str, ...] = ()


_BASE = ("resourceId", "resourceName")

CORE_DEFINITIONS: dict[str, CoreDefinition] = {
    "keyvault": CoreDefinition(
        "azurerm_key_vault", "2023-07-01",
        _BASE + ("vaultUri", "vaultId"), ("standard", "premium"),
    ),
    "storage-account": CoreDefinition(
        "azurerm_storage_account", "2023-01-01", _BASE + ("primaryEndpoint",),
    ),
    "sql-database": CoreDefinition(
        "azurerm_mssql_server", "2023-05-01-preview",
        _BASE + ("serverId", "serverName", "fqdn"),
    ),
    "container-registry": CoreDefinition(
        "azurerm_container_registry", "2023-07-01",
        _BASE + ("loginServer", "acrId"), ("Basic", "Standard", "Premium"),
    ),
    "web-app": CoreDefinition(
        "azurerm_linux_web_app", "2023-01-01",
        _BASE + ("defaultHostName", "principalId"),
    ),
    "function-app": CoreDefinition(
        "azurerm_linux_function_app", "2023-01-01",
        _BASE + ("defaultHostName", "functionAppId", "principalId"),
    ),
    "container-app": CoreDefinition(
        "azurerm_container_app", "2024-03-01",
        _BASE + ("fqdn", "latestRevisionFqdn", "principalId"),
    ),
    "container-apps-environment": CoreDefinition(
        "azurerm_container_app_environment", "2024-03-01", _BASE + ("defaultDomain",),
    ),
    "aks": CoreDefinition(
        "azurerm_kubernetes_cluster", "2024-02-01",
        _BASE + ("aksName", "kubeletIdentityId", "nodeResourceGroup", "oidcIssuerUrl", "principalId"),
    ),
    "vnet": CoreDefinition(
        "azurerm_virtual_network", "2023-09-01",
        _BASE + ("vnetId", "vnetName", "subnetIds"),
    ),
    "nsg": CoreDefinition("azurerm_network_security_group", "2023-09-01", _BASE),
    "bastion": CoreDefinition("azurerm_bastion_host", "2023-09-01", _BASE),
    "managed-identity": CoreDefinition(
        "azurerm_user_assigned_identity", "2023-01-31",
        _BASE + ("principalId", "clientId", "tenantId"),
    ),
    "log-analytics": CoreDefinition(
        "azurerm_log_analytics_workspace", "2022-10-01", _BASE + ("workspaceId",),
    ),
    "application-insights": CoreDefinition(
        "azurerm_application_insights", "2020-02-02",
        _BASE + ("instrumentationKey", "connectionString"),
    ),
    "cognitive-services": CoreDefinition(
        "azurerm_cognitive_account", "2023-05-01", _BASE + ("endpoint", "principalId"),
    ),
    "event-hub": CoreDefinition("azurerm_eventhub_namespace", "2022-10-01-preview", _BASE),
    "service-bus": CoreDefinition("azurerm_servicebus_namespace", "2022-10-01-preview", _BASE),
    "iot-hub": CoreDefinition("azurerm_iothub", "2023-06-30", _BASE + ("hostName",)),
    "cosmos-db": CoreDefinition(
        "azurerm_cosmosdb_account", "2024-05-15", _BASE + ("documentEndpoint",),
    ),
    "redis": CoreDefinition(
        "azurerm_redis_cache", "2023-08-01", _BASE + ("hostName",),
        ("Basic", "Standard", "Premium"),
    ),
    "search": CoreDefinition("azurerm_search_service", "2023-11-01", _BASE),
    "virtual-machine": CoreDefinition(
        "azurerm_linux_virtual_machine", "2023-09-01", _BASE + ("principalId",),
    ),
}

# output name → (bicep expression, terraform attribute); "{tf}" is the resource address
_ID_OUTPUTS = {"resourceId", "vaultId", "acrId", "serverId", "vnetId", "functionAppId"}
_NAME_OUTPUTS = {"resourceName", "aksName", "serverName", "vnetName"}
_SPECIAL_OUTPUTS: dict[str, tuple[str, str]] = {
    "principalId": ("main.identity.principalId", "{tf}.identity[0].principal_id"),
    "workspaceId": ("main.properties.customerId", "{tf}.workspace_id"),
    "subnetIds": ("[for s in main.properties.subnets: s.id]", "[for s in {tf}.subnet : s.id]"),
    "kubeletIdentityId": (
        "main.properties.identityProfile.kubeletidentity.objectId",
        "{tf}.kubelet_identity[0].object_id",
    ),
    "oidcIssuerUrl": ("main.properties.oidcIssuerProfile.issuerURL", "{tf}.oidc_issuer_url"),
    "fqdn": ("main.properties.fullyQualifiedDomainName", "{tf}.fully_qualified_domain_name"),
}


def _bicep_output(name: str) -> tuple[str, str]:
    if name in _ID_OUTPUTS:
        expr = "main.id"
    elif name in _NAME_OUTPUTS:
        expr = "main.name"
    elif name in _SPECIAL_OUTPUTS:
        expr = _SPECIAL_OUTPUTS[name][0]
    else:
        expr = f"main.properties.{name}"
    return ("array" if name == "subnetIds" else "string"), expr


def _terraform_output(name: str, address: str) -> str:
    if name in _ID_OUTPUTS:
        return f"{address}.id"
    if name in _NAME_OUTPUTS:
        return f"{address}.name"
    if name in _SPECIAL_OUTPUTS:
        return _SPECIAL_OUTPUTS[name][1].format(tf=address)
    return f"{address}.{snake_case(name)}"


@dataclass
class TemplateResourceGenerator:
    """Core generator driven by a ``CoreDefinition`` and a Jinja2 template."""
    kind: str
    dialect: TemplateDialect
    definition: CoreDefinition
    resource_type: str
    capabilities: tuple[CrossCuttingType, ...] = ()
    provider: CloudProvider = CloudProvider.AZURE

    def can_generate(self, spec: ResourceSpec) -> bool:
        if not spec.name:
            return False
        sku = spec.configuration.get("sku")
        if sku is not None and self.definition.skus and sku not in self.definition.skus:
            _log.debug("%s declines %s: sku %r not in %s", self.kind, spec.id, sku, self.definition.skus)
            return False
        return True

    def supported_cross_cutting(self) -> list[CrossCuttingType]:
        return list(self.capabilities)

    def output_names(self) -> list[str]:
        return list(self.definition.outputs)

    def generate_core(self, spec: ResourceSpec, context: GenerationContext) -> ModuleResult:
        params = module_params(spec.configuration)
        base = f"modules/{spec.id}"
        if self.dialect == TemplateDialect.BICEP:
            outputs = []
            for name in self.definition.outputs:
                out_type, expr = _bicep_output(name)
                outputs.append({"name": name, "type": out_type, "expression": expr})
            text = _ENV.get_template("core.bicep.j2").render(
                spec=spec,
                kind=self.kind,
                resource_type=self.resource_type,
                api_version=self.definition.api_version,
                params=params,
                outputs=outputs,
            )
            files = {f"{base}/main.bicep": text}
            entry = f"{base}/main.bicep"
        else:
            address = f"{self.definition.terraform_type}.main"
            outputs = [
                {"name": snake_case(n), "expression": _terraform_output(n, address)}
                for n in self.definition.outputs
            ]
            render = dict(
                spec=spec,
                kind=self.kind,
                resource_type=self.resource_type,
                terraform_type=self.definition.terraform_type,
                params=params,
                outputs=outputs,
            )
            files = {
                f"{base}/main.tf": _ENV.get_template("core.main.tf.j2").render(**render),
                f"{base}/variables.tf": _ENV.get_template("core.variables.tf.j2").render(**render),
                f"{base}/outputs.tf": _ENV.get_template("core.outputs.tf.j2").render(**render),
            }
            entry = f"{base}/main.tf"

        return ModuleResult(
            files=files,
            reference_handle=identifier(spec.id),
            resource_type=self.resource_type,
            output_names=list(self.definition.outputs),
            entry_point=entry,
            input_names=[p["key"] for p in params],
        )


def register_core_generators(registry, catalog: CapabilityCatalog) -> None:
    """Register one generator per (kind, dialect) for every defined kind."""
    for kind, definition in CORE_DEFINITIONS.items():
        resource_type = catalog.resource_type(kind) or kind
        capabilities = tuple(catalog.supported_capabilities(kind))
        for dialect in TemplateDialect:
            registry.register(
                TemplateResourceGenerator(kind, dialect, definition, resource_type, capabilities)
            )
