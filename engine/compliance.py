"""Compliance Attachment Resolver — forced cross-cutting concerns.

Turns the request's security / network overrides into an ordered list of
``ComplianceMandate`` objects, then decides which attachments each mandate
forces onto which resources.

Policy (locked):
  - A supported, in-scope resource gets one synthesized attachment per
    mandate, unless the user already declared that concern for that
    resource.  The explicit declaration wins untouched.
  - A strict mandate on an in-scope resource whose kind cannot support
    the concern fails the whole request.  No best-effort compliance.
  - Per resource, mandates apply in insertion order.

Runs after core resources are validated and before the graph is frozen.
"""
from __future__ import annotations

import logging
from typing import Iterable

from catalog.capabilities import DEFAULT_CATALOG, CapabilityCatalog
from engine.errors import ComplianceError
from schemas.composition import (
    ComplianceMandate,
    CompositeRequest,
    CrossCuttingAttachment,
    CrossCuttingType,
    OutputReference,
    ResourceSpec,
)

_log = logging.getLogger(__name__)


# ── Mandates from request overrides ───────────────────────────────

def mandates_from_request(request: CompositeRequest) -> list[ComplianceMandate]:
    """Mandates in fixed order: PE (+ DNS zone), diagnostics, RBAC, identity, then explicit ones."""
    security = request.security
    if security is None:
        return []
    network = request.network
    mandates: list[ComplianceMandate] = []

    if security.private_endpoints_mandatory:
        config: dict = {}
        if network and network.private_endpoint_subnet_id:
            config["subnetId"] = network.private_endpoint_subnet_id
        mandates.append(ComplianceMandate(CrossCuttingType.PRIVATE_ENDPOINT, config=config))

        # Zone + vnet link only when there is a network to link to
        if network and network.vnet_resource_id:
            mandates.append(ComplianceMandate(
                CrossCuttingType.PRIVATE_DNS_ZONE,
                references=[OutputReference(network.vnet_resource_id, "vnetId", "vnetId")],
                strict=False,
            ))
        elif network and network.vnet_id:
            mandates.append(ComplianceMandate(
                CrossCuttingType.PRIVATE_DNS_ZONE, config={"vnetId": network.vnet_id}, strict=False,
            ))

    if security.diagnostics_mandatory:
        config = {}
        references: list[OutputReference] = []
        if security.diagnostics_workspace_resource_id:
            references.append(OutputReference(
                security.diagnostics_workspace_resource_id, "resourceId", "workspaceId",
            ))
        elif security.diagnostics_workspace_id:
            config["workspaceId"] = security.diagnostics_workspace_id
        mandates.append(ComplianceMandate(
            CrossCuttingType.DIAGNOSTIC_SETTINGS, config=config, references=references,
        ))

    if security.rbac_principal_id:
        mandates.append(ComplianceMandate(
            CrossCuttingType.RBAC_ASSIGNMENT,
            config={
                "principalId": security.rbac_principal_id,
                "roleDefinitionIdOrName": security.rbac_role or "Reader",
                "principalType": security.rbac_principal_type,
            },
            strict=False,
        ))

    if security.managed_identity_mandatory:
        mandates.append(ComplianceMandate(CrossCuttingType.MANAGED_IDENTITY))

    mandates.extend(security.mandates)
    return mandates


# ── Resolver ──────────────────────────────────────────────────────

class ComplianceAttachmentResolver:
    """Combine explicit attachments with mandate-forced ones."""

    def __init__(self, catalog: CapabilityCatalog = DEFAULT_CATALOG):
        self.catalog = catalog

    def validate(
        self,
        resources: Iterable[ResourceSpec],
        mandates: Iterable[ComplianceMandate],
    ) -> tuple[bool, list[str]]:
        """Return (ok, violations) for strict mandates on unsupported kinds."""
        violations: list[str] = []
        mandates = list(mandates)
        for spec in resources:
            kind = self.catalog.normalize_kind(spec.resource_kind)
            for mandate in mandates:
                if not self._in_scope(spec, kind, mandate):
                    continue
                if mandate.strict and not self.catalog.supports_capability(kind, mandate.type):
                    violations.append(
                        f"Resource '{spec.id}' (kind '{kind}') cannot support mandated "
                        f"{CrossCuttingType(mandate.type).value}"
                    )
        return not violations, violations

    def resolve(
        self,
        resources: Iterable[ResourceSpec],
        mandates: Iterable[ComplianceMandate],
        explicit: Iterable[CrossCuttingAttachment] = (),
    ) -> list[CrossCuttingAttachment]:
        """Explicit attachments first (as given), then synthesized ones.

        Synthesized attachments follow resource order, then mandate order.
        Raises ``ComplianceError`` listing every unsatisfiable mandate.
        """
        resources = [spec for spec in resources if spec.enabled]
        mandates = list(mandates)
        explicit = list(explicit)
        ok, violations = self.validate(resources, mandates)
        if not ok:
            raise ComplianceError(violations)

        attachments = list(explicit)
        claimed = {(a.parent_resource_id, CrossCuttingType(a.type)) for a in attachments}

        for spec in resources:
            kind = self.catalog.normalize_kind(spec.resource_kind)
            for mandate in mandates:
                cc_type = CrossCuttingType(mandate.type)
                if not self._in_scope(spec, kind, mandate):
                    continue
                if not self.catalog.supports_capability(kind, cc_type):
                    _log.debug("Non-strict %s mandate skips %s (%s)", cc_type.value, spec.id, kind)
                    continue
                if (spec.id, cc_type) in claimed:
                    _log.debug(
                        "%s on %s already declared; mandate not synthesized", cc_type.value, spec.id,
                    )
                    continue
                claimed.add((spec.id, cc_type))
                attachments.append(CrossCuttingAttachment(
                    type=cc_type,
                    parent_resource_id=spec.id,
                    config=dict(mandate.config),
                    references=list(mandate.references),
                    origin="mandate",
                ))

        _log.info(
            "Compliance resolution: %d mandate(s), %d attachment(s) synthesized",
            len(mandates), len(attachments) - len(explicit),
        )
        return attachments

    def _in_scope(self, spec: ResourceSpec, kind: str, mandate: ComplianceMandate) -> bool:
        if mandate.kinds and kind not in {self.catalog.normalize_kind(k) for k in mandate.kinds}:
            return False
        if mandate.resource_ids and spec.id not in mandate.resource_ids:
            return False
        return True
