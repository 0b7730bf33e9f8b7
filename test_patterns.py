"""Tests for architecture pattern expansion."""
from __future__ import annotations

import pytest

from catalog.capabilities import DEFAULT_CATALOG
from conftest import make_request, make_resource
from engine.patterns import PATTERNS, WEB_TIER_RULES, expand_pattern
from generators.core_modules import CORE_DEFINITIONS
from schemas.composition import ArchitecturePattern


EXPECTED_IDS = {
    ArchitecturePattern.THREE_TIER: ["vnet", "nsg-web", "nsg-app", "nsg-data"],
    ArchitecturePattern.AKS_WITH_VNET: ["vnet", "identity", "acr", "keyvault", "aks"],
    ArchitecturePattern.LANDING_ZONE: ["vnet", "log-analytics", "keyvault", "identity", "acr", "aks"],
    ArchitecturePattern.MICROSERVICES: ["vnet", "identity", "acr", "keyvault", "aks", "app-insights"],
    ArchitecturePattern.SERVERLESS: ["storage", "app-insights", "functions"],
    ArchitecturePattern.DATA_PLATFORM: ["storage", "sql", "keyvault"],
    ArchitecturePattern.SCCA_COMPLIANT: [
        "vnet", "log-analytics", "keyvault", "identity", "acr", "aks", "bastion",
    ],
}


class TestExpandPattern:

    def test_every_pattern_has_a_preset(self):
        assert set(PATTERNS) == set(ArchitecturePattern) - {ArchitecturePattern.CUSTOM}

    @pytest.mark.parametrize("pattern", sorted(EXPECTED_IDS, key=lambda p: p.value))
    def test_preset_ids(self, pattern):
        resources = expand_pattern(make_request(service_name="shop", pattern=pattern))
        assert [r.id for r in resources] == EXPECTED_IDS[pattern]

    @pytest.mark.parametrize("pattern", sorted(EXPECTED_IDS, key=lambda p: p.value))
    def test_preset_kinds_have_generators(self, pattern):
        for spec in expand_pattern(make_request(service_name="shop", pattern=pattern)):
            assert DEFAULT_CATALOG.normalize_kind(spec.resource_kind) in CORE_DEFINITIONS

    def test_names_derive_from_service(self):
        resources = expand_pattern(make_request(service_name="shop-api", pattern=ArchitecturePattern.AKS_WITH_VNET))
        names = {r.id: r.name for r in resources}
        assert names["vnet"] == "shop-api-vnet"
        assert names["aks"] == "shop-api-aks"
        assert names["acr"] == "shopapiacr"

    def test_explicit_resources_follow_preset(self):
        extra = make_resource("cache", "redis", parent_id="vnet")
        resources = expand_pattern(
            make_request(extra, service_name="shop", pattern=ArchitecturePattern.THREE_TIER)
        )
        assert resources[-1] is extra
        assert len(resources) == 5

    def test_custom_uses_only_explicit_resources(self):
        kv = make_resource("kv1")
        assert expand_pattern(make_request(kv)) == [kv]

    def test_nsg_rules_are_copies(self):
        first = expand_pattern(make_request(pattern=ArchitecturePattern.THREE_TIER))
        first[1].configuration["securityRules"][0]["priority"] = 999
        second = expand_pattern(make_request(pattern=ArchitecturePattern.THREE_TIER))
        assert second[1].configuration["securityRules"][0]["priority"] == WEB_TIER_RULES[0]["priority"]

    def test_tier_children_deploy_into_vnet(self):
        resources = expand_pattern(make_request(pattern=ArchitecturePattern.THREE_TIER))
        assert {r.parent_id for r in resources if r.id.startswith("nsg-")} == {"vnet"}
