"""Tests for topological composition and partial-failure isolation."""
from __future__ import annotations

import pytest

from conftest import EchoGenerator, make_echo_registry, make_request, make_resource
from engine.composer import TopologicalComposer, output_expression
from engine.dependency_graph import DependencyGraphBuilder
from generators.types import GenerationContext
from schemas.composition import (
    CloudProvider,
    CrossCuttingAttachment,
    CrossCuttingType,
    DependencyKind,
    ModuleResult,
    ResourceDependency,
    TemplateDialect,
    UnitStatus,
)


def _ctx(dialect=TemplateDialect.BICEP) -> GenerationContext:
    return GenerationContext("svc", dialect, CloudProvider.AZURE, "eastus", "dev")


def _compose(request, registry, attachments=(), workers=1):
    graph = DependencyGraphBuilder(request, registry).freeze(attachments)
    return TopologicalComposer(graph, _ctx(request.dialect), max_workers=workers).run()


def _chain_request():
    """a <- b <- c, plus an independent d."""
    return make_request(
        make_resource("a"), make_resource("b"), make_resource("c"), make_resource("d"),
        dependencies=[
            ResourceDependency("b", "a"),
            ResourceDependency("c", "b"),
        ],
    )


class TestOutputExpression:

    def test_bicep_default(self):
        result = ModuleResult({"m": ""}, "kv1", "T", ["vaultUri"])
        assert output_expression(TemplateDialect.BICEP, result, "vaultUri") == "kv1.outputs.vaultUri"

    def test_terraform_default_is_snake_case(self):
        result = ModuleResult({"m": ""}, "kv1", "T", ["vaultUri"])
        assert output_expression(TemplateDialect.TERRAFORM, result, "vaultUri") == "module.kv1.vault_uri"

    def test_explicit_value_wins(self):
        result = ModuleResult({"m": ""}, "kv1", "T", ["id"], output_values={"id": "custom"})
        assert output_expression(TemplateDialect.TERRAFORM, result, "id") == "custom"


class TestComposer:

    def test_all_units_succeed_in_order(self, echo_registry):
        composed = _compose(_chain_request(), echo_registry)
        assert list(composed) == ["a", "b", "c", "d"]
        assert all(c.status == UnitStatus.SUCCEEDED for c in composed.values())

    def test_failure_skips_dependents_only(self):
        registry = make_echo_registry(overrides={"keyvault": EchoGenerator("keyvault", fail_on=("a",))})
        composed = _compose(_chain_request(), registry)
        assert composed["a"].status == UnitStatus.FAILED
        assert "boom: a" in composed["a"].error
        assert composed["b"].status == UnitStatus.SKIPPED
        assert "'a'" in composed["b"].error
        assert composed["c"].status == UnitStatus.SKIPPED
        assert "'b'" in composed["c"].error
        assert composed["d"].status == UnitStatus.SUCCEEDED

    def test_skipped_units_never_reach_the_generator(self):
        gen = EchoGenerator("keyvault", fail_on=("a",))
        registry = make_echo_registry(overrides={"keyvault": gen})
        _compose(_chain_request(), registry)
        assert sorted(spec.id for spec in gen.calls) == ["a", "d"]

    def test_output_wired_into_consumer_config(self):
        gen = EchoGenerator("keyvault")
        registry = make_echo_registry(overrides={"keyvault": gen})
        request = make_request(
            make_resource("a"), make_resource("b", configuration={"sku": "standard"}),
            dependencies=[ResourceDependency("b", "a", DependencyKind.OUTPUT_TO_INPUT, "id", "parentId")],
        )
        composed = _compose(request, registry)
        assert gen.received("b") == {"sku": "standard", "parentId": "a:id"}
        assert composed["b"].inputs == {"parentId": "a:id"}

    def test_request_spec_not_mutated(self):
        registry = make_echo_registry()
        b = make_resource("b", configuration={"sku": "standard"})
        request = make_request(
            make_resource("a"), b,
            dependencies=[ResourceDependency("b", "a", DependencyKind.OUTPUT_TO_INPUT, "id", "parentId")],
        )
        _compose(request, registry)
        assert b.configuration == {"sku": "standard"}

    def test_missing_dynamic_output_fails_unit(self):
        registry = make_echo_registry(overrides={"keyvault": EchoGenerator("keyvault", static_outputs=False)})
        request = make_request(
            make_resource("a"), make_resource("b"),
            dependencies=[ResourceDependency("b", "a", DependencyKind.OUTPUT_TO_INPUT, "missing", "x")],
        )
        composed = _compose(request, registry)
        assert composed["a"].status == UnitStatus.SUCCEEDED
        assert composed["b"].status == UnitStatus.FAILED
        assert "'missing' is not exposed by 'a'" in composed["b"].error

    def test_non_module_result_is_a_failure(self):
        class Broken(EchoGenerator):
            def generate_core(self, spec, context):
                return {"files": {}}

        registry = make_echo_registry(overrides={"keyvault": Broken("keyvault")})
        composed = _compose(make_request(make_resource("a")), registry)
        assert composed["a"].status == UnitStatus.FAILED
        assert "expected ModuleResult" in composed["a"].error

    def test_cross_cutting_receives_parent_facts(self, echo_registry):
        request = make_request(make_resource("kv1"))
        attachment = CrossCuttingAttachment(CrossCuttingType.DIAGNOSTIC_SETTINGS, "kv1")
        composed = _compose(request, echo_registry, [attachment])
        gen = echo_registry.lookup_cross_cutting(
            CrossCuttingType.DIAGNOSTIC_SETTINGS, TemplateDialect.BICEP, CloudProvider.AZURE,
        )
        config = gen.received("kv1-diagnostics")
        assert config["parentId"] == "kv1:id"
        assert config["parentReference"] == "kv1"
        assert config["parentResourceType"] == "Microsoft.KeyVault/vaults"
        assert composed["kv1-diagnostics"].status == UnitStatus.SUCCEEDED

    @pytest.mark.parametrize("workers", [2, 4])
    def test_parallel_matches_sequential(self, workers):
        sequential = _compose(_chain_request(), make_echo_registry())
        parallel = _compose(_chain_request(), make_echo_registry(), workers=workers)
        assert list(parallel) == list(sequential)
        assert {k: v.status for k, v in parallel.items()} == {k: v.status for k, v in sequential.items()}
        assert {k: v.result.files for k, v in parallel.items()} == {
            k: v.result.files for k, v in sequential.items()
        }

    def test_parallel_failure_isolation(self):
        registry = make_echo_registry(overrides={"keyvault": EchoGenerator("keyvault", fail_on=("b",))})
        composed = _compose(_chain_request(), registry, workers=3)
        assert composed["a"].status == UnitStatus.SUCCEEDED
        assert composed["b"].status == UnitStatus.FAILED
        assert composed["c"].status == UnitStatus.SKIPPED
        assert composed["d"].status == UnitStatus.SUCCEEDED
