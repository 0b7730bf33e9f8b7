"""Tests for artifact assembly: file merge, orchestrator and collisions."""
from __future__ import annotations

import pytest

from conftest import (
    EchoGenerator,
    FixedPathGenerator,
    make_echo_registry,
    make_request,
    make_resource,
)
from engine.assembler import ArtifactAssembler
from engine.composer import TopologicalComposer
from engine.dependency_graph import DependencyGraphBuilder
from engine.errors import AssemblyError
from generators.types import GenerationContext
from schemas.composition import (
    DependencyKind,
    FailureKind,
    ResourceDependency,
    TemplateDialect,
    UnitStatus,
)


def _assemble(request, registry):
    graph = DependencyGraphBuilder(request, registry).freeze()
    context = GenerationContext(
        request.service_name, request.dialect, request.provider, request.region, request.environment,
    )
    composed = TopologicalComposer(graph, context).run()
    return ArtifactAssembler().assemble(request, graph, composed)


def _pair_request(**kwargs):
    """b waits for a (ordering only) and takes a's id as ``parentId``."""
    return make_request(
        make_resource("a"),
        make_resource("b", configuration={"sku": "standard"}),
        make_resource("c"),
        dependencies=[
            ResourceDependency("c", "a"),
            ResourceDependency("b", "a", DependencyKind.OUTPUT_TO_INPUT, "id", "parentId"),
        ],
        **kwargs,
    )


# ═══════════════════════════════════════════════════════════════════
#  1. Bicep
# ═══════════════════════════════════════════════════════════════════

class TestBicepAssembly:

    def test_file_set(self, echo_registry):
        result = _assemble(_pair_request(), echo_registry)
        assert result.success is True
        assert result.failure_kind is None
        assert result.main_file_path == "main.bicep"
        assert result.module_paths == [
            "modules/a/main.bicep", "modules/b/main.bicep", "modules/c/main.bicep",
        ]
        assert set(result.files) == set(result.module_paths) | {
            "main.bicep", "main.parameters.json", "README.md",
        }

    def test_module_declarations_in_order(self, echo_registry):
        main = _assemble(_pair_request(), echo_registry).files["main.bicep"]
        assert "targetScope = 'resourceGroup'" in main
        positions = [main.index(f"module {h} './modules/{h}/main.bicep'") for h in ("a", "b", "c")]
        assert positions == sorted(positions)

    def test_wired_input_and_literal(self, echo_registry):
        main = _assemble(_pair_request(), echo_registry).files["main.bicep"]
        assert "    parentId: a:id\n" in main
        assert "    sku: 'standard'\n" in main

    def test_depends_on_only_for_unwired_edges(self, echo_registry):
        main = _assemble(_pair_request(), echo_registry).files["main.bicep"]
        c_block = main[main.index("module c "):]
        assert "dependsOn: [\n    a\n  ]" in c_block
        b_block = main[main.index("module b "):main.index("module c ")]
        assert "dependsOn" not in b_block

    def test_resource_id_outputs(self, echo_registry):
        main = _assemble(_pair_request(), echo_registry).files["main.bicep"]
        assert "output a_resourceId string = a:resourceId" in main

    def test_parameters_file(self, echo_registry):
        request = _pair_request(region="westeurope", environment="prod", tags={"owner": "team"})
        params = _assemble(request, echo_registry).files["main.parameters.json"]
        assert '"westeurope"' in params
        assert '"owner": "team"' in params

    def test_readme_lists_units(self, echo_registry):
        readme = _assemble(_pair_request(), echo_registry).files["README.md"]
        assert "| b | Echo/keyvault | succeeded | a |" in readme
        assert "az deployment group create" in readme

    def test_output_is_deterministic(self):
        first = _assemble(_pair_request(), make_echo_registry())
        second = _assemble(_pair_request(), make_echo_registry())
        assert first.files == second.files
        assert list(first.files) == list(second.files)


# ═══════════════════════════════════════════════════════════════════
#  2. Terraform
# ═══════════════════════════════════════════════════════════════════

class TestTerraformAssembly:

    def test_orchestrator(self):
        registry = make_echo_registry(TemplateDialect.TERRAFORM)
        result = _assemble(_pair_request(dialect=TemplateDialect.TERRAFORM), registry)
        assert result.main_file_path == "main.tf"
        main = result.files["main.tf"]
        assert 'module "a" {' in main
        assert 'source = "./modules/a"' in main
        assert "depends_on = [module.a]" in main
        assert "parent_id = a:id" in main
        assert 'sku = "standard"' in main
        assert 'provider "azurerm"' in main
        assert 'resource "azurerm_resource_group" "main"' in main
        assert "variables.tf" in result.files
        assert 'variable "service_name"' in result.files["variables.tf"]


# ═══════════════════════════════════════════════════════════════════
#  3. Failures and collisions
# ═══════════════════════════════════════════════════════════════════

class TestAssemblyFailures:

    def test_partial_result(self):
        registry = make_echo_registry(overrides={"keyvault": EchoGenerator("keyvault", fail_on=("a",))})
        result = _assemble(_pair_request(), registry)
        assert result.success is False
        assert result.failure_kind == FailureKind.GENERATION
        assert result.files == {}
        assert result.failed_units == ["a"]
        assert sorted(result.skipped_units) == ["b", "c"]
        assert any(e.startswith("a: RuntimeError") for e in result.errors)

    def test_partial_result_keeps_independent_modules(self):
        registry = make_echo_registry(overrides={"keyvault": EchoGenerator("keyvault", fail_on=("a",))})
        request = make_request(make_resource("a"), make_resource("z"))
        result = _assemble(request, registry)
        assert result.success is False
        assert result.failure_kind == FailureKind.GENERATION
        assert result.module_paths == ["modules/z/main.bicep"]
        assert "module z " in result.files["main.bicep"]
        assert "module a " not in result.files["main.bicep"]
        statuses = {u.unit_id: u.status for u in result.unit_results}
        assert statuses == {"a": UnitStatus.FAILED, "z": UnitStatus.SUCCEEDED}

    def test_path_collision(self):
        registry = make_echo_registry(overrides={"keyvault": FixedPathGenerator("keyvault")})
        with pytest.raises(AssemblyError) as exc:
            _assemble(make_request(make_resource("a"), make_resource("b")), registry)
        assert "produced by both 'a' and 'b'" in exc.value.violations[0]

    def test_orchestrator_collision(self):
        gen = FixedPathGenerator("keyvault")
        gen.path = "main.bicep"
        registry = make_echo_registry(overrides={"keyvault": gen})
        with pytest.raises(AssemblyError) as exc:
            _assemble(make_request(make_resource("a")), registry)
        assert "orchestrator" in exc.value.violations[0]

    def test_handle_collision(self, echo_registry):
        with pytest.raises(AssemblyError) as exc:
            _assemble(make_request(make_resource("a-b"), make_resource("a_b")), echo_registry)
        assert "share the module handle 'a_b'" in exc.value.violations[0]

    def test_unit_results_follow_execution_order(self, echo_registry):
        result = _assemble(_pair_request(), echo_registry)
        assert [u.unit_id for u in result.unit_results] == result.execution_order == ["a", "b", "c"]
        assert result.unit_results[0].module_path == "modules/a"
