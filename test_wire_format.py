"""Tests for the JSON wire format, settings and the compose_request CLI."""
from __future__ import annotations

import json
import sys

import pytest

from engine.composite import CompositeEngine
from engine.errors import RequestValidationError
from engine.settings import EngineSettings
from schemas.composition import (
    CrossCuttingType,
    DependencyKind,
    FailureKind,
    TemplateDialect,
)
from schemas.wire import dump_result, dumps_result, load_request
from scripts import compose_request

SUBNET = "/subscriptions/0000/resourceGroups/net/providers/Microsoft.Network/virtualNetworks/hub/subnets/pe"

_REQUEST = {
    "serviceName": "orders",
    "dialect": "Bicep",
    "resources": [
        {"id": "kv1", "resourceKind": "keyvault"},
        {"id": "st1", "name": "ordersdata", "resourceKind": "storage-account"},
    ],
    "dependencies": [
        {"sourceId": "st1", "targetId": "kv1", "kind": "CreationOrder"},
    ],
    "attachments": [
        {
            "type": "DiagnosticSettings",
            "parentResourceId": "kv1",
            "config": {"workspaceId": "/workspaces/law"},
        },
    ],
    "network": {"privateEndpointSubnetId": SUBNET},
    "security": {"privateEndpointsMandatory": True},
    "tags": {"owner": "payments"},
}


def _settings(**kwargs) -> EngineSettings:
    return EngineSettings(**kwargs)


# ═══════════════════════════════════════════════════════════════════
#  1. Request parsing
# ═══════════════════════════════════════════════════════════════════

class TestLoadRequest:

    def test_camel_case_document(self):
        request = load_request(_REQUEST, _settings())
        assert request.service_name == "orders"
        assert request.dialect == TemplateDialect.BICEP
        assert [r.id for r in request.resources] == ["kv1", "st1"]
        assert request.dependencies[0].kind == DependencyKind.CREATION_ORDER
        attachment = request.attachments[0]
        assert attachment.type == CrossCuttingType.DIAGNOSTIC_SETTINGS
        assert attachment.config == {"workspaceId": "/workspaces/law"}
        assert attachment.origin == "explicit"
        assert request.network.private_endpoint_subnet_id == SUBNET
        assert request.security.private_endpoints_mandatory is True

    def test_json_text_is_accepted(self):
        request = load_request(json.dumps(_REQUEST), _settings())
        assert request.tags == {"owner": "payments"}

    def test_name_defaults_to_id(self):
        request = load_request(_REQUEST, _settings())
        assert request.resources[0].name == "kv1"
        assert request.resources[1].name == "ordersdata"

    def test_references_and_mandates(self):
        doc = {
            "serviceName": "orders",
            "attachments": [{
                "type": "DiagnosticSettings",
                "parentResourceId": "kv1",
                "references": [{"targetId": "law", "outputName": "resourceId", "inputName": "workspaceId"}],
            }],
            "security": {"mandates": [{"type": "ManagedIdentity", "kinds": ["web-app"], "strict": False}]},
        }
        request = load_request(doc, _settings())
        ref = request.attachments[0].references[0]
        assert (ref.target_id, ref.output_name, ref.input_name) == ("law", "resourceId", "workspaceId")
        mandate = request.security.mandates[0]
        assert mandate.type == CrossCuttingType.MANAGED_IDENTITY
        assert mandate.kinds == ["web-app"]
        assert mandate.strict is False

    def test_defaults_come_from_settings(self):
        doc = {"serviceName": "orders", "resources": [{"id": "kv1", "resourceKind": "keyvault"}]}
        settings = _settings(
            default_region="westeurope", default_environment="prod",
            default_dialect=TemplateDialect.TERRAFORM,
        )
        request = load_request(doc, settings)
        assert request.region == "westeurope"
        assert request.environment == "prod"
        assert request.dialect == TemplateDialect.TERRAFORM

    def test_explicit_values_beat_settings(self):
        doc = {"serviceName": "orders", "region": "uksouth", "dialect": "TERRAFORM"}
        request = load_request(doc, _settings(default_region="westeurope"))
        assert request.region == "uksouth"
        assert request.dialect == TemplateDialect.TERRAFORM

    def test_unknown_keys_rejected(self):
        doc = {"serviceName": "orders", "resources": [{"id": "kv1", "resourceKind": "keyvault", "sku": "x"}]}
        with pytest.raises(RequestValidationError) as exc:
            load_request(doc, _settings())
        assert exc.value.violations == ["resources.0.sku: Extra inputs are not permitted"]

    def test_every_problem_reported(self):
        doc = {
            "serviceName": "",
            "resources": [{"id": "kv1"}],
            "attachments": [{"type": "Firewall", "parentResourceId": "kv1"}],
        }
        with pytest.raises(RequestValidationError) as exc:
            load_request(doc, _settings())
        locations = [v.split(":")[0] for v in exc.value.violations]
        assert "serviceName" in locations
        assert "resources.0.resourceKind" in locations
        assert "attachments.0.type" in locations

    def test_invalid_json_text(self):
        with pytest.raises(RequestValidationError):
            load_request("{not json", _settings())


# ═══════════════════════════════════════════════════════════════════
#  2. Result serialisation
# ═══════════════════════════════════════════════════════════════════

class TestDumpResult:

    def test_success_shape(self, default_registry):
        request = load_request(_REQUEST, _settings())
        result = CompositeEngine(registry=default_registry).generate(request)
        doc = dump_result(result)
        assert doc["success"] is True
        assert doc["mainFilePath"] == "main.bicep"
        assert "failureKind" not in doc
        assert doc["executionOrder"] == result.execution_order
        first = doc["unitResults"][0]
        assert first["unitId"] == result.execution_order[0]
        assert first["status"] == "succeeded"
        assert "main.bicep" in doc["files"]

    def test_files_can_be_left_out(self, default_registry):
        request = load_request(_REQUEST, _settings())
        result = CompositeEngine(registry=default_registry).generate(request)
        doc = json.loads(dumps_result(result, include_files=False))
        assert "files" not in doc
        assert doc["modulePaths"] == result.module_paths

    def test_failure_shape(self, default_registry):
        doc = {"serviceName": "orders", "resources": [{"id": "aks", "resourceKind": "aks"}],
               "network": {"privateEndpointSubnetId": SUBNET},
               "security": {"privateEndpointsMandatory": True}}
        result = CompositeEngine(registry=default_registry).generate(load_request(doc, _settings()))
        out = dump_result(result)
        assert out["success"] is False
        assert out["failureKind"] == FailureKind.COMPLIANCE.value
        assert out["files"] == {}
        assert out["errors"]


# ═══════════════════════════════════════════════════════════════════
#  3. Settings from the environment
# ═══════════════════════════════════════════════════════════════════

class TestEngineSettings:

    def test_defaults(self, monkeypatch):
        for name in ("COMPOSER_DEFAULT_REGION", "COMPOSER_DEFAULT_ENVIRONMENT",
                     "COMPOSER_DEFAULT_DIALECT", "COMPOSER_MAX_WORKERS", "COMPOSER_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        assert EngineSettings.from_env() == EngineSettings()

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("COMPOSER_DEFAULT_REGION", "northeurope")
        monkeypatch.setenv("COMPOSER_DEFAULT_DIALECT", "Terraform")
        monkeypatch.setenv("COMPOSER_MAX_WORKERS", "4")
        monkeypatch.setenv("COMPOSER_LOG_LEVEL", "debug")
        settings = EngineSettings.from_env()
        assert settings.default_region == "northeurope"
        assert settings.default_dialect == TemplateDialect.TERRAFORM
        assert settings.max_workers == 4
        assert settings.log_level == "DEBUG"

    def test_workers_never_below_one(self, monkeypatch):
        monkeypatch.setenv("COMPOSER_MAX_WORKERS", "0")
        assert EngineSettings.from_env().max_workers == 1

    @pytest.mark.parametrize("name,value", [
        ("COMPOSER_MAX_WORKERS", "many"),
        ("COMPOSER_DEFAULT_DIALECT", "pulumi"),
    ])
    def test_bad_values_raise(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(EnvironmentError, match=name):
            EngineSettings.from_env()


# ═══════════════════════════════════════════════════════════════════
#  4. compose_request CLI
# ═══════════════════════════════════════════════════════════════════

class TestComposeRequestCli:

    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch):
        for name in ("COMPOSER_DEFAULT_DIALECT", "COMPOSER_MAX_WORKERS"):
            monkeypatch.delenv(name, raising=False)

    def _run(self, monkeypatch, tmp_path, doc, *extra):
        request_path = tmp_path / "request.json"
        request_path.write_text(json.dumps(doc), encoding="utf-8")
        out = tmp_path / "out"
        monkeypatch.setattr(
            sys, "argv",
            ["compose_request", "--request", str(request_path), "--output", str(out), *extra],
        )
        return compose_request.main(), out

    def test_success_writes_tree(self, monkeypatch, tmp_path, capsys):
        summary = tmp_path / "summary.json"
        code, out = self._run(monkeypatch, tmp_path, _REQUEST, "--summary", str(summary))
        assert code == compose_request.EXIT_SUCCESS
        assert (out / "main.bicep").is_file()
        assert (out / "modules" / "kv1-private-endpoint" / "main.bicep").is_file()
        doc = json.loads(summary.read_text(encoding="utf-8"))
        assert doc["success"] is True
        assert "files" not in doc
        assert "Composite written" in capsys.readouterr().out

    def test_dialect_override(self, monkeypatch, tmp_path):
        code, out = self._run(monkeypatch, tmp_path, _REQUEST, "--dialect", "terraform")
        assert code == compose_request.EXIT_SUCCESS
        assert (out / "main.tf").is_file()
        assert not (out / "main.bicep").exists()

    def test_rejected_request(self, monkeypatch, tmp_path, capsys):
        code, out = self._run(monkeypatch, tmp_path, {"serviceName": "orders", "bogus": 1})
        assert code == compose_request.EXIT_NOTHING
        assert not out.exists()
        assert "Request rejected" in capsys.readouterr().out

    def test_cycle_generates_nothing(self, monkeypatch, tmp_path, capsys):
        doc = {
            "serviceName": "orders",
            "resources": [{"id": "a", "resourceKind": "keyvault"}, {"id": "b", "resourceKind": "keyvault"}],
            "dependencies": [{"sourceId": "a", "targetId": "b"}, {"sourceId": "b", "targetId": "a"}],
        }
        code, _ = self._run(monkeypatch, tmp_path, doc)
        assert code == compose_request.EXIT_NOTHING
        assert "Nothing generated (cycle)" in capsys.readouterr().out
