"""Dialect rules for the orchestrator: naming, references, literals, files."""
from __future__ import annotations

import json
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from generators.rendering import (
    bicep_literal,
    hcl_literal,
    identifier,
    snake_case,
    template_environment,
)
from schemas.composition import CloudProvider, CompositeRequest, TemplateDialect

_ENV = template_environment(Path(__file__).parent / "templates")

MANAGED_BY = "composition-engine"


@dataclass
class ModuleCall:
    """One module declaration in the orchestrator."""
    handle: str
    unit_id: str
    name: str
    source: str
    resource_type: str
    inputs: list[tuple[str, str]] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)


def common_tags(request: CompositeRequest) -> dict[str, str]:
    tags = {
        "Service": request.service_name,
        "Environment": request.environment,
        "ManagedBy": MANAGED_BY,
    }
    tags.update(request.tags)
    return tags


class Dialect:
    dialect: TemplateDialect
    main_file: str
    params_file: str
    extension: str

    def param_name(self, name: str) -> str:
        return name

    def output_expression(self, handle: str, output_name: str) -> str:
        raise NotImplementedError

    def dependency_ref(self, handle: str) -> str:
        raise NotImplementedError

    def literal(self, value: Any) -> str:
        raise NotImplementedError

    def module_source(self, entry_point: str) -> str:
        raise NotImplementedError

    def render_main(
        self, request: CompositeRequest, calls: list[ModuleCall], outputs: list[tuple[str, str]],
    ) -> str:
        raise NotImplementedError

    def render_params(self, request: CompositeRequest) -> str:
        raise NotImplementedError

    def deploy_commands(self, request: CompositeRequest) -> list[str]:
        raise NotImplementedError


class BicepDialect(Dialect):
    dialect = TemplateDialect.BICEP
    main_file = "main.bicep"
    params_file = "main.parameters.json"
    extension = ".bicep"

    def param_name(self, name: str) -> str:
        return identifier(name)

    def output_expression(self, handle: str, output_name: str) -> str:
        return f"{handle}.outputs.{output_name}"

    def dependency_ref(self, handle: str) -> str:
        return handle

    def literal(self, value: Any) -> str:
        # module params sit two levels deep in the orchestrator
        return bicep_literal(value, indent=2)

    def module_source(self, entry_point: str) -> str:
        return f"./{entry_point}"

    def render_main(self, request, calls, outputs) -> str:
        return _ENV.get_template("main.bicep.j2").render(
            request=request, calls=calls, outputs=outputs, tags=common_tags(request),
        )

    def render_params(self, request: CompositeRequest) -> str:
        document = {
            "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentParameters.json#",
            "contentVersion": "1.0.0.0",
            "parameters": {
                "serviceName": {"value": request.service_name},
                "location": {"value": request.region},
                "environment": {"value": request.environment},
                "tags": {"value": common_tags(request)},
            },
        }
        return json.dumps(document, indent=2) + "\n"

    def deploy_commands(self, request: CompositeRequest) -> list[str]:
        return [
            "az deployment group create \\",
            f"  --resource-group rg-{request.service_name}-{request.environment} \\",
            f"  --template-file {self.main_file} \\",
            f"  --parameters {self.params_file}",
        ]


class TerraformDialect(Dialect):
    dialect = TemplateDialect.TERRAFORM
    main_file = "main.tf"
    params_file = "variables.tf"
    extension = ".tf"

    def param_name(self, name: str) -> str:
        return snake_case(name)

    def output_expression(self, handle: str, output_name: str) -> str:
        return f"module.{handle}.{snake_case(output_name)}"

    def dependency_ref(self, handle: str) -> str:
        return f"module.{handle}"

    def literal(self, value: Any) -> str:
        return hcl_literal(value, indent=1)

    def module_source(self, entry_point: str) -> str:
        return f"./{posixpath.dirname(entry_point) or '.'}"

    def render_main(self, request, calls, outputs) -> str:
        return _ENV.get_template("main.tf.j2").render(
            request=request,
            calls=calls,
            outputs=outputs,
            azure=request.provider == CloudProvider.AZURE,
            managed_by=MANAGED_BY,
        )

    def render_params(self, request: CompositeRequest) -> str:
        return _ENV.get_template("variables.tf.j2").render(request=request)

    def deploy_commands(self, request: CompositeRequest) -> list[str]:
        return ["terraform init", "terraform plan -out tfplan", "terraform apply tfplan"]


DIALECTS: dict[TemplateDialect, Dialect] = {
    TemplateDialect.BICEP: BicepDialect(),
    TemplateDialect.TERRAFORM: TerraformDialect(),
}


def get_dialect(dialect: TemplateDialect) -> Dialect:
    return DIALECTS[TemplateDialect(dialect)]


def render_readme(request: CompositeRequest, rows: list[dict], dialect: Dialect) -> str:
    return _ENV.get_template("README.md.j2").render(
        request=request, rows=rows, dialect=dialect, commands=dialect.deploy_commands(request),
    )
