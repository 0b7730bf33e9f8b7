"""Artifact Assembler — merge unit outputs into one deployable tree.

Inputs are the frozen graph and the composer's outcomes.  Output is a
``CompositeResult`` whose ``files`` map holds:

  - every file of every successful unit, merged in unit-id order
  - the orchestrator (``main.bicep`` / ``main.tf``) declaring one module
    per successful unit, in topological order
  - the parameter file and a README

A path produced twice is a generator-contract violation and raises
``AssemblyError``; nothing is overwritten silently.  No timestamps or
other run-specific values are written, so identical inputs give
byte-identical files.
"""
from __future__ import annotations

import logging
import posixpath
from typing import Any

from engine.composer import ComposedUnit, output_expression
from engine.dependency_graph import DependencyGraph
from engine.dialects import Dialect, ModuleCall, get_dialect, render_readme
from engine.errors import AssemblyError
from generators.rendering import RESERVED_PARAMS
from schemas.composition import (
    CompositeRequest,
    CompositeResult,
    FailureKind,
    ModuleResult,
    UnitResult,
)

_log = logging.getLogger(__name__)

README_FILE = "README.md"

# Set by the engine for cross-cutting templates; never module parameters
_ENGINE_KEYS = frozenset({"parentKind", "parentResourceType", "parentReference"})


class ArtifactAssembler:

    def assemble(
        self,
        request: CompositeRequest,
        graph: DependencyGraph,
        composed: dict[str, ComposedUnit],
    ) -> CompositeResult:
        """Build the result.  Raises ``AssemblyError`` on path or handle collisions."""
        dialect = get_dialect(request.dialect)
        unit_results = self.unit_results(graph, composed)
        errors = [f"{u.unit_id}: {u.error}" for u in unit_results if u.error]
        succeeded = [uid for uid in graph.order if composed[uid].succeeded]

        if not succeeded:
            _log.info("No unit succeeded; nothing to assemble")
            return CompositeResult(
                unit_results=unit_results,
                success=False,
                error_message="No generation unit succeeded",
                failure_kind=FailureKind.GENERATION,
                errors=errors,
                execution_order=list(graph.order),
            )

        files = self._merge_files(composed, succeeded)
        orchestrator = {
            dialect.main_file: dialect.render_main(
                request, self._module_calls(graph, composed, succeeded, dialect),
                self._outputs(composed, succeeded, dialect),
            ),
            dialect.params_file: dialect.render_params(request),
            README_FILE: render_readme(request, self._readme_rows(graph, unit_results), dialect),
        }
        clashes = sorted(set(orchestrator) & set(files))
        if clashes:
            raise AssemblyError([f"Unit file '{path}' collides with an orchestrator file" for path in clashes])

        module_paths = sorted(files)
        files.update(orchestrator)
        success = len(succeeded) == len(graph.order)
        _log.info(
            "Assembled %d file(s) from %d/%d unit(s)", len(files), len(succeeded), len(graph.order),
        )
        return CompositeResult(
            files=dict(sorted(files.items())),
            unit_results=unit_results,
            main_file_path=dialect.main_file,
            module_paths=module_paths,
            success=success,
            error_message=None if success else f"{len(errors)} unit(s) did not generate",
            failure_kind=None if success else FailureKind.GENERATION,
            errors=errors,
            execution_order=list(graph.order),
        )

    def unit_results(self, graph: DependencyGraph, composed: dict[str, ComposedUnit]) -> list[UnitResult]:
        """Per-unit outcome in execution order."""
        results = []
        for uid in graph.order:
            outcome = composed[uid]
            unit = outcome.unit
            result = outcome.result
            results.append(UnitResult(
                unit_id=uid,
                resource_type=result.resource_type if result else unit.kind,
                success=outcome.succeeded,
                status=outcome.status,
                error=outcome.error,
                module_path=_module_dir(result) if result else None,
                output_names=list(result.output_names) if result else [],
                unit_kind=unit.unit_kind,
                parent_id=unit.parent_id,
            ))
        return results

    # ── Internal ──────────────────────────────────────────────────

    def _merge_files(self, composed: dict[str, ComposedUnit], succeeded: list[str]) -> dict[str, str]:
        files: dict[str, str] = {}
        owners: dict[str, str] = {}
        handles: dict[str, str] = {}
        violations: list[str] = []
        for uid in sorted(succeeded):
            result = composed[uid].result
            handle = result.reference_handle
            if handle in handles:
                violations.append(
                    f"Units '{handles[handle]}' and '{uid}' share the module handle '{handle}'"
                )
            handles.setdefault(handle, uid)
            for path in sorted(result.files):
                if path in owners:
                    violations.append(f"Path '{path}' produced by both '{owners[path]}' and '{uid}'")
                    continue
                owners[path] = uid
                files[path] = result.files[path]
        if violations:
            raise AssemblyError(violations)
        return files

    def _module_calls(
        self,
        graph: DependencyGraph,
        composed: dict[str, ComposedUnit],
        succeeded: list[str],
        dialect: Dialect,
    ) -> list[ModuleCall]:
        calls = []
        for uid in succeeded:
            outcome = composed[uid]
            result = outcome.result
            inputs = []
            for key, value in self._params(outcome):
                if key in outcome.inputs:
                    rendered = str(outcome.inputs[key])
                else:
                    rendered = dialect.literal(value)
                inputs.append((dialect.param_name(key), rendered))

            edges = [e for e in graph.edges if e.source_id == uid]
            wired = {e.target_id for e in edges if e.is_wired}
            ordering = sorted({e.target_id for e in edges if not e.is_wired} - wired)
            calls.append(ModuleCall(
                handle=result.reference_handle,
                unit_id=uid,
                name=outcome.unit.spec.name,
                source=dialect.module_source(_entry_point(result, dialect)),
                resource_type=result.resource_type,
                inputs=inputs,
                depends_on=[dialect.dependency_ref(composed[t].result.reference_handle) for t in ordering],
            ))
        return calls

    def _params(self, outcome: ComposedUnit) -> list[tuple[str, Any]]:
        """(key, value) pairs the module accepts, in declaration order."""
        config = dict(outcome.unit.spec.configuration)
        config.update(outcome.inputs)
        names = outcome.result.input_names
        if names is None:
            names = [k for k in config if k not in RESERVED_PARAMS and k not in _ENGINE_KEYS]
        # Optional module params that were never supplied keep their template defaults
        return [(key, config[key]) for key in names if key in config]

    def _outputs(
        self, composed: dict[str, ComposedUnit], succeeded: list[str], dialect: Dialect,
    ) -> list[tuple[str, str]]:
        outputs = []
        for uid in succeeded:
            result = composed[uid].result
            if "resourceId" in result.output_names:
                name = f"{result.reference_handle}_{dialect.param_name('resourceId')}"
                outputs.append((name, output_expression(dialect.dialect, result, "resourceId")))
        return outputs

    @staticmethod
    def _readme_rows(graph: DependencyGraph, unit_results: list[UnitResult]) -> list[dict]:
        return [
            {
                "unit_id": u.unit_id,
                "resource_type": u.resource_type,
                "status": u.status.value,
                "depends_on": graph.dependencies_of(u.unit_id),
            }
            for u in unit_results
        ]


def _entry_point(result: ModuleResult, dialect: Dialect) -> str:
    if result.entry_point:
        return result.entry_point
    paths = sorted(result.files)
    matching = [p for p in paths if p.endswith(dialect.extension)]
    return (matching or paths)[0]


def _module_dir(result: ModuleResult) -> str | None:
    if result.entry_point:
        return posixpath.dirname(result.entry_point) or "."
    if result.files:
        return posixpath.dirname(sorted(result.files)[0]) or "."
    return None
