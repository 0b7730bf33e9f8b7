"""Topological Composer — runs generators over a frozen dependency graph.

A unit is generated only after every unit it depends on has recorded a
result.  Failures stay local:

  - a generator exception or a malformed result fails that unit only
  - every unit downstream of a failure is skipped, naming the blocker
  - independent branches keep going

Wired inputs (``OutputToInput`` and attachment references) are resolved
from the producing unit's ``ModuleResult`` and merged into a copy of the
consuming unit's configuration before its generator runs.

Usage::

    composed = TopologicalComposer(graph, context).run()
    for unit_id, outcome in composed.items():
        print(unit_id, outcome.status.value)
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any

from engine.dependency_graph import DependencyGraph, GenerationUnit
from engine.dialects import get_dialect
from generators.types import GenerationContext
from schemas.composition import ModuleResult, TemplateDialect, UnitStatus

_log = logging.getLogger(__name__)


@dataclass
class ComposedUnit:
    unit: GenerationUnit
    status: UnitStatus
    result: ModuleResult | None = None
    error: str | None = None
    inputs: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == UnitStatus.SUCCEEDED


def output_expression(dialect: TemplateDialect, result: ModuleResult, output_name: str) -> str:
    """How other modules refer to ``output_name`` of ``result``."""
    if output_name in result.output_values:
        return result.output_values[output_name]
    return get_dialect(dialect).output_expression(result.reference_handle, output_name)


class TopologicalComposer:
    """Generate every unit of ``graph`` in dependency order."""

    def __init__(self, graph: DependencyGraph, context: GenerationContext, max_workers: int = 1):
        self.graph = graph
        self.context = context
        self.max_workers = max(1, int(max_workers))

    def run(self) -> dict[str, ComposedUnit]:
        """Return outcomes keyed by unit id, in ``graph.order``."""
        outcomes: dict[str, ComposedUnit] = {}
        if self.max_workers == 1:
            for uid in self.graph.order:
                outcomes[uid] = self._compose(uid, outcomes)
        else:
            # Waves only contain units whose dependencies sit in earlier waves
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                for wave in self.graph.waves():
                    futures = {uid: pool.submit(self._compose, uid, outcomes) for uid in wave}
                    for uid in sorted(futures):
                        outcomes[uid] = futures[uid].result()

        ordered = {uid: outcomes[uid] for uid in self.graph.order}
        counts = {status: 0 for status in UnitStatus}
        for outcome in ordered.values():
            counts[outcome.status] += 1
        _log.info(
            "Composition finished: %d succeeded, %d failed, %d skipped",
            counts[UnitStatus.SUCCEEDED], counts[UnitStatus.FAILED], counts[UnitStatus.SKIPPED],
        )
        return ordered

    # ── Per unit ──────────────────────────────────────────────────

    def _compose(self, uid: str, done: dict[str, ComposedUnit]) -> ComposedUnit:
        unit = self.graph.units[uid]

        for dep in self.graph.dependencies_of(uid):
            upstream = done.get(dep)
            if upstream is None or not upstream.succeeded:
                reason = f"Skipped: dependency '{dep}' did not succeed"
                _log.debug("%s %s", uid, reason.lower())
                return ComposedUnit(unit, UnitStatus.SKIPPED, error=reason)

        inputs: dict[str, Any] = {}
        for edge in self.graph.input_edges(uid):
            producer = done[edge.target_id].result
            if edge.output_name not in producer.output_names:
                return self._failed(
                    unit,
                    f"Output '{edge.output_name}' is not exposed by '{edge.target_id}' "
                    f"(exposes: {', '.join(producer.output_names) or 'nothing'})",
                )
            inputs[edge.input_name] = output_expression(
                self.context.dialect, producer, edge.output_name,
            )

        configuration = dict(unit.spec.configuration)
        configuration.update(inputs)
        if unit.is_cross_cutting and unit.parent_id:
            parent = done[unit.parent_id].result
            configuration.setdefault("parentReference", parent.reference_handle)
            configuration.setdefault("parentResourceType", parent.resource_type)
        spec = replace(unit.spec, configuration=configuration)

        try:
            result = unit.generator.generate_core(spec, self.context)
        except Exception as exc:
            _log.warning("Generator for %s raised %s: %s", uid, type(exc).__name__, exc)
            return self._failed(unit, f"{type(exc).__name__}: {exc}", inputs)

        if not isinstance(result, ModuleResult):
            return self._failed(
                unit, f"Generator returned {type(result).__name__}, expected ModuleResult", inputs,
            )
        if not result.files:
            return self._failed(unit, "Generator returned no files", inputs)

        _log.debug("Generated %s (%d file(s))", uid, len(result.files))
        return ComposedUnit(unit, UnitStatus.SUCCEEDED, result=result, inputs=inputs)

    @staticmethod
    def _failed(unit: GenerationUnit, error: str, inputs: dict[str, Any] | None = None) -> ComposedUnit:
        _log.warning("Unit %s failed: %s", unit.unit_id, error)
        return ComposedUnit(unit, UnitStatus.FAILED, error=error, inputs=dict(inputs or {}))
