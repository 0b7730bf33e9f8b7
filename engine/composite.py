"""Composite engine facade — one request in, one ``CompositeResult`` out.

Pipeline::

    expand_pattern → DependencyGraphBuilder.validate
                   → ComplianceAttachmentResolver.resolve
                   → DependencyGraphBuilder.freeze
                   → TopologicalComposer.run
                   → ArtifactAssembler.assemble

Typed failures never escape ``generate``; they come back as a result with
``failure_kind`` set and ``files`` empty.  Unit-level failures give a
partial result (``failure_kind == generation``).  Callers that prefer
exceptions pass the result through ``require_success``.

Usage::

    engine = CompositeEngine()
    result = engine.generate(request)
    for path, text in result.files.items():
        ...
"""
from __future__ import annotations

import logging

from catalog.capabilities import DEFAULT_CATALOG, CapabilityCatalog
from engine.assembler import ArtifactAssembler
from engine.compliance import ComplianceAttachmentResolver, mandates_from_request
from engine.composer import TopologicalComposer
from engine.dependency_graph import DependencyGraphBuilder
from engine.errors import AssemblyError, CompositionError, CompositionFailed
from engine.patterns import expand_pattern
from engine.settings import EngineSettings
from generators.registry import ModuleRegistry, build_default_registry
from generators.types import GenerationContext
from schemas.composition import CompositeRequest, CompositeResult

_log = logging.getLogger(__name__)


class CompositeEngine:
    """Stateless between runs; one instance may serve many requests."""

    def __init__(
        self,
        registry: ModuleRegistry | None = None,
        catalog: CapabilityCatalog | None = None,
        settings: EngineSettings | None = None,
    ):
        self.catalog = catalog or DEFAULT_CATALOG
        self.registry = registry if registry is not None else build_default_registry(self.catalog)
        self.settings = settings or EngineSettings()
        self.resolver = ComplianceAttachmentResolver(self.catalog)
        self.assembler = ArtifactAssembler()

    def generate(self, request: CompositeRequest, max_workers: int | None = None) -> CompositeResult:
        workers = max_workers or self.settings.max_workers
        _log.info(
            "Composing '%s': pattern=%s dialect=%s provider=%s",
            request.service_name, request.pattern.value, request.dialect.value, request.provider.value,
        )
        graph = None
        composed = None
        try:
            builder = DependencyGraphBuilder(
                request, self.registry, self.catalog, resources=expand_pattern(request),
            )
            builder.require_valid()
            attachments = self.resolver.resolve(
                builder.core_resources(), mandates_from_request(request), request.attachments,
            )
            graph = builder.freeze(attachments)
            context = GenerationContext(
                service_name=request.service_name,
                dialect=request.dialect,
                provider=request.provider,
                region=request.region,
                environment=request.environment,
                tags=dict(request.tags),
            )
            composed = TopologicalComposer(graph, context, max_workers=workers).run()
            result = self.assembler.assemble(request, graph, composed)
        except CompositionError as exc:
            _log.info("Composite request failed (%s): %s", exc.failure_kind.value, exc)
            for violation in exc.violations:
                _log.debug("  %s", violation)
            unit_results = []
            if isinstance(exc, AssemblyError) and graph is not None and composed is not None:
                unit_results = self.assembler.unit_results(graph, composed)
            return CompositeResult(
                unit_results=unit_results,
                success=False,
                error_message=str(exc),
                failure_kind=exc.failure_kind,
                errors=list(exc.violations),
                execution_order=list(graph.order) if graph is not None else [],
            )

        if result.success:
            _log.info("Composite request succeeded: %d file(s)", len(result.files))
        else:
            _log.info(
                "Composite request partially generated: %d failed, %d skipped",
                len(result.failed_units), len(result.skipped_units),
            )
        return result


def generate_composite(request: CompositeRequest, **engine_kwargs) -> CompositeResult:
    """One-shot convenience wrapper around ``CompositeEngine.generate``."""
    return CompositeEngine(**engine_kwargs).generate(request)


def require_success(result: CompositeResult) -> CompositeResult:
    """Return ``result`` unchanged, or raise ``CompositionFailed``."""
    if not result.success:
        raise CompositionFailed(result.failure_kind, result.errors or [result.error_message or ""])
    return result
