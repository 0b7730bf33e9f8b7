"""Dependency Graph Builder — validated DAG of generation units.

One unit per enabled core resource plus one per cross-cutting attachment.
Edges point from the dependent unit (``source_id``) to the unit that must
exist first (``target_id``).

Rules:
  - Every detectable request problem is collected before failing;
    nothing is generated for a structurally invalid request.
  - User-declared edges and engine-derived edges (parents, attachment →
    owning resource, attachment references) live in separate lists and
    are merged only when the graph is frozen.
  - Cycles are reported whole, as one ordered path.
  - Ordering is Kahn's algorithm with ties broken by ascending unit id,
    so identical requests always yield identical orders.

Usage::

    builder = DependencyGraphBuilder(request, registry)
    builder.require_valid()
    graph = builder.freeze(attachments)
    for unit_id in graph.order:
        ...
"""
from __future__ import annotations

import heapq
import logging
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from catalog.capabilities import DEFAULT_CATALOG, CapabilityCatalog
from engine.errors import CycleError, RequestValidationError
from generators.registry import ModuleRegistry
from schemas.composition import (
    CompositeRequest,
    CrossCuttingAttachment,
    CrossCuttingType,
    DependencyKind,
    ResourceSpec,
)

_log = logging.getLogger(__name__)

CORE = "core"
CROSS_CUTTING = "cross_cutting"

_EMPTY_VALUES = (None, "", [], {})


# ── Graph types ───────────────────────────────────────────────────

@dataclass(frozen=True)
class GraphEdge:
    source_id: str
    target_id: str
    kind: DependencyKind
    output_name: str | None = None
    input_name: str | None = None

    @property
    def is_wired(self) -> bool:
        return bool(self.output_name and self.input_name)


@dataclass
class GenerationUnit:
    unit_id: str
    unit_kind: str              # core | cross_cutting
    spec: ResourceSpec
    generator: Any
    kind: str                   # normalised resource kind, or cross-cutting slug
    parent_id: str | None = None
    attachment: CrossCuttingAttachment | None = None

    @property
    def is_cross_cutting(self) -> bool:
        return self.unit_kind == CROSS_CUTTING


@dataclass
class DependencyGraph:
    """Frozen DAG.  ``order`` is the deterministic execution order."""
    units: dict[str, GenerationUnit]
    explicit_edges: list[GraphEdge]
    derived_edges: list[GraphEdge]
    order: list[str]
    _deps: dict[str, list[str]] = field(init=False, repr=False)
    _dependents: dict[str, list[str]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        deps = _dependency_map(self.units, self.edges)
        self._deps = {uid: sorted(targets) for uid, targets in deps.items()}
        dependents: dict[str, set[str]] = defaultdict(set)
        for uid, targets in deps.items():
            for target in targets:
                dependents[target].add(uid)
        self._dependents = {uid: sorted(dependents.get(uid, ())) for uid in self.units}

    @property
    def edges(self) -> list[GraphEdge]:
        return self.explicit_edges + self.derived_edges

    def dependencies_of(self, unit_id: str) -> list[str]:
        return list(self._deps.get(unit_id, ()))

    def dependents_of(self, unit_id: str) -> list[str]:
        return list(self._dependents.get(unit_id, ()))

    def downstream_of(self, unit_id: str) -> list[str]:
        """Every unit that transitively depends on ``unit_id``."""
        seen: set[str] = set()
        queue = deque(self.dependents_of(unit_id))
        while queue:
            uid = queue.popleft()
            if uid in seen:
                continue
            seen.add(uid)
            queue.extend(self.dependents_of(uid))
        return sorted(seen)

    def input_edges(self, unit_id: str) -> list[GraphEdge]:
        """Edges that wire an output into ``unit_id``'s configuration."""
        return [e for e in self.edges if e.source_id == unit_id and e.is_wired]

    def waves(self) -> list[list[str]]:
        return execution_waves(self.order, self._deps)


# ── Builder ───────────────────────────────────────────────────────

class DependencyGraphBuilder:
    """Validates a request and freezes it into a ``DependencyGraph``.

    ``resources`` overrides ``request.resources`` (used after architecture
    pattern expansion).
    """

    def __init__(
        self,
        request: CompositeRequest,
        registry: ModuleRegistry,
        catalog: CapabilityCatalog = DEFAULT_CATALOG,
        resources: Iterable[ResourceSpec] | None = None,
    ):
        self.request = request
        self.registry = registry
        self.catalog = catalog
        self.resources = list(request.resources if resources is None else resources)
        self.errors: list[str] = []
        self._declared: dict[str, ResourceSpec] = {}
        self._units: dict[str, GenerationUnit] = {}
        self._explicit: list[GraphEdge] = []
        self._derived: list[GraphEdge] = []
        self._wired_inputs: set[tuple[str, str]] = set()
        self._declared_attachments: set[str] = set()
        self._validated = False

    # ── Resource + explicit edge validation ───────────────────────

    def validate(self) -> tuple[bool, list[str]]:
        """Check ids, generators, parents, explicit dependencies and the
        request's own attachments.

        Returns (ok, violations).  Idempotent.
        """
        if not self._validated:
            self._check_ids()
            self._resolve_generators()
            self._resolve_parents()
            self._resolve_dependencies()
            for attachment in self.request.attachments:
                if self._add_attachment(attachment):
                    self._declared_attachments.add(attachment.unit_id)
            self._validated = True
        return not self.errors, list(self.errors)

    def require_valid(self) -> None:
        ok, violations = self.validate()
        if not ok:
            raise RequestValidationError(violations)

    def core_resources(self) -> list[ResourceSpec]:
        """Enabled, generatable resources in request order."""
        self.validate()
        return [spec for rid, spec in self._declared.items() if rid in self._units]

    # ── Freeze ────────────────────────────────────────────────────

    def freeze(self, attachments: Iterable[CrossCuttingAttachment] = ()) -> DependencyGraph:
        """Add attachment units, merge edge lists, reject cycles, order.

        Request attachments were already added by ``validate``; passing
        them again (as the compliance resolver does) is a no-op.
        Raises ``RequestValidationError`` or ``CycleError``.
        """
        self.require_valid()
        for attachment in attachments:
            if attachment.origin == "explicit" and attachment.unit_id in self._declared_attachments:
                continue
            self._add_attachment(attachment)
        if self.errors:
            raise RequestValidationError(self.errors)

        deps = _dependency_map(self._units, self._explicit + self._derived)
        cycle = find_cycle(self._units, deps)
        if cycle:
            raise CycleError(cycle)

        order = topological_order(self._units, deps)
        _log.info(
            "Dependency graph frozen: %d units, %d explicit edges, %d derived edges",
            len(order), len(self._explicit), len(self._derived),
        )
        return DependencyGraph(
            units=dict(self._units),
            explicit_edges=list(self._explicit),
            derived_edges=list(self._derived),
            order=order,
        )

    # ── Internal: resources ───────────────────────────────────────

    def _check_ids(self) -> None:
        if not self.resources:
            self.errors.append("Request declares no resources and its pattern expands to none")
            return
        counts = Counter(spec.id for spec in self.resources)
        for spec in self.resources:
            if not spec.id or not str(spec.id).strip():
                self.errors.append(f"Resource '{spec.name}' ({spec.resource_kind}) has an empty id")
                continue
            self._declared.setdefault(spec.id, spec)
        for rid in self._declared:
            if counts[rid] > 1:
                self.errors.append(f"Duplicate resource id '{rid}' (declared {counts[rid]} times)")

    def _resolve_generators(self) -> None:
        dialect, provider = self.request.dialect, self.request.provider
        for spec in self._declared.values():
            if not spec.enabled:
                _log.debug("Resource %s is disabled; excluded from the graph", spec.id)
                continue
            kind = self.catalog.normalize_kind(spec.resource_kind)
            generator = self.registry.lookup(kind, dialect, provider)
            if generator is None:
                self.errors.append(
                    f"Resource '{spec.id}': no generator registered for kind "
                    f"'{spec.resource_kind}' ({dialect.value}/{provider.value})"
                )
                continue
            if not generator.can_generate(spec):
                self.errors.append(
                    f"Resource '{spec.id}': generator for '{kind}' declined its configuration"
                )
                continue
            self._units[spec.id] = GenerationUnit(spec.id, CORE, spec, generator, kind)

    def _unresolved(self, ref_id: str) -> str | None:
        """Why ``ref_id`` cannot be depended on, or ``None`` if it can."""
        spec = self._declared.get(ref_id)
        if spec is None:
            return f"'{ref_id}' is not a declared resource"
        if not spec.enabled:
            return f"'{ref_id}' is disabled"
        if ref_id not in self._units:
            return f"'{ref_id}' has no usable generator"
        return None

    def _resolve_parents(self) -> None:
        for rid, spec in self._declared.items():
            if rid not in self._units or not spec.parent_id:
                continue
            problem = self._unresolved(spec.parent_id)
            if problem:
                self.errors.append(f"Resource '{rid}': parent {problem}")
                continue
            self._derived.append(GraphEdge(rid, spec.parent_id, DependencyKind.DEPLOYED_INTO))

    def _resolve_dependencies(self) -> None:
        for index, dep in enumerate(self.request.dependencies, start=1):
            label = f"Dependency #{index} ({dep.source_id} -> {dep.target_id})"
            problems = []
            try:
                kind = DependencyKind(dep.kind)
            except ValueError:
                kind = None
                problems.append(
                    f"{label}: unknown dependency kind {dep.kind!r} "
                    f"(expected one of {', '.join(k.value for k in DependencyKind)})"
                )
            for role, ref in (("source", dep.source_id), ("target", dep.target_id)):
                problem = self._unresolved(ref)
                if problem:
                    problems.append(f"{label}: {role} {problem}")
            if kind == DependencyKind.OUTPUT_TO_INPUT and not dep.is_wired:
                problems.append(f"{label}: OutputToInput requires both outputName and inputName")
            elif bool(dep.output_name) != bool(dep.input_name):
                problems.append(f"{label}: outputName and inputName must be given together")
            if not problems and dep.is_wired:
                problems.extend(
                    self._check_wiring(label, dep.source_id, dep.target_id, dep.output_name, dep.input_name)
                )
            if problems:
                self.errors.extend(problems)
                continue
            self._explicit.append(
                GraphEdge(dep.source_id, dep.target_id, kind, dep.output_name, dep.input_name)
            )

    def _check_wiring(
        self, label: str, source_id: str, target_id: str, output_name: str, input_name: str,
    ) -> list[str]:
        problems = []
        declared = list(self._units[target_id].generator.output_names())
        if declared and output_name not in declared:
            problems.append(
                f"{label}: '{target_id}' does not declare output '{output_name}' "
                f"(declares: {', '.join(declared)})"
            )
        elif not declared:
            _log.debug("%s: '%s' has no static outputs; '%s' checked at generation", label, target_id, output_name)
        key = (source_id, input_name)
        if key in self._wired_inputs:
            problems.append(f"{label}: input '{input_name}' on '{source_id}' is wired more than once")
        self._wired_inputs.add(key)
        return problems

    # ── Internal: attachments ─────────────────────────────────────

    def _add_attachment(self, attachment: CrossCuttingAttachment) -> bool:
        cc_type = CrossCuttingType(attachment.type)
        unit_id = attachment.unit_id
        label = f"Attachment '{unit_id}' ({cc_type.value})"

        problem = self._unresolved(attachment.parent_resource_id)
        if problem:
            self.errors.append(f"{label}: parent {problem}")
            return False
        parent = self._units[attachment.parent_resource_id]

        supported = list(parent.generator.supported_cross_cutting())
        if not self.catalog.supports_capability(parent.kind, cc_type) or (
            supported and cc_type not in supported
        ):
            self.errors.append(f"{label}: resource kind '{parent.kind}' does not support {cc_type.value}")
            return False

        generator = self.registry.lookup_cross_cutting(
            cc_type, self.request.dialect, self.request.provider
        )
        if generator is None:
            self.errors.append(
                f"{label}: no cross-cutting generator registered "
                f"({self.request.dialect.value}/{self.request.provider.value})"
            )
            return False
        if unit_id in self._units or unit_id in self._declared:
            self.errors.append(f"{label}: unit id '{unit_id}' collides with an existing unit")
            return False

        spec = self._attachment_spec(attachment, parent)
        provided = {k for k, v in spec.configuration.items() if v not in _EMPTY_VALUES}
        provided |= {ref.input_name for ref in attachment.references}
        provided |= set(generator.parent_inputs())
        missing = [k for k in generator.required_config() if k not in provided]
        if missing:
            self.errors.append(f"{label}: missing required config {', '.join(missing)}")
            return False
        if not generator.can_generate(spec):
            self.errors.append(f"{label}: generator declined the attachment configuration")
            return False

        problems: list[str] = []
        edges: list[GraphEdge] = []
        for input_name, output_name in generator.parent_inputs().items():
            problems.extend(self._check_wiring(label, unit_id, parent.unit_id, output_name, input_name))
            edges.append(
                GraphEdge(unit_id, parent.unit_id, DependencyKind.OUTPUT_TO_INPUT, output_name, input_name)
            )
        if not edges:
            edges.append(GraphEdge(unit_id, parent.unit_id, DependencyKind.CREATION_ORDER))
        for ref in attachment.references:
            ref_problem = self._unresolved(ref.target_id)
            if ref_problem:
                problems.append(f"{label}: reference {ref_problem}")
                continue
            problems.extend(
                self._check_wiring(label, unit_id, ref.target_id, ref.output_name, ref.input_name)
            )
            edges.append(
                GraphEdge(unit_id, ref.target_id, DependencyKind.RESOURCE_REFERENCE,
                          ref.output_name, ref.input_name)
            )
        if problems:
            self.errors.extend(problems)
            return False

        self._derived.extend(edges)
        self._units[unit_id] = GenerationUnit(
            unit_id, CROSS_CUTTING, spec, generator, cc_type.slug,
            parent_id=parent.unit_id, attachment=attachment,
        )
        return True

    def _attachment_spec(self, attachment: CrossCuttingAttachment, parent: GenerationUnit) -> ResourceSpec:
        """Synthesised spec: catalog defaults, then attachment config, then parent facts."""
        cc_type = CrossCuttingType(attachment.type)
        config = self._catalog_defaults(cc_type, parent.kind)
        config.update(attachment.config)

        if cc_type == CrossCuttingType.RBAC_ASSIGNMENT:
            role = config.pop("roleDefinitionIdOrName", None) or config.get("roleDefinitionId")
            if role:
                config["roleDefinitionId"] = self.catalog.resolve_role_identifier(role)

        config.setdefault("parentKind", parent.kind)
        parent_type = self.catalog.resource_type(parent.kind)
        if parent_type:
            config.setdefault("parentResourceType", parent_type)

        suffix = f"-{attachment.name}" if attachment.name else ""
        return ResourceSpec(
            id=attachment.unit_id,
            name=f"{parent.spec.name}-{cc_type.slug}{suffix}",
            resource_kind=cc_type.slug,
            platform=parent.spec.platform,
            configuration=config,
            tags=dict(parent.spec.tags),
        )

    def _catalog_defaults(self, cc_type: CrossCuttingType, kind: str) -> dict[str, Any]:
        defaults: dict[str, Any] = {}
        if cc_type == CrossCuttingType.PRIVATE_ENDPOINT:
            group_id = self.catalog.group_id(kind)
            if group_id:
                defaults["groupId"] = group_id
        if cc_type in (CrossCuttingType.PRIVATE_ENDPOINT, CrossCuttingType.PRIVATE_DNS_ZONE):
            zone = self.catalog.dns_zone_name(kind)
            if zone:
                defaults["dnsZoneName"] = zone
        if cc_type == CrossCuttingType.DIAGNOSTIC_SETTINGS:
            defaults["logCategories"] = self.catalog.default_log_categories(kind)
        return defaults


# ── Graph algorithms ──────────────────────────────────────────────

def _dependency_map(
    units: Iterable[str], edges: Iterable[GraphEdge],
) -> dict[str, set[str]]:
    deps: dict[str, set[str]] = {uid: set() for uid in units}
    for edge in edges:
        deps.setdefault(edge.source_id, set()).add(edge.target_id)
    return deps


def find_cycle(nodes: Iterable[str], deps: Mapping[str, Iterable[str]]) -> list[str] | None:
    """Depth-first search with an explicit recursion stack.

    Nodes and neighbours are visited in sorted order so the reported cycle
    is deterministic.  Returns the cycle as a path whose first id is
    repeated at the end (``[a, b, a]``; a self edge gives ``[a, a]``), or
    ``None`` when the graph is acyclic.
    """
    white, grey, black = 0, 1, 2
    color = {n: white for n in nodes}
    for root in sorted(color):
        if color[root] != white:
            continue
        color[root] = grey
        path = [root]
        stack = [iter(sorted(deps.get(root, ())))]
        while stack:
            advanced = False
            for child in stack[-1]:
                state = color.get(child)
                if state == grey:
                    return path[path.index(child):] + [child]
                if state == white:
                    color[child] = grey
                    path.append(child)
                    stack.append(iter(sorted(deps.get(child, ()))))
                    advanced = True
                    break
            if not advanced:
                color[path.pop()] = black
                stack.pop()
    return None


def topological_order(nodes: Iterable[str], deps: Mapping[str, Iterable[str]]) -> list[str]:
    """Kahn's algorithm; among ready nodes the smallest id goes first."""
    node_set = set(nodes)
    in_degree = {n: 0 for n in node_set}
    dependents: dict[str, list[str]] = defaultdict(list)
    for node in node_set:
        for target in set(deps.get(node, ())):
            if target in node_set:
                in_degree[node] += 1
                dependents[target].append(node)

    ready = [n for n, d in in_degree.items() if d == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for dependent in dependents[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) != len(node_set):
        raise CycleError(find_cycle(node_set, deps) or sorted(node_set - set(order)))
    return order


def execution_waves(order: list[str], deps: Mapping[str, Iterable[str]]) -> list[list[str]]:
    """Group an ordered DAG into waves: every dependency sits in an earlier wave."""
    depth: dict[str, int] = {}
    for node in order:
        parents = [depth[d] for d in deps.get(node, ()) if d in depth]
        depth[node] = 1 + max(parents) if parents else 0
    waves: dict[int, list[str]] = defaultdict(list)
    for node in order:
        waves[depth[node]].append(node)
    return [sorted(waves[level]) for level in sorted(waves)]
