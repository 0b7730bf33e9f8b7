"""Typed failures of a composite run.

Each exception carries the full ``violations`` list so callers can print
every problem at once, plus the ``FailureKind`` the facade reports.

Usage::

    try:
        graph = builder.freeze(attachments)
    except CompositionError as exc:
        for v in exc.violations:
            print(v)
"""
from __future__ import annotations

from schemas.composition import FailureKind


class CompositionError(Exception):
    """Base class: a request that produces no output."""

    failure_kind: FailureKind = FailureKind.VALIDATION
    label = "Composite request failed"

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__(f"{self.label}: {len(self.violations)} violation(s)")


class RequestValidationError(CompositionError):
    """Duplicate ids, unresolved references, missing generators."""

    failure_kind = FailureKind.VALIDATION
    label = "Request validation failed"


class CycleError(CompositionError):
    """A dependency cycle; ``cycle`` is the ordered path, first id repeated last."""

    failure_kind = FailureKind.CYCLE
    label = "Dependency cycle detected"

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__([f"Dependency cycle: {' -> '.join(self.cycle)}"])


class ComplianceError(CompositionError):
    """A mandated concern that an in-scope resource kind cannot support."""

    failure_kind = FailureKind.COMPLIANCE
    label = "Compliance mandate cannot be satisfied"


class AssemblyError(CompositionError):
    """Generator-contract violation found while merging (path collisions)."""

    failure_kind = FailureKind.ASSEMBLY
    label = "Artifact assembly failed"


class CompositionFailed(Exception):
    """Raised by ``require_success`` for callers that prefer exceptions."""

    def __init__(self, failure_kind: FailureKind | None, errors: list[str]):
        self.failure_kind = failure_kind
        self.errors = list(errors)
        kind = failure_kind.value if failure_kind else "unknown"
        super().__init__(f"Composite generation failed ({kind}): {len(self.errors)} error(s)")
