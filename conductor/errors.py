"""Error taxonomy shared by the planner, dispatcher, executor and API."""
from __future__ import annotations

from typing import Any


class OrchestrationError(Exception):
    """Base class for errors surfaced to callers with a machine-parsable kind."""

    kind = "orchestration_error"
    http_status = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(OrchestrationError):
    """Caller error: malformed workflow, task, or request. Never retried."""

    kind = "validation"
    http_status = 400


class CyclicDependencyError(ValidationError):
    kind = "cyclic_dependency"

    def __init__(self, step_ids: list[str]) -> None:
        self.step_ids = list(step_ids)
        super().__init__(
            "Cyclic dependency between steps: " + ", ".join(self.step_ids),
            details={"step_ids": self.step_ids},
        )


class DanglingDependencyError(ValidationError):
    kind = "dangling_dependency"

    def __init__(self, missing: dict[str, list[str]]) -> None:
        self.missing = {step_id: list(refs) for step_id, refs in sorted(missing.items())}
        described = "; ".join(
            f"{step_id} -> {', '.join(refs)}" for step_id, refs in self.missing.items()
        )
        super().__init__(
            f"Steps reference unknown dependencies: {described}",
            details={"missing": self.missing},
        )


class NotFoundError(OrchestrationError):
    kind = "not_found"
    http_status = 404


class UnavailableError(OrchestrationError):
    """No active worker can serve the requested capability."""

    kind = "unavailable"
    http_status = 503


class DispatchTimeoutError(OrchestrationError):
    kind = "timeout"
    http_status = 503


class TransportError(OrchestrationError):
    kind = "transport"
    http_status = 503
