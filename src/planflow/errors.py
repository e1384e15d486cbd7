"""Error taxonomy shared by the plan store, the engine and the operation façade."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = [
    "ConfigError",
    "InvalidArgument",
    "NotFoundError",
    "PlanflowError",
    "PreconditionFailure",
    "StorageError",
    "ValidationFailure",
]


class PlanflowError(RuntimeError):
    """Base error for every failure surfaced by planflow operations."""

    kind = "error"

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})


class NotFoundError(PlanflowError):
    """Raised when a plan or point identifier does not resolve."""

    kind = "not_found"


class ValidationFailure(PlanflowError):
    """Raised for structural faults in a plan or a malformed architecture blob."""

    kind = "validation_failure"


class PreconditionFailure(PlanflowError):
    """Raised when an operation is invoked before its required state."""

    kind = "precondition_failure"


class InvalidArgument(PlanflowError):
    """Raised when a required argument is absent, blank or the patch is empty."""

    kind = "invalid_argument"


class StorageError(PlanflowError):
    """Raised when persisting or loading a plan record fails."""

    kind = "storage_failure"


class ConfigError(PlanflowError):
    """Raised when the workflow configuration cannot be loaded or resolved."""

    kind = "config_error"
