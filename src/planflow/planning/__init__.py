"""
Plan evaluation: validation, checklists and the creation/completion workflows.
"""

from importlib import import_module
from typing import Any

_EXPORTS = {
    "CompletionWorkflow": "planflow.planning.completion",
    "CreationWorkflow": "planflow.planning.creation",
    "EvaluationResult": "planflow.planning.evaluation",
    "FailedStep": "planflow.planning.evaluation",
    "ValidationIssue": "planflow.planning.validation",
    "validate_plan": "planflow.planning.validation",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import workflow classes so configuration can import the leaf modules."""
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name])
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
