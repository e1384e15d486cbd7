"""Structural integrity checks over a plan's point graph and architecture."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..memory.schema import INDEPENDENT_SENTINEL, Plan, Point

__all__ = [
    "IssueType",
    "REQUIRED_POINT_FIELDS",
    "ValidationIssue",
    "parse_architecture",
    "validate_architecture",
    "validate_plan",
]


class IssueType(str, Enum):
    """Categories of structural faults reported by the validator."""

    MISSING_FIELD = "missing_field"
    MISSING_DEPENDENCIES = "missing_dependencies"
    INVALID_DEPENDENCY = "invalid_dependency"


# Checked in this order; the label is used verbatim in issue messages.
REQUIRED_POINT_FIELDS: tuple[tuple[str, str], ...] = (
    ("short_name", "short name"),
    ("short_description", "short description"),
    ("detailed_description", "detailed description"),
    ("review_instructions", "review instructions"),
    ("testing_instructions", "testing instructions"),
    ("expected_outputs", "expected outputs"),
    ("expected_inputs", "expected inputs"),
)


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """First structural fault found in a plan."""

    type: IssueType
    point_id: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "pointId": self.point_id, "message": self.message}


def _check_point(point: Point, known_ids: set[str]) -> Optional[ValidationIssue]:
    for attribute, label in REQUIRED_POINT_FIELDS:
        value = getattr(point, attribute) or ""
        if not value.strip():
            return ValidationIssue(
                IssueType.MISSING_FIELD,
                point.id,
                f"Point {point.id} is missing {label}",
            )

    if not point.depends_on:
        return ValidationIssue(
            IssueType.MISSING_DEPENDENCIES,
            point.id,
            f'Point {point.id} has no dependencies set. Use "{INDEPENDENT_SENTINEL}" to mark '
            "it as independent or specify the point IDs it depends on",
        )

    for dependency in point.depends_on:
        if dependency == INDEPENDENT_SENTINEL:
            continue
        if dependency not in known_ids:
            return ValidationIssue(
                IssueType.INVALID_DEPENDENCY,
                point.id,
                f"Point {point.id} depends on non-existent point {dependency}",
            )
    return None


def validate_plan(plan: Plan) -> Optional[ValidationIssue]:
    """Return the first structural issue in document order, or ``None`` when valid."""
    known_ids = {point.id for point in plan.points}
    for point in plan.points:
        issue = _check_point(point, known_ids)
        if issue is not None:
            return issue
    return None


def parse_architecture(architecture: str) -> dict[str, Any]:
    """Decode an architecture blob; raises ``ValueError`` when it is not a JSON object."""
    data = json.loads(architecture)
    if not isinstance(data, dict):
        raise ValueError("Architecture must be a JSON object")
    return data


def validate_architecture(architecture: Optional[str]) -> Optional[str]:
    """Return an error message when the architecture is absent or malformed."""
    if architecture is None or not architecture.strip():
        return "Architecture has not been set"
    try:
        parse_architecture(architecture)
    except json.JSONDecodeError as error:
        return f"Architecture must be valid JSON: {error.msg} (line {error.lineno}, column {error.colno})"
    except ValueError as error:
        return str(error)
    return None
