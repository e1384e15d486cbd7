"""Typed records persisted by the planflow plan store."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

INDEPENDENT_SENTINEL = "-1"
MAX_LOG_ENTRIES = 100


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def stamp_comment(text: str) -> str:
    """Prefix a comment with its ISO timestamp: ``[2024-01-01T00:00:00+00:00] text``."""
    return f"[{utc_now().isoformat()}] {text.strip()}"


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False, validate_assignment=True)


class CreationStep(str, Enum):
    """Persisted position of a plan inside the creation workflow."""

    NEW = "new"
    DESCRIPTION_REVIEW = "description_review"
    DESCRIPTION_UPDATE_REWORK = "description_update_rework"
    ARCHITECTURE_CREATION = "architecture_creation"
    ARCHITECTURE_REVIEW = "architecture_review"
    ARCHITECTURE_CREATION_REWORK = "architecture_creation_rework"
    POINTS_CREATION = "points_creation"
    POINTS_REVIEW = "points_review"
    POINTS_CREATION_REWORK = "points_creation_rework"
    CHECKLIST_REVIEW = "checklist_review"
    COMPLETE = "complete"


class ChecklistScope(str, Enum):
    """Whether a checklist item targets a single point or the whole plan."""

    POINT = "point"
    PLAN = "plan"


class LogKind(str, Enum):
    POINT = "point"
    PLAN = "plan"


class LanguageInfo(RecordModel):
    """Language detection metadata captured once when the plan is created."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    detected_language: str = ""
    original_request: str = ""
    translated_request: str = ""


class ToolCallFlags(RecordModel):
    """Mutating operations observed since the last reset."""

    description_changed: bool = False
    architecture_set: bool = False
    points_manipulated: bool = False
    last_tool_call_at: Optional[datetime] = None
    # Grows with every recorded call and survives resets.
    call_count: int = 0


class ChecklistItem(RecordModel):
    """Single review question, rendered lazily from the configured templates."""

    scope: ChecklistScope
    target_id: str
    template_key: str


class ChecklistQueue(RecordModel):
    """In-progress review episode for one workflow step."""

    step: str
    items: List[ChecklistItem] = Field(default_factory=list)
    total: int = 0
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def position(self) -> int:
        """One-based position of the head item within the episode."""
        return self.total - len(self.items) + 1


class PlanLogEntry(RecordModel):
    """Activity log line recorded for plan and point state changes."""

    timestamp: datetime = Field(default_factory=utc_now)
    kind: LogKind
    action: str
    target: str
    message: str
    details: str = ""


class Point(RecordModel):
    """Atomic unit of work inside a plan."""

    id: str
    short_name: str = ""
    short_description: str = ""
    detailed_description: str = ""
    review_instructions: str = ""
    testing_instructions: str = ""
    expected_outputs: str = ""
    expected_inputs: str = ""
    depends_on: List[str] = Field(default_factory=list)
    care_on: List[str] = Field(default_factory=list)
    implemented: bool = False
    reviewed: bool = False
    reviewed_comment: str = ""
    tested: bool = False
    tested_comment: str = ""
    need_rework: bool = False
    rework_reason: str = ""
    comments: List[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_independent(self) -> bool:
        return self.depends_on == [INDEPENDENT_SENTINEL]


class Plan(RecordModel):
    """Top-level work unit tracked through creation and completion."""

    id: str
    name: str
    short_description: str = ""
    long_description: str = ""
    language: Optional[LanguageInfo] = None
    architecture: Optional[str] = None
    points: List[Point] = Field(default_factory=list)
    next_point_id: int = 1

    descriptions_updated: bool = False
    descriptions_reviewed: bool = False
    architecture_created: bool = False
    architecture_reviewed: bool = False
    points_created: bool = False
    points_reviewed: bool = False
    checklist_reviewed: bool = False

    reviewed: bool = False
    reviewed_comment: str = ""
    accepted: bool = False
    accepted_comment: str = ""
    needs_work: bool = False
    needs_work_comments: List[str] = Field(default_factory=list)

    tool_calls: ToolCallFlags = Field(default_factory=ToolCallFlags)
    creation_step: CreationStep = CreationStep.NEW
    checklist: Optional[ChecklistQueue] = None
    logs: List[PlanLogEntry] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def find_point(self, point_id: str) -> Optional[Point]:
        for point in self.points:
            if point.id == point_id:
                return point
        return None

    def point_index(self, point_id: str) -> int:
        for index, point in enumerate(self.points):
            if point.id == point_id:
                return index
        return -1

    def allocate_point_id(self) -> str:
        """Hand out the next point id; ids are never reused."""
        existing = [int(point.id) for point in self.points if point.id.isdigit()]
        candidate = max([self.next_point_id - 1, *existing]) + 1
        self.next_point_id = candidate + 1
        return str(candidate)

    def add_log(self, kind: LogKind, action: str, target: str, message: str, details: str = "") -> None:
        self.logs.append(
            PlanLogEntry(kind=kind, action=action, target=target, message=message, details=details)
        )
        if len(self.logs) > MAX_LOG_ENTRIES:
            self.logs = self.logs[-MAX_LOG_ENTRIES:]


__all__ = [
    "INDEPENDENT_SENTINEL",
    "MAX_LOG_ENTRIES",
    "ChecklistItem",
    "ChecklistQueue",
    "ChecklistScope",
    "CreationStep",
    "LanguageInfo",
    "LogKind",
    "Plan",
    "PlanLogEntry",
    "Point",
    "RecordModel",
    "ToolCallFlags",
    "stamp_comment",
    "utc_now",
]
