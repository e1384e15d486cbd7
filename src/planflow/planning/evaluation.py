"""Result types shared by the creation and completion workflows."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .callbacks import CompletionCallback

DoneCallback = Callable[[bool, Optional[str]], None]

__all__ = [
    "CREATION_STEPS",
    "COMPLETION_STEPS",
    "DoneCallback",
    "EvaluationResult",
    "FailedStep",
]


class FailedStep(str, Enum):
    """Next actionable step reported by an evaluation; ``DONE`` means nothing is left."""

    DONE = ""
    PLAN_REWORK = "plan_rework"
    PLAN_DESCRIPTION_REVIEW = "plan_description_review"
    PLAN_DESCRIPTION_UPDATE_REWORK = "plan_description_update_rework"
    PLAN_ARCHITECTURE_CREATION = "plan_architecture_creation"
    PLAN_ARCHITECTURE_REVIEW = "plan_architecture_review"
    PLAN_ARCHITECTURE_CREATION_REWORK = "plan_architecture_creation_rework"
    PLAN_POINTS_CREATION = "plan_points_creation"
    PLAN_POINTS_REVIEW = "plan_points_review"
    PLAN_POINTS_CREATION_REWORK = "plan_points_creation_rework"
    PLAN_CHECKLIST_REVIEW = "plan_checklist_review"
    PLAN_REVIEW = "plan_review"
    REWORK = "rework"
    IMPLEMENTATION = "implementation"
    CODE_REVIEW = "code_review"
    TESTING = "testing"
    ACCEPTANCE = "acceptance"


CREATION_STEPS: tuple[FailedStep, ...] = (
    FailedStep.PLAN_REWORK,
    FailedStep.PLAN_DESCRIPTION_REVIEW,
    FailedStep.PLAN_DESCRIPTION_UPDATE_REWORK,
    FailedStep.PLAN_ARCHITECTURE_CREATION,
    FailedStep.PLAN_ARCHITECTURE_REVIEW,
    FailedStep.PLAN_ARCHITECTURE_CREATION_REWORK,
    FailedStep.PLAN_POINTS_CREATION,
    FailedStep.PLAN_POINTS_REVIEW,
    FailedStep.PLAN_POINTS_CREATION_REWORK,
    FailedStep.PLAN_CHECKLIST_REVIEW,
)

COMPLETION_STEPS: tuple[FailedStep, ...] = (
    FailedStep.PLAN_REWORK,
    FailedStep.PLAN_REVIEW,
    FailedStep.REWORK,
    FailedStep.IMPLEMENTATION,
    FailedStep.CODE_REVIEW,
    FailedStep.TESTING,
    FailedStep.ACCEPTANCE,
)


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    """Next-step decision computed from persisted plan state."""

    is_done: bool
    failed_step: FailedStep
    next_step_prompt: str
    reason: str = ""
    failed_points: tuple[str, ...] = ()
    recommended_mode: str = ""
    completion_callback: Optional[CompletionCallback] = field(default=None, compare=False)
    done_callback: Optional[DoneCallback] = field(default=None, compare=False)
    checklist_remaining: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialisable view without the callables."""
        return {
            "isDone": self.is_done,
            "failedStep": self.failed_step.value,
            "reason": self.reason,
            "failedPoints": list(self.failed_points),
            "nextStepPrompt": self.next_step_prompt,
            "recommendedMode": self.recommended_mode,
            "hasCompletionCallback": self.completion_callback is not None,
            "hasDoneCallback": self.done_callback is not None,
            "checklistRemaining": self.checklist_remaining,
        }
