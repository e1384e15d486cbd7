"""Completion predicates: the closed set of checks a caller can poll.

Configuration names a predicate by string; the name is resolved once into a
``CompletionPredicate`` member when the configuration is loaded. Evaluation
then binds the member to a plan loader, yielding a zero-argument callable
that re-reads the persisted plan every time it is polled.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional, Sequence

from ..errors import ConfigError
from ..memory.schema import Plan, Point

LOGGER = logging.getLogger(__name__)

PlanLoader = Callable[[str], Optional[Plan]]
CompletionCallback = Callable[[], bool]

__all__ = [
    "CompletionCallback",
    "CompletionPredicate",
    "PlanLoader",
    "bind_plan_check",
    "bind_point_check",
    "resolve_predicate",
]


class CompletionPredicate(str, Enum):
    PLAN_REVIEWED = "plan.reviewed"
    DESCRIPTIONS_REVIEWED = "plan.descriptionsReviewed"
    ARCHITECTURE_REVIEWED = "plan.architectureReviewed"
    POINTS_REVIEWED = "plan.pointsReviewed"
    CHECKLIST_REVIEWED = "plan.checklistReviewed"
    POINTS_CREATED = "plan.pointsCreated"
    NOT_NEEDS_WORK = "!plan.needsWork"
    DESCRIPTION_CHANGED = "tool.descriptionChanged"
    ARCHITECTURE_SET = "tool.architectureSet"
    POINTS_MANIPULATED = "tool.pointsManipulated"

    def holds(self, plan: Plan) -> bool:
        return _CHECKS[self](plan)

    def bind(self, loader: PlanLoader, plan_id: str) -> CompletionCallback:
        def _poll() -> bool:
            plan = loader(plan_id)
            if plan is None:
                return False
            result = self.holds(plan)
            LOGGER.debug("Completion predicate %s on plan %s -> %s", self.value, plan_id, result)
            return result

        return _poll

    def bind_after(self, loader: PlanLoader, plan_id: str, call_count: int) -> CompletionCallback:
        """Like ``bind`` but only holds once a tool call newer than ``call_count`` was recorded."""

        def _poll() -> bool:
            plan = loader(plan_id)
            if plan is None or plan.tool_calls.call_count <= call_count:
                return False
            return self.holds(plan)

        return _poll


_CHECKS: dict[CompletionPredicate, Callable[[Plan], bool]] = {
    CompletionPredicate.PLAN_REVIEWED: lambda plan: plan.reviewed,
    CompletionPredicate.DESCRIPTIONS_REVIEWED: lambda plan: plan.descriptions_reviewed,
    CompletionPredicate.ARCHITECTURE_REVIEWED: lambda plan: plan.architecture_reviewed,
    CompletionPredicate.POINTS_REVIEWED: lambda plan: plan.points_reviewed,
    CompletionPredicate.CHECKLIST_REVIEWED: lambda plan: plan.checklist_reviewed,
    CompletionPredicate.POINTS_CREATED: lambda plan: plan.points_created,
    CompletionPredicate.NOT_NEEDS_WORK: lambda plan: not plan.needs_work,
    CompletionPredicate.DESCRIPTION_CHANGED: lambda plan: plan.tool_calls.description_changed,
    CompletionPredicate.ARCHITECTURE_SET: lambda plan: plan.tool_calls.architecture_set,
    CompletionPredicate.POINTS_MANIPULATED: lambda plan: plan.tool_calls.points_manipulated,
}


def bind_point_check(
    loader: PlanLoader,
    plan_id: str,
    point_ids: Sequence[str],
    check: Callable[[Point], bool],
) -> CompletionCallback:
    """Poll ``check`` against each listed point of the freshly loaded plan.

    A point that no longer exists counts as not satisfied.
    """
    targets = tuple(point_ids)

    def _poll() -> bool:
        plan = loader(plan_id)
        if plan is None or not targets:
            return False
        for point_id in targets:
            point = plan.find_point(point_id)
            if point is None or not check(point):
                return False
        return True

    return _poll


def bind_plan_check(loader: PlanLoader, plan_id: str, check: Callable[[Plan], bool]) -> CompletionCallback:
    def _poll() -> bool:
        plan = loader(plan_id)
        return plan is not None and check(plan)

    return _poll


def resolve_predicate(name: Optional[str], *, step: str = "") -> Optional[CompletionPredicate]:
    """Map a configured predicate name to its enum member; blank means none."""
    if name is None:
        return None
    candidate = str(name).strip()
    if not candidate:
        return None
    try:
        return CompletionPredicate(candidate)
    except ValueError as error:
        known = ", ".join(member.value for member in CompletionPredicate)
        location = f" for step '{step}'" if step else ""
        raise ConfigError(
            f"Unknown completion callback '{candidate}'{location}. Expected one of: {known}"
        ) from error
