"""Completion workflow: carry a created plan through implementation to acceptance."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..config import DONE_KEY
from ..memory.schema import LogKind, Plan, Point
from ..telemetry import emit_activity
from .callbacks import bind_plan_check, bind_point_check
from .evaluation import EvaluationResult, FailedStep
from .engine import WorkflowEngine

LOGGER = logging.getLogger(__name__)

__all__ = ["CompletionWorkflow"]


def _mark_plan_reviewed(plan: Plan) -> None:
    plan.reviewed = True
    plan.add_log(LogKind.PLAN, "plan_reviewed", plan.id, "Plan review checklist completed")


def _review_in_progress(plan: Plan) -> bool:
    """A started plan review keeps going until its queue is empty, whatever ``reviewed`` says."""
    queue = plan.checklist
    return queue is not None and queue.step == FailedStep.PLAN_REVIEW.value and bool(queue.items)


def _first(plan: Plan, condition: Callable[[Point], bool]) -> Optional[Point]:
    for point in plan.points:
        if condition(point):
            return point
    return None


class CompletionWorkflow(WorkflowEngine):
    """Evaluate a plan against the completion rules; earlier stages mask later ones."""

    def evaluate(self, plan_id: str) -> EvaluationResult:
        plan = self._load(plan_id)

        if plan.needs_work:
            return self._plan_rework(plan)

        if not plan.reviewed or _review_in_progress(plan):
            gate = self._validation_gate(plan)
            if gate is not None:
                return gate
            result = self._checklist_review(plan, FailedStep.PLAN_REVIEW, _mark_plan_reviewed)
            if result is not None:
                return result

        rework = [point for point in plan.points if point.need_rework]
        if rework:
            ids = [point.id for point in rework]
            reason = "; ".join(
                f"Point {point.id}: {point.rework_reason or 'no reason given'}" for point in rework
            )
            return self._point_result(
                plan,
                FailedStep.REWORK,
                rework[0],
                ids,
                reason,
                lambda point: not point.need_rework,
            )

        pending = _first(plan, lambda point: not point.implemented)
        if pending is not None:
            return self._point_result(
                plan,
                FailedStep.IMPLEMENTATION,
                pending,
                [pending.id],
                f"Point {pending.id} is not implemented",
                lambda point: point.implemented,
            )

        pending = _first(plan, lambda point: point.implemented and not point.reviewed)
        if pending is not None:
            return self._point_result(
                plan,
                FailedStep.CODE_REVIEW,
                pending,
                [pending.id],
                f"Point {pending.id} is implemented but not reviewed",
                lambda point: point.reviewed or point.need_rework,
            )

        pending = _first(plan, lambda point: point.reviewed and not point.tested)
        if pending is not None:
            return self._point_result(
                plan,
                FailedStep.TESTING,
                pending,
                [pending.id],
                f"Point {pending.id} is reviewed but not tested",
                lambda point: point.tested or point.need_rework,
            )

        if not plan.accepted:
            return self._result(
                plan,
                FailedStep.ACCEPTANCE,
                reason="Plan has not been accepted",
                completion=bind_plan_check(self.store.get, plan.id, lambda stored: stored.accepted or stored.needs_work),
            )

        LOGGER.debug("Plan %s is done", plan.id)
        emit_activity("plan_done", plan.id)
        return self._done(plan, DONE_KEY)

    def _point_result(
        self,
        plan: Plan,
        step: FailedStep,
        point: Point,
        point_ids: list[str],
        reason: str,
        check: Callable[[Point], bool],
    ) -> EvaluationResult:
        return self._result(
            plan,
            step,
            reason=reason,
            point=point,
            failed_points=point_ids,
            completion=bind_point_check(self.store.get, plan.id, point_ids, check),
            done=self._record_point_note(plan.id, point_ids, step.value),
        )
