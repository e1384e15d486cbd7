"""Creation workflow: drive a new plan from descriptions to a reviewed point set.

Rules are checked in priority order and the first match wins:

1. ``needs_work`` interrupts everything. While positioned at one of the three
   review steps the matching rework sub-state is entered; anywhere else the
   generic ``plan_rework`` step is reported.
2. Descriptions are reviewed item by item.
3. The architecture is created (and must parse as a JSON object).
4. The architecture is reviewed item by item.
5. Points are created.
6. Points are validated, then reviewed item by item.
7. Points are validated again, then the final plan-level checklist is worked
   through.

The persisted ``creation_step`` records where the plan currently sits so that
a needs-work raised during a review resolves to the right rework sub-state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import CREATION_COMPLETE_KEY
from ..memory.schema import CreationStep, LogKind, Plan
from ..telemetry import emit_activity
from .callbacks import CompletionPredicate
from .evaluation import DoneCallback, EvaluationResult, FailedStep
from .engine import PlanMutation, WorkflowEngine
from .flags import reset_tool_calls
from .validation import validate_architecture

LOGGER = logging.getLogger(__name__)

__all__ = ["CreationWorkflow"]


@dataclass(frozen=True, slots=True)
class _ReworkRoute:
    """Links a review step to the rework sub-state that answers its needs-work."""

    rework_step: FailedStep
    rework_position: CreationStep
    review_position: CreationStep
    predicate: CompletionPredicate
    reopen: PlanMutation


def _reopen_descriptions(plan: Plan) -> None:
    plan.descriptions_reviewed = False


def _reopen_architecture(plan: Plan) -> None:
    plan.architecture_reviewed = False


def _reopen_points(plan: Plan) -> None:
    plan.points_reviewed = False


_DESCRIPTION_ROUTE = _ReworkRoute(
    FailedStep.PLAN_DESCRIPTION_UPDATE_REWORK,
    CreationStep.DESCRIPTION_UPDATE_REWORK,
    CreationStep.DESCRIPTION_REVIEW,
    CompletionPredicate.DESCRIPTION_CHANGED,
    _reopen_descriptions,
)
_ARCHITECTURE_ROUTE = _ReworkRoute(
    FailedStep.PLAN_ARCHITECTURE_CREATION_REWORK,
    CreationStep.ARCHITECTURE_CREATION_REWORK,
    CreationStep.ARCHITECTURE_REVIEW,
    CompletionPredicate.ARCHITECTURE_SET,
    _reopen_architecture,
)
_POINTS_ROUTE = _ReworkRoute(
    FailedStep.PLAN_POINTS_CREATION_REWORK,
    CreationStep.POINTS_CREATION_REWORK,
    CreationStep.POINTS_REVIEW,
    CompletionPredicate.POINTS_MANIPULATED,
    _reopen_points,
)

# Both the review step and its rework sub-state resolve to the same route so
# that repeated evaluations stay inside the sub-state.
_REWORK_ROUTES: dict[CreationStep, _ReworkRoute] = {
    CreationStep.DESCRIPTION_REVIEW: _DESCRIPTION_ROUTE,
    CreationStep.DESCRIPTION_UPDATE_REWORK: _DESCRIPTION_ROUTE,
    CreationStep.ARCHITECTURE_REVIEW: _ARCHITECTURE_ROUTE,
    CreationStep.ARCHITECTURE_CREATION_REWORK: _ARCHITECTURE_ROUTE,
    CreationStep.POINTS_REVIEW: _POINTS_ROUTE,
    CreationStep.POINTS_CREATION_REWORK: _POINTS_ROUTE,
}


def _mark_descriptions_reviewed(plan: Plan) -> None:
    plan.descriptions_reviewed = True
    plan.descriptions_updated = True
    plan.add_log(LogKind.PLAN, "descriptions_reviewed", plan.id, "Description review completed")


def _mark_architecture_reviewed(plan: Plan) -> None:
    plan.architecture_reviewed = True
    plan.add_log(LogKind.PLAN, "architecture_reviewed", plan.id, "Architecture review completed")


def _mark_points_reviewed(plan: Plan) -> None:
    plan.points_reviewed = True
    plan.add_log(LogKind.PLAN, "points_reviewed", plan.id, "Points review completed")


def _mark_checklist_reviewed(plan: Plan) -> None:
    plan.checklist_reviewed = True
    plan.add_log(LogKind.PLAN, "checklist_reviewed", plan.id, "Final checklist review completed")


class CreationWorkflow(WorkflowEngine):
    """Evaluate a plan against the creation rules."""

    def evaluate(self, plan_id: str) -> EvaluationResult:
        plan = self._load(plan_id)

        if plan.needs_work:
            return self._needs_work(plan)

        if not plan.descriptions_updated or not plan.descriptions_reviewed:
            self._position(plan, CreationStep.DESCRIPTION_REVIEW)
            result = self._checklist_review(plan, FailedStep.PLAN_DESCRIPTION_REVIEW, _mark_descriptions_reviewed)
            if result is not None:
                return result

        architecture_error = validate_architecture(plan.architecture)
        if architecture_error is not None:
            self._position(plan, CreationStep.ARCHITECTURE_CREATION)
            settings = self.config.step(FailedStep.PLAN_ARCHITECTURE_CREATION)
            return self._result(
                plan,
                FailedStep.PLAN_ARCHITECTURE_CREATION,
                reason=architecture_error,
                completion=self._bind(settings.callback, plan.id),
                done=self._finish_architecture_creation(plan.id),
            )

        if not plan.architecture_reviewed:
            self._position(plan, CreationStep.ARCHITECTURE_REVIEW)
            result = self._checklist_review(plan, FailedStep.PLAN_ARCHITECTURE_REVIEW, _mark_architecture_reviewed)
            if result is not None:
                return result

        if not plan.points:
            self._position(plan, CreationStep.POINTS_CREATION)
            settings = self.config.step(FailedStep.PLAN_POINTS_CREATION)
            return self._result(
                plan,
                FailedStep.PLAN_POINTS_CREATION,
                reason="Plan has no points",
                completion=self._bind(settings.callback, plan.id),
                done=self._finish_points_creation(plan.id),
            )

        if not plan.points_reviewed:
            self._position(plan, CreationStep.POINTS_REVIEW)
            gate = self._validation_gate(plan)
            if gate is not None:
                return gate
            result = self._checklist_review(plan, FailedStep.PLAN_POINTS_REVIEW, _mark_points_reviewed)
            if result is not None:
                return result

        if not plan.checklist_reviewed:
            self._position(plan, CreationStep.CHECKLIST_REVIEW)
            gate = self._validation_gate(plan)
            if gate is not None:
                return gate
            result = self._checklist_review(plan, FailedStep.PLAN_CHECKLIST_REVIEW, _mark_checklist_reviewed)
            if result is not None:
                return result

        if plan.creation_step is not CreationStep.COMPLETE:
            plan.creation_step = CreationStep.COMPLETE
            plan.checklist = None
            reset_tool_calls(plan)
            plan.add_log(LogKind.PLAN, "creation_complete", plan.id, "Plan creation completed")
            self._persist(plan)
            emit_activity("plan_creation_complete", plan.id, points=len(plan.points))
            LOGGER.info("Plan %s finished the creation workflow", plan.id)
        return self._done(plan, CREATION_COMPLETE_KEY)

    def _position(self, plan: Plan, step: CreationStep) -> None:
        if plan.creation_step is step:
            return
        LOGGER.debug("Plan %s creation step %s -> %s", plan.id, plan.creation_step.value, step.value)
        plan.creation_step = step
        self._persist(plan)

    # Needs-work handling -----------------------------------------------------------
    def _needs_work(self, plan: Plan) -> EvaluationResult:
        route = _REWORK_ROUTES.get(plan.creation_step)
        if route is None:
            return self._plan_rework(plan)

        self._position(plan, route.rework_position)
        reason = "\n".join(plan.needs_work_comments) or "Review found problems"
        return self._result(
            plan,
            route.rework_step,
            reason=reason,
            rework_reason=reason,
            completion=route.predicate.bind(self.store.get, plan.id),
            done=self._finish_rework(plan.id, route),
        )

    def _finish_rework(self, plan_id: str, route: _ReworkRoute) -> DoneCallback:
        def _done(success: bool, note: Optional[str] = None) -> None:
            def mutate(plan: Plan) -> bool:
                if not plan.needs_work or plan.creation_step is not route.rework_position:
                    return False
                if not route.predicate.holds(plan):
                    LOGGER.warning(
                        "Plan %s reported %s as done without the expected edit; staying in rework",
                        plan_id,
                        route.rework_step.value,
                    )
                    return False
                plan.needs_work = False
                plan.needs_work_comments = []
                plan.reviewed = False
                plan.checklist = None
                reset_tool_calls(plan)
                route.reopen(plan)
                plan.creation_step = route.review_position
                plan.add_log(LogKind.PLAN, "rework_complete", plan.id, note or f"{route.rework_step.value} completed")
                return True

            if not success:
                LOGGER.info("Plan %s rework step %s reported unsuccessful", plan_id, route.rework_step.value)
                return
            if self.store.update(plan_id, mutate):
                emit_activity("plan_rework_complete", plan_id, step=route.rework_step)

        return _done

    # Tool-driven creation steps ----------------------------------------------------
    def _finish_architecture_creation(self, plan_id: str) -> DoneCallback:
        def _done(success: bool, note: Optional[str] = None) -> None:
            def mutate(plan: Plan) -> None:
                if validate_architecture(plan.architecture) is not None:
                    LOGGER.warning("Plan %s architecture is still missing or malformed", plan_id)
                    return
                plan.architecture_created = True
                plan.architecture_reviewed = False
                reset_tool_calls(plan)
                plan.add_log(LogKind.PLAN, "architecture_created", plan.id, note or "Architecture created")

            if success:
                self.store.update(plan_id, mutate)

        return _done

    def _finish_points_creation(self, plan_id: str) -> DoneCallback:
        def _done(success: bool, note: Optional[str] = None) -> None:
            def mutate(plan: Plan) -> None:
                if not plan.points:
                    LOGGER.warning("Plan %s still has no points", plan_id)
                    return
                plan.points_created = True
                plan.points_reviewed = False
                reset_tool_calls(plan)
                plan.add_log(LogKind.PLAN, "points_created", plan.id, note or f"{len(plan.points)} point(s) created")

            if success:
                self.store.update(plan_id, mutate)

        return _done
