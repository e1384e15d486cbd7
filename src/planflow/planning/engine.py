"""Shared machinery for the creation and completion workflows.

Both workflows load the persisted plan, walk their priority-ordered rules and
build an ``EvaluationResult``. Callbacks attached to a result never hold on to
the plan object they were computed from: they reload the record through the
store each time they run so that a stale result cannot overwrite newer state.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from ..config import VALIDATION_KEY, WorkflowConfig
from ..memory.schema import ChecklistScope, LogKind, Plan, Point, stamp_comment, utc_now
from ..memory.store import PlanStore
from ..prompts import PromptContext, render_prompt
from ..telemetry import emit_activity
from .callbacks import CompletionCallback, CompletionPredicate
from .checklist import ensure_queue, pop_item, render_item
from .evaluation import DoneCallback, EvaluationResult, FailedStep
from .flags import reset_tool_calls
from .validation import validate_plan

LOGGER = logging.getLogger(__name__)

PlanMutation = Callable[[Plan], None]


class WorkflowEngine:
    """Base class holding the store handle, configuration and result builders."""

    def __init__(self, store: PlanStore, config: Optional[WorkflowConfig] = None) -> None:
        self.store = store
        self.config = config or WorkflowConfig.default()

    # Persistence -------------------------------------------------------------------
    def _load(self, plan_id: str) -> Plan:
        return self.store.load(plan_id)

    def _persist(self, plan: Plan) -> None:
        plan.updated_at = utc_now()
        self.store.save(plan)

    # Result builders ---------------------------------------------------------------
    def _result(
        self,
        plan: Plan,
        step: FailedStep,
        *,
        settings_key: Optional[str] = None,
        reason: str = "",
        point: Optional[Point] = None,
        failed_points: Sequence[str] = (),
        checklist: str = "",
        rework_reason: str = "",
        completion: Optional[CompletionCallback] = None,
        done: Optional[DoneCallback] = None,
        remaining: int = 0,
    ) -> EvaluationResult:
        settings = self.config.step(settings_key or step)
        context = PromptContext(
            plan=plan,
            point=point,
            reason=reason,
            failed_point_ids=tuple(failed_points),
            checklist=checklist,
            rework_reason=rework_reason,
        )
        result = EvaluationResult(
            is_done=False,
            failed_step=step,
            next_step_prompt=render_prompt(settings.prompt, context),
            reason=reason,
            failed_points=tuple(failed_points),
            recommended_mode=settings.mode,
            completion_callback=completion,
            done_callback=done,
            checklist_remaining=remaining,
        )
        LOGGER.debug("Plan %s evaluated to step %s (%s)", plan.id, step.value, reason or "no reason")
        return result

    def _done(self, plan: Plan, settings_key: str) -> EvaluationResult:
        settings = self.config.step(settings_key)
        return EvaluationResult(
            is_done=True,
            failed_step=FailedStep.DONE,
            next_step_prompt=render_prompt(settings.prompt, PromptContext(plan=plan)),
        )

    def _bind(self, predicate: Optional[CompletionPredicate], plan_id: str) -> Optional[CompletionCallback]:
        if predicate is None:
            return None
        return predicate.bind(self.store.get, plan_id)

    # Shared rules ------------------------------------------------------------------
    def _plan_rework(self, plan: Plan) -> EvaluationResult:
        comments = list(plan.needs_work_comments)
        reason = "\n".join(comments) if comments else "Plan was marked as needing work"
        return self._result(
            plan,
            FailedStep.PLAN_REWORK,
            reason=reason,
            rework_reason=reason,
            completion=self._bind(self.config.step(FailedStep.PLAN_REWORK).callback, plan.id),
            done=self._consume_needs_work(plan.id),
        )

    def _consume_needs_work(self, plan_id: str) -> DoneCallback:
        def _done(success: bool, note: Optional[str] = None) -> None:
            if not success:
                LOGGER.info("Plan %s rework reported unsuccessful; comments kept", plan_id)
                return

            def mutate(plan: Plan) -> None:
                if not plan.needs_work:
                    return
                if plan.needs_work_comments:
                    addressed = plan.needs_work_comments.pop(0)
                    plan.add_log(LogKind.PLAN, "rework", plan.id, "Addressed review comment", addressed)
                if not plan.needs_work_comments:
                    plan.needs_work = False
                if note:
                    plan.add_log(LogKind.PLAN, "rework", plan.id, note)

            self.store.update(plan_id, mutate)
            emit_activity("plan_rework_progress", plan_id, note=note or "")

        return _done

    def _validation_gate(self, plan: Plan) -> Optional[EvaluationResult]:
        """Run the structural validator ahead of a review; ``None`` when the plan is valid."""
        issue = validate_plan(plan)
        if issue is None:
            return None
        LOGGER.info("Plan %s failed pre-review validation: %s", plan.id, issue.message)
        settings = self.config.step(VALIDATION_KEY)
        # The edit that broke the plan must not count as its repair.
        completion = None
        if settings.callback is not None:
            completion = settings.callback.bind_after(self.store.get, plan.id, plan.tool_calls.call_count)
        return self._result(
            plan,
            FailedStep.PLAN_REVIEW,
            settings_key=VALIDATION_KEY,
            reason=issue.message,
            point=plan.find_point(issue.point_id),
            failed_points=(issue.point_id,),
            completion=completion,
            done=self._gate_done(plan.id),
        )

    def _gate_done(self, plan_id: str) -> DoneCallback:
        def _done(success: bool, note: Optional[str] = None) -> None:
            if not success:
                return

            def mutate(plan: Plan) -> None:
                if validate_plan(plan) is None:
                    reset_tool_calls(plan)

            self.store.update(plan_id, mutate)

        return _done

    def _checklist_review(
        self,
        plan: Plan,
        step: FailedStep,
        on_exhausted: PlanMutation,
    ) -> Optional[EvaluationResult]:
        """Dispense the head item of ``step``'s queue.

        Returns ``None`` when the step has nothing left to review; the bound
        flag has then been set through ``on_exhausted`` and persisted.
        """
        settings = self.config.step(step)
        lines = settings.checklist
        queue, built = ensure_queue(plan, step.value, lines)
        if not queue.items:
            LOGGER.info("Checklist for %s on plan %s is empty; completing step", step.value, plan.id)
            plan.checklist = None
            on_exhausted(plan)
            self._persist(plan)
            return None
        if built:
            self._persist(plan)
            emit_activity("checklist_built", plan.id, step=step, items=queue.total)

        head = queue.items[0]
        text = render_item(head, plan, lines)
        point = plan.find_point(head.target_id) if head.scope is ChecklistScope.POINT else None
        return self._result(
            plan,
            step,
            reason=f"Checklist item {queue.position} of {queue.total}: {text}",
            point=point,
            failed_points=(point.id,) if point else (),
            checklist=text,
            completion=self._bind(settings.callback, plan.id),
            done=self._advance_checklist(plan.id, step, on_exhausted),
            remaining=len(queue.items),
        )

    def _advance_checklist(self, plan_id: str, step: FailedStep, on_exhausted: PlanMutation) -> DoneCallback:
        def _done(success: bool, note: Optional[str] = None) -> None:
            if not success:
                LOGGER.info("Checklist item for %s on plan %s not confirmed; queue unchanged", step.value, plan_id)
                return

            def mutate(plan: Plan) -> None:
                item = pop_item(plan, step.value)
                if item is None:
                    LOGGER.debug("No checklist item to pop for %s on plan %s", step.value, plan_id)
                    return
                plan.reviewed = False
                if note:
                    target = plan.find_point(item.target_id) if item.scope is ChecklistScope.POINT else None
                    if target is not None:
                        target.comments.append(stamp_comment(note))
                    plan.add_log(LogKind.PLAN, "checklist", item.target_id, note, item.template_key)
                if plan.checklist is not None and not plan.checklist.items:
                    plan.checklist = None
                    on_exhausted(plan)
                    emit_activity("checklist_completed", plan_id, step=step)

            self.store.update(plan_id, mutate)

        return _done

    def _record_point_note(self, plan_id: str, point_ids: Sequence[str], action: str) -> DoneCallback:
        """Done-callback for point-focused steps: store the note as a point comment."""
        targets = tuple(point_ids)

        def _done(success: bool, note: Optional[str] = None) -> None:
            if not note:
                return
            text = note if success else f"Not completed: {note}"

            def mutate(plan: Plan) -> None:
                for point_id in targets:
                    point = plan.find_point(point_id)
                    if point is None:
                        continue
                    point.comments.append(stamp_comment(text))
                    point.updated_at = utc_now()
                    plan.add_log(LogKind.POINT, action, point_id, text)

            self.store.update(plan_id, mutate)

        return _done


__all__ = ["PlanMutation", "WorkflowEngine"]
