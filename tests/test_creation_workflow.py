from __future__ import annotations

from planflow.memory.schema import CreationStep
from planflow.planning.evaluation import EvaluationResult, FailedStep
from planflow.service import PlanService


def _evaluate(service: PlanService, plan_id: str) -> EvaluationResult:
    result = service.evaluate_creation(plan_id)
    assert result.success, result.error
    return result.data


def _work_through_checklist(service: PlanService, plan_id: str, step: FailedStep) -> int:
    """Confirm checklist items of ``step`` until the workflow moves on; returns the count."""
    handled = 0
    result = _evaluate(service, plan_id)
    while result.failed_step is step:
        assert result.done_callback is not None
        result.done_callback(True, None)
        handled += 1
        result = _evaluate(service, plan_id)
    return handled


def _add_valid_points(service: PlanService, plan_id: str, point_fields) -> None:
    added = service.add_points(
        [point_fields("Parser"), point_fields("Renderer", depends_on=["1"])],
        plan_id=plan_id,
    )
    assert added.success, added.error


def test_new_plan_starts_with_description_review(service: PlanService, plan_id: str) -> None:
    result = _evaluate(service, plan_id)

    assert result.failed_step is FailedStep.PLAN_DESCRIPTION_REVIEW
    assert result.recommended_mode == "Reviewer"
    assert result.checklist_remaining == 3
    assert "Plan: Are the short and long descriptions clear and comprehensive?" in result.next_step_prompt
    assert result.completion_callback is not None
    assert result.completion_callback() is False
    assert service.get_plan(plan_id).data.creation_step is CreationStep.DESCRIPTION_REVIEW


def test_reevaluating_without_mutation_is_stable(service: PlanService, plan_id: str) -> None:
    first = _evaluate(service, plan_id)
    second = _evaluate(service, plan_id)

    assert second.failed_step is first.failed_step
    assert second.checklist_remaining == first.checklist_remaining
    assert second.next_step_prompt == first.next_step_prompt


def test_done_callback_pops_one_item_and_clears_review_flag(service: PlanService, plan_id: str) -> None:
    first = _evaluate(service, plan_id)
    service.set_plan_reviewed("looks fine", plan_id=plan_id)
    assert first.completion_callback() is True

    first.done_callback(True, "descriptions are clear")
    second = _evaluate(service, plan_id)

    assert second.checklist_remaining == first.checklist_remaining - 1
    assert service.get_plan(plan_id).data.reviewed is False


def test_unsuccessful_done_callback_keeps_queue(service: PlanService, plan_id: str) -> None:
    first = _evaluate(service, plan_id)
    first.done_callback(False, "could not review")
    assert _evaluate(service, plan_id).checklist_remaining == first.checklist_remaining


def test_repeated_done_callback_pops_current_head(service: PlanService, plan_id: str) -> None:
    first = _evaluate(service, plan_id)
    first.done_callback(True, None)
    first.done_callback(True, None)
    # The callback reloads the plan, so a second call pops the new head.
    assert _evaluate(service, plan_id).checklist_remaining == first.checklist_remaining - 2


def test_description_exhaustion_moves_to_architecture_creation(service: PlanService, plan_id: str) -> None:
    assert _work_through_checklist(service, plan_id, FailedStep.PLAN_DESCRIPTION_REVIEW) == 3

    plan = service.get_plan(plan_id).data
    assert plan.descriptions_reviewed is True
    assert plan.descriptions_updated is True

    result = _evaluate(service, plan_id)
    assert result.failed_step is FailedStep.PLAN_ARCHITECTURE_CREATION
    assert result.reason == "Architecture has not been set"
    assert result.recommended_mode == "Architect"


def test_architecture_creation_requires_a_real_edit(service: PlanService, plan_id: str) -> None:
    _work_through_checklist(service, plan_id, FailedStep.PLAN_DESCRIPTION_REVIEW)
    result = _evaluate(service, plan_id)

    result.done_callback(True, "done, trust me")
    assert service.get_plan(plan_id).data.architecture_created is False
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_ARCHITECTURE_CREATION

    assert service.set_architecture({"components": ["parser", "renderer"]}, plan_id=plan_id).success
    assert result.completion_callback() is True
    result.done_callback(True, None)

    plan = service.get_plan(plan_id).data
    assert plan.architecture_created is True
    assert plan.tool_calls.architecture_set is False
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_ARCHITECTURE_REVIEW


def test_full_creation_walkthrough(service: PlanService, plan_id: str, point_fields) -> None:
    _work_through_checklist(service, plan_id, FailedStep.PLAN_DESCRIPTION_REVIEW)
    assert service.set_architecture('{"components": ["parser"]}', plan_id=plan_id).success
    assert _work_through_checklist(service, plan_id, FailedStep.PLAN_ARCHITECTURE_REVIEW) == 3

    creation = _evaluate(service, plan_id)
    assert creation.failed_step is FailedStep.PLAN_POINTS_CREATION
    assert creation.completion_callback() is False
    _add_valid_points(service, plan_id, point_fields)
    assert creation.completion_callback() is True
    creation.done_callback(True, None)

    # Two point-scoped lines per point plus one plan-scoped line.
    assert _work_through_checklist(service, plan_id, FailedStep.PLAN_POINTS_REVIEW) == 5
    assert _work_through_checklist(service, plan_id, FailedStep.PLAN_CHECKLIST_REVIEW) == 3

    final = _evaluate(service, plan_id)
    assert final.is_done is True
    assert final.failed_step is FailedStep.DONE
    assert final.recommended_mode == ""
    assert "PLAN CREATION COMPLETED SUCCESSFULLY" in final.next_step_prompt
    assert service.get_plan(plan_id).data.creation_step is CreationStep.COMPLETE


def _reach_points_review(service: PlanService, plan_id: str, point_fields) -> None:
    _work_through_checklist(service, plan_id, FailedStep.PLAN_DESCRIPTION_REVIEW)
    service.set_architecture('{"components": []}', plan_id=plan_id)
    _work_through_checklist(service, plan_id, FailedStep.PLAN_ARCHITECTURE_REVIEW)
    _add_valid_points(service, plan_id, point_fields)


def test_points_review_is_gated_by_validation(service: PlanService, plan_id: str, point_fields) -> None:
    _reach_points_review(service, plan_id, point_fields)
    assert service.change_point("2", plan_id=plan_id, expected_inputs="").success

    gate = _evaluate(service, plan_id)
    assert gate.failed_step is FailedStep.PLAN_REVIEW
    assert gate.reason == "Point 2 is missing expected inputs"
    assert gate.failed_points == ("2",)

    assert service.change_point("2", plan_id=plan_id, expected_inputs="tokens").success
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_POINTS_REVIEW


def test_needs_work_during_description_review_enters_update_rework(service: PlanService, plan_id: str) -> None:
    first = _evaluate(service, plan_id)
    first.done_callback(True, None)
    assert service.set_plan_needs_work(["Descriptions are too vague"], plan_id=plan_id).success

    rework = _evaluate(service, plan_id)
    assert rework.failed_step is FailedStep.PLAN_DESCRIPTION_UPDATE_REWORK
    assert "Descriptions are too vague" in rework.next_step_prompt
    assert service.get_plan(plan_id).data.checklist is None

    # Claiming success without editing the descriptions changes nothing.
    rework.done_callback(True, "fixed")
    again = _evaluate(service, plan_id)
    assert again.failed_step is FailedStep.PLAN_DESCRIPTION_UPDATE_REWORK

    assert service.update_plan_details(short_description="A precise summary", plan_id=plan_id).success
    assert again.completion_callback() is True
    again.done_callback(True, "descriptions rewritten")

    plan = service.get_plan(plan_id).data
    assert plan.needs_work is False
    assert plan.tool_calls.description_changed is False
    reopened = _evaluate(service, plan_id)
    assert reopened.failed_step is FailedStep.PLAN_DESCRIPTION_REVIEW
    assert reopened.checklist_remaining == 3


def test_needs_work_during_points_review_enters_points_rework(service: PlanService, plan_id: str, point_fields) -> None:
    _reach_points_review(service, plan_id, point_fields)
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_POINTS_REVIEW

    service.set_plan_needs_work(["Split the parser point"], plan_id=plan_id)
    rework = _evaluate(service, plan_id)
    assert rework.failed_step is FailedStep.PLAN_POINTS_CREATION_REWORK
    assert rework.completion_callback() is False

    service.change_point("1", plan_id=plan_id, short_name="Tokenizer")
    rework.done_callback(True, None)
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_POINTS_REVIEW


def test_needs_work_outside_reviews_is_generic_plan_rework(service: PlanService, plan_id: str) -> None:
    _work_through_checklist(service, plan_id, FailedStep.PLAN_DESCRIPTION_REVIEW)
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_ARCHITECTURE_CREATION

    service.set_plan_needs_work(["Consider caching", "Name the database"], plan_id=plan_id)
    rework = _evaluate(service, plan_id)
    assert rework.failed_step is FailedStep.PLAN_REWORK
    assert rework.completion_callback is None
    assert "Consider caching" in rework.next_step_prompt

    rework.done_callback(True, None)
    plan = service.get_plan(plan_id).data
    assert plan.needs_work is True
    assert plan.needs_work_comments == ["Name the database"]

    _evaluate(service, plan_id).done_callback(True, None)
    assert service.get_plan(plan_id).data.needs_work is False
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_ARCHITECTURE_CREATION


def test_validation_gate_callback_waits_for_a_fixing_edit(service: PlanService, plan_id: str, point_fields) -> None:
    _reach_points_review(service, plan_id, point_fields)
    assert service.change_point("2", plan_id=plan_id, expected_inputs="").success

    gate = _evaluate(service, plan_id)
    assert gate.failed_step is FailedStep.PLAN_REVIEW
    assert gate.completion_callback() is False

    gate.done_callback(True, "fixed, trust me")
    again = _evaluate(service, plan_id)
    assert again.failed_step is FailedStep.PLAN_REVIEW
    assert again.failed_points == ("2",)
    assert again.completion_callback() is False

    assert service.change_point("2", plan_id=plan_id, expected_inputs="tokens").success
    assert gate.completion_callback() is True
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_POINTS_REVIEW


def test_final_checklist_review_is_gated_by_validation(service: PlanService, plan_id: str, point_fields) -> None:
    _reach_points_review(service, plan_id, point_fields)
    _work_through_checklist(service, plan_id, FailedStep.PLAN_POINTS_REVIEW)
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_CHECKLIST_REVIEW

    assert service.change_point("1", plan_id=plan_id, expected_inputs="").success
    gate = _evaluate(service, plan_id)
    assert gate.failed_step is FailedStep.PLAN_REVIEW
    assert gate.reason == "Point 1 is missing expected inputs"
    assert gate.failed_points == ("1",)
    assert service.get_plan(plan_id).data.creation_step is CreationStep.CHECKLIST_REVIEW

    assert service.change_point("1", plan_id=plan_id, expected_inputs="source text").success
    assert _evaluate(service, plan_id).failed_step is FailedStep.PLAN_CHECKLIST_REVIEW
