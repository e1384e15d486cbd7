from __future__ import annotations

import json

from planflow.memory.store import PlanStore
from planflow.planning.evaluation import FailedStep
from planflow.planning.flags import ToolCallCategory, is_recorded
from planflow.service import PlanService


def test_create_plan_activates_and_rejects_duplicates(service: PlanService, plan_id: str) -> None:
    assert service.active_plan_id == plan_id

    duplicate = service.create_plan("Other", "s", "l", plan_id=plan_id)
    assert not duplicate.success
    assert duplicate.error_kind == "precondition_failure"


def test_create_plan_derives_unique_ids(service: PlanService) -> None:
    first = service.create_plan("Payment Service!", "s", "l")
    second = service.create_plan("Payment Service!", "s", "l")

    assert first.data["id"] == "payment-service"
    assert second.data["id"] == "payment-service-2"


def test_create_plan_stores_language_metadata(service: PlanService) -> None:
    created = service.create_plan(
        "Traduction",
        "s",
        "l",
        language={"detected_language": "fr", "original_request": "Bonjour", "translated_request": "Hello"},
    )
    shown = service.show_plan(created.data["id"]).data
    assert shown["detectedLanguage"] == "fr"
    assert shown["translatedRequest"] == "Hello"


def test_operations_without_active_plan_fail(service: PlanService) -> None:
    result = service.show_plan()
    assert not result.success
    assert result.error == "No active plan. Open or create a plan first."
    assert result.error_kind == "precondition_failure"


def test_open_and_close_plan(service: PlanService, plan_id: str) -> None:
    assert service.close_plan().success
    assert service.active_plan_id is None

    missing = service.open_plan("nope")
    assert missing.error_kind == "not_found"
    assert missing.error == "Plan with ID 'nope' not found"

    assert service.open_plan(plan_id).data == {"id": plan_id, "name": "Demo Plan"}
    assert service.show_plan().data["id"] == plan_id


def test_update_plan_details_requires_a_field(service: PlanService, plan_id: str) -> None:
    empty = service.update_plan_details()
    assert empty.error == "No valid updates provided"
    assert empty.error_kind == "invalid_argument"

    assert service.update_plan_details(long_description="  New long text  ").success
    plan = service.get_plan().data
    assert plan.long_description == "New long text"
    assert plan.descriptions_updated is True
    assert is_recorded(plan, ToolCallCategory.DESCRIPTION_CHANGE)


def test_architecture_round_trip(service: PlanService, plan_id: str) -> None:
    architecture = {"components": [{"name": "api", "talksTo": ["db"]}], "notes": "façade"}
    assert service.set_architecture(architecture).success

    plan = service.get_plan().data
    assert json.loads(plan.architecture) == architecture
    assert plan.architecture_created is True
    assert is_recorded(plan, ToolCallCategory.ARCHITECTURE_SET)


def test_architecture_must_be_a_json_object(service: PlanService, plan_id: str) -> None:
    not_json = service.set_architecture("{broken")
    assert not_json.error_kind == "validation_failure"
    assert not_json.error.startswith("Architecture must be valid JSON")

    a_list = service.set_architecture("[1, 2]")
    assert a_list.error == "Architecture must be a JSON object"
    assert service.get_plan().data.architecture is None


def test_needs_work_requires_comments_and_drops_review_state(service: PlanService, plan_id: str) -> None:
    assert service.set_plan_needs_work([" ", ""]).error == "At least one needs-work comment is required"

    service.evaluate_creation()
    assert service.get_plan().data.checklist is not None
    assert service.set_plan_needs_work("Too vague").success

    plan = service.get_plan().data
    assert plan.needs_work is True
    assert plan.needs_work_comments == ["Too vague"]
    assert plan.reviewed is False
    assert plan.checklist is None

    assert service.set_plan_reviewed("fine now").success
    plan = service.get_plan().data
    assert plan.needs_work is False
    assert plan.needs_work_comments == []
    assert plan.reviewed is True


def test_accepting_requires_reviewed_and_tested_points(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields("Parser"), point_fields("Renderer")])
    service.mark_point_implemented("1")
    service.mark_point_reviewed("1")
    service.mark_point_tested("1")

    refused = service.set_plan_accepted("ok")
    assert refused.error_kind == "precondition_failure"
    assert refused.data == {"pendingPoints": ["2"]}
    assert service.get_plan().data.accepted is False


def test_point_state_preconditions(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields()])

    reviewed = service.mark_point_reviewed("1")
    assert reviewed.error == "Point '1' must be implemented before it can be reviewed"
    tested = service.mark_point_tested("1")
    assert tested.error == "Point '1' must be implemented before it can be tested"
    missing = service.mark_point_implemented("42")
    assert missing.error == "Point with ID '42' not found in plan 'demo'"


def test_needs_rework_resets_point_progress(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields()])
    service.mark_point_implemented("1")
    service.mark_point_reviewed("1")
    service.mark_point_tested("1")

    assert service.mark_point_needs_rework("1", "Edge case fails").success
    point = service.get_plan().data.points[0]
    assert (point.implemented, point.reviewed, point.tested) == (False, False, False)
    assert point.need_rework is True
    assert point.rework_reason == "Edge case fails"

    service.mark_point_implemented("1", "fixed")
    point = service.get_plan().data.points[0]
    assert point.need_rework is False
    assert point.comments[-1].endswith("fixed")


def test_delete_requires_confirmation(service: PlanService, store: PlanStore, plan_id: str) -> None:
    refused = service.delete_plan(plan_id)
    assert refused.error == "Deleting plan 'demo' requires confirmation"
    assert store.exists(plan_id)

    assert service.delete_plan(plan_id, confirm=True).success
    assert not store.exists(plan_id)
    assert service.active_plan_id is None


def test_add_points_at_head_and_after_anchor(service: PlanService, plan_id: str, point_fields) -> None:
    assert service.add_points([point_fields("B"), point_fields("C")]).data == ["1", "2"]
    assert service.add_points([point_fields("A")]).data == ["3"]
    assert service.add_point("D", after_point_id="2", depends_on=["2"]).data == "4"

    plan = service.get_plan().data
    assert [point.short_name for point in plan.points] == ["A", "B", "C", "D"]
    assert plan.points_created is True
    assert is_recorded(plan, ToolCallCategory.POINTS_MANIPULATED)


def test_add_points_validates_input_and_references(service: PlanService, plan_id: str, point_fields) -> None:
    missing_name = service.add_points([{"short_description": "nameless"}])
    assert missing_name.error_kind == "invalid_argument"
    assert missing_name.error.startswith("Point #1: short_name")

    bad_reference = service.add_points([point_fields(depends_on=["9"])])
    assert bad_reference.error == "Depends-on point with ID '9' not found in plan 'demo'"

    bad_anchor = service.add_points([point_fields()], after_point_id="7")
    assert bad_anchor.error_kind == "not_found"
    assert service.get_plan().data.points == []

    within_batch = service.add_points([point_fields("A"), point_fields("B", depends_on=["1"], care_on=["1"])])
    assert within_batch.success


def test_point_ids_are_not_reused(service: PlanService, store: PlanStore, plan_id: str, point_fields) -> None:
    service.add_points([point_fields("A"), point_fields("B")])

    def drop_last(plan) -> None:
        plan.points.pop()

    store.update(plan_id, drop_last)
    assert service.add_point("C", depends_on=["-1"]).data == "3"


def test_change_point_reports_updated_fields(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields("A"), point_fields("B")])

    assert service.change_point("2").error == "No valid updates provided"
    changed = service.change_point("2", short_name="Bee", depends_on=["1"])
    assert changed.data == ["depends_on", "short_name"]

    point = service.get_plan().data.points[1]
    assert point.short_name == "Bee"
    assert point.depends_on == ["1"]

    self_reference = service.change_point("2", care_on=["2"])
    assert self_reference.error_kind == "validation_failure"


def test_set_point_dependencies(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields("A"), point_fields("B")])

    empty = service.set_point_dependencies("2", [])
    assert empty.error_kind == "invalid_argument"

    assert service.set_point_dependencies("2", ["1"], ["1"]).success
    point = service.get_plan().data.points[1]
    assert point.depends_on == ["1"]
    assert point.care_on == ["1"]

    unknown = service.set_point_dependencies("2", ["5"])
    assert unknown.error == "Depends-on point with ID '5' not found in plan 'demo'"


def test_validate_procedurally(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields("A"), point_fields("B", depends_on=[])])

    invalid = service.validate_procedurally()
    assert invalid.error_kind == "validation_failure"
    assert invalid.data["pointId"] == "2"
    assert invalid.data["type"] == "missing_dependencies"

    service.set_point_dependencies("2", ["-1"])
    assert service.validate_procedurally().data == {"valid": True, "points": 2}


def test_show_point_includes_neighbours(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields(name) for name in ("A", "B", "C", "D")])
    service.set_point_dependencies("3", ["1"], ["4"])
    service.add_point_comment("3", "watch memory use")

    shown = service.show_point("3").data

    assert shown["shortName"] == "C"
    assert [entry["id"] for entry in shown["previousPoints"]] == ["1", "2"]
    assert [entry["id"] for entry in shown["nextPoints"]] == ["4"]
    assert [entry["id"] for entry in shown["careOnPoints"]] == ["4"]
    assert shown["comments"][0].endswith("watch memory use")
    assert shown["state"]["implemented"] is False


def test_show_plan_and_list_plans(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields()])

    summary = service.show_plan().data
    assert summary["name"] == "Demo Plan"
    assert summary["creationStep"] == "new"
    assert "expectedInputs" not in summary["points"][0]
    detailed = service.show_plan(include_point_details=True).data
    assert detailed["points"][0]["expectedInputs"] == "Parser inputs"

    listed = service.list_plans(include_short_description=True).data
    assert listed == [{"id": "demo", "name": "Demo Plan", "shortDescription": "Build a demo"}]


def test_plan_state_and_logs(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields("A"), point_fields("B")])
    service.mark_point_implemented("1")

    state = service.get_plan_state().data
    assert state["implementedCount"] == 1
    assert state["totalCount"] == 2
    assert state["allImplemented"] is False
    assert state["pendingPoints"] == ["1", "2"]

    logs = service.get_plan_logs(limit=2).data
    assert len(logs) == 2
    assert logs[0]["action"] == "implemented"


def test_review_checklist_query(service: PlanService, plan_id: str) -> None:
    assert service.get_review_checklist().data["step"] is None

    service.evaluate_creation()
    checklist = service.get_review_checklist().data
    assert checklist["step"] == FailedStep.PLAN_DESCRIPTION_REVIEW.value
    assert checklist["position"] == 1
    assert checklist["total"] == 3
    assert checklist["items"][0].startswith("Plan: ")


def test_evaluate_runs_creation_first(service: PlanService, plan_id: str) -> None:
    result = service.evaluate()
    assert result.data.failed_step is FailedStep.PLAN_DESCRIPTION_REVIEW
    assert result.to_dict()["data"]["failedStep"] == "plan_description_review"


def test_change_point_rejects_wrong_field_types(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields("A")])

    result = service.change_point("1", short_description=5)
    assert not result.success
    assert result.error_kind == "invalid_argument"
    assert "short_description" in result.error

    as_string = service.change_point("1", care_on="1")
    assert as_string.error_kind == "invalid_argument"
    assert "care_on" in as_string.error
    assert service.get_plan().data.points[0].short_description == "A short description"


def test_dependency_lists_must_be_non_empty_sequences(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields("A"), point_fields("B", depends_on=["1"])])

    as_string = service.set_point_dependencies("2", "1")
    assert as_string.error_kind == "invalid_argument"
    assert "depends_on" in as_string.error

    cleared = service.change_point("2", depends_on=[])
    assert cleared.error_kind == "invalid_argument"
    assert "needs at least one dependency" in cleared.error

    assert service.get_plan().data.points[1].depends_on == ["1"]


def test_non_string_arguments_fail_as_invalid_argument(service: PlanService, plan_id: str, point_fields) -> None:
    service.add_points([point_fields("A")])

    assert service.create_plan(42, "s", "l").error_kind == "invalid_argument"
    assert service.create_plan("Lang", "s", "l", language="fr").error_kind == "invalid_argument"
    assert service.update_plan_details(short_description=["list"]).error_kind == "invalid_argument"
    assert service.set_plan_needs_work([1, 2]).error_kind == "invalid_argument"
    assert service.set_plan_reviewed(comment=3).error_kind == "invalid_argument"
    assert service.mark_point_implemented("1", comment=7).error_kind == "invalid_argument"
    assert service.add_points({"short_name": "solo"}).error_kind == "invalid_argument"
    assert service.add_points(["not a mapping"]).error.startswith("Point #1:")
    assert service.get_plan_logs(limit="5").error_kind == "invalid_argument"

    plan = service.get_plan().data
    assert plan.needs_work is False
    assert plan.reviewed is False
    assert plan.points[0].implemented is False
