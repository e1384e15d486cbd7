from __future__ import annotations

import pytest

from planflow.errors import ConfigError
from planflow.memory.schema import Plan, Point
from planflow.memory.store import PlanStore
from planflow.planning.callbacks import CompletionPredicate, bind_point_check, resolve_predicate
from planflow.planning.flags import ToolCallCategory, is_recorded, record_tool_call, reset_tool_calls


def test_record_and_reset_tool_calls() -> None:
    plan = Plan(id="flags", name="Flags")
    record_tool_call(plan, ToolCallCategory.ARCHITECTURE_SET)

    assert is_recorded(plan, ToolCallCategory.ARCHITECTURE_SET)
    assert not is_recorded(plan, ToolCallCategory.POINTS_MANIPULATED)
    stamp = plan.tool_calls.last_tool_call_at
    assert stamp is not None

    reset_tool_calls(plan)
    assert not any(is_recorded(plan, category) for category in ToolCallCategory)
    assert plan.tool_calls.last_tool_call_at == stamp


def test_predicates_read_plan_and_tool_flags() -> None:
    plan = Plan(id="p", name="P", needs_work=True)
    assert not CompletionPredicate.NOT_NEEDS_WORK.holds(plan)
    assert not CompletionPredicate.DESCRIPTION_CHANGED.holds(plan)

    record_tool_call(plan, ToolCallCategory.DESCRIPTION_CHANGE)
    plan.needs_work = False
    assert CompletionPredicate.NOT_NEEDS_WORK.holds(plan)
    assert CompletionPredicate.DESCRIPTION_CHANGED.holds(plan)


def test_bound_predicate_polls_persisted_state(tmp_path) -> None:
    store = PlanStore(tmp_path)
    store.save(Plan(id="poll", name="Poll"))
    callback = CompletionPredicate.PLAN_REVIEWED.bind(store.get, "poll")

    assert callback() is False
    store.update("poll", lambda plan: setattr(plan, "reviewed", True))
    assert callback() is True

    store.delete("poll")
    assert callback() is False


def test_point_check_requires_every_listed_point(tmp_path) -> None:
    store = PlanStore(tmp_path)
    store.save(Plan(id="pts", name="Points", points=[Point(id="1", implemented=True), Point(id="2")]))

    assert bind_point_check(store.get, "pts", ["1"], lambda point: point.implemented)() is True
    assert bind_point_check(store.get, "pts", ["1", "2"], lambda point: point.implemented)() is False
    assert bind_point_check(store.get, "pts", ["9"], lambda point: True)() is False


def test_resolve_predicate_names() -> None:
    assert resolve_predicate("tool.architectureSet") is CompletionPredicate.ARCHITECTURE_SET
    assert resolve_predicate("!plan.needsWork") is CompletionPredicate.NOT_NEEDS_WORK
    assert resolve_predicate("") is None
    assert resolve_predicate(None) is None


def test_unknown_predicate_name_fails() -> None:
    with pytest.raises(ConfigError, match="Unknown completion callback 'plan.magic' for step 'plan_review'"):
        resolve_predicate("plan.magic", step="plan_review")


def test_call_count_survives_reset() -> None:
    plan = Plan(id="count", name="Count")
    record_tool_call(plan, ToolCallCategory.POINTS_MANIPULATED)
    record_tool_call(plan, ToolCallCategory.POINTS_MANIPULATED)
    reset_tool_calls(plan)

    assert plan.tool_calls.call_count == 2
    assert not is_recorded(plan, ToolCallCategory.POINTS_MANIPULATED)


def test_bind_after_ignores_calls_made_before_binding(tmp_path) -> None:
    store = PlanStore(tmp_path)
    plan = Plan(id="fresh", name="Fresh")
    record_tool_call(plan, ToolCallCategory.POINTS_MANIPULATED)
    store.save(plan)
    callback = CompletionPredicate.POINTS_MANIPULATED.bind_after(store.get, "fresh", plan.tool_calls.call_count)

    assert callback() is False
    store.update("fresh", lambda stored: record_tool_call(stored, ToolCallCategory.POINTS_MANIPULATED))
    assert callback() is True
