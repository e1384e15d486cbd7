"""Operation façade: named plan and point mutations plus evaluation entry points.

Every public method returns an ``OperationResult``; ``PlanflowError`` raised
anywhere below is converted into a failed result carrying its message and
kind. Arguments are checked against small input models before anything is
loaded, and a type mismatch fails as ``invalid_argument`` naming the field.
Plans handed back to callers are freshly parsed copies, so changing them has
no effect on stored state.
"""

from __future__ import annotations

import functools
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from pydantic import Field, ValidationError

from .config import DEFAULT_CONFIG_NAME, WorkflowConfig, load_config
from .errors import (
    InvalidArgument,
    NotFoundError,
    PlanflowError,
    PreconditionFailure,
    ValidationFailure,
)
from .memory.schema import (
    INDEPENDENT_SENTINEL,
    CreationStep,
    LanguageInfo,
    LogKind,
    Plan,
    Point,
    RecordModel,
    stamp_comment,
    utc_now,
)
from .memory.store import PlanStore, check_plan_id
from .planning.checklist import render_item
from .planning.completion import CompletionWorkflow
from .planning.creation import CreationWorkflow
from .planning.evaluation import EvaluationResult
from .planning.flags import ToolCallCategory, record_tool_call, reset_tool_calls
from .planning.validation import parse_architecture, validate_plan
from .telemetry import emit_activity
from .utils.slug import unique_plan_id

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=RecordModel)


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Structured outcome of a façade call."""

    success: bool
    data: Any = None
    error: str = ""
    error_kind: str = ""

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: PlanflowError) -> "OperationResult":
        return cls(success=False, error=error.message, error_kind=error.kind, data=error.details or None)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.success:
            data = self.data
            if isinstance(data, EvaluationResult):
                data = data.to_dict()
            elif isinstance(data, Plan):
                data = data.model_dump(mode="json")
            payload["data"] = data
        else:
            payload["error"] = self.error
            payload["errorKind"] = self.error_kind
            if self.data:
                payload["details"] = self.data
        return payload


def _operation(func: Callable[..., Any]) -> Callable[..., OperationResult]:
    @functools.wraps(func)
    def wrapper(self: "PlanService", *args: Any, **kwargs: Any) -> OperationResult:
        try:
            return OperationResult.ok(func(self, *args, **kwargs))
        except PlanflowError as error:
            LOGGER.info("%s failed (%s): %s", func.__name__, error.kind, error.message)
            return OperationResult.fail(error)
        except ValidationError as error:
            # Assignment validation on a stored record rejected a value.
            failure = _invalid_input(error, func.__name__)
            LOGGER.info("%s failed (%s): %s", func.__name__, failure.kind, failure.message)
            return OperationResult.fail(failure)

    return wrapper


def _invalid_input(error: ValidationError, label: str) -> InvalidArgument:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return InvalidArgument(f"{label}: {location or 'input'} {first['msg']}")


def _parse_input(model: type[M], payload: Mapping[str, Any], label: str) -> M:
    try:
        return model.model_validate(dict(payload))
    except ValidationError as error:
        raise _invalid_input(error, label) from error


class PointInput(RecordModel):
    """Fields accepted when inserting a point."""

    short_name: str
    short_description: str = ""
    detailed_description: str = ""
    review_instructions: str = ""
    testing_instructions: str = ""
    expected_outputs: str = ""
    expected_inputs: str = ""
    depends_on: List[str] = Field(default_factory=list)
    care_on: List[str] = Field(default_factory=list)


class PointPatch(RecordModel):
    """Fields accepted by ``change_point``; ``None`` leaves a field untouched."""

    short_name: Optional[str] = None
    short_description: Optional[str] = None
    detailed_description: Optional[str] = None
    review_instructions: Optional[str] = None
    testing_instructions: Optional[str] = None
    expected_outputs: Optional[str] = None
    expected_inputs: Optional[str] = None
    depends_on: Optional[List[str]] = None
    care_on: Optional[List[str]] = None


class PlanDetailsPatch(RecordModel):
    name: Optional[str] = None
    short_description: Optional[str] = None
    long_description: Optional[str] = None


class DependencyInput(RecordModel):
    depends_on: List[str]
    care_on: List[str] = Field(default_factory=list)


class NeedsWorkInput(RecordModel):
    comments: List[str]


_PATCHABLE_POINT_FIELDS = (
    "short_name",
    "short_description",
    "detailed_description",
    "review_instructions",
    "testing_instructions",
    "expected_outputs",
    "expected_inputs",
    "depends_on",
    "care_on",
)


def _optional_text(value: Any, label: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidArgument(f"{label} must be a string, got {type(value).__name__}")
    return value.strip()


def _require_text(value: Any, label: str) -> str:
    text = _optional_text(value, label)
    if not text:
        raise InvalidArgument(f"{label} must not be empty")
    return text


def _require_dependencies(point_id: str, depends_on: Sequence[str]) -> None:
    if not [entry for entry in depends_on if entry.strip()]:
        raise InvalidArgument(
            f'Point {point_id} needs at least one dependency; use "{INDEPENDENT_SENTINEL}" for an independent point'
        )


def _require_point(plan: Plan, point_id: str) -> Point:
    point = plan.find_point(str(point_id))
    if point is None:
        raise NotFoundError(f"Point with ID '{point_id}' not found in plan '{plan.id}'")
    return point


def _check_references(plan: Plan, point_id: Optional[str], ids: Sequence[str], label: str, extra: Sequence[str] = ()) -> List[str]:
    known = {point.id for point in plan.points} | set(extra)
    cleaned: List[str] = []
    for raw in ids:
        reference = str(raw).strip()
        if not reference:
            continue
        if label == "Depends-on" and reference == INDEPENDENT_SENTINEL:
            cleaned.append(reference)
            continue
        if point_id is not None and reference == point_id:
            raise ValidationFailure(f"Point {point_id} cannot reference itself in {label.lower()} points")
        if reference not in known:
            raise ValidationFailure(f"{label} point with ID '{reference}' not found in plan '{plan.id}'")
        cleaned.append(reference)
    return cleaned


def _point_summary(point: Point, include_details: bool) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "id": point.id,
        "shortName": point.short_name,
        "shortDescription": point.short_description,
        "detailedDescription": point.detailed_description,
        "dependsOn": list(point.depends_on),
        "implemented": point.implemented,
        "reviewed": point.reviewed,
        "tested": point.tested,
        "needRework": point.need_rework,
    }
    if include_details:
        summary.update(
            {
                "reviewInstructions": point.review_instructions,
                "testingInstructions": point.testing_instructions,
                "expectedOutputs": point.expected_outputs,
                "expectedInputs": point.expected_inputs,
            }
        )
    return summary


def _neighbour(point: Point) -> Dict[str, str]:
    return {"id": point.id, "shortName": point.short_name, "shortDescription": point.short_description}


class PlanService:
    """Named operations over the plans of one workspace."""

    def __init__(self, store: PlanStore, config: Optional[WorkflowConfig] = None) -> None:
        self.store = store
        self.config = config or WorkflowConfig.default()
        self.creation = CreationWorkflow(store, self.config)
        self.completion = CompletionWorkflow(store, self.config)
        self._active_plan_id: Optional[str] = None

    @classmethod
    def for_workspace(cls, workspace_root: Path | str, config_path: Optional[Path] = None) -> "PlanService":
        """Build a service from ``planflow.yaml`` (or ``config_path``) under ``workspace_root``."""
        root = Path(workspace_root)
        path = config_path if config_path is not None else root / DEFAULT_CONFIG_NAME
        if not path.is_absolute():
            path = root / path
        config = load_config(path)
        return cls(PlanStore.from_config(config, root), WorkflowConfig.from_mapping(config))

    # Active plan -------------------------------------------------------------------
    @property
    def active_plan_id(self) -> Optional[str]:
        return self._active_plan_id

    def _resolve(self, plan_id: Optional[str]) -> str:
        if plan_id is not None and str(plan_id).strip():
            return check_plan_id(str(plan_id))
        if self._active_plan_id is None:
            raise PreconditionFailure("No active plan. Open or create a plan first.")
        return self._active_plan_id

    def _mutate(self, plan_id: str, event: str, mutate: Callable[[Plan], T], **fields: Any) -> T:
        outcome = self.store.update(plan_id, mutate)
        emit_activity(event, plan_id, **fields)
        return outcome

    @_operation
    def open_plan(self, plan_id: str) -> Dict[str, str]:
        plan = self.store.load(check_plan_id(plan_id))
        self._active_plan_id = plan.id
        LOGGER.info("Active plan set to %s", plan.id)
        return {"id": plan.id, "name": plan.name}

    @_operation
    def close_plan(self) -> None:
        self._active_plan_id = None

    # Plan lifecycle ----------------------------------------------------------------
    @_operation
    def create_plan(
        self,
        name: str,
        short_description: str,
        long_description: str,
        *,
        plan_id: Optional[str] = None,
        language: Optional[Mapping[str, str] | LanguageInfo] = None,
        activate: bool = True,
    ) -> Dict[str, str]:
        plan_name = _require_text(name, "Plan name")
        short_text = _optional_text(short_description, "Short description")
        long_text = _optional_text(long_description, "Long description")
        if isinstance(language, LanguageInfo) or language is None:
            language_info = language
        elif isinstance(language, Mapping):
            language_info = _parse_input(LanguageInfo, language, "Invalid language metadata")
        else:
            raise InvalidArgument(f"Language metadata must be a mapping, got {type(language).__name__}")

        if plan_id is None or not _optional_text(plan_id, "Plan id"):
            identifier = unique_plan_id(plan_name, self.store.exists)
        else:
            identifier = check_plan_id(plan_id)
            if self.store.exists(identifier):
                raise PreconditionFailure(f"Plan with ID '{identifier}' already exists")

        plan = Plan(
            id=identifier,
            name=plan_name,
            short_description=short_text,
            long_description=long_text,
            language=language_info,
        )
        plan.add_log(LogKind.PLAN, "created", plan.id, "Plan created", plan.name)
        self.store.save(plan)
        if activate:
            self._active_plan_id = plan.id
        emit_activity("plan_created", plan.id, name=plan.name)
        LOGGER.info("Created plan %s (%s)", plan.id, plan.name)
        return {"id": plan.id, "name": plan.name}

    @_operation
    def update_plan_details(
        self,
        *,
        name: Optional[str] = None,
        short_description: Optional[str] = None,
        long_description: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> None:
        patch = _parse_input(
            PlanDetailsPatch,
            {"name": name, "short_description": short_description, "long_description": long_description},
            "Plan details",
        )
        if patch.name is None and patch.short_description is None and patch.long_description is None:
            raise InvalidArgument("No valid updates provided")
        plan_name = _require_text(patch.name, "Plan name") if patch.name is not None else None
        identifier = self._resolve(plan_id)

        def mutate(plan: Plan) -> None:
            if plan_name is not None:
                plan.name = plan_name
            if patch.short_description is not None:
                plan.short_description = patch.short_description.strip()
            if patch.long_description is not None:
                plan.long_description = patch.long_description.strip()
            plan.descriptions_updated = True
            record_tool_call(plan, ToolCallCategory.DESCRIPTION_CHANGE)
            plan.add_log(LogKind.PLAN, "details_updated", plan.id, "Plan details updated")

        self._mutate(identifier, "plan_details_updated", mutate)

    @_operation
    def set_architecture(self, architecture: str | Mapping[str, Any], *, plan_id: Optional[str] = None) -> None:
        if isinstance(architecture, Mapping):
            try:
                text = json.dumps(dict(architecture), ensure_ascii=False)
            except (TypeError, ValueError) as error:
                raise ValidationFailure(f"Architecture cannot be stored as JSON: {error}") from error
        else:
            text = _require_text(architecture, "Architecture")
        try:
            parse_architecture(text)
        except json.JSONDecodeError as error:
            raise ValidationFailure(f"Architecture must be valid JSON: {error.msg} (line {error.lineno}, column {error.colno})") from error
        except ValueError as error:
            raise ValidationFailure(str(error)) from error
        identifier = self._resolve(plan_id)

        def mutate(plan: Plan) -> None:
            plan.architecture = text
            plan.architecture_created = True
            record_tool_call(plan, ToolCallCategory.ARCHITECTURE_SET)
            plan.add_log(LogKind.PLAN, "architecture_set", plan.id, "Architecture design has been set for the plan")

        self._mutate(identifier, "architecture_set", mutate, size=len(text))

    @_operation
    def set_plan_reviewed(self, comment: str = "", *, plan_id: Optional[str] = None) -> None:
        comment = _optional_text(comment, "Comment")
        identifier = self._resolve(plan_id)

        def mutate(plan: Plan) -> None:
            plan.reviewed = True
            plan.reviewed_comment = comment
            plan.needs_work = False
            plan.needs_work_comments = []
            plan.accepted = False
            plan.accepted_comment = ""
            plan.add_log(LogKind.PLAN, "reviewed", plan.id, "Plan new state reviewed", comment or plan.name)

        self._mutate(identifier, "plan_reviewed", mutate)

    @_operation
    def set_plan_needs_work(self, comments: Sequence[str] | str, *, plan_id: Optional[str] = None) -> None:
        if isinstance(comments, str):
            comments = [comments]
        elif not isinstance(comments, Sequence):
            raise InvalidArgument(f"Needs-work comments must be a list of strings, got {type(comments).__name__}")
        entries = _parse_input(NeedsWorkInput, {"comments": list(comments)}, "Needs-work comments").comments
        cleaned = [comment.strip() for comment in entries if comment.strip()]
        if not cleaned:
            raise InvalidArgument("At least one needs-work comment is required")
        identifier = self._resolve(plan_id)

        def mutate(plan: Plan) -> None:
            plan.needs_work = True
            plan.needs_work_comments = cleaned
            plan.reviewed = False
            plan.reviewed_comment = ""
            plan.accepted = False
            plan.accepted_comment = ""
            # In-flight review progress is dropped: the content under review is about to change.
            plan.checklist = None
            reset_tool_calls(plan)
            plan.add_log(LogKind.PLAN, "needs_work", plan.id, "Plan new state needs work", "; ".join(cleaned))

        self._mutate(identifier, "plan_needs_work", mutate, comments=len(cleaned))

    @_operation
    def set_plan_accepted(self, comment: str = "", *, plan_id: Optional[str] = None) -> None:
        comment = _optional_text(comment, "Comment")
        identifier = self._resolve(plan_id)

        def mutate(plan: Plan) -> None:
            pending = [point.id for point in plan.points if not (point.reviewed and point.tested)]
            if pending:
                raise PreconditionFailure(
                    "All plan points must be reviewed and tested before the plan can be accepted "
                    f"(pending: {', '.join(pending)})",
                    details={"pendingPoints": pending},
                )
            plan.accepted = True
            plan.accepted_comment = comment
            plan.reviewed = True
            plan.needs_work = False
            plan.needs_work_comments = []
            plan.add_log(LogKind.PLAN, "accepted", plan.id, "Plan new state accepted", comment or plan.name)

        self._mutate(identifier, "plan_accepted", mutate)

    @_operation
    def delete_plan(self, plan_id: Optional[str] = None, *, confirm: bool = False) -> None:
        identifier = self._resolve(plan_id)
        if not confirm:
            raise PreconditionFailure(
                f"Deleting plan '{identifier}' requires confirmation",
                details={"needsConfirmation": True},
            )
        self.store.delete(identifier)
        if self._active_plan_id == identifier:
            self._active_plan_id = None
        emit_activity("plan_deleted", identifier)
        LOGGER.info("Deleted plan %s", identifier)

    # Points ------------------------------------------------------------------------
    @_operation
    def add_points(
        self,
        points: Sequence[Mapping[str, Any]],
        *,
        after_point_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> List[str]:
        """Insert ``points`` after ``after_point_id``; ``None`` inserts at the head."""
        return self._insert_points(points, after_point_id, plan_id)

    @_operation
    def add_point(
        self,
        short_name: str,
        *,
        after_point_id: Optional[str] = None,
        plan_id: Optional[str] = None,
        **fields: Any,
    ) -> str:
        return self._insert_points([{"short_name": short_name, **fields}], after_point_id, plan_id)[0]

    def _insert_points(
        self,
        points: Sequence[Mapping[str, Any]],
        after_point_id: Optional[str],
        plan_id: Optional[str],
    ) -> List[str]:
        if isinstance(points, (str, Mapping)) or not isinstance(points, Sequence):
            raise InvalidArgument("Points must be given as a list of point mappings")
        if not points:
            raise InvalidArgument("At least one point is required")
        inputs: List[PointInput] = []
        for index, raw in enumerate(points, start=1):
            if not isinstance(raw, Mapping):
                raise InvalidArgument(f"Point #{index}: expected a mapping, got {type(raw).__name__}")
            entry = _parse_input(PointInput, raw, f"Point #{index}")
            _require_text(entry.short_name, f"Point #{index}: short name")
            inputs.append(entry)
        identifier = self._resolve(plan_id)
        anchor = str(after_point_id).strip() if after_point_id is not None else ""

        def mutate(plan: Plan) -> List[str]:
            if anchor:
                position = plan.point_index(anchor)
                if position < 0:
                    raise NotFoundError(f"Point with ID '{anchor}' not found in plan '{plan.id}'")
                position += 1
            else:
                position = 0
            new_ids = [plan.allocate_point_id() for _ in inputs]
            created: List[Point] = []
            for new_id, entry in zip(new_ids, inputs):
                created.append(
                    Point(
                        id=new_id,
                        short_name=entry.short_name.strip(),
                        short_description=entry.short_description,
                        detailed_description=entry.detailed_description,
                        review_instructions=entry.review_instructions,
                        testing_instructions=entry.testing_instructions,
                        expected_outputs=entry.expected_outputs,
                        expected_inputs=entry.expected_inputs,
                        depends_on=_check_references(plan, new_id, entry.depends_on, "Depends-on", extra=new_ids),
                        care_on=_check_references(plan, new_id, entry.care_on, "Care-on", extra=new_ids),
                    )
                )
            plan.points[position:position] = created
            plan.points_created = True
            record_tool_call(plan, ToolCallCategory.POINTS_MANIPULATED)
            for point in created:
                plan.add_log(LogKind.POINT, "added", point.id, f"Point {point.id} added", point.short_name)
            return new_ids

        new_ids = self._mutate(identifier, "points_added", mutate)
        LOGGER.info("Added %d point(s) to plan %s", len(new_ids), identifier)
        return new_ids

    @_operation
    def change_point(
        self,
        point_id: str,
        *,
        plan_id: Optional[str] = None,
        short_name: Optional[str] = None,
        short_description: Optional[str] = None,
        detailed_description: Optional[str] = None,
        review_instructions: Optional[str] = None,
        testing_instructions: Optional[str] = None,
        expected_outputs: Optional[str] = None,
        expected_inputs: Optional[str] = None,
        depends_on: Optional[Sequence[str]] = None,
        care_on: Optional[Sequence[str]] = None,
    ) -> List[str]:
        patch = _parse_input(
            PointPatch,
            {
                "short_name": short_name,
                "short_description": short_description,
                "detailed_description": detailed_description,
                "review_instructions": review_instructions,
                "testing_instructions": testing_instructions,
                "expected_outputs": expected_outputs,
                "expected_inputs": expected_inputs,
                "depends_on": depends_on,
                "care_on": care_on,
            },
            f"Point {point_id}",
        )
        updates = patch.model_dump(exclude_none=True)
        if not updates:
            raise InvalidArgument("No valid updates provided")
        if "short_name" in updates:
            updates["short_name"] = _require_text(updates["short_name"], "Point short name")
        if "depends_on" in updates:
            _require_dependencies(point_id, updates["depends_on"])
        identifier = self._resolve(plan_id)

        def mutate(plan: Plan) -> List[str]:
            point = _require_point(plan, point_id)
            if "depends_on" in updates:
                updates["depends_on"] = _check_references(plan, point.id, updates["depends_on"], "Depends-on")
            if "care_on" in updates:
                updates["care_on"] = _check_references(plan, point.id, updates["care_on"], "Care-on")
            for key in _PATCHABLE_POINT_FIELDS:
                if key in updates:
                    setattr(point, key, updates[key])
            point.updated_at = utc_now()
            record_tool_call(plan, ToolCallCategory.POINTS_MANIPULATED)
            plan.add_log(LogKind.POINT, "changed", point.id, f"Point {point.id} changed", ", ".join(sorted(updates)))
            return sorted(updates)

        return self._mutate(identifier, "point_changed", mutate, point_id=point_id)

    @_operation
    def set_point_dependencies(
        self,
        point_id: str,
        depends_on: Sequence[str],
        care_on: Sequence[str] = (),
        *,
        plan_id: Optional[str] = None,
    ) -> None:
        references = _parse_input(
            DependencyInput,
            {"depends_on": depends_on, "care_on": care_on},
            f"Point {point_id}",
        )
        _require_dependencies(point_id, references.depends_on)
        identifier = self._resolve(plan_id)

        def mutate(plan: Plan) -> None:
            point = _require_point(plan, point_id)
            point.depends_on = _check_references(plan, point.id, references.depends_on, "Depends-on")
            point.care_on = _check_references(plan, point.id, references.care_on, "Care-on")
            point.updated_at = utc_now()
            record_tool_call(plan, ToolCallCategory.POINTS_MANIPULATED)
            plan.add_log(LogKind.POINT, "dependencies", point.id, f"Point {point.id} dependencies set", ", ".join(point.depends_on))

        self._mutate(identifier, "point_dependencies_set", mutate, point_id=point_id)

    def _point_transition(
        self,
        plan_id: Optional[str],
        point_id: str,
        event: str,
        apply: Callable[[Plan, Point], None],
    ) -> None:
        identifier = self._resolve(plan_id)

        def mutate(plan: Plan) -> None:
            point = _require_point(plan, point_id)
            apply(plan, point)
            point.updated_at = utc_now()

        self._mutate(identifier, event, mutate, point_id=point_id)

    @_operation
    def mark_point_implemented(self, point_id: str, comment: str = "", *, plan_id: Optional[str] = None) -> None:
        comment = _optional_text(comment, "Comment")

        def apply(plan: Plan, point: Point) -> None:
            point.implemented = True
            point.need_rework = False
            point.rework_reason = ""
            if comment:
                point.comments.append(stamp_comment(comment))
            plan.add_log(LogKind.POINT, "implemented", point.id, f"Point {point.id} new state implemented", point.short_name)

        self._point_transition(plan_id, point_id, "point_implemented", apply)

    @_operation
    def mark_point_reviewed(self, point_id: str, comment: str = "", *, plan_id: Optional[str] = None) -> None:
        comment = _optional_text(comment, "Comment")

        def apply(plan: Plan, point: Point) -> None:
            if not point.implemented:
                raise PreconditionFailure(f"Point '{point.id}' must be implemented before it can be reviewed")
            point.reviewed = True
            point.reviewed_comment = comment
            plan.add_log(LogKind.POINT, "reviewed", point.id, f"Point {point.id} new state reviewed", comment or point.short_name)

        self._point_transition(plan_id, point_id, "point_reviewed", apply)

    @_operation
    def mark_point_tested(self, point_id: str, comment: str = "", *, plan_id: Optional[str] = None) -> None:
        comment = _optional_text(comment, "Comment")

        def apply(plan: Plan, point: Point) -> None:
            if not point.implemented:
                raise PreconditionFailure(f"Point '{point.id}' must be implemented before it can be tested")
            point.tested = True
            point.tested_comment = comment
            plan.add_log(LogKind.POINT, "tested", point.id, f"Point {point.id} new state tested", comment or point.short_name)

        self._point_transition(plan_id, point_id, "point_tested", apply)

    @_operation
    def mark_point_needs_rework(self, point_id: str, reason: str, *, plan_id: Optional[str] = None) -> None:
        text = _require_text(reason, "Rework reason")

        def apply(plan: Plan, point: Point) -> None:
            point.implemented = False
            point.reviewed = False
            point.tested = False
            point.need_rework = True
            point.rework_reason = text
            plan.add_log(LogKind.POINT, "needs_rework", point.id, f"Point {point.id} new state needs rework", text)

        self._point_transition(plan_id, point_id, "point_needs_rework", apply)

    @_operation
    def add_point_comment(self, point_id: str, comment: str, *, plan_id: Optional[str] = None) -> None:
        text = _require_text(comment, "Comment")

        def apply(plan: Plan, point: Point) -> None:
            point.comments.append(stamp_comment(text))

        self._point_transition(plan_id, point_id, "point_commented", apply)

    # Evaluation --------------------------------------------------------------------
    @_operation
    def evaluate_creation(self, plan_id: Optional[str] = None) -> EvaluationResult:
        return self.creation.evaluate(self._resolve(plan_id))

    @_operation
    def evaluate_completion(self, plan_id: Optional[str] = None) -> EvaluationResult:
        return self.completion.evaluate(self._resolve(plan_id))

    @_operation
    def evaluate(self, plan_id: Optional[str] = None) -> EvaluationResult:
        """Run the creation workflow until it completes, then the completion workflow."""
        identifier = self._resolve(plan_id)
        plan = self.store.load(identifier)
        if plan.creation_step is not CreationStep.COMPLETE:
            result = self.creation.evaluate(identifier)
            if not result.is_done:
                return result
        return self.completion.evaluate(identifier)

    @_operation
    def validate_procedurally(self, plan_id: Optional[str] = None) -> Dict[str, Any]:
        plan = self.store.load(self._resolve(plan_id))
        issue = validate_plan(plan)
        if issue is not None:
            raise ValidationFailure(issue.message, details=issue.to_dict())
        return {"valid": True, "points": len(plan.points)}

    # Queries -----------------------------------------------------------------------
    @_operation
    def get_plan(self, plan_id: Optional[str] = None) -> Plan:
        return self.store.load(self._resolve(plan_id))

    @_operation
    def get_review_checklist(self, plan_id: Optional[str] = None) -> Dict[str, Any]:
        plan = self.store.load(self._resolve(plan_id))
        queue = plan.checklist
        if queue is None:
            return {"step": None, "position": 0, "total": 0, "items": []}
        lines = self.config.step(queue.step).checklist
        return {
            "step": queue.step,
            "position": queue.position if queue.items else queue.total,
            "total": queue.total,
            "items": [render_item(item, plan, lines) for item in queue.items],
        }

    @_operation
    def list_plans(self, include_short_description: bool = False) -> List[Dict[str, str]]:
        plans: List[Dict[str, str]] = []
        for plan in self.store.list_plans():
            entry = {"id": plan.id, "name": plan.name}
            if include_short_description:
                entry["shortDescription"] = plan.short_description
            plans.append(entry)
        return plans

    @_operation
    def show_plan(self, plan_id: Optional[str] = None, include_point_details: bool = False) -> Dict[str, Any]:
        plan = self.store.load(self._resolve(plan_id))
        language = plan.language
        return {
            "id": plan.id,
            "name": plan.name,
            "shortDescription": plan.short_description,
            "longDescription": plan.long_description,
            "reviewed": plan.reviewed,
            "needsWork": plan.needs_work,
            "needsWorkComments": list(plan.needs_work_comments),
            "accepted": plan.accepted,
            "architecture": plan.architecture,
            "creationStep": plan.creation_step.value,
            "descriptionsUpdated": plan.descriptions_updated,
            "descriptionsReviewed": plan.descriptions_reviewed,
            "architectureCreated": plan.architecture_created,
            "architectureReviewed": plan.architecture_reviewed,
            "pointsCreated": plan.points_created,
            "pointsReviewed": plan.points_reviewed,
            "checklistReviewed": plan.checklist_reviewed,
            "detectedLanguage": language.detected_language if language else "",
            "originalRequest": language.original_request if language else "",
            "translatedRequest": language.translated_request if language else "",
            "points": [_point_summary(point, include_point_details) for point in plan.points],
        }

    @_operation
    def show_point(self, point_id: str, *, plan_id: Optional[str] = None) -> Dict[str, Any]:
        plan = self.store.load(self._resolve(plan_id))
        point = _require_point(plan, point_id)
        index = plan.point_index(point.id)
        care_on = [plan.find_point(ref) for ref in point.care_on]
        return {
            **_point_summary(point, True),
            "careOn": list(point.care_on),
            "state": {
                "implemented": point.implemented,
                "reviewed": point.reviewed,
                "reviewedComment": point.reviewed_comment,
                "tested": point.tested,
                "testedComment": point.tested_comment,
                "needRework": point.need_rework,
                "reworkReason": point.rework_reason,
            },
            "comments": list(point.comments),
            "previousPoints": [_neighbour(item) for item in plan.points[max(0, index - 2) : index]],
            "nextPoints": [_neighbour(item) for item in plan.points[index + 1 : index + 3]],
            "careOnPoints": [_neighbour(item) for item in care_on if item is not None],
        }

    @_operation
    def get_plan_state(self, plan_id: Optional[str] = None) -> Dict[str, Any]:
        plan = self.store.load(self._resolve(plan_id))
        total = len(plan.points)
        implemented = sum(1 for point in plan.points if point.implemented)
        reviewed = sum(1 for point in plan.points if point.reviewed)
        tested = sum(1 for point in plan.points if point.tested)
        return {
            "allImplemented": total > 0 and implemented == total,
            "allReviewed": total > 0 and reviewed == total,
            "allTested": total > 0 and tested == total,
            "accepted": plan.accepted,
            "implementedCount": implemented,
            "reviewedCount": reviewed,
            "testedCount": tested,
            "totalCount": total,
            "pendingPoints": [point.id for point in plan.points if not (point.reviewed and point.tested)],
        }

    @_operation
    def get_plan_logs(self, plan_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int)):
            raise InvalidArgument(f"Log limit must be an integer, got {type(limit).__name__}")
        plan = self.store.load(self._resolve(plan_id))
        # Entries are appended in order, so reversing yields newest first.
        entries = list(reversed(plan.logs))
        if limit is not None and limit > 0:
            entries = entries[:limit]
        return [entry.model_dump(mode="json") for entry in entries]


__all__ = ["OperationResult", "PlanService", "PointInput"]
