"""Prompt rendering for workflow step instructions.

Templates reference plan and point values through ``<placeholder>`` tokens.
Unknown tokens are left untouched so custom templates can carry literal
angle-bracket text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from .memory.schema import Plan, Point

CHECKLIST_TOKEN = "<checklist>"
NO_ARCHITECTURE = "No architecture defined"
NO_FEEDBACK = "No specific feedback provided"

_TOKEN_PATTERN = re.compile(r"<([a-z_]+)>")


def _join(values: Sequence[str]) -> str:
    return ", ".join(value for value in values if value)


def _plan_values(plan: Plan) -> Dict[str, str]:
    language = plan.language
    return {
        "plan_id": plan.id,
        "plan_name": plan.name,
        "plan_short_description": plan.short_description,
        "plan_long_description": plan.long_description,
        "plan_architecture": plan.architecture or NO_ARCHITECTURE,
        "plan_original_request": language.original_request if language else "",
        "plan_translated_request": language.translated_request if language else "",
        "plan_detected_language": language.detected_language if language else "",
        "plan_points_count": str(len(plan.points)),
        "plan_implemented_count": str(sum(1 for point in plan.points if point.implemented)),
        "plan_reviewed_count": str(sum(1 for point in plan.points if point.reviewed)),
        "plan_tested_count": str(sum(1 for point in plan.points if point.tested)),
        "plan_needwork": plan.needs_work_comments[0] if plan.needs_work_comments else NO_FEEDBACK,
    }


def _point_values(point: Optional[Point]) -> Dict[str, str]:
    if point is None:
        return {}
    return {
        "point_id": point.id,
        "point_short_name": point.short_name,
        "point_short_description": point.short_description,
        "point_detailed_description": point.detailed_description,
        "point_review_instructions": point.review_instructions,
        "point_testing_instructions": point.testing_instructions,
        "point_expected_outputs": point.expected_outputs,
        "point_expected_inputs": point.expected_inputs,
        "point_rework_reason": point.rework_reason,
        "point_reviewed_comment": point.reviewed_comment,
        "point_tested_comment": point.tested_comment,
    }


@dataclass(frozen=True, slots=True)
class PromptContext:
    """Values a single evaluation contributes on top of plan and point fields."""

    plan: Plan
    point: Optional[Point] = None
    reason: str = ""
    failed_point_ids: tuple[str, ...] = ()
    checklist: str = ""
    rework_reason: str = ""

    def values(self) -> Dict[str, str]:
        values = _plan_values(self.plan)
        values.update(_point_values(self.point))
        ids = _join(self.failed_point_ids)
        values["id"] = ids
        values["failed_point_ids"] = ids
        values["reason"] = self.reason
        values["rework_reason"] = self.rework_reason or "\n".join(self.plan.needs_work_comments)
        values["checklist"] = self.checklist
        return values


def render_prompt(template: str, context: PromptContext) -> str:
    """Substitute placeholders in ``template``.

    When a checklist item is supplied but the template has no ``<checklist>``
    token, the item is appended as ``Current checklist item: ...``.
    """
    values = context.values()
    rendered = _TOKEN_PATTERN.sub(lambda match: values.get(match.group(1), match.group(0)), template)
    if context.checklist and CHECKLIST_TOKEN not in template:
        rendered = f"{rendered}\n\nCurrent checklist item: {context.checklist}"
    return rendered.strip()


__all__ = ["CHECKLIST_TOKEN", "NO_ARCHITECTURE", "NO_FEEDBACK", "PromptContext", "render_prompt"]
