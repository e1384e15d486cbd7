"""Per-plan record of mutating operations fired since the last reset.

The evaluation engine reads these flags to decide whether an actor actually
performed the edit a step asked for, instead of trusting a claim of success.
"""

from __future__ import annotations

import logging
from enum import Enum

from ..memory.schema import Plan, ToolCallFlags, utc_now

LOGGER = logging.getLogger(__name__)

__all__ = ["ToolCallCategory", "is_recorded", "record_tool_call", "reset_tool_calls"]


class ToolCallCategory(str, Enum):
    DESCRIPTION_CHANGE = "description_changed"
    ARCHITECTURE_SET = "architecture_set"
    POINTS_MANIPULATED = "points_manipulated"


def record_tool_call(plan: Plan, category: ToolCallCategory) -> None:
    setattr(plan.tool_calls, category.value, True)
    plan.tool_calls.last_tool_call_at = utc_now()
    plan.tool_calls.call_count += 1
    LOGGER.debug("Plan %s recorded tool call %s", plan.id, category.value)


def is_recorded(plan: Plan, category: ToolCallCategory) -> bool:
    return bool(getattr(plan.tool_calls, category.value))


def reset_tool_calls(plan: Plan) -> None:
    """Clear all three flags; the timestamp and call count are kept."""
    plan.tool_calls = ToolCallFlags(
        last_tool_call_at=plan.tool_calls.last_tool_call_at,
        call_count=plan.tool_calls.call_count,
    )
