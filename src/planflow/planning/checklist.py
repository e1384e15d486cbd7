"""Checklist engine: ordered, persisted queues of atomic review items.

A review episode for a workflow step is decomposed into one item per
configured point-scoped line for every point (in document order), followed by
one item per plan-scoped line. Items only store ``(scope, target_id,
template_key)``; their text is rendered on demand from the current
configuration so an in-flight queue survives template edits.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from ..memory.schema import ChecklistItem, ChecklistQueue, ChecklistScope, Plan

LOGGER = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^(?P<step>[a-z_]+):(?P<scope>point|plan):(?P<index>\d+)$")

__all__ = [
    "ChecklistLines",
    "build_queue",
    "ensure_queue",
    "pop_item",
    "parse_checklist_text",
    "render_item",
]


@dataclass(frozen=True, slots=True)
class ChecklistLines:
    """Configured checklist templates for one workflow step."""

    points: tuple[str, ...] = ()
    plan: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.points and not self.plan


def parse_checklist_text(value: str | Sequence[str] | None) -> tuple[str, ...]:
    """Normalise checklist configuration into individual lines.

    Accepts either a list of lines or ``* item`` bullet text where indented
    continuation lines belong to the preceding bullet. Plain text without
    bullets is read as one item per non-empty line.
    """
    if value is None:
        return ()
    if not isinstance(value, str):
        return tuple(str(item).strip() for item in value if str(item).strip())

    text = value.strip()
    if not text:
        return ()

    lines = text.splitlines()
    if not any(line.strip().startswith("* ") for line in lines):
        return tuple(line.strip() for line in lines if line.strip())

    items: list[str] = []
    current = ""
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("* "):
            if current:
                items.append(current.strip())
            current = stripped[2:].strip()
        elif current and stripped:
            current += "\n" + stripped
    if current:
        items.append(current.strip())
    return tuple(item for item in items if item)


def _template_key(step: str, scope: ChecklistScope, index: int) -> str:
    return f"{step}:{scope.value}:{index}"


def build_queue(step: str, plan: Plan, lines: ChecklistLines) -> ChecklistQueue:
    items: list[ChecklistItem] = []
    for point in plan.points:
        for index, _ in enumerate(lines.points):
            items.append(
                ChecklistItem(
                    scope=ChecklistScope.POINT,
                    target_id=point.id,
                    template_key=_template_key(step, ChecklistScope.POINT, index),
                )
            )
    for index, _ in enumerate(lines.plan):
        items.append(
            ChecklistItem(
                scope=ChecklistScope.PLAN,
                target_id=plan.id,
                template_key=_template_key(step, ChecklistScope.PLAN, index),
            )
        )
    return ChecklistQueue(step=step, items=items, total=len(items))


def ensure_queue(plan: Plan, step: str, lines: ChecklistLines) -> tuple[ChecklistQueue, bool]:
    """Return the persisted queue for ``step``, building it on first use.

    The boolean is ``True`` when a new queue was built and the plan must be
    saved. A queue left behind by a different step is discarded.
    """
    queue = plan.checklist
    if queue is not None and queue.step == step:
        return queue, False
    if queue is not None:
        LOGGER.debug(
            "Discarding checklist for step %s on plan %s (now at %s)", queue.step, plan.id, step
        )
    queue = build_queue(step, plan, lines)
    plan.checklist = queue
    LOGGER.info("Built %d checklist item(s) for step %s on plan %s", queue.total, step, plan.id)
    return queue, True


def pop_item(plan: Plan, step: str) -> Optional[ChecklistItem]:
    """Remove the head item of the ``step`` queue; ``None`` when nothing was removed."""
    queue = plan.checklist
    if queue is None or queue.step != step or not queue.items:
        return None
    head = queue.items.pop(0)
    plan.checklist = queue
    return head


def render_item(item: ChecklistItem, plan: Plan, lines: ChecklistLines) -> str:
    """Render an item as ``<prefix>: <line>`` using the current configuration."""
    line = _resolve_line(item, lines)
    if item.scope is ChecklistScope.POINT:
        point = plan.find_point(item.target_id)
        prefix = point.short_name if point and point.short_name.strip() else f"Point {item.target_id}"
        if line is None:
            line = "Review this point against the plan requirements."
        return f"{prefix}: {line}"
    if line is None:
        line = "Review the plan as a whole."
    return f"Plan: {line}"


def _resolve_line(item: ChecklistItem, lines: ChecklistLines) -> Optional[str]:
    match = _KEY_PATTERN.match(item.template_key)
    if not match:
        return None
    index = int(match.group("index"))
    source: Iterable[str] = lines.points if match.group("scope") == "point" else lines.plan
    candidates = tuple(source)
    if index >= len(candidates):
        return None
    return candidates[index]
