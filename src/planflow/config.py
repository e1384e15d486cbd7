"""Workflow configuration: defaults, YAML loading and step resolution."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError
from .planning.callbacks import CompletionPredicate, resolve_predicate
from .planning.checklist import ChecklistLines, parse_checklist_text
from .planning.evaluation import FailedStep

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "planflow.yaml"
CREATION_COMPLETE_KEY = "creation_complete"
DONE_KEY = "done"
# Prompt used when the pre-review gate rejects a plan; reported as plan_review.
VALIDATION_KEY = "plan_validation"

_REVIEW_FOOTER = (
    "\n\nIf you find any problem or problems, use the plan_need_works tool to specify the "
    "problems found. If everything looks fine and no additional work is needed, use the "
    "plan_reviewed tool to confirm it."
)

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "paths": {
        "plans": ".planflow/plans",
    },
    "workflow": {
        "plan_rework": {
            "prompt": (
                "Plan <plan_id> needs rework. Address the review feedback below and update "
                "the plan accordingly.\n\n**Feedback:** <plan_needwork>"
            ),
            "mode": "Architect",
        },
        "plan_description_review": {
            "prompt": "<checklist>" + _REVIEW_FOOTER,
            "mode": "Reviewer",
            "callback": "plan.reviewed",
            "checklist": {
                "plan": [
                    "Are the short and long descriptions clear and comprehensive?",
                    "Do the descriptions match the user requirements?",
                    "Is the technical scope well defined?",
                ],
            },
        },
        "plan_description_update_rework": {
            "prompt": (
                "The descriptions need rework. Fix them and use the plan_change tool again.\n\n"
                "**Problems Found:** <rework_reason>\n\n**Required Steps:**\n"
                "1. Review the reported problems\n2. Fix the short and long descriptions\n"
                "3. **IMMEDIATELY call plan_change tool** with the corrected descriptions\n"
                "4. After tool execution, provide a brief summary of what was fixed"
            ),
            "mode": "Architect",
            "callback": "tool.descriptionChanged",
        },
        "plan_architecture_creation": {
            "prompt": (
                "Create the architecture for this plan and store it with the "
                "plan_set_architecture tool as a JSON object.\n\n"
                "**User's Original Request:** <plan_translated_request>\n\n"
                "**Current Plan Context:**\n- **Short Description:** <plan_short_description>\n"
                "- **Long Description:** <plan_long_description>\n\n"
                "**Important:** Your response will be considered FAILED if you do not call the "
                "plan_set_architecture tool.\n\n<reason>"
            ),
            "mode": "Architect",
            "callback": "tool.architectureSet",
        },
        "plan_architecture_review": {
            "prompt": "<checklist>" + _REVIEW_FOOTER,
            "mode": "Reviewer",
            "callback": "plan.reviewed",
            "checklist": {
                "plan": [
                    "Does the architecture cover every requirement from the long description?",
                    "Are all components and their connections clearly named?",
                    "Is the architecture consistent with the chosen technologies?",
                ],
            },
        },
        "plan_architecture_creation_rework": {
            "prompt": (
                "The architecture needs rework. Fix it and use the plan_set_architecture tool "
                "again.\n\n**Problems Found:** <rework_reason>\n\n"
                "**Current Architecture:** <plan_architecture>"
            ),
            "mode": "Architect",
            "callback": "tool.architectureSet",
        },
        "plan_points_creation": {
            "prompt": (
                "Create the plan points for this plan with the plan_add_points tool. Every "
                "point needs a short name, descriptions, review and testing instructions, "
                "expected inputs and outputs, and its dependencies (use \"-1\" for "
                "independent points).\n\n**Architecture:** <plan_architecture>\n\n"
                "**Important:** Your response will be considered FAILED if you do not call the "
                "plan_add_points tool."
            ),
            "mode": "Architect",
            "callback": "tool.pointsManipulated",
        },
        "plan_points_review": {
            "prompt": "<checklist>" + _REVIEW_FOOTER,
            "mode": "Reviewer",
            "callback": "plan.reviewed",
            "checklist": {
                "points": [
                    "Is the point small and focused enough to be implemented in one step?",
                    "Are the expected inputs and outputs concrete?",
                ],
                "plan": ["Do the points together cover the whole architecture?"],
            },
        },
        "plan_points_creation_rework": {
            "prompt": (
                "The plan points need rework. Fix them with the plan_change_point or "
                "plan_add_points tools.\n\n**Problems Found:** <rework_reason>"
            ),
            "mode": "Architect",
            "callback": "tool.pointsManipulated",
        },
        "plan_checklist_review": {
            "prompt": "<checklist>" + _REVIEW_FOOTER,
            "mode": "Plan Reviewer",
            "callback": "plan.reviewed",
            "checklist": {
                "points": ["Are the review and testing instructions actionable?"],
                "plan": ["Is the plan ready for implementation?"],
            },
        },
        "plan_review": {
            "prompt": "Plan needs to be reviewed.\n\n<checklist>" + _REVIEW_FOOTER,
            "mode": "Plan Reviewer",
            "callback": "plan.reviewed",
            "checklist": {
                "points": ["Are the dependencies of this point correct and complete?"],
                "plan": ["Are the points ordered so that dependencies come first?"],
            },
        },
        "rework": {
            "prompt": "Please rework the following plan points: <failed_point_ids>\n\n<reason>",
            "mode": "Coder",
        },
        "implementation": {
            "prompt": (
                "Please implement plan point <failed_point_ids>: <point_short_name>\n\n"
                "<point_detailed_description>\n\n**Expected inputs:** <point_expected_inputs>\n"
                "**Expected outputs:** <point_expected_outputs>"
            ),
            "mode": "Coder",
        },
        "code_review": {
            "prompt": (
                "Please review plan point <failed_point_ids>: <point_short_name>\n\n"
                "<point_review_instructions>"
            ),
            "mode": "Reviewer",
        },
        "testing": {
            "prompt": (
                "Please test plan point <failed_point_ids>: <point_short_name>\n\n"
                "<point_testing_instructions>"
            ),
            "mode": "Tester",
        },
        "acceptance": {
            "prompt": "Please request Approver mode to perform a final acceptance check for the plan.",
            "mode": "Approver",
        },
        VALIDATION_KEY: {
            "prompt": (
                "Plan <plan_id> failed procedural validation before review: <reason>\n\n"
                "Fix point <failed_point_ids> with the plan_change_point or "
                "plan_set_point_dependencies tools, then evaluate the plan again."
            ),
            "mode": "Architect",
            "callback": "tool.pointsManipulated",
        },
        CREATION_COMPLETE_KEY: {
            "prompt": (
                "PLAN CREATION COMPLETED SUCCESSFULLY!\n\n**Plan Summary:**\n- **Name:** <plan_name>\n"
                "- **Description:** <plan_short_description>\n- **Points:** <plan_points_count> "
                "implementation points\n- **Status:** Ready for implementation"
            ),
            "mode": "",
        },
        DONE_KEY: {
            "prompt": "Plan is done. Nothing has to be done.",
            "mode": "",
        },
    },
}

_FALLBACK_PROMPT = "Please address the issue: <reason>"


def default_config() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            base[key] = _merge(current, value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def load_config(config_path: Optional[Path]) -> Dict[str, Any]:
    """Load YAML configuration and merge it over the defaults.

    A missing path yields the defaults unchanged.
    """
    config = default_config()
    if config_path is None or not config_path.exists():
        return config
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Failed to read config {config_path}: {error}") from error
    if not isinstance(data, Mapping):
        raise ConfigError(f"Configuration in {config_path} must be a mapping at the top level.")
    return _merge(config, data)


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False, allow_unicode=True)


@dataclass(frozen=True, slots=True)
class StepSettings:
    """Resolved configuration for a single workflow step."""

    key: str
    prompt: str = _FALLBACK_PROMPT
    mode: str = ""
    callback: Optional[CompletionPredicate] = None
    checklist: ChecklistLines = field(default_factory=ChecklistLines)


def _resolve_step(key: str, raw: Any) -> StepSettings:
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Configuration for workflow step '{key}' must be a mapping")
    checklist_raw = raw.get("checklist") or {}
    if not isinstance(checklist_raw, Mapping):
        raise ConfigError(f"Checklist for workflow step '{key}' must be a mapping with 'points'/'plan'")
    prompt = raw.get("prompt")
    return StepSettings(
        key=key,
        prompt=str(prompt) if prompt else _FALLBACK_PROMPT,
        mode=str(raw.get("mode") or ""),
        callback=resolve_predicate(raw.get("callback"), step=key),
        checklist=ChecklistLines(
            points=parse_checklist_text(checklist_raw.get("points")),
            plan=parse_checklist_text(checklist_raw.get("plan")),
        ),
    )


@dataclass(frozen=True, slots=True)
class WorkflowConfig:
    """Step settings resolved once from a configuration mapping."""

    steps: Mapping[str, StepSettings]

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "WorkflowConfig":
        workflow = config.get("workflow") or {}
        if not isinstance(workflow, Mapping):
            raise ConfigError("The 'workflow' section must be a mapping of step names")
        known = {step.value for step in FailedStep if step is not FailedStep.DONE}
        known.update({CREATION_COMPLETE_KEY, DONE_KEY, VALIDATION_KEY})
        steps: Dict[str, StepSettings] = {}
        for key, raw in workflow.items():
            if key not in known:
                LOGGER.warning("Ignoring unknown workflow step '%s' in configuration", key)
                continue
            steps[key] = _resolve_step(key, raw)
        return cls(steps=steps)

    @classmethod
    def default(cls) -> "WorkflowConfig":
        return cls.from_mapping(DEFAULT_CONFIG_TEMPLATE)

    def step(self, key: FailedStep | str) -> StepSettings:
        name = key.value if isinstance(key, FailedStep) else key
        settings = self.steps.get(name)
        if settings is None:
            return StepSettings(key=name)
        return settings


__all__ = [
    "CREATION_COMPLETE_KEY",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "DONE_KEY",
    "StepSettings",
    "VALIDATION_KEY",
    "WorkflowConfig",
    "default_config",
    "load_config",
    "write_config",
]
