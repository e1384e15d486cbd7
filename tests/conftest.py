from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from planflow.memory.store import PlanStore  # noqa: E402
from planflow.service import PlanService  # noqa: E402


PointFactory = Callable[..., Dict[str, Any]]


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture()
def store(workspace: Path) -> PlanStore:
    return PlanStore(workspace)


@pytest.fixture()
def service(store: PlanStore) -> PlanService:
    return PlanService(store)


@pytest.fixture()
def point_fields() -> PointFactory:
    """Return a factory producing fully populated point payloads."""

    def build(name: str = "Parser", **overrides: Any) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "short_name": name,
            "short_description": f"{name} short description",
            "detailed_description": f"{name} detailed description",
            "review_instructions": f"Review {name}",
            "testing_instructions": f"Test {name}",
            "expected_outputs": f"{name} outputs",
            "expected_inputs": f"{name} inputs",
            "depends_on": ["-1"],
        }
        fields.update(overrides)
        return fields

    return build


@pytest.fixture()
def plan_id(service: PlanService) -> str:
    result = service.create_plan(
        "Demo Plan",
        "Build a demo",
        "Build a demo application with a parser and a renderer.",
        plan_id="demo",
    )
    assert result.success, result.error
    return "demo"
