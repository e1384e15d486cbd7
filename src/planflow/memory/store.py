"""Durable per-plan storage keyed by workspace identity and plan id."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterator, List, Mapping, Optional, TypeVar

from pydantic import ValidationError

from ..errors import InvalidArgument, NotFoundError, StorageError
from .schema import Plan, utc_now

DEFAULT_PLANS_DIR = Path(".planflow/plans")
LOGGER = logging.getLogger(__name__)

_PLAN_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

T = TypeVar("T")


def workspace_identity(workspace_root: Path | str) -> str:
    """Stable short identity for a workspace root."""
    resolved = Path(workspace_root).resolve()
    return hashlib.sha1(resolved.as_posix().encode("utf-8")).hexdigest()[:12]


def check_plan_id(plan_id: str) -> str:
    """Return ``plan_id`` stripped, or raise when it cannot name a record file."""
    candidate = (plan_id or "").strip()
    if not candidate:
        raise InvalidArgument("Plan id must not be empty")
    if not _PLAN_ID_PATTERN.match(candidate) or ".." in candidate:
        raise InvalidArgument(
            f"Plan id '{candidate}' may only contain letters, digits, '-', '_' and '.'"
        )
    return candidate


class PlanStore:
    """JSON-file persistence for plans, one record per plan and workspace."""

    @staticmethod
    def _is_writable(path: Path) -> bool:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(path, os.W_OK)

    @staticmethod
    def _fallback_dir(workspace_id: str) -> Path:
        return Path(tempfile.gettempdir()) / "planflow" / "plans" / workspace_id

    @classmethod
    def _resolve_plans_dir(cls, requested: Path, workspace_id: str) -> Path:
        resolved = requested.resolve()
        if cls._is_writable(resolved):
            return resolved
        fallback = cls._fallback_dir(workspace_id)
        if not cls._is_writable(fallback):
            raise StorageError(f"Unable to locate a writable plans directory (attempted {requested})")
        return fallback

    def __init__(self, workspace_root: Path | str, plans_dir: Path | str | None = None) -> None:
        self.workspace_root = Path(workspace_root).resolve()
        self.workspace_id = workspace_identity(self.workspace_root)
        requested = Path(plans_dir) if plans_dir is not None else DEFAULT_PLANS_DIR
        if not requested.is_absolute():
            requested = self.workspace_root / requested
        self.plans_dir = self._resolve_plans_dir(requested, self.workspace_id)
        if self.plans_dir != requested.resolve():
            LOGGER.warning(
                "Plans directory %s is not writable; using fallback %s",
                requested,
                self.plans_dir,
            )

    @classmethod
    def from_config(cls, config: Mapping[str, Any], workspace_root: Path | str) -> "PlanStore":
        paths = config.get("paths") or {}
        plans_dir = paths.get("plans")
        if isinstance(plans_dir, str) and plans_dir.strip():
            return cls(workspace_root, Path(plans_dir.strip()))
        return cls(workspace_root)

    def __enter__(self) -> "PlanStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    def _path(self, plan_id: str) -> Path:
        return self.plans_dir / f"{check_plan_id(plan_id)}.json"

    # Record operations ---------------------------------------------------------------
    def exists(self, plan_id: str) -> bool:
        return self._path(plan_id).exists()

    def get(self, plan_id: str) -> Optional[Plan]:
        path = self._path(plan_id)
        if not path.exists():
            return None
        return self._read(path, plan_id)

    def load(self, plan_id: str) -> Plan:
        plan = self.get(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan with ID '{plan_id}' not found")
        return plan

    def save(self, plan: Plan) -> None:
        path = self._path(plan.id)
        payload = plan.model_dump_json(indent=2)
        temp_path: Optional[Path] = None
        try:
            self.plans_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.plans_dir,
                prefix=f".{plan.id}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                temp_path = Path(handle.name)
                handle.write(payload)
                handle.flush()
            os.replace(temp_path, path)
        except OSError as error:
            LOGGER.error("Failed to save plan %s: %s", plan.id, error)
            if temp_path is not None:
                self._discard(temp_path)
            raise StorageError(f"Failed to save plan '{plan.id}'") from error
        LOGGER.debug("Saved plan %s (step=%s)", plan.id, plan.creation_step.value)

    def update(self, plan_id: str, mutate: Callable[[Plan], T]) -> T:
        """Load ``plan_id``, apply ``mutate`` and persist the full record."""
        plan = self.load(plan_id)
        outcome = mutate(plan)
        plan.updated_at = utc_now()
        self.save(plan)
        return outcome

    def delete(self, plan_id: str) -> None:
        path = self._path(plan_id)
        if not path.exists():
            raise NotFoundError(f"Plan with ID '{plan_id}' not found")
        try:
            path.unlink()
        except OSError as error:
            LOGGER.error("Failed to delete plan %s: %s", plan_id, error)
            raise StorageError(f"Failed to delete plan '{plan_id}'") from error

    def iter_plans(self) -> Iterator[Plan]:
        try:
            paths = sorted(self.plans_dir.glob("*.json"))
        except OSError as error:
            raise StorageError("Failed to list stored plans") from error
        for path in paths:
            try:
                yield self._read(path, path.stem)
            except StorageError as error:
                LOGGER.warning("Skipping unreadable plan record %s: %s", path.name, error)

    def list_plans(self) -> List[Plan]:
        return sorted(self.iter_plans(), key=lambda plan: plan.created_at)

    @staticmethod
    def _discard(temp_path: Path) -> None:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError as error:
            LOGGER.warning("Could not remove temporary plan file %s: %s", temp_path, error)

    def _read(self, path: Path, plan_id: str) -> Plan:
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as error:
            raise StorageError(f"Failed to load plan '{plan_id}'") from error
        try:
            return Plan.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as error:
            raise StorageError(f"Failed to load plan '{plan_id}': stored record is corrupt") from error


__all__ = ["DEFAULT_PLANS_DIR", "PlanStore", "check_plan_id", "workspace_identity"]
