"""CLI commands for inspecting and driving planflow plans."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, default_config, write_config
from .errors import ConfigError, StorageError
from .planning.evaluation import EvaluationResult
from .service import OperationResult, PlanService

APP_HELP = "planflow CLI: create plans and walk them through their review workflows."

app = typer.Typer(help=APP_HELP)

_WORKSPACE_HELP = "Workspace root that owns the plans."
_CONFIG_HELP = "Path to the workflow configuration file (relative to the workspace)."


def _service(workspace: str, config: str) -> PlanService:
    try:
        return PlanService.for_workspace(Path(workspace), Path(config))
    except (ConfigError, StorageError) as error:
        typer.echo(f"Failed to load workspace: {error.message}", err=True)
        raise typer.Exit(code=1) from error


def _unwrap(result: OperationResult) -> Any:
    if not result.success:
        typer.echo(f"Error ({result.error_kind}): {result.error}", err=True)
        raise typer.Exit(code=1)
    return result.data


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _render_evaluation(result: EvaluationResult) -> None:
    if result.is_done:
        typer.echo("Status: done")
    else:
        typer.echo(f"Next step: {result.failed_step.value}")
        if result.failed_points:
            typer.echo(f"Points: {', '.join(result.failed_points)}")
        if result.reason:
            typer.echo(f"Reason: {result.reason}")
        if result.recommended_mode:
            typer.echo(f"Recommended mode: {result.recommended_mode}")
        if result.checklist_remaining:
            typer.echo(f"Checklist items remaining: {result.checklist_remaining}")
    typer.echo("")
    typer.echo(result.next_step_prompt)


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)."),
) -> None:
    """Configure logging for every command."""
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level '{log_level}'", param_hint="--log-level")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@app.command()
def init(
    workspace: str = typer.Option(".", "--workspace", "-w", help=_WORKSPACE_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default workflow configuration into the workspace."""
    config_path = Path(config)
    if not config_path.is_absolute():
        config_path = Path(workspace) / config_path
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    write_config(config_path, default_config())
    typer.echo(f"Wrote default configuration to {config_path}.")


@app.command()
def new(
    name: str = typer.Argument(..., help="Human readable plan name."),
    short: str = typer.Option("", "--short", "-s", help="Short description."),
    long: str = typer.Option("", "--long", "-l", help="Long description."),
    plan_id: Optional[str] = typer.Option(None, "--id", help="Explicit plan id (derived from the name otherwise)."),
    workspace: str = typer.Option(".", "--workspace", "-w", help=_WORKSPACE_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Create a new plan."""
    service = _service(workspace, config)
    created = _unwrap(service.create_plan(name, short, long, plan_id=plan_id))
    typer.echo(f"Created plan {created['id']} ('{created['name']}').")


@app.command("list")
def list_plans(
    workspace: str = typer.Option(".", "--workspace", "-w", help=_WORKSPACE_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """List stored plans, oldest first."""
    service = _service(workspace, config)
    plans = _unwrap(service.list_plans(include_short_description=True))
    if not plans:
        typer.echo("No plans stored.")
        return
    for entry in plans:
        summary = f" - {entry['shortDescription']}" if entry.get("shortDescription") else ""
        typer.echo(f"{entry['id']}: {entry['name']}{summary}")


@app.command()
def show(
    plan_id: str = typer.Argument(..., help="Plan id."),
    details: bool = typer.Option(False, "--details", help="Include review/testing instructions and I/O."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw JSON view."),
    workspace: str = typer.Option(".", "--workspace", "-w", help=_WORKSPACE_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Show a plan and its points."""
    service = _service(workspace, config)
    view = _unwrap(service.show_plan(plan_id, include_point_details=details))
    if as_json:
        _echo_json(view)
        return
    typer.echo(f"Plan {view['id']}: {view['name']}")
    typer.echo(f"Creation step: {view['creationStep']}")
    typer.echo(f"Reviewed: {view['reviewed']}  Accepted: {view['accepted']}  Needs work: {view['needsWork']}")
    if view["shortDescription"]:
        typer.echo(f"Summary: {view['shortDescription']}")
    if not view["points"]:
        typer.echo("No points.")
    for point in view["points"]:
        flags = "".join(
            marker if point[key] else "-"
            for marker, key in (("I", "implemented"), ("R", "reviewed"), ("T", "tested"))
        )
        rework = " [rework]" if point["needRework"] else ""
        depends = ", ".join(point["dependsOn"]) or "undeclared"
        typer.echo(f"  [{flags}] {point['id']}: {point['shortName']} (depends on: {depends}){rework}")


@app.command()
def evaluate(
    plan_id: str = typer.Argument(..., help="Plan id."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
    workspace: str = typer.Option(".", "--workspace", "-w", help=_WORKSPACE_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Compute the next actionable step for a plan."""
    service = _service(workspace, config)
    result: EvaluationResult = _unwrap(service.evaluate(plan_id))
    if as_json:
        _echo_json(result.to_dict())
        return
    _render_evaluation(result)


@app.command()
def done(
    plan_id: str = typer.Argument(..., help="Plan id."),
    note: str = typer.Option("", "--note", "-n", help="Note recorded with the step."),
    failed: bool = typer.Option(False, "--failed", help="Report the step as not completed."),
    workspace: str = typer.Option(".", "--workspace", "-w", help=_WORKSPACE_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Report the current step as performed and show what comes next."""
    service = _service(workspace, config)
    current: EvaluationResult = _unwrap(service.evaluate(plan_id))
    if current.is_done:
        typer.echo("Plan is already done.")
        return
    if current.done_callback is None:
        typer.echo(f"Step {current.failed_step.value} advances only through plan operations.")
        raise typer.Exit(code=1)
    if current.completion_callback is not None and not failed and not current.completion_callback():
        typer.echo(f"Warning: no state change detected for step {current.failed_step.value}.")
    current.done_callback(not failed, note or None)
    _render_evaluation(_unwrap(service.evaluate(plan_id)))


@app.command()
def validate(
    plan_id: str = typer.Argument(..., help="Plan id."),
    workspace: str = typer.Option(".", "--workspace", "-w", help=_WORKSPACE_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Run the structural validator over a plan's points."""
    service = _service(workspace, config)
    result = service.validate_procedurally(plan_id)
    if not result.success:
        typer.echo(f"Invalid: {result.error}")
        raise typer.Exit(code=1)
    typer.echo(f"Plan {plan_id} is valid ({result.data['points']} point(s)).")


@app.command()
def checklist(
    plan_id: str = typer.Argument(..., help="Plan id."),
    workspace: str = typer.Option(".", "--workspace", "-w", help=_WORKSPACE_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Show the remaining items of the in-progress review checklist."""
    service = _service(workspace, config)
    view = _unwrap(service.get_review_checklist(plan_id))
    if not view["items"]:
        typer.echo("No review checklist in progress.")
        return
    typer.echo(f"Checklist for {view['step']} (item {view['position']} of {view['total']}):")
    for item in view["items"]:
        typer.echo(f"- {item}")


@app.command()
def delete(
    plan_id: str = typer.Argument(..., help="Plan id."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Confirm the deletion."),
    workspace: str = typer.Option(".", "--workspace", "-w", help=_WORKSPACE_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Delete a plan permanently."""
    service = _service(workspace, config)
    _unwrap(service.delete_plan(plan_id, confirm=yes))
    typer.echo(f"Deleted plan {plan_id}.")


if __name__ == "__main__":
    app()
