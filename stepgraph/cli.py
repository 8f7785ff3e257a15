"""Command line interface for validating and running stepgraph workflows."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
import yaml
from pydantic import ValidationError

from stepgraph import (
    ActionRegistry,
    ContextOverrides,
    ExecutionEngine,
    ExecutionStatus,
    StateTracker,
    get_event_sink,
    get_repository,
    load_config,
    load_workflow,
    register_builtin_actions,
)
from stepgraph.errors import StepgraphError
from stepgraph.transitions import validate_workflow

app = typer.Typer(help="CLI for stepgraph workflows")

state_app = typer.Typer(help="Commands for inspecting persisted execution state")

app.add_typer(state_app, name="state")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Logging level (defaults to the configured log_level)"
    ),
) -> None:
    """stepgraph CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=(log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_vars(values: List[str]) -> Dict[str, object]:
    variables: Dict[str, object] = {}
    for item in values:
        if "=" not in item:
            typer.secho(f"Invalid --var '{item}', expected KEY=VALUE", fg=typer.colors.RED)
            raise typer.Exit(code=2)
        key, raw = item.split("=", 1)
        variables[key.strip()] = yaml.safe_load(raw) if raw else ""
    return variables


def _load(path: Path):
    try:
        return load_workflow(path)
    except FileNotFoundError:
        typer.secho(f"Workflow file not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except (ValidationError, yaml.YAMLError, ValueError) as exc:
        typer.secho(f"Could not load workflow: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@app.command("validate")
def validate(path: Path) -> None:
    """
    Validate a workflow definition file.

    Reports dangling transitions, missing condition branches, cycles,
    unreachable steps and malformed conditions.

    Example:
        stepgraph validate workflows/order.yaml
    """
    workflow = _load(path)
    errors = validate_workflow(workflow)
    if errors:
        typer.secho(
            f"Workflow {workflow.id} has {len(errors)} problem(s):", fg=typer.colors.RED
        )
        for error in errors:
            typer.echo(f"- {error}")
        raise typer.Exit(code=1)
    typer.secho(f"Workflow {workflow.id} is valid", fg=typer.colors.GREEN)


@app.command("run")
def run(
    path: Path,
    var: List[str] = typer.Option([], "--var", help="Variable override KEY=VALUE"),
    save: bool = typer.Option(
        False, help="Persist the final execution state to the configured database"
    ),
) -> None:
    """
    Execute a workflow with the built-in actions (noop, set_variable, log).

    Example:
        stepgraph run workflows/order.yaml --var count=10 --save
    """
    workflow = _load(path)
    config = load_config()
    variables = _parse_vars(var)

    registry = register_builtin_actions(ActionRegistry())
    engine = ExecutionEngine(
        action_executor=registry,
        event_sink=get_event_sink(config=config),
        state_tracker=StateTracker(),
        config=config.engine,
        state_repository=get_repository(config=config) if save else None,
    )

    try:
        execution = asyncio.run(
            engine.execute(
                workflow, ContextOverrides(variables=variables), triggered_by="cli"
            )
        )
    except StepgraphError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Execution {execution.id}: {execution.status.value}")
    for step_execution in execution.step_executions:
        typer.echo(
            f"- {step_execution.step_id} (attempt {step_execution.attempt}): "
            f"{step_execution.status.value}"
        )
    if execution.error is not None:
        typer.secho(
            f"Error [{execution.error.code}]: {execution.error.message}",
            fg=typer.colors.RED,
        )
    if execution.status != ExecutionStatus.SUCCESS:
        raise typer.Exit(code=1)


@state_app.command("list")
def state_list() -> None:
    """List persisted execution states with their status and current step."""
    repo = get_repository()
    records = asyncio.run(repo.list_states())
    if not records:
        typer.echo("No execution states found")
        return
    for record in records:
        typer.echo(f"{record.execution_id}\t{record.status}\t{record.current_step_id}")


@state_app.command("show")
def state_show(execution_id: str) -> None:
    """Show variables, transition history and checkpoints for an execution."""
    repo = get_repository()
    record = asyncio.run(repo.load_state(execution_id))
    if record is None:
        typer.echo("Execution state not found")
        raise typer.Exit(code=1)
    data = record.data
    typer.echo(f"Execution {record.execution_id}: {record.status}")
    typer.echo(f"Current step: {record.current_step_id}")
    if data.get("variables"):
        typer.echo(f"Variables: {data['variables']}")
    for entry in data.get("history", []):
        line = f"- {entry.get('from_step')} -> {entry.get('to_step')}"
        if entry.get("reason"):
            line += f" ({entry['reason']})"
        typer.echo(line)
    typer.echo(f"Checkpoints: {len(data.get('checkpoints', []))}")


if __name__ == "__main__":
    app()
