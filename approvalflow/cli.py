"""Command line interface for the approvalflow engine."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
import yaml

from approvalflow.config import ApprovalflowConfig, load_config
from approvalflow.contracts import ProcessDefinition
from approvalflow.engine import as_definition, validate_definition
from approvalflow.exceptions import ApprovalflowError
from approvalflow.persistence import StateRepository, get_repository
from approvalflow.service import ApprovalEngine

app = typer.Typer(help="CLI for approvalflow processes")

# Command groups
definition_app = typer.Typer(help="Commands for managing process definitions")
path_app = typer.Typer(help="Commands for approval path previews")
instance_app = typer.Typer(help="Commands for managing process instances")
task_app = typer.Typer(help="Commands for acting on approval tasks")

app.add_typer(definition_app, name="definition")
app.add_typer(path_app, name="path")
app.add_typer(instance_app, name="instance")
app.add_typer(task_app, name="task")


@app.callback()
def main() -> None:
    """approvalflow CLI entry point."""
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())


# ----------------------------------------------------------------------
# Helpers
def _open_engine() -> Tuple[ApprovalEngine, StateRepository]:
    config: ApprovalflowConfig = load_config()
    repository = get_repository(config=config)
    engine = asyncio.run(ApprovalEngine.restore(repository, config))
    return engine, repository


def _commit(engine: ApprovalEngine, repository: StateRepository) -> None:
    asyncio.run(engine.save(repository))


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _read_definition(path: Path) -> ProcessDefinition:
    if not path.exists():
        _fail(f"Definition file not found: {path}")
    data = yaml.safe_load(path.read_text()) or {}
    definition = as_definition(data)
    if definition is None:
        _fail(f"{path} does not contain a process definition")
    return definition


_LITERALS = {"true": True, "false": False, "null": None}
_INT_RE = re.compile(r"^[+-]?(0|[1-9]\d*)$")
_FLOAT_RE = re.compile(r"^[+-]?(0|[1-9]\d*)\.\d+$")


def _parse_value(raw: str) -> Any:
    """Plain numbers and true/false/null are converted; everything else stays text."""
    if raw in _LITERALS:
        return _LITERALS[raw]
    if _INT_RE.match(raw):
        return int(raw)
    if _FLOAT_RE.match(raw):
        return float(raw)
    return raw


def _parse_fields(fields: Optional[List[str]]) -> Dict[str, Any]:
    """Parse ``key=value`` pairs into form values."""
    form: Dict[str, Any] = {}
    for item in fields or []:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            _fail(f"Invalid field '{item}', expected key=value")
        form[key.strip()] = _parse_value(raw)
    return form


# ----------------------------------------------------------------------
# Definitions
@definition_app.command("validate")
def definition_validate(path: Path) -> None:
    """Check a definition file against the publish rules."""
    definition = _read_definition(path)
    issues = validate_definition(definition)
    if not issues:
        typer.echo("Definition is valid")
        return
    for issue in issues:
        location = f"[{issue.node_id}] " if issue.node_id else ""
        typer.echo(f"{location}{issue.code}: {issue.message}")
    raise typer.Exit(code=1)


@definition_app.command("publish")
def definition_publish(path: Path) -> None:
    """
    Validate and publish a definition file as a new version.

    Example:
        approvalflow definition publish ./leave_request.yaml
        # Output: Published 3f2a... (leave-request v2)
    """
    definition = _read_definition(path)
    engine, repository = _open_engine()
    try:
        published = engine.publish(definition)
    except ApprovalflowError as exc:
        _fail(exc.message)
    _commit(engine, repository)
    typer.echo(
        f"Published {published.id} ({published.definition_key} v{published.version})"
    )


@definition_app.command("list")
def definition_list() -> None:
    """List stored definitions with their key, version and status."""
    engine, _ = _open_engine()
    definitions = engine.definitions.list()
    if not definitions:
        typer.echo("No definitions found")
        return
    for definition in definitions:
        typer.echo(
            f"{definition.id}\t{definition.definition_key}\t"
            f"v{definition.version}\t{definition.status.value}"
        )


# ----------------------------------------------------------------------
# Path preview
@path_app.command("preview")
def path_preview(
    path: Path,
    field: Optional[List[str]] = typer.Option(
        None, "--field", "-f", help="Form value as key=value; repeatable"
    ),
) -> None:
    """
    Show the approval steps a submission would traverse.

    Example:
        approvalflow path preview ./expense.yaml --field amount=5000
        # Output: 1. Financial Approver
    """
    definition = _read_definition(path)
    engine = ApprovalEngine(load_config())
    steps = engine.preview_path(definition, _parse_fields(field))
    if not steps:
        typer.echo("No approval steps")
        return
    for index, step in enumerate(steps, start=1):
        typer.echo(f"{index}. {step.label}")


# ----------------------------------------------------------------------
# Instances
@instance_app.command("start")
def instance_start(
    definition_id: str,
    field: Optional[List[str]] = typer.Option(
        None, "--field", "-f", help="Form value as key=value; repeatable"
    ),
    created_by: str = typer.Option("user", help="Role of the submitter"),
    title: Optional[str] = typer.Option(None, help="Instance title"),
) -> None:
    """Start a process instance from a published definition."""
    engine, repository = _open_engine()
    try:
        instance = engine.start_process(
            definition_id,
            form_data=_parse_fields(field),
            created_by=created_by,
            title=title,
        )
    except ApprovalflowError as exc:
        _fail(exc.message)
    _commit(engine, repository)
    typer.echo(f"Started {instance.instance_id}: {instance.status.value}")
    if instance.current_node_id:
        typer.echo(f"Current node: {instance.current_node_id}")


@instance_app.command("list")
def instance_list() -> None:
    """List instances with status and current node."""
    engine, _ = _open_engine()
    instances = engine.instances.list()
    if not instances:
        typer.echo("No instances found")
        return
    for instance in instances:
        typer.echo(
            f"{instance.instance_id}\t{instance.status.value}\t{instance.current_node_id or '-'}"
        )


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """Show progress and audit log of an instance."""
    engine, _ = _open_engine()
    try:
        instance = engine.instances.get(instance_id)
    except ApprovalflowError:
        _fail("Instance not found")
    typer.echo(f"Instance {instance.instance_id}: {instance.status.value}")
    typer.echo(f"Title: {instance.title}")
    typer.echo(f"Definition: {instance.definition_key} v{instance.definition_version}")
    if instance.form_data:
        typer.echo(f"Form: {instance.form_data}")
    for step in engine.progress(instance_id):
        line = f"- {step.title}: {step.status.value}"
        if step.summary:
            line += f" ({step.summary})"
        typer.echo(line)
    typer.echo("Log:")
    for entry in instance.logs:
        comment = f" - {entry.comment}" if entry.comment else ""
        typer.echo(
            f"  {entry.date.isoformat()} {entry.action.value} by {entry.operator}{comment}"
        )


# ----------------------------------------------------------------------
# Tasks
@task_app.command("list")
def task_list(
    role: Optional[str] = typer.Option(None, help="Only pending tasks of this role"),
) -> None:
    """List tasks, optionally only the pending ones of a role."""
    engine, _ = _open_engine()
    tasks = engine.tasks.pending_for_role(role) if role else engine.tasks.list()
    if not tasks:
        typer.echo("No tasks found")
        return
    for task in tasks:
        typer.echo(
            f"{task.id}\t{task.instance_id}\t{task.node_id}\t"
            f"{task.assignee_role}\t{task.status.value}"
        )


def _act(task_id: str, action: str, operator: Optional[str], comment: Optional[str]) -> None:
    engine, repository = _open_engine()
    handler = engine.approve if action == "approve" else engine.reject
    try:
        task = handler(task_id, operator=operator, comment=comment)
    except ApprovalflowError as exc:
        _fail(exc.message)
    _commit(engine, repository)
    instance = engine.instances.get(task.instance_id)
    typer.echo(f"Task {task.id}: {task.status.value}")
    typer.echo(f"Instance {instance.instance_id}: {instance.status.value}")


@task_app.command("approve")
def task_approve(
    task_id: str,
    operator: Optional[str] = typer.Option(None, help="Acting role"),
    comment: Optional[str] = typer.Option(None, help="Approval comment"),
) -> None:
    """Approve a pending task at the instance's current node."""
    _act(task_id, "approve", operator, comment)


@task_app.command("reject")
def task_reject(
    task_id: str,
    operator: Optional[str] = typer.Option(None, help="Acting role"),
    comment: Optional[str] = typer.Option(None, help="Rejection comment"),
) -> None:
    """Reject a pending task; the whole instance is rejected."""
    _act(task_id, "reject", operator, comment)


@task_app.command("delegate")
def task_delegate(
    task_id: str,
    to: str = typer.Option(..., "--to", help="Role receiving the task"),
    operator: str = typer.Option(..., "--operator", help="Current assignee role"),
) -> None:
    """Reassign a pending task to another role."""
    engine, repository = _open_engine()
    try:
        task = engine.delegate(task_id, to, operator)
    except ApprovalflowError as exc:
        _fail(exc.message)
    _commit(engine, repository)
    typer.echo(f"Task {task.id} delegated from {task.delegated_from} to {task.assignee_role}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
