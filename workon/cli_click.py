"""
workon.cli_click
----------------

User-facing Click command-line interface.

Commands
--------
start   : Bring a project's resources up on their tags
stop    : Tear a running project down
status  : Show the persisted state of a project
resume  : Reattach a project after a window-manager restart
list    : Show tracked projects and available project files
validate: Check a project file without starting anything
"""

from __future__ import annotations

import json
import logging
from importlib import metadata

import click
from dotenv import find_dotenv, load_dotenv

# WORKON_* settings are read once, when workon.constants is imported.
load_dotenv(find_dotenv(usecwd=True))

from workon.cli import (  # noqa: E402
    project_status_sync,
    resume_project_sync,
    start_project_sync,
    stop_project_sync,
    tracked_projects,
)
from workon.errors import ValidationError, WorkonError  # noqa: E402
from workon.lifecycle import OperationResult  # noqa: E402
from workon.model import format_placement  # noqa: E402
from workon.projects import list_projects, load_project  # noqa: E402
from workon.tags import plan_tags  # noqa: E402

_LOG = logging.getLogger(__name__)

_OUTPUT_OPTION = click.option(
    "-o",
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging.")
@click.version_option(metadata.version("workon"))
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:  # noqa: D401  (Click demands plain name)
    """workon – bring per-project workspaces up and down as one unit."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)


# --------------------------------------------------------------------------- #
# Rendering                                                                   #
# --------------------------------------------------------------------------- #


def _render(result: OperationResult, output: str) -> None:
    if output == "json":
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(f"Project '{result.project_name}': {result.status}")
    if result.outcomes:
        header = f"{'Resource':20}  {'Status':9}  {'Tag':10}  {'PID':>7}  Detail"
        click.echo(header)
        click.echo("-" * len(header))
        for outcome in result.outcomes:
            tag = "-" if outcome.tag is None else str(outcome.tag)
            pid = "-" if outcome.pid is None else str(outcome.pid)
            click.echo(
                f"{outcome.resource_id:20}  {outcome.status:9}  {tag:10}  {pid:>7}  "
                f"{outcome.reason or ''}"
            )
            for hint in outcome.suggestions:
                click.echo(f"{'':20}  → {hint}")
    for notice in result.warnings:
        click.echo(f"warning [{notice.kind.value}]: {notice.message}", err=True)
    if result.operation in ("start", "stop"):
        click.echo(f"Done – {result.succeeded} ok, {result.failed} failed.")


def _fail(exc: WorkonError) -> click.ClickException:
    if isinstance(exc, ValidationError) and len(exc.problems) > 1:
        lines = "\n".join(f"  - {p}" for p in exc.problems)
        return click.ClickException(f"Invalid project:\n{lines}")
    return click.ClickException(str(exc))


# --------------------------------------------------------------------------- #
# start / stop / status / resume                                              #
# --------------------------------------------------------------------------- #


@cli.command("start")
@click.argument("name")
@click.option("-l", "--layout", type=str, help="Named layout overriding tags.")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Simulate the start against an in-memory host; nothing is launched.",
)
@_OUTPUT_OPTION
def cmd_start(name: str, layout: str | None, dry_run: bool, output: str) -> None:
    """Start project NAME (a name or a path to a project file)."""
    try:
        result = start_project_sync(name, layout, dry_run=dry_run)
    except WorkonError as exc:
        raise _fail(exc) from exc
    if dry_run and output != "json":
        click.echo("(dry run – nothing was launched)")
    _render(result, output)


@cli.command("stop")
@click.argument("name")
@_OUTPUT_OPTION
def cmd_stop(name: str, output: str) -> None:
    """Stop project NAME."""
    try:
        result = stop_project_sync(name)
    except WorkonError as exc:
        raise _fail(exc) from exc
    _render(result, output)


@cli.command("status")
@click.argument("name")
@_OUTPUT_OPTION
def cmd_status(name: str, output: str) -> None:
    """Show the state of project NAME."""
    try:
        result = project_status_sync(name)
    except WorkonError as exc:
        raise _fail(exc) from exc
    _render(result, output)


@cli.command("resume")
@click.argument("name")
@_OUTPUT_OPTION
def cmd_resume(name: str, output: str) -> None:
    """Reattach project NAME to the windows it still owns."""
    try:
        result = resume_project_sync(name)
    except WorkonError as exc:
        raise _fail(exc) from exc
    _render(result, output)


# --------------------------------------------------------------------------- #
# list / validate                                                             #
# --------------------------------------------------------------------------- #


@cli.command("list")
@_OUTPUT_OPTION
def cmd_list(output: str) -> None:
    """List tracked projects and available project files."""
    tracked = tracked_projects()
    available = list_projects()

    if output == "json":
        payload = {
            "tracked": {
                name: {
                    "status": state.status.value,
                    "base_tag": state.base_tag,
                    "live": len(state.live()),
                    "resources": len(state.resources),
                    "updated_at": state.updated_at,
                }
                for name, state in tracked.items()
            },
            "available": available,
        }
        click.echo(json.dumps(payload, indent=2))
        return

    if tracked:
        header = f"{'Project':24}  {'Status':9}  {'Base':4}  {'Live':>4}  Updated"
        click.echo(header)
        click.echo("-" * len(header))
        for name, state in tracked.items():
            click.echo(
                f"{name:24}  {state.status.value:9}  {state.base_tag:4}  "
                f"{len(state.live()):>4}  {state.updated_at}"
            )
    else:
        click.echo("No tracked projects.")

    idle = [name for name in available if name not in tracked]
    if idle:
        click.echo("")
        click.echo("Available: " + ", ".join(idle))


@cli.command("validate")
@click.argument("name")
@click.option(
    "-b",
    "--base-tag",
    type=click.IntRange(1, 9),
    default=1,
    show_default=True,
    help="Base tag used to preview relative placements.",
)
@click.option("-l", "--layout", type=str, help="Preview a named layout.")
def cmd_validate(name: str, base_tag: int, layout: str | None) -> None:
    """Validate project NAME and preview where each resource would land."""
    try:
        project = load_project(name)
        plan = plan_tags(project.resources, base_tag, overrides=project.placements(layout))
    except WorkonError as exc:
        raise _fail(exc) from exc

    click.echo(f"Project '{project.name}' is valid ({len(project.resources)} resource(s)).")
    header = f"{'Resource':20}  {'Kind':8}  {'Tag spec':10}  {'Tag':6}  Reuse"
    click.echo(header)
    click.echo("-" * len(header))
    for spec in project.resources:
        resolved = plan.assignments[spec.id]
        flag = "!" if resolved.overflowed else ""
        click.echo(
            f"{spec.id:20}  {spec.kind.value:8}  {format_placement(spec.placement):10}  "
            f"{str(resolved.tag) + flag:6}  {spec.reuse.describe()}"
        )
    for resource_id in plan.overflows:
        click.echo(f"warning [placement-overflow]: {plan.warning_for(resource_id)}", err=True)
    if plan.creations:
        click.echo("Tags to create: " + ", ".join(plan.creations))


if __name__ == "__main__":
    cli()
