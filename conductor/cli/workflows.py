"""Workflow commands — list and show."""

from __future__ import annotations

import click

from conductor.cli.formatters import build_table, echo_json, get_console, truncate
from conductor.cli.loading import build_engine


@click.group("workflows")
def workflows_group() -> None:
    """Inspect registered workflows."""
    pass


@workflows_group.command("list")
@click.pass_context
def workflows_list(ctx: click.Context) -> None:
    """List workflows sorted by id."""
    workflows = build_engine().list()

    if ctx.obj.get("json"):
        echo_json([wf.model_dump() for wf in workflows])
        return

    if not workflows:
        click.echo("No workflows registered.")
        return

    rows = [
        [
            wf.id,
            wf.name,
            len(wf.steps),
            " -> ".join(step.worker_id for step in wf.steps),
            truncate(wf.description, 50),
        ]
        for wf in workflows
    ]
    get_console(ctx.obj.get("no_color", False)).print(
        build_table("Workflows", ["ID", "Name", "Steps", "Workers", "Description"], rows)
    )


@workflows_group.command("show")
@click.argument("workflow_id")
@click.pass_context
def workflows_show(ctx: click.Context, workflow_id: str) -> None:
    """Show the steps of one workflow."""
    workflow = build_engine().get(workflow_id)
    if workflow is None:
        raise click.ClickException(f'Unknown workflow "{workflow_id}".')

    if ctx.obj.get("json"):
        echo_json(workflow.model_dump())
        return

    console = get_console(ctx.obj.get("no_color", False))
    console.print(f"[bold]{workflow.name}[/bold] ({workflow.id})")
    if workflow.description:
        console.print(workflow.description)
    rows = [
        [index + 1, step.id, step.title, step.worker_id, "yes" if step.carry else "-"]
        for index, step in enumerate(workflow.steps)
    ]
    console.print(build_table("Steps", ["#", "ID", "Title", "Worker", "Carry"], rows))
