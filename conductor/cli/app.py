"""CLI application — Click-based command hierarchy for Conductor.

The main CLI group and global flags. Subcommand modules register
themselves by importing and adding to the group.
"""

from __future__ import annotations

import click

from conductor.main import configure_logging


@click.group()
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, no_color: bool) -> None:
    """Conductor - orchestrate a pool of AI worker agents."""
    configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["json"] = json_output
    ctx.obj["no_color"] = no_color


# ---------------------------------------------------------------------------
# Register subcommand modules
# ---------------------------------------------------------------------------

def _register_subcommands() -> None:
    """Import and register all subcommand groups/commands."""
    from conductor.cli.init_cmd import init_cmd
    from conductor.cli.profiles import profiles_cmd
    from conductor.cli.workflows import workflows_group

    cli.add_command(profiles_cmd)
    cli.add_command(workflows_group)
    cli.add_command(init_cmd)


_register_subcommands()


def main() -> None:
    cli(obj={})
