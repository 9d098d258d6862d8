"""Worker profile commands."""

from __future__ import annotations

import click

from conductor.cli.formatters import build_table, echo_json, get_console, truncate
from conductor.cli.loading import load_profiles_or_fail


@click.command("profiles")
@click.pass_context
def profiles_cmd(ctx: click.Context) -> None:
    """List worker profiles configured in conductor.toml."""
    profiles = load_profiles_or_fail()

    if ctx.obj.get("json"):
        echo_json([p.model_dump() for p in profiles.values()])
        return

    if not profiles:
        click.echo("No worker profiles configured.")
        return

    rows = [
        [
            p.id,
            p.name,
            p.model,
            "yes" if p.supports_vision else "-",
            "yes" if p.enabled else "no",
            truncate(p.purpose, 50),
        ]
        for p in profiles.values()
    ]
    get_console(ctx.obj.get("no_color", False)).print(
        build_table(
            "Worker Profiles",
            ["ID", "Name", "Model", "Vision", "Enabled", "Purpose"],
            rows,
        )
    )
