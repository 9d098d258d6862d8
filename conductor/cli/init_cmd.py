"""conductor init — write a starter conductor.toml."""

from __future__ import annotations

from pathlib import Path

import click

from conductor.config_file import CONFIG_FILENAME, generate_template, write_config


@click.command("init")
@click.option(
    "--path",
    "target",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path(CONFIG_FILENAME),
    show_default=True,
    help="Where to write the file",
)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_cmd(target: Path, force: bool) -> None:
    """Create a conductor.toml with one profile per built-in workflow role."""
    if target.exists() and not force:
        raise click.ClickException(f"{target} already exists (use --force to overwrite)")
    write_config(target, generate_template())
    click.echo(f"Wrote {target}")
