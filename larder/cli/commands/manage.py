"""Write commands: ``init``, ``upload`` and ``delete``."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from pydantic import ValidationError

from larder.cli.session import console, err_console, get_config, open_store
from larder.models.cookbook import CookbookVersion


def init_cmd(ctx: typer.Context) -> None:
    """Create the database and schema if they do not exist yet."""
    config = get_config(ctx)
    with open_store(config):
        pass
    console.print(f"[bold green]Database ready:[/bold green] {config.db_path}")


def upload_cmd(
    ctx: typer.Context,
    document: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="JSON cookbook version document."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite even if the stored version is frozen."
    ),
) -> None:
    """Save a cookbook version from a JSON document (insert or update)."""
    try:
        raw = json.loads(document.read_text(encoding="utf-8"))
        version = CookbookVersion.from_document(raw)
    except (ValueError, KeyError, TypeError, ValidationError) as exc:
        err_console.print(f"[bold red]Invalid document:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    config = get_config(ctx)
    with open_store(config, enforce_freeze=config.enforce_freeze and not force) as store:
        store.save_version(version)
    console.print(f"[bold green]Saved[/bold green] {version.name}")


def delete_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Cookbook name."),
    version: str = typer.Option(
        None, "--version", "-v", help="Delete only this version."
    ),
) -> None:
    """Delete a cookbook version, or a whole cookbook with all versions."""
    with open_store(get_config(ctx)) as store:
        cookbook = store.load(name)
        if version is not None:
            event = store.delete_version(store.get_version(cookbook, version))
            label = f"{name} {event.versions[0]}"
        else:
            event = store.delete_cookbook(cookbook)
            label = f"{name} ({len(event.versions)} version(s))"
    console.print(f"[bold green]Deleted[/bold green] {label}")
    console.print(f"[dim]{len(event.hashes)} file hash(es) released for cleanup[/dim]")
