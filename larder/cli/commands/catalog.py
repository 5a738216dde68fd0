"""Read-only commands: ``list``, ``versions`` and ``show``."""

from __future__ import annotations

import json

import typer
from rich.table import Table

from larder.cli.session import console, get_config, open_store
from larder.core.errors import CookbookVersionNotFound


def list_cmd(ctx: typer.Context) -> None:
    """List every cookbook with its version count and latest version."""
    with open_store(get_config(ctx)) as store:
        cookbooks = store.list_cookbooks()
        if not cookbooks:
            console.print("[dim]No cookbooks stored.[/dim]")
            return

        table = Table(title="Cookbooks")
        table.add_column("Name", style="cyan")
        table.add_column("Versions", justify="right")
        table.add_column("Latest", style="green")
        for cookbook in cookbooks:
            try:
                latest = store.latest_version(cookbook).version
            except CookbookVersionNotFound:
                latest = "-"
            table.add_row(cookbook.name, str(store.count_versions(cookbook)), latest)
        console.print(table)


def versions_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Cookbook name."),
) -> None:
    """List the versions of a cookbook, newest first."""
    with open_store(get_config(ctx)) as store:
        cookbook = store.load(name)
        versions = store.list_versions(cookbook)

    if not versions:
        console.print(f"[dim]Cookbook {name} has no versions.[/dim]")
        return

    table = Table(title=f"{name} versions")
    table.add_column("Version", style="green")
    table.add_column("Frozen", justify="center")
    table.add_column("Files", justify="right")
    for version in versions:
        files = sum(
            len(segment) if isinstance(segment, list) else 0
            for segment in version.documents.manifests().values()
        )
        frozen = "[yellow]Yes[/yellow]" if version.frozen else "No"
        table.add_row(version.version, frozen, str(files))
    console.print(table)


def show_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Cookbook name."),
    version: str = typer.Argument("latest", help="Version, or 'latest'."),
) -> None:
    """Print one cookbook version as JSON."""
    with open_store(get_config(ctx)) as store:
        cookbook = store.load(name)
        if version == "latest":
            found = store.latest_version(cookbook)
        else:
            found = store.get_version(cookbook, version)
    console.print_json(json.dumps(found.to_document()))
