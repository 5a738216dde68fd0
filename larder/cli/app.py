"""Main Typer application, global options and command registration.

Entry point: ``larder`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.logging import RichHandler

from larder.cli.commands.catalog import list_cmd, show_cmd, versions_cmd
from larder.cli.commands.manage import delete_cmd, init_cmd, upload_cmd
from larder.cli.session import err_console
from larder.config import LarderConfig, load_config

app = typer.Typer(
    name="larder",
    help="Larder: versioned cookbook storage.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="init", help="Create the cookbook database.")(init_cmd)
app.command(name="list", help="List stored cookbooks.")(list_cmd)
app.command(name="versions", help="List the versions of a cookbook.")(versions_cmd)
app.command(name="show", help="Show one cookbook version as JSON.")(show_cmd)
app.command(name="upload", help="Save a cookbook version from a JSON file.")(upload_cmd)
app.command(name="delete", help="Delete a cookbook or one of its versions.")(delete_cmd)


def configure_logging(config: LarderConfig) -> None:
    """Send log records to the configured file, or to stderr via rich."""
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    else:
        handler = RichHandler(console=err_console, show_path=False)
    logging.basicConfig(level=config.log_level, handlers=[handler], force=True)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_file: Path = typer.Option(
        None, "--config", "-c", exists=True, dir_okay=False, help="TOML config file."
    ),
    db_path: Path = typer.Option(None, "--db", help="Path to the SQLite database."),
    log_file: Path = typer.Option(None, "--log-file", "-L", help="Log to this file."),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Debug logging."),
) -> None:
    """Resolve configuration once for every command."""
    try:
        config = load_config(
            config_file,
            db_path=db_path,
            log_file=log_file,
            log_level="DEBUG" if verbose else None,
        )
    except ValidationError as exc:
        err_console.print(f"[bold red]Invalid configuration:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    configure_logging(config)
    ctx.obj = config


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
