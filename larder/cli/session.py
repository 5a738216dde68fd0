"""Shared plumbing for CLI commands: config lookup and store lifecycle."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console

from larder.config import LarderConfig
from larder.core.connection import SQLiteConnectionProvider
from larder.core.cookbook_store import (
    CookbookStore,
    allow_overwrite,
    reject_frozen_overwrite,
)
from larder.core.errors import LarderError

console = Console()
err_console = Console(stderr=True)


def get_config(ctx: typer.Context) -> LarderConfig:
    """Return the config resolved by the app callback."""
    if isinstance(ctx.obj, LarderConfig):
        return ctx.obj
    return LarderConfig()


@contextmanager
def open_store(config: LarderConfig, *, enforce_freeze: bool | None = None) -> Iterator[CookbookStore]:
    """Open the configured database for one command and close it afterwards.

    Any :class:`LarderError` is printed and turned into exit code 1.
    """
    enforce = config.enforce_freeze if enforce_freeze is None else enforce_freeze
    provider = SQLiteConnectionProvider(
        config.db_path, busy_timeout=config.busy_timeout_seconds
    )
    try:
        with provider:
            yield CookbookStore(
                provider,
                freeze_policy=reject_frozen_overwrite if enforce else allow_overwrite,
            )
    except LarderError as exc:
        err_console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
