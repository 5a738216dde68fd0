"""Larder CLI, Typer-based command-line interface."""
