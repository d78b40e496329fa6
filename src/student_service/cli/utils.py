"""CLI utilities for output formatting and common functionality."""

import json
import sys
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any

import click

from ..config.loader import ServiceConfig, load_config
from ..database.connection import DatabaseManager
from ..database.migrations.runner import MigrationRunner
from ..utils.logging import StudentServiceException, setup_logging


class CliError(Exception):
    """Exception for CLI errors."""

    def __init__(self, message: str, exit_code: int = 1):
        """Initialize CLI error.

        Args:
            message: Error message
            exit_code: Exit code for the CLI
        """
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


def error_handler(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator turning service errors into a red message and a non-zero exit."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CliError as e:
            handle_error(e.message, e.exit_code)
        except StudentServiceException as e:
            handle_error(f"{type(e).__name__}: {e.message}")

    return wrapper


def handle_error(message: str, exit_code: int = 1) -> None:
    """Handle errors with consistent formatting."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(exit_code)


def success_message(message: str) -> None:
    """Display a success message."""
    click.echo(click.style(f"✓ {message}", fg="green"))


def output_json(data: Any) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(data, indent=2, default=str))


def output_table(headers: list[str], rows: list[list[Any]]) -> None:
    """Output data as a formatted table."""
    if not rows:
        click.echo("No data to display")
        return

    col_widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            if i < len(col_widths):
                col_widths[i] = max(col_widths[i], len(str(cell)))

    header_row = " | ".join(h.ljust(w) for h, w in zip(headers, col_widths, strict=False))
    click.echo(header_row)
    click.echo("-" * len(header_row))

    for row in rows:
        click.echo(
            " | ".join(
                str(cell).ljust(w) for cell, w in zip(row, col_widths, strict=False)
            )
        )


def wants_json(ctx: click.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json"))


def verbose_echo(ctx: click.Context, message: str) -> None:
    """Echo message only if verbose mode is enabled."""
    if ctx.obj and ctx.obj.get("verbose"):
        click.echo(click.style(f"[VERBOSE] {message}", fg="blue"), err=True)


def get_config(ctx: click.Context) -> ServiceConfig:
    """Load configuration from the global options and set up logging once."""
    obj = ctx.ensure_object(dict)
    if "service_config" not in obj:
        config = load_config(obj.get("config"), obj.get("profile"), obj.get("cli_overrides"))
        setup_logging(
            "DEBUG" if obj.get("verbose") else config.log_level,
            log_file=Path(config.log_file) if config.log_file else None,
            enable_structured=config.structured_logging,
        )
        obj["service_config"] = config
    return obj["service_config"]


def get_db_manager(ctx: click.Context) -> DatabaseManager:
    obj = ctx.ensure_object(dict)
    if "db_manager" not in obj:
        db_manager = DatabaseManager.from_config(get_config(ctx))
        ctx.call_on_close(db_manager.close)
        obj["db_manager"] = db_manager
    return obj["db_manager"]


def get_runner(ctx: click.Context) -> MigrationRunner:
    config = get_config(ctx)
    return MigrationRunner.from_config(get_db_manager(ctx).engine, config)
