"""Configuration commands."""

import click

from .utils import error_handler, get_config, output_json, wants_json


@click.group()
def config() -> None:
    """Inspect configuration settings."""
    pass


@config.command()
@click.pass_context
@error_handler
def show(ctx: click.Context) -> None:
    """Show the effective configuration."""
    settings = get_config(ctx).model_dump()

    if wants_json(ctx):
        output_json({"configuration": settings})
        return

    for key, value in sorted(settings.items()):
        click.echo(f"{key}: {value}")
