"""Web interface command."""

import click
import uvicorn

from ..web.app import create_app
from .utils import error_handler, get_config


@click.command()
@click.option("--port", "-p", type=int, help="Port to run on")
@click.option("--host", "-h", help="Host to bind to")
@click.pass_context
@error_handler
def serve(ctx: click.Context, port: int | None, host: str | None) -> None:
    """Migrate the schema, then serve the HTTP API."""
    config = get_config(ctx)
    host = host or config.web_host
    port = port or config.web_port

    click.echo(f"Starting student-service on {host}:{port}")
    try:
        uvicorn.run(create_app(config), host=host, port=port, log_level="info")
    except KeyboardInterrupt:
        click.echo("\nShutting down web interface...")
