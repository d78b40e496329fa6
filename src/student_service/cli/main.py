"""Main CLI entry point for student-service."""

import click

from .. import __version__
from .config import config
from .db import db
from .students import students
from .web import serve


@click.group()
@click.version_option(version=__version__, prog_name="student-service")
@click.option("--config", "-c", help="Configuration file path")
@click.option("--profile", "-p", help="Configuration profile to use")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--json", is_flag=True, help="Output in JSON format")
# Configuration override flags
@click.option("--database-url", help="Override database_url setting")
@click.option("--changelog-root", help="Override changelog_root setting")
@click.option("--changelog-file", help="Override changelog_file setting")
@click.option("--lock-wait-timeout", type=float, help="Override lock_wait_timeout setting")
@click.option("--log-level", help="Override log_level setting")
@click.pass_context
def main(
    ctx: click.Context,
    config: str | None,
    profile: str | None,
    verbose: bool,
    json: bool,
    database_url: str | None,
    changelog_root: str | None,
    changelog_file: str | None,
    lock_wait_timeout: float | None,
    log_level: str | None,
) -> None:
    """Student records over a changelog-managed database schema.

    Use command groups to organize functionality:
    - db: Apply, inspect and roll back schema changesets
    - students: Read and add student records
    - serve: Migrate the schema and start the HTTP API
    - config: Show the effective configuration
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["profile"] = profile
    ctx.obj["verbose"] = verbose
    ctx.obj["json"] = json

    overrides = {
        "database_url": database_url,
        "changelog_root": changelog_root,
        "changelog_file": changelog_file,
        "lock_wait_timeout": lock_wait_timeout,
        "log_level": log_level,
    }
    ctx.obj["cli_overrides"] = {k: v for k, v in overrides.items() if v is not None}


main.add_command(db)
main.add_command(students)
main.add_command(serve)
main.add_command(config)


if __name__ == "__main__":
    main()
