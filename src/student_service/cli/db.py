"""Schema migration commands."""

from datetime import datetime

import click

from .utils import (
    CliError,
    error_handler,
    get_runner,
    output_json,
    output_table,
    success_message,
    verbose_echo,
    wants_json,
)


@click.group()
def db() -> None:
    """Apply, inspect and roll back schema changesets."""
    pass


@db.command()
@click.option("--dry-run", is_flag=True, help="List pending changesets without applying")
@click.pass_context
@error_handler
def update(ctx: click.Context, dry_run: bool) -> None:
    """Apply every pending changeset."""
    runner = get_runner(ctx)
    verbose_echo(ctx, f"Changelog: {runner.changelog.master_file}")

    identities = runner.update(dry_run=dry_run)

    if wants_json(ctx):
        key = "pending" if dry_run else "applied"
        output_json({key: [str(identity) for identity in identities]})
        return

    if not identities:
        click.echo("No pending changesets. Schema is up to date.")
        return

    for identity in identities:
        click.echo(f"  - {identity}")
    if dry_run:
        click.echo(f"{len(identities)} changeset(s) pending")
    else:
        success_message(f"Applied {len(identities)} changeset(s)")


@db.command()
@click.option("--count", type=int, help="Roll back the last N changesets")
@click.option(
    "--to-date",
    type=click.DateTime(formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]),
    help="Roll back changesets applied after this UTC time",
)
@click.option("--to-tag", help="Roll back changesets applied after this tag")
@click.pass_context
@error_handler
def rollback(
    ctx: click.Context,
    count: int | None,
    to_date: datetime | None,
    to_tag: str | None,
) -> None:
    """Roll back applied changesets, most recent first."""
    selectors = [value for value in (count, to_date, to_tag) if value is not None]
    if len(selectors) != 1:
        raise CliError("Specify exactly one of --count, --to-date or --to-tag")
    if count is not None and count < 0:
        raise CliError("--count must not be negative")

    identities = get_runner(ctx).rollback(count=count, to_date=to_date, to_tag=to_tag)

    if wants_json(ctx):
        output_json({"rolled_back": [str(identity) for identity in identities]})
        return

    if not identities:
        click.echo("Nothing to roll back.")
        return

    for identity in identities:
        click.echo(f"  - {identity}")
    success_message(f"Rolled back {len(identities)} changeset(s)")


@db.command()
@click.pass_context
@error_handler
def status(ctx: click.Context) -> None:
    """Show applied and pending changesets."""
    status_data = get_runner(ctx).status()

    if wants_json(ctx):
        output_json(status_data)
        return

    click.echo(f"Applied changesets: {status_data['applied_count']}")
    click.echo(f"Pending changesets: {status_data['pending_count']}")
    for pending in status_data["pending_changesets"]:
        click.echo(f"  - {pending['filename']}::{pending['id']}::{pending['author']}")

    lock = status_data["lock"]
    if lock["locked"]:
        click.echo(f"Migration lock held by {lock['locked_by']} since {lock['lock_granted']}")


@db.command()
@click.pass_context
@error_handler
def history(ctx: click.Context) -> None:
    """Show the ledger of applied changesets."""
    entries = get_runner(ctx).history()

    if wants_json(ctx):
        output_json([entry.to_dict() for entry in entries])
        return

    output_table(
        ["#", "ID", "Author", "File", "Executed", "Tag"],
        [
            [
                entry.order_executed,
                entry.id,
                entry.author,
                entry.filename,
                entry.date_executed.isoformat(sep=" ", timespec="seconds"),
                entry.tag or "",
            ]
            for entry in entries
        ],
    )


@db.command()
@click.pass_context
@error_handler
def validate(ctx: click.Context) -> None:
    """Check the changelog and applied checksums without changing anything."""
    get_runner(ctx).validate()
    success_message("Changelog is valid")


@db.command()
@click.argument("name")
@click.pass_context
@error_handler
def tag(ctx: click.Context, name: str) -> None:
    """Tag the current schema state as a rollback boundary."""
    entry = get_runner(ctx).tag(name)
    success_message(f"Tagged {entry.identity} as '{name}'")


@db.command("release-locks")
@click.pass_context
@error_handler
def release_locks(ctx: click.Context) -> None:
    """Release the migration lock left behind by a crashed runner."""
    get_runner(ctx).release_locks()
    success_message("Migration lock released")
