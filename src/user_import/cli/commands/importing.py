"""
User import commands.

This module drives the import session state machine headlessly: validate a
source, preview it, run or resume an import, inspect sessions and export
their error reports.
"""

import asyncio
from pathlib import Path

import click
from rich.table import Table

from user_import.cli.context import ImportContext
from user_import.cli.decorators import handle_errors, pass_context
from user_import.cli.utils import (
    console,
    create_progress_bar,
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
)
from user_import.client.exceptions import SessionStateError
from user_import.records import ImportOptions, ImportPhase, ImportProgress, ImportSession
from user_import.reporting.summary import (
    build_preview_table,
    describe_session_error,
    render_session,
)
from user_import.utils.logging import get_logger

logger = get_logger(__name__)


def source_options(f):
    """Attach the --url and --credential options shared by source commands."""
    f = click.option(
        "--credential",
        required=True,
        envvar="USER_IMPORT_SOURCE_CREDENTIAL",
        help="Service role key of the source project",
    )(f)
    f = click.option(
        "--url",
        required=True,
        envvar="USER_IMPORT_SOURCE_URL",
        help="Base URL of the source project (e.g. https://xyz.supabase.co)",
    )(f)
    return f


def _run_with_progress(ctx: ImportContext, run) -> ImportSession:
    """Run ``run(orchestrator)`` while rendering a progress bar."""
    with create_progress_bar() as progress:
        task_id = progress.add_task("Importing users", total=None)

        def on_progress(update: ImportProgress) -> None:
            progress.update(
                task_id,
                completed=update.processed,
                total=update.total,
                description=f"Batch {update.batch}",
            )

        orchestrator = ctx.orchestrator(progress_callback=on_progress)
        return asyncio.run(run(orchestrator))


def _finish(session: ImportSession) -> None:
    render_session(session, console)
    if session.phase == ImportPhase.COMPLETED:
        echo_success("Import completed")
        return

    echo_error(f"Import failed: {describe_session_error(session.error)}")
    if session.can_resume:
        echo_info(f"Resume with: user-import resume {session.session_id} --credential ...")
    raise click.exceptions.Exit(1)


@click.command(name="validate")
@source_options
@pass_context
@handle_errors
def validate(ctx: ImportContext, url: str, credential: str) -> None:
    """Check that the source accepts the credential.

    Examples:

        user-import validate --url https://xyz.supabase.co --credential $KEY
    """
    orchestrator = ctx.orchestrator()
    asyncio.run(orchestrator.validate_connection(url, credential))
    echo_success(f"Connected to {url}")


@click.command(name="preview")
@source_options
@click.option("--sample-size", "-n", type=int, default=None, help="Users to sample (max 20)")
@pass_context
@handle_errors
def preview(ctx: ImportContext, url: str, credential: str, sample_size: int | None) -> None:
    """Show a few source users without importing anything."""
    orchestrator = ctx.orchestrator()
    result = asyncio.run(orchestrator.preview(url, credential, sample_size))
    console.print(build_preview_table(result.sample_users, result.total_count))


@click.command(name="run")
@source_options
@click.option("--tenant", "-t", required=True, help="Destination tenant (project) id")
@click.option("--batch-size", type=click.IntRange(1, 1000), default=100, show_default=True)
@click.option(
    "--skip-existing/--fail-existing",
    default=True,
    show_default=True,
    help="Skip users whose email already exists, or record them as collisions",
)
@click.option("--preserve-ids", is_flag=True, help="Reuse source user ids")
@click.option("--no-metadata", is_flag=True, help="Do not copy user and app metadata")
@click.option("--no-oauth", is_flag=True, help="Do not copy linked OAuth identities")
@click.option("--yes", "-y", is_flag=True, help="Start without confirming the preview")
@pass_context
@handle_errors
def run(
    ctx: ImportContext,
    url: str,
    credential: str,
    tenant: str,
    batch_size: int,
    skip_existing: bool,
    preserve_ids: bool,
    no_metadata: bool,
    no_oauth: bool,
    yes: bool,
) -> None:
    """Validate, preview and import users into a tenant.

    Examples:

        # Import with defaults, confirming after the preview
        user-import run --tenant acme --url https://xyz.supabase.co

        # Keep source ids, treat existing emails as collisions
        user-import run -t acme --preserve-ids --fail-existing --yes
    """
    options = ImportOptions(
        batch_size=batch_size,
        skip_existing=skip_existing,
        preserve_ids=preserve_ids,
        import_metadata=not no_metadata,
        preserve_oauth=not no_oauth,
    )

    orchestrator = ctx.orchestrator()
    session = orchestrator.new_session(tenant)
    session = asyncio.run(orchestrator.submit_credentials(session, url, credential))

    if session.phase == ImportPhase.FAILED:
        echo_error(f"Validation failed: {describe_session_error(session.error)}")
        raise click.exceptions.Exit(3)

    console.print(build_preview_table(session.preview, session.expected_total or 0))
    if not yes and not click.confirm("Start the import?"):
        echo_warning("Import cancelled.")
        raise click.exceptions.Exit(0)

    echo_info(f"Session {session.session_id}")
    session = _run_with_progress(ctx, lambda orch: orch.confirm(session, options))
    _finish(session)


@click.command(name="resume")
@click.argument("session_id")
@click.option(
    "--credential",
    required=True,
    envvar="USER_IMPORT_SOURCE_CREDENTIAL",
    help="Service role key of the source project",
)
@pass_context
@handle_errors
def resume(ctx: ImportContext, session_id: str, credential: str) -> None:
    """Continue a failed or interrupted import from its last checkpoint."""
    session = ctx.orchestrator().get_session(session_id)
    if session is None:
        echo_error(f"Session {session_id} not found")
        raise click.exceptions.Exit(1)
    if not session.can_resume:
        raise SessionStateError(
            f"Session {session_id} is not resumable (phase={session.phase.value})"
        )

    echo_info(f"Resuming {session_id} from page {session.cursor}")
    session = _run_with_progress(ctx, lambda orch: orch.resume(session, credential))
    _finish(session)


@click.command(name="status")
@click.argument("session_id", required=False)
@click.option("--tenant", "-t", default=None, help="Only list sessions of this tenant")
@click.option("--limit", type=int, default=20, show_default=True)
@pass_context
@handle_errors
def status(ctx: ImportContext, session_id: str | None, tenant: str | None, limit: int) -> None:
    """Show one session, or list recent sessions."""
    if session_id:
        session = ctx.session_store.load_session(session_id)
        if session is None:
            echo_error(f"Session {session_id} not found")
            raise click.exceptions.Exit(1)
        render_session(session, console)
        return

    sessions = ctx.session_store.list_sessions(tenant_id=tenant, limit=limit)
    if not sessions:
        echo_info("No import sessions found")
        return

    table = Table(title="Import Sessions")
    for column in ("Session", "Tenant", "Phase", "Imported", "Skipped", "Failed", "Created"):
        table.add_column(column)
    for row in sessions:
        phase = row["phase"]
        if row["failed_phase"]:
            phase = f"{phase} ({row['failed_phase']})"
        table.add_row(
            row["session_id"],
            row["tenant_id"],
            phase,
            f"{row['imported']:,}",
            f"{row['skipped']:,}",
            f"{row['failed']:,}",
            row["created_at"].strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@click.command(name="export-errors")
@click.argument("session_id")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the CSV here instead of stdout",
)
@pass_context
@handle_errors
def export_errors(ctx: ImportContext, session_id: str, output: Path | None) -> None:
    """Export every skipped and failed record of a session as CSV."""
    session = ctx.session_store.load_session(session_id)
    if session is None:
        echo_error(f"Session {session_id} not found")
        raise click.exceptions.Exit(1)

    data = ctx.orchestrator().ledger_for(session).export()
    if output is None:
        click.echo(data.decode("utf-8"), nl=False)
        return

    output.write_bytes(data)
    echo_success(f"Wrote {len(session.result.errors):,} rows to {output}")
