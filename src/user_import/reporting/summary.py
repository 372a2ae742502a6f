"""Human-readable rendering of import sessions and results.

Outcome reasons are a closed enumeration inside the pipeline; this module is
the only place that turns them into display text.
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from user_import.records import (
    ImportOutcome,
    ImportPhase,
    ImportResult,
    ImportSession,
    OutcomeReason,
    OutcomeStatus,
    PreviewRow,
    SessionErrorKind,
)

# Rows of the error table shown on screen; the CSV export always has all of them
ERRORS_SHOWN = 10

REASON_TEXT = {
    OutcomeReason.ALREADY_EXISTS: "User already exists",
    OutcomeReason.EMAIL_COLLISION: "Email already belongs to another user",
    OutcomeReason.ID_COLLISION: "User id already belongs to another email",
    OutcomeReason.WRITE_ERROR: "Failed to write user",
    OutcomeReason.INVALID_RECORD: "Missing or invalid email",
    OutcomeReason.UNKNOWN: "Unknown error",
}

SESSION_ERROR_TEXT = {
    SessionErrorKind.INVALID_CREDENTIAL: "The source rejected the credential",
    SessionErrorKind.UNREACHABLE: "The source could not be reached",
    SessionErrorKind.UNRECOVERABLE_SOURCE_ERROR: "The source returned data that cannot be imported",
    SessionErrorKind.ABORTED: "The import was aborted",
}

PHASE_STYLE = {
    ImportPhase.IDLE: "dim",
    ImportPhase.CREDENTIALS_VALIDATING: "yellow",
    ImportPhase.PREVIEW_READY: "cyan",
    ImportPhase.IMPORTING: "yellow",
    ImportPhase.COMPLETED: "green",
    ImportPhase.FAILED: "red",
}


def describe_reason(reason: OutcomeReason | str | None) -> str:
    """Display text for an outcome reason; unrecognized values read as unknown."""
    if reason is None:
        return ""
    return REASON_TEXT[OutcomeReason(reason)]


def describe_session_error(error: SessionErrorKind | None) -> str:
    return SESSION_ERROR_TEXT.get(error, "") if error else ""


def build_preview_table(rows: tuple[PreviewRow, ...] | list[PreviewRow], total: int) -> Table:
    table = Table(title=f"Source users ({total:,} total)")
    table.add_column("Email")
    table.add_column("Name")
    table.add_column("Password", justify="center")
    table.add_column("OAuth", justify="center")
    table.add_column("Created")
    for row in rows:
        table.add_row(
            row.email,
            row.display_name or "-",
            "yes" if row.has_password else "no",
            "yes" if row.has_oauth else "no",
            row.created_at or "-",
        )
    return table


def build_result_table(result: ImportResult) -> Table:
    table = Table(title="Import Result", show_header=True)
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    table.add_row("Total users", f"{result.total_users:,}")
    table.add_row("[green]Imported[/green]", f"{result.imported:,}")
    table.add_row("[dark_orange]Skipped[/dark_orange]", f"{result.skipped:,}")
    table.add_row("[red]Failed[/red]", f"{result.failed:,}")
    return table


def build_errors_table(errors: list[ImportOutcome], limit: int = ERRORS_SHOWN) -> Table:
    """Table of the first ``limit`` ledger entries."""
    shown = errors[:limit]
    title = "Errors" if len(errors) <= limit else f"Errors (first {limit} of {len(errors):,})"
    table = Table(title=title)
    table.add_column("Email")
    table.add_column("Status")
    table.add_column("Reason")
    for outcome in shown:
        style = "dark_orange" if outcome.status == OutcomeStatus.SKIPPED else "red"
        table.add_row(
            outcome.email or "-",
            f"[{style}]{outcome.status.value}[/{style}]",
            describe_reason(outcome.reason),
        )
    return table


def render_session(session: ImportSession, console: Console | None = None) -> None:
    """Print a session's phase, error and result."""
    console = console or Console()
    style = PHASE_STYLE[session.phase]
    lines = [
        f"Session: {session.session_id}",
        f"Tenant:  {session.tenant_id}",
        f"Phase:   [{style}]{session.phase.value}[/{style}]",
    ]
    if session.failed_phase:
        lines.append(f"Failed during: {session.failed_phase.value}")
    if session.error:
        lines.append(f"Error:   {describe_session_error(session.error)}")
        if session.error_message:
            lines.append(f"         [dim]{session.error_message}[/dim]")
    if session.can_resume:
        lines.append(f"[cyan]Resumable from page {session.cursor}[/cyan]")
    console.print(Panel("\n".join(lines), title="Import Session", border_style="blue"))

    console.print(build_result_table(session.result))
    if session.result.errors:
        console.print(build_errors_table(session.result.errors))
