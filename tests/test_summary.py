"""Tests for result rendering."""

import pytest
from rich.console import Console

from user_import.records import (
    ImportOutcome,
    ImportPhase,
    ImportResult,
    ImportSession,
    OutcomeReason,
    SessionErrorKind,
)
from user_import.reporting.summary import (
    build_errors_table,
    describe_reason,
    describe_session_error,
    render_session,
)


@pytest.mark.parametrize(
    ("reason", "text"),
    [
        (OutcomeReason.ALREADY_EXISTS, "User already exists"),
        ("email_collision", "Email already belongs to another user"),
        ("something_new", "Unknown error"),
        (None, ""),
    ],
)
def test_describe_reason(reason, text):
    assert describe_reason(reason) == text


def test_every_reason_has_text():
    for reason in OutcomeReason:
        assert describe_reason(reason)


def test_describe_session_error():
    assert describe_session_error(SessionErrorKind.ABORTED) == "The import was aborted"
    assert describe_session_error(None) == ""


def test_errors_table_is_truncated_for_display():
    errors = [
        ImportOutcome.failed(f"user{i}@example.com", OutcomeReason.WRITE_ERROR) for i in range(12)
    ]

    table = build_errors_table(errors)

    assert table.row_count == 10
    assert table.title == "Errors (first 10 of 12)"


def test_render_failed_session_mentions_resume():
    console = Console(record=True, width=120)
    session = ImportSession(
        tenant_id="tenant-1",
        phase=ImportPhase.FAILED,
        failed_phase=ImportPhase.IMPORTING,
        error=SessionErrorKind.UNREACHABLE,
        resumable=True,
        cursor=4,
        result=ImportResult(
            total_users=1,
            failed=1,
            errors=[ImportOutcome.failed("a@example.com", OutcomeReason.ID_COLLISION)],
        ),
    )

    render_session(session, console)

    text = console.export_text()
    assert "Resumable from page 4" in text
    assert "The source could not be reached" in text
    assert "User id already belongs to another email" in text
