"""Tests for ErrorLedger."""

import csv
import io

import pytest

from user_import.migration.ledger import ErrorLedger
from user_import.records import ImportOutcome, MappedUserRecord, OutcomeReason


def test_imported_outcomes_are_rejected():
    ledger = ErrorLedger()
    record = MappedUserRecord(destination_id="1", email="a@example.com", display_email="a@example.com")

    with pytest.raises(ValueError):
        ledger.record(ImportOutcome.imported(record))
    assert len(ledger) == 0


def test_all_preserves_order():
    ledger = ErrorLedger()
    first = ImportOutcome.skipped("a@example.com", OutcomeReason.ALREADY_EXISTS)
    second = ImportOutcome.failed("b@example.com", OutcomeReason.WRITE_ERROR)
    ledger.record(first)
    ledger.record(second)

    assert ledger.all() == (first, second)


def test_export_empty_ledger_is_header_only():
    assert ErrorLedger().export() == b'"email","reason"\n'


def test_export_has_one_line_per_entry_plus_header():
    entries = [
        ImportOutcome.failed(f"user{i}@example.com", OutcomeReason.EMAIL_COLLISION)
        for i in range(25)
    ]
    data = ErrorLedger(entries).export()

    assert len(data.decode().splitlines()) == 26


def test_export_quotes_every_field_and_commas():
    ledger = ErrorLedger(
        [
            ImportOutcome.skipped("plain@example.com", OutcomeReason.ALREADY_EXISTS),
            ImportOutcome.failed('"odd,name"@example.com', OutcomeReason.INVALID_RECORD),
        ]
    )

    data = ledger.export()

    assert data == (
        b'"email","reason"\n'
        b'"plain@example.com","already_exists"\n'
        b'"""odd,name""@example.com","invalid_record"\n'
    )
    rows = list(csv.reader(io.StringIO(data.decode())))
    assert rows[2] == ['"odd,name"@example.com', "invalid_record"]


def test_ledger_keeps_every_entry():
    entries = [
        ImportOutcome.failed(f"user{i}@example.com", OutcomeReason.WRITE_ERROR) for i in range(500)
    ]
    ledger = ErrorLedger(entries)
    assert len(ledger.all()) == 500
