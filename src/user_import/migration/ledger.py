"""Append-only ledger of skipped and failed import outcomes."""

import csv
import io
from collections.abc import Iterable

from user_import.records import ImportOutcome, OutcomeStatus

CSV_HEADER = ("email", "reason")


class ErrorLedger:
    """
    Ordered record of every skipped or failed outcome of a session.

    The ledger keeps the full set for the session's lifetime and is the only
    source of the downloadable error report. Truncating it for display is up
    to the caller.
    """

    def __init__(self, outcomes: Iterable[ImportOutcome] = ()):
        self._entries: list[ImportOutcome] = []
        for outcome in outcomes:
            self.record(outcome)

    def record(self, outcome: ImportOutcome) -> None:
        """Append an outcome.

        Raises:
            ValueError: If the outcome is not skipped or failed
        """
        if outcome.status == OutcomeStatus.IMPORTED:
            raise ValueError("Imported outcomes do not belong in the error ledger")
        self._entries.append(outcome)

    def all(self) -> tuple[ImportOutcome, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def export(self) -> bytes:
        """Render the ledger as CSV: header plus one quoted row per entry."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for outcome in self._entries:
            writer.writerow((outcome.email, outcome.reason.value if outcome.reason else ""))
        return buffer.getvalue().encode("utf-8")
