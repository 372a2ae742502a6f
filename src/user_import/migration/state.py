"""
Import session state management.

This module provides the SessionStore class, which checkpoints import
sessions, their skipped/failed outcomes and lifecycle audit events so that a
failed import can be resumed and its error report downloaded later. The
source credential is never written.
"""

import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select

from user_import.client.exceptions import StateError
from user_import.config import StateConfig
from user_import.database import get_session, init_database
from user_import.migration.models import (
    ImportAuditEvent,
    ImportOutcomeRow,
    ImportSessionRow,
    StateBase,
)
from user_import.records import (
    ImportOptions,
    ImportOutcome,
    ImportPhase,
    ImportResult,
    ImportSession,
    OutcomeReason,
    OutcomeStatus,
    SessionErrorKind,
)
from user_import.utils.logging import get_logger

logger = get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _naive(value: datetime) -> datetime:
    return value.astimezone(UTC).replace(tzinfo=None)


class SessionStore:
    """
    Persists import sessions for resume, status polling and error export.

    Usage:
        store = SessionStore(config.state)
        store.save_session(session, new_outcomes=outcomes)
        session = store.load_session(session_id)
    """

    def __init__(self, config: StateConfig):
        """
        Initialize the session store.

        Args:
            config: State configuration

        Raises:
            StateError: If initialization fails
        """
        self.config = config
        self.database_url = config.database_url
        self._lock = threading.RLock()

        try:
            init_database(
                self.database_url,
                StateBase.metadata,
                pool_size=config.db_pool_size,
                max_overflow=config.db_max_overflow,
                pool_timeout=config.db_pool_timeout,
                pool_recycle=config.db_pool_recycle,
            )
        except Exception as e:
            logger.error("session_store_init_failed", error=str(e))
            raise StateError(f"Failed to initialize session store: {e}") from e

        logger.debug("session_store_initialized", database_path=config.db_path)

    def save_session(
        self,
        session: ImportSession,
        new_outcomes: Iterable[ImportOutcome] = (),
    ) -> None:
        """
        Checkpoint a session and append its newly recorded outcomes.

        Both happen in one transaction, so a crash never leaves counters that
        disagree with the persisted ledger. Imported outcomes are counted but
        not stored row by row.

        Raises:
            StateError: If the checkpoint cannot be written
        """
        result = session.result
        with self._lock, get_session(self.database_url) as db:
            row = db.get(ImportSessionRow, session.session_id)
            if row is None:
                row = ImportSessionRow(
                    session_id=session.session_id,
                    created_at=_naive(session.created_at),
                )
                db.add(row)

            row.tenant_id = session.tenant_id
            row.source_url = session.source_url
            row.phase = session.phase.value
            row.failed_phase = session.failed_phase.value if session.failed_phase else None
            row.error = session.error.value if session.error else None
            row.error_message = session.error_message
            row.resumable = session.resumable
            row.options = session.options.model_dump() if session.options else None
            row.cursor = session.cursor
            row.expected_total = session.expected_total
            row.batches_written = session.batches_written
            row.total_users = result.total_users
            row.imported = result.imported
            row.skipped = result.skipped
            row.failed = result.failed
            row.updated_at = _naive(session.updated_at)

            to_store = [o for o in new_outcomes if o.status != OutcomeStatus.IMPORTED]
            if to_store:
                db.flush()
                last = db.scalar(
                    select(func.max(ImportOutcomeRow.sequence)).where(
                        ImportOutcomeRow.session_id == session.session_id
                    )
                )
                sequence = (last or 0) + 1
                for outcome in to_store:
                    db.add(
                        ImportOutcomeRow(
                            session_id=session.session_id,
                            sequence=sequence,
                            email=outcome.email,
                            status=outcome.status.value,
                            reason=outcome.reason.value if outcome.reason else "unknown",
                            source_id=outcome.source_id,
                            destination_id=outcome.destination_id,
                        )
                    )
                    sequence += 1

        logger.debug(
            "session_checkpointed",
            session_id=session.session_id,
            phase=session.phase.value,
            cursor=session.cursor,
            outcomes=len(to_store),
        )

    def load_outcomes(self, session_id: str) -> list[ImportOutcome]:
        """Return the persisted skipped/failed outcomes of a session, in ledger order."""
        with self._lock, get_session(self.database_url) as db:
            rows = db.scalars(
                select(ImportOutcomeRow)
                .where(ImportOutcomeRow.session_id == session_id)
                .order_by(ImportOutcomeRow.sequence)
            ).all()
            return [
                ImportOutcome(
                    email=row.email,
                    status=OutcomeStatus(row.status),
                    reason=OutcomeReason(row.reason),
                    source_id=row.source_id,
                    destination_id=row.destination_id,
                )
                for row in rows
            ]

    def load_session(self, session_id: str) -> ImportSession | None:
        """
        Load a session without its credential.

        Returns:
            The session, or None if no such session was ever checkpointed
        """
        with self._lock, get_session(self.database_url) as db:
            row = db.get(ImportSessionRow, session_id)
            if row is None:
                return None
            data = {
                "tenant_id": row.tenant_id,
                "source_url": row.source_url,
                "session_id": row.session_id,
                "phase": ImportPhase(row.phase),
                "options": ImportOptions(**row.options) if row.options else None,
                "failed_phase": ImportPhase(row.failed_phase) if row.failed_phase else None,
                "error": SessionErrorKind(row.error) if row.error else None,
                "error_message": row.error_message,
                "resumable": row.resumable,
                "cursor": row.cursor,
                "expected_total": row.expected_total,
                "batches_written": row.batches_written,
                "created_at": _aware(row.created_at),
                "updated_at": _aware(row.updated_at),
            }
            counters = (row.total_users, row.imported, row.skipped, row.failed)

        total_users, imported, skipped, failed = counters
        result = ImportResult(
            total_users=total_users,
            imported=imported,
            skipped=skipped,
            failed=failed,
            errors=self.load_outcomes(session_id),
        )
        return ImportSession(result=result, **data)

    def list_sessions(self, tenant_id: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
        """Summaries of the most recent sessions, newest first."""
        with self._lock, get_session(self.database_url) as db:
            query = select(ImportSessionRow).order_by(ImportSessionRow.created_at.desc())
            if tenant_id:
                query = query.where(ImportSessionRow.tenant_id == tenant_id)
            rows = db.scalars(query.limit(limit)).all()
            return [
                {
                    "session_id": row.session_id,
                    "tenant_id": row.tenant_id,
                    "phase": row.phase,
                    "failed_phase": row.failed_phase,
                    "error": row.error,
                    "resumable": row.resumable,
                    "imported": row.imported,
                    "skipped": row.skipped,
                    "failed": row.failed,
                    "created_at": _aware(row.created_at),
                }
                for row in rows
            ]

    def record_audit_event(
        self,
        session: ImportSession,
        action: str,
        success: bool = True,
        **event_data: Any,
    ) -> None:
        """Append a lifecycle event (import_started, import_completed, ...)."""
        with self._lock, get_session(self.database_url) as db:
            db.add(
                ImportAuditEvent(
                    session_id=session.session_id,
                    tenant_id=session.tenant_id,
                    action=action,
                    status="success" if success else "failure",
                    event_data=event_data,
                )
            )
        logger.info(
            "audit_event_recorded",
            session_id=session.session_id,
            action=action,
            success=success,
        )

    def get_audit_events(self, session_id: str) -> list[dict[str, Any]]:
        with self._lock, get_session(self.database_url) as db:
            rows = db.scalars(
                select(ImportAuditEvent)
                .where(ImportAuditEvent.session_id == session_id)
                .order_by(ImportAuditEvent.id)
            ).all()
            return [
                {"action": row.action, "status": row.status, "data": row.event_data}
                for row in rows
            ]
