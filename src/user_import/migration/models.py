"""
SQLAlchemy models for import session state.

Sessions, their recorded outcomes (the persisted error ledger) and the audit
trail of lifecycle events. The source credential is never stored here.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class StateBase(DeclarativeBase):
    """Base class for import state models."""

    pass


class ImportSessionRow(StateBase):
    """One import session, updated at every checkpoint."""

    __tablename__ = "import_sessions"

    session_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    source_url: Mapped[str] = mapped_column(String(512), nullable=False)

    phase: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    failed_phase: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    resumable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    options: Mapped[dict | None] = mapped_column(
        JSON, nullable=True, comment="Frozen ImportOptions snapshot"
    )
    cursor: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Next source page to fetch (null once exhausted)"
    )
    expected_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    batches_written: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    imported: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "phase IN ('idle', 'credentials_validating', 'preview_ready', "
            "'importing', 'completed', 'failed')",
            name="ck_import_sessions_phase",
        ),
    )

    def __repr__(self) -> str:
        return f"<ImportSessionRow(session_id='{self.session_id}', phase='{self.phase}')>"


class ImportOutcomeRow(StateBase):
    """A skipped or failed outcome, in ledger order."""

    __tablename__ = "import_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("import_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    destination_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_import_outcomes_session_sequence"),
        CheckConstraint("status IN ('skipped', 'failed')", name="ck_import_outcomes_status"),
    )


class ImportAuditEvent(StateBase):
    """Lifecycle event of an import session (started, batch failed, completed, failed)."""

    __tablename__ = "import_audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    event_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("status IN ('success', 'failure')", name="ck_import_audit_status"),
        Index("idx_import_audit_session_action", "session_id", "action"),
    )
