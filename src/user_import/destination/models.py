"""SQLAlchemy model of the per-tenant destination user table."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class DestinationBase(DeclarativeBase):
    """Base class for destination store models."""

    pass


class TenantUser(DestinationBase):
    """
    A user account in a tenant's user store.

    Rows are keyed by (tenant_id, id); (tenant_id, email) is unique and is the
    last line of defence against duplicate accounts.
    """

    __tablename__ = "tenant_users"

    tenant_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    email: Mapped[str] = mapped_column(
        String(320), nullable=False, comment="Normalized (trimmed, lower-cased) email"
    )
    display_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    must_reset_password: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    user_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    oauth_links: Mapped[list | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    import_session_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, comment="Import session that wrote this row, if any"
    )
    source_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Source provider user id of an imported row"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )
    source_created_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_login_at: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_tenant_users_tenant_email"),
        CheckConstraint(
            "status IN ('active', 'suspended', 'deleted')", name="ck_tenant_users_status"
        ),
        Index("idx_tenant_users_import_session", "import_session_id"),
    )

    def __repr__(self) -> str:
        return f"<TenantUser(tenant_id='{self.tenant_id}', id='{self.id}', email='{self.email}')>"
