"""
Destination user store.

``UserStore`` is the contract the pipeline consumes: single-record lookups by
normalized email or id and an upsert keyed by (tenant, id). ``SqlUserStore``
implements it on SQLAlchemy over the ``tenant_users`` table.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from user_import.client.exceptions import ConflictError, IdConflictError
from user_import.database import get_session, init_database
from user_import.destination.models import DestinationBase, TenantUser
from user_import.records import MappedUserRecord, OAuthLink
from user_import.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DestinationUser:
    """Read model of a destination user."""

    tenant_id: str
    id: str
    email: str
    import_session_id: str | None = None
    source_id: str | None = None
    display_email: str | None = None
    display_name: str | None = None
    must_reset_password: bool = False
    metadata: dict[str, Any] | None = None
    oauth_links: tuple[OAuthLink, ...] = field(default=(), compare=False)


@runtime_checkable
class UserStore(Protocol):
    """Atomic single-record operations on a tenant's user store."""

    def find_by_email(self, tenant_id: str, email: str) -> DestinationUser | None: ...

    def find_by_id(self, tenant_id: str, user_id: str) -> DestinationUser | None: ...

    def upsert_user(
        self,
        tenant_id: str,
        record: MappedUserRecord,
        import_session_id: str | None = None,
    ) -> DestinationUser: ...


def _to_destination_user(row: TenantUser) -> DestinationUser:
    return DestinationUser(
        tenant_id=row.tenant_id,
        id=row.id,
        email=row.email,
        import_session_id=row.import_session_id,
        source_id=row.source_id,
        display_email=row.display_email,
        display_name=row.display_name,
        must_reset_password=row.must_reset_password,
        metadata=row.user_metadata,
        oauth_links=tuple(OAuthLink.from_dict(link) for link in row.oauth_links or []),
    )


class SqlUserStore:
    """SQLAlchemy implementation of ``UserStore``."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        init_database(database_url, DestinationBase.metadata)

    def find_by_email(self, tenant_id: str, email: str) -> DestinationUser | None:
        with get_session(self.database_url) as session:
            row = session.scalars(
                select(TenantUser).where(
                    TenantUser.tenant_id == tenant_id,
                    TenantUser.email == email.strip().lower(),
                )
            ).first()
            return _to_destination_user(row) if row else None

    def find_by_id(self, tenant_id: str, user_id: str) -> DestinationUser | None:
        with get_session(self.database_url) as session:
            row = session.get(TenantUser, (tenant_id, user_id))
            return _to_destination_user(row) if row else None

    def upsert_user(
        self,
        tenant_id: str,
        record: MappedUserRecord,
        import_session_id: str | None = None,
    ) -> DestinationUser:
        """Insert or update the user keyed by (tenant_id, record.destination_id).

        Raises:
            IdConflictError: If the id already belongs to a different email
            ConflictError: If the email is already taken in this tenant
        """
        with get_session(self.database_url) as session:
            row = session.get(TenantUser, (tenant_id, record.destination_id))
            if row is not None and row.email != record.email:
                raise IdConflictError(
                    f"User id {record.destination_id} already belongs to another email"
                )

            if row is None:
                row = TenantUser(tenant_id=tenant_id, id=record.destination_id)
                session.add(row)

            row.email = record.email
            row.display_email = record.display_email
            row.email_verified = record.email_verified
            row.phone = record.phone
            row.phone_verified = record.phone_verified
            row.password_hash = None
            row.must_reset_password = record.must_reset_password
            row.display_name = record.display_name
            row.avatar_url = record.avatar_url
            row.user_metadata = record.metadata
            row.oauth_links = (
                [link.to_dict() for link in record.oauth_links]
                if record.oauth_links is not None
                else None
            )
            row.import_session_id = import_session_id
            row.source_id = record.source_id
            row.source_created_at = record.created_at
            row.last_login_at = record.last_sign_in_at

            try:
                session.flush()
            except IntegrityError as e:
                raise ConflictError(f"Email {record.email} already exists in tenant") from e

            logger.debug(
                "destination_user_upserted",
                tenant_id=tenant_id,
                user_id=record.destination_id,
            )
            return _to_destination_user(row)

    def count_users(self, tenant_id: str) -> int:
        with get_session(self.database_url) as session:
            return session.scalar(
                select(func.count()).select_from(TenantUser).where(TenantUser.tenant_id == tenant_id)
            ) or 0
