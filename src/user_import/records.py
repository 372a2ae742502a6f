"""Data models shared by the import pipeline.

Source and destination user shapes, per-record decisions and outcomes, the
aggregate result, and the tagged session value that carries the import
state machine between calls.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ImportPhase(str, Enum):
    """Phases of an import session."""

    IDLE = "idle"
    CREDENTIALS_VALIDATING = "credentials_validating"
    PREVIEW_READY = "preview_ready"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    """Fate of a single source record."""

    IMPORTED = "imported"
    SKIPPED = "skipped"
    FAILED = "failed"


class OutcomeReason(str, Enum):
    """Closed set of reasons attached to skipped and failed outcomes."""

    ALREADY_EXISTS = "already_exists"
    EMAIL_COLLISION = "email_collision"
    ID_COLLISION = "id_collision"
    WRITE_ERROR = "write_error"
    INVALID_RECORD = "invalid_record"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "OutcomeReason":
        return cls.UNKNOWN


class SessionErrorKind(str, Enum):
    """Session-fatal error classification."""

    INVALID_CREDENTIAL = "invalid_credential"
    UNREACHABLE = "unreachable"
    UNRECOVERABLE_SOURCE_ERROR = "unrecoverable_source_error"
    ABORTED = "aborted"


class DecisionKind(str, Enum):
    """What the dedup step decided for a mapped record."""

    CREATE = "create"
    SKIP = "skip"
    FAIL = "fail"


class ImportOptions(BaseModel):
    """Operator-selected options, frozen for the duration of a run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    batch_size: int = Field(default=100, ge=1, le=1000, alias="batchSize")
    skip_existing: bool = Field(default=True, alias="skipExisting")
    preserve_ids: bool = Field(default=False, alias="preserveIds")
    import_metadata: bool = Field(default=True, alias="importMetadata")
    preserve_oauth: bool = Field(default=True, alias="preserveOAuth")


@dataclass(frozen=True)
class OAuthLink:
    """A linked OAuth provider identity."""

    provider: str
    provider_user_id: str
    identity_data: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "provider_user_id": self.provider_user_id,
            "identity_data": self.identity_data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OAuthLink":
        return cls(
            provider=data["provider"],
            provider_user_id=data["provider_user_id"],
            identity_data=data.get("identity_data") or {},
        )


@dataclass(frozen=True)
class SourceUserRecord:
    """A user as exported by the source identity provider."""

    source_id: str | None
    email: str | None
    display_name: str | None = None
    avatar_url: str | None = None
    has_password: bool = False
    has_oauth: bool = False
    oauth_links: tuple[OAuthLink, ...] = ()
    user_metadata: dict[str, Any] | None = None
    app_metadata: dict[str, Any] | None = None
    email_verified: bool = False
    phone: str | None = None
    phone_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    last_sign_in_at: str | None = None


@dataclass(frozen=True)
class MappedUserRecord:
    """A source user translated into the destination user shape."""

    destination_id: str
    email: str
    display_email: str
    display_name: str | None = None
    avatar_url: str | None = None
    email_verified: bool = False
    phone: str | None = None
    phone_verified: bool = False
    must_reset_password: bool = True
    metadata: dict[str, Any] | None = None
    oauth_links: tuple[OAuthLink, ...] | None = None
    source_id: str | None = None
    created_at: str | None = None
    last_sign_in_at: str | None = None


@dataclass(frozen=True)
class Decision:
    """Dedup decision for one mapped record."""

    kind: DecisionKind
    reason: OutcomeReason | None = None

    @classmethod
    def create(cls) -> "Decision":
        return cls(DecisionKind.CREATE)

    @classmethod
    def skip(cls, reason: OutcomeReason) -> "Decision":
        return cls(DecisionKind.SKIP, reason)

    @classmethod
    def fail(cls, reason: OutcomeReason) -> "Decision":
        return cls(DecisionKind.FAIL, reason)


@dataclass(frozen=True)
class ImportOutcome:
    """Per-record result of an import run."""

    email: str
    status: OutcomeStatus
    reason: OutcomeReason | None = None
    source_id: str | None = None
    destination_id: str | None = None

    @classmethod
    def imported(cls, record: MappedUserRecord) -> "ImportOutcome":
        return cls(
            email=record.email,
            status=OutcomeStatus.IMPORTED,
            source_id=record.source_id,
            destination_id=record.destination_id,
        )

    @classmethod
    def skipped(
        cls, email: str, reason: OutcomeReason, source_id: str | None = None
    ) -> "ImportOutcome":
        return cls(email=email, status=OutcomeStatus.SKIPPED, reason=reason, source_id=source_id)

    @classmethod
    def failed(
        cls,
        email: str,
        reason: OutcomeReason,
        source_id: str | None = None,
        destination_id: str | None = None,
    ) -> "ImportOutcome":
        return cls(
            email=email,
            status=OutcomeStatus.FAILED,
            reason=reason,
            source_id=source_id,
            destination_id=destination_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "source_id": self.source_id,
            "destination_id": self.destination_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportOutcome":
        reason = data.get("reason")
        return cls(
            email=data["email"],
            status=OutcomeStatus(data["status"]),
            reason=OutcomeReason(reason) if reason else None,
            source_id=data.get("source_id"),
            destination_id=data.get("destination_id"),
        )


@dataclass(frozen=True)
class PreviewRow:
    """Non-sensitive classification of a source user for operator review."""

    email: str
    display_name: str | None
    has_password: bool
    has_oauth: bool
    created_at: str | None = None


@dataclass
class ImportResult:
    """Aggregate accounting of an import run."""

    total_users: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[ImportOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.imported + self.skipped + self.failed

    def copy(self) -> "ImportResult":
        return replace(self, errors=list(self.errors))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_users": self.total_users,
            "imported": self.imported,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": [outcome.to_dict() for outcome in self.errors],
        }


@dataclass(frozen=True)
class ImportProgress:
    """Progress snapshot emitted after each batch."""

    session_id: str
    processed: int
    total: int | None
    batch: int
    status: str


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ImportSession:
    """One migration attempt, passed between orchestrator calls.

    The credential lives only on this in-memory value; it is never persisted
    and is dropped once the session reaches a terminal phase.
    """

    tenant_id: str
    source_url: str = ""
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    phase: ImportPhase = ImportPhase.IDLE
    credential: str | None = field(default=None, repr=False, compare=False)
    options: ImportOptions | None = None
    failed_phase: ImportPhase | None = None
    error: SessionErrorKind | None = None
    error_message: str | None = None
    resumable: bool = False
    cursor: int | None = 1
    expected_total: int | None = None
    batches_written: int = 0
    result: ImportResult = field(default_factory=ImportResult, compare=False)
    preview: tuple[PreviewRow, ...] = ()
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def can_resubmit(self) -> bool:
        return self.phase == ImportPhase.IDLE or (
            self.phase == ImportPhase.FAILED
            and self.failed_phase == ImportPhase.CREDENTIALS_VALIDATING
        )

    @property
    def can_resume(self) -> bool:
        return (
            self.phase == ImportPhase.FAILED
            and self.failed_phase == ImportPhase.IMPORTING
            and self.resumable
        )

    @property
    def is_terminal(self) -> bool:
        if self.phase == ImportPhase.COMPLETED:
            return True
        return self.phase == ImportPhase.FAILED and not (self.can_resubmit or self.can_resume)

    def evolve(self, **changes: Any) -> "ImportSession":
        """Return a copy with ``changes`` applied and ``updated_at`` refreshed."""
        changes.setdefault("updated_at", _now())
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "tenant_id": self.tenant_id,
            "source_url": self.source_url,
            "phase": self.phase.value,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "error": self.error.value if self.error else None,
            "error_message": self.error_message,
            "resumable": self.resumable,
            "cursor": self.cursor,
            "options": self.options.model_dump() if self.options else None,
            "result": self.result.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
