"""Pydantic models for API requests and responses."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from user_import.records import (
    ImportOptions,
    ImportOutcome,
    ImportPhase,
    ImportResult,
    ImportSession,
    OutcomeReason,
    OutcomeStatus,
    PreviewRow,
    SessionErrorKind,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request Models
class ConnectionRequest(CamelModel):
    url: str = Field(min_length=1)
    credential: str = Field(min_length=1, repr=False)


class PreviewRequest(ConnectionRequest):
    sample_size: int | None = Field(default=None, ge=1)


class RunRequest(ConnectionRequest):
    options: ImportOptions = Field(default_factory=ImportOptions)
    sample_size: int | None = Field(default=None, ge=1)


class ResumeRequest(CamelModel):
    credential: str | None = Field(default=None, repr=False)


# Response Models
class ValidateConnectionResponse(CamelModel):
    ok: bool
    error: SessionErrorKind | None = None


class PreviewRowResponse(CamelModel):
    email: str
    display_name: str | None = None
    has_password: bool
    has_oauth: bool = Field(alias="hasOAuth")
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: PreviewRow) -> "PreviewRowResponse":
        return cls(
            email=row.email,
            display_name=row.display_name,
            has_password=row.has_password,
            has_oauth=row.has_oauth,
            created_at=row.created_at,
        )


class PreviewResponse(CamelModel):
    total_count: int
    sample_users: list[PreviewRowResponse]


class OutcomeResponse(CamelModel):
    email: str
    status: OutcomeStatus
    reason: OutcomeReason | None = None

    @classmethod
    def from_outcome(cls, outcome: ImportOutcome) -> "OutcomeResponse":
        return cls(email=outcome.email, status=outcome.status, reason=outcome.reason)


class ResultResponse(CamelModel):
    total_users: int
    imported: int
    skipped: int
    failed: int
    errors: list[OutcomeResponse]

    @classmethod
    def from_result(cls, result: ImportResult) -> "ResultResponse":
        return cls(
            total_users=result.total_users,
            imported=result.imported,
            skipped=result.skipped,
            failed=result.failed,
            errors=[OutcomeResponse.from_outcome(o) for o in result.errors],
        )


class SessionResponse(CamelModel):
    session_id: str
    tenant_id: str
    phase: ImportPhase
    failed_phase: ImportPhase | None = None
    error: SessionErrorKind | None = None
    error_message: str | None = None
    resumable: bool = False
    cursor: int | None = None
    result: ResultResponse

    @classmethod
    def from_session(cls, session: ImportSession) -> "SessionResponse":
        return cls(
            session_id=session.session_id,
            tenant_id=session.tenant_id,
            phase=session.phase,
            failed_phase=session.failed_phase,
            error=session.error,
            error_message=session.error_message,
            resumable=session.can_resume,
            cursor=session.cursor,
            result=ResultResponse.from_result(session.result),
        )


class RunResponse(CamelModel):
    session_id: str
    phase: ImportPhase
    error: SessionErrorKind | None = None
