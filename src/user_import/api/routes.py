"""User import endpoints for the admin console.

Mounted under ``/api/admin/projects/{project_id}/user-import``. Imports run
as background tasks; clients poll ``GET /sessions/{session_id}`` for the
phase and the partial or final result.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from user_import.api.models import (
    ConnectionRequest,
    PreviewRequest,
    PreviewResponse,
    PreviewRowResponse,
    ResumeRequest,
    RunRequest,
    RunResponse,
    SessionResponse,
    ValidateConnectionResponse,
)
from user_import.client.exceptions import SessionStateError, SourceError
from user_import.migration.orchestrator import ImportOrchestrator
from user_import.records import ImportOptions, ImportPhase, ImportSession
from user_import.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def get_orchestrator(request: Request) -> ImportOrchestrator:
    return request.app.state.orchestrator


def _get_tenant_session(
    orchestrator: ImportOrchestrator, project_id: str, session_id: str
) -> ImportSession:
    session = orchestrator.get_session(session_id)
    if session is None or session.tenant_id != project_id:
        raise HTTPException(status_code=404, detail="Import session not found")
    return session


async def run_import_task(
    orchestrator: ImportOrchestrator, session: ImportSession, options: ImportOptions
) -> None:
    """Run a confirmed import; the orchestrator records any failure on the session."""
    try:
        await orchestrator.confirm(session, options)
    except Exception as e:
        logger.error("background_import_failed", session_id=session.session_id, error=str(e))


async def resume_import_task(
    orchestrator: ImportOrchestrator, session: ImportSession, credential: str | None
) -> None:
    try:
        await orchestrator.resume(session, credential)
    except Exception as e:
        logger.error("background_resume_failed", session_id=session.session_id, error=str(e))


@router.post("/validate-connection", response_model=ValidateConnectionResponse)
async def validate_connection(
    data: ConnectionRequest,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Check that the source accepts the credential."""
    try:
        await orchestrator.validate_connection(data.url, data.credential)
    except SourceError as e:
        return ValidateConnectionResponse(ok=False, error=e.kind)
    return ValidateConnectionResponse(ok=True)


@router.post("/preview", response_model=PreviewResponse)
async def preview_users(
    data: PreviewRequest,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Sample a few source users for operator review."""
    try:
        preview = await orchestrator.preview(data.url, data.credential, data.sample_size)
    except SourceError as e:
        raise HTTPException(status_code=400, detail=e.kind.value) from e
    return PreviewResponse(
        total_count=preview.total_count,
        sample_users=[PreviewRowResponse.from_row(row) for row in preview.sample_users],
    )


@router.post("/run", response_model=RunResponse)
async def run_import(
    project_id: str,
    data: RunRequest,
    background_tasks: BackgroundTasks,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Validate the source, then start the import in the background."""
    session = orchestrator.new_session(project_id)
    session = await orchestrator.submit_credentials(
        session, data.url, data.credential, data.sample_size
    )
    if session.phase == ImportPhase.PREVIEW_READY:
        background_tasks.add_task(run_import_task, orchestrator, session, data.options)
    return RunResponse(session_id=session.session_id, phase=session.phase, error=session.error)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_import_session(
    project_id: str,
    session_id: str,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Current phase, error and (partial) result of a session."""
    session = _get_tenant_session(orchestrator, project_id, session_id)
    return SessionResponse.from_session(session)


@router.post("/sessions/{session_id}/abort")
async def abort_import(
    project_id: str,
    session_id: str,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Stop a running import after its current batch."""
    _get_tenant_session(orchestrator, project_id, session_id)
    try:
        orchestrator.abort(session_id)
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return {"status": "abort_requested"}


@router.post("/sessions/{session_id}/resume", response_model=RunResponse)
async def resume_import(
    project_id: str,
    session_id: str,
    background_tasks: BackgroundTasks,
    data: ResumeRequest | None = None,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Continue a resumable import from its saved cursor."""
    session = _get_tenant_session(orchestrator, project_id, session_id)
    credential = data.credential if data else None
    if not session.can_resume:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot resume session in phase {session.phase.value}",
        )
    if not (credential or session.credential):
        raise HTTPException(status_code=400, detail="credential is required to resume")

    background_tasks.add_task(resume_import_task, orchestrator, session, credential)
    return RunResponse(session_id=session.session_id, phase=ImportPhase.IMPORTING)


@router.get("/export-errors")
async def export_errors(
    project_id: str,
    session_id: str = Query(alias="sessionId"),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Download every skipped and failed record as CSV."""
    session = _get_tenant_session(orchestrator, project_id, session_id)
    return Response(
        content=orchestrator.ledger_for(session).export(),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="import-errors-{session_id}.csv"'
        },
    )
