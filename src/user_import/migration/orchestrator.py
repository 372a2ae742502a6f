"""
Import orchestration.

The ImportOrchestrator owns the session state machine:

    idle -> credentials_validating -> preview_ready -> importing -> completed
                      |                                   |
                      +-> failed(credentials_validating)  +-> failed(importing)

Sessions are immutable ``ImportSession`` values passed in and returned by
each call, so the same machine can be driven from the HTTP API, the CLI or a
test. While importing, every page is mapped, resolved and written as one
batch, then checkpointed (cursor, counters and new ledger entries) before the
next page is fetched.
"""

import asyncio
from collections.abc import Callable

from user_import.client.exceptions import (
    InvalidRecordError,
    SessionStateError,
    SourceError,
)
from user_import.client.source_client import SourceConnector
from user_import.config import ImportConfig
from user_import.destination.store import UserStore
from user_import.migration.dedup import DedupResolver
from user_import.migration.ledger import ErrorLedger
from user_import.migration.mapper import RecordMapper
from user_import.migration.preview import Preview, PreviewSampler
from user_import.migration.state import SessionStore
from user_import.migration.writer import BatchWriter
from user_import.records import (
    ImportOptions,
    ImportOutcome,
    ImportPhase,
    ImportProgress,
    ImportResult,
    ImportSession,
    MappedUserRecord,
    OutcomeReason,
    OutcomeStatus,
    SessionErrorKind,
    SourceUserRecord,
)
from user_import.utils.logging import get_logger, log_import_progress

logger = get_logger(__name__)

ProgressCallback = Callable[[ImportProgress], None]
ConnectorFactory = Callable[[str, str], SourceConnector]


class ImportOrchestrator:
    """Drives import sessions through validation, preview and import."""

    def __init__(
        self,
        config: ImportConfig,
        user_store: UserStore,
        session_store: SessionStore,
        connector_factory: ConnectorFactory | None = None,
        mapper: RecordMapper | None = None,
        progress_callback: ProgressCallback | None = None,
    ):
        """
        Args:
            config: Pipeline configuration
            user_store: Destination user store
            session_store: Checkpoint store for sessions and ledgers
            connector_factory: Builds a connector from (url, credential)
            mapper: Record mapper (a default one is created if omitted)
            progress_callback: Called with an ImportProgress after each batch
        """
        self.config = config
        self.user_store = user_store
        self.session_store = session_store
        self.connector_factory = connector_factory or self._default_connector
        self.mapper = mapper or RecordMapper()
        self.progress_callback = progress_callback

        # In-flight sessions keep their credential here until they go terminal
        self._live: dict[str, ImportSession] = {}
        self._running: set[str] = set()
        self._abort_requested: set[str] = set()

    def _default_connector(self, url: str, credential: str) -> SourceConnector:
        return SourceConnector(
            url,
            credential,
            config=self.config.source,
            performance=self.config.performance,
            log_payloads=self.config.logging.log_payloads,
        )

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------

    def new_session(self, tenant_id: str) -> ImportSession:
        """Create an idle session for a tenant."""
        session = ImportSession(tenant_id=tenant_id)
        self._live[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> ImportSession | None:
        """Return the freshest known state of a session.

        A persisted session caught mid-phase by a process exit is reported as
        failed in that phase: an interrupted import is resumable from its last
        checkpoint and interrupted validation accepts new credentials.
        """
        live = self._live.get(session_id)
        if live is not None:
            return live
        session = self.session_store.load_session(session_id)
        if session is None or session_id in self._running:
            return session

        if session.phase == ImportPhase.IMPORTING:
            logger.warning(
                "interrupted_import_recovered", session_id=session_id, cursor=session.cursor
            )
            return session.evolve(
                phase=ImportPhase.FAILED,
                failed_phase=ImportPhase.IMPORTING,
                error=SessionErrorKind.ABORTED,
                error_message="Import was interrupted before completion",
                resumable=True,
            )
        if session.phase == ImportPhase.CREDENTIALS_VALIDATING:
            return session.evolve(
                phase=ImportPhase.FAILED,
                failed_phase=ImportPhase.CREDENTIALS_VALIDATING,
                error=SessionErrorKind.UNREACHABLE,
                error_message="Validation was interrupted before completion",
            )
        return session

    def _claim(self, session_id: str) -> None:
        # Check and mark in one step, before any await, so only one driver runs per session
        if session_id in self._running:
            raise SessionStateError(f"Session {session_id} is already importing")
        self._running.add(session_id)
        self._abort_requested.discard(session_id)

    def _release(self, session_id: str) -> None:
        self._running.discard(session_id)
        self._abort_requested.discard(session_id)

    def ledger_for(self, session: ImportSession) -> ErrorLedger:
        """Rebuild the error ledger of a session from its result."""
        return ErrorLedger(session.result.errors)

    async def _checkpoint(
        self, session: ImportSession, new_outcomes: list[ImportOutcome] | None = None
    ) -> ImportSession:
        if session.is_terminal:
            session = session.evolve(credential=None)
            self._live.pop(session.session_id, None)
        else:
            self._live[session.session_id] = session
        await asyncio.to_thread(self.session_store.save_session, session, new_outcomes or [])
        return session

    async def _audit(
        self, session: ImportSession, action: str, success: bool = True, **data
    ) -> None:
        await asyncio.to_thread(
            self.session_store.record_audit_event, session, action, success, **data
        )

    # ------------------------------------------------------------------
    # Stateless source operations
    # ------------------------------------------------------------------

    async def validate_connection(self, url: str, credential: str) -> None:
        """Validate a source URL and credential without touching any session.

        Raises:
            InvalidCredentialError: If the credential is rejected
            UnreachableError: If the provider cannot be reached
        """
        async with self.connector_factory(url, credential) as connector:
            await connector.validate()

    async def preview(self, url: str, credential: str, sample_size: int | None = None) -> Preview:
        """Validate, then sample the source population."""
        async with self.connector_factory(url, credential) as connector:
            await connector.validate()
            return await PreviewSampler(connector, self.config.preview).preview(sample_size)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def submit_credentials(
        self,
        session: ImportSession,
        url: str,
        credential: str,
        sample_size: int | None = None,
    ) -> ImportSession:
        """
        Validate the source and build the preview.

        Allowed from ``idle`` and from ``failed(credentials_validating)``.

        Returns:
            The session in ``preview_ready`` or ``failed(credentials_validating)``

        Raises:
            SessionStateError: If the session cannot accept credentials
        """
        if not session.can_resubmit:
            raise SessionStateError(
                f"Cannot submit credentials in phase {session.phase.value}"
            )

        session = await self._checkpoint(
            session.evolve(
                phase=ImportPhase.CREDENTIALS_VALIDATING,
                source_url=url,
                credential=credential,
                failed_phase=None,
                error=None,
                error_message=None,
                resumable=False,
            )
        )
        logger.info("credentials_submitted", session_id=session.session_id, url=url)

        try:
            preview = await self.preview(url, credential, sample_size)
        except SourceError as e:
            logger.warning(
                "credentials_validation_failed",
                session_id=session.session_id,
                error=e.kind.value,
            )
            return await self._checkpoint(
                session.evolve(
                    phase=ImportPhase.FAILED,
                    failed_phase=ImportPhase.CREDENTIALS_VALIDATING,
                    error=e.kind,
                    error_message=e.message,
                    credential=None,
                )
            )

        return await self._checkpoint(
            session.evolve(
                phase=ImportPhase.PREVIEW_READY,
                preview=preview.sample_users,
                expected_total=preview.total_count,
            )
        )

    async def confirm(self, session: ImportSession, options: ImportOptions) -> ImportSession:
        """
        Freeze ``options`` and run the import.

        Returns:
            The session in ``completed`` or ``failed(importing)``

        Raises:
            SessionStateError: If the session is not in ``preview_ready``
        """
        current = self.get_session(session.session_id) or session
        phase = current.phase if session.phase == ImportPhase.PREVIEW_READY else session.phase
        if phase != ImportPhase.PREVIEW_READY:
            raise SessionStateError(f"Cannot start an import in phase {phase.value}")
        if not session.credential:
            raise SessionStateError("Session has no credential; submit credentials again")

        self._claim(session.session_id)
        try:
            session = await self._checkpoint(
                session.evolve(
                    phase=ImportPhase.IMPORTING,
                    options=options,
                    cursor=1,
                    result=ImportResult(),
                    batches_written=0,
                )
            )
            await self._audit(
                session,
                "import_started",
                source_url=session.source_url,
                options=options.model_dump(),
            )
            return await self._run(session)
        finally:
            self._release(session.session_id)

    async def resume(self, session: ImportSession, credential: str | None = None) -> ImportSession:
        """
        Continue a resumable failed import from its saved cursor.

        Pages before the cursor are not fetched again.

        Raises:
            SessionStateError: If the session is not resumable or no
                credential is available
        """
        current = self.get_session(session.session_id) or session
        if not (session.can_resume and current.can_resume):
            raise SessionStateError(
                f"Session {session.session_id} is not resumable "
                f"(phase={current.phase.value}, resumable={current.resumable})"
            )
        credential = credential or current.credential or session.credential
        if not credential:
            raise SessionStateError("A source credential is required to resume")

        self._claim(session.session_id)
        try:
            session = await self._checkpoint(
                current.evolve(
                    phase=ImportPhase.IMPORTING,
                    failed_phase=None,
                    error=None,
                    error_message=None,
                    resumable=False,
                    credential=credential,
                )
            )
            logger.info("import_resumed", session_id=session.session_id, cursor=session.cursor)
            await self._audit(session, "import_resumed", cursor=session.cursor)
            return await self._run(session)
        finally:
            self._release(session.session_id)

    def abort(self, session_id: str) -> None:
        """
        Request an abort of a running import.

        The batch in flight completes and is recorded first; the session then
        fails resumably with error ``aborted``.

        Raises:
            SessionStateError: If the session is not importing
        """
        if session_id not in self._running:
            raise SessionStateError(f"Session {session_id} is not importing")
        self._abort_requested.add(session_id)
        logger.info("import_abort_requested", session_id=session_id)

    # ------------------------------------------------------------------
    # Import loop
    # ------------------------------------------------------------------

    def _map_page(
        self, records: list[SourceUserRecord], options: ImportOptions
    ) -> list[MappedUserRecord | ImportOutcome]:
        slots: list[MappedUserRecord | ImportOutcome] = []
        for record in records:
            try:
                slots.append(self.mapper.map(record, options))
            except InvalidRecordError as e:
                logger.debug("invalid_source_record", source_id=record.source_id, error=str(e))
                slots.append(
                    ImportOutcome.failed(
                        (record.email or "").strip(),
                        OutcomeReason.INVALID_RECORD,
                        source_id=record.source_id,
                    )
                )
        return slots

    async def _write_page(
        self, writer: BatchWriter, records: list[SourceUserRecord], options: ImportOptions
    ) -> list[ImportOutcome]:
        slots = self._map_page(records, options)
        mapped = [slot for slot in slots if isinstance(slot, MappedUserRecord)]
        written = iter(await writer.process(mapped))
        return [next(written) if isinstance(slot, MappedUserRecord) else slot for slot in slots]

    async def _fail_import(
        self,
        session: ImportSession,
        result: ImportResult,
        error: SessionErrorKind,
        message: str,
        resumable: bool,
        cursor: int | None,
    ) -> ImportSession:
        result.total_users = result.processed
        session = await self._checkpoint(
            session.evolve(
                phase=ImportPhase.FAILED,
                failed_phase=ImportPhase.IMPORTING,
                error=error,
                error_message=message,
                resumable=resumable,
                cursor=cursor,
                result=result.copy(),
                credential=session.credential if resumable else None,
            )
        )
        logger.warning(
            "import_failed",
            session_id=session.session_id,
            error=error.value,
            resumable=resumable,
            cursor=cursor,
            processed=result.processed,
        )
        await self._audit(
            session,
            "import_failed",
            success=False,
            error=error.value,
            resumable=resumable,
            imported=result.imported,
            skipped=result.skipped,
            failed=result.failed,
        )
        return session

    async def _run(self, session: ImportSession) -> ImportSession:
        options = session.options
        result = session.result.copy()
        ledger = self.ledger_for(session)
        resolver = DedupResolver(self.user_store, session.tenant_id, session.session_id, options)
        writer = BatchWriter(self.user_store, resolver, self.config.performance)
        cursor = session.cursor
        session_id = session.session_id

        try:
            async with self.connector_factory(session.source_url, session.credential) as connector:
                if session.expected_total is None:
                    session = session.evolve(expected_total=await connector.count())

                while cursor is not None:
                    try:
                        records, next_cursor = await connector.page(cursor, options.batch_size)
                    except SourceError as e:
                        return await self._fail_import(
                            session,
                            result,
                            e.kind,
                            e.message,
                            resumable=e.recoverable,
                            cursor=e.cursor or cursor,
                        )

                    outcomes = await self._write_page(writer, records, options)
                    new_entries = [o for o in outcomes if o.status != OutcomeStatus.IMPORTED]
                    for outcome in new_entries:
                        ledger.record(outcome)
                    result.imported += len(outcomes) - len(new_entries)
                    result.skipped += sum(1 for o in new_entries if o.status == OutcomeStatus.SKIPPED)
                    result.failed += sum(1 for o in new_entries if o.status == OutcomeStatus.FAILED)
                    result.errors = list(ledger.all())
                    result.total_users = result.processed

                    cursor = next_cursor
                    session = await self._checkpoint(
                        session.evolve(
                            cursor=cursor,
                            batches_written=session.batches_written + 1,
                            result=result.copy(),
                        ),
                        new_entries,
                    )
                    self._report_progress(session, result)

                    batch_failures = sum(1 for o in new_entries if o.status == OutcomeStatus.FAILED)
                    if batch_failures:
                        await self._audit(
                            session,
                            "import_batch_failed",
                            success=False,
                            batch=session.batches_written,
                            failed=batch_failures,
                        )

                    if cursor is not None and session_id in self._abort_requested:
                        return await self._fail_import(
                            session,
                            result,
                            SessionErrorKind.ABORTED,
                            "Import aborted by operator",
                            resumable=True,
                            cursor=cursor,
                        )
        except Exception as e:
            logger.error(
                "import_crashed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._fail_import(
                session,
                result,
                SessionErrorKind.UNRECOVERABLE_SOURCE_ERROR,
                str(e),
                resumable=False,
                cursor=cursor,
            )
            raise

        return await self._complete(session, result)

    async def _complete(self, session: ImportSession, result: ImportResult) -> ImportSession:
        result.total_users = result.processed
        if session.expected_total is not None and session.expected_total != result.total_users:
            logger.warning(
                "import_total_mismatch",
                session_id=session.session_id,
                expected=session.expected_total,
                processed=result.total_users,
            )

        session = await self._checkpoint(
            session.evolve(
                phase=ImportPhase.COMPLETED,
                cursor=None,
                result=result.copy(),
                credential=None,
            )
        )
        logger.info(
            "import_completed",
            session_id=session.session_id,
            total_users=result.total_users,
            imported=result.imported,
            skipped=result.skipped,
            failed=result.failed,
        )
        await self._audit(
            session,
            "import_completed",
            total_users=result.total_users,
            imported=result.imported,
            skipped=result.skipped,
            failed=result.failed,
        )
        return session

    def _report_progress(self, session: ImportSession, result: ImportResult) -> None:
        total = session.expected_total
        log_import_progress(
            logger,
            session.session_id,
            result.processed,
            total,
            batch=session.batches_written,
        )
        if self.progress_callback is None:
            return
        status = (
            f"Processed {result.processed} of {total} users"
            if total is not None
            else f"Processed {result.processed} users"
        )
        self.progress_callback(
            ImportProgress(
                session_id=session.session_id,
                processed=result.processed,
                total=total,
                batch=session.batches_written,
                status=status,
            )
        )
