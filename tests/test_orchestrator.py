"""Tests for the import session state machine."""

import asyncio

import pytest

from user_import.client.exceptions import SessionStateError
from user_import.migration.orchestrator import ImportOrchestrator
from user_import.records import (
    ImportOptions,
    ImportPhase,
    ImportResult,
    MappedUserRecord,
    OAuthLink,
    OutcomeReason,
    OutcomeStatus,
    SessionErrorKind,
)

from tests.helpers import SERVICE_KEY, SOURCE_URL, TENANT, make_user

GITHUB = {"id": "gh-1", "provider": "github", "identity_data": {"sub": "gh-1", "login": "octo"}}


async def start(orchestrator: ImportOrchestrator, credential: str = SERVICE_KEY):
    session = orchestrator.new_session(TENANT)
    return await orchestrator.submit_credentials(session, SOURCE_URL, credential)


def assert_accounting(session):
    result = session.result
    assert result.imported + result.skipped + result.failed == result.total_users
    assert len(result.errors) == result.skipped + result.failed


@pytest.mark.asyncio
async def test_scenario_a_fresh_import(orchestrator, user_store):
    session = await start(orchestrator)
    assert session.phase == ImportPhase.PREVIEW_READY
    assert len(session.preview) == 3
    assert session.expected_total == 3

    session = await orchestrator.confirm(session, ImportOptions())

    assert session.phase == ImportPhase.COMPLETED
    assert session.result.total_users == 3
    assert (session.result.imported, session.result.skipped, session.result.failed) == (3, 0, 0)
    assert session.credential is None
    assert user_store.count_users(TENANT) == 3
    assert_accounting(session)


@pytest.mark.asyncio
async def test_scenario_b_existing_email_is_skipped(orchestrator, user_store, fake_source):
    fake_source.users = [make_user(1), make_user(2)]
    user_store.upsert_user(
        TENANT,
        MappedUserRecord(
            destination_id="pre-existing",
            email="user2@example.com",
            display_email="user2@example.com",
        ),
    )

    session = await orchestrator.confirm(await start(orchestrator), ImportOptions(skip_existing=True))

    assert (session.result.imported, session.result.skipped) == (1, 1)
    [entry] = session.result.errors
    assert entry.email == "user2@example.com"
    assert entry.status == OutcomeStatus.SKIPPED
    assert entry.reason == OutcomeReason.ALREADY_EXISTS
    assert_accounting(session)


@pytest.mark.asyncio
async def test_scenario_c_resume_after_page_failure(orchestrator, user_store, fake_source):
    fake_source.users = [make_user(i) for i in range(1, 7)]
    fake_source.fail_pages = {2}
    options = ImportOptions(batch_size=2)

    session = await orchestrator.confirm(await start(orchestrator), options)

    assert session.phase == ImportPhase.FAILED
    assert session.failed_phase == ImportPhase.IMPORTING
    assert session.error == SessionErrorKind.UNREACHABLE
    assert session.can_resume
    assert session.cursor == 2
    assert session.result.imported == 2
    assert session.result.total_users == 2
    assert user_store.count_users(TENANT) == 2

    fake_source.fail_pages = set()
    pages_before_resume = len(fake_source.listed_pages())
    session = await orchestrator.resume(session)

    assert session.phase == ImportPhase.COMPLETED
    assert fake_source.listed_pages()[pages_before_resume:] == [2, 3]
    assert session.result.imported == 6
    assert session.result.total_users == 6
    assert user_store.count_users(TENANT) == 6
    assert_accounting(session)


@pytest.mark.asyncio
async def test_scenario_d_id_collision(orchestrator, user_store, fake_source):
    fake_source.users = [make_user(1), make_user(2), make_user(3)]
    user_store.upsert_user(
        TENANT,
        MappedUserRecord(
            destination_id=make_user(2)["id"],
            email="someone.else@example.com",
            display_email="someone.else@example.com",
        ),
    )

    session = await orchestrator.confirm(await start(orchestrator), ImportOptions(preserve_ids=True))

    assert session.phase == ImportPhase.COMPLETED
    assert (session.result.imported, session.result.failed) == (2, 1)
    [entry] = session.result.errors
    assert entry.email == "user2@example.com"
    assert entry.reason == OutcomeReason.ID_COLLISION
    assert user_store.find_by_id(TENANT, make_user(1)["id"]).email == "user1@example.com"


@pytest.mark.asyncio
async def test_existing_email_without_skip_is_a_collision(orchestrator, user_store, fake_source):
    fake_source.users = [make_user(1)]
    user_store.upsert_user(
        TENANT,
        MappedUserRecord(
            destination_id="other", email="user1@example.com", display_email="user1@example.com"
        ),
    )

    session = await orchestrator.confirm(await start(orchestrator), ImportOptions(skip_existing=False))

    assert session.result.failed == 1
    assert session.result.errors[0].reason == OutcomeReason.EMAIL_COLLISION
    assert user_store.find_by_email(TENANT, "user1@example.com").id == "other"


@pytest.mark.asyncio
async def test_invalid_records_are_counted_as_failed(orchestrator, fake_source):
    fake_source.users = [make_user(1), make_user(2, email=""), make_user(3, email="broken")]

    session = await orchestrator.confirm(await start(orchestrator), ImportOptions())

    assert session.phase == ImportPhase.COMPLETED
    assert (session.result.imported, session.result.failed) == (1, 2)
    assert {e.reason for e in session.result.errors} == {OutcomeReason.INVALID_RECORD}
    assert_accounting(session)


@pytest.mark.asyncio
async def test_oauth_links_follow_preserve_oauth(orchestrator, user_store, fake_source):
    fake_source.users = [make_user(1, identities=[GITHUB])]

    await orchestrator.confirm(await start(orchestrator), ImportOptions(preserve_oauth=True))
    stored = user_store.find_by_email(TENANT, "user1@example.com")
    assert stored.oauth_links == (OAuthLink("github", "gh-1"),)
    assert stored.oauth_links[0].identity_data == GITHUB["identity_data"]


@pytest.mark.asyncio
async def test_oauth_links_dropped_without_preserve_oauth(orchestrator, user_store, fake_source):
    fake_source.users = [make_user(1, identities=[GITHUB])]

    await orchestrator.confirm(await start(orchestrator), ImportOptions(preserve_oauth=False))
    stored = user_store.find_by_email(TENANT, "user1@example.com")
    assert stored.oauth_links == ()


@pytest.mark.asyncio
async def test_bad_credential_fails_and_can_be_resubmitted(orchestrator):
    session = await start(orchestrator, credential="wrong-key")

    assert session.phase == ImportPhase.FAILED
    assert session.failed_phase == ImportPhase.CREDENTIALS_VALIDATING
    assert session.error == SessionErrorKind.INVALID_CREDENTIAL
    assert session.credential is None

    session = await orchestrator.submit_credentials(session, SOURCE_URL, SERVICE_KEY)

    assert session.phase == ImportPhase.PREVIEW_READY
    assert session.error is None


@pytest.mark.asyncio
async def test_invalid_transitions_raise(orchestrator):
    idle = orchestrator.new_session(TENANT)
    with pytest.raises(SessionStateError):
        await orchestrator.confirm(idle, ImportOptions())
    with pytest.raises(SessionStateError):
        await orchestrator.resume(idle, SERVICE_KEY)
    with pytest.raises(SessionStateError):
        orchestrator.abort(idle.session_id)

    completed = await orchestrator.confirm(await start(orchestrator), ImportOptions())
    with pytest.raises(SessionStateError):
        await orchestrator.submit_credentials(completed, SOURCE_URL, SERVICE_KEY)
    with pytest.raises(SessionStateError):
        await orchestrator.confirm(completed, ImportOptions())
    with pytest.raises(SessionStateError):
        await orchestrator.resume(completed, SERVICE_KEY)


@pytest.mark.asyncio
async def test_abort_takes_effect_between_batches(
    config, user_store, session_store, connector_factory, fake_source
):
    fake_source.users = [make_user(i) for i in range(1, 7)]
    progress = []

    def on_progress(update):
        progress.append(update)
        if update.batch == 1:
            orchestrator.abort(update.session_id)

    orchestrator = ImportOrchestrator(
        config,
        user_store,
        session_store,
        connector_factory=connector_factory,
        progress_callback=on_progress,
    )

    session = await orchestrator.confirm(await start(orchestrator), ImportOptions(batch_size=2))

    assert session.phase == ImportPhase.FAILED
    assert session.error == SessionErrorKind.ABORTED
    assert session.can_resume
    assert session.result.imported == 2
    assert user_store.count_users(TENANT) == 2
    assert len(progress) == 1

    session = await orchestrator.resume(session)
    assert session.phase == ImportPhase.COMPLETED
    assert session.result.imported == 6


@pytest.mark.asyncio
async def test_malformed_page_is_terminal(orchestrator, fake_source):
    fake_source.users = [make_user(i) for i in range(1, 5)]
    fake_source.malformed_pages = {2}

    session = await orchestrator.confirm(await start(orchestrator), ImportOptions(batch_size=2))

    assert session.phase == ImportPhase.FAILED
    assert session.error == SessionErrorKind.UNRECOVERABLE_SOURCE_ERROR
    assert session.is_terminal
    assert session.credential is None
    assert session.result.imported == 2


@pytest.mark.asyncio
async def test_progress_reports_each_batch(
    config, user_store, session_store, connector_factory, fake_source
):
    fake_source.users = [make_user(i) for i in range(1, 6)]
    progress = []
    orchestrator = ImportOrchestrator(
        config,
        user_store,
        session_store,
        connector_factory=connector_factory,
        progress_callback=progress.append,
    )

    await orchestrator.confirm(await start(orchestrator), ImportOptions(batch_size=2))

    assert [p.batch for p in progress] == [1, 2, 3]
    assert [p.processed for p in progress] == [2, 4, 5]
    assert all(p.total == 5 for p in progress)


@pytest.mark.asyncio
async def test_terminal_session_is_persisted_without_credential(orchestrator, session_store):
    session = await orchestrator.confirm(await start(orchestrator), ImportOptions())

    loaded = session_store.load_session(session.session_id)

    assert loaded.phase == ImportPhase.COMPLETED
    assert loaded.credential is None
    assert loaded.result.imported == 3
    actions = [e["action"] for e in session_store.get_audit_events(session.session_id)]
    assert actions == ["import_started", "import_completed"]


@pytest.mark.asyncio
async def test_failed_import_is_audited(orchestrator, fake_source, session_store):
    fake_source.users = [make_user(1), make_user(2, email="")]

    session = await orchestrator.confirm(await start(orchestrator), ImportOptions())

    events = session_store.get_audit_events(session.session_id)
    assert [e["action"] for e in events] == [
        "import_started",
        "import_batch_failed",
        "import_completed",
    ]
    assert events[1]["status"] == "failure"
    assert events[1]["data"]["failed"] == 1


@pytest.mark.asyncio
async def test_duplicate_email_after_resume_collides(orchestrator, user_store, fake_source):
    fake_source.users = [
        make_user(1),
        make_user(2),
        make_user(9, email="user1@example.com"),
        make_user(3),
    ]
    fake_source.fail_pages = {2}
    session = await orchestrator.confirm(await start(orchestrator), ImportOptions(batch_size=2))
    assert session.can_resume

    fake_source.fail_pages = set()
    session = await orchestrator.resume(session)

    assert session.phase == ImportPhase.COMPLETED
    assert (session.result.imported, session.result.failed) == (3, 1)
    [entry] = session.result.errors
    assert entry.email == "user1@example.com"
    assert entry.reason == OutcomeReason.EMAIL_COLLISION
    assert entry.source_id == make_user(9)["id"]
    assert user_store.find_by_email(TENANT, "user1@example.com").display_name == "User 1"
    assert user_store.count_users(TENANT) == session.result.imported
    assert_accounting(session)


@pytest.mark.asyncio
async def test_concurrent_resumes_run_once(orchestrator, user_store, fake_source):
    fake_source.users = [make_user(i) for i in range(1, 7)]
    fake_source.fail_pages = {2}
    session = await orchestrator.confirm(await start(orchestrator), ImportOptions(batch_size=2))

    fake_source.fail_pages = set()
    pages_before_resume = len(fake_source.listed_pages())
    results = await asyncio.gather(
        orchestrator.resume(session), orchestrator.resume(session), return_exceptions=True
    )

    completed = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, SessionStateError)]
    assert len(completed) == 1 and len(rejected) == 1
    assert completed[0].phase == ImportPhase.COMPLETED
    assert completed[0].result.imported == 6
    assert fake_source.listed_pages()[pages_before_resume:] == [2, 3]
    assert user_store.count_users(TENANT) == 6


@pytest.mark.asyncio
async def test_confirm_twice_starts_one_import(orchestrator, fake_source):
    session = await start(orchestrator)

    results = await asyncio.gather(
        orchestrator.confirm(session, ImportOptions()),
        orchestrator.confirm(session, ImportOptions()),
        return_exceptions=True,
    )

    assert sum(isinstance(r, SessionStateError) for r in results) == 1
    assert fake_source.listed_pages().count(1) == 2  # preview plus one import


@pytest.mark.asyncio
async def test_import_interrupted_by_process_exit_resumes_in_new_process(
    config, orchestrator, user_store, session_store, connector_factory, fake_source
):
    fake_source.users = [make_user(i) for i in range(1, 7)]
    fake_source.fail_pages = {2}
    session = await orchestrator.confirm(await start(orchestrator), ImportOptions(batch_size=2))
    fake_source.fail_pages = set()
    # Page 1 was written but the process died before its checkpoint
    session_store.save_session(
        session.evolve(
            phase=ImportPhase.IMPORTING,
            failed_phase=None,
            error=None,
            error_message=None,
            resumable=False,
            cursor=1,
            batches_written=0,
            result=ImportResult(),
        )
    )

    restarted = ImportOrchestrator(
        config, user_store, session_store, connector_factory=connector_factory
    )
    recovered = restarted.get_session(session.session_id)

    assert recovered.phase == ImportPhase.FAILED
    assert recovered.failed_phase == ImportPhase.IMPORTING
    assert recovered.error == SessionErrorKind.ABORTED
    assert recovered.can_resume
    assert recovered.cursor == 1
    assert recovered.credential is None
    with pytest.raises(SessionStateError):
        await restarted.resume(recovered)

    session = await restarted.resume(recovered, SERVICE_KEY)

    assert session.phase == ImportPhase.COMPLETED
    assert (session.result.imported, session.result.failed) == (6, 0)
    assert user_store.count_users(TENANT) == 6


@pytest.mark.asyncio
async def test_interrupted_validation_accepts_new_credentials(
    config, orchestrator, user_store, session_store, connector_factory
):
    session = orchestrator.new_session(TENANT)
    session_store.save_session(
        session.evolve(phase=ImportPhase.CREDENTIALS_VALIDATING, source_url=SOURCE_URL)
    )

    restarted = ImportOrchestrator(
        config, user_store, session_store, connector_factory=connector_factory
    )
    recovered = restarted.get_session(session.session_id)

    assert recovered.can_resubmit
    session = await restarted.submit_credentials(recovered, SOURCE_URL, SERVICE_KEY)
    assert session.phase == ImportPhase.PREVIEW_READY


@pytest.mark.asyncio
async def test_malformed_identities_do_not_break_the_import(orchestrator, fake_source):
    fake_source.users = [make_user(1, identities=["oops", GITHUB])]

    session = await start(orchestrator)
    assert session.phase == ImportPhase.PREVIEW_READY
    assert session.preview[0].has_oauth

    session = await orchestrator.confirm(session, ImportOptions())
    assert session.result.imported == 1
