"""Tests for the shared data models."""

import pytest
from pydantic import ValidationError

from user_import.records import (
    ImportOptions,
    ImportOutcome,
    ImportPhase,
    ImportSession,
    OutcomeReason,
    OutcomeStatus,
)


def test_unknown_reason_parses_to_unknown():
    assert OutcomeReason("quota_exceeded") is OutcomeReason.UNKNOWN
    assert OutcomeReason("id_collision") is OutcomeReason.ID_COLLISION


def test_outcome_from_dict_tolerates_unknown_reason():
    outcome = ImportOutcome.from_dict(
        {"email": "a@example.com", "status": "failed", "reason": "something new"}
    )
    assert outcome.reason is OutcomeReason.UNKNOWN
    assert outcome.status is OutcomeStatus.FAILED


def test_options_defaults():
    options = ImportOptions()
    assert options.batch_size == 100
    assert options.skip_existing is True
    assert options.preserve_ids is False
    assert options.import_metadata is True
    assert options.preserve_oauth is True


def test_options_accept_camel_case_aliases():
    options = ImportOptions.model_validate(
        {"batchSize": 50, "skipExisting": False, "preserveIds": True, "preserveOAuth": False}
    )
    assert options.batch_size == 50
    assert options.skip_existing is False
    assert options.preserve_ids is True
    assert options.preserve_oauth is False


@pytest.mark.parametrize("batch_size", [0, -1, 1001])
def test_options_reject_out_of_range_batch_size(batch_size):
    with pytest.raises(ValidationError):
        ImportOptions(batch_size=batch_size)


def test_options_are_frozen():
    options = ImportOptions()
    with pytest.raises(ValidationError):
        options.batch_size = 5


def test_credential_is_not_in_repr():
    session = ImportSession(tenant_id="t", credential="super-secret")
    assert "super-secret" not in repr(session)


def test_session_phase_properties():
    idle = ImportSession(tenant_id="t")
    assert idle.can_resubmit and not idle.is_terminal

    bad_credentials = idle.evolve(
        phase=ImportPhase.FAILED, failed_phase=ImportPhase.CREDENTIALS_VALIDATING
    )
    assert bad_credentials.can_resubmit
    assert not bad_credentials.is_terminal

    resumable = idle.evolve(
        phase=ImportPhase.FAILED, failed_phase=ImportPhase.IMPORTING, resumable=True
    )
    assert resumable.can_resume and not resumable.is_terminal

    dead = resumable.evolve(resumable=False)
    assert dead.is_terminal and not dead.can_resume

    assert idle.evolve(phase=ImportPhase.COMPLETED).is_terminal
