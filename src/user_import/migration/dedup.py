"""Per-record duplicate resolution against the destination user store."""

import asyncio
from dataclasses import replace

from user_import.destination.store import DestinationUser, UserStore
from user_import.records import Decision, ImportOptions, MappedUserRecord, OutcomeReason
from user_import.utils.logging import get_logger

logger = get_logger(__name__)


class DedupResolver:
    """
    Decides whether a mapped record is created, skipped or failed.

    The check runs immediately before the write and is advisory only: the
    store's (tenant, email) uniqueness constraint remains the final backstop
    for signups that race the import.
    """

    def __init__(
        self,
        store: UserStore,
        tenant_id: str,
        session_id: str,
        options: ImportOptions,
    ):
        self.store = store
        self.tenant_id = tenant_id
        self.session_id = session_id
        self.options = options

    async def resolve(self, record: MappedUserRecord) -> tuple[MappedUserRecord, Decision]:
        """Resolve a record against the store.

        Returns the record to write (possibly carrying the id of an earlier
        write by this session) together with the decision.

        Raises:
            Any error from the store lookups; callers turn it into an outcome
        """
        existing: DestinationUser | None = await asyncio.to_thread(
            self.store.find_by_email, self.tenant_id, record.email
        )

        if existing is not None:
            if existing.import_session_id == self.session_id:
                if record.source_id is None or existing.source_id != record.source_id:
                    # Another source user of this session already took the email
                    return record, Decision.fail(OutcomeReason.EMAIL_COLLISION)

                # Written by an earlier attempt of this session: rewrite in place
                logger.debug(
                    "dedup_reusing_session_write", email=record.email, user_id=existing.id
                )
                if existing.id != record.destination_id:
                    record = replace(record, destination_id=existing.id)
                return record, Decision.create()

            if self.options.skip_existing:
                return record, Decision.skip(OutcomeReason.ALREADY_EXISTS)
            return record, Decision.fail(OutcomeReason.EMAIL_COLLISION)

        if self.options.preserve_ids:
            occupant = await asyncio.to_thread(
                self.store.find_by_id, self.tenant_id, record.destination_id
            )
            if occupant is not None and occupant.email != record.email:
                return record, Decision.fail(OutcomeReason.ID_COLLISION)

        return record, Decision.create()
