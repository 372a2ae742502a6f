"""
Batch writer for the destination user store.

Each record's lookup and write run as one unit of work inside a bounded
asyncio pool. Store calls are blocking, so they run on worker threads with an
independent timeout per call. A record's failure becomes a ``failed`` outcome
and never aborts the rest of the batch.
"""

import asyncio
from collections.abc import Sequence

from user_import.client.exceptions import ConflictError, IdConflictError
from user_import.config import PerformanceConfig
from user_import.destination.store import UserStore
from user_import.migration.dedup import DedupResolver
from user_import.records import (
    Decision,
    DecisionKind,
    ImportOutcome,
    MappedUserRecord,
    OutcomeReason,
    OutcomeStatus,
)
from user_import.utils.logging import get_logger

logger = get_logger(__name__)


class BatchWriter:
    """Writes mapped records for one tenant and import session."""

    def __init__(
        self,
        store: UserStore,
        resolver: DedupResolver,
        performance: PerformanceConfig | None = None,
    ):
        """
        Args:
            store: Destination user store
            resolver: Dedup resolver bound to the same tenant and session
            performance: Pool size and write timeout
        """
        self.store = store
        self.resolver = resolver
        self.performance = performance or PerformanceConfig()
        self.tenant_id = resolver.tenant_id
        self.session_id = resolver.session_id
        # Emails handled earlier in this run; a repeat in the source listing is a collision
        self._claimed: set[str] = set()

    async def _write_one(self, record: MappedUserRecord, decision: Decision) -> ImportOutcome:
        if decision.kind == DecisionKind.SKIP:
            return ImportOutcome.skipped(record.email, decision.reason, source_id=record.source_id)
        if decision.kind == DecisionKind.FAIL:
            return ImportOutcome.failed(
                record.email,
                decision.reason,
                source_id=record.source_id,
                destination_id=record.destination_id,
            )

        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    self.store.upsert_user, self.tenant_id, record, self.session_id
                ),
                timeout=self.performance.write_timeout,
            )
        except IdConflictError:
            reason = OutcomeReason.ID_COLLISION
        except ConflictError:
            reason = OutcomeReason.EMAIL_COLLISION
        except TimeoutError:
            logger.warning(
                "destination_write_timeout",
                email=record.email,
                timeout=self.performance.write_timeout,
            )
            reason = OutcomeReason.WRITE_ERROR
        except Exception as e:
            logger.warning(
                "destination_write_failed",
                email=record.email,
                error=str(e),
                error_type=type(e).__name__,
            )
            reason = OutcomeReason.WRITE_ERROR
        else:
            return ImportOutcome.imported(record)

        return ImportOutcome.failed(
            record.email,
            reason,
            source_id=record.source_id,
            destination_id=record.destination_id,
        )

    async def write_batch(
        self, batch: Sequence[tuple[MappedUserRecord, Decision]]
    ) -> list[ImportOutcome]:
        """Write the ``Create`` decisions of a batch; Skip and Fail pass through.

        Writes are idempotent upserts keyed by (tenant, destination id), so
        re-submitting a batch after a crash does not create duplicates.

        Returns:
            One outcome per input pair, in input order
        """
        semaphore = asyncio.Semaphore(self.performance.max_concurrent)

        async def write_with_semaphore(pair: tuple[MappedUserRecord, Decision]) -> ImportOutcome:
            async with semaphore:
                return await self._write_one(*pair)

        return list(await asyncio.gather(*[write_with_semaphore(pair) for pair in batch]))

    async def _process_one(self, record: MappedUserRecord) -> ImportOutcome:
        if record.email in self._claimed:
            return ImportOutcome.failed(
                record.email, OutcomeReason.EMAIL_COLLISION, source_id=record.source_id
            )
        self._claimed.add(record.email)

        try:
            record, decision = await asyncio.wait_for(
                self.resolver.resolve(record), timeout=self.performance.write_timeout
            )
        except Exception as e:
            logger.warning(
                "destination_lookup_failed",
                email=record.email,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ImportOutcome.failed(
                record.email, OutcomeReason.WRITE_ERROR, source_id=record.source_id
            )

        return await self._write_one(record, decision)

    async def process(self, records: Sequence[MappedUserRecord]) -> list[ImportOutcome]:
        """Resolve then write each record in a bounded pool.

        Returns:
            One outcome per input record, in input order
        """
        if not records:
            return []

        semaphore = asyncio.Semaphore(self.performance.max_concurrent)

        async def process_with_semaphore(record: MappedUserRecord) -> ImportOutcome:
            async with semaphore:
                return await self._process_one(record)

        outcomes = list(await asyncio.gather(*[process_with_semaphore(r) for r in records]))

        logger.debug(
            "batch_processed",
            session_id=self.session_id,
            total=len(records),
            failed=sum(1 for o in outcomes if o.status == OutcomeStatus.FAILED),
        )
        return outcomes
