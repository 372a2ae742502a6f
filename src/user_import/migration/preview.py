"""Non-committing preview of the source user population."""

from dataclasses import dataclass

from user_import.client.source_client import SourceConnector
from user_import.config import PreviewConfig
from user_import.records import PreviewRow, SourceUserRecord
from user_import.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Preview:
    """Sample rows plus the best-known total population."""

    total_count: int
    sample_users: tuple[PreviewRow, ...]


def to_preview_row(record: SourceUserRecord) -> PreviewRow:
    return PreviewRow(
        email=(record.email or "").strip(),
        display_name=record.display_name,
        has_password=record.has_password,
        has_oauth=record.has_oauth,
        created_at=record.created_at,
    )


class PreviewSampler:
    """Builds a small sample for operator review. Performs no writes."""

    def __init__(self, connector: SourceConnector, config: PreviewConfig | None = None):
        self.connector = connector
        self.config = config or PreviewConfig()

    def _clamp(self, n: int | None) -> int:
        if n is None:
            return self.config.default_sample_size
        return max(1, min(n, self.config.max_sample_size))

    async def sample(self, n: int | None = None) -> tuple[PreviewRow, ...]:
        """Return at most ``n`` rows from the first source page.

        Raises:
            SourceError: If the source page cannot be fetched
        """
        size = self._clamp(n)
        records, _ = await self.connector.page(1, size)
        return tuple(to_preview_row(record) for record in records[:size])

    async def preview(self, n: int | None = None) -> Preview:
        """Sample and count in one call."""
        rows = await self.sample(n)
        total = await self.connector.count()
        if total is None:
            total = len(rows)
        logger.info("preview_sampled", sample_size=len(rows), total_count=total)
        return Preview(total_count=total, sample_users=rows)
