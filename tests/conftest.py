"""Shared pytest fixtures: a stub Supabase admin API and temporary sqlite stores."""

from collections.abc import Generator
from pathlib import Path

import pytest

from user_import.client.source_client import SourceConnector
from user_import.config import (
    DestinationConfig,
    ImportConfig,
    PerformanceConfig,
    SourceConfig,
    StateConfig,
)
from user_import.database import dispose_engines
from user_import.destination.store import SqlUserStore
from user_import.migration.orchestrator import ImportOrchestrator
from user_import.migration.state import SessionStore

from tests.helpers import FakeSupabase, make_user


@pytest.fixture(autouse=True)
def _dispose_engines() -> Generator[None, None, None]:
    yield
    dispose_engines()


@pytest.fixture
def config(tmp_path: Path) -> ImportConfig:
    return ImportConfig(
        source=SourceConfig(rate_limit=100, timeout=5),
        destination=DestinationConfig(database_url=f"sqlite:///{tmp_path / 'users.db'}"),
        state=StateConfig(db_path=str(tmp_path / "state.db")),
        performance=PerformanceConfig(
            max_concurrent=4,
            write_timeout=5,
            retry_attempts=1,
            retry_backoff_min=0,
            retry_backoff_max=0,
        ),
    )


@pytest.fixture
def fake_source() -> FakeSupabase:
    return FakeSupabase([make_user(i) for i in range(1, 4)])


@pytest.fixture
def connector_factory(fake_source: FakeSupabase, config: ImportConfig):
    def factory(url: str, credential: str) -> SourceConnector:
        return SourceConnector(
            url,
            credential,
            config=config.source,
            performance=config.performance,
            transport=fake_source.transport,
        )

    return factory


@pytest.fixture
def user_store(config: ImportConfig) -> SqlUserStore:
    return SqlUserStore(config.destination.database_url)


@pytest.fixture
def session_store(config: ImportConfig) -> SessionStore:
    return SessionStore(config.state)


@pytest.fixture
def orchestrator(config, user_store, session_store, connector_factory) -> ImportOrchestrator:
    return ImportOrchestrator(
        config,
        user_store,
        session_store,
        connector_factory=connector_factory,
    )
