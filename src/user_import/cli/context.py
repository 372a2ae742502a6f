"""
CLI context for the user import tool.

This module provides the context object that is passed to all CLI commands,
holding configuration and the lazily built stores and orchestrator.
"""

from dataclasses import dataclass, field
from pathlib import Path

from user_import.config import ImportConfig, load_config_from_yaml
from user_import.destination.store import SqlUserStore
from user_import.migration.orchestrator import ImportOrchestrator, ProgressCallback
from user_import.migration.state import SessionStore
from user_import.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ImportContext:
    """
    Context object for CLI commands.

    Attributes:
        config_path: Path to configuration file (defaults plus environment when absent)
        log_level: Console logging level
        log_file: Optional log file path
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: ImportConfig | None = field(default=None, init=False, repr=False)
    _user_store: SqlUserStore | None = field(default=None, init=False, repr=False)
    _session_store: SessionStore | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> ImportConfig:
        """Get or load the import configuration."""
        if self._config is None:
            if self.config_path is None:
                logger.debug("No configuration file, using defaults and environment")
                self._config = ImportConfig()
            else:
                logger.debug("Loading configuration", config_path=str(self.config_path))
                self._config = load_config_from_yaml(self.config_path)
            logger.debug("Configuration loaded successfully")

        return self._config

    @property
    def user_store(self) -> SqlUserStore:
        """Get or create the destination user store."""
        if self._user_store is None:
            self._user_store = SqlUserStore(self.config.destination.database_url)
        return self._user_store

    @property
    def session_store(self) -> SessionStore:
        """Get or create the session checkpoint store."""
        if self._session_store is None:
            logger.debug("Initializing session store", db_path=self.config.state.db_path)
            self._session_store = SessionStore(self.config.state)
        return self._session_store

    def orchestrator(self, progress_callback: ProgressCallback | None = None) -> ImportOrchestrator:
        return ImportOrchestrator(
            self.config,
            self.user_store,
            self.session_store,
            progress_callback=progress_callback,
        )
