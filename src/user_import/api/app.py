"""FastAPI application entry point."""

from fastapi import FastAPI

from user_import import __version__
from user_import.api import routes
from user_import.config import ImportConfig
from user_import.destination.store import SqlUserStore, UserStore
from user_import.migration.orchestrator import ConnectorFactory, ImportOrchestrator
from user_import.migration.state import SessionStore

API_PREFIX = "/api/admin/projects/{project_id}/user-import"


def create_app(
    config: ImportConfig | None = None,
    user_store: UserStore | None = None,
    session_store: SessionStore | None = None,
    connector_factory: ConnectorFactory | None = None,
) -> FastAPI:
    """Build the API application around one orchestrator."""
    config = config or ImportConfig()

    app = FastAPI(
        title="Tenant User Import API",
        description="Import users from an external identity provider into a tenant",
        version=__version__,
    )
    app.state.orchestrator = ImportOrchestrator(
        config,
        user_store or SqlUserStore(config.destination.database_url),
        session_store or SessionStore(config.state),
        connector_factory=connector_factory,
    )

    app.include_router(routes.router, prefix=API_PREFIX, tags=["user-import"])

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app
