"""FastAPI application for student-service."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config.loader import ServiceConfig, load_config
from ..database.connection import DatabaseManager
from ..database.migrations.runner import MigrationRunner
from ..database.schema import validate_schema
from ..utils.logging import LogContext, get_logger
from .exceptions import StudentServiceAPIException
from .middleware import RequestTrackingMiddleware
from .routers import health_router, students_router

logger = get_logger(__name__, LogContext.WEB)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Migrate the schema before serving, close connections on shutdown.

    Any migration error propagates and aborts startup: the application never
    serves requests against a schema in an unknown state.
    """
    logger.info("Starting student-service API server")

    config: ServiceConfig = app.state.config
    if app.state.db_manager is None:
        app.state.db_manager = DatabaseManager.from_config(config)
    db_manager: DatabaseManager = app.state.db_manager

    try:
        runner = MigrationRunner.from_config(db_manager.engine, config)
        applied = runner.update()
        validate_schema(db_manager.engine)
    except Exception as e:
        logger.critical("Schema migration failed; refusing to start", exception=e)
        db_manager.close()
        raise

    app.state.schema_ready = True
    logger.info("student-service API server ready", applied=len(applied))

    yield

    app.state.schema_ready = False
    db_manager.close()
    logger.info("student-service API server shutdown complete")


def create_app(
    config: ServiceConfig | None = None,
    db_manager: DatabaseManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Service configuration; loaded from the usual sources if omitted.
        db_manager: Database manager to use instead of one built from ``config``.
    """
    app = FastAPI(
        title="student-service API",
        description="Student records over a changelog-managed schema",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config or load_config()
    app.state.db_manager = db_manager
    app.state.schema_ready = False

    app.add_middleware(RequestTrackingMiddleware)

    @app.exception_handler(StudentServiceAPIException)
    async def api_exception_handler(
        request: Request, exc: StudentServiceAPIException
    ) -> JSONResponse:
        """Handle custom API exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.__class__.__name__,
                "message": exc.message,
                "status_code": exc.status_code,
            },
        )

    app.include_router(students_router, prefix="/students", tags=["students"])
    app.include_router(health_router, prefix="/health", tags=["health"])

    return app
