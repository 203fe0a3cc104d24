import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from agent_engine.api.dependencies import EngineServices, build_default_services
from agent_engine.api.requests import router as requests_router
from agent_engine.api.rules import router as rules_router
from agent_engine.api.tasks import router as tasks_router
from agent_engine.api.webhooks import router as webhooks_router
from agent_engine.core.config import settings
from agent_engine.core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFailedError,
    NotFoundError,
    NotWaitingError,
    ReasoningError,
    RetryExhaustedError,
    TaskEngineError,
    ToolExecutionError,
    ValidationError,
)
from agent_engine.utils.opik_wrapper import configure_opik

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ValidationError: 422,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    NotWaitingError: 409,
    NotFailedError: 409,
    RetryExhaustedError: 409,
    ConcurrentModificationError: 409,
    ToolExecutionError: 502,
    ReasoningError: 502,
}


def status_code_for(error: TaskEngineError) -> int:
    for error_cls, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_cls):
            return status_code
    return 500


async def task_engine_error_handler(request: Request, exc: TaskEngineError) -> JSONResponse:
    """Render engine errors with their message and error type."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    # Startup: Configure Opik (optional)
    configure_opik()

    # Startup: verify the database connection
    services: EngineServices = app.state.services
    async with services.session_maker() as session:
        await session.execute(text("SELECT 1"))
    yield
    # Shutdown: Close database connections
    if services.db_engine is not None:
        await services.db_engine.dispose()


def create_app(engine_factory: Optional[Callable[[], EngineServices]] = None) -> FastAPI:
    """Build the application.

    Args:
        engine_factory: Builds the service container; defaults to the configured
            database with the Claude reasoning engine
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Agent Task Engine",
        description=(
            "Task orchestration and resumption service: turns requests into "
            "multi-step tasks, suspends them on external events and resumes "
            "them from webhooks."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = (engine_factory or build_default_services)()
    app.add_exception_handler(TaskEngineError, task_engine_error_handler)

    app.include_router(requests_router, prefix="/api")
    app.include_router(tasks_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")
    app.include_router(rules_router, prefix="/api")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app
