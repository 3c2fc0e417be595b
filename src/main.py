import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.config.logging_config import configure_logging
from src.config.settings import settings
from src.database import client as db_client
from src.features.auth.exceptions import AuthCoreError
from src.features.auth.service import SessionLifecycleManager

logger = logging.getLogger(__name__)


async def auth_core_error_handler(request: Request, exc: AuthCoreError) -> JSONResponse:
    """Render core failures with their generic public message only."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.public_message, "code": exc.error_code},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.log_format)
    await db_client.init_db()
    app.state.lifecycle_manager = SessionLifecycleManager(db_client.get_session_factory())
    yield
    # Shutdown
    await app.state.lifecycle_manager.wait_for_notifications()
    await db_client.close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_exception_handler(AuthCoreError, auth_core_error_handler)


@app.get("/")
async def root():
    return {"message": settings.app_name, "status": "running"}


@app.get("/health")
async def health():
    healthy = await db_client.health_check()
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "healthy" if healthy else "unhealthy", "database": healthy},
    )
