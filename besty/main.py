from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from besty.api.router import api_router
from besty.core.config import Settings, settings as default_settings
from besty.core.errors import BestyError
from besty.core.logging import configure_logging
from besty.services.container import Services, create_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles startup and shutdown events for the FastAPI application.
    Opens the database, Redis and AI gateway clients unless services were injected.
    """
    settings: Settings = app.state.settings
    logger.info(f"{settings.APP_NAME} starting up (Lifespan event)...")

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = await create_services(settings)

    # The fallback clip must exist before any turn can need it
    await app.state.services.audio_store.ensure_fallback()

    yield

    logger.info(f"{settings.APP_NAME} shutting down (Lifespan event)...")
    if owns_services:
        await app.state.services.close()
        app.state.services = None
    else:
        await app.state.services.orchestrator.aclose()


def _error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "code": code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Every error leaves as JSON; the client treats anything else as a protocol violation."""

    @app.exception_handler(BestyError)
    async def besty_error_handler(request: Request, exc: BestyError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return _error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
            for error in errors
        )
        return _error_response(status.HTTP_400_BAD_REQUEST, detail or "Invalid request", "validation_error")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail), "http_error")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "internal_error")


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or (services.settings if services else default_settings)
    configure_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Voice and text companion chat API.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")

    uploads_dir = Path(settings.UPLOADS_DIR)
    uploads_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=str(uploads_dir)), name="uploads")
    return app


app = create_app()
