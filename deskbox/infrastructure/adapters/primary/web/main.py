import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deskbox.configuration.config import get_settings
from deskbox.domain.model.sandbox.exceptions import (
    CommandExitError,
    OutputParseError,
    SandboxError,
    SandboxNotFoundError,
    SandboxStartupTimeoutError,
    SandboxTransportError,
    StreamAlreadyRunningError,
    StreamStateError,
)
from deskbox.domain.model.session.session import InvalidStateTransitionError
from deskbox.infrastructure.adapters.primary.web.routers import sessions

logger = logging.getLogger(__name__)
settings = get_settings()

# Most specific first; the first matching class decides the status code
_ERROR_STATUS_CODES: list[tuple[type[SandboxError], int]] = [
    (SandboxNotFoundError, 404),
    (StreamAlreadyRunningError, 409),
    (StreamStateError, 409),
    (SandboxStartupTimeoutError, 504),
    (OutputParseError, 502),
    (SandboxTransportError, 502),
    (CommandExitError, 422),
]


def status_code_for(error: SandboxError) -> int:
    for error_type, status_code in _ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


async def sandbox_error_handler(request: Request, exc: SandboxError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error_type": "ValueError", "message": str(exc)})


async def state_transition_handler(
    request: Request, exc: InvalidStateTransitionError
) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"error_type": "InvalidStateTransitionError", "message": str(exc)},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting deskbox application...")
    yield
    # Shutdown
    logger.info("Shutting down deskbox application...")
    await sessions.shutdown_sessions()


def _allowed_origins() -> list[str]:
    origins = settings.api_allowed_origins
    if isinstance(origins, str):
        return [origin.strip() for origin in origins.split(",") if origin.strip()]
    return origins


def create_app() -> FastAPI:
    logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)

    app = FastAPI(
        title="deskbox API",
        description="Ephemeral remote-controllable desktop sandboxes.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SandboxError, sandbox_error_handler)
    app.add_exception_handler(InvalidStateTransitionError, state_transition_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "version": "0.1.0"}

    app.include_router(sessions.router)

    return app


app = create_app()
