import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from concierge.api.routes import compiler, health
from concierge.compiler.errors import format_validation_errors
from concierge.config import settings
from concierge.logging import configure_logging
from concierge.storage.memory import InMemoryStore
from concierge.storage.sql import SqlStore
from concierge.workflows.concierge_session import DesignCompiler

configure_logging()

logger = structlog.get_logger()


def build_compiler() -> DesignCompiler:
    """In-memory store unless DATABASE_URL is set."""
    store = SqlStore(settings.database_url) if settings.database_url else InMemoryStore()
    return DesignCompiler(store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "compiler", None) is None:
        app.state.compiler = build_compiler()
    store = app.state.compiler.store
    if isinstance(store, SqlStore):
        await store.init()
    logger.info(
        "app_started",
        environment=settings.environment,
        store=type(app.state.compiler.store).__name__,
        mock_providers=settings.use_mock_providers,
    )
    yield
    if isinstance(store, SqlStore):
        await store.close()


app = FastAPI(
    title="Concierge Design Compiler API",
    version=health.VERSION,
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a unique request ID to every request for log correlation.

    Sets the ID in structlog context vars (appears in all log entries for the
    request) and returns it in the X-Request-ID response header.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", request.headers.get("X-Request-ID", ""))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return ErrorResponse JSON for malformed request bodies.

    FastAPI's default 422 returns {"detail": [...]}; clients expect a
    single error shape.
    """
    response = JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": format_validation_errors(exc.errors()),
            "retryable": False,
        },
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return consistent ErrorResponse JSON for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


app.include_router(health.router)
app.include_router(compiler.router, prefix="/api/v1")
