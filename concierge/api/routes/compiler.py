"""Design compiler endpoint: one POST route, many actions.

Every CompilerError becomes an ErrorResponse with the error's HTTP status;
anything else falls through to the app-wide 500 handler.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse

from concierge.api.actions import dispatch
from concierge.compiler.errors import CompilerError
from concierge.logging import action_context
from concierge.models.contracts import ErrorResponse

logger = structlog.get_logger()

router = APIRouter(tags=["design-compiler"])


def _error(exc: CompilerError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=ErrorResponse(
            error=exc.code,
            message=exc.message,
            retryable=exc.retryable,
            details=exc.details or None,
        ).model_dump(mode="json"),
    )


@router.post("/design-compiler")
async def design_compiler(request: Request, payload: dict[str, Any] = Body(...)):
    compiler = request.app.state.compiler
    with structlog.contextvars.bound_contextvars(**action_context(payload)):
        try:
            return await dispatch(compiler, payload)
        except CompilerError as exc:
            log = logger.warning if exc.http_status >= 500 else logger.info
            log(
                "design_compiler_error",
                code=exc.code,
                status=exc.http_status,
                error=exc.message,
            )
            return _error(exc)
