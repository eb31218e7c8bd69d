"""Compiler error taxonomy.

Every failure that reaches the action-dispatch boundary is a CompilerError
subclass; the boundary turns it into an ErrorResponse with ``http_status``.
"""

from __future__ import annotations

from typing import Any


class CompilerError(Exception):
    code = "compiler_error"
    http_status = 500
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}


def format_validation_errors(errors: list[dict[str, Any]]) -> str:
    """Flatten pydantic error dicts into ``loc → msg; ...``."""
    messages = []
    for err in errors:
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(messages)


class InvalidRequest(CompilerError):
    """Malformed action, unknown action key, or missing/invalid field."""

    code = "invalid_request"
    http_status = 422


class NotFound(CompilerError):
    code = "not_found"
    http_status = 404


class PreconditionFailed(CompilerError):
    code = "precondition_failed"
    http_status = 409


class IllegalTransition(PreconditionFailed):
    code = "illegal_transition"


class OfferRefused(PreconditionFailed):
    """The offer gate refused a generation action."""

    code = "offer_refused"


class ProviderError(CompilerError):
    """A generation/vision provider call failed or timed out."""

    code = "provider_error"
    http_status = 502
    retryable = True
