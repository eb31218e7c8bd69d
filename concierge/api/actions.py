"""Action dispatch: ``{"action": ..., **params}`` -> DesignCompiler call.

Each action declares a strict parameter model; unknown actions, unknown
parameters and malformed values all become InvalidRequest before the
compiler is touched.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from concierge.compiler.errors import InvalidRequest, format_validation_errors
from concierge.models.contracts import Attachment
from concierge.workflows.concierge_session import DesignCompiler

logger = structlog.get_logger()


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CreateSessionParams(_Params):
    workspace_id: str = Field(min_length=1)
    conversation_id: str = Field(min_length=1)
    artist_id: str | None = None


class SessionParams(_Params):
    session_id: str = Field(min_length=1)


class UpdateBriefParams(SessionParams):
    updates: dict[str, Any]


class ProcessMessageParams(SessionParams):
    message: str = ""
    attachments: list[Attachment] = []


class FinalizeSketchParams(SessionParams):
    variant_id: str = Field(min_length=1)


class BuildARPackParams(SessionParams):
    sketch_id: str = Field(min_length=1)


class BookingEventParams(SessionParams):
    event: str = Field(min_length=1)


class JobErrorsParams(SessionParams):
    limit: int = Field(default=20, ge=1, le=100)


class WorkspaceParams(_Params):
    workspace_id: str = Field(min_length=1)


class SetFeatureFlagParams(WorkspaceParams):
    key: str = Field(min_length=1)
    enabled: bool
    config: dict[str, Any] | None = None


class UpdateOfferPolicyParams(WorkspaceParams):
    policy: dict[str, Any] | None = None
    preset: str | None = None


class RetryJobParams(_Params):
    job_id: str = Field(min_length=1)


Handler = Callable[[DesignCompiler, Any], Awaitable[Any]]


async def _create_session(c: DesignCompiler, p: CreateSessionParams) -> Any:
    return await c.create_session(p.workspace_id, p.conversation_id, p.artist_id)


async def _get_session(c: DesignCompiler, p: SessionParams) -> Any:
    return await c.get_session(p.session_id)


async def _update_brief(c: DesignCompiler, p: UpdateBriefParams) -> Any:
    return await c.update_brief(p.session_id, p.updates)


async def _process_message(c: DesignCompiler, p: ProcessMessageParams) -> Any:
    return await c.process_message(p.session_id, p.message, p.attachments)


async def _get_actions(c: DesignCompiler, p: SessionParams) -> Any:
    return {"actions": await c.get_actions(p.session_id)}


async def _can_offer_sketch(c: DesignCompiler, p: SessionParams) -> Any:
    return await c.can_offer_sketch(p.session_id)


async def _generate_concept(c: DesignCompiler, p: SessionParams) -> Any:
    return await c.generate_concept(p.session_id)


async def _list_variants(c: DesignCompiler, p: SessionParams) -> Any:
    return {"variants": await c.list_variants(p.session_id)}


async def _finalize_sketch(c: DesignCompiler, p: FinalizeSketchParams) -> Any:
    return await c.finalize_sketch(p.session_id, p.variant_id)


async def _build_ar_pack(c: DesignCompiler, p: BuildARPackParams) -> Any:
    return await c.build_ar_pack(p.session_id, p.sketch_id)


async def _decline_sketch_offer(c: DesignCompiler, p: SessionParams) -> Any:
    return await c.decline_sketch_offer(p.session_id)


async def _record_booking_event(c: DesignCompiler, p: BookingEventParams) -> Any:
    return await c.record_booking_event(p.session_id, p.event)


async def _reset_session(c: DesignCompiler, p: SessionParams) -> Any:
    return await c.reset_session(p.session_id)


async def _set_feature_flag(c: DesignCompiler, p: SetFeatureFlagParams) -> Any:
    flag = await c.set_feature_flag(p.workspace_id, p.key, p.enabled, p.config)
    return {"success": True, "flag": flag}


async def _get_feature_flags(c: DesignCompiler, p: WorkspaceParams) -> Any:
    return {"flags": await c.get_feature_flags(p.workspace_id)}


async def _update_offer_policy(c: DesignCompiler, p: UpdateOfferPolicyParams) -> Any:
    policy = await c.update_offer_policy(p.workspace_id, p.policy, p.preset)
    return {"success": True, "policy": policy}


async def _get_offer_policy(c: DesignCompiler, p: WorkspaceParams) -> Any:
    return {"policy": await c.get_offer_policy(p.workspace_id)}


async def _get_job_errors(c: DesignCompiler, p: JobErrorsParams) -> Any:
    return {"errors": await c.get_job_errors(p.session_id, p.limit)}


async def _retry_job(c: DesignCompiler, p: RetryJobParams) -> Any:
    return await c.retry_job(p.job_id)


ACTIONS: dict[str, tuple[type[_Params], Handler]] = {
    "create_session": (CreateSessionParams, _create_session),
    "get_session": (SessionParams, _get_session),
    "update_brief": (UpdateBriefParams, _update_brief),
    "process_message": (ProcessMessageParams, _process_message),
    "get_actions": (SessionParams, _get_actions),
    "can_offer_sketch": (SessionParams, _can_offer_sketch),
    "generate_concept": (SessionParams, _generate_concept),
    "list_variants": (SessionParams, _list_variants),
    "finalize_sketch": (FinalizeSketchParams, _finalize_sketch),
    "build_ar_pack": (BuildARPackParams, _build_ar_pack),
    "decline_sketch_offer": (SessionParams, _decline_sketch_offer),
    "record_booking_event": (BookingEventParams, _record_booking_event),
    "reset_session": (SessionParams, _reset_session),
    "set_feature_flag": (SetFeatureFlagParams, _set_feature_flag),
    "get_feature_flags": (WorkspaceParams, _get_feature_flags),
    "update_offer_policy": (UpdateOfferPolicyParams, _update_offer_policy),
    "get_offer_policy": (WorkspaceParams, _get_offer_policy),
    "get_job_errors": (JobErrorsParams, _get_job_errors),
    "retry_job": (RetryJobParams, _retry_job),
}


def to_json(value: Any) -> Any:
    """Recursively dump pydantic models inside dicts/lists to JSON-safe values."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_json(v) for v in value]
    return value


async def dispatch(compiler: DesignCompiler, payload: dict[str, Any]) -> dict[str, Any]:
    action = payload.get("action")
    if not isinstance(action, str) or not action:
        raise InvalidRequest("'action' is required")
    entry = ACTIONS.get(action)
    if entry is None:
        raise InvalidRequest(
            f"Unknown action: {action}",
            code="unknown_action",
            details={"allowed": sorted(ACTIONS)},
        )

    params_model, handler = entry
    raw = {k: v for k, v in payload.items() if k != "action"}
    try:
        params = params_model.model_validate(raw)
    except ValidationError as exc:
        raise InvalidRequest(
            format_validation_errors(exc.errors()), details={"action": action}
        ) from exc

    structlog.contextvars.bind_contextvars(action=action)
    logger.debug("action_dispatched", action=action)
    return to_json(await handler(compiler, params))
