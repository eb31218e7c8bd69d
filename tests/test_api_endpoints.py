"""Integration tests for the HTTP surface.

Drives the single action endpoint through a full mock conversation and
checks status codes, ErrorResponse shapes and request-ID propagation.
"""

from unittest.mock import patch

import pytest

URL = "/api/v1/design-compiler"


async def _call(client, action, **params):
    return await client.post(URL, json={"action": action, **params})


@pytest.fixture
async def api_session_id(client):
    """Create a session over HTTP and return its ID."""
    resp = await _call(client, "create_session", workspace_id="ws-1", conversation_id="conv-1")
    return resp.json()["session"]["id"]


async def _make_ready(client, session_id):
    await _call(
        client,
        "update_brief",
        session_id=session_id,
        updates={
            "placement": "forearm",
            "size_category": "medium",
            "style_tags": ["fineline"],
            "concept_summary": "a compass with roman numerals",
        },
    )
    return await _call(
        client,
        "process_message",
        session_id=session_id,
        message="quiero ver cómo queda",
        attachments=[
            {"url": f"https://cdn.example.com/ref-{i}.jpg", "type": "reference_image"}
            for i in range(3)
        ],
    )


class TestDispatch:
    """POST /api/v1/design-compiler"""

    @pytest.mark.asyncio
    async def test_create_session(self, client):
        resp = await _call(client, "create_session", workspace_id="ws", conversation_id="c")
        assert resp.status_code == 200
        body = resp.json()
        assert len(body["session"]["id"]) == 36  # UUID format
        assert body["session"]["stage"] == "discovery"
        assert body["decision"]["can_offer"] is False
        assert {a["action_key"] for a in body["actions"]} >= {"generate_concept", "ar_tryon"}

    @pytest.mark.asyncio
    async def test_missing_action(self, client):
        resp = await client.post(URL, json={"session_id": "x"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "invalid_request"
        assert body["retryable"] is False

    @pytest.mark.asyncio
    async def test_unknown_action(self, client):
        resp = await _call(client, "summon_artist")
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "unknown_action"
        assert "generate_concept" in body["details"]["allowed"]

    @pytest.mark.asyncio
    async def test_unknown_parameter(self, client, api_session_id):
        resp = await _call(client, "get_session", session_id=api_session_id, verbose=True)
        assert resp.status_code == 422
        assert "verbose" in resp.json()["message"]

    @pytest.mark.asyncio
    async def test_non_object_body(self, client):
        resp = await client.post(URL, json=["create_session"])
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_session_not_found(self, client):
        resp = await _call(client, "get_session", session_id="nonexistent-id")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "not_found"
        assert body["details"] == {"session_id": "nonexistent-id"}


class TestConversationFlow:
    @pytest.mark.asyncio
    async def test_full_flow(self, client, api_session_id):
        """Brief -> references -> concepts -> sketch -> placement photo -> AR pack."""
        resp = await _make_ready(client, api_session_id)
        assert resp.status_code == 200
        body = resp.json()
        assert body["readiness"] == 1.0
        assert body["intent"]["preview_request"] is True
        assert body["vision_processed"] == 3

        resp = await _call(client, "can_offer_sketch", session_id=api_session_id)
        assert resp.json() == {"can_offer": True, "reason": "ready for preview", "missing": []}

        resp = await _call(client, "generate_concept", session_id=api_session_id)
        assert resp.status_code == 200
        body = resp.json()
        assert body["job_id"] == body["job"]["id"]
        variants = body["variants"]
        assert resp.json()["session"]["stage"] == "design_alignment"

        resp = await _call(client, "list_variants", session_id=api_session_id)
        assert len(resp.json()["variants"]) == len(variants)

        resp = await _call(
            client, "finalize_sketch", session_id=api_session_id, variant_id=variants[0]["id"]
        )
        assert resp.status_code == 200
        body = resp.json()
        sketch_id = body["sketch_id"]
        assert sketch_id == body["sketch"]["id"]
        assert body["outputs"]["lineart_url"]

        resp = await _call(client, "build_ar_pack", session_id=api_session_id, sketch_id=sketch_id)
        assert resp.status_code == 409
        assert resp.json()["error"] == "placement_photo_required"

        await _call(
            client,
            "process_message",
            session_id=api_session_id,
            message="my arm",
            attachments=[{"url": "https://cdn.example.com/arm.jpg", "type": "placement_photo"}],
        )
        resp = await _call(client, "build_ar_pack", session_id=api_session_id, sketch_id=sketch_id)
        assert resp.status_code == 200
        body = resp.json()
        assert body["pack_id"] == body["ar_pack"]["id"]
        assert body["assets"]["shader_params"]["blend_mode"] == "multiply"

        resp = await _call(
            client, "record_booking_event", session_id=api_session_id, event="scheduling_started"
        )
        assert resp.json()["session"]["stage"] == "scheduling"

    @pytest.mark.asyncio
    async def test_refused_generation(self, client, api_session_id):
        resp = await _call(client, "generate_concept", session_id=api_session_id)
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "offer_refused"
        assert body["details"]["reason"] == "conversation not ready for an offer"

    @pytest.mark.asyncio
    async def test_decline_and_actions(self, client, api_session_id):
        await _make_ready(client, api_session_id)
        resp = await _call(client, "decline_sketch_offer", session_id=api_session_id)
        body = resp.json()
        assert body["declined_count"] == 1
        assert body["cooldown_until"] is not None

        resp = await _call(client, "get_actions", session_id=api_session_id)
        generate = next(a for a in resp.json()["actions"] if a["action_key"] == "generate_concept")
        assert generate["enabled"] is False
        assert generate["reason"] == "cooldown active"

    @pytest.mark.asyncio
    async def test_reset_and_job_errors(self, client, api_session_id):
        resp = await _call(client, "reset_session", session_id=api_session_id)
        assert resp.json()["session"]["stage"] == "discovery"
        resp = await _call(client, "get_job_errors", session_id=api_session_id, limit=5)
        assert resp.json() == {"errors": []}

    @pytest.mark.asyncio
    async def test_retry_unknown_job(self, client):
        resp = await _call(client, "retry_job", job_id="nope")
        assert resp.status_code == 404


class TestWorkspaceActions:
    @pytest.mark.asyncio
    async def test_feature_flags(self, client):
        resp = await _call(
            client,
            "set_feature_flag",
            workspace_id="ws-1",
            key="DESIGN_COMPILER_MOCK_MODE",
            enabled=True,
        )
        assert resp.json()["success"] is True
        resp = await _call(client, "get_feature_flags", workspace_id="ws-1")
        assert [f["key"] for f in resp.json()["flags"]] == ["DESIGN_COMPILER_MOCK_MODE"]

    @pytest.mark.asyncio
    async def test_offer_policy(self, client):
        resp = await _call(client, "update_offer_policy", workspace_id="ws-1", preset="balanced")
        assert resp.json()["policy"]["preview_offer_cooldown_minutes"] == 15
        resp = await _call(client, "get_offer_policy", workspace_id="ws-1")
        assert resp.json()["policy"]["preset"] == "balanced"

    @pytest.mark.asyncio
    async def test_offer_policy_requires_input(self, client):
        resp = await _call(client, "update_offer_policy", workspace_id="ws-1")
        assert resp.status_code == 422


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        with patch("concierge.api.routes.health.r2.r2_configured", return_value=False):
            resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["database"] == "memory"
        assert body["r2"] == "not_configured"


class TestRequestId:
    @pytest.mark.asyncio
    async def test_generated_when_absent(self, client):
        resp = await client.get("/health")
        assert len(resp.headers["X-Request-ID"]) == 36

    @pytest.mark.asyncio
    async def test_echoed_when_supplied(self, client):
        resp = await client.post(
            URL,
            json={"action": "get_session", "session_id": "missing"},
            headers={"X-Request-ID": "req-123"},
        )
        assert resp.status_code == 404
        assert resp.headers["X-Request-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_unhandled_errors_are_500(self, client, compiler):
        with patch.object(compiler, "get_session", side_effect=RuntimeError("boom")):
            resp = await _call(client, "get_session", session_id="x")
        assert resp.status_code == 500
        assert resp.json()["error"] == "internal_error"
