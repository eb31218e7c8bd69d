"""Tests for the structlog setup: service context, action context, file output."""

import json
from unittest.mock import patch

import structlog

from concierge.config import settings
from concierge.logging import (
    SERVICE_NAME,
    action_context,
    add_service_context,
    configure_logging,
)


class TestActionContext:
    def test_binds_action_and_ids(self):
        payload = {
            "action": "finalize_sketch",
            "session_id": "s-1",
            "variant_id": "v-1",
            "job_id": "",
        }
        assert action_context(payload) == {"action": "finalize_sketch", "session_id": "s-1"}

    def test_ignores_non_string_ids(self):
        payload = {"action": "get_session", "session_id": 42}
        assert action_context(payload) == {"action": "get_session"}

    def test_missing_action(self):
        assert action_context({}) == {"action": ""}


class TestServiceContext:
    def test_adds_service_and_environment(self):
        with patch.object(settings, "environment", "staging"):
            event = add_service_context(None, "info", {"event": "job_done"})
        assert event["service"] == SERVICE_NAME
        assert event["environment"] == "staging"

    def test_keeps_explicit_values(self):
        event = add_service_context(None, "info", {"event": "x", "service": "worker"})
        assert event["service"] == "worker"


class TestLogFile:
    def test_json_lines_written_to_file(self, tmp_path):
        path = tmp_path / "logs" / "compiler.jsonl"
        try:
            with patch.object(settings, "log_file", str(path)):
                configure_logging()
            with structlog.contextvars.bound_contextvars(action="generate_concept"):
                structlog.get_logger().info("concepts_generated", count=4)
        finally:
            structlog.reset_defaults()

        [line] = path.read_text().splitlines()
        record = json.loads(line)
        assert record["event"] == "concepts_generated"
        assert record["action"] == "generate_concept"
        assert record["count"] == 4
        assert record["service"] == SERVICE_NAME
        assert record["level"] == "info"
