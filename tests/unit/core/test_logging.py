"""
Tests for structured logging.
Covers PII masking of candidate data, request logging and log formatting.
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from core.middleware.logging import (
    StructuredFormatter,
    StructuredLoggingMiddleware,
    is_sensitive_field,
    mask_sensitive_data,
    mask_text,
    setup_logging,
    should_log_request,
)


class TestSensitiveFieldDetection:
    """Test sensitive field name detection."""

    @pytest.mark.parametrize("field_name,expected", [
        ("password", True),
        ("access_token", True),
        ("api-key", True),
        ("client_secret", True),
        ("Authorization", True),
        ("candidate_email", True),
        ("e-mail", True),
        ("phone_number", True),
        ("salary_range", True),
        ("candidate_name", False),
        ("status", False),
        ("scheduled_time", False),
        ("feedback", False),
    ])
    def test_sensitive_field_patterns(self, field_name, expected):
        assert is_sensitive_field(field_name) is expected


class TestPIIMasking:
    """Test masking of contact details in free text."""

    @pytest.mark.parametrize("text,hidden", [
        ("Reach me at ada.lovelace@example.co.uk", "ada.lovelace@example.co.uk"),
        ("Call +44 20 7946 0958 after six", "+44 20 7946 0958"),
        ("Mobile 555-867-5309", "555-867-5309"),
    ])
    def test_mask_text(self, text, hidden):
        assert hidden not in mask_text(text)

    def test_plain_text_untouched(self):
        assert mask_text("Strong on distributed systems") == "Strong on distributed systems"


class TestDataStructureMasking:
    """Test recursive masking of notification payloads."""

    def test_notification_payload(self):
        payload = {
            "template": "interview_scheduled",
            "details": {
                "candidate_name": "Ada",
                "candidate_email": "ada@example.com",
                "salary_range": {"min": 1, "max": 2},
                "notes": ["ping ada@example.com"],
            },
        }

        masked = mask_sensitive_data(payload)

        assert masked["template"] == "interview_scheduled"
        assert masked["details"]["candidate_name"] == "Ada"
        assert masked["details"]["candidate_email"] == "[EMAIL]"
        assert masked["details"]["salary_range"] == "[REDACTED]"
        assert masked["details"]["notes"] == ["ping [EMAIL]"]

    def test_none_values_kept(self):
        assert mask_sensitive_data({"candidate_email": None}) == {"candidate_email": None}

    def test_secret_value_redacted(self):
        assert mask_sensitive_data({"api_key": "abc"}) == {"api_key": "[REDACTED]"}

    def test_max_depth_protection(self):
        nested = current = {}
        for _ in range(20):
            current["child"] = {}
            current = current["child"]
        assert "[MAX_DEPTH_EXCEEDED]" in json.dumps(mask_sensitive_data(nested))

    @pytest.mark.parametrize("value", [42, 1.5, True, None])
    def test_scalars_pass_through(self, value):
        assert mask_sensitive_data(value) == value


class TestShouldLogRequest:
    @pytest.mark.parametrize("path,expected", [
        ("/health", False),
        ("/health/", False),
        ("/api/v1/health", False),
        ("/ready", True),
        ("/api/v1/jobs/health", True),
        ("/api/v1/jobs", True),
        ("/api/v1/interviews/schedule", True),
    ])
    def test_paths(self, path, expected):
        assert should_log_request(path) is expected


class TestStructuredLoggingMiddleware:
    """Test structured logging middleware."""

    @pytest.fixture
    def app(self):
        app = FastAPI()
        app.add_middleware(
            StructuredLoggingMiddleware,
            log_request_body=True,
            max_body_size=256,
        )

        @app.get("/jobs")
        async def jobs():
            return {"items": []}

        @app.post("/applications")
        async def applications(request: Request):
            await request.json()
            return {"received": True}

        @app.get("/health")
        async def health():
            return {"status": "healthy"}

        return app

    @pytest.fixture
    def client(self, app):
        return TestClient(app)

    def logged_events(self, mock_logger):
        events = []
        for method in (mock_logger.info, mock_logger.warning, mock_logger.error):
            for call in method.call_args_list:
                try:
                    events.append(json.loads(call.args[0]))
                except (ValueError, IndexError):
                    continue
        return events

    def test_request_logged_twice(self, client):
        with patch("core.middleware.logging.logger") as mock_logger:
            response = client.get("/jobs")

        assert response.status_code == 200
        events = [e["event"] for e in self.logged_events(mock_logger)]
        assert events == ["request_started", "request_completed"]

    def test_request_id_round_trip(self, client):
        response = client.get("/jobs", headers={"x-request-id": "req-123"})
        assert response.headers["x-request-id"] == "req-123"

    def test_request_id_generated(self, client):
        assert client.get("/jobs").headers["x-request-id"]

    def test_health_not_logged(self, client):
        with patch("core.middleware.logging.logger") as mock_logger:
            response = client.get("/health")

        assert response.status_code == 200
        assert "x-request-id" in response.headers
        assert not mock_logger.info.called

    def test_body_masked(self, client):
        with patch("core.middleware.logging.logger") as mock_logger:
            client.post(
                "/applications",
                json={"job_id": "job-1", "candidate_email": "ada@example.com"},
            )

        started = self.logged_events(mock_logger)[0]
        assert started["body"]["job_id"] == "job-1"
        assert started["body"]["candidate_email"] == "[EMAIL]"

    def test_large_body_truncated(self, client):
        with patch("core.middleware.logging.logger") as mock_logger:
            client.post("/applications", json={"notes": "x" * 1000})

        started = self.logged_events(mock_logger)[0]
        assert started["body"]["_truncated"] is True

    def test_not_found_logged_as_warning(self, client):
        with patch("core.middleware.logging.logger") as mock_logger:
            client.get("/missing")

        completed = json.loads(mock_logger.warning.call_args.args[0])
        assert completed["status_code"] == 404


class TestStructuredFormatter:
    def test_json_line(self):
        record = logging.LogRecord(
            "workflow.engine", logging.INFO, __file__, 1, "job moved", None, None
        )
        record.request_id = "req-1"

        data = json.loads(StructuredFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "workflow.engine"
        assert data["message"] == "job moved"
        assert data["request_id"] == "req-1"

    def test_exception_info(self):
        try:
            raise RuntimeError("store offline")
        except RuntimeError:
            exc_info = sys.exc_info()
        record = logging.LogRecord(
            "workflow.service", logging.ERROR, __file__, 1, "failed", None, exc_info
        )

        data = json.loads(StructuredFormatter().format(record))

        assert data["exception"]["type"] == "RuntimeError"
        assert data["exception"]["message"] == "store offline"


class TestLoggingSetup:
    """Test logging setup and configuration."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(log_level="INFO", json_logs=True)
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert isinstance(root.handlers[-1].formatter, StructuredFormatter)

    def test_text_format(self):
        setup_logging(log_level="DEBUG", json_logs=False)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[-1].formatter, StructuredFormatter)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
