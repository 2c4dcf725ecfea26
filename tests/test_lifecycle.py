"""Tests for graceful shutdown and structured logging."""

import json
import logging
import signal
from unittest.mock import MagicMock, patch

import pytest

from citizen import lifecycle
from citizen.logging_config import JSONFormatter


@pytest.fixture(autouse=True)
def reset_lifecycle():
    lifecycle._active_requests = 0
    lifecycle._shutdown_in_progress = False
    yield
    lifecycle._active_requests = 0
    lifecycle._shutdown_in_progress = False


class TestActiveRequests:
    def test_counter(self):
        lifecycle.increment_active_requests()
        lifecycle.increment_active_requests()
        lifecycle.decrement_active_requests()
        assert lifecycle.get_active_requests() == 1

    def test_never_negative(self):
        lifecycle.decrement_active_requests()
        assert lifecycle.get_active_requests() == 0

    def test_wait_returns_immediately_when_idle(self):
        assert lifecycle.wait_for_active_requests(timeout=5) is True

    def test_wait_times_out(self):
        lifecycle.increment_active_requests()
        with patch("citizen.lifecycle.time.sleep"):
            assert lifecycle.wait_for_active_requests(timeout=0) is False


class TestShutdown:
    def test_shutdown_services(self):
        services = MagicMock()
        lifecycle.shutdown_services(services)
        services.cleanup.stop.assert_called_once()
        services.store.close.assert_called_once()
        services.db.close.assert_called_once()

    def test_shutdown_without_scheduler(self):
        services = MagicMock(cleanup=None)
        lifecycle.shutdown_services(services)
        services.store.close.assert_called_once()

    def test_handler_drains_and_exits(self):
        services = MagicMock()
        services.settings.shutdown_timeout = 1
        app = MagicMock(extensions={"sso": services})

        handler = lifecycle.make_shutdown_handler(app)
        with pytest.raises(SystemExit) as exc:
            handler(signal.SIGTERM, None)

        assert exc.value.code == 0
        services.store.close.assert_called_once()

    def test_second_signal_forces_exit(self):
        lifecycle._shutdown_in_progress = True
        handler = lifecycle.make_shutdown_handler(MagicMock())
        with pytest.raises(SystemExit) as exc:
            handler(signal.SIGINT, None)
        assert exc.value.code == 1

    def test_register_handlers(self):
        with patch("citizen.lifecycle.signal.signal") as mock_signal:
            lifecycle.register_shutdown_handlers(MagicMock())
        registered = {call.args[0] for call in mock_signal.call_args_list}
        assert registered == {signal.SIGTERM, signal.SIGINT}


class TestJSONFormatter:
    def test_structured_fields(self):
        record = logging.LogRecord("citizen.app", logging.INFO, __file__, 10, "GET /healthz", None, None)
        record.request_id = "abc123"
        record.status_code = 200

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "citizen.app"
        assert entry["message"] == "GET /healthz"
        assert entry["request_id"] == "abc123"
        assert entry["status_code"] == 200
        assert "user" not in entry
