"""Tests for structured logging setup and the events the services emit."""

import logging
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import structlog
from structlog.testing import capture_logs

from fieldservice_billing.config import Environment, Settings
from fieldservice_billing.container import Container
from fieldservice_billing.domain.value_objects import DocumentType
from fieldservice_billing.logging_config import (
    LogContext,
    configure_logging,
    get_json_processors,
)
from fieldservice_billing.services.drafts import DocumentDraft


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    structlog.reset_defaults()


def _settings(**overrides) -> Settings:
    return Settings(
        _env_file=None,
        environment=Environment.TESTING,
        sqlite_path=":memory:",
        **overrides,
    )


class TestLogContext:
    def test_binds_and_unbinds(self) -> None:
        structlog.contextvars.clear_contextvars()

        with LogContext(invoice_id="inv-1"):
            assert structlog.contextvars.get_contextvars() == {"invoice_id": "inv-1"}

        assert structlog.contextvars.get_contextvars() == {}

    def test_nested_context_restores_outer_value(self) -> None:
        structlog.contextvars.clear_contextvars()

        with LogContext(invoice_id="inv-1"):
            with LogContext(invoice_id="inv-2", payment_id="pay-1"):
                assert structlog.contextvars.get_contextvars()["invoice_id"] == "inv-2"
            assert structlog.contextvars.get_contextvars() == {"invoice_id": "inv-1"}

    def test_json_processors_render_last(self) -> None:
        processors = get_json_processors(_settings())

        assert isinstance(processors[-1], structlog.processors.JSONRenderer)


@pytest.mark.usefixtures("restore_logging")
class TestConfigureLogging:
    def test_json_format(self) -> None:
        configure_logging(_settings(log_format="json"))

        config = structlog.get_config()
        assert isinstance(config["processors"][-1], structlog.processors.JSONRenderer)
        assert config["cache_logger_on_first_use"] is False

    def test_console_format(self) -> None:
        configure_logging(_settings(log_format="console", log_level="WARNING"))

        assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)
        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_json_events_carry_app_context(self) -> None:
        settings = _settings(log_format="json")
        add_context = get_json_processors(settings)[1]

        event = add_context(None, "info", {"event": "payment_recorded"})

        assert event["app"] == settings.app_name
        assert event["environment"] == "testing"

    def test_file_handler_not_duplicated(self, tmp_path) -> None:
        log_file = tmp_path / "logs" / "billing.log"

        configure_logging(_settings(log_file=log_file))
        configure_logging(_settings(log_file=log_file))

        file_handlers = [
            h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(file_handlers) == 1
        assert log_file.parent.is_dir()

    def test_container_configures_logging(self) -> None:
        with Container(settings=_settings(log_format="json")):
            processors = structlog.get_config()["processors"]

        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_capture_still_works_after_configure(self, ledger, saved_invoice) -> None:
        configure_logging(_settings(log_format="json"))
        invoice = saved_invoice()

        with capture_logs() as logs:
            ledger.record_payment(invoice.id, {"amount": Decimal("10"), "method": "cash"})

        assert any(log["event"] == "payment_recorded" for log in logs)


class TestServiceEvents:
    def test_number_fallback_is_logged(self, document_repo, settings) -> None:
        failing = MagicMock()
        failing.next_number.side_effect = RuntimeError("sequence unavailable")
        draft = DocumentDraft(DocumentType.ESTIMATE, document_repo, failing, settings)

        with capture_logs() as logs:
            draft.generate_number()

        fallback = [log for log in logs if log["event"] == "document_number_fallback"]
        assert len(fallback) == 1
        assert fallback[0]["log_level"] == "warning"

    def test_payment_recorded_event(self, ledger, saved_invoice) -> None:
        invoice = saved_invoice()

        with capture_logs() as logs:
            ledger.record_payment(invoice.id, {"amount": Decimal("10"), "method": "cash"})

        recorded = next(log for log in logs if log["event"] == "payment_recorded")
        assert recorded["amount"] == "10.00"
        assert recorded["status"] == "partial"
