"""Tests for structured logging functionality.

Tests logging configuration, context binding and identifier masking.
"""

import os

import pytest
import structlog

from billing_sync.logging_config import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    is_debug_mode,
    mask_billing_identifiers,
    mask_identifier,
    webhook_event_context,
)


@pytest.fixture(scope="module")
def setup_logging():
    """Configure logging for all tests in this module."""
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_format = os.getenv("LOG_FORMAT", "console")
    json_mode = log_format.lower() == "json"

    configure_logging(log_level=log_level, json_format=json_mode)
    yield


@pytest.fixture(autouse=True)
def cleanup_context():
    """Ensure context is cleared before and after each test."""
    clear_context()
    yield
    clear_context()


class TestMaskIdentifier:
    """Test shortening of provider ids and emails."""

    def test_long_value_is_masked(self):
        assert mask_identifier("cus_1234567890") == "cus_1234***"

    def test_short_value_is_kept(self):
        assert mask_identifier("cus_1") == "cus_1"

    def test_custom_keep(self):
        assert mask_identifier("trader@example.com", keep=3) == "tra***"

    @pytest.mark.parametrize("value", [None, 42, ""])
    def test_non_strings_and_empty_pass_through(self, value):
        assert mask_identifier(value) == value


class TestDebugMode:
    def test_debug_mode_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert is_debug_mode() is True

    def test_default_is_not_debug(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        assert is_debug_mode() is False


class TestContextualLogging:
    """Test logging with bound context."""

    def test_webhook_event_context_is_scoped(self, setup_logging):
        logger = get_logger("test.context")
        bind_context(request_id="req-12345")

        with webhook_event_context("evt_1", "customer.subscription.updated", customer_id="cus_1"):
            assert structlog.contextvars.get_contextvars() == {
                "request_id": "req-12345",
                "event_id": "evt_1",
                "event_type": "customer.subscription.updated",
                "customer_id": "cus_1",
            }
            logger.info("webhook_received")

        assert structlog.contextvars.get_contextvars() == {"request_id": "req-12345"}

    def test_webhook_event_context_without_customer(self, setup_logging):
        with webhook_event_context("evt_1", "invoice.paid"):
            assert "customer_id" not in structlog.contextvars.get_contextvars()

    def test_webhook_event_context_unbinds_on_error(self, setup_logging):
        with pytest.raises(RuntimeError):
            with webhook_event_context("evt_1", "customer.subscription.deleted"):
                raise RuntimeError("handler failed")
        assert structlog.contextvars.get_contextvars() == {}

    def test_clear_context(self, setup_logging):
        logger = get_logger("test.context")

        bind_context(request_id="req-12345")
        logger.info("with_context")

        clear_context()
        logger.info("without_context")


class TestMaskingProcessor:
    def test_customer_and_email_fields_are_masked(self):
        event = mask_billing_identifiers(
            None, "info", {"customer_id": "cus_1234567890", "email": "trader@example.com", "event": "x"}
        )
        assert event == {"customer_id": "cus_1234***", "email": "tra***", "event": "x"}

    def test_already_masked_values_are_kept(self):
        event = {"customer_id": mask_identifier("cus_1234567890"), "email": "tra***"}
        assert mask_billing_identifiers(None, "info", dict(event)) == event

    def test_other_fields_untouched(self):
        event = {"subscription_id": "sub_1234567890", "account_id": "acct_0000000000000001"}
        assert mask_billing_identifiers(None, "info", dict(event)) == event


class TestBusinessEvents:
    """Test logging reconciliation events."""

    def test_reconcile_lifecycle(self, setup_logging):
        logger = get_logger("reconciler")

        bind_context(customer_id=mask_identifier("cus_lifecycle_test"))

        logger.info("subscription_reconciled", subscription_id="sub_1", remote_status="active", accounts=2)
        logger.warning("provider_call_failed", operation="list_subscriptions", error_type="APIConnectionError")
        logger.info("grace_period_expired", account_id="acct_0000000000000001")

    def test_exception_logging_with_traceback(self, setup_logging):
        logger = get_logger("test.exceptions")

        try:
            {"status": "active"}["period_end"]
        except KeyError as e:
            logger.error("subscription_write_failed", error=str(e), exc_info=True)


@pytest.mark.parametrize("level", ["debug", "info", "warning", "error"])
def test_log_levels(setup_logging, level):
    logger = get_logger("test.parametrized")
    getattr(logger, level)(f"{level}_message", level_name=level)


@pytest.mark.parametrize("json_format", [True, False])
def test_configure_logging_formats(json_format):
    configure_logging(log_level="INFO", json_format=json_format)
    get_logger("test.formats").info("configured", json_format=json_format)
