"""Tests for the delivery result type and error taxonomy."""

import httpx

from helpdesk.services.delivery import (
    DeliveryResult,
    ProviderConfigurationError,
    ProviderRequestError,
    run_delivery,
)


class TestProviderErrors:
    def test_configuration_errors_are_permanent(self):
        assert not ProviderConfigurationError("missing credentials").retryable

    def test_request_error_retryability_follows_status(self):
        assert ProviderRequestError("timeout").retryable
        assert ProviderRequestError("down", status=502).retryable
        assert ProviderRequestError("slow down", status=429).retryable
        assert not ProviderRequestError("bad request", status=400).retryable
        assert not ProviderRequestError("server", status=500, retryable=False).retryable


class TestDeliveryResult:
    def test_from_delivery_error(self):
        result = DeliveryResult.from_exception(ProviderRequestError("HTTP 404", status=404))

        assert not result.success
        assert result.status == 404
        assert result.error == "HTTP 404"
        assert not result.retryable

    def test_from_timeout(self):
        result = DeliveryResult.from_exception(httpx.ReadTimeout("read timed out"))

        assert result.retryable
        assert result.error.startswith("Timed out")

    def test_from_unexpected_exception(self):
        result = DeliveryResult.from_exception(KeyError())
        assert result.error == "KeyError"
        assert result.retryable


class TestRunDelivery:
    def test_wraps_return_value(self):
        result = run_delivery(lambda to: f"sent to {to}", "alice")

        assert result.success
        assert result.value == "sent to alice"

    def test_passes_through_results(self):
        failed = DeliveryResult.failure("HTTP 500", status=500)
        assert run_delivery(lambda: failed) is failed

    def test_never_raises(self):
        def explode():
            raise ProviderConfigurationError("no integration")

        result = run_delivery(explode)

        assert not result.success
        assert result.error == "no integration"
        assert not result.retryable
        assert result.duration_ms >= 0
