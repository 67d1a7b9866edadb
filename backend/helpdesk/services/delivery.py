"""Delivery outcome type and error taxonomy shared by every send path.

Every email or webhook send returns a ``DeliveryResult`` at the job
boundary instead of raising. ``run_delivery`` is the single adapter that
turns exceptions into failed results, so job runners only have to map a
result onto their delivery log.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx
import structlog

logger = structlog.get_logger()


class DeliveryError(Exception):
    """A send failed. ``retryable`` says whether another attempt could succeed."""

    retryable = True

    def __init__(self, message: str, retryable: bool | None = None):
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)


class ProviderConfigurationError(DeliveryError):
    """Missing or inactive integration, credentials or tokens. Retrying will not help."""

    retryable = False


class ProviderRequestError(DeliveryError):
    """The provider answered with an error or could not be reached."""

    def __init__(self, message: str, status: int | None = None, retryable: bool | None = None):
        self.status = status
        if retryable is None:
            retryable = status is None or status >= 500 or status == 429
        super().__init__(message, retryable=retryable)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    status: int | None = None
    body: str | None = None
    duration_ms: int = 0
    error: str | None = None
    retryable: bool = False
    value: Any = None  # e.g. provider message id

    @classmethod
    def ok(cls, status: int | None = None, body: str | None = None, duration_ms: int = 0, value: Any = None):
        return cls(success=True, status=status, body=body, duration_ms=duration_ms, value=value)

    @classmethod
    def failure(
        cls,
        error: str,
        duration_ms: int = 0,
        status: int | None = None,
        body: str | None = None,
        retryable: bool = True,
    ):
        return cls(success=False, status=status, body=body, duration_ms=duration_ms, error=error, retryable=retryable)

    @classmethod
    def from_exception(cls, exc: Exception, duration_ms: int = 0):
        if isinstance(exc, DeliveryError):
            return cls.failure(
                exc.message, duration_ms=duration_ms,
                status=getattr(exc, "status", None), retryable=exc.retryable,
            )
        if isinstance(exc, httpx.TimeoutException):
            return cls.failure(f"Timed out: {exc}", duration_ms=duration_ms, retryable=True)
        return cls.failure(str(exc) or exc.__class__.__name__, duration_ms=duration_ms, retryable=True)


def run_delivery(fn: Callable[..., Any], *args, **kwargs) -> DeliveryResult:
    """Run one send attempt and map its outcome to a DeliveryResult. Never raises.

    ``fn`` may return a DeliveryResult itself, or any other value which is
    wrapped as the successful result's ``value``.
    """
    start = time.monotonic()
    try:
        outcome = fn(*args, **kwargs)
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.warning("delivery_attempt_failed", error=str(e), error_type=e.__class__.__name__)
        return DeliveryResult.from_exception(e, duration_ms=duration_ms)

    if isinstance(outcome, DeliveryResult):
        return outcome
    return DeliveryResult.ok(duration_ms=int((time.monotonic() - start) * 1000), value=outcome)
