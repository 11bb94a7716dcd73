"""Bounded retry with per-attempt timeout for external collaborator calls."""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from mindguard.shared.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    service: str,
    timeout_seconds: float,
    max_retries: int = 2,
    backoff_seconds: float = 0.2,
) -> T:
    """Run an async collaborator call with a timeout and bounded retries.

    Only timeouts and ExternalServiceError(retryable=True) are retried.
    Anything else surfaces immediately as ExternalServiceError so callers
    have a single failure type to fall back on.

    Args:
        operation: Zero-argument factory returning a fresh awaitable per attempt
        service: Collaborator name for logs and errors
        timeout_seconds: Upper bound for a single attempt
        max_retries: Retries after the first attempt
        backoff_seconds: Linear backoff unit between attempts

    Returns:
        The operation result

    Raises:
        ExternalServiceError: When all attempts fail or the failure is final
    """
    attempts = max(0, max_retries) + 1
    last_error: ExternalServiceError = ExternalServiceError(service, "no attempt made")

    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            last_error = ExternalServiceError(
                service,
                f"timed out after {timeout_seconds}s",
                code="TIMEOUT",
                retryable=True,
            )
        except ExternalServiceError as e:
            last_error = e
        except ValidationError as e:
            raise ExternalServiceError(
                service, f"invalid payload: {e}", code="INVALID_PAYLOAD"
            ) from e
        except Exception as e:
            raise ExternalServiceError(service, str(e), code="UNEXPECTED_ERROR") from e

        logger.warning(
            "EXTERNAL_CALL_FAILED",
            extra={
                "service": service,
                "attempt": attempt,
                "max_attempts": attempts,
                "code": last_error.code,
                "retryable": last_error.retryable,
            }
        )
        if not last_error.retryable or attempt == attempts:
            break
        await asyncio.sleep(backoff_seconds * attempt)

    raise last_error
