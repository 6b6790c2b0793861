import logging
import random
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from tenacity import (
    Retrying,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_random,
)

from exceptions import is_retryable_error, log_recovery_attempt


logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    # Backoff settings shared by the suite's retry policies
    max_attempts: int = 2
    base_wait_seconds: float = 2.0
    max_wait_seconds: float = 30.0
    jitter_multiplier: float = 0.1
    exponential_base: int = 2


# Lock polling starts fast and backs off to this ceiling
LOCK_POLL_INITIAL = 0.05
LOCK_POLL_MAX = 0.5


def lock_acquisition_retrying(timeout: float, poll_initial: float = LOCK_POLL_INITIAL,
                              poll_max: float = LOCK_POLL_MAX) -> Retrying:
    """
    Build the polling policy used while another worker holds a pool lock.

    Attempts raise ``FileExistsError`` while the lock file is present; the last
    one is re-raised once ``timeout`` seconds have elapsed.
    """
    def before_sleep(retry_state):
        logger.debug(
            f"Credential pool lock busy, attempt {retry_state.attempt_number} "
            f"after {retry_state.seconds_since_start:.2f}s"
        )

    return Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_exponential(multiplier=poll_initial, max=poll_max) + wait_random(0, poll_initial),
        retry=retry_if_exception_type(FileExistsError),
        before_sleep=before_sleep,
        reraise=True,
    )


def create_retry_decorator(config: RetryConfig, operation: str,
                           correlation_id: Optional[str] = None) -> Callable:
    """
    Retry decorator for agent runs and other flaky remote operations.

    Only errors classified as retryable or transient are retried; each of
    those failed attempts is recorded as a recovery attempt.
    """
    def jitter_wait(retry_state):
        base_wait = config.base_wait_seconds * (config.exponential_base ** (retry_state.attempt_number - 1))
        jitter = base_wait * config.jitter_multiplier * random.random()
        return min(base_wait + jitter, config.max_wait_seconds)

    def before_sleep(retry_state):
        correlation_msg = f" [correlation_id: {correlation_id}]" if correlation_id else ""
        logger.warning(
            f"Retrying {operation}{correlation_msg} - "
            f"attempt {retry_state.attempt_number}/{config.max_attempts} "
            f"after {retry_state.seconds_since_start:.2f}s"
        )

    def after_attempt(retry_state):
        exception = retry_state.outcome.exception()
        log_recovery_attempt(
            correlation_id=correlation_id or "unknown",
            strategy="retry_with_backoff",
            attempt_number=retry_state.attempt_number,
            success=False,
            operation=operation,
            exception=str(exception)
        )

    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=jitter_wait,
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep,
        after=after_attempt,
        reraise=True
    )


def get_correlation_id() -> str:
    return str(uuid.uuid4())[:8]
