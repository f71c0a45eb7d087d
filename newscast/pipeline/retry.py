"""
Retry policy shared by every costed unit of work.

Each call is retried with exponential backoff until the attempt count or the
overall time cap runs out. Call-quota errors and configuration errors are
never retried.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from newscast.errors import ConfigurationError, is_subrequest_limit_error


logger = logging.getLogger("pipeline")

T = TypeVar("T")

DEFAULT_RETRIES = 5
DEFAULT_DELAY_SECONDS = 10.0
DEFAULT_TIMEOUT_SECONDS = 180.0

# Per-step retry counts
SUMMARIZE_RETRIES = 2
COMPOSE_RETRIES = 3
SPAWN_RETRIES = 2
GEMINI_TTS_RETRIES = 2
GEMINI_TTS_TIMEOUT_SECONDS = 600.0
CONVERT_AUDIO_RETRIES = 3
TTS_LINE_RETRIES = 0


def is_retryable_error(error: BaseException) -> bool:
    if is_subrequest_limit_error(error):
        return False
    if isinstance(error, ConfigurationError):
        return False
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retries with exponential backoff.

    Attributes:
        retries: Retries after the first attempt.
        delay: Initial backoff in seconds, doubled after every failure.
        timeout: Upper bound in seconds on the time spent retrying one call.
        sleep: Sleep function used between attempts.
    """

    retries: int = DEFAULT_RETRIES
    delay: float = DEFAULT_DELAY_SECONDS
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    @classmethod
    def immediate(cls, retries: int = DEFAULT_RETRIES) -> "RetryPolicy":
        """Policy that retries without waiting."""
        return cls(retries=retries, delay=0.0, sleep=lambda seconds: None)

    def with_limits(self, retries: Optional[int] = None, timeout: Optional[float] = None) -> "RetryPolicy":
        return replace(
            self,
            retries=self.retries if retries is None else retries,
            timeout=self.timeout if timeout is None else timeout,
        )

    def run(
        self,
        label: str,
        fn: Callable[..., T],
        *args: Any,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> T:
        """
        Call ``fn(*args, **kwargs)`` under this policy.

        Args:
            label: Step name used in log lines
            fn: Callable to run
            retries: Override of the retry count for this step
            timeout: Override of the retry time cap for this step

        Returns:
            Whatever ``fn`` returns

        Raises:
            The last exception raised by ``fn`` once retries are exhausted, or the
            first non-retryable one.
        """
        policy = self.with_limits(retries, timeout)
        retrying = Retrying(
            stop=stop_after_attempt(max(0, policy.retries) + 1) | stop_after_delay(policy.timeout),
            wait=wait_exponential(multiplier=policy.delay, min=policy.delay),
            retry=retry_if_exception(is_retryable_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=policy.sleep,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"{label}: attempt {attempt.retry_state.attempt_number}")
                return fn(*args, **kwargs)
        raise RuntimeError(f"{label}: retry loop exited without a result")
