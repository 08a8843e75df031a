"""Retry policy for store operations.

Wraps tenacity's async retrying with exponential backoff and jitter. The
unit of retry is always the smallest viable operation: one discovery query
or one batch partition, never a whole traversal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from exposure_chain.config import Settings
from exposure_chain.infra.logging import get_logger
from exposure_chain.infra.store import TransientStoreError

T = TypeVar("T")

logger = get_logger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exceeded."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientStoreError)


@dataclass(frozen=True)
class RetryConfig:
    """max_attempts is the total number of tries, not the number of retries."""

    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 5.0
    jitter: float = 0.2

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, config: Settings) -> RetryConfig:
        return cls(
            max_attempts=max(1, config.retry_max_attempts),
            base_delay=max(0.0, config.retry_base_delay),
            max_delay=max(0.0, config.retry_max_delay),
        )


class RetryManager:
    def __init__(self, config: RetryConfig | None = None) -> None:
        self._config = config or RetryConfig()

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str,
        is_retryable: Callable[[BaseException], bool] = is_transient,
    ) -> T:
        """Run ``operation`` until it succeeds or attempts run out.

        Raises:
            MaxRetriesExceeded: retryable failures exhausted all attempts.
            Exception: any non-retryable error, unchanged.
        """
        attempt = 0
        last_error: BaseException | None = None

        try:
            async for attempt_state in AsyncRetrying(
                stop=stop_after_attempt(self._config.max_attempts),
                wait=wait_exponential(multiplier=self._config.base_delay, max=self._config.max_delay)
                + wait_random(0, self._config.jitter),
                retry=retry_if_exception(is_retryable),
                reraise=False,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return await operation()
                    except Exception as exc:
                        last_error = exc
                        if is_retryable(exc) and attempt < self._config.max_attempts:
                            logger.warning("store_retry", operation=label, attempt=attempt, error=str(exc))
                        raise
        except RetryError as exc:
            final_error = last_error or exc.last_attempt.exception()
            assert final_error is not None
            raise MaxRetriesExceeded(attempt, final_error) from exc

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
