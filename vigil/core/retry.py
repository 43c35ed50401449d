"""Retry/backoff policy injected into every store wrapper."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from vigil.core.config import settings
from vigil.core.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff. Only transient store errors are retried."""

    max_attempts: int = 3
    base_delay: float = 0.3
    max_delay: float = 4.0
    factor: float = 2.0
    jitter: float = 0.0

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_attempts=settings.store_retry_attempts,
            base_delay=settings.store_retry_base_delay,
            max_delay=settings.store_retry_max_delay,
            jitter=settings.store_retry_jitter,
        )

    @classmethod
    def none(cls) -> RetryPolicy:
        return cls(max_attempts=1, base_delay=0.0, max_delay=0.0)

    def _options(self, label: str) -> dict[str, Any]:
        wait = wait_exponential(multiplier=self.base_delay, max=self.max_delay, exp_base=self.factor)
        if self.jitter:
            wait = wait + wait_random(0, self.jitter)

        def log_retry(state: RetryCallState) -> None:
            logger.info(
                "%s failed (attempt %s), retrying in %.2fs: %s",
                label,
                state.attempt_number,
                state.next_action.sleep,
                state.outcome.exception(),
            )

        return dict(
            retry=retry_if_exception_type(TransientStoreError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait,
            before_sleep=log_retry,
            reraise=True,
        )

    def call(self, fn: Callable[[], T], label: str = "store call") -> T:
        try:
            return Retrying(**self._options(label))(fn)
        except TransientStoreError as exc:
            logger.warning("%s failed after %s attempts: %s", label, self.max_attempts, exc)
            raise

    async def acall(self, fn: Callable[[], Awaitable[T]], label: str = "store call") -> T:
        try:
            return await AsyncRetrying(**self._options(label))(fn)
        except TransientStoreError as exc:
            logger.warning("%s failed after %s attempts: %s", label, self.max_attempts, exc)
            raise
