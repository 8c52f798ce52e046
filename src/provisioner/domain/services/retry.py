"""Bounded retry of provider calls on transient errors."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    RetryCallState,
    stop_after_attempt,
    wait_exponential,
)

from provisioner.config import ExecutorSettings
from provisioner.domain.ports.services import TransientProviderError
from provisioner.infrastructure.observability.metrics import PROVIDER_RETRIES


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ProviderCallPolicy:
    """Runs a provider call with a timeout and exponential-backoff retries.

    A call that exceeds the timeout is treated as a transient error.
    Once the attempt budget is spent the last TransientProviderError is
    re-raised for the caller to escalate.
    """

    def __init__(self, settings: ExecutorSettings | None = None) -> None:
        self._settings = settings or ExecutorSettings()

    @property
    def max_attempts(self) -> int:
        return self._settings.max_attempts

    async def run(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        on_attempt: Callable[[int], None] | None = None,
    ) -> T:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientProviderError),
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(
                multiplier=self._settings.backoff_base_seconds,
                max=self._settings.backoff_max_seconds,
            ),
            before_sleep=self._before_sleep(operation),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if on_attempt is not None:
                    on_attempt(attempt.retry_state.attempt_number)
                return await self._with_timeout(operation, call)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _with_timeout(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self._settings.call_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TransientProviderError(
                f"{operation} timed out after {self._settings.call_timeout_seconds}s"
            ) from e

    @staticmethod
    def _before_sleep(operation: str) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            PROVIDER_RETRIES.labels(operation=operation).inc()
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "provider_call_retrying",
                operation=operation,
                attempt=retry_state.attempt_number,
                wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
                error=str(error),
            )

        return log_retry
