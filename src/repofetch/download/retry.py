from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from repofetch.errors import RepoFetchError, RetriesExhaustedError, TerminalError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class RetryController:
    """Run one download attempt up to max_attempts times with a fixed delay.

    Every ``RepoFetchError`` is retried except ``TerminalError``, which is
    re-raised after the first failing call. Once attempts run out the last
    error is wrapped in ``RetriesExhaustedError`` carrying the provider name
    and the attempt count.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        delay_seconds: float = 1.0,
        provider_name: str = "provider",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self.provider_name = provider_name
        self._sleep = sleep

    def with_retries(self, attempt: Callable[[], _T], *, label: str = "") -> _T:
        last_error: RepoFetchError | None = None
        for attempt_number in range(1, self.max_attempts + 1):
            last_error = None
            try:
                result = attempt()
            except TerminalError:
                logger.warning(
                    "terminal error provider=%s target=%s attempt=%d/%d",
                    self.provider_name,
                    label,
                    attempt_number,
                    self.max_attempts,
                )
                raise
            except RepoFetchError as exc:
                last_error = exc
                logger.warning(
                    "attempt failed provider=%s target=%s attempt=%d/%d error=%s",
                    self.provider_name,
                    label,
                    attempt_number,
                    self.max_attempts,
                    exc,
                )
                if attempt_number < self.max_attempts and self.delay_seconds > 0:
                    self._sleep(self.delay_seconds)
                continue

            if attempt_number > 1:
                logger.info(
                    "attempt succeeded provider=%s target=%s attempt=%d/%d",
                    self.provider_name,
                    label,
                    attempt_number,
                    self.max_attempts,
                )
            return result

        assert last_error is not None
        logger.error(
            "retries exhausted provider=%s target=%s attempts=%d",
            self.provider_name,
            label,
            self.max_attempts,
        )
        raise RetriesExhaustedError(
            self.provider_name, self.max_attempts, last_error
        ) from last_error
