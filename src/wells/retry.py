# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Retry policy for reports whose upload asked to be tried again.

The delay before the next attempt is the server's ``Retry-After`` hint when
present, otherwise a fixed default, and never less than a minimum floor so
a misbehaving collector cannot drive a hot retry loop. A report is retried
at most ``max_attempts`` times before it expires.

Attributes:
    DEFAULT_MAX_ATTEMPTS: Retries allowed before a report expires.
    DEFAULT_RETRY_DELAY: Delay in seconds used when the server gives no hint.
    MINIMUM_RETRY_DELAY: Lower bound in seconds for any retry delay.
"""

from __future__ import annotations

from dataclasses import dataclass

from .outcome import Outcome, OutcomeKind

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_DELAY = 5 * 60.0
MINIMUM_RETRY_DELAY = 60.0


@dataclass(frozen=True)
class RetryStrategy:
    """Configurable retry behaviour.

    Attributes:
        max_attempts: Number of retries allowed for one report.
        default_delay: Seconds to wait when no ``Retry-After`` is given.
        minimum_delay: Floor applied to every computed delay.
        retry_transport_errors: Treat pre-response transport errors like a
            retryable status instead of a terminal failure.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    default_delay: float = DEFAULT_RETRY_DELAY
    minimum_delay: float = MINIMUM_RETRY_DELAY
    retry_transport_errors: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.minimum_delay < 0 or self.default_delay < 0:
            raise ValueError("retry delays must be >= 0")

    def calculate_delay(self, retry_after: float | None = None) -> float:
        """Return the delay in seconds before the next attempt."""
        delay = self.default_delay if retry_after is None else float(retry_after)
        return max(self.minimum_delay, delay)

    def should_retry(self, attempt_count: int) -> bool:
        """True while ``attempt_count`` retries have not used up the budget."""
        return attempt_count < self.max_attempts

    def wants_retry(self, outcome: Outcome) -> bool:
        """True when ``outcome`` should lead to another attempt."""
        if outcome.kind is OutcomeKind.RETRY:
            return True
        return outcome.kind is OutcomeKind.FAILED and self.retry_transport_errors
