"""
Capped exponential backoff policies for upstream requests.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Delay before retry ``attempt`` (0-based) is
    ``initial_seconds * multiplier ** attempt``, capped at ``max_seconds``.
    """

    initial_seconds: float = 0.5
    multiplier: float = 2.0
    max_seconds: float = 30.0
    max_retries: int = 3

    def delay_for(self, attempt: int) -> float:
        delay = self.initial_seconds * (self.multiplier ** max(0, attempt))
        return min(self.max_seconds, delay)

    def allows_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries


@dataclass(frozen=True)
class FailurePolicies:
    """
    Retry policy per failure kind.

    Rate limiting backs off longer than server errors; timeouts and
    connection errors share the network policy. 404 and other 4xx responses
    are never retried.
    """

    rate_limited: BackoffPolicy = BackoffPolicy(initial_seconds=2.0, max_seconds=60.0)
    server_error: BackoffPolicy = BackoffPolicy()
    network: BackoffPolicy = BackoffPolicy()
