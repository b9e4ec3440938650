"""
Retry policy for failed delivery attempts.

Pure decision table: attempt number in, retry-or-give-up plus delay out.
Consulted only after a failed attempt.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryDecision:
    should_retry: bool
    delay: float  # seconds


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff: base_delay * multiplier ** (attempt_number - 1).

    With the defaults (1s, x2, 3 attempts) a failing note is retried after
    1s and 2s, then given up.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            multiplier=settings.RETRY_MULTIPLIER,
        )

    def next(self, attempt_number: int) -> RetryDecision:
        """
        Decide what follows failed attempt `attempt_number` (1-based, per cycle).

        Returns should_retry=False once the budget is spent.
        """
        if attempt_number < 1:
            raise ValueError("attempt_number is 1-based")
        if attempt_number >= self.max_attempts:
            return RetryDecision(should_retry=False, delay=0.0)
        delay = self.base_delay * (self.multiplier ** (attempt_number - 1))
        return RetryDecision(should_retry=True, delay=delay)
