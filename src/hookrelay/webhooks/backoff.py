"""Fixed-schedule retry policy."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from hookrelay.config import DEFAULT_RETRY_SCHEDULE
from hookrelay.models import DeliveryOutcome, OutcomeKind


@dataclass(frozen=True)
class RetryDecision:
    """Verdict after a failed attempt.

    ``delay`` is None when no further attempt should be made.
    """

    delay: float | None
    fatal: bool = False

    @property
    def exhausted(self) -> bool:
        return self.delay is None


@dataclass(frozen=True)
class BackoffPolicy:
    """Decides whether and when a failed job is attempted again.

    With the default schedule and five attempts, retries wait 1s, 5s,
    30s and 5m. The schedule is indexed by completed attempts; when
    attempts outnumber entries the last delay repeats.
    """

    schedule: Sequence[float] = field(default_factory=lambda: tuple(DEFAULT_RETRY_SCHEDULE))
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if not self.schedule:
            raise ValueError("schedule must not be empty")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        object.__setattr__(self, "schedule", tuple(float(d) for d in self.schedule))

    def next_delay(self, attempt_count: int) -> float | None:
        """Delay before the next attempt, or None when exhausted.

        Args:
            attempt_count: Attempts already made (1 after the first).
        """
        if attempt_count >= self.max_attempts:
            return None
        index = min(max(attempt_count, 1), len(self.schedule)) - 1
        return self.schedule[index]

    def decide(self, outcome: DeliveryOutcome, attempt_count: int) -> RetryDecision:
        """Turn a failed attempt into a retry decision.

        Fatal failures end the job immediately regardless of the count.
        """
        if outcome.kind is OutcomeKind.SUCCESS:
            raise ValueError("decide() called for a successful attempt")
        if outcome.kind is OutcomeKind.FATAL_FAILURE:
            return RetryDecision(delay=None, fatal=True)
        return RetryDecision(delay=self.next_delay(attempt_count))

    def total_delay(self) -> float:
        """Worst-case time spent sleeping for one job."""
        return sum(self.next_delay(n) or 0.0 for n in range(1, self.max_attempts))
