"""
Retry policy configuration for action execution.

Design Pattern: Strategy Pattern
RetryPolicy encapsulates retry behavior, allowing different retry strategies
without modifying the action execution code.

Provisioning steps are bounded and short-lived, so the backoff is a fixed
delay between attempts rather than an exponential curve:
- Safe default: a single attempt, no retries
- Simple retry: RetryPolicy.with_max_attempts(3) with the standard delay
- Full control: RetryPolicy(max_attempts=..., backoff_delay=...)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, cast

from pyconverge.errors import InvalidOptionsError

# Option spellings accepted by from_options(); both map onto field names.
OPTION_ALIASES: dict[str, str] = {
    "max_attempts": "max_attempts",
    "maxAttempts": "max_attempts",
    "backoff_delay": "backoff_delay",
    "backoffDelay": "backoff_delay",
}


def to_seconds(value: Any, option: str) -> float:
    """
    Normalise a duration option to seconds.

    Accepts an int/float number of seconds or a timedelta.

    Raises:
        InvalidOptionsError: If the value is not a duration or is negative
    """
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, int | float) and not isinstance(value, bool):
        seconds = float(value)
    else:
        raise InvalidOptionsError(
            f"Option '{option}' must be a number of seconds or a timedelta, got {value!r}"
        )
    if seconds < 0:
        raise InvalidOptionsError(f"Option '{option}' must be >= 0, got {value!r}")
    return seconds


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for action retry behavior.

    Controls how many times an action body is attempted and how long the
    executor waits between attempts.

    Examples:
        # Simple: just specify max attempts (uses the standard delay)
        policy = RetryPolicy.with_max_attempts(3)

        # Named policy: predefined sensible defaults
        policy = RetryPolicy.STANDARD

        # Custom policy: full control
        policy = RetryPolicy(max_attempts=5, backoff_delay=2.5)

        # From a configuration mapping
        policy = RetryPolicy.from_options({"maxAttempts": 4, "backoffDelay": 1})
    """

    max_attempts: int = 1
    """Maximum number of attempts (including the first try).

    For example, max_attempts = 3 means:
    - Attempt 1: immediate (first try)
    - Attempt 2: after backoff_delay
    - Attempt 3: after backoff_delay

    Default: 1 (no retries)
    """

    backoff_delay: float = 0.0
    """Fixed delay in seconds slept between two attempts.

    Default: 0.0
    """

    # =========================================================================
    # Predefined Policies
    # =========================================================================

    if TYPE_CHECKING:
        # Type checker sees these as RetryPolicy
        NONE: RetryPolicy
        STANDARD: RetryPolicy
        PATIENT: RetryPolicy
    else:
        # Runtime sees these as None (set after class definition)
        NONE = cast("RetryPolicy", None)
        STANDARD = cast("RetryPolicy", None)
        PATIENT = cast("RetryPolicy", None)

    def __post_init__(self) -> None:
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise InvalidOptionsError(
                f"Option 'max_attempts' must be an integer, got {self.max_attempts!r}"
            )
        if self.max_attempts < 1:
            raise InvalidOptionsError(
                f"Option 'max_attempts' must be >= 1, got {self.max_attempts!r}"
            )
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "backoff_delay", to_seconds(self.backoff_delay, "backoff_delay"))

    @classmethod
    def with_max_attempts(cls, max_attempts: int) -> RetryPolicy:
        """
        Create a policy with custom max_attempts (uses the standard delay).

        Args:
            max_attempts: Maximum number of attempts

        Returns:
            RetryPolicy with the standard delay

        Example:
            policy = RetryPolicy.with_max_attempts(5)
        """
        return cls(max_attempts=max_attempts, backoff_delay=cls.STANDARD.backoff_delay)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> RetryPolicy:
        """
        Build a policy from a configuration mapping.

        Only the retry keys are read here; other keys are left to the caller
        (see Action.from_options, which also owns ``timeout``).

        Args:
            options: Mapping with ``max_attempts``/``maxAttempts`` and
                ``backoff_delay``/``backoffDelay``

        Returns:
            RetryPolicy, missing keys take the field defaults

        Raises:
            InvalidOptionsError: If a value is out of range
        """
        fields: dict[str, Any] = {}
        for key, value in options.items():
            name = OPTION_ALIASES.get(key)
            if name is None:
                continue
            if name in fields:
                raise InvalidOptionsError(f"Option '{name}' given more than once")
            fields[name] = value
        return cls(**fields)

    def delay_for_attempt(self, attempt: int) -> float | None:
        """
        Calculate the delay before the next attempt.

        Args:
            attempt: The attempt that just failed (1-indexed)

        Returns:
            Delay in seconds before the next attempt, or None if no attempts remain.

        Example:
            policy = RetryPolicy(max_attempts=3, backoff_delay=0.5)
            policy.delay_for_attempt(1)  # 0.5
            policy.delay_for_attempt(2)  # 0.5
            policy.delay_for_attempt(3)  # None (max attempts)
        """
        if attempt >= self.max_attempts:
            return None
        return self.backoff_delay

    def __repr__(self) -> str:
        return f"RetryPolicy(max_attempts={self.max_attempts}, backoff_delay={self.backoff_delay})"


# Initialize predefined policies after class definition
RetryPolicy.NONE = RetryPolicy(max_attempts=1, backoff_delay=0.0)

RetryPolicy.STANDARD = RetryPolicy(max_attempts=3, backoff_delay=1.0)

# Downloads from slow mirrors
RetryPolicy.PATIENT = RetryPolicy(max_attempts=5, backoff_delay=10.0)


# =============================================================================
# RetryableError - Fine-grained error retry control
# =============================================================================


class RetryableError(Exception):
    """
    Base class for errors that can specify whether they should be retried.

    Raise a subclass from an action body to stop the retry loop early on a
    permanent failure.

    Example:
        class DownloadError(RetryableError):
            def __init__(self, message: str, is_retryable: bool = True):
                super().__init__(message)
                self._retryable = is_retryable

            def is_retryable(self) -> bool:
                return self._retryable

        # Transient error - should retry
        raise DownloadError("Connection reset", is_retryable=True)

        # Permanent error - should NOT retry
        raise DownloadError("404 Not Found", is_retryable=False)
    """

    def is_retryable(self) -> bool:
        """
        Returns true if this error is transient and the attempt should be repeated.

        Returns:
            True if retryable, False if permanent
        """
        # Default: all errors are retryable
        return True
