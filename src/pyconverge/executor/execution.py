"""Guarded, retried, timeout-bounded execution of a single action.

Handles the three paths an action can take once its predecessors allow it
to start:
- Guard satisfied: record Skipped, body never runs
- Guard probe failed: record Failed with zero attempts
- Guard unsatisfied (or bypassed for a refresh): run the body with retry

Design: Information Hiding (Parnas)
Retry and timeout logic is isolated here, allowing the scheduling loop in
the executor to remain simple and these policies to evolve independently.
"""

import logging
import time

from pyconverge.core import CURRENT_ACTION, DeadlineExceeded, RunContext, evaluate_guard, invoke
from pyconverge.errors import ActionExecutionError, AttemptTimeoutError, GuardEvalError
from pyconverge.executor.outcome import ActionOutcome
from pyconverge.models import Action, ExecutionResult, GuardStatus

logger = logging.getLogger(__name__)

__all__ = [
    "execute_action",
    "run_attempt",
    "check_should_retry",
]


async def execute_action(
    action: Action, ctx: RunContext, *, refresh: bool = False
) -> ActionOutcome:
    """Run one action to a terminal outcome.

    Never raises for guard or body failures; those are captured on the
    returned outcome. asyncio.CancelledError propagates.

    Args:
        action: The action to run
        ctx: Run context handed to guard and body
        refresh: Fired by a notification; the guard is bypassed

    Returns:
        ActionOutcome with result Skipped, Succeeded or Failed

    Example:
        ```python
        outcome = await execute_action(unzip, ctx)
        if outcome.result is ExecutionResult.FAILED:
            print(outcome.describe())
        ```
    """
    started = time.monotonic()

    if not refresh:
        try:
            status = await evaluate_guard(action.id, action.guard, ctx, action.timeout)
        except GuardEvalError as e:
            logger.error(f"{action.id}: {e}")
            return ActionOutcome(
                action_id=action.id,
                result=ExecutionResult.FAILED,
                duration=time.monotonic() - started,
                error=e,
                reason="guard evaluation failed",
            )
        if status is GuardStatus.SATISFIED:
            logger.info(f"{action.id}: skipped (guard satisfied)")
            return ActionOutcome(
                action_id=action.id,
                result=ExecutionResult.SKIPPED,
                duration=time.monotonic() - started,
                reason="guard satisfied",
            )

    attempts = 0
    error: Exception | None = None
    reason = ""

    while True:
        attempts += 1
        try:
            await run_attempt(action, ctx, attempts)
        except Exception as e:
            error = e
        else:
            logger.info(f"{action.id}: succeeded (attempt {attempts}/{action.retry_policy.max_attempts})")
            return ActionOutcome(
                action_id=action.id,
                result=ExecutionResult.SUCCEEDED,
                attempts=attempts,
                duration=time.monotonic() - started,
                reason="refreshed" if refresh else "",
                refreshed=refresh,
            )

        delay = check_should_retry(action, error, attempts)
        if delay is None:
            if not _is_retryable(error):
                reason = "permanent error"
            break

        logger.warning(
            f"{action.id}: attempt {attempts}/{action.retry_policy.max_attempts} failed "
            f"({type(error).__name__}: {error}); retrying in {delay:g}s"
        )
        if await ctx.cancellation.wait(delay):
            reason = "cancelled before retry"
            logger.warning(f"{action.id}: {reason}")
            break

    logger.error(
        f"{action.id}: failed after {attempts} attempt(s): {type(error).__name__}: {error}"
    )
    return ActionOutcome(
        action_id=action.id,
        result=ExecutionResult.FAILED,
        attempts=attempts,
        duration=time.monotonic() - started,
        error=error,
        reason=reason or "attempts exhausted",
        refreshed=refresh,
    )


async def run_attempt(action: Action, ctx: RunContext, attempt: int) -> None:
    """Execute the body once.

    An int return value (other than bool) is an exit status: non-zero fails
    the attempt.

    Raises:
        AttemptTimeoutError: If the attempt exceeded action.timeout
        ActionExecutionError: If the body returned a non-zero exit status
        Exception: Whatever the body raised
    """
    token = CURRENT_ACTION.set(action.id)
    try:
        logger.debug(f"{action.id}: attempt {attempt} starting")
        result = await invoke(action.body, ctx, action.timeout)
    except DeadlineExceeded as e:
        raise AttemptTimeoutError(action.id, action.timeout, attempt) from e
    finally:
        CURRENT_ACTION.reset(token)

    if isinstance(result, int) and not isinstance(result, bool) and result != 0:
        raise ActionExecutionError(
            action.id, f"'{action.id}' exited with status {result}", exit_code=result
        )


def check_should_retry(action: Action, error: BaseException, attempt: int) -> float | None:
    """Decide whether another attempt follows a failed one.

    Returns:
        Seconds to wait before the next attempt, or None to stop

    Example:
        ```python
        delay = check_should_retry(action, error, attempts)
        if delay is not None:
            await asyncio.sleep(delay)
        ```
    """
    if not _is_retryable(error):
        logger.debug(f"{action.id}: {type(error).__name__} is not retryable")
        return None
    return action.retry_policy.delay_for_attempt(attempt)


def _is_retryable(error: BaseException) -> bool:
    is_retryable = getattr(error, "is_retryable", None)
    if callable(is_retryable):
        return bool(is_retryable())
    return True
