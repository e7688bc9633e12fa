"""Guard evaluation and callable invocation.

A guard is a pure read-only probe ("does this file exist", "is this
directory already on PATH"). Evaluation has three outcomes:

- GuardStatus.SATISFIED: effect already in place, skip the body
- GuardStatus.UNSATISFIED: effect missing, run the body
- GuardEvalError: the probe itself failed; the owning action fails

Guards and bodies may be coroutine functions or plain functions. Plain
functions run in a worker thread so that a blocking probe cannot stall the
event loop and the action timeout still bounds it:

    ```python
    def php_unpacked(ctx) -> bool:           # blocking is fine here
        return Path(ctx["php_dir"], "php.exe").exists()

    async def service_registered(ctx) -> bool:
        proc = await asyncio.create_subprocess_exec(...)
        return await proc.wait() == 0
    ```

Note: a thread cannot be interrupted. When a plain function exceeds its
timeout the executor stops waiting for it, but the thread runs on in the
background until the function returns.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from pyconverge.core.context import CURRENT_ACTION, RunContext
from pyconverge.errors import GuardEvalError
from pyconverge.models import GuardStatus

logger = logging.getLogger(__name__)


class DeadlineExceeded(TimeoutError):
    """The bound given to invoke() elapsed (as opposed to a TimeoutError raised by the callable)."""


async def invoke(fn: Callable[[RunContext], Any], ctx: RunContext, timeout: float = 0.0) -> Any:
    """Call a guard or body with the run context, bounded by `timeout` seconds.

    Args:
        fn: Coroutine function or plain function taking the context
        ctx: Run context passed through unchanged
        timeout: Seconds; 0 means unbounded

    Returns:
        Whatever the callable returned

    Raises:
        DeadlineExceeded: If the bound elapsed first
        Exception: Whatever the callable raised
    """
    if inspect.iscoroutinefunction(fn):
        awaitable = fn(ctx)
    else:
        awaitable = asyncio.to_thread(_call_sync, fn, ctx)

    if timeout <= 0:
        return await awaitable

    deadline = asyncio.timeout(timeout)
    try:
        async with deadline:
            return await awaitable
    except TimeoutError as e:
        if deadline.expired():
            raise DeadlineExceeded(f"exceeded {timeout:g}s") from e
        raise


def _call_sync(fn: Callable[[RunContext], Any], ctx: RunContext) -> Any:
    result = fn(ctx)
    if inspect.isawaitable(result):
        # A plain callable returning an awaitable (e.g. functools.partial of
        # a coroutine function); drive it on a private loop in this thread.
        return asyncio.run(_await(result))
    return result


async def _await(awaitable: Any) -> Any:
    return await awaitable


def coerce_guard_status(action_id: str, value: Any) -> GuardStatus:
    """Map a probe's return value onto GuardStatus.

    Raises:
        GuardEvalError: If the value is neither a bool nor a GuardStatus
    """
    if isinstance(value, GuardStatus):
        return value
    if isinstance(value, bool):
        return GuardStatus.from_bool(value)
    raise GuardEvalError(
        action_id, f"probe returned {type(value).__name__}, expected bool or GuardStatus"
    )


async def evaluate_guard(
    action_id: str,
    guard: Callable[[RunContext], Any] | None,
    ctx: RunContext,
    timeout: float = 0.0,
) -> GuardStatus:
    """Evaluate an action's guard.

    An absent guard is always UNSATISFIED: the body runs on every pass.

    Args:
        action_id: Owning action (for errors and logging)
        guard: The probe, or None
        ctx: Run context
        timeout: Seconds; 0 means unbounded

    Returns:
        GuardStatus.SATISFIED or GuardStatus.UNSATISFIED

    Raises:
        GuardEvalError: If the probe raised, timed out or returned a non-status
    """
    if guard is None:
        return GuardStatus.UNSATISFIED

    token = CURRENT_ACTION.set(action_id)
    try:
        value = await invoke(guard, ctx, timeout)
    except DeadlineExceeded as e:
        raise GuardEvalError(action_id, f"probe exceeded timeout of {timeout:g}s") from e
    except GuardEvalError:
        raise
    except Exception as e:
        raise GuardEvalError(action_id, f"{type(e).__name__}: {e}") from e
    finally:
        CURRENT_ACTION.reset(token)

    status = coerce_guard_status(action_id, value)
    logger.debug(f"Guard of {action_id}: {status}")
    return status


__all__ = ["invoke", "evaluate_guard", "coerce_guard_status", "DeadlineExceeded"]
