"""Pending-refresh bookkeeping.

Tracks which refresh-only actions have been notified during a run and makes
sure each fires at most once, no matter how many upstream actions notified
it.

Design: Information Hiding (Parnas)
The set is the only state shared between concurrently running actions, so
every access goes through an asyncio.Lock here rather than in the executor.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)

__all__ = ["PendingRefresh"]


class PendingRefresh:
    """
    Run-scoped set of notified refresh targets.

    Usage:
        ```python
        pending = PendingRefresh()
        await pending.notify("set_path", ["refresh_env"])
        await pending.notify("write_ini", ["refresh_env"])   # no double fire

        if await pending.claim("refresh_env"):
            ...  # runs exactly once
        ```
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        # target -> notifiers, in notification order
        self._pending: dict[str, list[str]] = {}
        self._fired: set[str] = set()

    async def notify(self, source_id: str, targets: Iterable[str]) -> None:
        """Mark every target pending-refresh on behalf of `source_id`."""
        async with self._lock:
            for target in targets:
                if target in self._fired:
                    logger.warning(
                        f"{source_id} notified {target} after it already fired; ignoring"
                    )
                    continue
                notifiers = self._pending.setdefault(target, [])
                if source_id not in notifiers:
                    notifiers.append(source_id)
                logger.debug(f"{source_id} notified {target}")

    async def claim(self, target: str) -> list[str] | None:
        """
        Take `target` out of the pending set so it can fire.

        Returns:
            The ids that notified it, or None if it is not pending (never
            notified, or already claimed)
        """
        async with self._lock:
            notifiers = self._pending.pop(target, None)
            if notifiers is None:
                return None
            self._fired.add(target)
            return notifiers

    async def is_pending(self, target: str) -> bool:
        async with self._lock:
            return target in self._pending

    async def snapshot(self) -> dict[str, list[str]]:
        """Copy of the pending set (target -> notifiers)."""
        async with self._lock:
            return {target: list(sources) for target, sources in self._pending.items()}

    @property
    def fired(self) -> frozenset[str]:
        return frozenset(self._fired)
