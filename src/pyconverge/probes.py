"""Reusable read-only guard probes.

Each factory returns a guard: a callable taking the RunContext and returning
True when the action's effect is already in place.

    ```python
    Action("unzip", unzip, guard=path_exists(ctx_key="php_dir"))
    Action("set_path", set_path, guard=directory_on_path("C:/php"))
    ```
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from pyconverge.core import RunContext, coerce_guard_status, get_current_action_id, invoke
from pyconverge.models import GuardProbe, GuardStatus

logger = logging.getLogger(__name__)

__all__ = [
    "path_exists",
    "directory_on_path",
    "env_equals",
    "command_succeeds",
    "negate",
]


def path_exists(path: str | Path | None = None, *, ctx_key: str | None = None) -> GuardProbe:
    """
    Satisfied when a file or directory exists.

    Args:
        path: Path to check
        ctx_key: Read the path from the run context instead

    Raises:
        ValueError: Unless exactly one of path / ctx_key is given
    """
    if (path is None) == (ctx_key is None):
        raise ValueError("path_exists() takes exactly one of path or ctx_key")

    def probe(ctx: RunContext) -> bool:
        target = Path(ctx[ctx_key]) if ctx_key is not None else Path(path)
        return target.exists()

    return probe


def _normalize(directory: str) -> str:
    return os.path.normcase(os.path.normpath(directory.strip().strip('"')))


def directory_on_path(directory: str | Path, variable: str = "PATH") -> GuardProbe:
    """Satisfied when `directory` is an entry of the search-path variable."""
    wanted = _normalize(str(directory))

    def probe(ctx: RunContext) -> bool:
        entries = os.environ.get(variable, "").split(os.pathsep)
        return any(_normalize(e) == wanted for e in entries if e.strip())

    return probe


def env_equals(name: str, value: str) -> GuardProbe:
    """Satisfied when environment variable `name` is set to exactly `value`."""

    def probe(ctx: RunContext) -> bool:
        return os.environ.get(name) == value

    return probe


def command_succeeds(*argv: str) -> GuardProbe:
    """
    Satisfied when the command exits 0 (e.g. `sc query w3svc`).

    Output is discarded. A program that cannot be started makes the probe
    fail rather than report unsatisfied.
    """
    if not argv:
        raise ValueError("command_succeeds() needs at least a program name")
    args = [str(a) for a in argv]

    async def probe(ctx: RunContext) -> bool:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            returncode = await proc.wait()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        logger.debug(f"{get_current_action_id()}: {' '.join(args)} exited {returncode}")
        return returncode == 0

    return probe


def negate(probe: GuardProbe) -> GuardProbe:
    """Satisfied when `probe` is unsatisfied (e.g. "service not registered")."""

    async def negated(ctx: RunContext) -> bool:
        value = await invoke(probe, ctx)
        status = coerce_guard_status(get_current_action_id() or "<probe>", value)
        return status is GuardStatus.UNSATISFIED

    return negated
