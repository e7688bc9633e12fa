"""External command bodies.

`command()` builds an action body that runs one program and reports its exit
status. The process is killed if the attempt times out or the run task is
cancelled, so a hung installer never outlives its attempt.

    ```python
    graph.add_action(Action(
        "install_vcredist",
        command("vc_redist.x64.exe", "/install", "/quiet", "/norestart"),
        guard=path_exists("C:/Windows/System32/vcruntime140.dll"),
        timeout=600,
    ))
    ```
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pyconverge.core import RunContext, get_current_action_id
from pyconverge.errors import ActionExecutionError

logger = logging.getLogger(__name__)

# Bytes of stderr kept in failure messages
STDERR_TAIL = 4000

__all__ = ["command", "run_command", "STDERR_TAIL"]


def command(
    *argv: str,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
):
    """
    Action body that runs `argv` without a shell.

    Args:
        argv: Program and arguments
        cwd: Working directory; inherited if None
        env: Extra environment variables layered over os.environ

    Returns:
        An async body returning 0 on success

    Raises:
        ValueError: If argv is empty
    """
    if not argv:
        raise ValueError("command() needs at least a program name")
    args = [str(a) for a in argv]

    async def body(ctx: RunContext) -> int:
        return await run_command(args, cwd=cwd, env=env)

    body.__name__ = f"command[{Path(args[0]).name}]"
    body.__qualname__ = body.__name__
    return body


async def run_command(
    argv: list[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    """
    Run one program to completion.

    Returns:
        0

    Raises:
        ActionExecutionError: On a non-zero exit status, with the stderr tail
        FileNotFoundError: If the program or cwd does not exist
    """
    merged_env = None
    if env:
        merged_env = os.environ.copy()
        merged_env.update(env)

    action_id = get_current_action_id() or argv[0]
    logger.debug(f"{action_id}: running {' '.join(argv)}")

    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=str(cwd) if cwd is not None else None,
        env=merged_env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if stdout:
        logger.debug(f"{action_id}: {stdout.decode(errors='replace').rstrip()}")

    if proc.returncode != 0:
        tail = stderr.decode(errors="replace")[-STDERR_TAIL:].strip()
        message = f"'{' '.join(argv)}' exited with status {proc.returncode}"
        if tail:
            message += f": {tail}"
        raise ActionExecutionError(action_id, message, exit_code=proc.returncode)
    return 0
