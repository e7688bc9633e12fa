"""
Tests for external command bodies.
"""

import sys

import pytest

from pyconverge import Action, ActionExecutionError, AttemptTimeoutError, ExecutionResult
from pyconverge.commands import command, run_command
from pyconverge.executor import execute_action


@pytest.mark.asyncio
async def test_successful_command(ctx):
    outcome = await execute_action(Action("noop", command(sys.executable, "-c", "pass")), ctx)
    assert outcome.result is ExecutionResult.SUCCEEDED


@pytest.mark.asyncio
async def test_failure_includes_stderr_tail(ctx):
    script = "import sys; sys.stderr.write('msi error 1603'); sys.exit(5)"
    outcome = await execute_action(Action("install", command(sys.executable, "-c", script)), ctx)
    assert outcome.result is ExecutionResult.FAILED
    assert isinstance(outcome.error, ActionExecutionError)
    assert outcome.error.exit_code == 5
    assert outcome.error.action_id == "install"
    assert "msi error 1603" in str(outcome.error)


@pytest.mark.asyncio
async def test_cwd_and_env(tmp_path, ctx):
    script = (
        "import os, sys; "
        "sys.exit(0 if os.getcwd() == os.path.realpath(sys.argv[1]) "
        "and os.environ['PHP_TARGET'] == 'x64' else 1)"
    )
    body = command(sys.executable, "-c", script, str(tmp_path), cwd=tmp_path, env={"PHP_TARGET": "x64"})
    outcome = await execute_action(Action("check", body), ctx)
    assert outcome.result is ExecutionResult.SUCCEEDED


@pytest.mark.asyncio
async def test_timeout_kills_process(ctx):
    body = command(sys.executable, "-c", "import time; time.sleep(30)")
    outcome = await execute_action(Action("hang", body, timeout=0.5), ctx)
    assert outcome.result is ExecutionResult.FAILED
    assert isinstance(outcome.error, AttemptTimeoutError)


@pytest.mark.asyncio
async def test_missing_program_raises():
    with pytest.raises(FileNotFoundError):
        await run_command(["definitely-not-a-real-program-xyz"])


def test_command_needs_program():
    with pytest.raises(ValueError):
        command()


def test_command_body_named_after_program():
    assert command("/usr/bin/msiexec", "/i").__name__ == "command[msiexec]"
