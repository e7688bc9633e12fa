"""
Tests for Executor.run: ordering, failure propagation, refresh and cancellation.

ARCHITECTURE VERIFICATION:
- Invalid graphs abort before any body runs
- A failure blocks only its requires-dependents
- Refresh targets fire once, after the main pass
- Cancellation marks not-yet-started actions NotRun
"""

import asyncio

import pytest

from pyconverge import (
    Action,
    CancellationToken,
    DependencyGraph,
    ExecutionResult,
    Executor,
    GraphCycleError,
    InvalidOptionsError,
    RunContext,
    UnknownActionError,
    converge,
    converge_sync,
)


def graph_of(*actions: Action) -> DependencyGraph:
    graph = DependencyGraph()
    for action in actions:
        graph.add_action(action)
    return graph


# =============================================================================
# Validation and ordering
# =============================================================================


@pytest.mark.asyncio
async def test_cycle_aborts_before_execution(make_action, recorder, ctx):
    graph = graph_of(
        make_action("ok"),
        make_action("a", requires=["b"]),
        make_action("b", requires=["a"]),
    )
    with pytest.raises(GraphCycleError):
        await Executor().run(graph, ctx)
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_unknown_reference_aborts_before_execution(make_action, recorder, ctx):
    graph = graph_of(make_action("ok"), make_action("a", requires=["nope"]))
    with pytest.raises(UnknownActionError):
        await Executor().run(graph, ctx)
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_sequential_order_is_topological(make_action, recorder, ctx):
    graph = graph_of(
        make_action("set_path", requires=["unzip"]),
        make_action("unzip", requires=["download"]),
        make_action("download"),
        make_action("write_ini", requires=["unzip"]),
    )
    report = await Executor().run(graph, ctx)
    assert recorder.calls == graph.topological_order()
    assert recorder.calls == ["download", "unzip", "set_path", "write_ini"]
    assert report.order == recorder.calls
    assert report.ok


@pytest.mark.asyncio
async def test_report_covers_every_action(make_action, ctx):
    graph = graph_of(make_action("a"), make_action("b", guard=True), make_action("c"))
    report = await Executor().run(graph, ctx)
    assert len(report) == 3
    assert set(report.order) == {"a", "b", "c"}
    assert report["b"].result is ExecutionResult.SKIPPED
    assert report.run_id == ctx.run_id
    assert report.fingerprint == graph.fingerprint()


@pytest.mark.asyncio
async def test_default_context_created(make_action):
    report = await Executor().run(graph_of(make_action("a")))
    assert report.run_id
    assert report.ok


# =============================================================================
# Failure propagation
# =============================================================================


@pytest.mark.asyncio
async def test_failure_blocks_dependents_transitively(make_action, recorder, ctx):
    graph = graph_of(
        make_action("download", fail_times=1),
        make_action("unzip", requires=["download"]),
        make_action("set_path", requires=["unzip"]),
        make_action("vcredist"),
    )
    report = await Executor().run(graph, ctx)

    assert report["download"].result is ExecutionResult.FAILED
    assert report["unzip"].result is ExecutionResult.NOT_RUN
    assert report["set_path"].result is ExecutionResult.NOT_RUN
    assert "download" in report["unzip"].reason
    assert "unzip" in report["set_path"].reason
    # Independent branch still runs
    assert report["vcredist"].result is ExecutionResult.SUCCEEDED
    assert "unzip" not in recorder.calls
    assert report.failed == ["download"]
    assert report.not_run == ["unzip", "set_path"]
    assert not report.ok
    assert report.exit_code == 1


@pytest.mark.asyncio
async def test_skipped_predecessor_does_not_block(make_action, recorder, ctx):
    graph = graph_of(make_action("a", guard=True), make_action("b", requires=["a"]))
    report = await Executor().run(graph, ctx)
    assert report["a"].result is ExecutionResult.SKIPPED
    assert report["b"].result is ExecutionResult.SUCCEEDED
    assert recorder.calls == ["b"]


@pytest.mark.asyncio
async def test_guard_failure_blocks_dependents(recorder, ctx):
    def broken(c):
        raise PermissionError("denied")

    graph = graph_of(
        Action("a", recorder.body("a"), guard=broken),
        Action("b", recorder.body("b"), requires=["a"]),
    )
    report = await Executor().run(graph, ctx)
    assert report["a"].result is ExecutionResult.FAILED
    assert report["a"].attempts == 0
    assert report["b"].result is ExecutionResult.NOT_RUN
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_executor_does_not_raise_on_body_errors(ctx):
    async def explode(c):
        raise KeyError("cache_dir")

    report = await Executor().run(graph_of(Action("a", explode)), ctx)
    assert isinstance(report["a"].error, KeyError)


# =============================================================================
# Refresh triggers
# =============================================================================


@pytest.mark.asyncio
async def test_refresh_fires_once_for_many_notifiers(make_action, recorder, ctx):
    graph = graph_of(
        make_action("set_path", notifies=["refresh"]),
        make_action("write_ini", notifies=["refresh"]),
        make_action("refresh", refresh_only=True),
    )
    report = await Executor().run(graph, ctx)
    assert recorder.count("refresh") == 1
    assert report["refresh"].result is ExecutionResult.SUCCEEDED
    assert report["refresh"].refreshed
    assert report.order[-1] == "refresh"


@pytest.mark.asyncio
async def test_refresh_not_fired_when_notifier_skipped(make_action, recorder, ctx):
    graph = graph_of(
        make_action("set_path", guard=True, notifies=["refresh"]),
        make_action("refresh", refresh_only=True),
    )
    report = await Executor().run(graph, ctx)
    assert report["refresh"].result is ExecutionResult.SKIPPED
    assert report["refresh"].reason == "not notified"
    assert recorder.calls == []
    assert report.converged


@pytest.mark.asyncio
async def test_refresh_not_fired_when_notifier_failed(make_action, recorder, ctx):
    graph = graph_of(
        make_action("set_path", fail_times=1, notifies=["refresh"]),
        make_action("refresh", refresh_only=True),
    )
    report = await Executor().run(graph, ctx)
    assert report["refresh"].result is ExecutionResult.SKIPPED
    assert "refresh" not in recorder.calls


@pytest.mark.asyncio
async def test_refresh_bypasses_its_guard(make_action, recorder, ctx):
    graph = graph_of(
        make_action("set_path", notifies=["refresh"]),
        make_action("refresh", guard=True, refresh_only=True),
    )
    report = await Executor().run(graph, ctx)
    assert report["refresh"].result is ExecutionResult.SUCCEEDED
    assert "refresh" not in recorder.guard_calls


@pytest.mark.asyncio
async def test_refresh_runs_after_whole_main_pass(make_action, recorder, ctx):
    graph = graph_of(
        make_action("set_path", notifies=["refresh"]),
        make_action("refresh", refresh_only=True),
        make_action("register_iis", requires=["set_path"]),
    )
    await Executor().run(graph, ctx)
    assert recorder.calls == ["set_path", "register_iis", "refresh"]


@pytest.mark.asyncio
async def test_refresh_with_failed_requirement_not_run(make_action, recorder, ctx):
    graph = graph_of(
        make_action("broken", fail_times=1),
        make_action("set_path", notifies=["refresh"]),
        make_action("refresh", requires=["broken"], refresh_only=True),
    )
    report = await Executor().run(graph, ctx)
    assert report["refresh"].result is ExecutionResult.NOT_RUN
    assert "refresh" not in recorder.calls


@pytest.mark.asyncio
async def test_refresh_chain(make_action, recorder, ctx):
    graph = graph_of(
        make_action("set_path", notifies=["reload_env"]),
        make_action("reload_env", notifies=["restart_iis"], refresh_only=True),
        make_action("restart_iis", refresh_only=True),
    )
    report = await Executor().run(graph, ctx)
    assert recorder.calls == ["set_path", "reload_env", "restart_iis"]
    assert report.changed == ["set_path", "reload_env", "restart_iis"]


# =============================================================================
# Edges added on the graph after add_action
# =============================================================================


@pytest.mark.asyncio
async def test_graph_notify_edge_fires_refresh_once(make_action, recorder, ctx):
    graph = graph_of(
        make_action("set_path"),
        make_action("write_ini"),
        make_action("refresh_env", refresh_only=True),
    )
    graph.add_notify("set_path", "refresh_env")
    graph.add_notify("write_ini", "refresh_env")

    report = await Executor().run(graph, ctx)

    assert report["set_path"].result is ExecutionResult.SUCCEEDED
    assert report["refresh_env"].result is ExecutionResult.SUCCEEDED
    assert report["refresh_env"].refreshed
    assert recorder.count("refresh_env") == 1
    assert report.order[-1] == "refresh_env"


@pytest.mark.asyncio
async def test_graph_notify_edge_mixed_with_declared_edge(make_action, recorder, ctx):
    graph = graph_of(
        make_action("set_path", guard=True, notifies=["refresh_env"]),
        make_action("write_ini"),
        make_action("refresh_env", refresh_only=True),
    )
    graph.add_notify("write_ini", "refresh_env")

    report = await Executor(max_concurrency=2).run(graph, ctx)
    assert report["set_path"].result is ExecutionResult.SKIPPED
    assert recorder.count("refresh_env") == 1


@pytest.mark.asyncio
async def test_graph_requires_edge_blocks_on_failure(make_action, recorder, ctx):
    graph = graph_of(
        make_action("download", fail_times=1),
        make_action("unzip"),
    )
    graph.add_requires("unzip", "download")

    report = await Executor().run(graph, ctx)

    assert report["download"].result is ExecutionResult.FAILED
    assert report["unzip"].result is ExecutionResult.NOT_RUN
    assert "download" in report["unzip"].reason
    assert "unzip" not in recorder.calls


# =============================================================================
# Scenario: Download -> Unzip -> SetPath (notifies Refresh)
# =============================================================================


@pytest.mark.asyncio
async def test_scenario_fresh_host(php_graph, host, recorder, ctx):
    report = await Executor().run(php_graph(), ctx)
    assert recorder.calls == ["downloaded", "unzipped", "on_path", "refresh"]
    assert host.refreshes == 1
    assert report.order == ["download", "unzip", "set_path", "refresh"]
    assert report.changed == ["download", "unzip", "set_path", "refresh"]


@pytest.mark.asyncio
async def test_scenario_already_unzipped(php_graph, host, recorder, ctx):
    host.downloaded = True
    host.unzipped = True
    report = await Executor().run(php_graph(), ctx)
    assert report["download"].result is ExecutionResult.SKIPPED
    assert report["unzip"].result is ExecutionResult.SKIPPED
    assert report["set_path"].result is ExecutionResult.SUCCEEDED
    assert report["refresh"].result is ExecutionResult.SUCCEEDED
    assert host.refreshes == 1


@pytest.mark.asyncio
async def test_scenario_second_run_converged(php_graph, host, recorder, ctx):
    first = await Executor().run(php_graph(), ctx)
    assert first.changed

    recorder.calls.clear()
    second = await Executor().run(php_graph(), RunContext())
    assert second.converged
    assert second.changed == []
    assert recorder.calls == []
    assert host.refreshes == 1


# =============================================================================
# Cancellation
# =============================================================================


@pytest.mark.asyncio
async def test_cancellation_marks_remaining_not_run(recorder):
    token = CancellationToken()
    run_ctx = RunContext(cancellation=token)

    async def cancelling(c):
        recorder.calls.append("first")
        token.cancel("operator abort")

    graph = graph_of(
        Action("first", cancelling),
        Action("second", recorder.body("second")),
        Action("third", recorder.body("third"), requires=["second"]),
    )
    report = await Executor().run(graph, run_ctx)

    assert report.cancelled
    assert report["first"].result is ExecutionResult.SUCCEEDED
    assert report["second"].result is ExecutionResult.NOT_RUN
    assert report["second"].reason == "cancelled"
    assert report["third"].reason == "cancelled"
    assert recorder.calls == ["first"]
    assert report.exit_code == 1


@pytest.mark.asyncio
async def test_cancel_before_run_starts_nothing(make_action, recorder):
    token = CancellationToken()
    token.cancel()
    report = await Executor().run(graph_of(make_action("a")), RunContext(cancellation=token))
    assert report.not_run == ["a"]
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_cancellation_lets_running_attempt_finish(recorder):
    token = CancellationToken()
    run_ctx = RunContext(cancellation=token)

    async def long_step(c):
        await asyncio.sleep(0.05)
        recorder.calls.append("long")

    graph = graph_of(Action("long", long_step), Action("next", recorder.body("next")))
    task = asyncio.create_task(Executor().run(graph, run_ctx))
    await asyncio.sleep(0.01)
    token.cancel()
    report = await task

    assert report["long"].result is ExecutionResult.SUCCEEDED
    assert report["next"].result is ExecutionResult.NOT_RUN
    assert recorder.calls == ["long"]


@pytest.mark.asyncio
async def test_task_cancel_propagates(recorder):
    async def hangs(c):
        await asyncio.sleep(10)

    task = asyncio.create_task(Executor().run(graph_of(Action("a", hangs))))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


# =============================================================================
# Configuration and convenience
# =============================================================================


@pytest.mark.parametrize("value", [0, -1, 1.5, True])
def test_invalid_max_concurrency(value):
    with pytest.raises(InvalidOptionsError):
        Executor(max_concurrency=value)


@pytest.mark.asyncio
async def test_converge_wraps_plain_mapping(recorder):
    seen = []

    async def body(c):
        seen.append(c["php_dir"])

    report = await converge(graph_of(Action("a", body)), {"php_dir": "C:/php"})
    assert seen == ["C:/php"]
    assert report.ok


def test_converge_sync(make_action, recorder):
    report = converge_sync(graph_of(make_action("a"), make_action("b", requires=["a"])))
    assert report.ok
    assert recorder.calls == ["a", "b"]
