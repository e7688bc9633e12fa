"""
Pytest configuration and fixtures for pyconverge tests.

Provides a call recorder, an action factory backed by it, the scenario graph
from the provisioning recipe, and hypothesis strategies for random DAGs.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

import pytest
from hypothesis import strategies as st

from pyconverge import Action, DependencyGraph, RetryPolicy, RunContext


@dataclass
class Recorder:
    """Records body and guard invocations, in call order."""

    calls: list[str] = field(default_factory=list)
    guard_calls: list[str] = field(default_factory=list)
    active: int = 0
    max_active: int = 0

    def count(self, action_id: str) -> int:
        return self.calls.count(action_id)

    def body(self, action_id: str, *, fail_times: int = 0, delay: float = 0.0, exc=None):
        """Async body that records itself and fails its first `fail_times` attempts."""
        state = {"failures": 0}

        async def run(ctx):
            self.calls.append(action_id)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                if delay:
                    await asyncio.sleep(delay)
                if state["failures"] < fail_times:
                    state["failures"] += 1
                    raise (exc or RuntimeError)(f"{action_id} failed")
            finally:
                self.active -= 1

        return run

    def guard(self, action_id: str, satisfied: bool | Callable[[], bool]):
        def probe(ctx):
            self.guard_calls.append(action_id)
            return satisfied() if callable(satisfied) else satisfied

        return probe


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def ctx() -> RunContext:
    """Fresh run context with a small configuration."""
    return RunContext({"cache_dir": "/tmp/cache", "php_dir": "/opt/php"})


@pytest.fixture
def make_action(recorder: Recorder):
    """Factory for recorded actions: make_action("a", requires=["b"], fail_times=1)."""

    def factory(
        action_id: str,
        *,
        requires=(),
        notifies=(),
        guard=None,
        fail_times: int = 0,
        delay: float = 0.0,
        max_attempts: int = 1,
        timeout: float = 0.0,
        refresh_only: bool = False,
    ) -> Action:
        return Action(
            action_id,
            recorder.body(action_id, fail_times=fail_times, delay=delay),
            guard=recorder.guard(action_id, guard) if guard is not None else None,
            requires=requires,
            notifies=notifies,
            retry_policy=RetryPolicy(max_attempts=max_attempts, backoff_delay=0),
            timeout=timeout,
            refresh_only=refresh_only,
        )

    return factory


@dataclass
class Host:
    """Fake host state for the PHP scenario; guards read it, bodies change it."""

    downloaded: bool = False
    unzipped: bool = False
    on_path: bool = False
    refreshes: int = 0


@pytest.fixture
def host() -> Host:
    return Host()


@pytest.fixture
def php_graph(host: Host, recorder: Recorder) -> Callable[[], DependencyGraph]:
    """Builder for Download -> Unzip -> SetPath (notifies Refresh)."""

    def build() -> DependencyGraph:
        def mark(attr):
            async def body(ctx):
                recorder.calls.append(attr)
                setattr(host, attr, True)

            return body

        async def refresh(ctx):
            recorder.calls.append("refresh")
            host.refreshes += 1

        graph = DependencyGraph()
        graph.add_action(Action("download", mark("downloaded"), guard=lambda c: host.downloaded))
        graph.add_action(
            Action("unzip", mark("unzipped"), guard=lambda c: host.unzipped, requires=["download"])
        )
        graph.add_action(
            Action(
                "set_path",
                mark("on_path"),
                guard=lambda c: host.on_path,
                requires=["unzip"],
                notifies=["refresh"],
            )
        )
        graph.add_action(Action("refresh", refresh, refresh_only=True))
        return graph

    return build


# Hypothesis strategies for property-based testing


@st.composite
def dag_strategy(draw, max_actions: int = 8):
    """
    Random acyclic requires-structure.

    Returns:
        (ids, edges) where edges maps id -> ids it requires; an action only
        requires actions with a lower index, so the result is always a DAG
    """
    n = draw(st.integers(min_value=1, max_value=max_actions))
    ids = [f"a{i}" for i in range(n)]
    edges = {}
    for i, action_id in enumerate(ids):
        if i == 0:
            edges[action_id] = []
            continue
        edges[action_id] = draw(
            st.lists(st.sampled_from(ids[:i]), unique=True, max_size=min(i, 3))
        )
    return ids, edges
