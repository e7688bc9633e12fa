"""
Dependency Graph Module

This module holds the directed graph over Actions that the executor walks.
Callers build it explicitly, adding actions and edges by id, and the graph is
validated once at run start.

**Design Decision Hidden** (Parnas's Information Hiding):
- **"How ordering is derived from the edges"**

Two relations exist:
1. `requires` (A requires B): B must reach a terminal result before A starts,
   and a failed B blocks A.
2. `notify` (A notifies R): R is a refresh-only action triggered when A's body
   actually ran. R is also ordered after A.

**Example**:
```python
graph = DependencyGraph()
graph.add_action(Action("download", download))
graph.add_action(Action("unzip", unzip, requires=["download"]))
graph.add_action(Action("set_path", set_path, requires=["unzip"]))
graph.add_action(Action("refresh_env", refresh_env, refresh_only=True))
graph.add_notify("set_path", "refresh_env")

graph.validate()
graph.topological_order()  # ["download", "unzip", "set_path", "refresh_env"]
```

**Determinism**:
Ties in the topological order are broken by insertion order, so the same
construction sequence always yields the same order (and fingerprint).
"""

from __future__ import annotations

import heapq
from collections.abc import Iterator
from dataclasses import dataclass

import xxhash

from pyconverge.errors import (
    DuplicateActionError,
    GraphCycleError,
    InvalidEdgeError,
    UnknownActionError,
)
from pyconverge.models import Action

REQUIRES = "requires"
NOTIFIES = "notifies"


class DependencyGraph:
    """
    Directed graph of Actions with `requires` and `notify` edges.

    Edges are stored by id and may reference actions that are added later
    (on either end); unresolved references are reported by `validate()`.

    **Usage**:
    ```python
    graph = DependencyGraph()
    graph.add_action(Action("a", body_a))
    graph.add_action(Action("b", body_b))
    graph.add_requires("b", "a")   # b runs after a

    graph.validate()
    ```
    """

    def __init__(self):
        self._actions: dict[str, Action] = {}
        # id -> ordered ids, insertion order preserved
        self._requires: dict[str, list[str]] = {}
        self._notifies: dict[str, list[str]] = {}

    # =========================================================================
    # Construction
    # =========================================================================

    def add_action(self, action: Action) -> Action:
        """
        Registers an action together with its declared requires/notifies edges.

        **Args**:
            action: The action to add

        **Returns**:
            The same action, for chaining

        **Raises**:
            DuplicateActionError: If an action with this id already exists
        """
        if action.id in self._actions:
            raise DuplicateActionError(action.id)
        self._actions[action.id] = action
        for target in action.requires:
            self.add_requires(action.id, target)
        for target in action.notifies:
            self.add_notify(action.id, target)
        return action

    def add_requires(self, from_id: str, to_id: str) -> None:
        """Declares that `from_id` must run after `to_id`."""
        _add_edge(self._requires, from_id, to_id)

    def add_notify(self, from_id: str, to_id: str) -> None:
        """
        Declares that `from_id` triggers the refresh-only action `to_id` when it
        actually executes a change.
        """
        _add_edge(self._notifies, from_id, to_id)

    # =========================================================================
    # Lookup
    # =========================================================================

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    def __getitem__(self, action_id: str) -> Action:
        return self._actions[action_id]

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[Action]:
        return iter(self._actions.values())

    @property
    def ids(self) -> list[str]:
        """Action ids in insertion order."""
        return list(self._actions)

    def requires_of(self, action_id: str) -> list[str]:
        """Ids `action_id` requires, in declaration order."""
        return list(self._requires.get(action_id, []))

    def notifies_of(self, action_id: str) -> list[str]:
        """Ids `action_id` notifies, in declaration order."""
        return list(self._notifies.get(action_id, []))

    def notifiers_of(self, action_id: str) -> list[str]:
        """Ids with a notify edge to `action_id`, in insertion order."""
        return [a for a in self._actions if action_id in self._notifies.get(a, [])]

    def predecessors(self, action_id: str) -> list[str]:
        """Every id that must be terminal before `action_id` may start."""
        preds = list(self._requires.get(action_id, []))
        for notifier in self.notifiers_of(action_id):
            if notifier not in preds:
                preds.append(notifier)
        return preds

    def predecessor_map(self) -> dict[str, list[str]]:
        """
        `predecessors()` for every action, built in one pass over the edges.

        **Returns**:
            id -> requires ids followed by notifier ids (insertion order)
        """
        preds = {action_id: list(self._requires.get(action_id, [])) for action_id in self._actions}
        for notifier in self._actions:
            for target in self._notifies.get(notifier, []):
                if target in preds and notifier not in preds[target]:
                    preds[target].append(notifier)
        return preds

    def dependents(self, action_id: str) -> list[str]:
        """Ids that require or are notified by `action_id`, in insertion order."""
        return [
            a
            for a in self._actions
            if action_id in self._requires.get(a, []) or a in self._notifies.get(action_id, [])
        ]

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> None:
        """
        Validates the graph structure without executing anything.

        Checks, in order:
        - Dangling edges (referencing ids not in the graph)
        - Cycles over requires and notify edges (depth-first search)
        - Edge kinds: notify targets must be refresh-only, and regular actions
          may not require refresh-only ones

        **Raises**:
            UnknownActionError: On a dangling edge
            GraphCycleError: With the cycle's id sequence
            InvalidEdgeError: On an edge between incompatible action kinds
        """
        for relation, table in ((REQUIRES, self._requires), (NOTIFIES, self._notifies)):
            for from_id, targets in table.items():
                for to_id in targets:
                    for end in (from_id, to_id):
                        if end not in self._actions:
                            raise UnknownActionError(end, (from_id, to_id), relation)

        cycle = self._find_cycle()
        if cycle:
            raise GraphCycleError(cycle)

        for action_id, action in self._actions.items():
            for target in self._notifies.get(action_id, []):
                if not self._actions[target].refresh_only:
                    raise InvalidEdgeError(
                        action_id,
                        target,
                        f"Action '{action_id}' notifies '{target}', "
                        f"which is not a refresh-only action",
                    )
            if action.refresh_only:
                continue
            for target in self._requires.get(action_id, []):
                if self._actions[target].refresh_only:
                    raise InvalidEdgeError(
                        action_id,
                        target,
                        f"Action '{action_id}' requires refresh-only action '{target}'; "
                        f"refresh actions only run after the main pass",
                    )

    def _find_cycle(self) -> list[str] | None:
        """
        Depth-first search along predecessor edges.

        Returns the first cycle found as an id path in "requires" direction
        (each id requires or is notified by the next), or None.
        """
        preds = self.predecessor_map()
        visited: set[str] = set()
        stack: list[str] = []
        on_stack: set[str] = set()

        def visit(action_id: str) -> list[str] | None:
            visited.add(action_id)
            stack.append(action_id)
            on_stack.add(action_id)

            for dep in preds.get(action_id, []):
                if dep in on_stack:
                    return stack[stack.index(dep) :] + [dep]
                if dep not in visited:
                    found = visit(dep)
                    if found:
                        return found

            stack.pop()
            on_stack.discard(action_id)
            return None

        for action_id in self._actions:
            if action_id not in visited:
                found = visit(action_id)
                if found:
                    return found
        return None

    # =========================================================================
    # Ordering
    # =========================================================================

    def topological_order(self) -> list[str]:
        """
        Returns an execution order consistent with all edges.

        Kahn's algorithm; among ready actions the earliest inserted goes first.

        **Raises**:
            GraphCycleError: If the graph has a cycle (call validate() first
                for the full set of checks)
        """
        preds = self.predecessor_map()
        position = {action_id: i for i, action_id in enumerate(self._actions)}
        in_degree = dict.fromkeys(self._actions, 0)
        successors: dict[str, list[str]] = {action_id: [] for action_id in self._actions}
        for action_id in self._actions:
            for pred in preds[action_id]:
                if pred in successors:
                    successors[pred].append(action_id)
                    in_degree[action_id] += 1

        ready = [position[a] for a, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        ids = list(self._actions)
        order: list[str] = []

        while ready:
            action_id = ids[heapq.heappop(ready)]
            order.append(action_id)
            for succ in successors[action_id]:
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    heapq.heappush(ready, position[succ])

        if len(order) != len(self._actions):
            raise GraphCycleError(self._find_cycle() or [a for a in ids if a not in order])
        return order

    # =========================================================================
    # Introspection
    # =========================================================================

    def fingerprint(self) -> str:
        """
        Stable digest of the graph's shape.

        Covers ids, the refresh-only flag and edges in insertion order, not
        the callables. Two graphs built by the same construction sequence
        have the same fingerprint.
        """
        digest = xxhash.xxh64()
        for action_id, action in self._actions.items():
            digest.update(action_id.encode("utf-8"))
            digest.update(b"\x01" if action.refresh_only else b"\x00")
            for relation, table in ((REQUIRES, self._requires), (NOTIFIES, self._notifies)):
                digest.update(relation.encode("ascii"))
                for target in table.get(action_id, []):
                    digest.update(b"\x1f" + target.encode("utf-8"))
            digest.update(b"\x1e")
        return digest.hexdigest()

    def summary(self) -> DagSummary:
        """
        Returns a summary of the graph structure.

        Provides statistics about the graph including:
        - Total number of actions and refresh-only actions
        - Root nodes (no predecessors)
        - Leaf nodes (no dependents)
        - Maximum depth

        **Returns**:
            DagSummary with graph statistics
        """
        preds = self.predecessor_map()
        roots = [a for a in self._actions if not preds[a]]
        leaves = [a for a in self._actions if not self.dependents(a)]
        depths = self._calculate_depths()

        return DagSummary(
            total_actions=len(self._actions),
            refresh_count=sum(1 for a in self._actions.values() if a.refresh_only),
            root_count=len(roots),
            leaf_count=len(leaves),
            max_depth=max(depths.values()) if depths else 0,
            roots=roots,
            leaves=leaves,
        )

    def level_graph(self) -> str:
        """
        Returns a level-based view of the graph.

        Actions at the same level have no edges between them and may run
        concurrently when the executor allows it.

        **Example output**:
        ```
        Dependency Levels (4 actions):

        Level 0: [download]
                 ↓
        Level 1: [unzip]
                 ↓
        Level 2: [set_path] [write_ini] (2 independent actions)
                 ↓
        Level 3: [refresh_env]*

        * refresh-only
        ```
        """
        output = f"Dependency Levels ({len(self._actions)} actions):\n\n"

        depths = self._calculate_depths()
        max_level = max(depths.values()) if depths else 0
        levels: list[list[str]] = [[] for _ in range(max_level + 1)]
        for action_id in self.topological_order():
            levels[depths[action_id]].append(action_id)

        for level, action_ids in enumerate(levels):
            if not action_ids:
                continue
            labels = [
                f"[{a}]*" if self._actions[a].refresh_only else f"[{a}]" for a in action_ids
            ]
            note = f" ({len(action_ids)} independent actions)" if len(action_ids) > 1 else ""
            output += f"Level {level}: {' '.join(labels)}{note}\n"
            if level < max_level:
                output += "         ↓\n"

        if any(a.refresh_only for a in self._actions.values()):
            output += "\n* refresh-only\n"
        return output

    def _calculate_depths(self) -> dict[str, int]:
        """Depth of each action: 0 for roots, else 1 + deepest predecessor."""
        all_preds = self.predecessor_map()
        depths: dict[str, int] = {}
        for action_id in self.topological_order():
            preds = all_preds[action_id]
            depths[action_id] = 1 + max(depths[p] for p in preds) if preds else 0
        return depths

    def __repr__(self) -> str:
        return f"DependencyGraph({len(self._actions)} actions)"


def _add_edge(table: dict[str, list[str]], from_id: str, to_id: str) -> None:
    edges = table.setdefault(from_id, [])
    # Duplicate edges are harmless; keep a single copy
    if to_id not in edges:
        edges.append(to_id)


@dataclass
class DagSummary:
    """
    Summary information about a dependency graph.

    **Attributes**:
        total_actions: Total number of actions
        refresh_count: Number of refresh-only actions
        root_count: Number of actions without predecessors
        leaf_count: Number of actions without dependents
        max_depth: Maximum depth of the graph
        roots: Root action ids
        leaves: Leaf action ids
    """

    total_actions: int
    refresh_count: int
    root_count: int
    leaf_count: int
    max_depth: int
    roots: list[str]
    leaves: list[str]


__all__ = [
    "DependencyGraph",
    "DagSummary",
]
