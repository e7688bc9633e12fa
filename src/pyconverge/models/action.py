"""
Action: the unit of provisioning work.

An Action is a named, retryable, timeout-bounded operation with an optional
guard and lists of "requires" and "notifies" edges. The engine never looks
inside the body or guard; they are opaque callables that receive the run
context.

Example:
    ```python
    unzip = Action(
        "unzip",
        body=extract_archive,
        guard=probes.path_exists(ctx_key="php_dir"),
        requires=["download"],
        retry_policy=RetryPolicy(max_attempts=2, backoff_delay=1.0),
        timeout=120,
    )

    # Or from a configuration mapping
    unzip = Action.from_options(
        "unzip",
        extract_archive,
        {"maxAttempts": 2, "backoffDelay": 1.0, "timeout": 120},
        requires=["download"],
    )
    ```
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from pyconverge.errors import InvalidOptionsError
from pyconverge.models.retry import OPTION_ALIASES, RetryPolicy, to_seconds
from pyconverge.models.status import GuardStatus

if TYPE_CHECKING:
    from pyconverge.core.context import RunContext

Body = Callable[["RunContext"], Union[Any, Awaitable[Any]]]
GuardProbe = Callable[
    ["RunContext"], Union[bool, GuardStatus, Awaitable[Union[bool, GuardStatus]]]
]

RECOGNIZED_OPTIONS = frozenset(OPTION_ALIASES) | {"timeout"}


def _id_tuple(ids: str | Iterable[str] | None, relation: str, owner: str) -> tuple[str, ...]:
    """Normalise an edge list to an ordered, de-duplicated tuple of ids."""
    if ids is None:
        return ()
    if isinstance(ids, str):
        ids = [ids]
    result: list[str] = []
    for target in ids:
        if not isinstance(target, str) or not target:
            raise InvalidOptionsError(
                f"Action '{owner}' {relation} entries must be non-empty strings, got {target!r}"
            )
        if target not in result:
            result.append(target)
    return tuple(result)


@dataclass(frozen=True)
class Action:
    """
    A named, idempotency-guarded unit of provisioning work.

    Attributes:
        id: Unique identifier, stable across runs
        body: Effectful operation; raising (or returning a non-zero int exit
            status) fails the attempt
        guard: Optional read-only probe; SATISFIED/True skips the body
        requires: Ids that must reach a terminal result before this starts
        notifies: Refresh-only ids to trigger when the body actually ran
        retry_policy: Attempt budget and fixed backoff delay
        timeout: Bound in seconds for one attempt (and the guard); 0 = unbounded
        refresh_only: Runs only when notified, with its guard bypassed
        description: Free text for reports
    """

    id: str
    body: Body
    guard: GuardProbe | None = None
    requires: tuple[str, ...] = ()
    notifies: tuple[str, ...] = ()
    retry_policy: RetryPolicy = field(default_factory=lambda: RetryPolicy.NONE)
    timeout: float = 0.0
    refresh_only: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise InvalidOptionsError(f"Action id must be a non-empty string, got {self.id!r}")
        if not callable(self.body):
            raise InvalidOptionsError(f"Action '{self.id}' body must be callable")
        if self.guard is not None and not callable(self.guard):
            raise InvalidOptionsError(f"Action '{self.id}' guard must be callable or None")
        if not isinstance(self.retry_policy, RetryPolicy):
            raise InvalidOptionsError(
                f"Action '{self.id}' retry_policy must be a RetryPolicy, "
                f"got {type(self.retry_policy).__name__}"
            )
        object.__setattr__(self, "requires", _id_tuple(self.requires, "requires", self.id))
        object.__setattr__(self, "notifies", _id_tuple(self.notifies, "notifies", self.id))
        object.__setattr__(self, "timeout", to_seconds(self.timeout, "timeout"))

    @classmethod
    def from_options(
        cls,
        id: str,
        body: Body,
        options: Mapping[str, Any] | None = None,
        *,
        guard: GuardProbe | None = None,
        requires: Iterable[str] | None = None,
        notifies: Iterable[str] | None = None,
        refresh_only: bool = False,
        description: str = "",
    ) -> Action:
        """
        Construct an Action from a configuration mapping.

        Recognised options: ``max_attempts``/``maxAttempts`` (int >= 1),
        ``backoff_delay``/``backoffDelay`` (seconds or timedelta, >= 0),
        ``timeout`` (seconds or timedelta, >= 0, 0 = unbounded).

        Raises:
            InvalidOptionsError: On unknown keys or out-of-range values
        """
        options = dict(options or {})
        unknown = sorted(set(options) - RECOGNIZED_OPTIONS)
        if unknown:
            raise InvalidOptionsError(
                f"Action '{id}' has unrecognized options {unknown}; "
                f"expected a subset of {sorted(RECOGNIZED_OPTIONS)}"
            )
        return cls(
            id=id,
            body=body,
            guard=guard,
            requires=tuple(requires or ()),
            notifies=tuple(notifies or ()),
            retry_policy=RetryPolicy.from_options(options),
            timeout=options.get("timeout", 0.0),
            refresh_only=refresh_only,
            description=description,
        )

    @property
    def bounded(self) -> bool:
        """True if attempts are bounded by a timeout."""
        return self.timeout > 0

    def __repr__(self) -> str:
        kind = "refresh-only " if self.refresh_only else ""
        return (
            f"Action({kind}{self.id!r}, requires={list(self.requires)}, "
            f"notifies={list(self.notifies)}, {self.retry_policy!r}, timeout={self.timeout:g})"
        )
