"""Core data models for convergence runs.

Defines the Action unit of work, its retry behavior and the result enums.

Design: Dependency-Free Models
These types have no dependencies on core or executor modules to
prevent circular imports and enable clean layering.
"""

from pyconverge.models.action import Action, Body, GuardProbe
from pyconverge.models.retry import RetryableError, RetryPolicy
from pyconverge.models.status import ExecutionResult, GuardStatus

__all__ = [
    "Action",
    "Body",
    "GuardProbe",
    "RetryPolicy",
    "RetryableError",
    "ExecutionResult",
    "GuardStatus",
]
