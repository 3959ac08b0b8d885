"""
Runners layer - Execution engines for workflows.

Runners execute workflows, driving each step's state machine and
reporting progress through callbacks.
"""

from .base import RunnerCallbacks, RunnerProtocol, StepOutcome, WorkflowResult
from .sequential import SequentialRunner

__all__ = [
    "RunnerCallbacks",
    "RunnerProtocol",
    "SequentialRunner",
    "StepOutcome",
    "WorkflowResult",
]
