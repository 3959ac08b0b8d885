"""
Workflow layer - Step and workflow definitions.

Workflows are DATA STRUCTURES that define what to do.
They do NOT execute anything - that's the runner's job.
The workflow factories live in workflow.provision.
"""

from .steps import Precondition, Step, StepContext, StepStatus, Workflow

__all__ = [
    "Precondition",
    "Step",
    "StepContext",
    "StepStatus",
    "Workflow",
]
