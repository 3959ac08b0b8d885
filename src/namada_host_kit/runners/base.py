"""Base runner classes and protocols."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from ..workflow.steps import StepStatus

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..host import Host
    from ..workflow import Step, Workflow


@dataclass
class StepOutcome:
    """What happened to one step."""

    name: str
    ordinal: int
    status: StepStatus
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    outputs: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_step(cls, step: "Step") -> "StepOutcome":
        return cls(
            name=step.name,
            ordinal=step.ordinal,
            status=step.status,
            error=step.error,
            warnings=list(step.warnings),
            outputs=dict(step.outputs),
        )


@dataclass
class WorkflowResult:
    """Result of running a workflow. Printed once, never persisted."""

    workflow_name: str
    success: bool = True
    outcomes: list[StepOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def _names(self, status: StepStatus) -> list[str]:
        return [o.name for o in self.outcomes if o.status == status]

    @property
    def applied(self) -> list[str]:
        return self._names(StepStatus.APPLIED)

    @property
    def skipped(self) -> list[str]:
        return self._names(StepStatus.SKIPPED)

    @property
    def failed(self) -> list[str]:
        return self._names(StepStatus.FAILED)

    @property
    def not_run(self) -> list[str]:
        return self._names(StepStatus.NOT_RUN)

    @property
    def warnings(self) -> list[str]:
        return [w for o in self.outcomes for w in o.warnings]

    @property
    def outputs(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for outcome in self.outcomes:
            merged.update(outcome.outputs)
        return merged

    def get_outcome(self, name: str) -> StepOutcome | None:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        return None


@dataclass
class RunnerCallbacks:
    """
    Callbacks for runner progress reporting.

    Allows CLI to display progress without coupling runner to Rich/UI.
    All callbacks are optional - if None, no callback is made.
    """

    # Workflow lifecycle
    on_workflow_start: Callable[[str, int], None] | None = None  # name, total_steps
    on_workflow_complete: Callable[[WorkflowResult], None] | None = None

    # Step lifecycle
    on_step_start: Callable[[str, int, str], None] | None = None  # name, ordinal, description
    on_step_complete: Callable[[StepOutcome], None] | None = None

    # Soft warnings raised while a step runs
    on_step_warning: Callable[[str, str], None] | None = None  # name, message


class RunnerProtocol(Protocol):
    """Protocol for workflow runners."""

    def run(
        self,
        workflow: "Workflow",
        host: "Host",
        config: "AppConfig",
        callbacks: RunnerCallbacks | None = None,
    ) -> WorkflowResult:
        """
        Execute a workflow.

        Args:
            workflow: The workflow to execute
            host: Host the steps act on
            config: Application configuration handed to every step
            callbacks: Optional callbacks for progress reporting

        Returns:
            WorkflowResult with per-step outcomes
        """
        ...
