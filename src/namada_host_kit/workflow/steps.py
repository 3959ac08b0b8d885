"""Step definitions for provisioning workflows."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..config import AppConfig, BuildEnvironment
from ..host import Host

logger = logging.getLogger(__name__)


class StepStatus(Enum):
    """Status of a step in a workflow."""

    PENDING = "pending"
    CHECKING = "checking"
    SKIPPED = "skipped"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    NOT_RUN = "not_run"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.SKIPPED, StepStatus.APPLIED, StepStatus.FAILED, StepStatus.NOT_RUN)


@dataclass
class StepContext:
    """
    Everything a step body needs.

    ``user`` is the privilege context the step runs under (None = root);
    ``build_env`` is the explicit environment handed to toolchain commands.
    """

    host: Host
    config: AppConfig
    user: str | None = None
    build_env: BuildEnvironment | None = None
    warnings: list[str] = field(default_factory=list)
    outputs: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.build_env is None:
            self.build_env = BuildEnvironment.from_config(self.config)

    @property
    def operator(self) -> str:
        return self.config.operator.username

    def run(self, argv: list, **kwargs: Any):
        """Run a command under this step's privilege context."""
        kwargs.setdefault("user", self.user)
        return self.host.runner.run(argv, **kwargs)

    def run_build(self, argv: list, **kwargs: Any):
        """Run a toolchain command with the explicit build environment."""
        kwargs.setdefault("env", self.build_env.as_env())
        return self.run(argv, **kwargs)

    def warn(self, message: str) -> None:
        """Record a soft warning; execution continues."""
        logger.warning(message)
        self.warnings.append(message)


Predicate = Callable[[StepContext], bool]
Action = Callable[[StepContext], None]


@dataclass
class Precondition:
    """Something that must hold before a step may run (e.g. the operator account exists)."""

    description: str
    predicate: Predicate

    def holds(self, ctx: StepContext) -> bool:
        return self.predicate(ctx)


@dataclass
class Step:
    """
    One idempotent unit of host mutation.

    Steps are data - the guard says whether the target condition already
    holds, the action makes it hold, and verify confirms it afterwards.
    The runner drives the state machine.
    """

    name: str
    description: str
    action: Action
    guard: Predicate | None = None
    verify: Predicate | None = None
    requires: list[Precondition] = field(default_factory=list)
    # None runs as root; a user name runs the step's commands as that account
    run_as: str | None = None
    # Set when added to a workflow
    ordinal: int = 0
    # Runtime state (set by runner)
    status: StepStatus = StepStatus.PENDING
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    outputs: dict[str, str] = field(default_factory=dict)

    def reset(self) -> None:
        self.status = StepStatus.PENDING
        self.error = None
        self.warnings = []
        self.outputs = {}


@dataclass
class Workflow:
    """
    An ordered collection of steps.

    Workflows define WHAT to do, not HOW to execute it.
    """

    name: str
    description: str
    steps: list[Step] = field(default_factory=list)
    # Checked once before the first step (preflight)
    preconditions: list[Precondition] = field(default_factory=list)

    def add_step(self, step: Step) -> None:
        """Append a step and assign its position."""
        step.ordinal = len(self.steps) + 1
        self.steps.append(step)

    def extend(self, other: "Workflow") -> None:
        """Append every step of another workflow, keeping preconditions unique."""
        for step in other.steps:
            self.add_step(step)
        for precondition in other.preconditions:
            if all(p.description != precondition.description for p in self.preconditions):
                self.preconditions.append(precondition)

    def get_step(self, name: str) -> Step | None:
        """Get a step by name."""
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def get_pending_steps(self) -> list[Step]:
        return [s for s in self.steps if s.status == StepStatus.PENDING]

    def is_complete(self) -> bool:
        return all(s.status.is_terminal for s in self.steps)
