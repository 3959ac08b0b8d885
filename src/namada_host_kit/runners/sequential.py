"""Sequential runner - Executes workflow steps one at a time."""

import logging

from ..config import AppConfig
from ..errors import PreconditionError, ProvisionError, VerificationError
from ..host import Host
from ..workflow import Step, StepContext, StepStatus, Workflow
from .base import RunnerCallbacks, StepOutcome, WorkflowResult

logger = logging.getLogger(__name__)


class SequentialRunner:
    """
    Sequential workflow runner.

    Executes steps one at a time in workflow order. Each step is checked
    (preconditions, then guard) and only applied when its guard reports the
    target state is missing. The first failure aborts the workflow; steps
    after it are reported as NOT_RUN. There are no retries.

    In a dry run nothing is applied, so a step whose requirement would only
    be met by an earlier planned step is reported NOT_RUN instead of FAILED.
    """

    def __init__(self, dry_run: bool = False):
        """
        Initialize the runner.

        Args:
            dry_run: If True, evaluate guards but never invoke actions
        """
        self.dry_run = dry_run

    def run(
        self,
        workflow: Workflow,
        host: Host,
        config: AppConfig,
        callbacks: RunnerCallbacks | None = None,
    ) -> WorkflowResult:
        """
        Execute a provisioning workflow.

        Args:
            workflow: The workflow to execute
            host: Host the steps act on
            config: Application configuration handed to every step
            callbacks: Optional callbacks for progress reporting

        Returns:
            WorkflowResult with per-step outcomes
        """
        cb = callbacks or RunnerCallbacks()
        result = WorkflowResult(workflow_name=workflow.name)

        for step in workflow.steps:
            step.reset()

        if cb.on_workflow_start:
            cb.on_workflow_start(workflow.name, len(workflow.steps))

        logger.info(f"Starting workflow {workflow.name} ({len(workflow.steps)} steps)")

        # Preflight
        preflight_ctx = StepContext(host=host, config=config)
        for precondition in workflow.preconditions:
            if not self._holds(precondition, preflight_ctx):
                message = f"Preflight check failed: {precondition.description}"
                logger.error(message)
                result.success = False
                result.errors.append(message)
                break

        planned = False
        for step in workflow.steps:
            if not result.success:
                step.status = StepStatus.NOT_RUN
                result.outcomes.append(StepOutcome.from_step(step))
                continue

            if cb.on_step_start:
                cb.on_step_start(step.name, step.ordinal, step.description)

            self._execute_step(step, host, config, cb, after_planned=planned)
            planned = planned or (self.dry_run and step.status == StepStatus.APPLIED)
            outcome = StepOutcome.from_step(step)
            result.outcomes.append(outcome)

            if step.status == StepStatus.FAILED:
                result.success = False
                result.errors.append(f"Step {step.name}: {step.error}")

            if cb.on_step_complete:
                cb.on_step_complete(outcome)

        logger.info(
            f"Workflow {workflow.name} {'completed' if result.success else 'aborted'}: "
            f"{len(result.applied)} applied, {len(result.skipped)} skipped, "
            f"{len(result.failed)} failed, {len(result.not_run)} not run"
        )

        if cb.on_workflow_complete:
            cb.on_workflow_complete(result)

        return result

    @staticmethod
    def _holds(precondition, ctx: StepContext) -> bool:
        try:
            return bool(precondition.holds(ctx))
        except Exception as e:
            logger.debug(f"Precondition '{precondition.description}' raised: {e}")
            return False

    def _execute_step(
        self, step: Step, host: Host, config: AppConfig, cb: RunnerCallbacks, after_planned: bool = False
    ) -> None:
        """Drive one step through CHECKING and, if needed, APPLYING."""
        ctx = StepContext(host=host, config=config, user=step.run_as)
        step.status = StepStatus.CHECKING

        try:
            for precondition in step.requires:
                if self._holds(precondition, ctx):
                    continue
                if self.dry_run and after_planned:
                    step.status = StepStatus.NOT_RUN
                    step.error = f"requires {precondition.description} (pending earlier changes)"
                    logger.info(f"[DRY RUN] [{step.ordinal}] {step.name}: {step.error}")
                    return
                raise PreconditionError(f"requires {precondition.description}")

            if step.guard is not None and step.guard(ctx):
                step.status = StepStatus.SKIPPED
                logger.info(f"[{step.ordinal}] {step.name}: already satisfied")
                return

            step.status = StepStatus.APPLYING
            if self.dry_run:
                logger.info(f"[DRY RUN] Would apply [{step.ordinal}] {step.name}: {step.description}")
                step.status = StepStatus.APPLIED
                return

            logger.info(f"[{step.ordinal}] {step.name}: {step.description}")
            step.action(ctx)

            if step.verify is not None and not step.verify(ctx):
                raise VerificationError("post-condition does not hold after apply")

            step.status = StepStatus.APPLIED

        except ProvisionError as e:
            step.status = StepStatus.FAILED
            step.error = f"{type(e).__name__}: {e}"
            logger.error(f"[{step.ordinal}] {step.name} failed: {step.error}")
        except Exception as e:
            step.status = StepStatus.FAILED
            step.error = f"{type(e).__name__}: {e}"
            logger.exception(f"[{step.ordinal}] {step.name} failed unexpectedly")
        finally:
            step.warnings = list(ctx.warnings)
            step.outputs = dict(ctx.outputs)
            if cb.on_step_warning:
                for message in step.warnings:
                    cb.on_step_warning(step.name, message)
