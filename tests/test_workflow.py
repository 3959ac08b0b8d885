"""Tests for step/workflow definitions and the provisioning factories."""

import pytest

from namada_host_kit.workflow import Precondition, Step, StepContext, StepStatus, Workflow
from namada_host_kit.workflow.provision import (
    WORKFLOWS,
    build_workflow,
    create_full_workflow,
    create_join_workflow,
    create_operator_workflow,
    has_privileges,
    is_ubuntu,
)


def _noop(ctx):
    return None


class TestStepStatus:
    """Tests for StepStatus enum."""

    def test_terminal_states(self):
        assert StepStatus.SKIPPED.is_terminal
        assert StepStatus.APPLIED.is_terminal
        assert StepStatus.FAILED.is_terminal
        assert StepStatus.NOT_RUN.is_terminal
        assert not StepStatus.PENDING.is_terminal
        assert not StepStatus.CHECKING.is_terminal
        assert not StepStatus.APPLYING.is_terminal


class TestStep:
    """Tests for Step dataclass."""

    def test_defaults(self):
        step = Step(name="s", description="d", action=_noop)

        assert step.status == StepStatus.PENDING
        assert step.guard is None
        assert step.run_as is None
        assert step.requires == []

    def test_reset(self):
        step = Step(name="s", description="d", action=_noop)
        step.status = StepStatus.FAILED
        step.error = "boom"
        step.warnings.append("w")
        step.outputs["k"] = "v"

        step.reset()

        assert step.status == StepStatus.PENDING
        assert step.error is None
        assert step.warnings == []
        assert step.outputs == {}


class TestWorkflow:
    """Tests for Workflow dataclass."""

    def test_add_step_assigns_ordinals(self):
        workflow = Workflow(name="w", description="d")
        workflow.add_step(Step(name="a", description="", action=_noop))
        workflow.add_step(Step(name="b", description="", action=_noop))

        assert [s.ordinal for s in workflow.steps] == [1, 2]
        assert workflow.get_step("b").ordinal == 2
        assert workflow.get_step("missing") is None

    def test_extend_renumbers_and_dedupes_preconditions(self):
        shared = Precondition("host runs Ubuntu", lambda ctx: True)
        first = Workflow(name="a", description="", preconditions=[shared])
        first.add_step(Step(name="a1", description="", action=_noop))
        second = Workflow(name="b", description="", preconditions=[Precondition("host runs Ubuntu", lambda ctx: True)])
        second.add_step(Step(name="b1", description="", action=_noop))

        combined = Workflow(name="all", description="")
        combined.extend(first)
        combined.extend(second)

        assert [s.name for s in combined.steps] == ["a1", "b1"]
        assert [s.ordinal for s in combined.steps] == [1, 2]
        assert len(combined.preconditions) == 1

    def test_pending_and_complete(self):
        workflow = Workflow(name="w", description="")
        workflow.add_step(Step(name="a", description="", action=_noop))

        assert len(workflow.get_pending_steps()) == 1
        assert not workflow.is_complete()

        workflow.steps[0].status = StepStatus.SKIPPED
        assert workflow.is_complete()


class TestStepContext:
    """Tests for StepContext command helpers."""

    def test_run_uses_step_identity(self, host, app_config, fake_runner):
        ctx = StepContext(host=host, config=app_config, user="namadaoperator")

        ctx.run(["whoami"])

        assert fake_runner.executed[-1] == ["whoami"]
        assert fake_runner.mutations[-1] == ["whoami"]

    def test_run_build_passes_build_environment(self, host, app_config, fake_runner):
        fake_runner.tools["cargo"] = "cargo 1.82.0"
        ctx = StepContext(host=host, config=app_config, user="namadaoperator")

        result = ctx.run_build(["cargo", "--version"])

        assert "CARGO_HOME=/build/cargo" in result.argv
        assert result.argv[:4] == ["runuser", "-u", "namadaoperator", "--"]

    def test_warn_records_message(self, ctx):
        ctx.warn("no keys")

        assert ctx.warnings == ["no keys"]


class TestPreflight:
    """Tests for workflow-level preconditions."""

    def test_ubuntu_detected(self, ctx):
        assert is_ubuntu(ctx)

    def test_other_distribution(self, ctx, host_root):
        (host_root / "etc" / "os-release").write_text("ID=fedora\n")

        assert not is_ubuntu(ctx)

    def test_ubuntu_derivative(self, ctx, host_root):
        (host_root / "etc" / "os-release").write_text('ID=pop\nID_LIKE="ubuntu debian"\n')

        assert is_ubuntu(ctx)

    def test_root_has_privileges(self, ctx):
        assert has_privileges(ctx)


class TestFactories:
    """Tests for the provisioning workflow factories."""

    def test_operator_workflow_order(self, app_config):
        workflow = create_operator_workflow(app_config)

        assert [s.name for s in workflow.steps] == [
            "create-operator-account",
            "operator-ssh-access",
            "operator-password",
            "operator-sudoers",
            "operator-profile",
            "operator-welcome",
        ]
        assert {p.description for p in workflow.preconditions} == {
            "host runs Ubuntu",
            "running as root or sudo is available",
        }

    def test_sudoers_requires_operator(self, app_config):
        step = create_operator_workflow(app_config).get_step("operator-sudoers")

        assert [p.description for p in step.requires] == ["operator account exists"]

    def test_toolchain_runs_as_operator(self, app_config):
        step = create_full_workflow(app_config).get_step("rust-toolchain")

        assert step.run_as == app_config.operator.username

    def test_full_workflow_stage_order(self, app_config):
        names = [s.name for s in create_full_workflow(app_config).steps]

        assert names.index("create-operator-account") < names.index("security-packages")
        assert names.index("node-directories") < names.index("build-directories")
        assert names.index("rust-toolchain") < names.index("install-sandbox")
        assert names.index("install-sandbox") < names.index("node-service")
        assert "join-network" not in names

    def test_full_workflow_with_join(self, app_config):
        names = [s.name for s in create_full_workflow(app_config, join=True).steps]

        assert names[-2:] == ["join-network", "start-node"]

    def test_sandbox_disabled(self, app_config):
        app_config.sandbox.enabled = False

        names = [s.name for s in create_full_workflow(app_config).steps]

        assert "install-sandbox" not in names

    def test_step_names_unique(self, app_config):
        names = [s.name for s in create_full_workflow(app_config, join=True).steps]

        assert len(names) == len(set(names))

    def test_join_workflow(self, app_config):
        workflow = create_join_workflow(app_config)
        start = workflow.get_step("start-node")

        assert {p.description for p in start.requires} == {"node service installed", "network joined"}

    @pytest.mark.parametrize("name", list(WORKFLOWS))
    def test_build_workflow(self, name, app_config):
        workflow = build_workflow(name, app_config)

        assert workflow.steps
        assert all(s.guard is not None for s in workflow.steps)

    def test_build_workflow_unknown(self, app_config):
        with pytest.raises(KeyError):
            build_workflow("everything", app_config)
