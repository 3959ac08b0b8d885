"""Tests for CLI commands using Typer's CliRunner."""

from unittest.mock import patch

import pytest

from namada_host_kit.cli import app

OPERATOR = "namadaoperator"


@pytest.fixture
def use_config(app_config):
    """Serve the test configuration instead of searching the real config paths."""
    with (
        patch("namada_host_kit.cli.load_config", return_value=app_config),
        patch("namada_host_kit.cli.configure_logging"),
    ):
        yield app_config


@pytest.fixture
def use_host(host):
    """Make every command act on the simulated host."""
    with patch("namada_host_kit.cli.Host", return_value=host):
        yield host


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_version_option(self, cli_runner):
        """Test --version displays version."""
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_help_option(self, cli_runner):
        """Test --help lists the command groups."""
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "provision" in result.output
        assert "verify" in result.output
        assert "build-env" in result.output


class TestCheckCommand:
    """Tests for check command."""

    def test_check_shows_dependencies(self, cli_runner, _mock_shutil_which):
        """Test check command shows dependency status."""
        result = cli_runner.invoke(app, ["check"])
        assert result.exit_code == 0
        assert "System Dependencies" in result.output
        assert "nhk provision harden" in result.output


class TestConfigErrors:
    """Tests for configuration handling."""

    def test_invalid_config_is_usage_error(self, cli_runner, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("operator:\n  username: root\n")

        result = cli_runner.invoke(app, ["verify", "--config", str(config_file)])

        assert result.exit_code == 2
        assert "non-root account" in result.output

    def test_missing_config_file(self, cli_runner):
        result = cli_runner.invoke(app, ["verify", "--config", "/nonexistent/config.yaml"])
        assert result.exit_code == 2


class TestProvisionCommand:
    """Tests for provision command."""

    def test_unknown_workflow(self, cli_runner, use_config):
        result = cli_runner.invoke(app, ["provision", "everything", "--yes"])

        assert result.exit_code == 2
        assert "Unknown workflow" in result.output

    def test_declined_confirmation_changes_nothing(self, cli_runner, use_config, use_host, fake_runner):
        result = cli_runner.invoke(app, ["provision", "operator"], input="n\n")

        assert result.exit_code == 0
        assert "Aborted." in result.output
        assert fake_runner.mutations == []

    def test_operator_workflow(self, cli_runner, use_config, use_host, fake_runner):
        result = cli_runner.invoke(app, ["provision", "operator", "--yes"])

        assert result.exit_code == 0, result.output
        assert "Temporary password" in result.output
        assert "Verification Results" in result.output
        assert OPERATOR in fake_runner.users

    def test_rerun_reports_nothing_applied(self, cli_runner, use_config, use_host, fake_runner):
        cli_runner.invoke(app, ["provision", "operator", "--yes"])

        result = cli_runner.invoke(app, ["provision", "operator", "--yes"])

        assert result.exit_code == 0
        assert "Applied: 0" in result.output
        assert "Temporary password" not in result.output

    def test_dry_run(self, cli_runner, use_config, dry_run_host, host_root):
        dry_run_host.runner.add_user(OPERATOR, "sudo")

        with patch("namada_host_kit.cli.Host", return_value=dry_run_host):
            result = cli_runner.invoke(app, ["provision", "operator", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        assert "Verification Results" not in result.output
        assert not (host_root / "etc" / "sudoers.d").exists()

    def test_failure_exits_nonzero(self, cli_runner, use_config, use_host, fake_runner):
        fake_runner.fail("useradd", stderr="useradd: cannot lock /etc/passwd")

        result = cli_runner.invoke(app, ["provision", "operator", "--yes"])

        assert result.exit_code == 1
        assert "Workflow aborted" in result.output

    def test_preflight_failure(self, cli_runner, use_config, use_host, host_root):
        (host_root / "etc" / "os-release").write_text("ID=fedora\n")

        result = cli_runner.invoke(app, ["provision", "operator", "--yes"])

        assert result.exit_code == 1
        assert "Preflight check failed" in result.output


class TestVerifyCommand:
    """Tests for verify and status commands."""

    def test_verify_is_advisory(self, cli_runner, use_config, use_host):
        """Test failed checks are reported without a failing exit code."""
        result = cli_runner.invoke(app, ["verify"])

        assert result.exit_code == 0
        assert "check(s) failed" in result.output

    def test_status(self, cli_runner, use_config, use_host, fake_runner):
        result = cli_runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Provisioning Status" in result.output
        assert "pending" in result.output
        assert fake_runner.mutations == []


class TestNodeCommands:
    """Tests for node service commands."""

    def test_restart(self, cli_runner, use_config, use_host, fake_runner):
        result = cli_runner.invoke(app, ["node", "restart"])

        assert result.exit_code == 0
        assert fake_runner.mutations[-1] == ["systemctl", "restart", "namada"]

    def test_failed_action(self, cli_runner, use_config, use_host, fake_runner):
        fake_runner.fail("systemctl stop", returncode=5, stderr="Unit namada.service not loaded.")

        result = cli_runner.invoke(app, ["node", "stop"])

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_status(self, cli_runner, use_config, use_host):
        result = cli_runner.invoke(app, ["node", "status"])

        assert result.exit_code == 0
        assert "not joined" in result.output


class TestBuildEnvCommands:
    """Tests for build-env commands."""

    def test_run_without_environment(self, cli_runner, use_config, use_host):
        result = cli_runner.invoke(app, ["build-env", "run", "--", "cargo", "build"])

        assert result.exit_code == 1
        assert "Build environment not found" in result.output

    def test_clean(self, cli_runner, use_config, use_host, fake_runner):
        result = cli_runner.invoke(app, ["build-env", "clean"])

        assert result.exit_code == 0
        assert "Build environment cleaned" in result.output
        assert len(fake_runner.mutations) == 2
