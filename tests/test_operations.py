"""Tests for individual provisioning operations and the operator commands behind the CLI."""

from unittest.mock import patch

import pytest

from namada_host_kit.errors import CommandNotFoundError, PreconditionError, VerificationError
from namada_host_kit.operations import build_env as build_env_ops
from namada_host_kit.operations import hardening as hardening_ops
from namada_host_kit.operations import node as node_ops
from namada_host_kit.operations import sandbox as sandbox_ops
from namada_host_kit.workflow import StepContext

OPERATOR = "namadaoperator"


def _executable(host_root, path):
    target = host_root / path.lstrip("/")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text("#!/bin/sh\n")
    target.chmod(0o755)
    return target


class TestHardening:
    """Tests for hardening actions."""

    def test_firewall_ports_include_extras(self, ctx):
        ctx.config.hardening.extra_ports = [26660]

        assert hardening_ops.firewall_ports(ctx) == [22, 26656, 26660]

    def test_install_packages_is_noninteractive(self, ctx, fake_runner):
        hardening_ops.install_packages(ctx, ["ufw"])

        assert ["apt-get", "update"] in fake_runner.executed
        assert fake_runner.mutations[-1] == ["apt-get", "install", "-y", "ufw"]
        assert "ufw" in fake_runner.packages

    def test_ssh_warns_without_operator_keys(self, ctx, fake_runner):
        fake_runner.add_user(OPERATOR, "sudo")

        hardening_ops.harden_ssh(ctx)

        assert any("no authorized_keys" in w for w in ctx.warnings)
        assert fake_runner.ran("systemctl restart ssh")

    def test_fail2ban_restarted_when_jail_changes(self, ctx, fake_runner):
        fake_runner.active.add("fail2ban")

        hardening_ops.configure_fail2ban(ctx)

        assert fake_runner.ran("systemctl restart fail2ban")

    def test_fail2ban_not_restarted_on_first_start(self, ctx, fake_runner):
        hardening_ops.configure_fail2ban(ctx)

        assert fake_runner.ran("systemctl enable --now fail2ban")
        assert not fake_runner.ran("systemctl restart fail2ban")

    def test_disable_only_enabled_services(self, ctx, fake_runner):
        fake_runner.enabled.update({"cups", "avahi-daemon"})
        ctx.config.hardening.services_to_disable = ["cups", "avahi-daemon", "bluetooth"]

        hardening_ops.disable_services(ctx)

        assert fake_runner.ran("systemctl disable --now cups")
        assert not fake_runner.ran("systemctl disable --now bluetooth")
        assert hardening_ops.services_disabled(ctx)

    def test_maintenance_schedule(self, ctx, host_root):
        hardening_ops.schedule_maintenance(ctx)

        content = (host_root / "etc" / "cron.d" / "namada-maintenance").read_text()
        assert "/usr/local/bin/nhk verify" in content
        assert "/usr/local/bin/nhk build-env clean" in content
        assert hardening_ops.maintenance_ready(ctx)


class TestBuildEnvironment:
    """Tests for build environment operator commands."""

    def test_run_isolated_without_build_root(self, host, app_config):
        with pytest.raises(PreconditionError, match="nhk provision build-env"):
            build_env_ops.run_isolated(host, app_config, ["cargo", "build"])

    def test_run_isolated(self, host, host_root, app_config, fake_runner):
        (host_root / "build").mkdir()
        fake_runner.tools["cargo"] = "cargo 1.82.0"

        build_env_ops.run_isolated(host, app_config, ["cargo", "build"])

        assert fake_runner.mutations[-1] == ["cargo", "build"]
        assert fake_runner.executed[-1] == ["cargo", "build"]

    def test_clean(self, host, host_root, app_config, fake_runner):
        (host_root / "build" / "target" / "release").mkdir(parents=True)

        commands = build_env_ops.clean_build_env(host, app_config)

        assert commands[0] == "find /build/tmp -mindepth 1 -delete"
        assert commands[1].startswith("rm -rf /build/target/debug/deps")
        assert len(commands) == 4
        assert len(fake_runner.mutations) == 4

    def test_clean_without_release_dir(self, host, app_config):
        assert len(build_env_ops.clean_build_env(host, app_config)) == 2

    def test_status(self, host, host_root, app_config):
        (host_root / "build" / "cargo").mkdir(parents=True)

        statuses = {str(s.path): s for s in build_env_ops.build_env_status(host, app_config)}

        assert statuses["/build/cargo"].exists
        assert not statuses["/build/target"].exists
        assert statuses["/build/target"].size_bytes is None

    def test_toolchain_ready_uses_operator_identity(self, host, app_config, fake_runner):
        fake_runner.tools["cargo"] = "cargo 1.82.0"
        ctx = StepContext(host=host, config=app_config, user=OPERATOR)

        assert build_env_ops.toolchain_ready(ctx)


class TestSandbox:
    """Tests for sandbox operations."""

    def test_policy(self, ctx, host_root):
        sandbox_ops.install_policy(ctx)

        content = (host_root / "etc" / "syd" / "namada.syd").read_text()
        assert "allow/net/bind+127.0.0.1!26657" in content
        assert sandbox_ops.policy_ready(ctx)

    def test_install_sandbox(self, host, app_config, fake_runner):
        fake_runner.tools["cargo"] = "cargo 1.82.0"
        ctx = StepContext(host=host, config=app_config, user=OPERATOR)

        sandbox_ops.install_sandbox(ctx)

        assert fake_runner.ran("git clone --depth 1")
        assert ["/build/cargo/bin/cargo", "build", "--release"] in fake_runner.executed
        assert fake_runner.ran("install -m 755 /build/target/release/syd /usr/local/bin/syd")

    def test_install_sandbox_without_cargo(self, host, app_config):
        ctx = StepContext(host=host, config=app_config, user=OPERATOR)

        with pytest.raises(CommandNotFoundError):
            sandbox_ops.install_sandbox(ctx)


class TestNode:
    """Tests for node operations."""

    def test_exec_start_sandboxed(self, app_config):
        assert node_ops.exec_start(app_config) == [
            "/usr/local/bin/syd",
            "-P",
            "/etc/syd/namada.syd",
            "--",
            "/opt/namada/bin/namada",
            "--base-dir",
            "/opt/namada/data",
            "node",
            "ledger",
            "run",
        ]

    def test_exec_start_without_sandbox(self, app_config):
        app_config.sandbox.enabled = False

        assert node_ops.exec_start(app_config)[0] == "/opt/namada/bin/namada"

    def test_install_service(self, ctx, host_root, fake_runner):
        node_ops.install_service(ctx)

        unit = (host_root / "etc" / "systemd" / "system" / "namada.service").read_text()
        assert "ExecStart=/usr/local/bin/syd -P /etc/syd/namada.syd --" in unit
        assert f"User={OPERATOR}\n" in unit
        assert fake_runner.ran("systemctl daemon-reload")
        assert node_ops.service_ready(ctx)

    def test_reinstalling_unchanged_unit_skips_reload(self, ctx, fake_runner):
        node_ops.install_service(ctx)
        fake_runner.mutations.clear()

        node_ops.install_service(ctx)

        assert not fake_runner.ran("systemctl daemon-reload")

    def test_node_config(self, ctx, host_root):
        node_ops.write_node_config(ctx)

        assert (host_root / "opt" / "namada" / "config" / "config.toml").exists()
        assert "NAMADA_CHAIN_ID=" in (host_root / "opt" / "namada" / "config" / "namada.env").read_text()
        assert node_ops.node_config_ready(ctx)

    def test_build_node_without_output(self, ctx, fake_runner):
        ctx.config.node.version = "v1.1.0"

        with pytest.raises(VerificationError, match="did not produce"):
            node_ops.build_node(ctx)

        assert fake_runner.ran("git clone --depth 1 --branch v1.1.0")
        assert fake_runner.ran("make install")

    def test_build_node_installs_binaries(self, ctx, host_root, fake_runner):
        ctx.config.node.version = "v1.1.0"
        _executable(host_root, "/build/cargo/bin/namada")
        _executable(host_root, "/build/cargo/bin/namadac")

        node_ops.build_node(ctx)

        assert fake_runner.ran(
            f"install -m 755 -o {OPERATOR} -g {OPERATOR} /build/cargo/bin/namada /opt/namada/bin/namada"
        )
        assert fake_runner.ran("install -m 755 -o")
        assert not fake_runner.ran(f"install -m 755 -o {OPERATOR} -g {OPERATOR} /build/cargo/bin/namadaw")

    def test_join_without_peers_warns(self, ctx, fake_runner):
        fake_runner.tools["namada"] = "Namada v1.1.0"

        node_ops.join_network(ctx)

        assert fake_runner.ran("/opt/namada/bin/namada client utils join-network")
        assert any("No persistent peers" in w for w in ctx.warnings)

    def test_join_with_peers(self, ctx, host_root, fake_runner):
        fake_runner.tools["namada"] = "Namada v1.1.0"
        chain = host_root / "opt" / "namada" / "data" / ctx.config.node.chain_id
        chain.mkdir(parents=True)
        (chain / "config.toml").write_text('persistent_peers = "tcp://abc@1.2.3.4:26656"\n')

        node_ops.join_network(ctx)

        assert ctx.warnings == []
        assert node_ops.chain_joined(ctx)

    def test_start_node(self, ctx, fake_runner):
        node_ops.start_node(ctx)

        assert "namada" in fake_runner.active

    def test_start_node_that_exits(self, ctx):
        with patch("namada_host_kit.operations.node.service_active", return_value=False):
            with pytest.raises(VerificationError, match="did not stay active"):
                node_ops.start_node(ctx)

    def test_control_service(self, host, app_config, fake_runner):
        node_ops.control_service(host, app_config, "restart")

        assert fake_runner.mutations[-1] == ["systemctl", "restart", "namada"]

    def test_control_service_rejects_unknown_action(self, host, app_config):
        with pytest.raises(ValueError, match="Unknown service action"):
            node_ops.control_service(host, app_config, "reload")

    def test_service_status(self, host, host_root, app_config, fake_runner):
        fake_runner.active.add("namada")
        _executable(host_root, "/opt/namada/bin/namada")

        status = node_ops.service_status(host, app_config)

        assert status["active"] == "active"
        assert status["enabled"] == "disabled"
        assert status["binary"] == "/opt/namada/bin/namada"
        assert status["sandbox"] == "missing"
        assert status["chain"] == "not joined"
        assert status["version"] == "unknown"
        assert status["running_as"] == "not running"
        assert status["data_dir"] == "missing"

    def test_service_status_monitoring(self, host, host_root, app_config, fake_runner):
        _executable(host_root, "/opt/namada/bin/namada")
        data = host_root / "opt" / "namada" / "data"
        data.mkdir(parents=True)
        data.chmod(0o700)
        kptr = host_root / "proc" / "sys" / "kernel" / "kptr_restrict"
        kptr.parent.mkdir(parents=True)
        kptr.write_text("2\n")
        auth_log = host_root / "var" / "log" / "auth.log"
        auth_log.parent.mkdir(parents=True)
        auth_log.write_text(
            "sshd[1]: Failed password for root from 203.0.113.9 port 4242 ssh2\n"
            "sshd[2]: Accepted publickey for namadaoperator\n"
            "sshd[3]: Failed password for invalid user admin from 203.0.113.9 port 4243 ssh2\n"
        )
        fake_runner.tools["namada"] = "Namada v1.1.0"
        fake_runner.tools["ps"] = OPERATOR
        fake_runner.tools["du"] = "3145728\t/opt/namada/data"
        fake_runner.tools["ss"] = (
            "Netid State  Recv-Q Send-Q Local Address:Port Peer Address:Port\n"
            "tcp   LISTEN 0      4096   0.0.0.0:26656      0.0.0.0:*"
        )

        status = node_ops.service_status(host, app_config)

        assert status["version"] == "Namada v1.1.0"
        assert status["running_as"] == OPERATOR
        assert status["p2p_port"] == "26656 listening"
        assert status["rpc_port"] == "26657 not listening"
        assert status["data_dir"] == "/opt/namada/data (700)"
        assert status["data_size"] == "3.0 MB"
        assert status["kptr_restrict"] == "2"
        assert status["failed_ssh_logins"] == "2"

    def test_backup(self, host, host_root, app_config, fake_runner):
        archive = node_ops.backup_node(host, app_config)

        assert archive.parent == app_config.paths.node_backups_dir
        assert archive.name.startswith("namada-")
        argv = fake_runner.mutations[-1]
        assert argv[:2] == ["tar", "-czf"]
        assert argv[-2:] == ["data", "config"]
        assert str(host_root / "opt" / "namada") in argv

    @pytest.mark.parametrize(
        ("machine", "expected"), [("x86_64", "amd64"), ("aarch64", "arm64"), ("riscv64", "riscv64")]
    )
    def test_get_arch(self, machine, expected):
        with patch("namada_host_kit.operations.node.platform.machine", return_value=machine):
            assert node_ops.get_arch() == expected

    def test_resolve_pinned_version(self, app_config):
        app_config.node.version = "v1.1.0"

        assert node_ops.resolve_release_tag(app_config.node) == "v1.1.0"
