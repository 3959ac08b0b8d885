"""
Typed configuration templates.

Each template is a small dataclass that renders the full content of one
configuration file. ``build()`` validates the values first and raises
TemplateError instead of producing a file the consuming daemon would reject.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path

from .config import BuildEnvironment
from .errors import TemplateError

_USERNAME = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
_SYSCTL_KEY = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)+$")
_SIZE = re.compile(r"^\d+[KMG]?$")
_CRON_FIELD = re.compile(r"^[\d*/,-]+$")


def _valid_port(port: int) -> bool:
    return isinstance(port, int) and 0 < port < 65536


def _single_line(value: str) -> bool:
    return "\n" not in str(value)


class Template:
    """Base class for rendered configuration files."""

    def render(self) -> str:
        raise NotImplementedError

    def validate(self) -> list[str]:
        return []

    def build(self) -> str:
        """Validate then render."""
        errors = self.validate()
        if errors:
            raise TemplateError(f"{type(self).__name__}: {'; '.join(errors)}")
        return self.render()


# =============================================================================
# Hardening
# =============================================================================


@dataclass
class SysctlSettings(Template):
    settings: dict[str, str]

    def render(self) -> str:
        lines = ["# Kernel hardening managed by namada-host-kit"]
        lines.extend(f"{key} = {value}" for key, value in self.settings.items())
        return "\n".join(lines) + "\n"

    def validate(self) -> list[str]:
        errors = []
        for key, value in self.settings.items():
            if not _SYSCTL_KEY.match(key):
                errors.append(f"invalid sysctl key: {key!r}")
            if str(value).strip() == "" or not _single_line(value):
                errors.append(f"invalid value for {key}")
        return errors


@dataclass
class Fail2banJail(Template):
    bantime: int = 3600
    findtime: int = 600
    maxretry: int = 3
    ssh_port: int = 22

    def render(self) -> str:
        port = "ssh" if self.ssh_port == 22 else str(self.ssh_port)
        return (
            "[DEFAULT]\n"
            f"bantime = {self.bantime}\n"
            f"findtime = {self.findtime}\n"
            f"maxretry = {self.maxretry}\n"
            "\n"
            "[sshd]\n"
            "enabled = true\n"
            f"port = {port}\n"
            "filter = sshd\n"
            "logpath = /var/log/auth.log\n"
            f"maxretry = {self.maxretry}\n"
            f"bantime = {self.bantime}\n"
        )

    def validate(self) -> list[str]:
        errors = [
            f"{name} must be positive"
            for name in ("bantime", "findtime", "maxretry")
            if int(getattr(self, name)) <= 0
        ]
        if not _valid_port(self.ssh_port):
            errors.append(f"invalid ssh port: {self.ssh_port}")
        return errors


@dataclass
class SshdHardening(Template):
    """sshd_config.d drop-in; only the listed accounts may log in, with keys only."""

    allow_users: list[str]
    port: int = 22
    max_auth_tries: int = 3
    client_alive_interval: int = 300
    client_alive_count_max: int = 2

    def render(self) -> str:
        return (
            "# SSH hardening managed by namada-host-kit\n"
            f"Port {self.port}\n"
            "PermitRootLogin no\n"
            "PasswordAuthentication no\n"
            "KbdInteractiveAuthentication no\n"
            "PubkeyAuthentication yes\n"
            "AuthorizedKeysFile .ssh/authorized_keys\n"
            f"MaxAuthTries {self.max_auth_tries}\n"
            f"ClientAliveInterval {self.client_alive_interval}\n"
            f"ClientAliveCountMax {self.client_alive_count_max}\n"
            "X11Forwarding no\n"
            f"AllowUsers {' '.join(self.allow_users)}\n"
        )

    def validate(self) -> list[str]:
        errors = []
        if not self.allow_users:
            errors.append("AllowUsers must name at least one account")
        for user in self.allow_users:
            if user == "root":
                errors.append("root must not be allowed to log in")
            elif not _USERNAME.match(user):
                errors.append(f"invalid user name: {user!r}")
        if not _valid_port(self.port):
            errors.append(f"invalid port: {self.port}")
        return errors


@dataclass
class AutoUpgrades(Template):
    update_package_lists: int = 1
    unattended_upgrade: int = 1

    def render(self) -> str:
        return (
            f'APT::Periodic::Update-Package-Lists "{self.update_package_lists}";\n'
            f'APT::Periodic::Unattended-Upgrade "{self.unattended_upgrade}";\n'
        )


@dataclass
class LimitsConf(Template):
    users: list[str]
    nofile: int = 65535
    nproc: int = 32768

    def render(self) -> str:
        lines = ["# Resource limits for the node operator"]
        for user in self.users:
            lines.extend(
                [
                    f"{user} soft nofile {self.nofile}",
                    f"{user} hard nofile {self.nofile}",
                    f"{user} soft nproc {self.nproc}",
                    f"{user} hard nproc {self.nproc}",
                ]
            )
        return "\n".join(lines) + "\n"

    def validate(self) -> list[str]:
        errors = [f"invalid user name: {user!r}" for user in self.users if not _USERNAME.match(user)]
        if self.nofile <= 0 or self.nproc <= 0:
            errors.append("limits must be positive")
        return errors


@dataclass
class RsyslogRule(Template):
    program: str
    log_file: Path

    def render(self) -> str:
        return f'# {self.program} logging\n:programname, isequal, "{self.program}" {self.log_file}\n& stop\n'

    def validate(self) -> list[str]:
        return [] if Path(self.log_file).is_absolute() else [f"log file must be absolute: {self.log_file}"]


@dataclass
class LogrotateRule(Template):
    paths: list[str]
    owner: str
    group: str | None = None
    rotate: int = 30
    postrotate: str | None = None

    def render(self) -> str:
        body = [
            "    daily",
            "    missingok",
            f"    rotate {self.rotate}",
            "    compress",
            "    delaycompress",
            "    notifempty",
            f"    create 644 {self.owner} {self.group or self.owner}",
        ]
        if self.postrotate:
            body.extend(["    postrotate", f"        {self.postrotate}", "    endscript"])
        return f"{' '.join(self.paths)} {{\n" + "\n".join(body) + "\n}\n"

    def validate(self) -> list[str]:
        errors = [f"path must be absolute: {path}" for path in self.paths if not path.startswith("/")]
        if not _USERNAME.match(self.owner):
            errors.append(f"invalid owner: {self.owner!r}")
        return errors


@dataclass
class CronEntry:
    schedule: str
    user: str
    command: str


@dataclass
class CronTable(Template):
    entries: list[CronEntry] = field(default_factory=list)

    def render(self) -> str:
        lines = [
            "# Maintenance jobs managed by namada-host-kit",
            "SHELL=/bin/sh",
            "PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
        ]
        lines.extend(f"{entry.schedule} {entry.user} {entry.command}" for entry in self.entries)
        return "\n".join(lines) + "\n"

    def validate(self) -> list[str]:
        errors = []
        for entry in self.entries:
            fields = entry.schedule.split()
            if len(fields) != 5 or not all(_CRON_FIELD.match(f) for f in fields):
                errors.append(f"invalid schedule: {entry.schedule!r}")
            if not _single_line(entry.command):
                errors.append("cron command must be a single line")
        return errors


# =============================================================================
# Operator account
# =============================================================================


@dataclass
class SudoersDropIn(Template):
    username: str
    service_name: str = "namada"
    cli_binary: Path = Path("/usr/local/bin/nhk")

    def render(self) -> str:
        user = self.username
        service = self.service_name
        lines = [
            "# Node operator sudo configuration managed by namada-host-kit",
            f"{user} ALL=(ALL) NOPASSWD: ALL",
            f"{user} ALL=(ALL) NOPASSWD: {self.cli_binary}",
        ]
        for action in ("start", "stop", "restart", "status", "enable", "disable"):
            lines.append(f"{user} ALL=(ALL) NOPASSWD: /bin/systemctl {action} {service}")
        lines.append(f"{user} ALL=(ALL) NOPASSWD: /bin/journalctl -u {service} *")
        return "\n".join(lines) + "\n"

    def validate(self) -> list[str]:
        errors = []
        if not _USERNAME.match(self.username) or self.username == "root":
            errors.append(f"invalid operator name: {self.username!r}")
        if not re.match(r"^[A-Za-z0-9@._-]+$", self.service_name):
            errors.append(f"invalid service name: {self.service_name!r}")
        return errors


@dataclass
class ShellProfile(Template):
    """Body of the managed block appended to the operator's ~/.bashrc."""

    node_home: Path
    build_env: BuildEnvironment
    service_name: str = "namada"

    def render(self) -> str:
        env = self.build_env
        return (
            "# Namada operator environment\n"
            f"export NAMADA_HOME={self.node_home}\n"
            f"export NAMADA_BIN={self.node_home / 'bin'}\n"
            f"export NAMADA_DATA={self.node_home / 'data'}\n"
            f"export NAMADA_CONFIG={self.node_home / 'config'}\n"
            "\n"
            "# Build environment\n"
            f"export CARGO_TARGET_DIR={env.target_dir}\n"
            f"export CARGO_HOME={env.cargo_home}\n"
            f"export RUSTUP_HOME={env.rustup_home}\n"
            f'export PATH="{env.cargo_bin}:{self.node_home / "bin"}:$PATH"\n'
            "\n"
            "# Node management\n"
            'alias namada-status="sudo nhk node status"\n'
            'alias namada-logs="sudo nhk node logs --follow"\n'
            'alias namada-start="sudo nhk node start"\n'
            'alias namada-stop="sudo nhk node stop"\n'
            'alias namada-restart="sudo nhk node restart"\n'
            'alias security-check="sudo nhk verify"\n'
            'alias build-monitor="nhk build-env status"\n'
        )

    def validate(self) -> list[str]:
        return [] if Path(self.node_home).is_absolute() else [f"node home must be absolute: {self.node_home}"]


@dataclass
class WelcomeNote(Template):
    username: str
    sudoers_file: str

    def render(self) -> str:
        return (
            "Welcome to the Namada operator account!\n"
            "\n"
            "This account administers the host, owns the build environment and runs the node.\n"
            "\n"
            "Commands:\n"
            "  nhk node status|start|stop|restart|logs   Manage the node service\n"
            "  nhk verify                                Run the security checklist\n"
            "  nhk build-env status|clean                Inspect or clean the build environment\n"
            "\n"
            "Aliases: namada-status, namada-logs, namada-start, namada-stop, namada-restart,\n"
            "         security-check, build-monitor\n"
            "\n"
            "Security notes:\n"
            "  1. Change your password: passwd\n"
            "  2. Log in with SSH keys only; password logins are disabled\n"
            f"  3. Review sudo permissions in {self.sudoers_file}\n"
            "  4. Never use the root account for daily operations\n"
        )


# =============================================================================
# Build environment and sandbox
# =============================================================================


@dataclass
class BuildEnvFile(Template):
    build_env: BuildEnvironment

    def render(self) -> str:
        env = self.build_env.as_env()
        lines = ["# Build environment for compiling Namada and syd", ""]
        for key in ("CARGO_TARGET_DIR", "CARGO_HOME", "RUSTUP_HOME", "TMPDIR", "CARGO_BUILD_JOBS", "CARGO_INCREMENTAL"):
            lines.append(f"{key}={env[key]}")
        if "RUSTFLAGS" in env:
            lines.append(f'RUSTFLAGS="{env["RUSTFLAGS"]}"')
        lines.extend(["", f"BUILD_DIR={self.build_env.root}", f"TEMP_DIR={self.build_env.tmp_dir}"])
        return "\n".join(lines) + "\n"

    def validate(self) -> list[str]:
        errors = []
        if not self.build_env.root.is_absolute():
            errors.append(f"build root must be absolute: {self.build_env.root}")
        if self.build_env.cargo_build_jobs <= 0:
            errors.append("cargo_build_jobs must be positive")
        if '"' in self.build_env.rustflags:
            errors.append("RUSTFLAGS must not contain quotes")
        return errors


@dataclass
class SandboxPolicy(Template):
    """syd profile confining the node to its own directories and ports."""

    node_home: Path
    p2p_port: int = 26656
    rpc_port: int = 26657
    extra_exec: list[Path] = field(default_factory=lambda: [Path("/usr/local/bin/cometbft")])
    memory_limit: str = "2G"
    pid_limit: int = 100

    def render(self) -> str:
        home = Path(self.node_home)
        lines = [
            "# syd profile for the Namada node managed by namada-host-kit",
            "",
            "# Network: P2P and local RPC only",
            "sandbox/net:on",
            f"allow/net/bind+0.0.0.0!{self.p2p_port}",
            f"allow/net/bind+127.0.0.1!{self.rpc_port}",
            f"allow/net/connect+any!{self.p2p_port}",
            "",
            "# Filesystem: writes limited to data and logs",
            "sandbox/write:on",
            f"allow/write+{home / 'data'}/***",
            f"allow/write+{home / 'logs'}/***",
            "",
            "# Exec: node binaries only",
            "sandbox/exec:on",
            f"allow/exec+{home / 'bin'}/***",
        ]
        lines.extend(f"allow/exec+{path}" for path in self.extra_exec)
        lines.extend(
            [
                "",
                "# Resources",
                "sandbox/mem:on",
                f"mem/max:{self.memory_limit}",
                "sandbox/pid:on",
                f"pid/max:{self.pid_limit}",
                "",
                "lock:on",
            ]
        )
        return "\n".join(lines) + "\n"

    def validate(self) -> list[str]:
        errors = []
        if not Path(self.node_home).is_absolute():
            errors.append(f"node home must be absolute: {self.node_home}")
        for port in (self.p2p_port, self.rpc_port):
            if not _valid_port(port):
                errors.append(f"invalid port: {port}")
        if not _SIZE.match(self.memory_limit):
            errors.append(f"invalid memory limit: {self.memory_limit!r}")
        if self.pid_limit <= 0:
            errors.append("pid limit must be positive")
        return errors


# =============================================================================
# Node
# =============================================================================


@dataclass
class NodeConfigToml(Template):
    rpc_laddr: str = "127.0.0.1:26657"
    p2p_port: int = 26656
    persistent_peers: str = ""
    seeds: str = ""

    def render(self) -> str:
        return (
            "# Namada node configuration managed by namada-host-kit\n"
            "[rpc]\n"
            f'laddr = "tcp://{self.rpc_laddr}"\n'
            "cors_allowed_origins = []\n"
            'cors_allowed_methods = ["GET", "POST"]\n'
            'cors_allowed_headers = ["*"]\n'
            "\n"
            "[p2p]\n"
            f'laddr = "tcp://0.0.0.0:{self.p2p_port}"\n'
            'external_address = ""\n'
            f'seeds = "{self.seeds}"\n'
            f'persistent_peers = "{self.persistent_peers}"\n'
            "\n"
            "[consensus]\n"
            'timeout_commit = "1s"\n'
            'timeout_propose = "3s"\n'
            'timeout_prevote = "1s"\n'
            'timeout_precommit = "1s"\n'
            "\n"
            "[mempool]\n"
            "size = 10000\n"
            "cache_size = 10000\n"
            "keep_invalid_txs_in_cache = false\n"
            "\n"
            "[instrumentation]\n"
            "prometheus = false\n"
            'prometheus_listen_addr = ""\n'
            "max_open_connections = 3\n"
            'namespace = "tendermint"\n'
        )

    def validate(self) -> list[str]:
        errors = []
        host, _, port = self.rpc_laddr.rpartition(":")
        if not host or not port.isdigit() or not _valid_port(int(port)):
            errors.append(f"invalid rpc address: {self.rpc_laddr!r}")
        if not _valid_port(self.p2p_port):
            errors.append(f"invalid p2p port: {self.p2p_port}")
        for name in ("persistent_peers", "seeds"):
            if '"' in getattr(self, name) or not _single_line(getattr(self, name)):
                errors.append(f"invalid {name}")
        return errors


@dataclass
class NodeEnvFile(Template):
    """systemd EnvironmentFile for the node service."""

    logs_dir: Path
    chain_id: str
    log_level: str = "info"

    def render(self) -> str:
        return (
            "# Namada node environment\n"
            f"NAMADA_LOG={self.log_level}\n"
            "NAMADA_LOG_FMT=json\n"
            "NAMADA_LOG_COLOR=false\n"
            f"NAMADA_LOG_DIR={self.logs_dir}\n"
            f"NAMADA_CHAIN_ID={self.chain_id}\n"
        )

    def validate(self) -> list[str]:
        errors = []
        if self.log_level not in ("error", "warn", "info", "debug", "trace"):
            errors.append(f"invalid log level: {self.log_level!r}")
        if not self.chain_id or not re.match(r"^[A-Za-z0-9._-]+$", self.chain_id):
            errors.append(f"invalid chain id: {self.chain_id!r}")
        return errors


@dataclass
class SystemdUnit(Template):
    description: str
    user: str
    exec_start: list[str]
    working_directory: Path
    environment_file: Path | None = None
    read_write_paths: list[Path] = field(default_factory=list)
    limit_nofile: int = 65535
    limit_nproc: int = 32768
    syslog_identifier: str = "namada"

    def render(self) -> str:
        lines = [
            "[Unit]",
            f"Description={self.description}",
            "After=network-online.target",
            "Wants=network-online.target",
            "",
            "[Service]",
            "Type=simple",
            f"User={self.user}",
            f"Group={self.user}",
            f"WorkingDirectory={self.working_directory}",
        ]
        if self.environment_file is not None:
            lines.append(f"EnvironmentFile={self.environment_file}")
        lines.extend(
            [
                f"ExecStart={' '.join(self.exec_start)}",
                "Restart=always",
                "RestartSec=10",
                f"LimitNOFILE={self.limit_nofile}",
                f"LimitNPROC={self.limit_nproc}",
                "NoNewPrivileges=true",
                "PrivateTmp=true",
                "ProtectSystem=strict",
                "ProtectHome=true",
            ]
        )
        if self.read_write_paths:
            lines.append(f"ReadWritePaths={' '.join(str(p) for p in self.read_write_paths)}")
        lines.extend(
            [
                "StandardOutput=journal",
                "StandardError=journal",
                f"SyslogIdentifier={self.syslog_identifier}",
                "",
                "[Install]",
                "WantedBy=multi-user.target",
            ]
        )
        return "\n".join(lines) + "\n"

    def validate(self) -> list[str]:
        errors = []
        if not self.exec_start or not self.exec_start[0].startswith("/"):
            errors.append("ExecStart must begin with an absolute path")
        if not _USERNAME.match(self.user) or self.user == "root":
            errors.append(f"service must run as a non-root account: {self.user!r}")
        if any(not _single_line(arg) for arg in self.exec_start):
            errors.append("ExecStart arguments must be single-line")
        return errors
