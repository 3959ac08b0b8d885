"""Shared pytest fixtures for namada-host-kit tests."""

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from namada_host_kit.config import AppConfig
from namada_host_kit.host import CommandRunner, Host, probes
from namada_host_kit.host.runner import CommandResult
from namada_host_kit.workflow import StepContext

OPERATOR = "namadaoperator"
SSH_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAITestKey admin@laptop\n"


class FakeRunner(CommandRunner):
    """
    CommandRunner that simulates an Ubuntu host instead of executing commands.

    Accounts, packages, services and the firewall are kept in memory and
    updated by the commands the workflows run. Files live under ``root``
    and are handled by the real file writer.
    """

    def __init__(self, root: Path, dry_run: bool = False, euid: int = 0):
        super().__init__(dry_run=dry_run, euid=euid)
        self.root = root
        self.users: dict[str, set[str]] = {}
        self.passwords: set[str] = set()
        self.packages: set[str] = set()
        self.active: set[str] = set()
        self.enabled: set[str] = set()
        self.ufw_enabled = False
        self.ufw_default_deny = False
        self.ufw_rules: list[str] = []
        # Executable basename -> first line of its version output
        self.tools: dict[str, str] = {}
        # Host path -> user recorded by chown
        self.owners: dict[str, str] = {}
        self.failures: dict[str, tuple[int, str]] = {}
        # Commands passed to run() (mutations) and everything executed (probes included)
        self.mutations: list[list[str]] = []
        self.executed: list[list[str]] = []
        self.inputs: list[str] = []

    def fail(self, prefix: str, returncode: int = 1, stderr: str = "") -> None:
        """Make every command starting with ``prefix`` exit non-zero."""
        self.failures[prefix] = (returncode, stderr)

    def add_user(self, username: str, *groups: str, password: bool = False) -> None:
        self.users[username] = set(groups)
        (self.root / "home" / username).mkdir(parents=True, exist_ok=True)
        if password:
            self.passwords.add(username)

    def ran(self, prefix: str) -> bool:
        """Whether a mutating command starting with ``prefix`` was run."""
        return any(" ".join(argv).startswith(prefix) for argv in self.mutations)

    def run(self, argv, **kwargs):
        self.mutations.append([str(a) for a in argv])
        return super().run(argv, **kwargs)

    def _execute(self, full, input=None, cwd=None, capture=True):
        args = _strip_prefix(full)
        self.executed.append(args)
        if input is not None:
            self.inputs.append(input)

        line = " ".join(args)
        for prefix, (returncode, stderr) in self.failures.items():
            if line.startswith(prefix):
                return CommandResult(argv=full, returncode=returncode, stderr=stderr)

        returncode, stdout = self._simulate(args, input)
        return CommandResult(argv=full, returncode=returncode, stdout=stdout)

    def _simulate(self, args: list[str], input: str | None) -> tuple[int, str]:
        name = Path(args[0]).name
        rest = args[1:]

        if name == "id":
            user = rest[-1]
            if user not in self.users:
                return 1, ""
            return 0, (" ".join([user, *sorted(self.users[user])]) if rest[0] == "-nG" else "1001")
        if name == "useradd":
            self.add_user(rest[-1])
            return 0, ""
        if name == "usermod":
            self.users.setdefault(rest[-1], set()).add(rest[-2])
            return 0, ""
        if name == "passwd":
            user = rest[-1]
            return 0, f"{user} {'P' if user in self.passwords else 'L'} 01/01/2025 0 99999 7 -1"
        if name == "chpasswd":
            self.passwords.add((input or "").split(":", 1)[0])
            return 0, ""
        if name == "chown":
            self.owners[rest[-1]] = rest[-2].split(":", 1)[0]
            return 0, ""
        if name == "dpkg-query":
            return (0, "install ok installed") if rest[-1] in self.packages else (1, "")
        if name == "apt-get":
            if rest[0] == "install":
                self.packages.update(a for a in rest[1:] if not a.startswith("-"))
            return 0, ""
        if name == "systemctl":
            return self._systemctl(rest)
        if name == "ufw":
            return self._ufw(rest)
        if name in self.tools:
            return 0, self.tools[name] + "\n"
        if name in ("cargo", "rustup", "cometbft", "namada"):
            return 127, ""
        return 0, ""

    def _systemctl(self, rest: list[str]) -> tuple[int, str]:
        action, service = rest[0], rest[-1]
        if action == "is-active":
            return (0, "active") if service in self.active else (3, "inactive")
        if action == "is-enabled":
            return (0, "enabled") if service in self.enabled else (1, "disabled")
        if action == "enable":
            self.enabled.add(service)
            if "--now" in rest:
                self.active.add(service)
        elif action == "disable":
            self.enabled.discard(service)
            if "--now" in rest:
                self.active.discard(service)
        elif action in ("start", "restart"):
            self.active.add(service)
        elif action == "stop":
            self.active.discard(service)
        return 0, ""

    def _ufw(self, rest: list[str]) -> tuple[int, str]:
        if rest[:2] == ["status", "verbose"]:
            if not self.ufw_enabled:
                return 0, "Status: inactive\n"
            default = "deny (incoming)" if self.ufw_default_deny else "allow (incoming)"
            rules = "".join(f"{rule:<26}ALLOW IN    Anywhere\n" for rule in self.ufw_rules)
            return 0, f"Status: active\nDefault: {default}, allow (outgoing)\n\n{rules}"
        if rest == ["--force", "reset"]:
            self.ufw_enabled, self.ufw_default_deny, self.ufw_rules = False, False, []
        elif rest == ["default", "deny", "incoming"]:
            self.ufw_default_deny = True
        elif rest[0] == "allow":
            self.ufw_rules.append(rest[1])
        elif rest == ["--force", "enable"]:
            self.ufw_enabled = True
        return 0, ""


def _strip_prefix(full: list[str]) -> list[str]:
    """Drop the sudo/runuser identity prefix and env(1) assignments."""
    args = list(full)
    if args[:1] == ["runuser"]:
        args = args[args.index("--") + 1 :]
    elif args[:1] == ["sudo"]:
        args = args[3:] if args[1:2] == ["-u"] else args[1:]
    if args[:1] == ["env"]:
        args = args[1:]
        while args and "=" in args[0] and not args[0].startswith("/"):
            args = args[1:]
    return args


@pytest.fixture(autouse=True)
def _simulated_ownership():
    """Report the owner set by a simulated chown (tests cannot chown for real)."""
    real_file_owner = probes.file_owner

    def file_owner(host, path):
        recorded = getattr(host.runner, "owners", {}).get(str(host.path(path)))
        if recorded and host.path(path).exists():
            return recorded
        return real_file_owner(host, path)

    with patch("namada_host_kit.host.probes.file_owner", side_effect=file_owner):
        yield


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def host_root(tmp_path):
    """Scratch filesystem root that looks like a fresh Ubuntu install."""
    root = tmp_path / "host"
    (root / "etc").mkdir(parents=True)
    (root / "etc" / "os-release").write_text('NAME="Ubuntu"\nVERSION_ID="24.04"\nID=ubuntu\nID_LIKE=debian\n')
    (root / "home").mkdir()
    keys = root / "root" / ".ssh" / "authorized_keys"
    keys.parent.mkdir(parents=True)
    keys.write_text(SSH_KEY)
    return root


@pytest.fixture
def fake_runner(host_root):
    """Simulated command runner acting as root."""
    return FakeRunner(host_root)


@pytest.fixture
def host(fake_runner, host_root):
    """Host whose filesystem is the scratch root and whose commands are simulated."""
    return Host(runner=fake_runner, root=host_root)


@pytest.fixture
def dry_run_host(host_root):
    """Same scratch host with a dry-run runner."""
    return Host(runner=FakeRunner(host_root, dry_run=True), root=host_root)


@pytest.fixture
def app_config():
    """Default configuration with file logging off and a known key source."""
    config = AppConfig()
    config.operator.username = OPERATOR
    config.operator.authorized_keys_source = Path("/root/.ssh/authorized_keys")
    config.logging.file_logging = False
    config.node.start_settle_seconds = 0
    return config


@pytest.fixture
def ctx(host, app_config):
    """Step context running as root."""
    return StepContext(host=host, config=app_config)


@pytest.fixture
def operator_owned():
    """Report every path as owned by the operator (chown is simulated)."""
    with (
        patch("namada_host_kit.operations.hardening.file_owner", return_value=OPERATOR),
        patch("namada_host_kit.operations.build_env.file_owner", return_value=OPERATOR),
    ):
        yield


@pytest.fixture(name="_mock_shutil_which")
def mock_shutil_which():
    """Mock shutil.which to simulate available tools."""

    def which_side_effect(tool):
        available = {"apt-get", "systemctl", "useradd", "git", "sudo"}
        return f"/usr/bin/{tool}" if tool in available else None

    with patch("shutil.which", side_effect=which_side_effect) as mock:
        yield mock
