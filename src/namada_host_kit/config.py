"""
Configuration management with YAML loading and environment variable support.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .constants import NAMADA_REPOSITORY, NODE_P2P_PORT, SERVICES_TO_DISABLE, SSH_PORT, SYD_REPOSITORY


def _env_str(env_var: str, default: str) -> str:
    """Get a string from an environment variable or return default."""
    return os.environ.get(env_var) or default


def _env_path(env_var: str, default: Path) -> Path:
    """Get path from environment variable or return default."""
    if value := os.environ.get(env_var):
        return Path(value)
    return default


@dataclass
class OperatorConfig:
    """The single account that administers the host, owns the build tree and runs the node."""

    username: str = field(default_factory=lambda: _env_str("NHK_OPERATOR", "namadaoperator"))
    shell: str = "/bin/bash"
    groups: list[str] = field(default_factory=lambda: ["sudo"])
    # Copied into the operator's ~/.ssh when present; defaults to the invoking user's keys
    authorized_keys_source: Path | None = None

    @property
    def home(self) -> Path:
        return Path("/home") / self.username


@dataclass
class PathsConfig:
    """Paths configuration - the two roots can be overridden via environment variables."""

    node_home: Path = field(default_factory=lambda: _env_path("NHK_NODE_HOME", Path("/opt/namada")))
    build_root: Path = field(default_factory=lambda: _env_path("NHK_BUILD_ROOT", Path("/build")))
    backup_dir: Path = Path("/var/backups/namada-host-kit")
    log_dir: Path = Path("/var/log/namada-host-kit")
    sandbox_binary: Path = Path("/usr/local/bin/syd")
    sandbox_policy: Path = Path("/etc/syd/namada.syd")
    cli_binary: Path = Path("/usr/local/bin/nhk")

    @property
    def node_bin_dir(self) -> Path:
        return self.node_home / "bin"

    @property
    def node_binary(self) -> Path:
        return self.node_bin_dir / "namada"

    @property
    def node_data_dir(self) -> Path:
        return self.node_home / "data"

    @property
    def node_config_dir(self) -> Path:
        return self.node_home / "config"

    @property
    def node_logs_dir(self) -> Path:
        return self.node_home / "logs"

    @property
    def node_backups_dir(self) -> Path:
        return self.node_home / "backups"


@dataclass
class BuildConfig:
    cargo_build_jobs: int = 4
    incremental: bool = False
    rustflags: str = "-C target-cpu=native -C opt-level=3"
    toolchain: str = "stable"


@dataclass
class HardeningConfig:
    ssh_port: int = SSH_PORT
    extra_ports: list[int] = field(default_factory=list)
    services_to_disable: list[str] = field(default_factory=lambda: list(SERVICES_TO_DISABLE))
    fail2ban_bantime: int = 3600
    fail2ban_findtime: int = 600
    fail2ban_maxretry: int = 3


@dataclass
class NodeConfig:
    version: str = "latest"
    repository: str = NAMADA_REPOSITORY
    chain_id: str = field(default_factory=lambda: _env_str("NHK_CHAIN_ID", "housefire-alpaca.cc0d3e0c033be"))
    service_name: str = "namada"
    p2p_port: int = NODE_P2P_PORT
    rpc_laddr: str = "127.0.0.1:26657"
    cometbft_version: str = "0.37.15"
    log_level: str = "info"
    start_settle_seconds: int = 5


@dataclass
class SandboxConfig:
    repository: str = SYD_REPOSITORY
    enabled: bool = True


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file_logging: bool = True
    console_logging: bool = True


_SECTIONS = ["operator", "paths", "build", "hardening", "node", "sandbox", "logging"]

# Fields that hold paths and must be converted when read from YAML
_PATH_FIELDS = {
    "authorized_keys_source",
    "node_home",
    "build_root",
    "backup_dir",
    "log_dir",
    "sandbox_binary",
    "sandbox_policy",
    "cli_binary",
}


@dataclass
class AppConfig:
    operator: OperatorConfig = field(default_factory=OperatorConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    hardening: HardeningConfig = field(default_factory=HardeningConfig)
    node: NodeConfig = field(default_factory=NodeConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "AppConfig":
        """Create config from dictionary, ignoring unknown sections and keys."""
        config = cls()

        for section_name in _SECTIONS:
            if section_name not in data or not data[section_name]:
                continue
            section = getattr(config, section_name)
            for key, value in data[section_name].items():
                if not hasattr(section, key) or isinstance(getattr(type(section), key, None), property):
                    continue
                if key in _PATH_FIELDS and isinstance(value, str):
                    value = Path(value)
                setattr(section, key, value)

        return config

    def _to_dict(self) -> dict:
        """Convert config to dictionary."""
        result = {}
        for attr in _SECTIONS:
            section = getattr(self, attr)
            result[attr] = {
                key: str(value) if isinstance(value, Path) else value for key, value in vars(section).items()
            }
        return result


@dataclass
class BuildEnvironment:
    """
    Explicit environment for compiler toolchain commands.

    Every cargo/rustup invocation receives this mapping directly instead of
    relying on variables exported into a shell profile.
    """

    root: Path
    cargo_build_jobs: int = 4
    incremental: bool = False
    rustflags: str = ""

    @property
    def target_dir(self) -> Path:
        return self.root / "target"

    @property
    def cargo_home(self) -> Path:
        return self.root / "cargo"

    @property
    def rustup_home(self) -> Path:
        return self.root / "rustup"

    @property
    def tmp_dir(self) -> Path:
        return self.root / "tmp"

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def cargo_bin(self) -> Path:
        return self.cargo_home / "bin"

    @property
    def directories(self) -> list[Path]:
        return [self.target_dir, self.cargo_home, self.rustup_home, self.tmp_dir, self.bin_dir]

    def as_env(self) -> dict[str, str]:
        """Environment mapping handed to build commands."""
        env = {
            "CARGO_TARGET_DIR": str(self.target_dir),
            "CARGO_HOME": str(self.cargo_home),
            "RUSTUP_HOME": str(self.rustup_home),
            "TMPDIR": str(self.tmp_dir),
            "PATH": f"{self.cargo_bin}:/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
            "CARGO_BUILD_JOBS": str(self.cargo_build_jobs),
            "CARGO_INCREMENTAL": "1" if self.incremental else "0",
        }
        if self.rustflags:
            env["RUSTFLAGS"] = self.rustflags
        return env

    @classmethod
    def from_config(cls, config: AppConfig) -> "BuildEnvironment":
        return cls(
            root=config.paths.build_root,
            cargo_build_jobs=config.build.cargo_build_jobs,
            incremental=config.build.incremental,
            rustflags=config.build.rustflags,
        )


def _get_default_config_dir() -> Path:
    """Get default config directory."""
    # Check environment variable first
    if config_dir := os.environ.get("NHK_CONFIG_DIR"):
        return Path(config_dir)

    # Check XDG config home
    if xdg_config := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_config) / "namada-host-kit"

    # Fall back to ~/.config
    return Path.home() / ".config" / "namada-host-kit"


def load_config(config_path: Path | None = None, config_dir: Path | None = None) -> AppConfig:
    """
    Load configuration from the first existing file in the search path.

    Args:
        config_path: Explicit config file (skips the search)
        config_dir: Config directory to search first

    Returns:
        AppConfig (defaults when no file exists)
    """
    if config_dir is None:
        config_dir = _get_default_config_dir()

    if config_path is None:
        search_paths = [
            config_dir / "config.yaml",
            Path("/etc/namada-host-kit/config.yaml"),
            Path.cwd() / "nhk.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    return AppConfig.from_yaml(config_path) if config_path else AppConfig()


def validate_config(config: AppConfig) -> list[str]:
    """
    Validate values that would produce a broken host if used.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    if not config.operator.username or config.operator.username == "root":
        errors.append("operator.username must name a non-root account")

    for name, path in (("node_home", config.paths.node_home), ("build_root", config.paths.build_root)):
        if not path.is_absolute():
            errors.append(f"paths.{name} must be absolute: {path}")

    for port in [config.hardening.ssh_port, config.node.p2p_port, *config.hardening.extra_ports]:
        if not 0 < int(port) < 65536:
            errors.append(f"port out of range: {port}")

    if not config.node.chain_id:
        errors.append("node.chain_id not configured (set NHK_CHAIN_ID or in config file)")

    return errors
