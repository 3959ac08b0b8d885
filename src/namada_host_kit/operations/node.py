"""
Node operations - CometBFT, the Namada binary, its configuration and service.
"""

import json
import logging
import platform
import tarfile
import tempfile
import time
import urllib.request
from datetime import datetime
from pathlib import Path

from ..config import AppConfig, NodeConfig
from ..constants import COMETBFT_RELEASE_URL, LOCAL_BIN, LOGROTATE_DIR, NAMADA_RELEASES_API, SYSTEMD_UNIT_DIR
from ..errors import CommandError, PreconditionError, VerificationError
from ..host import Host
from ..host.files import remove_file, write_file
from ..host.probes import (
    file_exists,
    file_has_content,
    file_mode,
    file_owned_by,
    is_executable,
    read_text,
    service_active,
    service_enabled,
    sysctl_value,
)
from ..templates import LogrotateRule, NodeConfigToml, NodeEnvFile, SystemdUnit
from ..workflow.steps import StepContext

logger = logging.getLogger(__name__)

COMETBFT_BINARY = f"{LOCAL_BIN}/cometbft"
AUTH_LOG = "/var/log/auth.log"
# Binaries produced by `make install` in the Namada repository
NODE_BINARIES = ["namada", "namadan", "namadac", "namadaw"]


def get_arch() -> str:
    """Architecture name used in release asset names."""
    arch = platform.machine().lower()
    if arch in ("x86_64", "amd64"):
        return "amd64"
    elif arch in ("aarch64", "arm64"):
        return "arm64"
    return arch


def resolve_release_tag(node: NodeConfig) -> str:
    """Configured version, or the latest release tag from the GitHub API."""
    if node.version != "latest":
        return node.version

    logger.info("Fetching latest Namada release information...")
    request = urllib.request.Request(NAMADA_RELEASES_API, headers={"Accept": "application/vnd.github+json"})
    with urllib.request.urlopen(request) as response:
        release = json.load(response)

    tag = release.get("tag_name")
    if not tag:
        raise PreconditionError("Could not determine the latest Namada release tag")
    logger.info(f"Latest Namada version: {tag}")
    return tag


def unit_path(config: AppConfig) -> Path:
    return Path(SYSTEMD_UNIT_DIR) / f"{config.node.service_name}.service"


def chain_dir(config: AppConfig) -> Path:
    return config.paths.node_data_dir / config.node.chain_id


# =============================================================================
# CometBFT
# =============================================================================


def cometbft_ready(ctx: StepContext) -> bool:
    if not is_executable(ctx.host, COMETBFT_BINARY):
        return False
    result = ctx.host.runner.probe([COMETBFT_BINARY, "version"])
    return result.ok and result.stdout.strip().startswith(ctx.config.node.cometbft_version)


def install_cometbft(ctx: StepContext) -> None:
    version = ctx.config.node.cometbft_version
    url = COMETBFT_RELEASE_URL.format(version=version, arch=get_arch())

    with tempfile.TemporaryDirectory(prefix="nhk-cometbft-") as tmp:
        tmp_path = Path(tmp)
        tar_path = tmp_path / "cometbft.tar.gz"

        logger.info(f"Downloading CometBFT {version} from {url}")
        urllib.request.urlretrieve(url, tar_path)

        with tarfile.open(tar_path, "r:gz") as tar:
            tar.extractall(path=tmp_path)

        extracted = [p for p in tmp_path.glob("**/cometbft") if p.is_file()]
        if not extracted:
            raise PreconditionError("cometbft binary not found in release archive")

        ctx.run(["install", "-m", "755", extracted[0], COMETBFT_BINARY])

    logger.info(f"CometBFT {version} installed to {COMETBFT_BINARY}")


# =============================================================================
# Namada binary
# =============================================================================


def node_binary_ready(ctx: StepContext) -> bool:
    return is_executable(ctx.host, ctx.config.paths.node_binary)


def node_binary_runs(ctx: StepContext) -> bool:
    return ctx.host.runner.probe([ctx.config.paths.node_binary, "--version"]).ok


def build_node(ctx: StepContext) -> None:
    """Shallow-clone the release, `make install` as the operator, copy binaries into the node home."""
    tag = resolve_release_tag(ctx.config.node)
    build_env = ctx.build_env
    operator = ctx.operator
    source_dir = build_env.tmp_dir / "namada"

    ctx.run(["rm", "-rf", source_dir], user=operator)
    logger.info(f"Cloning Namada {tag}")
    ctx.run_build(
        ["git", "clone", "--depth", "1", "--branch", tag, ctx.config.node.repository, source_dir],
        user=operator,
    )

    logger.info("Building Namada from source (this may take 30-60 minutes)...")
    ctx.run_build(["make", "install"], user=operator, cwd=source_dir, capture=False)

    installed = []
    for name in NODE_BINARIES:
        built = build_env.cargo_bin / name
        if is_executable(ctx.host, built):
            target = ctx.config.paths.node_bin_dir / name
            ctx.run(["install", "-m", "755", "-o", operator, "-g", operator, built, target], user=None)
            installed.append(name)

    if "namada" not in installed:
        raise VerificationError(f"`make install` did not produce {build_env.cargo_bin / 'namada'}")

    ctx.run(["rm", "-rf", source_dir], user=operator)
    logger.info(f"Installed {', '.join(installed)} to {ctx.config.paths.node_bin_dir}")


# =============================================================================
# Configuration and service
# =============================================================================


def _config_files(ctx: StepContext) -> dict[Path, str]:
    node = ctx.config.node
    paths = ctx.config.paths
    return {
        paths.node_config_dir / "config.toml": NodeConfigToml(rpc_laddr=node.rpc_laddr, p2p_port=node.p2p_port).build(),
        paths.node_config_dir / "namada.env": NodeEnvFile(
            logs_dir=paths.node_logs_dir, chain_id=node.chain_id, log_level=node.log_level
        ).build(),
    }


def node_config_ready(ctx: StepContext) -> bool:
    return all(
        file_has_content(ctx.host, path, content) and file_owned_by(ctx.host, path, ctx.operator)
        for path, content in _config_files(ctx).items()
    )


def write_node_config(ctx: StepContext) -> None:
    for path, content in _config_files(ctx).items():
        write_file(ctx.host, path, content, mode=0o644, owner=ctx.operator)


def exec_start(config: AppConfig) -> list[str]:
    """Node command line, wrapped in the sandbox when it is enabled."""
    paths = config.paths
    command = [str(paths.node_binary), "--base-dir", str(paths.node_data_dir), "node", "ledger", "run"]
    if config.sandbox.enabled:
        return [str(paths.sandbox_binary), "-P", str(paths.sandbox_policy), "--", *command]
    return command


def _unit_content(ctx: StepContext) -> str:
    config = ctx.config
    paths = config.paths
    description = "Namada Node (sandboxed with syd)" if config.sandbox.enabled else "Namada Node"
    return SystemdUnit(
        description=description,
        user=ctx.operator,
        exec_start=exec_start(config),
        working_directory=paths.node_data_dir,
        environment_file=paths.node_config_dir / "namada.env",
        read_write_paths=[paths.node_data_dir, paths.node_logs_dir],
        syslog_identifier=config.node.service_name,
    ).build()


def service_ready(ctx: StepContext) -> bool:
    return file_has_content(ctx.host, unit_path(ctx.config), _unit_content(ctx)) and service_enabled(
        ctx.host, ctx.config.node.service_name
    )


def install_service(ctx: StepContext) -> None:
    """Write the unit and reload systemd; a unit systemd did not reload is removed again."""
    path = unit_path(ctx.config)
    if write_file(ctx.host, path, _unit_content(ctx), mode=0o644):
        try:
            ctx.run(["systemctl", "daemon-reload"])
        except CommandError:
            logger.error(f"systemctl daemon-reload failed, removing {path}")
            remove_file(ctx.host, path)
            raise
    ctx.run(["systemctl", "enable", ctx.config.node.service_name])
    logger.info(f"Service {ctx.config.node.service_name} installed and enabled")


def service_is_enabled(ctx: StepContext) -> bool:
    return service_enabled(ctx.host, ctx.config.node.service_name)


def _logrotate_content(ctx: StepContext) -> str:
    service = ctx.config.node.service_name
    return LogrotateRule(
        paths=[f"{ctx.config.paths.node_logs_dir}/*.log"],
        owner=ctx.operator,
        postrotate=f"systemctl reload {service} > /dev/null 2>&1 || true",
    ).build()


def node_logrotate_ready(ctx: StepContext) -> bool:
    return file_has_content(ctx.host, f"{LOGROTATE_DIR}/{ctx.config.node.service_name}", _logrotate_content(ctx))


def install_node_logrotate(ctx: StepContext) -> None:
    write_file(ctx.host, f"{LOGROTATE_DIR}/{ctx.config.node.service_name}", _logrotate_content(ctx), mode=0o644)


# =============================================================================
# Network join and start
# =============================================================================


def chain_joined(ctx: StepContext) -> bool:
    return file_exists(ctx.host, chain_dir(ctx.config) / "config.toml")


def join_network(ctx: StepContext) -> None:
    """Download genesis and chain configuration through the node's own join-network command."""
    paths = ctx.config.paths
    chain_id = ctx.config.node.chain_id
    logger.info(f"Joining network {chain_id}...")
    ctx.run(
        [
            paths.node_binary,
            "client",
            "utils",
            "join-network",
            "--chain-id",
            chain_id,
            "--add-persistent-peers",
            "--base-dir",
            paths.node_data_dir,
        ],
        user=ctx.operator,
        env={"NAMADA_CHAIN_ID": chain_id},
    )

    chain_config = read_text(ctx.host, chain_dir(ctx.config) / "config.toml") or ""
    peers = [line for line in chain_config.splitlines() if line.strip().startswith("persistent_peers")]
    if not peers or all(line.split("=", 1)[-1].strip() in ('""', "''", "") for line in peers):
        ctx.warn(f"No persistent peers configured for {chain_id}; add peers to {chain_dir(ctx.config)}/config.toml")


def node_running(ctx: StepContext) -> bool:
    return service_active(ctx.host, ctx.config.node.service_name)


def start_node(ctx: StepContext) -> None:
    service = ctx.config.node.service_name
    ctx.run(["systemctl", "start", service])
    time.sleep(ctx.config.node.start_settle_seconds)

    if not service_active(ctx.host, service):
        tail = journal_tail(ctx.host, ctx.config, lines=20)
        raise VerificationError(f"{service} did not stay active after start\n{tail}")
    logger.info(f"{service} is running")


def journal_tail(host: Host, config: AppConfig, lines: int = 50) -> str:
    result = host.runner.probe(
        ["journalctl", "-u", config.node.service_name, "-n", str(lines), "--no-pager"], privileged=True
    )
    return result.stdout.strip()


# =============================================================================
# Service management (nhk node ...)
# =============================================================================

SERVICE_ACTIONS = ("start", "stop", "restart", "enable", "disable")


def control_service(host: Host, config: AppConfig, action: str) -> None:
    if action not in SERVICE_ACTIONS:
        raise ValueError(f"Unknown service action: {action}")
    host.runner.run(["systemctl", action, config.node.service_name])
    logger.info(f"{action} {config.node.service_name}")


def _port(address: str) -> int | None:
    tail = address.rsplit(":", 1)[-1]
    return int(tail) if tail.isdigit() else None


def listening_ports(host: Host) -> set[int]:
    """Local ports with a listening TCP or UDP socket (`ss -tuln`)."""
    result = host.runner.probe(["ss", "-tuln"])
    ports = set()
    for line in result.stdout.splitlines():
        fields = line.split()
        # Netid State Recv-Q Send-Q Local:Port Peer:Port
        if len(fields) >= 5 and (port := _port(fields[4])) is not None:
            ports.add(port)
    return ports


def failed_ssh_attempts(host: Host) -> int | None:
    content = read_text(host, AUTH_LOG)
    if content is None:
        return None
    return sum(1 for line in content.splitlines() if "Failed password" in line)


def service_status(host: Host, config: AppConfig) -> dict[str, str]:
    """Node service, installation, network and security summary."""
    paths = config.paths
    node = config.node
    service = node.service_name
    active = host.runner.probe(["systemctl", "is-active", service])
    enabled = host.runner.probe(["systemctl", "is-enabled", service])

    version = "missing"
    if is_executable(host, paths.node_binary):
        result = host.runner.probe([paths.node_binary, "--version"])
        version = result.stdout.strip().splitlines()[0] if result.ok and result.stdout.strip() else "unknown"

    owners = host.runner.probe(["ps", "-o", "user=", "-C", "namada"])
    run_as = sorted(set(owners.stdout.split())) if owners.ok else []

    listening = listening_ports(host)
    rpc_port = _port(node.rpc_laddr)

    data_mode = file_mode(host, paths.node_data_dir)
    data_size = "-"
    if data_mode is not None:
        du = host.runner.probe(["du", "-sb", host.path(paths.node_data_dir)], privileged=True)
        if du.ok and du.stdout.strip():
            data_size = f"{int(du.stdout.split()[0]) / (1024 * 1024):.1f} MB"

    failed = failed_ssh_attempts(host)

    return {
        "service": service,
        "active": active.stdout.strip() or "unknown",
        "enabled": enabled.stdout.strip() or "unknown",
        "binary": str(paths.node_binary) if is_executable(host, paths.node_binary) else "missing",
        "version": version,
        "running_as": ", ".join(run_as) or "not running",
        "sandbox": str(paths.sandbox_binary) if is_executable(host, paths.sandbox_binary) else "missing",
        "chain": node.chain_id if file_exists(host, chain_dir(config) / "config.toml") else "not joined",
        "p2p_port": f"{node.p2p_port} {'listening' if node.p2p_port in listening else 'not listening'}",
        "rpc_port": f"{rpc_port} {'listening' if rpc_port in listening else 'not listening'}",
        "data_dir": f"{paths.node_data_dir} ({data_mode:o})" if data_mode is not None else "missing",
        "data_size": data_size,
        "kptr_restrict": sysctl_value(host, "kernel.kptr_restrict") or "unknown",
        "failed_ssh_logins": str(failed) if failed is not None else "unavailable",
    }


def follow_logs(host: Host, config: AppConfig, lines: int = 50, follow: bool = False) -> None:
    argv = ["journalctl", "-u", config.node.service_name, "-n", str(lines), "--no-pager"]
    if follow:
        argv.append("-f")
    host.runner.run(argv, capture=False)


def backup_node(host: Host, config: AppConfig) -> Path:
    """Archive the node's data and config directories into the backups directory."""
    paths = config.paths
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    archive = paths.node_backups_dir / f"namada-{timestamp}.tar.gz"
    host.runner.run(
        ["tar", "-czf", host.path(archive), "-C", host.path(paths.node_home), "data", "config"],
        user=config.operator.username,
    )
    logger.info(f"Node backup written to {archive}")
    return archive