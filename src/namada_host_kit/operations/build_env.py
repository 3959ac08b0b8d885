"""
Build environment operations - isolated directories and the Rust toolchain.

Toolchain commands never read a shell profile: they receive the
BuildEnvironment mapping explicitly and run as the operator.
"""

import logging
import os
import tempfile
import urllib.request
from dataclasses import dataclass
from pathlib import Path

from ..config import AppConfig, BuildEnvironment
from ..constants import BUILD_PACKAGES, RUSTUP_INIT_URL
from ..errors import PreconditionError
from ..host import Host
from ..host.files import ensure_directory, write_file
from ..host.probes import (
    directory_exists,
    file_has_content,
    file_owned_by,
    file_owner,
    packages_installed,
    tool_version,
)
from ..templates import BuildEnvFile
from ..workflow.steps import StepContext
from .hardening import install_packages

logger = logging.getLogger(__name__)


def env_file_path(build_env: BuildEnvironment) -> Path:
    return build_env.root / "build-env.conf"


# =============================================================================
# Directories and env file
# =============================================================================


def build_directories_ready(ctx: StepContext) -> bool:
    return all(
        directory_exists(ctx.host, path) and file_owner(ctx.host, path) == ctx.operator
        for path in [ctx.build_env.root, *ctx.build_env.directories]
    )


def create_build_directories(ctx: StepContext) -> None:
    ensure_directory(ctx.host, ctx.build_env.root, mode=0o755, owner=ctx.operator)
    for path in ctx.build_env.directories:
        ensure_directory(ctx.host, path, mode=0o755, owner=ctx.operator)
    logger.info(f"Build environment directories ready under {ctx.build_env.root}")


def env_file_ready(ctx: StepContext) -> bool:
    path = env_file_path(ctx.build_env)
    return file_has_content(ctx.host, path, BuildEnvFile(ctx.build_env).build()) and file_owned_by(
        ctx.host, path, ctx.operator
    )


def write_env_file(ctx: StepContext) -> None:
    content = BuildEnvFile(ctx.build_env).build()
    write_file(ctx.host, env_file_path(ctx.build_env), content, mode=0o644, owner=ctx.operator)


def build_dependencies_ready(ctx: StepContext) -> bool:
    return packages_installed(ctx.host, BUILD_PACKAGES)


def install_build_dependencies(ctx: StepContext) -> None:
    install_packages(ctx, BUILD_PACKAGES)


# =============================================================================
# Rust toolchain
# =============================================================================


def cargo_version(host: Host, build_env: BuildEnvironment, user: str | None) -> str | None:
    return tool_version(host, [build_env.cargo_bin / "cargo", "--version"], user=user, env=build_env.as_env())


def toolchain_ready(ctx: StepContext) -> bool:
    return cargo_version(ctx.host, ctx.build_env, ctx.user) is not None


def install_toolchain(ctx: StepContext) -> None:
    """Download rustup-init and run it as the operator inside the build environment."""
    toolchain = ctx.config.build.toolchain

    with tempfile.TemporaryDirectory(prefix="nhk-rustup-") as tmp:
        tmp_path = Path(tmp)
        installer = tmp_path / "rustup-init.sh"

        logger.info(f"Downloading rustup from {RUSTUP_INIT_URL}")
        urllib.request.urlretrieve(RUSTUP_INIT_URL, installer)
        # The operator must be able to read the installer
        os.chmod(tmp_path, 0o755)
        os.chmod(installer, 0o755)

        ctx.run_build(
            ["sh", installer, "-y", "--no-modify-path", "--default-toolchain", toolchain],
            capture=False,
        )

    ctx.run_build([ctx.build_env.cargo_bin / "rustup", "default", toolchain])
    version = cargo_version(ctx.host, ctx.build_env, ctx.user)
    logger.info(f"Rust toolchain installed: {version}")


# =============================================================================
# Operator commands (nhk build-env ...)
# =============================================================================


def run_isolated(host: Host, config: AppConfig, argv: list[str], cwd: Path | None = None) -> None:
    """Run an arbitrary command as the operator inside the build environment."""
    build_env = BuildEnvironment.from_config(config)
    if not directory_exists(host, build_env.root):
        raise PreconditionError(f"Build environment not found at {build_env.root}; run `nhk provision build-env`")

    logger.info(f"Running in isolated build environment: {' '.join(argv)}")
    host.runner.run(argv, user=config.operator.username, env=build_env.as_env(), cwd=cwd, capture=False)


def clean_build_env(host: Host, config: AppConfig) -> list[str]:
    """
    Remove temporary files and stale intermediate build artifacts.

    Returns:
        Commands that were run
    """
    build_env = BuildEnvironment.from_config(config)
    user = config.operator.username
    commands: list[list] = [
        ["find", build_env.tmp_dir, "-mindepth", "1", "-delete"],
        ["rm", "-rf", build_env.target_dir / "debug" / "deps", build_env.target_dir / "debug" / "build"],
    ]
    release_dir = build_env.target_dir / "release"
    if directory_exists(host, release_dir):
        for pattern in ("*.so", "*.dylib"):
            commands.append(["find", release_dir, "-name", pattern, "-mtime", "+7", "-delete"])

    for argv in commands:
        host.runner.run(argv, user=user)

    logger.info("Build environment cleaned")
    return [" ".join(str(a) for a in argv) for argv in commands]


@dataclass
class BuildDirStatus:
    path: Path
    exists: bool
    size_bytes: int | None = None


def build_env_status(host: Host, config: AppConfig) -> list[BuildDirStatus]:
    """Existence and disk usage of every build directory."""
    build_env = BuildEnvironment.from_config(config)
    statuses = []
    for path in build_env.directories:
        if not directory_exists(host, path):
            statuses.append(BuildDirStatus(path=path, exists=False))
            continue
        result = host.runner.probe(["du", "-sb", host.path(path)], privileged=True)
        size = int(result.stdout.split()[0]) if result.ok and result.stdout.strip() else None
        statuses.append(BuildDirStatus(path=path, exists=True, size_bytes=size))
    return statuses
