"""
Sandbox operations - build syd from source and install the node's policy.
"""

import logging

from ..constants import NODE_RPC_PORT
from ..host.files import ensure_directory, write_file
from ..host.probes import file_has_content, is_executable
from ..templates import SandboxPolicy
from ..workflow.steps import StepContext

logger = logging.getLogger(__name__)


def sandbox_installed(ctx: StepContext) -> bool:
    return is_executable(ctx.host, ctx.config.paths.sandbox_binary)


def install_sandbox(ctx: StepContext) -> None:
    """Clone and compile syd as the operator, then install the binary as root."""
    build_env = ctx.build_env
    source_dir = build_env.tmp_dir / "syd"
    operator = ctx.operator

    ctx.run(["rm", "-rf", source_dir], user=operator)
    logger.info(f"Cloning {ctx.config.sandbox.repository}")
    ctx.run_build(["git", "clone", "--depth", "1", ctx.config.sandbox.repository, source_dir], user=operator)

    logger.info("Compiling syd (this may take several minutes)...")
    ctx.run_build([build_env.cargo_bin / "cargo", "build", "--release"], user=operator, cwd=source_dir, capture=False)

    built = build_env.target_dir / "release" / "syd"
    ctx.run(["install", "-m", "755", built, ctx.config.paths.sandbox_binary], user=None)
    ctx.run(["rm", "-rf", source_dir], user=operator)
    logger.info(f"syd installed to {ctx.config.paths.sandbox_binary}")


def _policy_content(ctx: StepContext) -> str:
    return SandboxPolicy(
        node_home=ctx.config.paths.node_home,
        p2p_port=ctx.config.node.p2p_port,
        rpc_port=int(ctx.config.node.rpc_laddr.rpartition(":")[2] or NODE_RPC_PORT),
    ).build()


def policy_ready(ctx: StepContext) -> bool:
    return file_has_content(ctx.host, ctx.config.paths.sandbox_policy, _policy_content(ctx))


def install_policy(ctx: StepContext) -> None:
    policy = ctx.config.paths.sandbox_policy
    ensure_directory(ctx.host, policy.parent, mode=0o755)
    write_file(ctx.host, policy, _policy_content(ctx), mode=0o644)
    logger.info(f"Sandbox policy written to {policy}")
