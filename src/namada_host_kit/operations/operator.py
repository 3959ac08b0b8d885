"""
Operator account operations.

One account administers the host, owns the build environment and runs the
node service. Every step here is defined once and reused by all workflows.
"""

import logging
import os
import secrets
import tempfile
from pathlib import Path

from ..constants import SUDOERS_DIR
from ..host.files import block_present, ensure_block, ensure_directory, write_file
from ..host.probes import (
    directory_exists,
    file_exists,
    file_has_content,
    file_mode_is,
    file_owned_by,
    password_set,
    read_text,
    user_exists,
    user_in_group,
)
from ..templates import ShellProfile, SudoersDropIn, WelcomeNote
from ..workflow.steps import StepContext

logger = logging.getLogger(__name__)

PROFILE_MARKER = "operator-profile"


def sudoers_path(username: str) -> str:
    return f"{SUDOERS_DIR}/99-{username}"


def operator_exists(ctx: StepContext) -> bool:
    return user_exists(ctx.host, ctx.operator)


# =============================================================================
# Account
# =============================================================================


def account_ready(ctx: StepContext) -> bool:
    """Operator exists and belongs to every configured group."""
    return operator_exists(ctx) and all(
        user_in_group(ctx.host, ctx.operator, group) for group in ctx.config.operator.groups
    )


def create_account(ctx: StepContext) -> None:
    operator = ctx.config.operator
    if not operator_exists(ctx):
        logger.info(f"Creating operator account {operator.username}")
        ctx.run(["useradd", "-m", "-s", operator.shell, operator.username])

    for group in operator.groups:
        if not user_in_group(ctx.host, operator.username, group):
            ctx.run(["usermod", "-aG", group, operator.username])
            logger.info(f"Added {operator.username} to group {group}")


# =============================================================================
# SSH access
# =============================================================================


def authorized_keys_source(ctx: StepContext) -> Path:
    """Keys copied to the operator: configured file, else the invoking user's."""
    if ctx.config.operator.authorized_keys_source is not None:
        return ctx.config.operator.authorized_keys_source
    if sudo_user := os.environ.get("SUDO_USER"):
        home = Path("/root") if sudo_user == "root" else Path("/home") / sudo_user
        return home / ".ssh" / "authorized_keys"
    return Path.home() / ".ssh" / "authorized_keys"


def operator_authorized_keys(ctx: StepContext) -> Path:
    return ctx.config.operator.home / ".ssh" / "authorized_keys"


def ssh_access_ready(ctx: StepContext) -> bool:
    ssh_dir = ctx.config.operator.home / ".ssh"
    keys = operator_authorized_keys(ctx)
    return (
        file_mode_is(ctx.host, ssh_dir, 0o700)
        and file_exists(ctx.host, keys)
        and file_owned_by(ctx.host, keys, ctx.operator)
    )


def setup_ssh_access(ctx: StepContext) -> None:
    ssh_dir = ctx.config.operator.home / ".ssh"
    ensure_directory(ctx.host, ssh_dir, mode=0o700, owner=ctx.operator)

    source = authorized_keys_source(ctx)
    target = operator_authorized_keys(ctx)
    keys = read_text(ctx.host, source) if source != target else None
    if keys:
        write_file(ctx.host, target, keys, mode=0o600, owner=ctx.operator)
        logger.info(f"Copied SSH keys from {source}")
    elif not file_exists(ctx.host, target):
        ctx.warn(f"No SSH keys found at {source}; add keys to {target} before logging in as {ctx.operator}")


def ssh_directory_ready(ctx: StepContext) -> bool:
    return directory_exists(ctx.host, ctx.config.operator.home / ".ssh")


# =============================================================================
# Password
# =============================================================================


def operator_has_password(ctx: StepContext) -> bool:
    return password_set(ctx.host, ctx.operator)


def set_initial_password(ctx: StepContext) -> None:
    """Set a random password, reported once through the step outputs."""
    password = secrets.token_urlsafe(24)
    ctx.run(["chpasswd"], input=f"{ctx.operator}:{password}\n")
    ctx.outputs["password"] = password
    logger.info(f"Set temporary password for {ctx.operator} (change it with passwd)")


# =============================================================================
# Sudoers
# =============================================================================


def _sudoers_content(ctx: StepContext) -> str:
    return SudoersDropIn(
        username=ctx.operator,
        service_name=ctx.config.node.service_name,
        cli_binary=ctx.config.paths.cli_binary,
    ).build()


def sudoers_ready(ctx: StepContext) -> bool:
    path = sudoers_path(ctx.operator)
    return file_has_content(ctx.host, path, _sudoers_content(ctx)) and file_mode_is(ctx.host, path, 0o440)


def install_sudoers(ctx: StepContext) -> None:
    """Check the drop-in with visudo before it reaches /etc/sudoers.d."""
    content = _sudoers_content(ctx)

    with tempfile.NamedTemporaryFile("w", prefix="nhk-sudoers-", suffix=".tmp") as candidate:
        candidate.write(content)
        candidate.flush()
        os.chmod(candidate.name, 0o644)
        ctx.run(["visudo", "-cf", candidate.name])

    write_file(ctx.host, sudoers_path(ctx.operator), content, mode=0o440, owner="root")
    logger.info(f"Installed sudoers drop-in {sudoers_path(ctx.operator)}")


# =============================================================================
# Shell profile and welcome note
# =============================================================================


def _profile_body(ctx: StepContext) -> str:
    return ShellProfile(
        node_home=ctx.config.paths.node_home,
        build_env=ctx.build_env,
        service_name=ctx.config.node.service_name,
    ).build()


def profile_ready(ctx: StepContext) -> bool:
    bashrc = ctx.config.operator.home / ".bashrc"
    return block_present(ctx.host, bashrc, PROFILE_MARKER, _profile_body(ctx)) and file_owned_by(
        ctx.host, bashrc, ctx.operator
    )


def install_profile(ctx: StepContext) -> None:
    ensure_block(
        ctx.host,
        ctx.config.operator.home / ".bashrc",
        PROFILE_MARKER,
        _profile_body(ctx),
        owner=ctx.operator,
    )


def _welcome_content(ctx: StepContext) -> str:
    return WelcomeNote(username=ctx.operator, sudoers_file=sudoers_path(ctx.operator)).build()


def welcome_ready(ctx: StepContext) -> bool:
    welcome = ctx.config.operator.home / "welcome.txt"
    return file_has_content(ctx.host, welcome, _welcome_content(ctx)) and file_owned_by(ctx.host, welcome, ctx.operator)


def install_welcome(ctx: StepContext) -> None:
    welcome = ctx.config.operator.home / "welcome.txt"
    write_file(ctx.host, welcome, _welcome_content(ctx), mode=0o644, owner=ctx.operator)
