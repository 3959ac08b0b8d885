"""
File writer - the only place configuration files reach the disk.

Writes are content-addressed: a file is rewritten only when its content
differs. When the tool lacks write access the write goes through the
command runner (tee / mkdir / chmod under sudo).
"""

import logging
import os
import re
import shutil
from datetime import datetime
from pathlib import Path

from ..constants import BLOCK_BEGIN, BLOCK_END
from .context import Host
from .probes import directory_exists, file_exists, file_mode, file_owned_by, read_text

logger = logging.getLogger(__name__)


def _owner_spec(owner: str) -> str:
    return owner if ":" in owner else f"{owner}:{owner}"


def _chmod(host: Host, target: Path, mode: int) -> None:
    try:
        os.chmod(target, mode)
    except PermissionError:
        host.runner.run(["chmod", f"{mode:o}", target])


def _chown(host: Host, target: Path, owner: str, recursive: bool = False) -> None:
    argv: list[str | Path] = ["chown", "-R"] if recursive else ["chown"]
    host.runner.run([*argv, _owner_spec(owner), target])


def write_file(
    host: Host,
    path: str | Path,
    content: str,
    mode: int | None = None,
    owner: str | None = None,
) -> bool:
    """
    Write a file when its content, mode or owner differs.

    Args:
        host: Target host
        path: Absolute host path
        content: Full file content
        mode: Permission bits to enforce
        owner: "user" or "user:group" enforced on the file

    Returns:
        True if anything changed (or would change in dry-run mode)
    """
    target = host.path(path)
    content_changed = read_text(host, path) != content
    mode_changed = mode is not None and file_mode(host, path) != mode
    owner_changed = owner is not None and (content_changed or not file_owned_by(host, path, owner))

    if host.dry_run:
        if content_changed:
            logger.info(f"[DRY RUN] Would write {path}")
        elif mode_changed:
            logger.info(f"[DRY RUN] Would chmod {mode:o} {path}")
        elif owner_changed:
            logger.info(f"[DRY RUN] Would chown {owner} {path}")
        return content_changed or mode_changed or owner_changed

    if content_changed:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        except PermissionError:
            host.runner.run(["mkdir", "-p", target.parent])
            host.runner.run(["tee", target], input=content)
        logger.debug(f"Wrote {path}")

    if mode_changed:
        _chmod(host, target, mode)

    if owner_changed:
        _chown(host, target, owner)

    return content_changed or mode_changed or owner_changed


def ensure_directory(
    host: Host,
    path: str | Path,
    mode: int | None = None,
    owner: str | None = None,
    recursive_owner: bool = False,
) -> bool:
    """Create a directory (and parents) and enforce its mode; owner is applied on creation."""
    target = host.path(path)
    created = not directory_exists(host, path)
    mode_changed = mode is not None and (created or file_mode(host, path) != mode)

    if host.dry_run:
        if created:
            logger.info(f"[DRY RUN] Would create directory {path}")
        return created or mode_changed

    if created:
        try:
            target.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            host.runner.run(["mkdir", "-p", target])

    if mode_changed:
        _chmod(host, target, mode)

    if owner is not None and (created or recursive_owner):
        _chown(host, target, owner, recursive=recursive_owner)

    return created or mode_changed


def ensure_mode(host: Host, path: str | Path, mode: int) -> bool:
    """Enforce permission bits on an existing path."""
    current = file_mode(host, path)
    if current is None or current == mode:
        return False

    if host.dry_run:
        logger.info(f"[DRY RUN] Would chmod {mode:o} {path}")
        return True

    _chmod(host, host.path(path), mode)
    return True


def remove_file(host: Host, path: str | Path) -> bool:
    """Remove a file if present."""
    if not file_exists(host, path):
        return False

    if host.dry_run:
        logger.info(f"[DRY RUN] Would remove {path}")
        return True

    target = host.path(path)
    try:
        target.unlink()
    except PermissionError:
        host.runner.run(["rm", "-f", target])
    return True


def backup_file(host: Host, path: str | Path, backup_dir: Path) -> Path | None:
    """
    Copy a file into the backup directory before it is modified.

    Returns:
        Backup path, or None when the source does not exist
    """
    if not file_exists(host, path):
        return None

    source = host.path(path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    destination = host.path(backup_dir) / f"{source.name}.{timestamp}"

    if host.dry_run:
        logger.info(f"[DRY RUN] Would back up {path} to {destination}")
        return destination

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
    except PermissionError:
        host.runner.run(["mkdir", "-p", destination.parent])
        host.runner.run(["cp", "-p", source, destination])

    logger.info(f"Backed up {path} to {destination}")
    return destination


# =============================================================================
# Managed blocks
# =============================================================================


def managed_block(marker: str, body: str) -> str:
    """Render a marker-delimited block."""
    return f"{BLOCK_BEGIN.format(marker=marker)}\n{body.rstrip()}\n{BLOCK_END.format(marker=marker)}\n"


def _block_pattern(marker: str) -> re.Pattern:
    begin = re.escape(BLOCK_BEGIN.format(marker=marker))
    end = re.escape(BLOCK_END.format(marker=marker))
    return re.compile(rf"^{begin}\n.*?^{end}\n?", re.MULTILINE | re.DOTALL)


def block_present(host: Host, path: str | Path, marker: str, body: str) -> bool:
    """Whether the file holds exactly this managed block."""
    content = read_text(host, path)
    return content is not None and managed_block(marker, body) in content


def ensure_block(
    host: Host,
    path: str | Path,
    marker: str,
    body: str,
    mode: int | None = None,
    owner: str | None = None,
) -> bool:
    """Insert or replace a managed block inside a shared file, keeping the rest intact."""
    current = read_text(host, path) or ""
    block = managed_block(marker, body)
    pattern = _block_pattern(marker)

    if pattern.search(current):
        updated = pattern.sub(lambda _: block, current, count=1)
    else:
        separator = "" if not current or current.endswith("\n\n") else ("\n" if current.endswith("\n") else "\n\n")
        updated = f"{current}{separator}{block}"

    return write_file(host, path, updated, mode=mode, owner=owner)
