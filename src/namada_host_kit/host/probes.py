"""
Idempotency guards - side-effect-free predicates over host state.

A missing user, file, package or binary is a normal False, never an error.
Command-based probes go through CommandRunner.probe, which runs even in
dry-run mode.
"""

import os
import pwd
import re
import shutil
from pathlib import Path

from ..constants import HOST_TOOLS
from .context import Host


def read_text(host: Host, path: str | Path) -> str | None:
    """Read a host file, falling back to a privileged read when access is denied."""
    target = host.path(path)
    try:
        return target.read_text()
    except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
        return None
    except PermissionError:
        result = host.runner.probe(["cat", target], privileged=True)
        return result.stdout if result.ok else None


def _privileged_test(host: Host, flag: str, target: Path) -> bool:
    return host.runner.probe(["test", flag, target], privileged=True).ok


def file_exists(host: Host, path: str | Path) -> bool:
    target = host.path(path)
    try:
        return target.is_file()
    except PermissionError:
        return _privileged_test(host, "-f", target)


def directory_exists(host: Host, path: str | Path) -> bool:
    target = host.path(path)
    try:
        return target.is_dir()
    except PermissionError:
        return _privileged_test(host, "-d", target)


def file_has_content(host: Host, path: str | Path, content: str) -> bool:
    return read_text(host, path) == content


def file_mode(host: Host, path: str | Path) -> int | None:
    """Permission bits of a host path (None when it does not exist)."""
    target = host.path(path)
    try:
        return target.stat().st_mode & 0o7777
    except (FileNotFoundError, NotADirectoryError):
        return None
    except PermissionError:
        result = host.runner.probe(["stat", "-c", "%a", target], privileged=True)
        return int(result.stdout.strip(), 8) if result.ok else None


def file_mode_is(host: Host, path: str | Path, mode: int) -> bool:
    return file_mode(host, path) == mode


def file_owner(host: Host, path: str | Path) -> str | None:
    target = host.path(path)
    try:
        uid = target.stat().st_uid
    except OSError:
        return None
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def file_owned_by(host: Host, path: str | Path, owner: str) -> bool:
    """Whether the path exists and belongs to the user part of "user" or "user:group"."""
    return file_owner(host, path) == owner.split(":", 1)[0]


def is_executable(host: Host, path: str | Path) -> bool:
    target = host.path(path)
    return file_exists(host, path) and os.access(target, os.X_OK)


def command_available(host: Host, command: str) -> bool:
    """Whether a command name is on PATH, or an absolute path is an executable file."""
    if "/" in command:
        return is_executable(host, command)
    return shutil.which(command) is not None


def check_tools_status() -> dict[str, str | None]:
    """
    Check status of all external tools.

    Returns:
        Dict mapping tool name to path (None if not found)
    """
    return {tool: shutil.which(tool) for tool in HOST_TOOLS}


def tool_version(
    host: Host,
    argv: list[str | Path],
    user: str | None = None,
    env: dict[str, str] | None = None,
) -> str | None:
    """First line of a tool's version output, or None when it cannot run."""
    result = host.runner.probe(argv, user=user, env=env)
    if not result.ok:
        return None
    lines = result.stdout.strip().splitlines()
    return lines[0] if lines else ""


# =============================================================================
# Accounts
# =============================================================================


def user_exists(host: Host, username: str) -> bool:
    return host.runner.probe(["id", "-u", username]).ok


def user_in_group(host: Host, username: str, group: str) -> bool:
    result = host.runner.probe(["id", "-nG", username])
    return result.ok and group in result.stdout.split()


def password_set(host: Host, username: str) -> bool:
    """Whether the account has a usable password ("P" in passwd -S)."""
    result = host.runner.probe(["passwd", "-S", username], privileged=True)
    fields = result.stdout.split()
    return result.ok and len(fields) > 1 and fields[1] == "P"


# =============================================================================
# Packages and services
# =============================================================================


def package_installed(host: Host, package: str) -> bool:
    result = host.runner.probe(["dpkg-query", "-W", "-f=${Status}", package])
    return result.ok and "install ok installed" in result.stdout


def packages_installed(host: Host, packages: list[str]) -> bool:
    return all(package_installed(host, package) for package in packages)


def service_active(host: Host, service: str) -> bool:
    return host.runner.probe(["systemctl", "is-active", "--quiet", service]).ok


def service_enabled(host: Host, service: str) -> bool:
    return host.runner.probe(["systemctl", "is-enabled", "--quiet", service]).ok


# =============================================================================
# Firewall and kernel
# =============================================================================


def firewall_status(host: Host) -> str | None:
    """Raw `ufw status verbose` output (None when ufw is missing or refused)."""
    result = host.runner.probe(["ufw", "status", "verbose"], privileged=True)
    return result.stdout if result.ok else None


def firewall_active(host: Host, ports: list[int] | None = None) -> bool:
    """Whether ufw is enabled with default-deny incoming and every port allowed."""
    status = firewall_status(host)
    if status is None or "Status: active" not in status:
        return False
    if ports is None:
        return True
    if "deny (incoming)" not in status:
        return False
    return all(re.search(rf"^{port}(/tcp)?\s+ALLOW", status, re.MULTILINE) for port in ports)


def sysctl_path(key: str) -> Path:
    return Path("/proc/sys") / key.replace(".", "/")


def sysctl_value(host: Host, key: str) -> str | None:
    """Live kernel parameter value (None when the key does not exist on this kernel)."""
    content = read_text(host, sysctl_path(key))
    if content is None:
        return None
    return " ".join(content.split())


def sysctl_applied(host: Host, settings: dict[str, str]) -> bool:
    """Whether every parameter this kernel knows about has the expected live value."""
    for key, expected in settings.items():
        actual = sysctl_value(host, key)
        if actual is not None and actual != " ".join(expected.split()):
            return False
    return True
