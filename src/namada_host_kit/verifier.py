"""
Host verification module - a fixed checklist run after provisioning.

Verifies:
- Operator account and its sudoers drop-in
- Kernel hardening (drop-in file and live ASLR value)
- Firewall, fail2ban and SSH hardening
- Build environment, Rust toolchain and sandbox
- Node binary and service

Checks are advisory. Security controls that are missing FAIL; stages that
simply have not been provisioned yet WARN.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .config import AppConfig, BuildEnvironment
from .constants import FAIL2BAN_JAIL, SSHD_DROPIN, SYSCTL_DROPIN
from .host import Host
from .host.probes import (
    directory_exists,
    file_exists,
    file_mode,
    firewall_active,
    is_executable,
    service_active,
    service_enabled,
    sysctl_value,
    user_exists,
)
from .operations.build_env import cargo_version
from .operations.hardening import allowed_ports
from .operations.node import unit_path
from .operations.operator import sudoers_path

logger = logging.getLogger(__name__)


class CheckStatus(Enum):
    """Status of a verification check."""

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass
class CheckResult:
    """Result of a single verification check."""

    name: str
    status: CheckStatus
    details: str | None = None


@dataclass
class VerificationResult:
    """Overall verification result for the host."""

    checks: list[CheckResult]

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for check in self.checks if check.status == status)

    @property
    def passed(self) -> int:
        return self._count(CheckStatus.PASS)

    @property
    def warnings(self) -> int:
        return self._count(CheckStatus.WARN)

    @property
    def failures(self) -> int:
        return self._count(CheckStatus.FAIL)

    @property
    def is_healthy(self) -> bool:
        """Whether no check failed (warnings allowed)."""
        return self.failures == 0


def _result(name: str, ok: bool, passed: str, missing: str, missing_status: CheckStatus = CheckStatus.FAIL):
    return CheckResult(name=name, status=CheckStatus.PASS if ok else missing_status, details=passed if ok else missing)


def check_operator(host: Host, config: AppConfig) -> CheckResult:
    username = config.operator.username
    return _result("Operator account", user_exists(host, username), username, f"{username} does not exist")


def check_sudoers(host: Host, config: AppConfig) -> CheckResult:
    path = sudoers_path(config.operator.username)
    mode = file_mode(host, path)
    if mode is None:
        return CheckResult(name="Operator sudoers", status=CheckStatus.FAIL, details=f"{path} missing")
    if mode != 0o440:
        return CheckResult(
            name="Operator sudoers", status=CheckStatus.WARN, details=f"{path} mode {mode:o}, expected 440"
        )
    return CheckResult(name="Operator sudoers", status=CheckStatus.PASS, details=path)


def check_kernel_hardening(host: Host, config: AppConfig) -> CheckResult:
    return _result("Kernel hardening", file_exists(host, SYSCTL_DROPIN), SYSCTL_DROPIN, f"{SYSCTL_DROPIN} missing")


def check_aslr(host: Host, config: AppConfig) -> CheckResult:
    value = sysctl_value(host, "kernel.randomize_va_space")
    return _result("ASLR", value == "2", "randomize_va_space = 2", f"randomize_va_space = {value}")


def check_firewall(host: Host, config: AppConfig) -> CheckResult:
    ports = allowed_ports(config)
    return _result(
        "Firewall",
        firewall_active(host, ports),
        f"active, allowing {', '.join(str(p) for p in ports)}",
        "ufw inactive or required ports not allowed",
    )


def check_fail2ban(host: Host, config: AppConfig) -> CheckResult:
    running = service_active(host, "fail2ban") and file_exists(host, FAIL2BAN_JAIL)
    return _result("fail2ban", running, "active", "not running or jail.local missing")


def check_ssh_hardening(host: Host, config: AppConfig) -> CheckResult:
    return _result("SSH hardening", file_exists(host, SSHD_DROPIN), SSHD_DROPIN, f"{SSHD_DROPIN} missing")


def check_build_env(host: Host, config: AppConfig) -> CheckResult:
    root = config.paths.build_root
    return _result("Build environment", directory_exists(host, root), str(root), "not yet set up", CheckStatus.WARN)


def check_toolchain(host: Host, config: AppConfig) -> CheckResult:
    version = cargo_version(host, BuildEnvironment.from_config(config), config.operator.username)
    return _result("Rust toolchain", version is not None, version or "", "cargo not installed", CheckStatus.WARN)


def check_sandbox_binary(host: Host, config: AppConfig) -> CheckResult:
    if not config.sandbox.enabled:
        return CheckResult(name="Sandbox binary", status=CheckStatus.WARN, details="sandbox disabled in config")
    binary = config.paths.sandbox_binary
    return _result("Sandbox binary", is_executable(host, binary), str(binary), "not installed", CheckStatus.WARN)


def check_sandbox_policy(host: Host, config: AppConfig) -> CheckResult:
    policy = config.paths.sandbox_policy
    return _result("Sandbox policy", file_exists(host, policy), str(policy), "not installed", CheckStatus.WARN)


def check_node_binary(host: Host, config: AppConfig) -> CheckResult:
    binary = config.paths.node_binary
    return _result("Node binary", is_executable(host, binary), str(binary), "not yet installed", CheckStatus.WARN)


def check_service_enabled(host: Host, config: AppConfig) -> CheckResult:
    service = config.node.service_name
    enabled = file_exists(host, unit_path(config)) and service_enabled(host, service)
    return _result("Node service enabled", enabled, service, "not installed or disabled", CheckStatus.WARN)


def check_service_active(host: Host, config: AppConfig) -> CheckResult:
    service = config.node.service_name
    return _result("Node service active", service_active(host, service), "running", "not running", CheckStatus.WARN)


CHECKS: list[tuple[str, Callable[[Host, AppConfig], CheckResult]]] = [
    ("Operator account", check_operator),
    ("Operator sudoers", check_sudoers),
    ("Kernel hardening", check_kernel_hardening),
    ("ASLR", check_aslr),
    ("Firewall", check_firewall),
    ("fail2ban", check_fail2ban),
    ("SSH hardening", check_ssh_hardening),
    ("Build environment", check_build_env),
    ("Rust toolchain", check_toolchain),
    ("Sandbox binary", check_sandbox_binary),
    ("Sandbox policy", check_sandbox_policy),
    ("Node binary", check_node_binary),
    ("Node service enabled", check_service_enabled),
    ("Node service active", check_service_active),
]


def verify_host(host: Host, config: AppConfig) -> VerificationResult:
    """
    Run every check against the host.

    Args:
        host: Host to inspect
        config: Application configuration

    Returns:
        VerificationResult with one CheckResult per check
    """
    checks: list[CheckResult] = []

    for name, check in CHECKS:
        try:
            checks.append(check(host, config))
        except Exception as e:
            logger.warning(f"Check '{name}' could not be evaluated: {e}")
            checks.append(CheckResult(name=name, status=CheckStatus.WARN, details=f"check error: {e}"))

    return VerificationResult(checks=checks)
