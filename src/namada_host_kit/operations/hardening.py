"""
Host hardening operations - packages, kernel, firewall, SSH, services, filesystem.
"""

import logging

from ..config import AppConfig
from ..constants import (
    AUTO_UPGRADES,
    CRON_MAINTENANCE,
    FAIL2BAN_JAIL,
    LIMITS_DROPIN,
    LOGROTATE_DIR,
    RSYSLOG_DROPIN,
    SECURITY_PACKAGES,
    SSHD_DROPIN,
    SYSCTL_DROPIN,
    SYSCTL_HARDENING,
    SYSTEM_FILE_MODES,
)
from ..errors import CommandError
from ..host.files import backup_file, ensure_directory, ensure_mode, remove_file, write_file
from ..host.probes import (
    file_exists,
    file_has_content,
    file_mode,
    file_mode_is,
    file_owner,
    firewall_active,
    packages_installed,
    service_active,
    service_enabled,
    sysctl_applied,
)
from ..templates import (
    AutoUpgrades,
    CronEntry,
    CronTable,
    Fail2banJail,
    LimitsConf,
    LogrotateRule,
    RsyslogRule,
    SshdHardening,
    SysctlSettings,
)
from ..workflow.steps import StepContext
from .operator import operator_authorized_keys

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
NODE_SYSLOG = "/var/log/namada.log"


def install_packages(ctx: StepContext, packages: list[str]) -> None:
    """apt-get update + install, non-interactively."""
    ctx.run(["apt-get", "update"], env=APT_ENV)
    ctx.run(["apt-get", "install", "-y", *packages], env=APT_ENV)
    logger.info(f"Installed packages: {', '.join(packages)}")


# =============================================================================
# Packages and automatic updates
# =============================================================================


def security_packages_ready(ctx: StepContext) -> bool:
    return packages_installed(ctx.host, SECURITY_PACKAGES)


def install_security_packages(ctx: StepContext) -> None:
    install_packages(ctx, SECURITY_PACKAGES)


def auto_upgrades_ready(ctx: StepContext) -> bool:
    return file_has_content(ctx.host, AUTO_UPGRADES, AutoUpgrades().build())


def enable_auto_upgrades(ctx: StepContext) -> None:
    write_file(ctx.host, AUTO_UPGRADES, AutoUpgrades().build(), mode=0o644)


# =============================================================================
# Kernel
# =============================================================================


def kernel_hardening_ready(ctx: StepContext) -> bool:
    content = SysctlSettings(SYSCTL_HARDENING).build()
    return file_has_content(ctx.host, SYSCTL_DROPIN, content) and sysctl_applied(ctx.host, SYSCTL_HARDENING)


def apply_kernel_hardening(ctx: StepContext) -> None:
    backup_file(ctx.host, SYSCTL_DROPIN, ctx.config.paths.backup_dir)
    write_file(ctx.host, SYSCTL_DROPIN, SysctlSettings(SYSCTL_HARDENING).build(), mode=0o644)
    # -e: keys this kernel does not know are skipped instead of failing the load
    ctx.run(["sysctl", "-e", "-p", SYSCTL_DROPIN])


# =============================================================================
# Firewall and fail2ban
# =============================================================================


def allowed_ports(config: AppConfig) -> list[int]:
    """Inbound TCP ports the firewall opens: SSH, node P2P, then any extras."""
    hardening = config.hardening
    return [hardening.ssh_port, config.node.p2p_port, *hardening.extra_ports]


def firewall_ports(ctx: StepContext) -> list[int]:
    return allowed_ports(ctx.config)


def firewall_ready(ctx: StepContext) -> bool:
    return firewall_active(ctx.host, firewall_ports(ctx))


def configure_firewall(ctx: StepContext) -> None:
    """Default deny incoming; SSH and the node's P2P port are the only open ports."""
    ctx.run(["ufw", "--force", "reset"])
    ctx.run(["ufw", "default", "deny", "incoming"])
    ctx.run(["ufw", "default", "allow", "outgoing"])
    for port in firewall_ports(ctx):
        ctx.run(["ufw", "allow", f"{port}/tcp"])
    ctx.run(["ufw", "--force", "enable"])
    logger.info(f"Firewall enabled, allowed ports: {', '.join(str(p) for p in firewall_ports(ctx))}")


def _jail_content(ctx: StepContext) -> str:
    hardening = ctx.config.hardening
    return Fail2banJail(
        bantime=hardening.fail2ban_bantime,
        findtime=hardening.fail2ban_findtime,
        maxretry=hardening.fail2ban_maxretry,
        ssh_port=hardening.ssh_port,
    ).build()


def fail2ban_ready(ctx: StepContext) -> bool:
    return (
        file_has_content(ctx.host, FAIL2BAN_JAIL, _jail_content(ctx))
        and service_enabled(ctx.host, "fail2ban")
        and service_active(ctx.host, "fail2ban")
    )


def configure_fail2ban(ctx: StepContext) -> None:
    backup_file(ctx.host, FAIL2BAN_JAIL, ctx.config.paths.backup_dir)
    changed = write_file(ctx.host, FAIL2BAN_JAIL, _jail_content(ctx), mode=0o644)
    was_active = service_active(ctx.host, "fail2ban")
    ctx.run(["systemctl", "enable", "--now", "fail2ban"])
    if changed and was_active:
        ctx.run(["systemctl", "restart", "fail2ban"])


def fail2ban_running(ctx: StepContext) -> bool:
    return service_active(ctx.host, "fail2ban")


# =============================================================================
# SSH
# =============================================================================


def _sshd_content(ctx: StepContext) -> str:
    return SshdHardening(allow_users=[ctx.operator], port=ctx.config.hardening.ssh_port).build()


def ssh_hardening_ready(ctx: StepContext) -> bool:
    return file_has_content(ctx.host, SSHD_DROPIN, _sshd_content(ctx))


def harden_ssh(ctx: StepContext) -> None:
    """
    Install the sshd drop-in, validate the full configuration, then restart.

    A drop-in that fails `sshd -t` or the restart is removed again, so the
    next run rewrites it instead of finding it already in place.
    """
    if not file_exists(ctx.host, operator_authorized_keys(ctx)):
        ctx.warn(
            f"{ctx.operator} has no authorized_keys; password logins are being disabled, "
            "so SSH access will be refused until keys are installed"
        )

    backup_file(ctx.host, SSHD_DROPIN, ctx.config.paths.backup_dir)
    write_file(ctx.host, SSHD_DROPIN, _sshd_content(ctx), mode=0o644)

    try:
        ctx.run(["sshd", "-t"])
        ctx.run(["systemctl", "restart", "ssh"])
    except CommandError:
        logger.error("sshd did not accept the hardening drop-in, removing it")
        remove_file(ctx.host, SSHD_DROPIN)
        raise

    logger.info("SSH hardened and restarted")


# =============================================================================
# Services
# =============================================================================


def _enabled_services(ctx: StepContext) -> list[str]:
    return [s for s in ctx.config.hardening.services_to_disable if service_enabled(ctx.host, s)]


def services_disabled(ctx: StepContext) -> bool:
    return not _enabled_services(ctx)


def disable_services(ctx: StepContext) -> None:
    for service in _enabled_services(ctx):
        ctx.run(["systemctl", "disable", "--now", service])
        logger.info(f"Disabled service: {service}")


# =============================================================================
# Filesystem
# =============================================================================


def _system_modes(ctx: StepContext) -> dict[str, int]:
    modes = dict(SYSTEM_FILE_MODES)
    modes[str(ctx.config.operator.home)] = 0o700
    return modes


def permissions_ready(ctx: StepContext) -> bool:
    # Paths that do not exist yet (the operator home before the account) are not checked
    return all(file_mode(ctx.host, path) in (None, mode) for path, mode in _system_modes(ctx).items())


def secure_permissions(ctx: StepContext) -> None:
    for path, mode in _system_modes(ctx).items():
        if ensure_mode(ctx.host, path, mode):
            logger.info(f"chmod {mode:o} {path}")


def _node_directories(ctx: StepContext) -> dict:
    paths = ctx.config.paths
    return {
        paths.node_home: 0o755,
        paths.node_bin_dir: 0o755,
        paths.node_config_dir: 0o755,
        paths.node_logs_dir: 0o755,
        paths.node_backups_dir: 0o700,
        paths.node_data_dir: 0o700,
    }


def node_directories_ready(ctx: StepContext) -> bool:
    return all(
        file_mode_is(ctx.host, path, mode) and file_owner(ctx.host, path) == ctx.operator
        for path, mode in _node_directories(ctx).items()
    )


def create_node_directories(ctx: StepContext) -> None:
    for path, mode in _node_directories(ctx).items():
        ensure_directory(ctx.host, path, mode=mode)
    ensure_directory(ctx.host, ctx.config.paths.node_home, owner=ctx.operator, recursive_owner=True)


# =============================================================================
# Limits, logging and maintenance
# =============================================================================


def _limits_content(ctx: StepContext) -> str:
    return LimitsConf(users=[ctx.operator]).build()


def limits_ready(ctx: StepContext) -> bool:
    return file_has_content(ctx.host, LIMITS_DROPIN, _limits_content(ctx))


def configure_limits(ctx: StepContext) -> None:
    write_file(ctx.host, LIMITS_DROPIN, _limits_content(ctx), mode=0o644)


def _syslog_files(ctx: StepContext) -> dict[str, str]:
    rsyslog = RsyslogRule(program=ctx.config.node.service_name, log_file=NODE_SYSLOG).build()
    rotate = LogrotateRule(paths=[NODE_SYSLOG], owner="syslog", group="adm").build()
    return {RSYSLOG_DROPIN: rsyslog, f"{LOGROTATE_DIR}/namada-syslog": rotate}


def node_logging_ready(ctx: StepContext) -> bool:
    return all(file_has_content(ctx.host, path, content) for path, content in _syslog_files(ctx).items())


def configure_node_logging(ctx: StepContext) -> None:
    written = [
        path for path, content in _syslog_files(ctx).items() if write_file(ctx.host, path, content, mode=0o644)
    ]
    if not written:
        return
    try:
        ctx.run(["systemctl", "restart", "rsyslog"])
    except CommandError:
        logger.error("rsyslog restart failed, removing the node logging rules")
        for path in written:
            remove_file(ctx.host, path)
        raise


def _cron_content(ctx: StepContext) -> str:
    cli = ctx.config.paths.cli_binary
    log_dir = ctx.config.paths.log_dir
    return CronTable(
        entries=[
            CronEntry("0 2 * * *", "root", f"{cli} verify >> {log_dir}/verify.log 2>&1"),
            CronEntry("0 3 * * *", "root", f"{cli} build-env clean >> {log_dir}/build-clean.log 2>&1"),
            CronEntry("0 3 * * 0", "root", f"/usr/bin/aide --check >> {log_dir}/aide-check.log 2>&1"),
        ]
    ).build()


def maintenance_ready(ctx: StepContext) -> bool:
    return file_has_content(ctx.host, CRON_MAINTENANCE, _cron_content(ctx))


def schedule_maintenance(ctx: StepContext) -> None:
    ensure_directory(ctx.host, ctx.config.paths.log_dir, mode=0o750)
    write_file(ctx.host, CRON_MAINTENANCE, _cron_content(ctx), mode=0o644)
