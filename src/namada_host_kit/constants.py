"""
Centralized constants for Namada Host Kit.

Fixed values shared by templates, operations and the verifier live here
so they are defined once. Anything an operator may want to change belongs
in config.py instead.
"""

# Ports opened in the firewall
SSH_PORT = 22
NODE_P2P_PORT = 26656
NODE_RPC_PORT = 26657

# Kernel parameters written to the hardened sysctl drop-in
SYSCTL_HARDENING = {
    # ASLR
    "kernel.randomize_va_space": "2",
    # Memory protection
    "kernel.kptr_restrict": "2",
    "kernel.dmesg_restrict": "1",
    "kernel.perf_event_paranoid": "3",
    # Network security
    "net.ipv4.conf.all.send_redirects": "0",
    "net.ipv4.conf.default.send_redirects": "0",
    "net.ipv4.conf.all.accept_redirects": "0",
    "net.ipv4.conf.default.accept_redirects": "0",
    "net.ipv4.conf.all.accept_source_route": "0",
    "net.ipv4.conf.default.accept_source_route": "0",
    "net.ipv4.conf.all.log_martians": "1",
    "net.ipv4.conf.default.log_martians": "1",
    "net.ipv4.icmp_echo_ignore_broadcasts": "1",
    "net.ipv4.icmp_ignore_bogus_error_responses": "1",
    "net.ipv4.tcp_syncookies": "1",
    "net.ipv6.conf.all.accept_redirects": "0",
    "net.ipv6.conf.default.accept_redirects": "0",
    # Process restrictions
    "kernel.yama.ptrace_scope": "1",
    "fs.protected_hardlinks": "1",
    "fs.protected_symlinks": "1",
    "fs.suid_dumpable": "0",
    # No core dumps
    "kernel.core_pattern": "|/bin/false",
    # No forwarding
    "net.ipv4.ip_forward": "0",
}

SECURITY_PACKAGES = [
    "unattended-upgrades",
    "ufw",
    "fail2ban",
    "aide",
    "htop",
    "iotop",
    "nethogs",
]

# Everything needed to compile Namada, CometBFT tooling and syd
BUILD_PACKAGES = [
    "git",
    "curl",
    "build-essential",
    "make",
    "clang",
    "pkg-config",
    "libssl-dev",
    "libudev-dev",
    "libseccomp-dev",
    "protobuf-compiler",
]

SERVICES_TO_DISABLE = [
    "bluetooth",
    "cups",
    "avahi-daemon",
    "whoopsie",
    "apport",
    "snapd",
]

# System file modes enforced by the filesystem hardening step
SYSTEM_FILE_MODES = {
    "/home": 0o755,
    "/etc": 0o755,
    "/etc/passwd": 0o644,
    "/etc/group": 0o644,
    "/etc/shadow": 0o640,
}

# Drop-in and config file locations
SYSCTL_DROPIN = "/etc/sysctl.d/99-hardened.conf"
FAIL2BAN_JAIL = "/etc/fail2ban/jail.local"
# sshd keeps the first value it reads for a keyword, so this drop-in must sort first
SSHD_DROPIN = "/etc/ssh/sshd_config.d/00-namada-hardening.conf"
AUTO_UPGRADES = "/etc/apt/apt.conf.d/20auto-upgrades"
LIMITS_DROPIN = "/etc/security/limits.d/99-namada.conf"
RSYSLOG_DROPIN = "/etc/rsyslog.d/99-namada.conf"
SYSTEMD_UNIT_DIR = "/etc/systemd/system"
LOGROTATE_DIR = "/etc/logrotate.d"
CRON_MAINTENANCE = "/etc/cron.d/namada-maintenance"
SUDOERS_DIR = "/etc/sudoers.d"
OS_RELEASE = "/etc/os-release"

# Install locations for external binaries
LOCAL_BIN = "/usr/local/bin"

# Upstream sources
RUSTUP_INIT_URL = "https://sh.rustup.rs"
NAMADA_REPOSITORY = "https://github.com/namada-net/namada.git"
NAMADA_RELEASES_API = "https://api.github.com/repos/namada-net/namada/releases/latest"
SYD_REPOSITORY = "https://git.sr.ht/~alip/syd"
COMETBFT_RELEASE_URL = (
    "https://github.com/cometbft/cometbft/releases/download/v{version}/cometbft_{version}_linux_{arch}.tar.gz"
)

# Start/end markers for blocks this tool manages inside shared files
BLOCK_BEGIN = "# BEGIN namada-host-kit: {marker}"
BLOCK_END = "# END namada-host-kit: {marker}"

# Exit code reported by a probe whose binary is missing (shell convention)
EXIT_COMMAND_NOT_FOUND = 127

# External commands the workflows call (reported by `nhk check`)
HOST_TOOLS = [
    "apt-get",
    "dpkg-query",
    "systemctl",
    "journalctl",
    "useradd",
    "usermod",
    "chpasswd",
    "visudo",
    "ufw",
    "sysctl",
    "sshd",
    "git",
    "tar",
    "sudo",
    "runuser",
]
