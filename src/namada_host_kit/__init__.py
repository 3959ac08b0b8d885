"""
Namada Host Kit (nhk) - Idempotent provisioning for hardened Namada hosts

Prepares an Ubuntu machine to run a Namada node with:
- A privileged operator account with SSH access and scoped sudo
- Kernel, network, SSH and filesystem hardening
- An isolated Rust build environment
- The syd sandbox wrapping the node process
- A systemd-managed node service and network join
"""

__version__ = "0.1.0"
__package_name__ = "namada-host-kit"
__short_name__ = "nhk"
