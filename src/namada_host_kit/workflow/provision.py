"""
Provisioning workflow factories.

Each factory returns the ordered step list for one stage of provisioning:
1. operator  - the operator account and its access
2. harden    - packages, kernel, firewall, SSH, services, filesystem
3. build-env - isolated build directories and the Rust toolchain
4. sandbox   - syd and the node's sandbox policy
5. node      - CometBFT, the Namada binary, configuration and service
6. join      - join the network and start the node

"all" chains them in that order.
"""

import shutil
from collections.abc import Callable

from ..config import AppConfig
from ..constants import OS_RELEASE
from ..host.probes import directory_exists, file_exists, read_text
from ..operations import build_env as build_env_ops
from ..operations import hardening as hardening_ops
from ..operations import node as node_ops
from ..operations import operator as operator_ops
from ..operations import sandbox as sandbox_ops
from .steps import Precondition, Step, StepContext, Workflow

# =============================================================================
# Preconditions
# =============================================================================


def is_ubuntu(ctx: StepContext) -> bool:
    content = read_text(ctx.host, OS_RELEASE) or ""
    fields = dict(line.split("=", 1) for line in content.splitlines() if "=" in line)
    os_id = fields.get("ID", "").strip('"')
    return os_id == "ubuntu" or "ubuntu" in fields.get("ID_LIKE", "").strip('"').split()


def has_privileges(ctx: StepContext) -> bool:
    return ctx.host.runner.is_root or shutil.which("sudo") is not None


PREFLIGHT = [
    Precondition("host runs Ubuntu", is_ubuntu),
    Precondition("running as root or sudo is available", has_privileges),
]

OPERATOR_EXISTS = Precondition("operator account exists", operator_ops.operator_exists)
NODE_HOME_EXISTS = Precondition(
    "node directories exist", lambda ctx: directory_exists(ctx.host, ctx.config.paths.node_home)
)
BUILD_ROOT_EXISTS = Precondition(
    "build environment directories exist", lambda ctx: directory_exists(ctx.host, ctx.build_env.root)
)
TOOLCHAIN_INSTALLED = Precondition("Rust toolchain installed", build_env_ops.toolchain_ready)
NODE_BINARY_INSTALLED = Precondition("node binary installed", node_ops.node_binary_ready)
SANDBOX_INSTALLED = Precondition(
    "sandbox installed (or disabled)",
    lambda ctx: not ctx.config.sandbox.enabled or sandbox_ops.sandbox_installed(ctx),
)
SERVICE_INSTALLED = Precondition(
    "node service installed", lambda ctx: file_exists(ctx.host, node_ops.unit_path(ctx.config))
)
CHAIN_JOINED = Precondition("network joined", node_ops.chain_joined)


def _workflow(name: str, description: str) -> Workflow:
    return Workflow(name=name, description=description, preconditions=list(PREFLIGHT))


# =============================================================================
# Factories
# =============================================================================


def create_operator_workflow(config: AppConfig) -> Workflow:
    """Create the operator account with SSH access, password, sudo rights and profile."""
    workflow = _workflow("operator", f"Create and configure the {config.operator.username} account")

    workflow.add_step(
        Step(
            name="create-operator-account",
            description=f"Create {config.operator.username} with groups {', '.join(config.operator.groups)}",
            guard=operator_ops.account_ready,
            action=operator_ops.create_account,
            verify=operator_ops.account_ready,
        )
    )
    workflow.add_step(
        Step(
            name="operator-ssh-access",
            description="Create ~/.ssh and copy authorized keys",
            guard=operator_ops.ssh_access_ready,
            action=operator_ops.setup_ssh_access,
            verify=operator_ops.ssh_directory_ready,
            requires=[OPERATOR_EXISTS],
        )
    )
    workflow.add_step(
        Step(
            name="operator-password",
            description="Set a temporary random password",
            guard=operator_ops.operator_has_password,
            action=operator_ops.set_initial_password,
            verify=operator_ops.operator_has_password,
            requires=[OPERATOR_EXISTS],
        )
    )
    workflow.add_step(
        Step(
            name="operator-sudoers",
            description="Install the operator sudoers drop-in",
            guard=operator_ops.sudoers_ready,
            action=operator_ops.install_sudoers,
            verify=operator_ops.sudoers_ready,
            requires=[OPERATOR_EXISTS],
        )
    )
    workflow.add_step(
        Step(
            name="operator-profile",
            description="Add node paths and aliases to ~/.bashrc",
            guard=operator_ops.profile_ready,
            action=operator_ops.install_profile,
            verify=operator_ops.profile_ready,
            requires=[OPERATOR_EXISTS],
        )
    )
    workflow.add_step(
        Step(
            name="operator-welcome",
            description="Write ~/welcome.txt",
            guard=operator_ops.welcome_ready,
            action=operator_ops.install_welcome,
            verify=operator_ops.welcome_ready,
            requires=[OPERATOR_EXISTS],
        )
    )

    return workflow


def create_hardening_workflow(config: AppConfig) -> Workflow:
    """Harden the host: packages, kernel, firewall, fail2ban, SSH, services, filesystem."""
    workflow = _workflow("harden", "Apply kernel, network and filesystem hardening")

    steps = [
        Step(
            name="security-packages",
            description="Install ufw, fail2ban, unattended-upgrades and monitoring tools",
            guard=hardening_ops.security_packages_ready,
            action=hardening_ops.install_security_packages,
            verify=hardening_ops.security_packages_ready,
        ),
        Step(
            name="automatic-updates",
            description="Enable unattended security upgrades",
            guard=hardening_ops.auto_upgrades_ready,
            action=hardening_ops.enable_auto_upgrades,
            verify=hardening_ops.auto_upgrades_ready,
        ),
        Step(
            name="kernel-hardening",
            description="Write and load hardened sysctl settings",
            guard=hardening_ops.kernel_hardening_ready,
            action=hardening_ops.apply_kernel_hardening,
            verify=hardening_ops.kernel_hardening_ready,
        ),
        Step(
            name="firewall",
            description=f"Enable ufw allowing SSH ({config.hardening.ssh_port}) and P2P ({config.node.p2p_port})",
            guard=hardening_ops.firewall_ready,
            action=hardening_ops.configure_firewall,
            verify=hardening_ops.firewall_ready,
        ),
        Step(
            name="fail2ban",
            description="Configure and start fail2ban for sshd",
            guard=hardening_ops.fail2ban_ready,
            action=hardening_ops.configure_fail2ban,
            verify=hardening_ops.fail2ban_running,
        ),
        Step(
            name="ssh-hardening",
            description=f"Key-only SSH, root login disabled, AllowUsers {config.operator.username}",
            guard=hardening_ops.ssh_hardening_ready,
            action=hardening_ops.harden_ssh,
            verify=hardening_ops.ssh_hardening_ready,
            requires=[OPERATOR_EXISTS],
        ),
        Step(
            name="disable-services",
            description="Disable unneeded services",
            guard=hardening_ops.services_disabled,
            action=hardening_ops.disable_services,
            verify=hardening_ops.services_disabled,
        ),
        Step(
            name="filesystem-permissions",
            description="Tighten permissions on system files and the operator home",
            guard=hardening_ops.permissions_ready,
            action=hardening_ops.secure_permissions,
            verify=hardening_ops.permissions_ready,
        ),
        Step(
            name="node-directories",
            description=f"Create {config.paths.node_home} owned by {config.operator.username}",
            guard=hardening_ops.node_directories_ready,
            action=hardening_ops.create_node_directories,
            verify=hardening_ops.node_directories_ready,
            requires=[OPERATOR_EXISTS],
        ),
        Step(
            name="resource-limits",
            description="Raise open file and process limits for the operator",
            guard=hardening_ops.limits_ready,
            action=hardening_ops.configure_limits,
            verify=hardening_ops.limits_ready,
            requires=[OPERATOR_EXISTS],
        ),
        Step(
            name="node-logging",
            description="Route node syslog output to its own rotated file",
            guard=hardening_ops.node_logging_ready,
            action=hardening_ops.configure_node_logging,
            verify=hardening_ops.node_logging_ready,
        ),
        Step(
            name="maintenance-schedule",
            description="Schedule daily verification and build cleanup",
            guard=hardening_ops.maintenance_ready,
            action=hardening_ops.schedule_maintenance,
            verify=hardening_ops.maintenance_ready,
        ),
    ]
    for step in steps:
        workflow.add_step(step)

    return workflow


def create_build_env_workflow(config: AppConfig) -> Workflow:
    """Create the isolated build environment and install Rust as the operator."""
    workflow = _workflow("build-env", f"Set up the build environment under {config.paths.build_root}")
    operator = config.operator.username

    workflow.add_step(
        Step(
            name="build-directories",
            description=f"Create {config.paths.build_root}/{{target,cargo,rustup,tmp,bin}}",
            guard=build_env_ops.build_directories_ready,
            action=build_env_ops.create_build_directories,
            verify=build_env_ops.build_directories_ready,
            requires=[OPERATOR_EXISTS],
        )
    )
    workflow.add_step(
        Step(
            name="build-env-file",
            description="Write build-env.conf",
            guard=build_env_ops.env_file_ready,
            action=build_env_ops.write_env_file,
            verify=build_env_ops.env_file_ready,
            requires=[BUILD_ROOT_EXISTS],
        )
    )
    workflow.add_step(
        Step(
            name="build-dependencies",
            description="Install compilers and development libraries",
            guard=build_env_ops.build_dependencies_ready,
            action=build_env_ops.install_build_dependencies,
            verify=build_env_ops.build_dependencies_ready,
        )
    )
    workflow.add_step(
        Step(
            name="rust-toolchain",
            description=f"Install the {config.build.toolchain} Rust toolchain with rustup",
            guard=build_env_ops.toolchain_ready,
            action=build_env_ops.install_toolchain,
            verify=build_env_ops.toolchain_ready,
            requires=[OPERATOR_EXISTS, BUILD_ROOT_EXISTS],
            run_as=operator,
        )
    )

    return workflow


def create_sandbox_workflow(config: AppConfig) -> Workflow:
    """Build syd and write the node's sandbox policy."""
    workflow = _workflow("sandbox", "Install the syd sandbox and the node policy")

    workflow.add_step(
        Step(
            name="install-sandbox",
            description=f"Build syd from source into {config.paths.sandbox_binary}",
            guard=sandbox_ops.sandbox_installed,
            action=sandbox_ops.install_sandbox,
            verify=sandbox_ops.sandbox_installed,
            requires=[OPERATOR_EXISTS, TOOLCHAIN_INSTALLED],
            run_as=config.operator.username,
        )
    )
    workflow.add_step(
        Step(
            name="sandbox-policy",
            description=f"Write {config.paths.sandbox_policy}",
            guard=sandbox_ops.policy_ready,
            action=sandbox_ops.install_policy,
            verify=sandbox_ops.policy_ready,
        )
    )

    return workflow


def create_node_workflow(config: AppConfig) -> Workflow:
    """Install CometBFT and Namada, then configure and enable the node service."""
    workflow = _workflow("node", f"Install the Namada node as service {config.node.service_name}")
    operator = config.operator.username

    workflow.add_step(
        Step(
            name="install-cometbft",
            description=f"Install CometBFT {config.node.cometbft_version}",
            guard=node_ops.cometbft_ready,
            action=node_ops.install_cometbft,
            verify=node_ops.cometbft_ready,
        )
    )
    workflow.add_step(
        Step(
            name="build-node",
            description=f"Build Namada ({config.node.version}) from source",
            guard=node_ops.node_binary_ready,
            action=node_ops.build_node,
            verify=node_ops.node_binary_runs,
            requires=[OPERATOR_EXISTS, NODE_HOME_EXISTS, TOOLCHAIN_INSTALLED],
            run_as=operator,
        )
    )
    workflow.add_step(
        Step(
            name="node-config",
            description="Write config.toml and namada.env",
            guard=node_ops.node_config_ready,
            action=node_ops.write_node_config,
            verify=node_ops.node_config_ready,
            requires=[NODE_HOME_EXISTS],
        )
    )
    workflow.add_step(
        Step(
            name="node-service",
            description=f"Install and enable {config.node.service_name}.service",
            guard=node_ops.service_ready,
            action=node_ops.install_service,
            verify=node_ops.service_is_enabled,
            requires=[NODE_BINARY_INSTALLED, SANDBOX_INSTALLED],
        )
    )
    workflow.add_step(
        Step(
            name="node-logrotate",
            description="Rotate node log files",
            guard=node_ops.node_logrotate_ready,
            action=node_ops.install_node_logrotate,
            verify=node_ops.node_logrotate_ready,
        )
    )

    return workflow


def create_join_workflow(config: AppConfig) -> Workflow:
    """Join the configured network and start the node."""
    workflow = _workflow("join", f"Join {config.node.chain_id} and start the node")

    workflow.add_step(
        Step(
            name="join-network",
            description=f"Join chain {config.node.chain_id}",
            guard=node_ops.chain_joined,
            action=node_ops.join_network,
            verify=node_ops.chain_joined,
            requires=[OPERATOR_EXISTS, NODE_BINARY_INSTALLED],
            run_as=config.operator.username,
        )
    )
    workflow.add_step(
        Step(
            name="start-node",
            description=f"Start {config.node.service_name} and confirm it stays active",
            guard=node_ops.node_running,
            action=node_ops.start_node,
            verify=node_ops.node_running,
            requires=[SERVICE_INSTALLED, CHAIN_JOINED],
        )
    )

    return workflow


def create_full_workflow(config: AppConfig, join: bool = False) -> Workflow:
    """Every stage in order; the network join is appended on request."""
    workflow = _workflow("all", "Provision a hardened Namada node host")

    stages = [create_operator_workflow, create_hardening_workflow, create_build_env_workflow]
    if config.sandbox.enabled:
        stages.append(create_sandbox_workflow)
    stages.append(create_node_workflow)
    if join:
        stages.append(create_join_workflow)

    for factory in stages:
        workflow.extend(factory(config))

    return workflow


WORKFLOWS: dict[str, Callable[[AppConfig], Workflow]] = {
    "operator": create_operator_workflow,
    "harden": create_hardening_workflow,
    "build-env": create_build_env_workflow,
    "sandbox": create_sandbox_workflow,
    "node": create_node_workflow,
    "join": create_join_workflow,
    "all": create_full_workflow,
}


def build_workflow(name: str, config: AppConfig, join: bool = False) -> Workflow:
    """
    Create a workflow by name.

    Raises:
        KeyError: Unknown workflow name
    """
    if name == "all":
        return create_full_workflow(config, join=join)
    return WORKFLOWS[name](config)
