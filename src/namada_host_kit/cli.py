"""
CLI module - Command line interface for Namada Host Kit

Entry point for the `nhk` command using Typer.
"""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config, validate_config
from .errors import ProvisionError
from .host import CommandRunner, Host
from .host.probes import check_tools_status
from .logging_setup import configure_logging
from .operations import build_env as build_env_ops
from .operations import node as node_ops
from .runners import RunnerCallbacks, SequentialRunner, StepOutcome, WorkflowResult
from .verifier import CheckStatus, VerificationResult, verify_host
from .workflow import StepContext, StepStatus
from .workflow.provision import WORKFLOWS, build_workflow, create_full_workflow

console = Console()
app = typer.Typer(
    name="nhk",
    help="Namada Host Kit - idempotent provisioning for hardened Namada node hosts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Global options callback for version and config
def version_callback(value: bool):
    if value:
        console.print(f"nhk version {__version__}")
        raise typer.Exit()


# Type aliases for common options
ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config file", exists=True, dir_okay=False),
]


def get_config(config_path: Path | None = None) -> AppConfig:
    """Load and validate configuration; invalid values are a usage error."""
    config = load_config(config_path)
    errors = validate_config(config)
    if errors:
        for error in errors:
            console.print(f"[red]Config error:[/red] {error}")
        raise typer.Exit(2)
    return config


@app.callback()
def main(
    version: Annotated[
        bool, typer.Option("--version", "-v", callback=version_callback, is_eager=True, help="Show version")
    ] = False,
):
    """Namada Host Kit - idempotent provisioning for hardened Namada node hosts."""
    pass


STATUS_STYLES = {
    StepStatus.APPLIED: "[green]✓ APPLIED[/green]",
    StepStatus.SKIPPED: "[dim]• SKIPPED[/dim]",
    StepStatus.FAILED: "[red]✗ FAILED[/red]",
    StepStatus.NOT_RUN: "[dim]- NOT RUN[/dim]",
}


def print_workflow_report(result: WorkflowResult) -> None:
    """Per-step report table followed by warnings and one-time outputs."""
    table = Table(title=f"Workflow: {result.workflow_name}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Details", style="dim", no_wrap=False)

    for outcome in result.outcomes:
        details = outcome.error or "; ".join(outcome.warnings)
        status_str = STATUS_STYLES.get(outcome.status, outcome.status.value)
        table.add_row(str(outcome.ordinal), outcome.name, status_str, details)

    console.print(table)
    console.print(
        f"  Applied: {len(result.applied)}  Skipped: {len(result.skipped)}  "
        f"Failed: {len(result.failed)}  Not run: {len(result.not_run)}"
    )

    # Step failures are already in the table; preflight failures are not
    if not result.failed:
        for error in result.errors:
            console.print(f"[red]Error:[/red] {error}")

    if result.warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for warning in result.warnings:
            console.print(f"  [yellow]⚠[/yellow] {warning}")

    password = result.outputs.get("password")
    if password:
        console.print(f"\n[bold yellow]Temporary password for the operator:[/bold yellow] {password}")
        console.print("[yellow]It is shown only once. Change it after the first login with `passwd`.[/yellow]")


def print_verification(result: VerificationResult) -> None:
    table = Table(title="Verification Results")
    table.add_column("Check", style="cyan", no_wrap=False)
    table.add_column("Status", justify="center", width=8)
    table.add_column("Details", style="dim", no_wrap=False)

    for chk in result.checks:
        if chk.status == CheckStatus.PASS:
            status_str = "[green]✓ PASS[/green]"
        elif chk.status == CheckStatus.WARN:
            status_str = "[yellow]⚠ WARN[/yellow]"
        else:
            status_str = "[red]✗ FAIL[/red]"
        table.add_row(chk.name, status_str, chk.details or "")

    console.print(table)
    console.print()
    console.print(f"  Passed: {result.passed}  Warnings: {result.warnings}  Failures: {result.failures}")
    console.print()


@app.command()
def provision(
    workflow_name: Annotated[
        str, typer.Argument(metavar="WORKFLOW", help=f"Workflow to run: {' | '.join(WORKFLOWS)}")
    ] = "all",
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Show what would be done without making changes")] = False,
    join: Annotated[bool, typer.Option("--join", help="Join the network and start the node (with 'all')")] = False,
    config: ConfigOption = None,
):
    """
    Provision the host by running a workflow.

    Every step checks the host first and only changes what is missing, so
    re-running a workflow is safe. The first failing step aborts the run.

    [bold]Examples:[/bold]

        nhk provision all --yes --join

        nhk provision harden --dry-run

        nhk provision node -c /etc/namada-host-kit/config.yaml
    """
    if workflow_name not in WORKFLOWS:
        console.print(f"[red]Error:[/red] Unknown workflow: {workflow_name}")
        console.print(f"Available: {', '.join(WORKFLOWS)}")
        raise typer.Exit(2)

    cfg = get_config(config)
    configure_logging(cfg.logging, log_dir=cfg.paths.log_dir, run_name=f"provision-{workflow_name}", console=console)
    workflow = build_workflow(workflow_name, cfg, join=join)

    console.print(f"\n[bold]{workflow.description}[/bold]")
    console.print(f"  Operator:  {cfg.operator.username}")
    console.print(f"  Node home: {cfg.paths.node_home}")
    console.print(f"  Chain:     {cfg.node.chain_id}")
    console.print(f"  Steps:     {len(workflow.steps)}")
    console.print()

    if not yes and not dry_run:
        console.print("[yellow]This will make significant security changes to this host.[/yellow]")
        if not typer.confirm("Continue?", default=False):
            console.print("Aborted.")
            raise typer.Exit(0)

    total = len(workflow.steps)

    def on_step_start(name: str, ordinal: int, description: str):
        console.print(f"  [{ordinal}/{total}] {name}: {description}")

    def on_step_complete(outcome: StepOutcome):
        if outcome.status == StepStatus.FAILED:
            console.print(f"  [red]✗[/red] {outcome.name}: {outcome.error}")
        elif outcome.status == StepStatus.APPLIED:
            console.print(f"  [green]✓[/green] {outcome.name}")
        elif outcome.status == StepStatus.NOT_RUN:
            console.print(f"  [dim]- {outcome.name}: {outcome.error}[/dim]")
        else:
            console.print(f"  [dim]• {outcome.name} already satisfied[/dim]")

    def on_step_warning(name: str, message: str):
        console.print(f"  [yellow]⚠[/yellow] {name}: {message}")

    callbacks = RunnerCallbacks(
        on_step_start=on_step_start,
        on_step_complete=on_step_complete,
        on_step_warning=on_step_warning,
    )

    host = Host(runner=CommandRunner(dry_run=dry_run))
    runner = SequentialRunner(dry_run=dry_run)
    result = runner.run(workflow, host, cfg, callbacks)

    console.print()
    print_workflow_report(result)

    if dry_run:
        console.print("\n[dim]Dry run - nothing was changed. Remove --dry-run to execute.[/dim]")
    else:
        console.print()
        print_verification(verify_host(host, cfg))

    if not result.success:
        console.print("[red]✗ Workflow aborted.[/red] Fix the failing step and re-run; completed steps are skipped.")
        raise typer.Exit(1)

    console.print(f"[green]✓ Workflow {workflow.name} complete[/green]")


@app.command()
def verify(config: ConfigOption = None):
    """
    Run the post-provisioning checklist.

    Advisory only: reports PASS/WARN/FAIL per check and never changes the host.
    """
    cfg = get_config(config)
    configure_logging(cfg.logging, console=console)
    result = verify_host(Host(), cfg)
    print_verification(result)

    if result.is_healthy:
        console.print("[green]✓ No failed checks[/green]")
    else:
        console.print(f"[red]✗ {result.failures} check(s) failed[/red]")


@app.command()
def status(config: ConfigOption = None):
    """Show which provisioning steps are already satisfied, without changing anything."""
    cfg = get_config(config)
    configure_logging(cfg.logging, console=console)
    host = Host(runner=CommandRunner(dry_run=True))
    workflow = create_full_workflow(cfg, join=True)

    table = Table(title="Provisioning Status")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("State", justify="center")
    table.add_column("Description", style="dim", no_wrap=False)

    for step in workflow.steps:
        ctx = StepContext(host=host, config=cfg, user=step.run_as)
        try:
            satisfied = step.guard(ctx) if step.guard else False
            state = "[green]satisfied[/green]" if satisfied else "[yellow]pending[/yellow]"
        except Exception as e:
            state = f"[red]unknown[/red] ({e})"
        table.add_row(str(step.ordinal), step.name, state, step.description)

    console.print(table)


@app.command()
def check():
    """Check external commands used by the workflows and show their locations."""
    tools = check_tools_status()

    table = Table(title="System Dependencies")
    table.add_column("Tool", style="cyan")
    table.add_column("Status")
    table.add_column("Path", style="dim")

    for tool, path in tools.items():
        if path:
            status_str = "[green]Available[/green]"
            path_str = str(path)
        else:
            status_str = "[red]Missing[/red]"
            path_str = "-"
        table.add_row(tool, status_str, path_str)

    console.print(table)

    missing = [t for t, p in tools.items() if p is None]
    if missing:
        console.print("\n[yellow]Warning:[/yellow] Some dependencies are missing.")
        if "ufw" in missing:
            console.print("They are installed by: nhk provision harden")


# =============================================================================
# Node Command Group
# =============================================================================

node_app = typer.Typer(name="node", help="Namada node service management")
app.add_typer(node_app)


def _node_action(action: str, config_path: Path | None) -> None:
    cfg = get_config(config_path)
    configure_logging(cfg.logging, console=console)
    try:
        node_ops.control_service(Host(), cfg, action)
    except ProvisionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"[green]✓[/green] {action} {cfg.node.service_name}")


@node_app.command("start")
def node_start(config: ConfigOption = None):
    """Start the node service."""
    _node_action("start", config)


@node_app.command("stop")
def node_stop(config: ConfigOption = None):
    """Stop the node service."""
    _node_action("stop", config)


@node_app.command("restart")
def node_restart(config: ConfigOption = None):
    """Restart the node service."""
    _node_action("restart", config)


@node_app.command("enable")
def node_enable(config: ConfigOption = None):
    """Enable the node service at boot."""
    _node_action("enable", config)


@node_app.command("disable")
def node_disable(config: ConfigOption = None):
    """Disable the node service at boot."""
    _node_action("disable", config)


@node_app.command("status")
def node_status(config: ConfigOption = None):
    """Show node service and installation status."""
    cfg = get_config(config)
    info = node_ops.service_status(Host(), cfg)

    table = Table(title=f"Node: {info['service']}")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green")

    for key, value in info.items():
        table.add_row(key.replace("_", " ").capitalize(), value)

    console.print(table)


@node_app.command("logs")
def node_logs(
    lines: Annotated[int, typer.Option("--lines", "-n", help="Number of journal lines to show")] = 50,
    follow: Annotated[bool, typer.Option("--follow", "-f", help="Keep following new log lines")] = False,
    config: ConfigOption = None,
):
    """Show the node's journal."""
    cfg = get_config(config)
    try:
        node_ops.follow_logs(Host(), cfg, lines=lines, follow=follow)
    except ProvisionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


@node_app.command("backup")
def node_backup(config: ConfigOption = None):
    """Archive the node's data and config directories."""
    cfg = get_config(config)
    configure_logging(cfg.logging, console=console)
    try:
        archive = node_ops.backup_node(Host(), cfg)
    except ProvisionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"[green]✓[/green] Backup written to {archive}")


# =============================================================================
# Build Environment Command Group
# =============================================================================

build_env_app = typer.Typer(name="build-env", help="Isolated build environment commands")
app.add_typer(build_env_app)


@build_env_app.command("run")
def build_env_run(
    command: Annotated[list[str], typer.Argument(help="Command to run (put it after --)")],
    cwd: Annotated[
        Path | None, typer.Option("--cwd", help="Working directory", exists=True, file_okay=False)
    ] = None,
    config: ConfigOption = None,
):
    """
    Run a command as the operator inside the isolated build environment.

    [bold]Examples:[/bold]

        nhk build-env run -- cargo build --release

        nhk build-env run --cwd /build/tmp/namada -- make install
    """
    cfg = get_config(config)
    configure_logging(cfg.logging, console=console)
    try:
        build_env_ops.run_isolated(Host(), cfg, command, cwd=cwd)
    except ProvisionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


@build_env_app.command("clean")
def build_env_clean(config: ConfigOption = None):
    """Remove temporary files and stale build artifacts."""
    cfg = get_config(config)
    configure_logging(cfg.logging, console=console)
    try:
        commands = build_env_ops.clean_build_env(Host(), cfg)
    except ProvisionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    for cmd in commands:
        console.print(f"  [dim]{cmd}[/dim]")
    console.print("[green]✓[/green] Build environment cleaned")


@build_env_app.command("status")
def build_env_status(config: ConfigOption = None):
    """Show build directories and their disk usage."""
    cfg = get_config(config)
    statuses = build_env_ops.build_env_status(Host(), cfg)

    table = Table(title=f"Build Environment: {cfg.paths.build_root}")
    table.add_column("Directory", style="cyan")
    table.add_column("Status")
    table.add_column("Size", justify="right")

    for entry in statuses:
        if not entry.exists:
            table.add_row(str(entry.path), "[red]Missing[/red]", "-")
            continue
        size = f"{entry.size_bytes / (1024 * 1024):.1f} MB" if entry.size_bytes is not None else "?"
        table.add_row(str(entry.path), "[green]Present[/green]", size)

    console.print(table)


def main_cli():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main_cli()
