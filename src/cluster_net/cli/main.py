"""Main CLI entry point using Typer."""

import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..aws.provider import Ec2Provider
from ..errors import AddressSpaceError, ClusterNetError, ConflictError, NoAvailableAddressSpace, ResourceConflict
from ..ledger.audit import AuditStorage
from ..ledger.handle_store import ResourceHandleStore
from ..models.provisioning_run import ProvisioningRun, RunStatus, StepStatus
from ..planning.conflict import ConflictResolver
from ..provision.provisioner import ClusterNetworkPlan, ClusterNetworkProvisioner, NetworkSettings
from ..utils.logging import setup_logging
from .config import Config

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="clusternet",
    help="Cluster network provisioner - plan, create and tear down isolated cluster networks on AWS",
    add_completion=False,
)

console = Console()

config: Optional[Config] = None

# Errors caused by the request itself rather than by the cloud
USER_ERRORS = (AddressSpaceError, ConflictError, ResourceConflict, ValueError)


@app.callback()
def main(
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="AWS profile name"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region"),
    storage_path: Optional[str] = typer.Option(
        None,
        "--storage-path",
        help="Directory for ledgers and audit logs (default: ~/.clusternet or $CLUSTERNET_STORAGE_PATH)",
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Config file (default: ~/.clusternet/config.yaml or $CLUSTERNET_CONFIG)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output except errors"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
):
    """Cluster network provisioner."""
    global config

    try:
        config = Config.load(config_file)
    except (ValueError, OSError) as e:
        console.print(f"✗ Invalid configuration: {e}", style="bold red")
        raise typer.Exit(code=1)

    if profile:
        config.aws_profile = profile
    if region:
        config.region = region
    if storage_path:
        config.storage_path = storage_path

    log_level = "ERROR" if quiet else ("DEBUG" if verbose else config.log_level)
    setup_logging(level=log_level, verbose=verbose)

    if no_color:
        console.no_color = True


@app.command()
def version():
    """Show version information."""
    import boto3

    from .. import __version__

    console.print(f"cluster-network-provisioner version {__version__}")
    console.print(f"Python {sys.version.split()[0]}")
    console.print(f"boto3 {boto3.__version__}")


def _require_region() -> str:
    if not config.region:
        console.print("✗ No region configured. Use --region, $AWS_REGION or 'region' in the config file", style="bold red")
        raise typer.Exit(code=1)
    return config.region


def _open_store(cluster_name: str, region: Optional[str]) -> ResourceHandleStore:
    return ResourceHandleStore.for_cluster(config.ledger_dir, cluster_name, region=region)


def _build_provisioner(cluster_name: str, region: str) -> ClusterNetworkProvisioner:
    provider = Ec2Provider(region=region, aws_profile=config.aws_profile)
    return ClusterNetworkProvisioner(
        provider,
        _open_store(cluster_name, region),
        audit_storage=AuditStorage(str(config.audit_dir)),
        resolver=ConflictResolver(max_attempts=config.max_cidr_attempts),
        retry_policy=config.retry_policy(),
        teardown_passes=config.teardown_passes,
        teardown_pass_delay=config.teardown_pass_delay,
        max_workers=config.max_workers,
        verify_reused=config.verify_reused,
        aws_profile=config.aws_profile,
    )


def _settings(
    cluster_name: str,
    region: str,
    cidr: Optional[str],
    public: Optional[int],
    private: Optional[int],
    prefix: Optional[int],
    no_bastion: bool,
) -> NetworkSettings:
    settings = config.network_settings(cluster_name, region)
    if cidr:
        settings.vpc_cidr = cidr
    if public is not None:
        settings.public_subnets = public
    if private is not None:
        settings.private_subnets = private
    if prefix is not None:
        settings.subnet_prefix = prefix
    if no_bastion:
        settings.bastion = False
    return settings


def _report_user_error(e: Exception) -> None:
    console.print(f"✗ {e}", style="bold red")
    if isinstance(e, NoAvailableAddressSpace) and e.alternatives:
        console.print("\nFree alternatives you can pass with --cidr:")
        for block in e.alternatives:
            console.print(f"  • {block}")


def _print_plan(network_plan: ClusterNetworkPlan) -> None:
    subnet_plan = network_plan.subnet_plan
    if network_plan.resumed:
        console.print(f"↻ Resuming with the address plan recorded in the ledger ({subnet_plan.parent.cidr})")
    elif network_plan.relocated:
        console.print(
            f"⚠ {network_plan.requested.cidr} is in use, using {subnet_plan.parent.cidr} instead",
            style="yellow",
        )

    table = Table(title=f"Subnet plan for {subnet_plan.parent.cidr}")
    table.add_column("Subnet", style="cyan")
    table.add_column("Tier")
    table.add_column("CIDR", style="green")
    table.add_column("Availability Zone")
    for request, block in subnet_plan:
        table.add_row(request.name, request.tier.value, block.cidr, request.az_hint or "-")
    console.print(table)

    console.print(f"\n[bold]Creation order[/bold] ({len(network_plan.graph)} resources):")
    for wave_number, wave in enumerate(network_plan.graph.creation_tiers(), start=1):
        console.print(f"  {wave_number:>2}. {', '.join(wave)}")


def _print_steps(run: ProvisioningRun) -> None:
    failed = [step for step in run.steps if step.status in (StepStatus.FAILED, StepStatus.DEFERRED)]
    if not failed:
        return
    table = Table(title="Errors")
    table.add_column("Resource", style="cyan")
    table.add_column("Status")
    table.add_column("Error", style="red")
    for step in failed:
        table.add_row(step.logical_name, step.status.value, step.error_message or "")
    console.print(table)


@app.command()
def plan(
    cluster_name: str = typer.Argument(..., help="Cluster name"),
    cidr: Optional[str] = typer.Option(None, "--cidr", help="Requested VPC CIDR (default from config)"),
    public: Optional[int] = typer.Option(None, "--public", help="Number of public subnets"),
    private: Optional[int] = typer.Option(None, "--private", help="Number of private subnets"),
    prefix: Optional[int] = typer.Option(None, "--prefix", help="Subnet prefix length"),
    no_bastion: bool = typer.Option(False, "--no-bastion", help="Do not launch a bastion host"),
):
    """Show the address plan and creation order without creating anything."""
    region = _require_region()
    try:
        provisioner = _build_provisioner(cluster_name, region)
        network_plan = provisioner.plan(_settings(cluster_name, region, cidr, public, private, prefix, no_bastion))
    except USER_ERRORS as e:
        _report_user_error(e)
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"✗ Error planning cluster network: {e}", style="bold red")
        raise typer.Exit(code=2)

    _print_plan(network_plan)
    console.print("\nThis was a dry run. Use 'clusternet provision' to create these resources.")


@app.command()
def provision(
    cluster_name: str = typer.Argument(..., help="Cluster name"),
    cidr: Optional[str] = typer.Option(None, "--cidr", help="Requested VPC CIDR (default from config)"),
    public: Optional[int] = typer.Option(None, "--public", help="Number of public subnets"),
    private: Optional[int] = typer.Option(None, "--private", help="Number of private subnets"),
    prefix: Optional[int] = typer.Option(None, "--prefix", help="Subnet prefix length"),
    no_bastion: bool = typer.Option(False, "--no-bastion", help="Do not launch a bastion host"),
    export_dir: Optional[str] = typer.Option(
        None, "--export-dir", help="Write each output to a plain file in this directory"
    ),
):
    """Create the cluster network. Any failure rolls back everything created."""
    region = _require_region()
    try:
        provisioner = _build_provisioner(cluster_name, region)
        settings = _settings(cluster_name, region, cidr, public, private, prefix, no_bastion)
        network_plan = provisioner.plan(settings)
        _print_plan(network_plan)
        console.print()
        run = provisioner.provision(settings, network_plan)
    except USER_ERRORS as e:
        _report_user_error(e)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("✗ Interrupted, created resources were rolled back", style="bold red")
        raise typer.Exit(code=2)
    except Exception as e:
        console.print(f"✗ Error provisioning cluster network: {e}", style="bold red")
        raise typer.Exit(code=2)

    created = run.count(StepStatus.CREATED)
    reused = run.count(StepStatus.REUSED)

    if run.status != RunStatus.COMPLETED:
        console.print(f"✗ Provisioning failed: {run.failure}", style="bold red")
        _print_steps(run)
        if run.status == RunStatus.ROLLED_BACK:
            console.print("All created resources were rolled back.", style="yellow")
        else:
            console.print(
                f"Rollback incomplete. Run 'clusternet teardown {cluster_name} --confirm' to retry.",
                style="bold red",
            )
        raise typer.Exit(code=2)

    console.print(f"✓ Cluster network '{cluster_name}' ready ({created} created, {reused} reused)", style="green")
    _print_outputs(provisioner.store)

    if export_dir:
        written = provisioner.store.export_outputs(export_dir)
        console.print(f"\n✓ Exported {len(written)} output(s) to {export_dir}", style="green")


def _print_outputs(store: ResourceHandleStore) -> None:
    outputs = store.outputs
    if not outputs:
        console.print("No outputs recorded.")
        return
    table = Table(title="Outputs")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in outputs.items():
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def teardown(
    cluster_name: str = typer.Argument(..., help="Cluster name"),
    confirm: bool = typer.Option(False, "--confirm", help="Actually delete the resources"),
):
    """Delete every resource recorded for a cluster, in reverse dependency order."""
    store = _open_store(cluster_name, config.region)
    region = config.region or store.region
    if not region:
        console.print("✗ No region configured and none recorded in the ledger", style="bold red")
        raise typer.Exit(code=1)

    if store.is_empty():
        console.print(f"✓ Nothing recorded for cluster '{cluster_name}'", style="green")
        return

    provisioner = _build_provisioner(cluster_name, region)

    if not confirm:
        table = Table(title=f"Resources to delete for '{cluster_name}'")
        table.add_column("#", justify="right")
        table.add_column("Resource", style="cyan")
        table.add_column("Kind")
        table.add_column("Handle", style="yellow")
        for position, record in enumerate(provisioner.preview_teardown(), start=1):
            table.add_row(str(position), record.logical_name, record.kind, record.handle)
        console.print(table)
        console.print("\nRe-run with --confirm to delete these resources.")
        raise typer.Exit(code=1)

    try:
        run = provisioner.teardown(confirmed=True)
    except Exception as e:
        console.print(f"✗ Error tearing down cluster network: {e}", style="bold red")
        raise typer.Exit(code=2)

    deleted = run.count(StepStatus.DELETED)
    if run.status != RunStatus.COMPLETED:
        console.print(f"✗ {run.failure}", style="bold red")
        _print_steps(run)
        console.print(f"Run 'clusternet teardown {cluster_name} --confirm' again to retry.")
        raise typer.Exit(code=2)

    console.print(f"✓ Cluster network '{cluster_name}' deleted ({deleted} resource(s))", style="green")


@app.command()
def show(
    cluster_name: str = typer.Argument(..., help="Cluster name"),
    export_dir: Optional[str] = typer.Option(
        None, "--export-dir", help="Write each output to a plain file in this directory"
    ),
):
    """Show the ledger and outputs of a cluster."""
    store = _open_store(cluster_name, config.region)
    if store.is_empty():
        console.print(f"No resources recorded for cluster '{cluster_name}'")
        return

    table = Table(title=f"Ledger for '{cluster_name}' ({store.region or 'unknown region'})")
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("Handle", style="green")
    table.add_column("Created")
    for record in store.all():
        table.add_row(record.logical_name, record.kind, record.handle, record.created_at.strftime("%Y-%m-%d %H:%M:%S"))
    console.print(table)
    _print_outputs(store)

    if export_dir:
        written = store.export_outputs(export_dir)
        console.print(f"\n✓ Exported {len(written)} output(s) to {export_dir}", style="green")


def cli_main():
    """Entry point for the clusternet command."""
    try:
        app()
    except ClusterNetError as e:
        console.print(f"✗ {e}", style="bold red")
        sys.exit(2)


if __name__ == "__main__":
    cli_main()
