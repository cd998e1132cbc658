"""Main CLI entry point."""

import functools
import sys
import time
from pathlib import Path
from typing import Callable, Optional

import click
import pydantic
from rich.table import Table

from vpn_deploy import __version__
from vpn_deploy.cli.output import (
    RichProgressCallback,
    console,
    progress_display,
    render_client_config,
    render_status,
    status_json,
)
from vpn_deploy.config.credentials import AwsCredentials, DigitalOceanCredentials
from vpn_deploy.config.models import AppPaths
from vpn_deploy.config.regions import list_regions
from vpn_deploy.providers.base import DeployRequest
from vpn_deploy.service import VpnService
from vpn_deploy.state.models import DeploymentRecord, DeploymentStatus, ProgressEvent, ProviderKind
from vpn_deploy.utils.errors import DeploymentError, TunnelError
from vpn_deploy.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


@click.group()
@click.option('--home', type=click.Path(file_okay=False, path_type=Path), envvar='VPN_DEPLOY_HOME',
              help='Application home (default ~/.vpn-deploy)')
@click.option('--log-level', default='warning', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.version_option(__version__, prog_name='vpn-deploy')
@click.pass_context
def cli(ctx, home, log_level):
    """Deploy and manage a personal WireGuard VPN server."""
    ctx.ensure_object(dict)
    paths = AppPaths(home)
    ctx.obj['paths'] = paths
    setup_logging(log_level, paths.log_dir)


def get_service(ctx: click.Context) -> VpnService:
    """Build the service once per invocation and recover interrupted operations."""
    service = ctx.obj.get('service')
    if service is None:
        service = VpnService.from_paths(ctx.obj['paths'])
        record = service.orchestrator.recover()
        for warning in service.store.integrity_warnings:
            console.print(f"[yellow]Warning:[/yellow] {warning.message}")
        if record.status == DeploymentStatus.FAILED and record.error_message:
            logger.info(f"Loaded failed deployment: {record.error_message}")
        ctx.obj['service'] = service
        ctx.call_on_close(service.close)
    return service


def handle_errors(command: Callable) -> Callable:
    """Print DeploymentErrors for the user and exit non-zero."""
    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except DeploymentError as e:
            console.print(f"[red]{e.to_user_message()}[/red]")
            sys.exit(1)
    return wrapper


def run_with_progress(service: VpnService, title: str, operation: Callable[[], DeploymentRecord]) -> DeploymentRecord:
    """Run a blocking operation while rendering its progress events."""
    with progress_display() as progress:
        task_id = progress.add_task(f"[cyan]{title}...", total=None)
        unsubscribe = service.bus.subscribe(RichProgressCallback(progress, task_id))
        try:
            return operation()
        finally:
            unsubscribe()


def finish(record: DeploymentRecord) -> None:
    console.print()
    render_status(record)
    if record.status == DeploymentStatus.FAILED:
        sys.exit(1)


# Deploy

@cli.group()
def deploy():
    """Deploy a VPN server."""
    pass


def _deploy(ctx: click.Context, request: DeployRequest) -> None:
    service = get_service(ctx)
    record = run_with_progress(service, f"Deploying to {request.provider.value}", lambda: service.deploy(request))
    if record.status == DeploymentStatus.DEPLOYED:
        path = service.export_client_config()
        console.print(f"[green]✓ Server ready.[/green] Client config saved to {path}")
    finish(record)


@deploy.command('aws')
@click.option('--region', help='AWS region (default from settings)')
@click.option('--instance-type', help='EC2 instance type (default from settings)')
@click.option('--auto-destroy-hours', type=float, help='Destroy automatically after this many hours')
@click.pass_context
@handle_errors
def deploy_aws(ctx, region, instance_type, auto_destroy_hours):
    """Deploy to AWS EC2."""
    settings = get_service(ctx).settings()
    _deploy(ctx, DeployRequest(
        provider=ProviderKind.AWS,
        region=region or settings.region,
        instance_type=instance_type,
        auto_destroy_hours=auto_destroy_hours,
    ))


@deploy.command('digitalocean')
@click.option('--region', help='DigitalOcean region slug (default from settings)')
@click.option('--size', help='Droplet size slug (default from settings)')
@click.option('--auto-destroy-hours', type=float, help='Destroy automatically after this many hours')
@click.pass_context
@handle_errors
def deploy_digitalocean(ctx, region, size, auto_destroy_hours):
    """Deploy to a DigitalOcean droplet."""
    settings = get_service(ctx).settings()
    _deploy(ctx, DeployRequest(
        provider=ProviderKind.DIGITALOCEAN,
        region=region or settings.do_region,
        size=size,
        auto_destroy_hours=auto_destroy_hours,
    ))


@deploy.command('byo')
@click.option('--host', required=True, help='Server IP address')
@click.option('--user', 'ssh_user', help='SSH user (default from settings)')
@click.option('--port', 'ssh_port', type=int, help='SSH port (default from settings)')
@click.option('--key-file', required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='SSH private key file')
@click.option('--auto-destroy-hours', type=float, help='Destroy automatically after this many hours')
@click.pass_context
@handle_errors
def deploy_byo(ctx, host, ssh_user, ssh_port, key_file, auto_destroy_hours):
    """Configure WireGuard on an existing server over SSH."""
    _deploy(ctx, DeployRequest(
        provider=ProviderKind.BYO,
        host=host,
        ssh_user=ssh_user,
        ssh_port=ssh_port,
        ssh_private_key=key_file.read_text(),
        auto_destroy_hours=auto_destroy_hours,
    ))


@cli.command()
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
@handle_errors
def destroy(ctx, yes):
    """Destroy the deployed server and every recorded resource."""
    service = get_service(ctx)
    record = service.status()
    render_status(record)

    if not yes and not click.confirm("Destroy this deployment?", default=False):
        console.print("[yellow]Destruction cancelled[/yellow]")
        return

    record = run_with_progress(service, "Destroying", service.destroy)
    if record.status == DeploymentStatus.NOT_DEPLOYED:
        console.print("[green]✓ Deployment destroyed[/green]")
    finish(record)


@cli.command()
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.pass_context
@handle_errors
def status(ctx, as_json):
    """Show deployment and tunnel status."""
    service = get_service(ctx)
    record = service.status()
    if as_json:
        click.echo(status_json(record))
        return
    connection = None
    if record.status == DeploymentStatus.DEPLOYED:
        try:
            connection = service.connection_status()
        except TunnelError as e:
            logger.debug(f"Tunnel status unavailable: {e.message}")
    render_status(record, connection)


@cli.command()
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
@handle_errors
def reset(ctx, yes):
    """Forget a failed deployment without deleting its resources."""
    service = get_service(ctx)
    record = service.status()
    if record.resources:
        console.print(f"[yellow]{len(record.resources)} recorded resource(s) will be abandoned.[/yellow]")
    if not yes and not click.confirm("Reset the deployment record?", default=False):
        console.print("[yellow]Reset cancelled[/yellow]")
        return
    service.reset()
    console.print("[green]✓ Deployment record reset[/green]")


# Tunnel

@cli.command()
@click.pass_context
@handle_errors
def connect(ctx):
    """Bring the local tunnel up."""
    result = get_service(ctx).connect()
    console.print(f"[green]Tunnel {result.value}[/green]")


@cli.command()
@click.pass_context
@handle_errors
def disconnect(ctx):
    """Bring the local tunnel down."""
    result = get_service(ctx).disconnect()
    console.print(f"Tunnel {result.value}")


@cli.command()
@click.pass_context
@handle_errors
def watch(ctx):
    """Run the auto-destroy timer in the foreground and print progress."""
    service = get_service(ctx)

    def show(event: ProgressEvent) -> None:
        style = {"running": "cyan", "done": "green", "error": "red"}[event.status]
        console.print(
            f"[{style}]{event.operation} [{event.step}/{event.total_steps}] {event.status}[/{style}] {event.message}"
        )

    unsubscribe = service.bus.subscribe(show)
    record = service.start()
    render_status(record)
    console.print(f"[dim]Auto-destroy timer {service.scheduler.state.value}; Ctrl-C to stop[/dim]")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped watching[/dim]")
    finally:
        unsubscribe()


# Settings

@cli.group()
def settings():
    """View and change settings."""
    pass


@settings.command('show')
@click.pass_context
@handle_errors
def settings_show(ctx):
    """Show current settings."""
    current = get_service(ctx).settings()
    table = Table(title="Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in current.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@settings.command('set')
@click.argument('pairs', nargs=-1, required=True)
@click.pass_context
@handle_errors
def settings_set(ctx, pairs):
    """Set one or more KEY=VALUE settings."""
    changes = {}
    for pair in pairs:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint='PAIRS')
        changes[key.strip()] = value.strip()

    updated = get_service(ctx).update_settings(**changes)
    for key in changes:
        console.print(f"[green]✓[/green] {key} = {getattr(updated, key)}")


# Credentials

@cli.group()
def credentials():
    """Manage provider credentials."""
    pass


def _store_credentials(ctx, provider: ProviderKind, creds, validate: bool) -> None:
    service = get_service(ctx)
    if validate:
        identity = service.validate_credentials(provider, creds)
        console.print(f"[green]✓ Credentials valid[/green] ({identity})")
    service.save_credentials(provider, creds)
    console.print(f"[green]✓ {provider.value} credentials saved[/green]")


@credentials.command('set-aws')
@click.option('--access-key-id', prompt=True, help='AWS access key ID')
@click.option('--secret-access-key', prompt=True, hide_input=True, help='AWS secret access key')
@click.option('--validate/--no-validate', default=True, help='Check the keys with STS before saving')
@click.pass_context
@handle_errors
def credentials_set_aws(ctx, access_key_id, secret_access_key, validate):
    """Save AWS access keys."""
    try:
        creds = AwsCredentials(access_key_id=access_key_id, secret_access_key=secret_access_key)
    except pydantic.ValidationError as e:
        raise click.BadParameter(str(e))
    _store_credentials(ctx, ProviderKind.AWS, creds, validate)


@credentials.command('set-do')
@click.option('--api-token', prompt=True, hide_input=True, help='DigitalOcean API token')
@click.option('--validate/--no-validate', default=True, help='Check the token before saving')
@click.pass_context
@handle_errors
def credentials_set_do(ctx, api_token, validate):
    """Save a DigitalOcean API token."""
    try:
        creds = DigitalOceanCredentials(api_token=api_token)
    except pydantic.ValidationError as e:
        raise click.BadParameter(str(e))
    _store_credentials(ctx, ProviderKind.DIGITALOCEAN, creds, validate)


@credentials.command('delete')
@click.argument('provider', type=click.Choice(['aws', 'digitalocean']))
@click.pass_context
@handle_errors
def credentials_delete(ctx, provider):
    """Delete saved credentials for a provider."""
    get_service(ctx).delete_credentials(ProviderKind(provider))
    console.print(f"[green]✓ {provider} credentials deleted[/green]")


# Client config

@cli.group()
def config():
    """Client configuration."""
    pass


@config.command('show')
@click.pass_context
@handle_errors
def config_show(ctx):
    """Print the client config."""
    text = get_service(ctx).client_config()
    if not text:
        console.print("[dim]No client config; deploy first[/dim]")
        return
    render_client_config(text)


@config.command('export')
@click.argument('path', required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
@handle_errors
def config_export(ctx, path: Optional[Path]):
    """Write the client config to PATH (owner-only permissions)."""
    written = get_service(ctx).export_client_config(path)
    console.print(f"[green]✓ Client config written to {written}[/green]")


# Logs

@cli.group()
def logs():
    """View and manage the log file."""
    pass


@logs.command('show')
@click.pass_context
def logs_show(ctx):
    """Print the log file."""
    text = get_service(ctx).read_logs()
    if not text:
        console.print("[dim]Log is empty[/dim]")
        return
    click.echo(text, nl=False)


@logs.command('clear')
@click.pass_context
def logs_clear(ctx):
    """Truncate the log file."""
    get_service(ctx).clear_logs()
    console.print("[green]✓ Log cleared[/green]")


@logs.command('export')
@click.argument('path', type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def logs_export(ctx, path):
    """Copy the log file to PATH."""
    written = get_service(ctx).export_logs(path)
    console.print(f"[green]✓ Logs exported to {written}[/green]")


@cli.command()
@click.option('--provider', default='aws', type=click.Choice(['aws', 'digitalocean']))
def regions(provider):
    """List supported regions."""
    table = Table(title=f"{provider} regions")
    table.add_column("Code", style="cyan")
    table.add_column("Name")
    for code, name in list_regions(ProviderKind(provider)):
        table.add_row(code, name)
    console.print(table)


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
