"""Rich rendering for deployment state and progress."""

import json
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TaskProgressColumn, TextColumn
from rich.syntax import Syntax
from rich.table import Table

from ..state.models import DeploymentRecord, DeploymentStatus, ProgressEvent
from ..tunnel.connection import ConnectionStatus

console = Console()

STATUS_STYLES = {
    DeploymentStatus.NOT_DEPLOYED: "dim",
    DeploymentStatus.DEPLOYING: "cyan",
    DeploymentStatus.DEPLOYED: "green",
    DeploymentStatus.DESTROYING: "yellow",
    DeploymentStatus.FAILED: "red",
}


class RichProgressCallback:
    """Progress bus subscriber that drives a rich progress bar."""

    def __init__(self, progress: Progress, task_id: TaskID):
        self.progress = progress
        self.task_id = task_id
        self.failed = False

    def __call__(self, event: ProgressEvent) -> None:
        prefix = f"[{event.step}/{event.total_steps}]"
        if event.status == "running":
            self.progress.update(
                self.task_id,
                total=event.total_steps,
                completed=event.step - 1,
                description=f"[cyan]{prefix}[/cyan] {event.message}",
            )
        elif event.status == "done":
            self.progress.update(
                self.task_id,
                total=event.total_steps,
                completed=event.step,
                description=f"[green]✓[/green] {prefix} {event.message}",
            )
            self.progress.console.print(f"  [green]✓[/green] {prefix} {event.message}")
        else:
            self.failed = True
            self.progress.update(self.task_id, description=f"[red]✗[/red] {prefix} {event.message}")
            self.progress.console.print(f"  [red]✗[/red] {prefix} {event.message}")


def progress_display() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    )


def render_status(record: DeploymentRecord, connection: Optional[ConnectionStatus] = None) -> None:
    """Print the deployment record as a panel plus a resource table."""
    style = STATUS_STYLES.get(record.status, "white")
    lines = [f"Status: [{style}]{record.status.value}[/{style}]"]
    if record.provider is not None:
        lines.append(f"Provider: {record.provider.value}")
    if record.region:
        lines.append(f"Region: {record.region}")
    if record.endpoint:
        port = record.parameters.get("wireguard_port")
        lines.append(f"Endpoint: {record.endpoint}:{port}" if port else f"Endpoint: {record.endpoint}")
    if record.deployed_at:
        lines.append(f"Deployed at: {record.deployed_at.isoformat()}")
    if record.auto_destroy_at:
        lines.append(f"Auto-destroy at: {record.auto_destroy_at.isoformat()}")
    if connection is not None:
        lines.append(f"Tunnel: {connection.value}")
    if record.error_message:
        lines.append(f"\n[red]{record.error_message}[/red]")

    console.print(Panel.fit("\n".join(lines), title="VPN Deployment", border_style=style))

    if record.resources:
        table = Table(title="Resources")
        table.add_column("Kind", style="cyan")
        table.add_column("ID")
        table.add_column("Created", style="dim")
        for handle in record.resources:
            table.add_row(handle.kind, handle.id, handle.created_at.strftime("%Y-%m-%d %H:%M:%S"))
        console.print(table)


def status_json(record: DeploymentRecord) -> str:
    """Record as JSON with secret material left out."""
    data = record.to_dict()
    data.pop("keys", None)
    data.pop("client_config", None)
    if data.get("ssh"):
        data["ssh"].pop("private_key", None)
    data["parameters"] = {k: v for k, v in data.get("parameters", {}).items() if k != "ssh_public_key"}
    return json.dumps(data, indent=2)


def render_client_config(config: str) -> None:
    console.print(Syntax(config, "ini", theme="monokai", line_numbers=False))
