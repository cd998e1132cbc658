"""Configure step shared by every provider."""

from vpn_deploy.providers.base import StepContext, StepResult
from vpn_deploy.ssh.client import SessionFactory
from vpn_deploy.ssh.configure import SERVICE_NAME, configure_wireguard
from vpn_deploy.state.models import ResourceHandle, ResourceKind
from vpn_deploy.tunnel.render import ClientConfig, render_client_config
from vpn_deploy.utils.errors import ValidationError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)


def is_configured(ctx: StepContext) -> bool:
    """Whether an earlier run already finished configuring the server."""
    handle = ctx.record.get_handle(ResourceKind.TUNNEL_SERVICE)
    return bool(
        handle
        and handle.properties.get("configured")
        and ctx.record.client_config
        and ctx.record.keys.server_public_key
    )


def configure_tunnel(ctx: StepContext, open_session: SessionFactory) -> StepResult:
    """Install WireGuard on the server and render the client config.

    The tunnel_service handle is saved before any remote change so that a
    crash mid-configuration still leaves something for teardown to clean up.

    Args:
        ctx: Step context; record.ssh must name the host
        open_session: Factory for SSH sessions

    Returns:
        StepResult carrying the configured tunnel_service handle and client config
    """
    record = ctx.record
    if record.ssh is None or not record.ssh.host:
        raise ValidationError("Server address is unknown; cannot configure WireGuard")
    host = record.ssh.host

    if is_configured(ctx):
        return StepResult.skipped("WireGuard already configured")

    port = int(record.parameters.get("wireguard_port", ctx.settings.wireguard_port))
    dns = record.parameters.get("dns", ctx.settings.dns)

    existing = record.get_handle(ResourceKind.TUNNEL_SERVICE)
    if existing is None:
        existing = ResourceHandle(
            kind=ResourceKind.TUNNEL_SERVICE,
            id=f"{SERVICE_NAME}@{host}",
            properties={"host": host, "configured": False},
        )
        ctx.checkpoint(existing)

    ctx.report(f"Connecting via SSH to {host}")
    session = open_session(record.ssh, ctx.deadline.remaining())
    try:
        server_public_key = configure_wireguard(
            session,
            client_public_key=record.keys.client_public_key,
            listen_port=port,
            report=ctx.report,
            deadline=ctx.deadline,
        )
    finally:
        session.close()

    record.keys.server_public_key = server_public_key
    client_config = render_client_config(
        ClientConfig(
            private_key=record.keys.client_private_key,
            server_public_key=server_public_key,
            endpoint=record.endpoint or host,
            listen_port=port,
            dns=dns,
        )
    )

    handle = ResourceHandle(
        kind=ResourceKind.TUNNEL_SERVICE,
        id=existing.id,
        properties={"host": host, "port": port, "configured": True},
        created_at=existing.created_at,
    )
    logger.info(f"WireGuard configured on {host}")
    return StepResult.ok(handle, client_config=client_config, message="WireGuard configured")
