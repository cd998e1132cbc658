"""Bring-your-own server pipeline: SSH only, no cloud resources."""

from typing import List

from vpn_deploy.providers.base import StepContext, StepResult, StepSpec
from vpn_deploy.providers.remote import configure_tunnel
from vpn_deploy.ssh.client import SessionFactory
from vpn_deploy.ssh.configure import remove_wireguard
from vpn_deploy.state.models import DeploymentRecord, ProviderKind, ResourceHandle, ResourceKind
from vpn_deploy.utils.errors import ValidationError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)

SUPPORTED_DISTRIBUTIONS = ("ubuntu", "debian")
TEARDOWN_TIMEOUT = 120.0

STEPS = [
    StepSpec("connect", "Connecting via SSH..."),
    StepSpec("configure", "Installing WireGuard (this may take a minute)..."),
]


class ByoPipeline:
    """Configures WireGuard on a server the user already runs."""

    provider = ProviderKind.BYO

    def __init__(self, open_session: SessionFactory):
        self.open_session = open_session

    def steps(self) -> List[StepSpec]:
        return list(STEPS)

    def teardown_order(self) -> List[str]:
        return [ResourceKind.TUNNEL_SERVICE]

    def execute(self, step: StepSpec, ctx: StepContext) -> StepResult:
        if step.name == "connect":
            return self._connect(ctx)
        return configure_tunnel(ctx, self.open_session)

    def _connect(self, ctx: StepContext) -> StepResult:
        if ctx.record.ssh is None:
            raise ValidationError("SSH access details are missing")

        session = self.open_session(ctx.record.ssh, ctx.deadline.remaining())
        try:
            distribution = session.run(". /etc/os-release && echo $ID").strip().lower()
            session.run("sudo -n true")
        finally:
            session.close()

        if distribution not in SUPPORTED_DISTRIBUTIONS:
            return StepResult.failed(
                f"Unsupported distribution '{distribution}'; Ubuntu or Debian is required"
            )
        return StepResult.ok(
            endpoint=ctx.record.ssh.host,
            message=f"Connected to {ctx.record.ssh.host} ({distribution})",
        )

    def delete(self, handle: ResourceHandle, record: DeploymentRecord) -> None:
        """Stop and remove WireGuard from the host."""
        if handle.kind != ResourceKind.TUNNEL_SERVICE:
            raise ValueError(f"BYO pipeline cannot delete resource kind {handle.kind}")
        if record.ssh is None:
            raise ValidationError("SSH access details are missing; cannot reach the host")

        session = self.open_session(record.ssh, TEARDOWN_TIMEOUT)
        try:
            remove_wireguard(session)
        finally:
            session.close()
