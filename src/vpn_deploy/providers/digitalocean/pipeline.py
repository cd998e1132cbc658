"""Six-step DigitalOcean pipeline."""

import time
from typing import Callable, Dict, List, Optional

from vpn_deploy.providers.base import StepContext, StepResult, StepSpec, wait_until
from vpn_deploy.providers.digitalocean.client import (
    DigitalOceanApi,
    public_ipv4,
    ssh_inbound_rule,
)
from vpn_deploy.providers.remote import configure_tunnel, is_configured
from vpn_deploy.ssh.client import SessionFactory
from vpn_deploy.state.models import DeploymentRecord, ProviderKind, ResourceHandle, ResourceKind
from vpn_deploy.utils.errors import ResourceNotFoundError, StateError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)

STEPS = [
    StepSpec("validate_token", "Connecting to DigitalOcean..."),
    StepSpec("ssh_key", "Uploading SSH key..."),
    StepSpec("droplet", "Creating Droplet..."),
    StepSpec("firewall", "Creating firewall rules..."),
    StepSpec("wait_active", "Waiting for server to start..."),
    StepSpec("configure", "Configuring WireGuard (this may take a minute)..."),
]

TEARDOWN_ORDER = [
    ResourceKind.TUNNEL_SERVICE,
    ResourceKind.FIREWALL,
    ResourceKind.DROPLET,
    ResourceKind.SSH_KEY,
]


class DigitalOceanPipeline:
    """Provisions a WireGuard server on a droplet."""

    provider = ProviderKind.DIGITALOCEAN

    def __init__(
        self,
        api: DigitalOceanApi,
        open_session: SessionFactory,
        region: str,
        poll_interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api = api
        self.open_session = open_session
        self.region = region
        self.poll_interval = poll_interval
        self.sleep = sleep
        self._handlers: Dict[str, Callable[[StepContext], StepResult]] = {
            "validate_token": self._validate_token,
            "ssh_key": self._upload_ssh_key,
            "droplet": self._create_droplet,
            "firewall": self._create_firewall,
            "wait_active": self._wait_active,
            "configure": self._configure,
        }

    def steps(self) -> List[StepSpec]:
        return list(STEPS)

    def teardown_order(self) -> List[str]:
        return list(TEARDOWN_ORDER)

    def execute(self, step: StepSpec, ctx: StepContext) -> StepResult:
        return self._handlers[step.name](ctx)

    def _live(self, ctx: StepContext, kind: str, describe: Callable[[str], dict]) -> Optional[ResourceHandle]:
        handle = ctx.record.get_handle(kind)
        if handle is None:
            return None
        try:
            describe(handle.id)
        except ResourceNotFoundError:
            logger.warning(f"{kind} {handle.id} no longer exists; recreating it")
            ctx.record.remove_handle(kind)
            ctx.save()
            return None
        logger.info(f"{kind} {handle.id} already exists; reusing it")
        return handle

    def _require(self, ctx: StepContext, kind: str) -> ResourceHandle:
        handle = ctx.record.get_handle(kind)
        if handle is None:
            raise StateError(f"Missing {kind} from an earlier step")
        return handle

    def _validate_token(self, ctx: StepContext) -> StepResult:
        account = self.api.get_account()
        if account.get("status") not in (None, "active"):
            return StepResult.failed(f"DigitalOcean account is {account.get('status')}")
        return StepResult.ok(message=f"Authenticated as {account.get('email', 'unknown')}")

    def _upload_ssh_key(self, ctx: StepContext) -> StepResult:
        if self._live(ctx, ResourceKind.SSH_KEY, self.api.get_ssh_key):
            return StepResult.skipped("SSH key already uploaded")
        public_key = ctx.record.parameters.get("ssh_public_key")
        if not public_key:
            raise StateError("No SSH public key was generated for this deployment")
        name = ctx.record.parameters.get("key_pair_name", "vpn-deploy-key")
        key_id = self.api.create_ssh_key(name, public_key)
        return StepResult.ok(
            ResourceHandle(kind=ResourceKind.SSH_KEY, id=str(key_id), properties={"name": name}),
            message=f"SSH key {key_id} uploaded",
        )

    def _create_droplet(self, ctx: StepContext) -> StepResult:
        if self._live(ctx, ResourceKind.DROPLET, self.api.get_droplet):
            return StepResult.skipped("Droplet already exists")
        key = self._require(ctx, ResourceKind.SSH_KEY)
        size = ctx.record.parameters.get("size", ctx.settings.do_size)
        droplet_id = self.api.create_droplet("vpn-deploy-server", self.region, size, key.id)
        return StepResult.ok(
            ResourceHandle(
                kind=ResourceKind.DROPLET, id=str(droplet_id), properties={"size": size, "region": self.region}
            ),
            message=f"Droplet {droplet_id} created",
        )

    def _create_firewall(self, ctx: StepContext) -> StepResult:
        if self._live(ctx, ResourceKind.FIREWALL, self.api.get_firewall):
            return StepResult.skipped("Firewall already exists")
        droplet = self._require(ctx, ResourceKind.DROPLET)
        port = int(ctx.record.parameters.get("wireguard_port", ctx.settings.wireguard_port))
        firewall_id = self.api.create_firewall("vpn-deploy-firewall", droplet.id, port)
        return StepResult.ok(
            ResourceHandle(kind=ResourceKind.FIREWALL, id=firewall_id, properties={"wireguard_port": port}),
            message=f"Firewall {firewall_id} attached",
        )

    def _wait_active(self, ctx: StepContext) -> StepResult:
        droplet = self._require(ctx, ResourceKind.DROPLET)

        def active_ip() -> Optional[str]:
            info = self.api.get_droplet(droplet.id)
            if info.get("status") == "active":
                return public_ipv4(info)
            return None

        ip = wait_until(
            active_ip,
            ctx.deadline,
            interval=self.poll_interval,
            what=f"waiting for droplet {droplet.id} to become active",
            sleep=self.sleep,
        )
        if ctx.record.ssh is not None:
            ctx.record.ssh.host = ip
        return StepResult.ok(endpoint=ip, message=f"Droplet active at {ip}")

    def _configure(self, ctx: StepContext) -> StepResult:
        firewall = self._require(ctx, ResourceKind.FIREWALL)
        if is_configured(ctx):
            self._close_ssh(firewall.id)
            return StepResult.skipped("WireGuard already configured")

        # SSH is only open while the server is being configured
        self._open_ssh(firewall.id)
        try:
            result = configure_tunnel(ctx, self.open_session)
        finally:
            self._close_ssh(firewall.id)
        return result

    def _open_ssh(self, firewall_id: str) -> None:
        rules = self.api.get_firewall(firewall_id).get("inbound_rules", [])
        if not any(rule.get("protocol") == "tcp" and rule.get("ports") == "22" for rule in rules):
            self.api.add_inbound_rules(firewall_id, [ssh_inbound_rule()])

    def _close_ssh(self, firewall_id: str) -> None:
        rules = self.api.get_firewall(firewall_id).get("inbound_rules", [])
        if any(rule.get("protocol") == "tcp" and rule.get("ports") == "22" for rule in rules):
            self.api.remove_inbound_rules(firewall_id, [ssh_inbound_rule()])
            logger.info(f"Removed SSH inbound rule from firewall {firewall_id}")

    def delete(self, handle: ResourceHandle, record: DeploymentRecord) -> None:
        """Delete one DigitalOcean resource; 404s propagate as ResourceNotFoundError."""
        kind = handle.kind
        if kind == ResourceKind.TUNNEL_SERVICE:
            logger.info("WireGuard service goes away with the droplet")
        elif kind == ResourceKind.FIREWALL:
            self.api.delete_firewall(handle.id)
        elif kind == ResourceKind.DROPLET:
            self.api.delete_droplet(handle.id)
        elif kind == ResourceKind.SSH_KEY:
            self.api.delete_ssh_key(handle.id)
        else:
            raise ValueError(f"DigitalOcean pipeline cannot delete resource kind {kind}")
