"""Nine-step AWS pipeline: network, instance, Elastic IP, WireGuard."""

import time
from typing import Callable, Dict, List, Optional

from botocore.exceptions import ClientError

from vpn_deploy.providers.aws.ec2 import Ec2Capability
from vpn_deploy.providers.base import StepContext, StepResult, StepSpec, wait_until
from vpn_deploy.providers.remote import configure_tunnel, is_configured
from vpn_deploy.ssh.client import SessionFactory
from vpn_deploy.state.models import DeploymentRecord, ProviderKind, ResourceHandle, ResourceKind
from vpn_deploy.utils.errors import StateError, aws_error_code
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)

VPC_CIDR = "10.0.0.0/16"
SUBNET_CIDR = "10.0.1.0/24"

QUOTA_ERROR_CODES = {
    'InstanceLimitExceeded',
    'VcpuLimitExceeded',
    'InsufficientInstanceCapacity',
    'AddressLimitExceeded',
    'VpcLimitExceeded',
}

# Instance states after which the instance is never coming back
DEAD_INSTANCE_STATES = {None, 'shutting-down', 'terminated'}

STEPS = [
    StepSpec("vpc", "Creating VPC..."),
    StepSpec("subnet", "Creating subnet..."),
    StepSpec("internet_gateway", "Creating internet gateway..."),
    StepSpec("route_table", "Configuring route table..."),
    StepSpec("security_group", "Creating security group..."),
    StepSpec("key_pair", "Importing SSH key..."),
    StepSpec("instance", "Launching instance..."),
    StepSpec("elastic_ip", "Allocating Elastic IP..."),
    StepSpec("configure", "Configuring WireGuard (this may take a few minutes)..."),
]

TEARDOWN_ORDER = [
    ResourceKind.TUNNEL_SERVICE,
    ResourceKind.EIP_ASSOCIATION,
    ResourceKind.ELASTIC_IP,
    ResourceKind.INSTANCE,
    ResourceKind.SECURITY_GROUP,
    ResourceKind.ROUTE_TABLE,
    ResourceKind.INTERNET_GATEWAY,
    ResourceKind.SUBNET,
    ResourceKind.VPC,
    ResourceKind.KEY_PAIR,
]


class AwsPipeline:
    """Provisions a WireGuard server in its own VPC."""

    provider = ProviderKind.AWS

    def __init__(
        self,
        ec2: Ec2Capability,
        open_session: SessionFactory,
        region: str,
        poll_interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the AWS pipeline.

        Args:
            ec2: EC2 capability for the target region
            open_session: Factory for SSH sessions
            region: AWS region
            poll_interval: Seconds between state polls
            sleep: Function used to wait between polls
        """
        self.ec2 = ec2
        self.open_session = open_session
        self.region = region
        self.poll_interval = poll_interval
        self.sleep = sleep
        self._handlers: Dict[str, Callable[[StepContext], StepResult]] = {
            "vpc": self._create_vpc,
            "subnet": self._create_subnet,
            "internet_gateway": self._create_internet_gateway,
            "route_table": self._create_route_table,
            "security_group": self._create_security_group,
            "key_pair": self._import_key_pair,
            "instance": self._launch_instance,
            "elastic_ip": self._attach_elastic_ip,
            "configure": self._configure,
        }

    def steps(self) -> List[StepSpec]:
        return list(STEPS)

    def teardown_order(self) -> List[str]:
        return list(TEARDOWN_ORDER)

    def execute(self, step: StepSpec, ctx: StepContext) -> StepResult:
        return self._handlers[step.name](ctx)

    def _live(self, ctx: StepContext, kind: str, exists: Callable[[str], bool]) -> Optional[ResourceHandle]:
        """Return the recorded handle if the resource still exists, dropping it otherwise."""
        handle = ctx.record.get_handle(kind)
        if handle is None:
            return None
        if exists(handle.id):
            logger.info(f"{kind} {handle.id} already exists; reusing it")
            return handle
        logger.warning(f"{kind} {handle.id} no longer exists; recreating it")
        ctx.record.remove_handle(kind)
        ctx.save()
        return None

    def _require(self, ctx: StepContext, kind: str) -> ResourceHandle:
        handle = ctx.record.get_handle(kind)
        if handle is None:
            raise StateError(f"Missing {kind} from an earlier step")
        return handle

    # Steps

    def _create_with_setup(
        self,
        ctx: StepContext,
        kind: str,
        label: str,
        exists: Callable[[str], bool],
        create: Callable[[], str],
        setup: Callable[[str], None],
        properties: Dict,
    ) -> StepResult:
        """Create a resource, record it, then finish its setup.

        The handle is checkpointed before setup runs so a failed setup call
        still leaves it in the record; a later run finishes the setup on the
        same resource instead of creating another one.
        """
        handle = self._live(ctx, kind, exists)
        if handle is not None and handle.properties.get("ready"):
            return StepResult.skipped(f"{label} already exists")
        if handle is None:
            handle = ResourceHandle(kind=kind, id=create(), properties=dict(properties, ready=False))
            ctx.checkpoint(handle)
        setup(handle.id)
        handle = ResourceHandle(
            kind=kind,
            id=handle.id,
            properties=dict(handle.properties, ready=True),
            created_at=handle.created_at,
        )
        return StepResult.ok(handle, message=f"{label} {handle.id} created")

    def _create_vpc(self, ctx: StepContext) -> StepResult:
        return self._create_with_setup(
            ctx, ResourceKind.VPC, "VPC",
            exists=self.ec2.vpc_exists,
            create=lambda: self.ec2.create_vpc(VPC_CIDR),
            setup=self.ec2.configure_vpc,
            properties={"cidr": VPC_CIDR},
        )

    def _create_subnet(self, ctx: StepContext) -> StepResult:
        vpc = self._require(ctx, ResourceKind.VPC)
        zone = f"{self.region}a"
        return self._create_with_setup(
            ctx, ResourceKind.SUBNET, "Subnet",
            exists=self.ec2.subnet_exists,
            create=lambda: self.ec2.create_subnet(vpc.id, SUBNET_CIDR, zone),
            setup=self.ec2.enable_public_ip,
            properties={"cidr": SUBNET_CIDR, "availability_zone": zone},
        )

    def _create_internet_gateway(self, ctx: StepContext) -> StepResult:
        vpc = self._require(ctx, ResourceKind.VPC)
        existing = self._live(ctx, ResourceKind.INTERNET_GATEWAY, self.ec2.internet_gateway_exists)
        if existing is not None:
            self.ec2.attach_internet_gateway(existing.id, vpc.id)
            return StepResult.skipped("Internet gateway already exists")

        igw_id = self.ec2.create_internet_gateway()
        handle = ResourceHandle(
            kind=ResourceKind.INTERNET_GATEWAY, id=igw_id, properties={"vpc_id": vpc.id}
        )
        ctx.checkpoint(handle)
        self.ec2.attach_internet_gateway(igw_id, vpc.id)
        return StepResult.ok(handle, message=f"Internet gateway {igw_id} attached")

    def _create_route_table(self, ctx: StepContext) -> StepResult:
        handle = self._live(ctx, ResourceKind.ROUTE_TABLE, self.ec2.route_table_exists)
        if handle is not None and handle.properties.get("association_id"):
            return StepResult.skipped("Route table already exists")
        vpc = self._require(ctx, ResourceKind.VPC)
        subnet = self._require(ctx, ResourceKind.SUBNET)
        igw = self._require(ctx, ResourceKind.INTERNET_GATEWAY)

        if handle is None:
            handle = ResourceHandle(kind=ResourceKind.ROUTE_TABLE, id=self.ec2.create_route_table(vpc.id))
            ctx.checkpoint(handle)
        route_table_id = handle.id
        self.ec2.create_default_route(route_table_id, igw.id)
        association_id = self.ec2.associate_route_table(route_table_id, subnet.id)

        handle = ResourceHandle(
            kind=ResourceKind.ROUTE_TABLE,
            id=route_table_id,
            properties={"association_id": association_id},
            created_at=handle.created_at,
        )
        return StepResult.ok(handle, message=f"Route table {route_table_id} associated")

    def _create_security_group(self, ctx: StepContext) -> StepResult:
        vpc = self._require(ctx, ResourceKind.VPC)
        port = int(ctx.record.parameters.get("wireguard_port", ctx.settings.wireguard_port))
        return self._create_with_setup(
            ctx, ResourceKind.SECURITY_GROUP, "Security group",
            exists=self.ec2.security_group_exists,
            create=lambda: self.ec2.create_security_group(vpc.id),
            setup=lambda group_id: self.ec2.authorize_ingress(group_id, port),
            properties={"wireguard_port": port},
        )

    def _import_key_pair(self, ctx: StepContext) -> StepResult:
        if self._live(ctx, ResourceKind.KEY_PAIR, self.ec2.key_pair_exists):
            return StepResult.skipped("Key pair already exists")
        public_key = ctx.record.parameters.get("ssh_public_key")
        if not public_key:
            raise StateError("No SSH public key was generated for this deployment")
        name = ctx.record.parameters["key_pair_name"]
        key_pair_id = self.ec2.import_key_pair(name, public_key)
        return StepResult.ok(
            ResourceHandle(kind=ResourceKind.KEY_PAIR, id=name, properties={"key_pair_id": key_pair_id}),
            message=f"Key pair {name} imported",
        )

    def _instance_alive(self, instance_id: str) -> bool:
        return self.ec2.instance_state(instance_id) not in DEAD_INSTANCE_STATES

    def _launch_instance(self, ctx: StepContext) -> StepResult:
        existing = self._live(ctx, ResourceKind.INSTANCE, self._instance_alive)
        if existing is not None:
            instance_id = existing.id
        else:
            subnet = self._require(ctx, ResourceKind.SUBNET)
            group = self._require(ctx, ResourceKind.SECURITY_GROUP)
            key_pair = self._require(ctx, ResourceKind.KEY_PAIR)
            instance_type = ctx.record.parameters.get("instance_type", ctx.settings.instance_type)

            ctx.report("Looking up Ubuntu 22.04 image")
            ami_id = self.ec2.find_ubuntu_ami()
            try:
                instance_id = self.ec2.run_instance(ami_id, instance_type, subnet.id, group.id, key_pair.id)
            except ClientError as e:
                if aws_error_code(e) in QUOTA_ERROR_CODES:
                    message = e.response.get('Error', {}).get('Message', str(e))
                    return StepResult.failed(f"insufficient quota: {message}")
                raise
            ctx.checkpoint(ResourceHandle(
                kind=ResourceKind.INSTANCE,
                id=instance_id,
                properties={"ami_id": ami_id, "instance_type": instance_type},
            ))

        def settled() -> Optional[str]:
            state = self.ec2.instance_state(instance_id)
            if state == 'running' or state in DEAD_INSTANCE_STATES:
                return state or 'missing'
            return None

        ctx.report(f"Waiting for instance {instance_id} to be running")
        state = wait_until(
            settled,
            ctx.deadline,
            interval=self.poll_interval,
            what=f"waiting for instance {instance_id} to start",
            sleep=self.sleep,
        )
        if state != 'running':
            return StepResult.failed(f"Instance {instance_id} stopped before it was running ({state})")
        return StepResult.ok(message=f"Instance {instance_id} is running")

    def _attach_elastic_ip(self, ctx: StepContext) -> StepResult:
        instance = self._require(ctx, ResourceKind.INSTANCE)
        address = self._live(ctx, ResourceKind.ELASTIC_IP, self.ec2.address_exists)
        if address is None:
            allocation_id, public_ip = self.ec2.allocate_address()
            address = ResourceHandle(
                kind=ResourceKind.ELASTIC_IP, id=allocation_id, properties={"public_ip": public_ip}
            )
            ctx.checkpoint(address)
            ctx.record.remove_handle(ResourceKind.EIP_ASSOCIATION)
        public_ip = address.properties["public_ip"]

        if ctx.record.get_handle(ResourceKind.EIP_ASSOCIATION) is None:
            association_id = self.ec2.associate_address(address.id, instance.id)
            ctx.checkpoint(ResourceHandle(
                kind=ResourceKind.EIP_ASSOCIATION,
                id=association_id,
                properties={"allocation_id": address.id, "instance_id": instance.id},
            ))

        if ctx.record.ssh is not None:
            ctx.record.ssh.host = public_ip
        return StepResult.ok(endpoint=public_ip, message=f"Elastic IP {public_ip} associated")

    def _configure(self, ctx: StepContext) -> StepResult:
        group = self._require(ctx, ResourceKind.SECURITY_GROUP)
        if is_configured(ctx):
            self.ec2.revoke_ssh(group.id)
            return StepResult.skipped("WireGuard already configured")

        # SSH is only open while the server is being configured
        self.ec2.authorize_ssh(group.id)
        try:
            result = configure_tunnel(ctx, self.open_session)
        finally:
            self.ec2.revoke_ssh(group.id)
        return result

    # Teardown

    def delete(self, handle: ResourceHandle, record: DeploymentRecord) -> None:
        """Delete one AWS resource; NotFound errors propagate as ClientError."""
        kind = handle.kind
        if kind == ResourceKind.TUNNEL_SERVICE:
            logger.info("WireGuard service goes away with the instance")
        elif kind == ResourceKind.EIP_ASSOCIATION:
            self.ec2.disassociate_address(handle.id)
        elif kind == ResourceKind.ELASTIC_IP:
            self.ec2.release_address(handle.id)
        elif kind == ResourceKind.INSTANCE:
            self.ec2.terminate_instance(handle.id)
        elif kind == ResourceKind.SECURITY_GROUP:
            self.ec2.delete_security_group(handle.id)
        elif kind == ResourceKind.ROUTE_TABLE:
            self.ec2.delete_route_table(handle.id, handle.properties.get("association_id"))
        elif kind == ResourceKind.INTERNET_GATEWAY:
            vpc = record.get_handle(ResourceKind.VPC)
            vpc_id = handle.properties.get("vpc_id") or (vpc.id if vpc else None)
            self.ec2.delete_internet_gateway(handle.id, vpc_id)
        elif kind == ResourceKind.SUBNET:
            self.ec2.delete_subnet(handle.id)
        elif kind == ResourceKind.VPC:
            self.ec2.delete_vpc(handle.id)
        elif kind == ResourceKind.KEY_PAIR:
            self.ec2.delete_key_pair(handle.id)
        else:
            raise ValueError(f"AWS pipeline cannot delete resource kind {kind}")
