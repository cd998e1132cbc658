"""EC2 capability used by the AWS pipeline."""

from typing import Callable, Dict, List, Optional, Protocol, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from vpn_deploy.config.credentials import AwsCredentials
from vpn_deploy.utils.errors import aws_error_code, is_not_found
from vpn_deploy.utils.logging import get_logger
from vpn_deploy.utils.retry import DependencyRetry

logger = get_logger(__name__)

MANAGED_BY = "vpn-deploy"

UBUNTU_SSM_PARAMETER = "/aws/service/canonical/ubuntu/server/22.04/stable/current/amd64/hvm/ebs-gp2/ami-id"
CANONICAL_OWNER = "099720109477"
UBUNTU_NAME_GLOB = "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*"

USER_DATA = """#!/bin/bash
set -e
exec > /var/log/user-data.log 2>&1
echo 'net.ipv4.ip_forward=1' > /etc/sysctl.d/99-vpn.conf
echo 'net.ipv6.conf.all.disable_ipv6=1' >> /etc/sysctl.d/99-vpn.conf
sysctl -p /etc/sysctl.d/99-vpn.conf
touch /tmp/user-data-complete
"""


def _tags(resource_type: str, name: str) -> List[Dict]:
    return [{
        'ResourceType': resource_type,
        'Tags': [
            {'Key': 'Name', 'Value': name},
            {'Key': 'ManagedBy', 'Value': MANAGED_BY},
        ],
    }]


def _ssh_permission() -> Dict:
    return {
        'IpProtocol': 'tcp',
        'FromPort': 22,
        'ToPort': 22,
        'IpRanges': [{'CidrIp': '0.0.0.0/0', 'Description': 'Temporary SSH for setup'}],
    }


class Ec2Capability(Protocol):
    """Create, describe and delete calls for each AWS resource kind."""

    def validate_credentials(self) -> str: ...

    def create_vpc(self, cidr: str) -> str: ...
    def configure_vpc(self, vpc_id: str) -> None: ...
    def vpc_exists(self, vpc_id: str) -> bool: ...
    def delete_vpc(self, vpc_id: str) -> None: ...

    def create_subnet(self, vpc_id: str, cidr: str, availability_zone: str) -> str: ...
    def enable_public_ip(self, subnet_id: str) -> None: ...
    def subnet_exists(self, subnet_id: str) -> bool: ...
    def delete_subnet(self, subnet_id: str) -> None: ...

    def create_internet_gateway(self) -> str: ...
    def attach_internet_gateway(self, igw_id: str, vpc_id: str) -> None: ...
    def internet_gateway_exists(self, igw_id: str) -> bool: ...
    def delete_internet_gateway(self, igw_id: str, vpc_id: Optional[str]) -> None: ...

    def create_route_table(self, vpc_id: str) -> str: ...
    def create_default_route(self, route_table_id: str, igw_id: str) -> None: ...
    def associate_route_table(self, route_table_id: str, subnet_id: str) -> str: ...
    def route_table_exists(self, route_table_id: str) -> bool: ...
    def delete_route_table(self, route_table_id: str, association_id: Optional[str]) -> None: ...

    def create_security_group(self, vpc_id: str) -> str: ...
    def authorize_ingress(self, group_id: str, tunnel_port: int) -> None: ...
    def security_group_exists(self, group_id: str) -> bool: ...
    def authorize_ssh(self, group_id: str) -> None: ...
    def revoke_ssh(self, group_id: str) -> None: ...
    def delete_security_group(self, group_id: str) -> None: ...

    def import_key_pair(self, name: str, public_key: str) -> str: ...
    def key_pair_exists(self, name: str) -> bool: ...
    def delete_key_pair(self, name: str) -> None: ...

    def find_ubuntu_ami(self) -> str: ...
    def run_instance(self, ami_id: str, instance_type: str, subnet_id: str,
                     group_id: str, key_name: str) -> str: ...
    def instance_state(self, instance_id: str) -> Optional[str]: ...
    def terminate_instance(self, instance_id: str) -> None: ...

    def allocate_address(self) -> Tuple[str, str]: ...
    def address_exists(self, allocation_id: str) -> bool: ...
    def associate_address(self, allocation_id: str, instance_id: str) -> str: ...
    def disassociate_address(self, association_id: str) -> None: ...
    def release_address(self, allocation_id: str) -> None: ...


class Boto3Ec2Capability:
    """Ec2Capability backed by boto3."""

    def __init__(
        self,
        region: str,
        credentials: Optional[AwsCredentials] = None,
        session: Optional[boto3.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize EC2 capability.

        Args:
            region: AWS region
            credentials: Access keys; the default chain is used when None
            session: Preconfigured boto3 session
            sleep: Function used to wait between dependency retries
        """
        self.region = region
        if session is None:
            kwargs = {'region_name': region}
            if credentials is not None:
                kwargs['aws_access_key_id'] = credentials.access_key_id
                kwargs['aws_secret_access_key'] = credentials.secret_access_key
            session = boto3.Session(**kwargs)
        self.session = session

        # Adaptive retries and bounded timeouts for every call
        self._boto_config = Config(
            retries={
                'mode': 'adaptive',
                'max_attempts': 5
            },
            connect_timeout=10,
            read_timeout=60
        )
        self.ec2 = session.client('ec2', config=self._boto_config)
        self.ssm = session.client('ssm', config=self._boto_config)
        self.sts = session.client('sts', config=self._boto_config)

        self._dependency_retry = DependencyRetry(sleep=sleep)

    def validate_credentials(self) -> str:
        """Return the ARN of the caller; raises ClientError on bad credentials."""
        identity = self.sts.get_caller_identity()
        return identity['Arn']

    def _exists(self, describe: Callable[[], bool]) -> bool:
        try:
            return describe()
        except ClientError as e:
            if is_not_found(e):
                return False
            raise

    def _ignore_not_found(self, call: Callable[[], object]) -> None:
        try:
            call()
        except ClientError as e:
            if not is_not_found(e):
                raise
            logger.debug(f"Already gone: {aws_error_code(e)}")

    # VPC

    def create_vpc(self, cidr: str) -> str:
        response = self.ec2.create_vpc(
            CidrBlock=cidr,
            TagSpecifications=_tags('vpc', 'vpn-deploy-vpc'),
        )
        vpc_id = response['Vpc']['VpcId']
        logger.info(f"Created VPC: {vpc_id}")
        return vpc_id

    def configure_vpc(self, vpc_id: str) -> None:
        """Wait for the VPC and turn on DNS support and hostnames."""
        self.ec2.get_waiter('vpc_available').wait(VpcIds=[vpc_id])
        self.ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsSupport={'Value': True})
        self.ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsHostnames={'Value': True})

    def vpc_exists(self, vpc_id: str) -> bool:
        return self._exists(lambda: bool(self.ec2.describe_vpcs(VpcIds=[vpc_id])['Vpcs']))

    def delete_vpc(self, vpc_id: str) -> None:
        self._dependency_retry.call(self.ec2.delete_vpc, VpcId=vpc_id)
        logger.info(f"Deleted VPC: {vpc_id}")

    # Subnet

    def create_subnet(self, vpc_id: str, cidr: str, availability_zone: str) -> str:
        response = self.ec2.create_subnet(
            VpcId=vpc_id,
            CidrBlock=cidr,
            AvailabilityZone=availability_zone,
            TagSpecifications=_tags('subnet', 'vpn-deploy-subnet'),
        )
        subnet_id = response['Subnet']['SubnetId']
        logger.info(f"Created subnet: {subnet_id}")
        return subnet_id

    def enable_public_ip(self, subnet_id: str) -> None:
        self.ec2.modify_subnet_attribute(SubnetId=subnet_id, MapPublicIpOnLaunch={'Value': True})

    def subnet_exists(self, subnet_id: str) -> bool:
        return self._exists(lambda: bool(self.ec2.describe_subnets(SubnetIds=[subnet_id])['Subnets']))

    def delete_subnet(self, subnet_id: str) -> None:
        self._dependency_retry.call(self.ec2.delete_subnet, SubnetId=subnet_id)
        logger.info(f"Deleted subnet: {subnet_id}")

    # Internet gateway

    def create_internet_gateway(self) -> str:
        response = self.ec2.create_internet_gateway(
            TagSpecifications=_tags('internet-gateway', 'vpn-deploy-igw'),
        )
        igw_id = response['InternetGateway']['InternetGatewayId']
        logger.info(f"Created internet gateway: {igw_id}")
        return igw_id

    def attach_internet_gateway(self, igw_id: str, vpc_id: str) -> None:
        try:
            self.ec2.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)
        except ClientError as e:
            if aws_error_code(e) != 'Resource.AlreadyAssociated':
                raise

    def internet_gateway_exists(self, igw_id: str) -> bool:
        return self._exists(lambda: bool(
            self.ec2.describe_internet_gateways(InternetGatewayIds=[igw_id])['InternetGateways']
        ))

    def delete_internet_gateway(self, igw_id: str, vpc_id: Optional[str]) -> None:
        if vpc_id:
            self._ignore_not_found(
                lambda: self._dependency_retry.call(
                    self.ec2.detach_internet_gateway, InternetGatewayId=igw_id, VpcId=vpc_id
                )
            )
        self.ec2.delete_internet_gateway(InternetGatewayId=igw_id)
        logger.info(f"Deleted internet gateway: {igw_id}")

    # Route table

    def create_route_table(self, vpc_id: str) -> str:
        response = self.ec2.create_route_table(
            VpcId=vpc_id,
            TagSpecifications=_tags('route-table', 'vpn-deploy-rt'),
        )
        route_table_id = response['RouteTable']['RouteTableId']
        logger.info(f"Created route table: {route_table_id}")
        return route_table_id

    def create_default_route(self, route_table_id: str, igw_id: str) -> None:
        try:
            self.ec2.create_route(
                RouteTableId=route_table_id,
                DestinationCidrBlock='0.0.0.0/0',
                GatewayId=igw_id,
            )
        except ClientError as e:
            if aws_error_code(e) != 'RouteAlreadyExists':
                raise

    def associate_route_table(self, route_table_id: str, subnet_id: str) -> str:
        response = self.ec2.associate_route_table(RouteTableId=route_table_id, SubnetId=subnet_id)
        return response['AssociationId']

    def route_table_exists(self, route_table_id: str) -> bool:
        return self._exists(lambda: bool(
            self.ec2.describe_route_tables(RouteTableIds=[route_table_id])['RouteTables']
        ))

    def delete_route_table(self, route_table_id: str, association_id: Optional[str]) -> None:
        if association_id:
            self._ignore_not_found(
                lambda: self.ec2.disassociate_route_table(AssociationId=association_id)
            )
        self.ec2.delete_route_table(RouteTableId=route_table_id)
        logger.info(f"Deleted route table: {route_table_id}")

    # Security group

    def create_security_group(self, vpc_id: str) -> str:
        response = self.ec2.create_security_group(
            GroupName='vpn-deploy-sg',
            Description='WireGuard VPN server',
            VpcId=vpc_id,
            TagSpecifications=_tags('security-group', 'vpn-deploy-sg'),
        )
        group_id = response['GroupId']
        logger.info(f"Created security group: {group_id}")
        return group_id

    def authorize_ingress(self, group_id: str, tunnel_port: int) -> None:
        """Open the WireGuard port and temporary SSH; rules already present are kept."""
        self.authorize_ssh(group_id)
        try:
            self.ec2.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[{
                    'IpProtocol': 'udp',
                    'FromPort': tunnel_port,
                    'ToPort': tunnel_port,
                    'IpRanges': [{'CidrIp': '0.0.0.0/0', 'Description': 'WireGuard'}],
                }],
            )
        except ClientError as e:
            if aws_error_code(e) != 'InvalidPermission.Duplicate':
                raise

    def security_group_exists(self, group_id: str) -> bool:
        return self._exists(lambda: bool(
            self.ec2.describe_security_groups(GroupIds=[group_id])['SecurityGroups']
        ))

    def authorize_ssh(self, group_id: str) -> None:
        try:
            self.ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=[_ssh_permission()])
        except ClientError as e:
            if aws_error_code(e) != 'InvalidPermission.Duplicate':
                raise

    def revoke_ssh(self, group_id: str) -> None:
        try:
            self.ec2.revoke_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[{
                    'IpProtocol': 'tcp',
                    'FromPort': 22,
                    'ToPort': 22,
                    'IpRanges': [{'CidrIp': '0.0.0.0/0'}],
                }],
            )
        except ClientError as e:
            if aws_error_code(e) != 'InvalidPermission.NotFound':
                raise
        logger.info(f"Revoked SSH ingress on {group_id}")

    def delete_security_group(self, group_id: str) -> None:
        # Network interfaces of a terminated instance can linger briefly
        self._dependency_retry.call(self.ec2.delete_security_group, GroupId=group_id)
        logger.info(f"Deleted security group: {group_id}")

    # Key pair

    def import_key_pair(self, name: str, public_key: str) -> str:
        response = self.ec2.import_key_pair(
            KeyName=name,
            PublicKeyMaterial=public_key.encode('ascii'),
            TagSpecifications=_tags('key-pair', name),
        )
        logger.info(f"Imported key pair: {name}")
        return response['KeyPairId']

    def key_pair_exists(self, name: str) -> bool:
        return self._exists(lambda: bool(self.ec2.describe_key_pairs(KeyNames=[name])['KeyPairs']))

    def delete_key_pair(self, name: str) -> None:
        self.ec2.delete_key_pair(KeyName=name)
        logger.info(f"Deleted key pair: {name}")

    # Instance

    def find_ubuntu_ami(self) -> str:
        """Latest Ubuntu 22.04 AMI: SSM parameter first, DescribeImages as fallback."""
        try:
            ami_id = self.ssm.get_parameter(Name=UBUNTU_SSM_PARAMETER)['Parameter']['Value']
            logger.info(f"Resolved Ubuntu 22.04 AMI via SSM: {ami_id}")
            return ami_id
        except ClientError as e:
            logger.warning(f"SSM AMI lookup failed ({aws_error_code(e)}), falling back to DescribeImages")

        response = self.ec2.describe_images(
            Owners=[CANONICAL_OWNER],
            Filters=[
                {'Name': 'name', 'Values': [UBUNTU_NAME_GLOB]},
                {'Name': 'state', 'Values': ['available']},
                {'Name': 'architecture', 'Values': ['x86_64']},
                {'Name': 'root-device-type', 'Values': ['ebs']},
                {'Name': 'virtualization-type', 'Values': ['hvm']},
            ],
        )
        images = sorted(response.get('Images', []), key=lambda i: i.get('CreationDate', ''), reverse=True)
        if not images:
            raise LookupError("No Ubuntu 22.04 AMIs found in this region")
        ami_id = images[0]['ImageId']
        logger.info(f"Resolved Ubuntu 22.04 AMI via DescribeImages: {ami_id}")
        return ami_id

    def run_instance(self, ami_id: str, instance_type: str, subnet_id: str,
                     group_id: str, key_name: str) -> str:
        response = self.ec2.run_instances(
            ImageId=ami_id,
            InstanceType=instance_type,
            MinCount=1,
            MaxCount=1,
            SubnetId=subnet_id,
            SecurityGroupIds=[group_id],
            KeyName=key_name,
            UserData=USER_DATA,
            BlockDeviceMappings=[{
                'DeviceName': '/dev/sda1',
                'Ebs': {
                    'VolumeType': 'gp3',
                    'VolumeSize': 20,
                    'DeleteOnTermination': True,
                    'Encrypted': True,
                },
            }],
            TagSpecifications=_tags('instance', 'vpn-deploy-server'),
        )
        instance_id = response['Instances'][0]['InstanceId']
        logger.info(f"Launched instance: {instance_id}")
        return instance_id

    def instance_state(self, instance_id: str) -> Optional[str]:
        """State name of the instance, or None if it does not exist."""
        try:
            reservations = self.ec2.describe_instances(InstanceIds=[instance_id])['Reservations']
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        for reservation in reservations:
            for instance in reservation.get('Instances', []):
                return instance.get('State', {}).get('Name')
        return None

    def terminate_instance(self, instance_id: str) -> None:
        self.ec2.terminate_instances(InstanceIds=[instance_id])
        logger.info(f"Terminating instance: {instance_id}")
        self.ec2.get_waiter('instance_terminated').wait(
            InstanceIds=[instance_id],
            WaiterConfig={'Delay': 5, 'MaxAttempts': 60},
        )
        logger.info(f"Instance terminated: {instance_id}")

    # Elastic IP

    def allocate_address(self) -> Tuple[str, str]:
        response = self.ec2.allocate_address(
            Domain='vpc',
            TagSpecifications=_tags('elastic-ip', 'vpn-deploy-eip'),
        )
        logger.info(f"Allocated EIP: {response['PublicIp']} ({response['AllocationId']})")
        return response['AllocationId'], response['PublicIp']

    def address_exists(self, allocation_id: str) -> bool:
        return self._exists(lambda: bool(
            self.ec2.describe_addresses(AllocationIds=[allocation_id])['Addresses']
        ))

    def associate_address(self, allocation_id: str, instance_id: str) -> str:
        response = self.ec2.associate_address(AllocationId=allocation_id, InstanceId=instance_id)
        return response['AssociationId']

    def disassociate_address(self, association_id: str) -> None:
        self.ec2.disassociate_address(AssociationId=association_id)
        logger.info(f"Disassociated EIP: {association_id}")

    def release_address(self, allocation_id: str) -> None:
        self.ec2.release_address(AllocationId=allocation_id)
        logger.info(f"Released EIP: {allocation_id}")
