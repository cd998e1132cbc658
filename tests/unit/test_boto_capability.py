"""Tests for the boto3-backed EC2 capability."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from tests.conftest import client_error
from vpn_deploy.providers.aws.ec2 import UBUNTU_SSM_PARAMETER, Boto3Ec2Capability


@pytest.fixture
def clients():
    return {"ec2": MagicMock(), "ssm": MagicMock(), "sts": MagicMock()}


@pytest.fixture
def delays():
    return []


@pytest.fixture
def capability(clients, delays):
    session = MagicMock()
    session.client.side_effect = lambda service, config=None: clients[service]
    return Boto3Ec2Capability("eu-west-1", session=session, sleep=delays.append)


class TestBoto3Ec2Capability:
    """Test the boto3 calls behind each capability method."""

    def test_clients_use_adaptive_retries(self, capability):
        config = capability.session.client.call_args_list[0][1]["config"]

        assert config.retries == {"mode": "adaptive", "max_attempts": 5}

    def test_validate_credentials(self, capability, clients):
        clients["sts"].get_caller_identity.return_value = {"Arn": "arn:aws:iam::123456789012:user/vpn"}

        assert capability.validate_credentials() == "arn:aws:iam::123456789012:user/vpn"

    def test_ami_from_ssm(self, capability, clients):
        clients["ssm"].get_parameter.return_value = {"Parameter": {"Value": "ami-ssm"}}

        assert capability.find_ubuntu_ami() == "ami-ssm"
        clients["ssm"].get_parameter.assert_called_once_with(Name=UBUNTU_SSM_PARAMETER)
        clients["ec2"].describe_images.assert_not_called()

    def test_ami_falls_back_to_newest_image(self, capability, clients):
        clients["ssm"].get_parameter.side_effect = client_error("AccessDeniedException", "no ssm")
        clients["ec2"].describe_images.return_value = {"Images": [
            {"ImageId": "ami-old", "CreationDate": "2023-01-01T00:00:00.000Z"},
            {"ImageId": "ami-new", "CreationDate": "2024-06-01T00:00:00.000Z"},
        ]}

        assert capability.find_ubuntu_ami() == "ami-new"

    def test_no_ami(self, capability, clients):
        clients["ssm"].get_parameter.side_effect = client_error("ParameterNotFound", "missing")
        clients["ec2"].describe_images.return_value = {"Images": []}

        with pytest.raises(LookupError):
            capability.find_ubuntu_ami()

    def test_instance_state(self, capability, clients):
        clients["ec2"].describe_instances.return_value = {"Reservations": [
            {"Instances": [{"State": {"Name": "running"}}]},
        ]}

        assert capability.instance_state("i-1") == "running"

    def test_instance_state_missing(self, capability, clients):
        clients["ec2"].describe_instances.side_effect = client_error("InvalidInstanceID.NotFound", "gone")

        assert capability.instance_state("i-1") is None

    def test_exists_checks(self, capability, clients):
        clients["ec2"].describe_vpcs.side_effect = client_error("InvalidVpcID.NotFound", "gone")
        clients["ec2"].describe_subnets.return_value = {"Subnets": [{"SubnetId": "subnet-1"}]}

        assert capability.vpc_exists("vpc-1") is False
        assert capability.subnet_exists("subnet-1") is True

    def test_exists_propagates_other_errors(self, capability, clients):
        clients["ec2"].describe_vpcs.side_effect = client_error("UnauthorizedOperation", "denied")

        with pytest.raises(ClientError):
            capability.vpc_exists("vpc-1")

    def test_revoke_ssh_tolerates_missing_rule(self, capability, clients):
        clients["ec2"].revoke_security_group_ingress.side_effect = client_error(
            "InvalidPermission.NotFound", "no such rule"
        )

        capability.revoke_ssh("sg-1")

    def test_authorize_ssh_tolerates_duplicate(self, capability, clients):
        clients["ec2"].authorize_security_group_ingress.side_effect = client_error(
            "InvalidPermission.Duplicate", "already there"
        )

        capability.authorize_ssh("sg-1")

    def test_create_security_group_only_creates(self, capability, clients):
        clients["ec2"].create_security_group.return_value = {"GroupId": "sg-1"}

        assert capability.create_security_group("vpc-1") == "sg-1"
        clients["ec2"].authorize_security_group_ingress.assert_not_called()

    def test_authorize_ingress_opens_ssh_and_tunnel_port(self, capability, clients):
        capability.authorize_ingress("sg-1", 51820)

        permissions = [
            call[1]["IpPermissions"][0]
            for call in clients["ec2"].authorize_security_group_ingress.call_args_list
        ]
        assert [(p["IpProtocol"], p["FromPort"]) for p in permissions] == [("tcp", 22), ("udp", 51820)]

    def test_authorize_ingress_tolerates_existing_rules(self, capability, clients):
        clients["ec2"].authorize_security_group_ingress.side_effect = client_error(
            "InvalidPermission.Duplicate", "already there"
        )

        capability.authorize_ingress("sg-1", 51820)

    def test_create_vpc_returns_before_setup(self, capability, clients):
        clients["ec2"].create_vpc.return_value = {"Vpc": {"VpcId": "vpc-1"}}

        assert capability.create_vpc("10.0.0.0/16") == "vpc-1"
        clients["ec2"].get_waiter.assert_not_called()
        clients["ec2"].modify_vpc_attribute.assert_not_called()

    def test_configure_vpc(self, capability, clients):
        capability.configure_vpc("vpc-1")

        clients["ec2"].get_waiter.assert_called_once_with("vpc_available")
        assert clients["ec2"].modify_vpc_attribute.call_count == 2

    def test_enable_public_ip(self, capability, clients):
        capability.enable_public_ip("subnet-1")

        clients["ec2"].modify_subnet_attribute.assert_called_once_with(
            SubnetId="subnet-1", MapPublicIpOnLaunch={"Value": True}
        )

    def test_delete_vpc_retries_dependency_violation(self, capability, clients, delays):
        clients["ec2"].delete_vpc.side_effect = [
            client_error("DependencyViolation", "has dependencies"),
            client_error("DependencyViolation", "has dependencies"),
            {},
        ]

        capability.delete_vpc("vpc-1")

        assert clients["ec2"].delete_vpc.call_count == 3
        assert len(delays) == 2

    def test_delete_internet_gateway_ignores_detached(self, capability, clients):
        clients["ec2"].detach_internet_gateway.side_effect = client_error("Gateway.NotAttached", "not attached")

        capability.delete_internet_gateway("igw-1", "vpc-1")

        clients["ec2"].delete_internet_gateway.assert_called_once_with(InternetGatewayId="igw-1")

    def test_allocate_address(self, capability, clients):
        clients["ec2"].allocate_address.return_value = {"AllocationId": "eipalloc-1", "PublicIp": "203.0.113.5"}

        assert capability.allocate_address() == ("eipalloc-1", "203.0.113.5")
