"""Builds the pipeline for a provider."""

from typing import Callable, Optional

from vpn_deploy.config.credentials import (
    AwsCredentials,
    CredentialStore,
    DigitalOceanCredentials,
)
from vpn_deploy.providers.aws import AwsPipeline, Boto3Ec2Capability, Ec2Capability
from vpn_deploy.providers.base import Pipeline
from vpn_deploy.providers.byo import ByoPipeline
from vpn_deploy.providers.digitalocean import DigitalOceanApi, DigitalOceanClient, DigitalOceanPipeline
from vpn_deploy.ssh.client import SessionFactory, open_session
from vpn_deploy.state.models import DeploymentRecord, ProviderKind
from vpn_deploy.utils.errors import CredentialError, ValidationError

Ec2Factory = Callable[[str, AwsCredentials], Ec2Capability]
DigitalOceanFactory = Callable[[DigitalOceanCredentials], DigitalOceanApi]


def _boto3_ec2(region: str, credentials: AwsCredentials) -> Ec2Capability:
    return Boto3Ec2Capability(region, credentials)


def _do_client(credentials: DigitalOceanCredentials) -> DigitalOceanApi:
    return DigitalOceanClient(credentials.api_token)


class PipelineFactory:
    """Creates provider pipelines with their capabilities wired in."""

    def __init__(
        self,
        credentials: CredentialStore,
        session_factory: SessionFactory = open_session,
        ec2_factory: Ec2Factory = _boto3_ec2,
        do_factory: DigitalOceanFactory = _do_client,
    ):
        """Initialize the factory.

        Args:
            credentials: Credential store read for cloud providers
            session_factory: Opens SSH sessions
            ec2_factory: Creates an EC2 capability for a region
            do_factory: Creates a DigitalOcean API client
        """
        self.credentials = credentials
        self.session_factory = session_factory
        self.ec2_factory = ec2_factory
        self.do_factory = do_factory

    def _load(self, provider: ProviderKind):
        creds = self.credentials.load(provider)
        if creds is None:
            command = "set-aws" if provider == ProviderKind.AWS else "set-do"
            raise CredentialError(
                f"No {provider.value} credentials configured",
                suggestions=[f"Save credentials with: vpn-deploy credentials {command}"],
            )
        return creds

    def build(
        self,
        provider: ProviderKind,
        region: Optional[str],
        record: Optional[DeploymentRecord] = None,
    ) -> Pipeline:
        """Build the pipeline for a provider.

        Args:
            provider: Target provider
            region: Region for cloud providers
            record: Existing record; its region wins when resuming or destroying

        Returns:
            Pipeline

        Raises:
            CredentialError: If cloud credentials are missing
            ValidationError: If a cloud region is missing
        """
        if record is not None and record.region:
            region = record.region

        if provider == ProviderKind.BYO:
            return ByoPipeline(self.session_factory)

        if not region:
            raise ValidationError(f"A region is required for {provider.value}")

        if provider == ProviderKind.AWS:
            return AwsPipeline(self.ec2_factory(region, self._load(provider)), self.session_factory, region)
        if provider == ProviderKind.DIGITALOCEAN:
            return DigitalOceanPipeline(self.do_factory(self._load(provider)), self.session_factory, region)
        raise ValidationError(f"Unknown provider: {provider}")
