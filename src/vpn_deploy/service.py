"""Application facade wiring stores, orchestrator, scheduler and tunnel together."""

import os
import shutil
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError
from requests import RequestException

from vpn_deploy.config.credentials import Credentials, FileCredentialStore
from vpn_deploy.config.models import AppPaths, Settings
from vpn_deploy.config.store import SettingsStore
from vpn_deploy.orchestrator.orchestrator import DeploymentOrchestrator
from vpn_deploy.orchestrator.progress import ProgressBus
from vpn_deploy.orchestrator.scheduler import AutoDestroyScheduler
from vpn_deploy.providers.base import DeployRequest
from vpn_deploy.providers.factory import PipelineFactory
from vpn_deploy.state.models import DeploymentRecord, ProviderKind
from vpn_deploy.state.store import DeploymentStore
from vpn_deploy.tunnel.connection import ConnectionController, ConnectionStatus
from vpn_deploy.tunnel.transport import TunnelTransport, WgQuickTransport
from vpn_deploy.utils.errors import (
    ErrorContext,
    OperationRejected,
    TunnelError,
    ValidationError,
    error_handler,
)
from vpn_deploy.utils.logging import LOG_FILE_NAME, clear_log, get_logger, read_log

logger = get_logger(__name__)


class VpnService:
    """Single entry point for every operation the CLI exposes."""

    def __init__(
        self,
        paths: AppPaths,
        store: DeploymentStore,
        settings_store: SettingsStore,
        credentials: FileCredentialStore,
        factory: PipelineFactory,
        bus: ProgressBus,
        transport: TunnelTransport,
    ):
        self.paths = paths
        self.store = store
        self.settings_store = settings_store
        self.credentials = credentials
        self.factory = factory
        self.bus = bus
        self.orchestrator = DeploymentOrchestrator(
            store, factory, settings_store, bus=bus, cleanup=self._cleanup_local
        )
        self.connection = ConnectionController(transport, store)
        self.scheduler = AutoDestroyScheduler(
            store,
            self.destroy,
            poll_interval=settings_store.load().scheduler_poll_seconds,
        )

    @classmethod
    def from_paths(
        cls,
        paths: Optional[AppPaths] = None,
        factory: Optional[PipelineFactory] = None,
        transport: Optional[TunnelTransport] = None,
    ) -> "VpnService":
        """Build the service over an application home.

        Args:
            paths: Application paths; $VPN_DEPLOY_HOME or ~/.vpn-deploy when None
            factory: Pipeline factory; built over the file credential store when None
            transport: Local tunnel transport; wg-quick when None
        """
        paths = paths or AppPaths()
        paths.ensure()
        credentials = FileCredentialStore(paths.credentials_dir)
        return cls(
            paths=paths,
            store=DeploymentStore(paths.state_file, paths.lock_file),
            settings_store=SettingsStore(paths.settings_file),
            credentials=credentials,
            factory=factory or PipelineFactory(credentials),
            bus=ProgressBus(),
            transport=transport or WgQuickTransport(paths.tunnel_config_file),
        )

    @property
    def log_file(self) -> Path:
        return self.paths.log_dir / LOG_FILE_NAME

    def start(self) -> DeploymentRecord:
        """Recover an interrupted operation and arm the auto-destroy poller."""
        record = self.orchestrator.recover()
        for warning in self.store.integrity_warnings:
            logger.warning(warning.message)
        self.scheduler.start()
        return record

    def close(self) -> None:
        self.scheduler.stop(timeout=5)
        self.orchestrator.shutdown(wait=True)

    # Deployment

    def status(self) -> DeploymentRecord:
        return self.orchestrator.get_state()

    def deploy(self, request: DeployRequest) -> DeploymentRecord:
        return self.orchestrator.deploy(request)

    def deploy_async(self, request: DeployRequest) -> "Future[DeploymentRecord]":
        return self.orchestrator.deploy_async(request)

    def destroy(self) -> DeploymentRecord:
        """Bring the local tunnel down, then tear the deployment down."""
        self._disconnect_before_destroy()
        return self.orchestrator.destroy()

    def destroy_async(self) -> "Future[DeploymentRecord]":
        self._disconnect_before_destroy()
        return self.orchestrator.destroy_async()

    def reset(self) -> DeploymentRecord:
        return self.orchestrator.reset()

    def _disconnect_before_destroy(self) -> None:
        try:
            self.connection.disconnect()
        except TunnelError as e:
            logger.warning(f"Could not disconnect tunnel before destroy: {e.message}")

    def _cleanup_local(self) -> None:
        for path in (self.paths.client_config_file, self.paths.tunnel_config_file):
            if path.exists():
                path.unlink()
                logger.debug(f"Removed {path}")

    # Tunnel

    def connect(self) -> ConnectionStatus:
        return self.connection.connect()

    def disconnect(self) -> ConnectionStatus:
        return self.connection.disconnect()

    def connection_status(self) -> ConnectionStatus:
        return self.connection.status()

    def client_config(self) -> Optional[str]:
        return self.status().client_config

    def export_client_config(self, path: Optional[Path] = None) -> Path:
        """Write the client config to a file readable only by the owner.

        Args:
            path: Destination; the application home's client.conf when None

        Returns:
            Path written

        Raises:
            OperationRejected: If no client config exists yet
        """
        config = self.client_config()
        if not config:
            raise OperationRejected(
                "No client config available",
                suggestions=["Deploy a server first with: vpn-deploy deploy"],
            )

        path = Path(path or self.paths.client_config_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(config)
        os.chmod(path, 0o600)
        logger.info(f"Client config exported to {path}")
        return path

    # Settings and credentials

    def settings(self) -> Settings:
        return self.settings_store.load()

    def update_settings(self, **changes: Any) -> Settings:
        return self.settings_store.update(**changes)

    def save_credentials(self, provider: ProviderKind, credentials: Credentials) -> None:
        self.credentials.save(ProviderKind(provider), credentials)

    def delete_credentials(self, provider: ProviderKind) -> None:
        self.credentials.delete(ProviderKind(provider))

    def validate_credentials(
        self,
        provider: ProviderKind,
        credentials: Optional[Credentials] = None,
        region: Optional[str] = None,
    ) -> str:
        """Check credentials against the provider.

        Args:
            provider: aws or digitalocean
            credentials: Credentials to check; the saved ones when None
            region: AWS region used for the STS call; the settings region when None

        Returns:
            Caller identity (AWS ARN or DigitalOcean account email)

        Raises:
            CredentialError: If the credentials are missing or rejected
        """
        provider = ProviderKind(provider)
        if provider == ProviderKind.BYO:
            raise ValidationError("BYO servers use SSH keys, not provider credentials")
        if credentials is None:
            credentials = self.credentials.require(provider)

        try:
            if provider == ProviderKind.AWS:
                region = region or self.settings().region
                identity = self.factory.ec2_factory(region, credentials).validate_credentials()
            else:
                identity = self.factory.do_factory(credentials).get_account().get("email", "unknown")
        except (ClientError, BotoCoreError, RequestException) as e:
            raise error_handler.handle_exception(
                e, ErrorContext(provider=provider.value, operation="validate_credentials")
            ) from e

        logger.info(f"{provider.value} credentials valid for {identity}")
        return identity

    # Logs

    def read_logs(self) -> str:
        return read_log(self.log_file)

    def clear_logs(self) -> None:
        clear_log(self.log_file)

    def export_logs(self, destination: Path) -> Path:
        """Copy the log file to a destination path."""
        destination = Path(destination).expanduser()
        destination.parent.mkdir(parents=True, exist_ok=True)
        if self.log_file.exists():
            shutil.copyfile(self.log_file, destination)
        else:
            destination.write_text("")
        logger.info(f"Logs exported to {destination}")
        return destination
