"""Connection controller for the local tunnel."""

import threading
from enum import Enum

from vpn_deploy.state.models import DeploymentStatus
from vpn_deploy.state.store import DeploymentStore
from vpn_deploy.tunnel.parser import parse_client_config
from vpn_deploy.tunnel.transport import TunnelTransport
from vpn_deploy.utils.errors import OperationRejected, TunnelError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class ConnectionStatus(str, Enum):
    """Local tunnel status."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class ConnectionController:
    """Serializes connect and disconnect requests over a tunnel transport."""

    def __init__(self, transport: TunnelTransport, store: DeploymentStore):
        """Initialize the controller.

        Args:
            transport: Local tunnel transport
            store: Deployment store providing the client config
        """
        self.transport = transport
        self.store = store
        self._lock = threading.Lock()
        self._transition = None

    def status(self) -> ConnectionStatus:
        """Current status, consulting the transport unless a transition is in flight."""
        transition = self._transition
        if transition is not None:
            return transition
        return ConnectionStatus.CONNECTED if self.transport.status() else ConnectionStatus.DISCONNECTED

    def connect(self) -> ConnectionStatus:
        """Bring the tunnel up using the deployed client config.

        Returns:
            The resulting status

        Raises:
            OperationRejected: If nothing is deployed
            ValidationError: If the stored client config does not parse
            TunnelError: If the transport fails
        """
        with self._lock:
            record = self.store.load()
            if record.status != DeploymentStatus.DEPLOYED or not record.client_config:
                raise OperationRejected(
                    f"Cannot connect: deployment status is {record.status.value}",
                    suggestions=["Deploy a server first with: vpn-deploy deploy"],
                )

            parsed = parse_client_config(record.client_config)
            if self.transport.status():
                logger.info("Tunnel already connected")
                return ConnectionStatus.CONNECTED

            self._transition = ConnectionStatus.CONNECTING
            try:
                logger.info(f"Connecting tunnel to {parsed.endpoint}")
                self.transport.up(record.client_config)
            except TunnelError:
                logger.error("Tunnel activation failed")
                raise
            finally:
                self._transition = None

            logger.info("Tunnel connected")
            return ConnectionStatus.CONNECTED

    def disconnect(self) -> ConnectionStatus:
        """Bring the tunnel down if it is up."""
        with self._lock:
            if not self.transport.status():
                return ConnectionStatus.DISCONNECTED

            self._transition = ConnectionStatus.DISCONNECTING
            try:
                self.transport.down()
            finally:
                self._transition = None

            logger.info("Tunnel disconnected")
            return ConnectionStatus.DISCONNECTED
