"""Deployment record data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class DeploymentStatus(str, Enum):
    """Lifecycle status of the single deployment."""

    NOT_DEPLOYED = "not_deployed"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    DESTROYING = "destroying"
    FAILED = "failed"


# Statuses in which a new deploy is rejected
ACTIVE_STATUSES = frozenset(
    {DeploymentStatus.DEPLOYING, DeploymentStatus.DEPLOYED, DeploymentStatus.DESTROYING}
)


class ProviderKind(str, Enum):
    """Supported server backends."""

    AWS = "aws"
    DIGITALOCEAN = "digitalocean"
    BYO = "byo"


class ResourceKind:
    """Names of resource handle kinds."""

    VPC = "vpc"
    SUBNET = "subnet"
    INTERNET_GATEWAY = "internet_gateway"
    ROUTE_TABLE = "route_table"
    SECURITY_GROUP = "security_group"
    KEY_PAIR = "key_pair"
    INSTANCE = "instance"
    ELASTIC_IP = "elastic_ip"
    EIP_ASSOCIATION = "eip_association"
    SSH_KEY = "ssh_key"
    DROPLET = "droplet"
    FIREWALL = "firewall"
    TUNNEL_SERVICE = "tunnel_service"


class ResourceHandle(BaseModel):
    """One remote resource created by a pipeline step."""

    kind: str = Field(..., description="Resource kind, e.g. vpc or droplet")
    id: str = Field(..., description="Provider-side identifier")
    properties: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class KeyMaterial(BaseModel):
    """Tunnel keys kept locally. The server private key never appears here."""

    model_config = ConfigDict(extra="forbid")

    server_public_key: Optional[str] = None
    client_private_key: Optional[str] = None
    client_public_key: Optional[str] = None


class SshAccess(BaseModel):
    """How the controller reaches the server over SSH."""

    host: Optional[str] = None
    port: int = 22
    user: str = "root"
    private_key: Optional[str] = Field(None, description="OpenSSH private key text")


class DeploymentRecord(BaseModel):
    """The single persisted deployment."""

    version: str = Field("1", description="Record format version")
    status: DeploymentStatus = DeploymentStatus.NOT_DEPLOYED
    provider: Optional[ProviderKind] = None
    region: Optional[str] = None
    endpoint: Optional[str] = Field(None, description="Public IP of the server")
    ssh: Optional[SshAccess] = None
    resources: List[ResourceHandle] = Field(default_factory=list)
    keys: KeyMaterial = Field(default_factory=KeyMaterial)
    client_config: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    deployed_at: Optional[datetime] = None
    auto_destroy_at: Optional[datetime] = None
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        """Whether a new deploy must be rejected."""
        return self.status in ACTIVE_STATUSES

    def get_handle(self, kind: str) -> Optional[ResourceHandle]:
        """Get the handle of a kind, if recorded."""
        for handle in self.resources:
            if handle.kind == kind:
                return handle
        return None

    def put_handle(self, handle: ResourceHandle) -> None:
        """Record a handle, replacing one of the same kind in place."""
        for index, existing in enumerate(self.resources):
            if existing.kind == handle.kind:
                self.resources[index] = handle
                return
        self.resources.append(handle)

    def remove_handle(self, kind: str) -> Optional[ResourceHandle]:
        """Remove and return the handle of a kind."""
        for index, existing in enumerate(self.resources):
            if existing.kind == kind:
                return self.resources.pop(index)
        return None

    def handle_kinds(self) -> List[str]:
        """Kinds of all recorded handles in creation order."""
        return [handle.kind for handle in self.resources]

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentRecord":
        """Create a record from a dictionary produced by to_dict()."""
        return cls.model_validate(data)


class ProgressEvent(BaseModel):
    """One progress notification for an in-flight operation."""

    operation: str = Field(..., description="deploy or destroy")
    step: int = Field(..., ge=1)
    total_steps: int = Field(..., ge=1)
    message: str
    status: str = Field(..., pattern="^(running|done|error)$")

    @property
    def is_terminal(self) -> bool:
        return self.status in ("done", "error")
