"""Deployment state models and storage."""

from .models import (
    ACTIVE_STATUSES,
    DeploymentRecord,
    DeploymentStatus,
    KeyMaterial,
    ProgressEvent,
    ProviderKind,
    ResourceHandle,
    ResourceKind,
    SshAccess,
)
from .store import DeploymentStore

__all__ = [
    "ACTIVE_STATUSES",
    "DeploymentRecord",
    "DeploymentStatus",
    "KeyMaterial",
    "ProgressEvent",
    "ProviderKind",
    "ResourceHandle",
    "ResourceKind",
    "SshAccess",
    "DeploymentStore",
]
