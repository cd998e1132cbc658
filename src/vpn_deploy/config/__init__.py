"""Settings, application paths, and provider credentials."""

from .models import AppPaths, Settings
from .store import SettingsStore
from .regions import AWS_REGIONS, DIGITALOCEAN_REGIONS, list_regions
from .credentials import (
    AwsCredentials,
    CredentialStore,
    DigitalOceanCredentials,
    FileCredentialStore,
)

__all__ = [
    "AppPaths",
    "Settings",
    "SettingsStore",
    "AwsCredentials",
    "CredentialStore",
    "DigitalOceanCredentials",
    "FileCredentialStore",
    "AWS_REGIONS",
    "DIGITALOCEAN_REGIONS",
    "list_regions",
]
