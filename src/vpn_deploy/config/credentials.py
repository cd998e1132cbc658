"""Provider credential models and storage."""

import json
import os
from pathlib import Path
from typing import Dict, Optional, Protocol, Type, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from vpn_deploy.state.models import ProviderKind
from vpn_deploy.utils.errors import CredentialError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class AwsCredentials(BaseModel):
    """AWS access key pair."""

    access_key_id: str = Field(..., min_length=16)
    secret_access_key: str = Field(..., min_length=16)

    @field_validator("access_key_id", "secret_access_key")
    @classmethod
    def strip_value(cls, v: str) -> str:
        return v.strip()


class DigitalOceanCredentials(BaseModel):
    """DigitalOcean personal access token."""

    api_token: str = Field(..., min_length=1)

    @field_validator("api_token")
    @classmethod
    def strip_value(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("API token must not be empty")
        return v


Credentials = Union[AwsCredentials, DigitalOceanCredentials]

CREDENTIAL_MODELS: Dict[ProviderKind, Type[BaseModel]] = {
    ProviderKind.AWS: AwsCredentials,
    ProviderKind.DIGITALOCEAN: DigitalOceanCredentials,
}


class CredentialStore(Protocol):
    """Where provider credentials come from."""

    def load(self, provider: ProviderKind) -> Optional[Credentials]:
        ...

    def save(self, provider: ProviderKind, credentials: Credentials) -> None:
        ...

    def delete(self, provider: ProviderKind) -> None:
        ...


class FileCredentialStore:
    """Stores one owner-only JSON file per provider."""

    def __init__(self, directory: Path):
        """Initialize the store.

        Args:
            directory: Directory holding the credential files
        """
        self.directory = Path(directory)

    def _path(self, provider: ProviderKind) -> Path:
        return self.directory / f"{provider.value}.json"

    def load(self, provider: ProviderKind) -> Optional[Credentials]:
        """Load credentials for a provider.

        Returns:
            Credentials, or None when none are saved

        Raises:
            CredentialError: If the saved file is unreadable or invalid
        """
        model = CREDENTIAL_MODELS.get(provider)
        if model is None:
            return None

        path = self._path(provider)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text())
            return model(**data)
        except (OSError, ValueError, ValidationError) as e:
            raise CredentialError(
                f"Saved {provider.value} credentials are unreadable",
                cause=e,
                suggestions=[f"Delete them with: vpn-deploy credentials delete {provider.value}"],
            )

    def save(self, provider: ProviderKind, credentials: Credentials) -> None:
        """Write credentials with 0600 permissions."""
        self.directory.mkdir(parents=True, exist_ok=True)
        os.chmod(self.directory, 0o700)
        path = self._path(provider)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(credentials.model_dump(), f)
        os.chmod(path, 0o600)
        logger.info(f"Saved {provider.value} credentials")

    def delete(self, provider: ProviderKind) -> None:
        """Remove saved credentials; missing files are ignored."""
        path = self._path(provider)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted {provider.value} credentials")

    def require(self, provider: ProviderKind) -> Credentials:
        """Load credentials or raise CredentialError when none are saved."""
        credentials = self.load(provider)
        if credentials is None:
            command = "set-aws" if provider == ProviderKind.AWS else "set-do"
            raise CredentialError(
                f"No {provider.value} credentials configured",
                suggestions=[f"Save credentials with: vpn-deploy credentials {command}"],
            )
        return credentials
