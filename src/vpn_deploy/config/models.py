"""Pydantic models for application settings and on-disk layout."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


HOME_ENV_VAR = "VPN_DEPLOY_HOME"
DEFAULT_HOME = Path.home() / ".vpn-deploy"


class Settings(BaseModel):
    """User settings read by pipelines as defaults."""

    region: str = Field("us-east-1", description="Default AWS region")
    instance_type: str = Field("t3.micro", description="EC2 instance type")
    do_region: str = Field("nyc3", description="Default DigitalOcean region slug")
    do_size: str = Field("s-1vcpu-1gb", description="DigitalOcean droplet size slug")
    wireguard_port: int = Field(51820, ge=1, le=65535)
    ssh_user: str = Field("ubuntu", description="SSH user for AWS and BYO hosts")
    ssh_port: int = Field(22, ge=1, le=65535)
    dns: str = Field("1.1.1.1", description="DNS server pushed to the client")
    step_timeout_seconds: int = Field(600, ge=30, description="Upper bound for a single step")
    scheduler_poll_seconds: int = Field(30, ge=1)

    @field_validator("region", "do_region", "instance_type", "do_size", "ssh_user", "dns")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject blank string settings."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class AppPaths:
    """Locations of everything the controller keeps on disk."""

    def __init__(self, home: Optional[Path] = None):
        """Initialize application paths.

        Args:
            home: Application home; defaults to $VPN_DEPLOY_HOME or ~/.vpn-deploy
        """
        if home is None:
            env_home = os.environ.get(HOME_ENV_VAR)
            home = Path(env_home).expanduser() if env_home else DEFAULT_HOME
        self.home = Path(home)

    @property
    def state_file(self) -> Path:
        return self.home / "state.json"

    @property
    def lock_file(self) -> Path:
        return self.home / "state.lock"

    @property
    def settings_file(self) -> Path:
        return self.home / "settings.yaml"

    @property
    def credentials_dir(self) -> Path:
        return self.home / "credentials"

    @property
    def log_dir(self) -> Path:
        return self.home / "logs"

    @property
    def client_config_file(self) -> Path:
        return self.home / "client.conf"

    @property
    def tunnel_config_file(self) -> Path:
        # File stem becomes the local interface name
        return self.home / "wg-vpn.conf"

    def ensure(self) -> None:
        """Create the home directory with owner-only permissions."""
        self.home.mkdir(parents=True, exist_ok=True)
        os.chmod(self.home, 0o700)
