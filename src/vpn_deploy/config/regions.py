"""Regions offered for each cloud provider."""

from typing import Dict, List, Tuple

from vpn_deploy.state.models import ProviderKind
from vpn_deploy.utils.errors import ValidationError

AWS_REGIONS: Dict[str, str] = {
    "us-east-1": "US East (N. Virginia)",
    "us-east-2": "US East (Ohio)",
    "us-west-1": "US West (N. California)",
    "us-west-2": "US West (Oregon)",
    "eu-west-1": "Europe (Ireland)",
    "eu-west-2": "Europe (London)",
    "eu-central-1": "Europe (Frankfurt)",
    "eu-north-1": "Europe (Stockholm)",
    "ap-southeast-1": "Asia Pacific (Singapore)",
    "ap-southeast-2": "Asia Pacific (Sydney)",
    "ap-northeast-1": "Asia Pacific (Tokyo)",
    "ap-south-1": "Asia Pacific (Mumbai)",
    "sa-east-1": "South America (São Paulo)",
    "ca-central-1": "Canada (Central)",
    "me-south-1": "Middle East (Bahrain)",
    "af-south-1": "Africa (Cape Town)",
}

DIGITALOCEAN_REGIONS: Dict[str, str] = {
    "nyc1": "New York 1",
    "nyc3": "New York 3",
    "sfo3": "San Francisco 3",
    "ams3": "Amsterdam 3",
    "lon1": "London 1",
    "fra1": "Frankfurt 1",
    "sgp1": "Singapore 1",
    "blr1": "Bangalore 1",
    "tor1": "Toronto 1",
    "syd1": "Sydney 1",
}

_REGIONS = {
    ProviderKind.AWS: AWS_REGIONS,
    ProviderKind.DIGITALOCEAN: DIGITALOCEAN_REGIONS,
}


def list_regions(provider: ProviderKind = ProviderKind.AWS) -> List[Tuple[str, str]]:
    """Return (code, display name) pairs for a cloud provider.

    Raises:
        ValidationError: For providers without regions (BYO)
    """
    regions = _REGIONS.get(ProviderKind(provider))
    if regions is None:
        raise ValidationError(f"{ProviderKind(provider).value} has no regions")
    return list(regions.items())
