"""Parse WireGuard client configuration text."""

import ipaddress
from dataclasses import dataclass, field
from typing import List, Optional

from vpn_deploy.tunnel.keys import decode_key
from vpn_deploy.utils.errors import ValidationError


@dataclass
class ParsedClientConfig:
    """Fields of a client .conf that the tunnel needs."""
    private_key: str
    address: str
    server_public_key: str
    endpoint_host: str
    endpoint_port: int
    dns: Optional[str] = None
    allowed_ips: List[str] = field(default_factory=list)
    persistent_keepalive: Optional[int] = None

    @property
    def endpoint(self) -> str:
        if ":" in self.endpoint_host:
            return f"[{self.endpoint_host}]:{self.endpoint_port}"
        return f"{self.endpoint_host}:{self.endpoint_port}"


def _parse_endpoint(raw: str):
    if raw.startswith("["):
        host, sep, port = raw[1:].partition("]:")
    else:
        host, sep, port = raw.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValidationError(f"Invalid endpoint address: {raw}")

    try:
        ipaddress.ip_address(host)
    except ValueError:
        raise ValidationError(f"Invalid endpoint address: {raw}")

    port_number = int(port)
    if not 1 <= port_number <= 65535:
        raise ValidationError(f"Invalid endpoint port: {raw}")
    return host, port_number


def parse_client_config(text: str) -> ParsedClientConfig:
    """Parse a client configuration.

    Args:
        text: Configuration text in WireGuard INI format

    Returns:
        ParsedClientConfig

    Raises:
        ValidationError: If a required key is missing or malformed
    """
    values = {}
    allowed_ips: List[str] = []
    section = ""

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("["):
            section = line
            continue

        key, sep, value = line.partition("=")
        if not sep:
            continue
        key, value = key.strip(), value.strip()

        if section == "[Interface]" and key in ("PrivateKey", "Address", "DNS"):
            values[key] = value
        elif section == "[Peer]":
            if key == "AllowedIPs":
                allowed_ips.extend(cidr.strip() for cidr in value.split(",") if cidr.strip())
            elif key in ("PublicKey", "Endpoint", "PersistentKeepalive"):
                values[f"Peer{key}"] = value

    required = [
        ("PrivateKey", "[Interface] PrivateKey"),
        ("Address", "[Interface] Address"),
        ("PeerPublicKey", "[Peer] PublicKey"),
        ("PeerEndpoint", "[Peer] Endpoint"),
    ]
    for key, label in required:
        if not values.get(key):
            raise ValidationError(f"Config missing {label}")

    decode_key(values["PrivateKey"])
    decode_key(values["PeerPublicKey"])
    host, port = _parse_endpoint(values["PeerEndpoint"])

    keepalive = values.get("PeerPersistentKeepalive")
    return ParsedClientConfig(
        private_key=values["PrivateKey"],
        address=values["Address"].split("/")[0],
        server_public_key=values["PeerPublicKey"],
        endpoint_host=host,
        endpoint_port=port,
        dns=values.get("DNS"),
        allowed_ips=allowed_ips,
        persistent_keepalive=int(keepalive) if keepalive and keepalive.isdigit() else None,
    )
