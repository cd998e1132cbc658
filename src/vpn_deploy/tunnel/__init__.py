"""WireGuard key material, config rendering, and the local tunnel."""

from .keys import (
    SshKeyPair,
    WireGuardKeyPair,
    generate_keypair,
    generate_ssh_keypair,
    public_key_from_private,
)
from .render import ClientConfig, ServerConfig, render_client_config, render_server_config
from .parser import ParsedClientConfig, parse_client_config

__all__ = [
    "SshKeyPair",
    "WireGuardKeyPair",
    "generate_keypair",
    "generate_ssh_keypair",
    "public_key_from_private",
    "ClientConfig",
    "ServerConfig",
    "render_client_config",
    "render_server_config",
    "ParsedClientConfig",
    "parse_client_config",
]
