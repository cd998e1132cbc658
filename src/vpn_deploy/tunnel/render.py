"""Render WireGuard configuration files."""

from dataclasses import dataclass

SERVER_ADDRESS = "10.8.0.1/24"
CLIENT_ADDRESS = "10.8.0.2/32"
CLIENT_ALLOWED_ON_SERVER = "10.8.0.2/32"
CLIENT_ALLOWED_IPS = "0.0.0.0/0"
PERSISTENT_KEEPALIVE = 25
DEFAULT_EGRESS_INTERFACE = "eth0"


@dataclass(frozen=True)
class ServerConfig:
    """Inputs for wg0.conf on the server."""
    private_key: str
    client_public_key: str
    listen_port: int
    egress_interface: str = DEFAULT_EGRESS_INTERFACE


@dataclass(frozen=True)
class ClientConfig:
    """Inputs for the client configuration."""
    private_key: str
    server_public_key: str
    endpoint: str
    listen_port: int
    dns: str = "1.1.1.1"


def render_server_config(config: ServerConfig) -> str:
    """Render the server wg0.conf with NAT rules.

    Args:
        config: Server inputs

    Returns:
        Configuration text
    """
    iface = config.egress_interface
    lines = [
        "[Interface]",
        f"Address = {SERVER_ADDRESS}",
        f"ListenPort = {config.listen_port}",
        f"PrivateKey = {config.private_key}",
        "",
        "# NAT masquerading rules",
        f"PostUp = iptables -t nat -A POSTROUTING -o {iface} -j MASQUERADE",
        "PostUp = iptables -A FORWARD -i wg0 -j ACCEPT",
        "PostUp = iptables -A FORWARD -o wg0 -j ACCEPT",
        f"PostDown = iptables -t nat -D POSTROUTING -o {iface} -j MASQUERADE",
        "PostDown = iptables -D FORWARD -i wg0 -j ACCEPT",
        "PostDown = iptables -D FORWARD -o wg0 -j ACCEPT",
        "",
        "[Peer]",
        f"PublicKey = {config.client_public_key}",
        f"AllowedIPs = {CLIENT_ALLOWED_ON_SERVER}",
    ]
    return "\n".join(lines) + "\n"


def format_endpoint(host: str, port: int) -> str:
    """Join host and port, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def render_client_config(config: ClientConfig) -> str:
    """Render the client configuration."""
    lines = [
        "[Interface]",
        f"PrivateKey = {config.private_key}",
        f"Address = {CLIENT_ADDRESS}",
        f"DNS = {config.dns}",
        "",
        "[Peer]",
        f"PublicKey = {config.server_public_key}",
        f"Endpoint = {format_endpoint(config.endpoint, config.listen_port)}",
        f"AllowedIPs = {CLIENT_ALLOWED_IPS}",
        f"PersistentKeepalive = {PERSISTENT_KEEPALIVE}",
    ]
    return "\n".join(lines) + "\n"
