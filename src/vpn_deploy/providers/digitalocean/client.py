"""Minimal DigitalOcean API v2 client."""

from typing import Any, Dict, List, Optional, Protocol

import requests

from vpn_deploy.utils.errors import ErrorContext, error_handler
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)

BASE_URL = "https://api.digitalocean.com/v2"
DROPLET_IMAGE = "ubuntu-22-04-x64"
ALL_ADDRESSES = ["0.0.0.0/0", "::/0"]


def ssh_inbound_rule() -> Dict[str, Any]:
    return {"protocol": "tcp", "ports": "22", "sources": {"addresses": ALL_ADDRESSES}}


def tunnel_inbound_rule(port: int) -> Dict[str, Any]:
    return {"protocol": "udp", "ports": str(port), "sources": {"addresses": ALL_ADDRESSES}}


def outbound_rules() -> List[Dict[str, Any]]:
    return [
        {"protocol": "tcp", "ports": "all", "destinations": {"addresses": ALL_ADDRESSES}},
        {"protocol": "udp", "ports": "all", "destinations": {"addresses": ALL_ADDRESSES}},
        {"protocol": "icmp", "ports": "0", "destinations": {"addresses": ALL_ADDRESSES}},
    ]


class DigitalOceanApi(Protocol):
    """Calls the DigitalOcean pipeline makes."""

    def get_account(self) -> Dict[str, Any]: ...
    def create_ssh_key(self, name: str, public_key: str) -> int: ...
    def get_ssh_key(self, key_id: str) -> Dict[str, Any]: ...
    def delete_ssh_key(self, key_id: str) -> None: ...
    def create_droplet(self, name: str, region: str, size: str, ssh_key_id: str) -> int: ...
    def get_droplet(self, droplet_id: str) -> Dict[str, Any]: ...
    def delete_droplet(self, droplet_id: str) -> None: ...
    def create_firewall(self, name: str, droplet_id: str, tunnel_port: int) -> str: ...
    def get_firewall(self, firewall_id: str) -> Dict[str, Any]: ...
    def add_inbound_rules(self, firewall_id: str, rules: List[Dict[str, Any]]) -> None: ...
    def remove_inbound_rules(self, firewall_id: str, rules: List[Dict[str, Any]]) -> None: ...
    def delete_firewall(self, firewall_id: str) -> None: ...


class DigitalOceanClient:
    """requests-based client with bearer auth and bounded timeouts."""

    def __init__(
        self,
        token: str,
        session: Optional[requests.Session] = None,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
    ):
        """Initialize the client.

        Args:
            token: Personal access token
            session: Optional preconfigured session
            base_url: API base URL
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.debug(f"DigitalOcean {method} {path}")
        try:
            response = self.session.request(method, url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise error_handler.handle_exception(
                e, ErrorContext(provider="digitalocean", operation=f"{method} {path}")
            ) from e

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def get(self, path: str) -> Dict[str, Any]:
        return self._request("GET", path)

    def post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", path, body)

    def delete(self, path: str, body: Optional[Dict[str, Any]] = None) -> None:
        self._request("DELETE", path, body)

    # Account

    def get_account(self) -> Dict[str, Any]:
        """Return account details; validates the token."""
        return self.get("/account")["account"]

    # SSH keys

    def create_ssh_key(self, name: str, public_key: str) -> int:
        response = self.post("/account/keys", {"name": name, "public_key": public_key})
        key_id = response["ssh_key"]["id"]
        logger.info(f"Uploaded SSH key: {key_id}")
        return key_id

    def get_ssh_key(self, key_id: str) -> Dict[str, Any]:
        return self.get(f"/account/keys/{key_id}")["ssh_key"]

    def delete_ssh_key(self, key_id: str) -> None:
        self.delete(f"/account/keys/{key_id}")
        logger.info(f"Deleted SSH key: {key_id}")

    # Droplets

    def create_droplet(self, name: str, region: str, size: str, ssh_key_id: str) -> int:
        response = self.post("/droplets", {
            "name": name,
            "region": region,
            "size": size,
            "image": DROPLET_IMAGE,
            "ssh_keys": [int(ssh_key_id)],
            "tags": ["vpn-deploy"],
        })
        droplet_id = response["droplet"]["id"]
        logger.info(f"Created droplet: {droplet_id}")
        return droplet_id

    def get_droplet(self, droplet_id: str) -> Dict[str, Any]:
        return self.get(f"/droplets/{droplet_id}")["droplet"]

    def delete_droplet(self, droplet_id: str) -> None:
        self.delete(f"/droplets/{droplet_id}")
        logger.info(f"Deleted droplet: {droplet_id}")

    # Firewalls

    def create_firewall(self, name: str, droplet_id: str, tunnel_port: int) -> str:
        response = self.post("/firewalls", {
            "name": name,
            "inbound_rules": [ssh_inbound_rule(), tunnel_inbound_rule(tunnel_port)],
            "outbound_rules": outbound_rules(),
            "droplet_ids": [int(droplet_id)],
        })
        firewall_id = response["firewall"]["id"]
        logger.info(f"Created firewall: {firewall_id}")
        return firewall_id

    def get_firewall(self, firewall_id: str) -> Dict[str, Any]:
        return self.get(f"/firewalls/{firewall_id}")["firewall"]

    def add_inbound_rules(self, firewall_id: str, rules: List[Dict[str, Any]]) -> None:
        self.post(f"/firewalls/{firewall_id}/rules", {"inbound_rules": rules})

    def remove_inbound_rules(self, firewall_id: str, rules: List[Dict[str, Any]]) -> None:
        self.delete(f"/firewalls/{firewall_id}/rules", {"inbound_rules": rules})

    def delete_firewall(self, firewall_id: str) -> None:
        self.delete(f"/firewalls/{firewall_id}")
        logger.info(f"Deleted firewall: {firewall_id}")


def public_ipv4(droplet: Dict[str, Any]) -> Optional[str]:
    """Public IPv4 address of a droplet, if assigned."""
    for network in droplet.get("networks", {}).get("v4", []):
        if network.get("type") == "public":
            return network.get("ip_address")
    return None
