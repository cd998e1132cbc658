"""SSH sessions and remote WireGuard setup."""

from .client import FabricSession, RemoteSession, SessionFactory, open_session
from .configure import configure_wireguard, remove_wireguard

__all__ = [
    "FabricSession",
    "RemoteSession",
    "SessionFactory",
    "open_session",
    "configure_wireguard",
    "remove_wireguard",
]
