"""Deploy, operate and tear down a single-tenant WireGuard VPN server."""

__version__ = "0.1.0"
