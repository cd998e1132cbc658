"""WireGuard and SSH key generation."""

import base64
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from vpn_deploy.utils.errors import ValidationError

KEY_LENGTH = 32


@dataclass(frozen=True)
class WireGuardKeyPair:
    """Base64 encoded Curve25519 keypair."""
    private_key: str
    public_key: str


@dataclass(frozen=True)
class SshKeyPair:
    """OpenSSH encoded Ed25519 keypair."""
    private_key: str
    public_key: str


def generate_keypair() -> WireGuardKeyPair:
    """Generate a WireGuard keypair.

    Returns:
        WireGuardKeyPair with both halves base64 encoded
    """
    private = X25519PrivateKey.generate()
    private_raw = private.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_raw = private.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return WireGuardKeyPair(
        private_key=base64.b64encode(private_raw).decode("ascii"),
        public_key=base64.b64encode(public_raw).decode("ascii"),
    )


def decode_key(encoded: str) -> bytes:
    """Decode a base64 WireGuard key.

    Raises:
        ValidationError: If the value is not 32 bytes of base64
    """
    try:
        raw = base64.b64decode(encoded.strip(), validate=True)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid WireGuard key encoding: {e}", cause=e)
    if len(raw) != KEY_LENGTH:
        raise ValidationError(f"WireGuard key must be exactly {KEY_LENGTH} bytes")
    return raw


def public_key_from_private(private_key: str) -> str:
    """Derive the base64 public key from a base64 private key."""
    private = X25519PrivateKey.from_private_bytes(decode_key(private_key))
    public_raw = private.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return base64.b64encode(public_raw).decode("ascii")


def generate_ssh_keypair(comment: str = "vpn-deploy") -> SshKeyPair:
    """Generate an Ed25519 SSH keypair in OpenSSH format.

    Args:
        comment: Comment appended to the public key line

    Returns:
        SshKeyPair with the private key PEM and the authorized_keys line
    """
    private = Ed25519PrivateKey.generate()
    private_text = private.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_text = private.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode("ascii")
    return SshKeyPair(private_key=private_text, public_key=f"{public_text} {comment}")
