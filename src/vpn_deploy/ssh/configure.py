"""WireGuard server setup over an SSH session."""

from typing import Callable, Optional

from vpn_deploy.providers.base import Deadline
from vpn_deploy.ssh.client import COMMAND_TIMEOUT, RemoteSession
from vpn_deploy.tunnel.keys import decode_key
from vpn_deploy.tunnel.render import DEFAULT_EGRESS_INTERFACE, ServerConfig, render_server_config
from vpn_deploy.utils.errors import SSHError, ValidationError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)

WIREGUARD_DIR = "/etc/wireguard"
SERVER_CONFIG_PATH = f"{WIREGUARD_DIR}/wg0.conf"
SERVER_PRIVATE_KEY_PATH = f"{WIREGUARD_DIR}/server_private.key"
SERVER_PUBLIC_KEY_PATH = f"{WIREGUARD_DIR}/server_public.key"
SYSCTL_PATH = "/etc/sysctl.d/99-vpn.conf"
SERVICE_NAME = "wg-quick@wg0"

# Substituted on the host so the server private key never leaves it
PRIVATE_KEY_PLACEHOLDER = "__SERVER_PRIVATE_KEY__"

Reporter = Callable[[str], None]
Runner = Callable[[str], str]


def _noop(message: str) -> None:
    pass


def command_runner(session: RemoteSession, deadline: Optional[Deadline] = None) -> Runner:
    """Wrap session.run so every command fits in what is left of the deadline.

    The deadline is checked before each command and the command timeout is
    capped at the time remaining.
    """
    def run(command: str) -> str:
        if deadline is None:
            return session.run(command)
        deadline.check("configuring WireGuard")
        return session.run(command, timeout=max(min(COMMAND_TIMEOUT, deadline.remaining()), 1.0))

    return run


def detect_egress_interface(session: RemoteSession, deadline: Optional[Deadline] = None) -> str:
    """Name of the interface carrying the default route."""
    run = command_runner(session, deadline)
    output = run("ip -o -4 route show to default | awk '{print $5}' | head -n1").strip()
    return output or DEFAULT_EGRESS_INTERFACE


def configure_wireguard(
    session: RemoteSession,
    client_public_key: str,
    listen_port: int,
    report: Optional[Reporter] = None,
    deadline: Optional[Deadline] = None,
) -> str:
    """Install and start WireGuard on the server.

    The server keypair is generated on the host and reused if it already
    exists there, so re-running this after a partial failure is safe.

    Args:
        session: Open session on the server
        client_public_key: Public key of the single client peer
        listen_port: UDP port WireGuard listens on
        report: Optional callback for human-readable sub-step messages
        deadline: Step deadline bounding every remote command

    Returns:
        The server public key

    Raises:
        SSHError: If any command fails or verification does not pass
        StepTimeoutError: If the deadline passes before configuration finishes
    """
    report = report or _noop
    run = command_runner(session, deadline)

    report("Waiting for cloud-init to complete")
    run("command -v cloud-init >/dev/null 2>&1 && sudo cloud-init status --wait || true")

    report("Installing WireGuard packages")
    run("sudo DEBIAN_FRONTEND=noninteractive apt-get update -y")
    run(
        "sudo DEBIAN_FRONTEND=noninteractive apt-get install -y wireguard wireguard-tools"
    )

    report("Enabling IP forwarding")
    run(f"echo 'net.ipv4.ip_forward=1' | sudo tee {SYSCTL_PATH} > /dev/null")
    run(f"sudo sysctl -p {SYSCTL_PATH}")

    report("Generating server keys on the host")
    run(
        f"sudo sh -c 'umask 077; test -s {SERVER_PRIVATE_KEY_PATH} || "
        f"wg genkey | tee {SERVER_PRIVATE_KEY_PATH} | wg pubkey > {SERVER_PUBLIC_KEY_PATH}'"
    )
    server_public_key = run(f"sudo cat {SERVER_PUBLIC_KEY_PATH}").strip()
    try:
        decode_key(server_public_key)
    except ValidationError as e:
        raise SSHError(f"Server returned an invalid public key: {server_public_key!r}", cause=e)

    report("Deploying wg0.conf")
    egress = detect_egress_interface(session, deadline)
    config_text = render_server_config(
        ServerConfig(
            private_key=PRIVATE_KEY_PLACEHOLDER,
            client_public_key=client_public_key,
            listen_port=listen_port,
            egress_interface=egress,
        )
    )
    upload_timeout = None
    if deadline is not None:
        deadline.check("uploading wg0.conf")
        upload_timeout = max(min(COMMAND_TIMEOUT, deadline.remaining()), 1.0)
    session.upload(SERVER_CONFIG_PATH, config_text, mode="600", timeout=upload_timeout)
    run(
        f"sudo sh -c 'sed -i \"s|{PRIVATE_KEY_PLACEHOLDER}|$(cat {SERVER_PRIVATE_KEY_PATH})|\" "
        f"{SERVER_CONFIG_PATH}'"
    )
    run(f"sudo chmod 600 {SERVER_CONFIG_PATH}")

    report("Starting WireGuard service")
    run(f"sudo systemctl enable {SERVICE_NAME}")
    run(f"sudo systemctl restart {SERVICE_NAME}")

    report("Verifying WireGuard")
    output = run("sudo wg show wg0")
    if "interface: wg0" not in output:
        raise SSHError(f"WireGuard verification failed. wg show output: {output}")

    logger.info("WireGuard is running")
    return server_public_key


def remove_wireguard(session: RemoteSession) -> None:
    """Stop the service and remove the files configure_wireguard created."""
    session.run(f"sudo systemctl stop {SERVICE_NAME} || true")
    session.run(f"sudo systemctl disable {SERVICE_NAME} || true")
    session.run(
        f"sudo rm -f {SERVER_CONFIG_PATH} {SERVER_PRIVATE_KEY_PATH} "
        f"{SERVER_PUBLIC_KEY_PATH} {SYSCTL_PATH}"
    )
    logger.info("WireGuard service removed from host")
