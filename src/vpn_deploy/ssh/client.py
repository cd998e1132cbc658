"""Remote command execution over SSH."""

import io
import time
from typing import Callable, Optional, Protocol

import paramiko
from fabric import Connection
from invoke.exceptions import CommandTimedOut, UnexpectedExit

from vpn_deploy.state.models import SshAccess
from vpn_deploy.utils.errors import SSHError, StepTimeoutError, ValidationError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)

CONNECT_RETRY_INTERVAL = 5.0
COMMAND_TIMEOUT = 900


class RemoteSession(Protocol):
    """An open session on the server."""

    def run(self, command: str, timeout: Optional[float] = None) -> str:
        ...

    def upload(self, remote_path: str, content: str, mode: str = "600", timeout: Optional[float] = None) -> None:
        ...

    def close(self) -> None:
        ...


# Opens a RemoteSession for an SshAccess before a deadline (seconds remaining)
SessionFactory = Callable[[SshAccess, float], RemoteSession]


def load_private_key(private_key: str) -> paramiko.PKey:
    """Parse an OpenSSH private key of any supported type.

    Raises:
        ValidationError: If the key cannot be parsed
    """
    for key_class in (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey):
        try:
            return key_class.from_private_key(io.StringIO(private_key))
        except (paramiko.SSHException, ValueError):
            continue
    raise ValidationError(
        "Unsupported or invalid SSH private key",
        suggestions=["Provide an unencrypted OpenSSH Ed25519, ECDSA or RSA key"],
    )


class FabricSession:
    """RemoteSession backed by a fabric Connection."""

    def __init__(self, connection: Connection):
        self.connection = connection

    def run(self, command: str, timeout: Optional[float] = None) -> str:
        """Run a command and return its combined output.

        Args:
            command: Shell command
            timeout: Seconds the command may take; COMMAND_TIMEOUT when None

        Raises:
            SSHError: If the command exits non-zero or the transport fails
            StepTimeoutError: If the command runs past its timeout
        """
        if timeout is None:
            timeout = COMMAND_TIMEOUT
        logger.debug(f"remote$ {command}")
        try:
            result = self.connection.run(command, hide=True, warn=False, timeout=timeout)
        except CommandTimedOut as e:
            raise StepTimeoutError(f"Command '{command}' did not finish within {int(timeout)}s", cause=e)
        except UnexpectedExit as e:
            output = (e.result.stdout + e.result.stderr).strip()
            raise SSHError(
                f"Command '{command}' exited with status {e.result.exited}: {output[-500:]}",
                cause=e,
            )
        except (paramiko.SSHException, OSError) as e:
            raise SSHError(f"SSH transport failed running '{command}': {e}", cause=e)
        return result.stdout + result.stderr

    def upload(self, remote_path: str, content: str, mode: str = "600", timeout: Optional[float] = None) -> None:
        """Upload text to a root-owned path via a temporary file and sudo mv."""
        staging = f"/tmp/.vpn-deploy-{int(time.time() * 1000)}"
        try:
            self.connection.put(io.BytesIO(content.encode("utf-8")), remote=staging)
        except (paramiko.SSHException, OSError) as e:
            raise SSHError(f"Upload to {remote_path} failed: {e}", cause=e)
        self.run(f"chmod 600 {staging}", timeout)
        self.run(f"sudo mv {staging} {remote_path}", timeout)
        self.run(f"sudo chown root:root {remote_path}", timeout)
        self.run(f"sudo chmod {mode} {remote_path}", timeout)

    def close(self) -> None:
        self.connection.close()


def open_session(
    access: SshAccess,
    timeout: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> RemoteSession:
    """Connect to the server, retrying while it boots.

    Args:
        access: Host, port, user and private key
        timeout: Seconds to keep retrying
        sleep: Function used to wait between attempts
        clock: Monotonic clock

    Returns:
        Connected FabricSession

    Raises:
        ValidationError: If access details are incomplete
        SSHError: If authentication is rejected
        StepTimeoutError: If the host stays unreachable until the timeout
    """
    if not access.host or not access.private_key:
        raise ValidationError("SSH host and private key are required")

    pkey = load_private_key(access.private_key)
    deadline = clock() + timeout
    last_error: Optional[Exception] = None

    while True:
        connection = Connection(
            access.host,
            user=access.user,
            port=access.port,
            connect_timeout=10,
            connect_kwargs={
                "pkey": pkey,
                "look_for_keys": False,
                "allow_agent": False,
                "banner_timeout": 30,
                "auth_timeout": 30,
            },
        )
        try:
            connection.open()
            logger.info(f"SSH connected to {access.host}:{access.port}")
            return FabricSession(connection)
        except paramiko.AuthenticationException as e:
            connection.close()
            raise SSHError(f"SSH authentication rejected for {access.user}@{access.host}", cause=e)
        except (paramiko.SSHException, OSError) as e:
            connection.close()
            last_error = e

        if clock() >= deadline:
            raise StepTimeoutError(
                f"SSH connection timeout after {int(timeout)}s: {last_error}",
                cause=last_error,
            )
        logger.debug(f"SSH connect attempt failed, retrying: {last_error}")
        sleep(min(CONNECT_RETRY_INTERVAL, max(deadline - clock(), 0.0)))
