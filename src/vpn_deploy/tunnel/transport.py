"""Local tunnel transports."""

import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol

from vpn_deploy.utils.errors import TunnelError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class TunnelTransport(Protocol):
    """Brings the local tunnel interface up and down."""

    def up(self, config_text: str) -> None:
        ...

    def down(self) -> None:
        ...

    def status(self) -> bool:
        ...


class WgQuickTransport:
    """Tunnel transport backed by the wg-quick tool."""

    def __init__(self, config_path: Path, use_sudo: Optional[bool] = None, timeout: int = 30):
        """Initialize the transport.

        Args:
            config_path: Where the interface config is written; its stem names the interface
            use_sudo: Prefix commands with sudo; defaults to True unless running as root
            timeout: Seconds to wait for each wg-quick command
        """
        self.config_path = Path(config_path)
        if use_sudo is None:
            use_sudo = hasattr(os, "geteuid") and os.geteuid() != 0
        self.use_sudo = use_sudo
        self.timeout = timeout

    @property
    def interface(self) -> str:
        return self.config_path.stem

    def _command(self, *args: str) -> List[str]:
        command = list(args)
        if self.use_sudo:
            command.insert(0, "sudo")
        return command

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        if shutil.which(args[0]) is None:
            raise TunnelError(
                f"{args[0]} not found",
                suggestions=["Install wireguard-tools"],
            )
        command = self._command(*args)
        logger.debug(f"Running: {' '.join(command)}")
        try:
            return subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise TunnelError(f"{args[0]} timed out after {self.timeout}s", cause=e)

    def up(self, config_text: str) -> None:
        """Write the config with owner-only permissions and bring the interface up."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(config_text)

        result = self._run("wg-quick", "up", str(self.config_path))
        if result.returncode != 0:
            raise TunnelError(f"wg-quick up failed: {result.stderr.strip()}")
        logger.info(f"Tunnel interface {self.interface} is up")

    def down(self) -> None:
        """Bring the interface down."""
        result = self._run("wg-quick", "down", str(self.config_path))
        if result.returncode != 0:
            raise TunnelError(f"wg-quick down failed: {result.stderr.strip()}")
        logger.info(f"Tunnel interface {self.interface} is down")

    def status(self) -> bool:
        """Whether the interface currently exists."""
        if shutil.which("wg") is None:
            return False
        try:
            result = subprocess.run(
                self._command("wg", "show", self.interface),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning("wg show timed out; reporting tunnel as down")
            return False
        return result.returncode == 0
