"""Durable store for the single deployment record."""

import fcntl
import json
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from pydantic import ValidationError as PydanticValidationError

from vpn_deploy.state.models import DeploymentRecord
from vpn_deploy.utils.errors import OperationInProgressError, StateCorruption, StateError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class DeploymentStore:
    """Loads and atomically saves the deployment record, and guards operations."""

    def __init__(self, state_path: Path, lock_path: Optional[Path] = None):
        """
        Initialize DeploymentStore.

        Args:
            state_path: Path to state.json
            lock_path: Path to the operation lock file; defaults to state.lock beside it
        """
        self.state_path = Path(state_path)
        self.lock_path = Path(lock_path) if lock_path else self.state_path.with_suffix(".lock")
        self.integrity_warnings: List[StateCorruption] = []
        self._io_lock = threading.RLock()

    def exists(self) -> bool:
        """Check if a state file exists."""
        return self.state_path.exists()

    def load(self) -> DeploymentRecord:
        """
        Load the deployment record.

        A missing file yields a fresh not_deployed record. An unreadable file is
        moved aside, never deleted, and a StateCorruption warning is recorded.

        Returns:
            DeploymentRecord
        """
        with self._io_lock:
            if not self.state_path.exists():
                return DeploymentRecord()

            try:
                with open(self.state_path, "r") as f:
                    data = json.load(f)
                return DeploymentRecord.from_dict(data)
            except (ValueError, TypeError, PydanticValidationError) as e:
                return self._quarantine(e)

    def save(self, record: DeploymentRecord) -> None:
        """
        Save the record atomically.

        Args:
            record: Record to save

        Raises:
            StateError: If the record cannot be written
        """
        with self._io_lock:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            record.touch()

            fd, tmp_name = tempfile.mkstemp(
                dir=self.state_path.parent, prefix=".state-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(record.to_dict(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_name, 0o600)
                # Atomic rename
                os.replace(tmp_name, self.state_path)
            except OSError as e:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise StateError(f"Failed to save state file: {e}", cause=e)

    def reset(self) -> DeploymentRecord:
        """Replace the record with a fresh not_deployed one."""
        record = DeploymentRecord()
        self.save(record)
        return record

    @contextmanager
    def operation_lock(self) -> Iterator[None]:
        """
        Hold the exclusive deploy/destroy lock.

        Raises:
            OperationInProgressError: If another operation holds the lock
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_CREAT | os.O_RDWR, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise OperationInProgressError()

        try:
            yield
        finally:
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)

    def is_locked(self) -> bool:
        """Check whether a deploy/destroy currently holds the lock."""
        try:
            with self.operation_lock():
                return False
        except OperationInProgressError:
            return True

    def _quarantine(self, error: Exception) -> DeploymentRecord:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        quarantined = self.state_path.with_name(f"{self.state_path.name}.corrupt-{timestamp}")
        os.replace(self.state_path, quarantined)

        warning = StateCorruption(
            f"State file was unreadable and has been moved to {quarantined}. "
            "Resources it listed may still exist and must be removed by hand.",
            quarantined_path=str(quarantined),
            cause=error,
        )
        self.integrity_warnings.append(warning)
        logger.warning(warning.message)
        return DeploymentRecord()
