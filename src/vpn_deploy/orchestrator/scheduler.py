"""Auto-destroy timer driven by the persisted deadline."""

import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from vpn_deploy.state.models import DeploymentStatus, utcnow
from vpn_deploy.state.store import DeploymentStore
from vpn_deploy.utils.errors import DeploymentError, OperationInProgressError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class SchedulerState(str, Enum):
    DISABLED = "disabled"
    ARMED = "armed"


class AutoDestroyScheduler:
    """Fires destroy() once when a deployment's auto_destroy_at passes.

    State is read from the store on every evaluation, so a restarted process
    picks up the deadline that was persisted at deploy time.
    """

    def __init__(
        self,
        store: DeploymentStore,
        destroy: Callable[[], Any],
        poll_interval: float = 30.0,
    ):
        """Initialize the scheduler.

        Args:
            store: Store holding the deployment record
            destroy: Called when the deadline has passed
            poll_interval: Seconds between evaluations in the background thread
        """
        self.store = store
        self.destroy = destroy
        self.poll_interval = poll_interval
        self._fired_for: Optional[datetime] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SchedulerState:
        record = self.store.load()
        if record.status == DeploymentStatus.DEPLOYED and record.auto_destroy_at is not None:
            return SchedulerState.ARMED
        return SchedulerState.DISABLED

    def evaluate(self, now: Optional[datetime] = None) -> bool:
        """Check the deadline and destroy if it has passed.

        Args:
            now: Current time; defaults to the UTC clock

        Returns:
            True if destroy() was invoked
        """
        now = now or utcnow()
        record = self.store.load()
        deadline = record.auto_destroy_at

        if record.status != DeploymentStatus.DEPLOYED or deadline is None:
            return False
        if now < deadline or self._fired_for == deadline:
            return False

        logger.info(f"Auto-destroy deadline {deadline.isoformat()} reached; destroying deployment")
        try:
            self.destroy()
        except OperationInProgressError:
            logger.info("Another operation is in progress; auto-destroy will re-check on the next poll")
            return False
        except DeploymentError as e:
            logger.error(f"Auto-destroy failed: {e.message}")
        self._fired_for = deadline
        return True

    def start(self) -> None:
        """Evaluate in a daemon thread every poll_interval seconds."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="auto-destroy", daemon=True)
        self._thread.start()
        logger.debug(f"Auto-destroy scheduler started ({self.state.value})")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.evaluate()
            except DeploymentError as e:
                logger.error(f"Auto-destroy evaluation failed: {e.message}")
            self._stop.wait(self.poll_interval)
