"""Reverse-order deletion of recorded resources."""

from typing import Callable, List, Optional

from vpn_deploy.orchestrator.progress import OperationChannel
from vpn_deploy.providers.base import Pipeline
from vpn_deploy.state.models import DeploymentRecord, ResourceHandle
from vpn_deploy.state.store import DeploymentStore
from vpn_deploy.utils.errors import ErrorContext, PartialFailure, error_handler, is_not_found
from vpn_deploy.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class TeardownEngine:
    """Deletes every handle in a record, saving after each deletion."""

    def __init__(self, store: DeploymentStore, cleanup: Optional[Callable[[], None]] = None):
        """Initialize teardown engine.

        Args:
            store: Store the record is saved to after every deletion
            cleanup: Local cleanup run as the final step
        """
        self.store = store
        self.cleanup = cleanup

    def plan(self, record: DeploymentRecord, pipeline: Pipeline) -> List[ResourceHandle]:
        """Order handles for deletion.

        Kinds the pipeline knows come first in its teardown order; anything
        else follows in reverse creation order.
        """
        order = pipeline.teardown_order()
        ordered = []
        for kind in order:
            ordered.extend(h for h in record.resources if h.kind == kind)
        unknown = [h for h in record.resources if h.kind not in order]
        ordered.extend(reversed(unknown))
        return ordered

    def total_steps(self, record: DeploymentRecord) -> int:
        """One step per handle plus the final local cleanup."""
        return len(record.resources) + 1

    def run(
        self,
        record: DeploymentRecord,
        pipeline: Pipeline,
        channel: OperationChannel,
    ) -> DeploymentRecord:
        """Delete every handle, then reset the record.

        Args:
            record: Record being destroyed; handles are removed as they go
            pipeline: Pipeline that knows how to delete each kind
            channel: Progress channel opened with total_steps(record)

        Returns:
            The fresh not_deployed record

        Raises:
            PartialFailure: If a deletion fails; the record keeps the remaining handles
        """
        handles = self.plan(record, pipeline)
        provider = pipeline.provider.value

        for number, handle in enumerate(handles, 1):
            channel.running(number, f"Deleting {handle.kind} {handle.id}...")
            with LogContext(logger, operation="destroy", provider=provider,
                            resource_kind=handle.kind, resource_id=handle.id):
                try:
                    pipeline.delete(handle, record)
                    message = f"Deleted {handle.kind} {handle.id}"
                except Exception as e:
                    if not is_not_found(e):
                        self._fail(record, channel, number, handle, provider, e)
                    message = f"{handle.kind} {handle.id} was already gone"
                logger.info(message)

            record.remove_handle(handle.kind)
            self.store.save(record)
            channel.done(number, message)

        final = len(handles) + 1
        channel.running(final, "Cleaning up local state...")
        if self.cleanup is not None:
            self.cleanup()
        fresh = self.store.reset()
        channel.done(final, "Teardown complete")
        return fresh

    def _fail(
        self,
        record: DeploymentRecord,
        channel: OperationChannel,
        number: int,
        handle: ResourceHandle,
        provider: str,
        error: Exception,
    ) -> None:
        wrapped = error_handler.handle_exception(
            error,
            ErrorContext(
                provider=provider,
                operation="destroy",
                resource_kind=handle.kind,
                resource_id=handle.id,
            ),
        )
        error_handler.log_error(wrapped)
        remaining = record.handle_kinds()
        message = f"Failed to delete {handle.kind} {handle.id}: {wrapped.message}"
        channel.error(number, message)
        raise PartialFailure(message, remaining=remaining, cause=error) from error
