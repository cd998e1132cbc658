"""Runs a provider pipeline step by step, persisting after every step."""

import time
from dataclasses import dataclass
from typing import Optional

from vpn_deploy.config.models import Settings
from vpn_deploy.orchestrator.progress import OperationChannel
from vpn_deploy.providers.base import Deadline, Pipeline, StepContext, StepResult, StepSpec
from vpn_deploy.state.models import DeploymentRecord
from vpn_deploy.state.store import DeploymentStore
from vpn_deploy.utils.errors import ErrorContext, error_handler
from vpn_deploy.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


@dataclass
class PipelineResult:
    """Outcome of running a whole pipeline."""

    success: bool
    steps_completed: int = 0
    failed_step: Optional[str] = None
    error_message: Optional[str] = None
    duration: float = 0.0  # seconds


class PipelineExecutor:
    """Executes pipeline steps in order against one record."""

    def __init__(self, store: DeploymentStore, settings: Settings):
        """Initialize pipeline executor.

        Args:
            store: Store the record is saved to after every step
            settings: Settings read by steps as defaults
        """
        self.store = store
        self.settings = settings

    def run(
        self,
        record: DeploymentRecord,
        pipeline: Pipeline,
        channel: OperationChannel,
    ) -> PipelineResult:
        """Run every step; stop at the first failure.

        Step errors never propagate: they become the operation's single error
        event and a failed PipelineResult.

        Args:
            record: Record being deployed; mutated in place
            pipeline: Provider pipeline
            channel: Progress channel opened with the pipeline's step count

        Returns:
            PipelineResult
        """
        start_time = time.monotonic()
        steps = pipeline.steps()

        for number, step in enumerate(steps, 1):
            channel.running(number, step.message)
            result = self._execute_step(number, step, record, pipeline, channel)

            if result.is_fatal:
                # Handles checkpointed inside the step are already on disk
                self.store.save(record)
                message = f"Step {number}/{len(steps)} ({step.name}) failed: {result.fatal.reason}"
                logger.error(message)
                channel.error(number, message)
                return PipelineResult(
                    success=False,
                    steps_completed=number - 1,
                    failed_step=step.name,
                    error_message=message,
                    duration=time.monotonic() - start_time,
                )

            for handle in result.handles:
                record.put_handle(handle)
            for field_name, value in result.updates.items():
                setattr(record, field_name, value)
            self.store.save(record)
            channel.done(number, result.message or step.message)

        return PipelineResult(
            success=True,
            steps_completed=len(steps),
            duration=time.monotonic() - start_time,
        )

    def _execute_step(
        self,
        number: int,
        step: StepSpec,
        record: DeploymentRecord,
        pipeline: Pipeline,
        channel: OperationChannel,
    ) -> StepResult:
        timeout = step.timeout or self.settings.step_timeout_seconds
        ctx = StepContext(
            record=record,
            settings=self.settings,
            deadline=Deadline(timeout),
            persist=self.store.save,
            report=lambda message: channel.running(number, message),
        )

        provider = pipeline.provider.value
        step_start = time.monotonic()
        with LogContext(logger, operation="deploy", provider=provider, step=step.name):
            logger.info(f"Step {number}: {step.message}")
            try:
                result = pipeline.execute(step, ctx)
            except Exception as e:
                error = error_handler.handle_exception(
                    e, ErrorContext(provider=provider, operation="deploy", step=step.name)
                )
                error_handler.log_error(error)
                return StepResult.failed(error.message)

            logger.info(f"Step {number} finished in {time.monotonic() - step_start:.1f}s")
        return result
