"""Deployment orchestration."""

from .executor import PipelineExecutor, PipelineResult
from .orchestrator import DeploymentOrchestrator
from .progress import OperationChannel, ProgressBus, ProgressOrderError, Subscription
from .scheduler import AutoDestroyScheduler, SchedulerState
from .teardown import TeardownEngine

__all__ = [
    "PipelineExecutor",
    "PipelineResult",
    "DeploymentOrchestrator",
    "OperationChannel",
    "ProgressBus",
    "ProgressOrderError",
    "Subscription",
    "AutoDestroyScheduler",
    "SchedulerState",
    "TeardownEngine",
]
