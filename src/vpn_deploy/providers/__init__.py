"""Provider pipelines and the contract they share."""

from .base import (
    Deadline,
    DeployRequest,
    Fatal,
    Pipeline,
    StepContext,
    StepResult,
    StepSpec,
    wait_until,
)

__all__ = [
    "Deadline",
    "DeployRequest",
    "Fatal",
    "Pipeline",
    "StepContext",
    "StepResult",
    "StepSpec",
    "wait_until",
]
