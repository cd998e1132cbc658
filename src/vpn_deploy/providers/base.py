"""Pipeline contract shared by all providers."""

import ipaddress
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

from vpn_deploy.config.models import Settings
from vpn_deploy.state.models import DeploymentRecord, ProviderKind, ResourceHandle
from vpn_deploy.utils.errors import StepTimeoutError, ValidationError

T = TypeVar('T')


@dataclass
class StepSpec:
    """One provisioning step of a pipeline."""
    name: str
    message: str
    timeout: Optional[float] = None


@dataclass
class Fatal:
    """A step failure that stops the pipeline."""
    reason: str


@dataclass
class StepResult:
    """Outcome of executing one step.

    Handles are merged into the record and updates are applied as record
    attributes before the record is saved.
    """
    handles: List[ResourceHandle] = field(default_factory=list)
    updates: Dict[str, Any] = field(default_factory=dict)
    fatal: Optional[Fatal] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, *handles: ResourceHandle, message: Optional[str] = None, **updates: Any) -> "StepResult":
        return cls(handles=list(handles), updates=updates, message=message)

    @classmethod
    def skipped(cls, message: str, **updates: Any) -> "StepResult":
        return cls(updates=updates, message=message)

    @classmethod
    def failed(cls, reason: str) -> "StepResult":
        return cls(fatal=Fatal(reason))

    @property
    def is_fatal(self) -> bool:
        return self.fatal is not None


class Deadline:
    """Cooperative time limit for one step."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, what: str) -> None:
        """Raise StepTimeoutError if the deadline has passed."""
        if self.expired:
            raise StepTimeoutError(f"Timed out after {int(self.seconds)}s while {what}")


def wait_until(
    predicate: Callable[[], Optional[T]],
    deadline: Deadline,
    interval: float = 5.0,
    what: str = "waiting",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Poll a predicate until it returns a truthy value or the deadline passes.

    Args:
        predicate: Returns a truthy value when the wait is over
        deadline: Step deadline
        interval: Seconds between polls
        what: Description used in the timeout message
        sleep: Function used to wait between polls

    Returns:
        The predicate's truthy value

    Raises:
        StepTimeoutError: If the deadline passes first
    """
    while True:
        value = predicate()
        if value:
            return value
        deadline.check(what)
        sleep(min(interval, max(deadline.remaining(), 0.0)))


@dataclass
class StepContext:
    """What a step sees while it runs."""
    record: DeploymentRecord
    settings: Settings
    deadline: Deadline
    persist: Callable[[DeploymentRecord], None]
    report: Callable[[str], None] = lambda message: None

    def checkpoint(self, handle: ResourceHandle) -> None:
        """Record a confirmed resource and save immediately."""
        self.record.put_handle(handle)
        self.persist(self.record)

    def save(self) -> None:
        self.persist(self.record)


class Pipeline(Protocol):
    """Provider-specific provisioning and teardown."""

    provider: ProviderKind

    def steps(self) -> List[StepSpec]:
        ...

    def execute(self, step: StepSpec, ctx: StepContext) -> StepResult:
        ...

    def teardown_order(self) -> List[str]:
        ...

    def delete(self, handle: ResourceHandle, record: DeploymentRecord) -> None:
        ...


@dataclass
class DeployRequest:
    """Caller input for deploy()."""
    provider: ProviderKind
    region: Optional[str] = None
    host: Optional[str] = None
    ssh_user: Optional[str] = None
    ssh_port: Optional[int] = None
    ssh_private_key: Optional[str] = None
    instance_type: Optional[str] = None
    size: Optional[str] = None
    auto_destroy_hours: Optional[float] = None

    def validate(self) -> None:
        """Check the request before anything is mutated.

        Raises:
            ValidationError: If a required field is missing or out of range
        """
        if not isinstance(self.provider, ProviderKind):
            try:
                self.provider = ProviderKind(self.provider)
            except ValueError:
                raise ValidationError(f"Unknown provider: {self.provider}")

        if self.provider in (ProviderKind.AWS, ProviderKind.DIGITALOCEAN):
            if not self.region or not self.region.strip():
                raise ValidationError(f"A region is required for {self.provider.value}")
        else:
            if not self.host or not self.host.strip():
                raise ValidationError("A host is required for bring-your-own server")
            try:
                ipaddress.ip_address(self.host.strip())
            except ValueError:
                raise ValidationError(f"Invalid host address: {self.host}; an IPv4 or IPv6 address is required")
            if not self.ssh_private_key or "PRIVATE KEY" not in self.ssh_private_key:
                raise ValidationError("An SSH private key is required for bring-your-own server")

        if self.ssh_port is not None and not 1 <= self.ssh_port <= 65535:
            raise ValidationError(f"Invalid SSH port: {self.ssh_port}")

        if self.auto_destroy_hours is not None and self.auto_destroy_hours <= 0:
            raise ValidationError("auto_destroy_hours must be greater than zero")
