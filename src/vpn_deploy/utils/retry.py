"""Retry AWS deletes that fail while dependent resources are still going away."""

import time
from typing import Callable, Iterable, Optional, TypeVar

from botocore.exceptions import ClientError

from vpn_deploy.utils.errors import aws_error_code
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

# Codes AWS returns while a terminated instance or released address still holds on
DEPENDENCY_ERROR_CODES = {
    'DependencyViolation',
    'InvalidGroup.InUse',
}

THROTTLING_ERROR_CODES = {
    'RequestLimitExceeded',
    'Throttling',
    'ThrottlingException',
}


class DependencyRetry:
    """Re-issue a call on a fixed interval while AWS reports a dependency.

    Teardown deletes the instance before its security group, subnet and VPC,
    but AWS takes a while to release the network interfaces. Those deletes
    fail with DependencyViolation until it does.
    """

    def __init__(
        self,
        attempts: int = 12,
        interval: float = 5.0,
        codes: Optional[Iterable[str]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize the retry.

        Args:
            attempts: Total number of calls, including the first
            interval: Seconds between calls
            codes: AWS error codes worth retrying; dependency and throttling codes by default
            sleep: Function used to wait between calls
        """
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.interval = interval
        self.codes = set(codes) if codes is not None else DEPENDENCY_ERROR_CODES | THROTTLING_ERROR_CODES
        self._sleep = sleep or time.sleep

    def retryable(self, error: Exception) -> bool:
        return isinstance(error, ClientError) and aws_error_code(error) in self.codes

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Call func until it succeeds, fails with another error, or attempts run out.

        Raises:
            ClientError: The last error once attempts are exhausted, or any non-retryable one
        """
        attempt = 1
        while True:
            try:
                return func(*args, **kwargs)
            except ClientError as e:
                if attempt >= self.attempts or not self.retryable(e):
                    raise
                logger.warning(
                    f"{aws_error_code(e)} on attempt {attempt}/{self.attempts}; "
                    f"retrying in {self.interval:.0f}s"
                )
                self._sleep(self.interval)
                attempt += 1
