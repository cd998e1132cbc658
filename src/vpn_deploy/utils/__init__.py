"""Utility modules for logging, error handling, and retries."""

from vpn_deploy.utils.retry import DependencyRetry
from vpn_deploy.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    DeploymentError,
    ValidationError,
    OperationRejected,
    OperationInProgressError,
    ProviderError,
    ResourceNotFoundError,
    StepTimeoutError,
    SSHError,
    PartialFailure,
    StateError,
    StateCorruption,
    CredentialError,
    ConfigurationError,
    TunnelError,
    ErrorHandler,
    error_handler,
    is_not_found,
)
from vpn_deploy.utils.logging import get_logger, setup_logging

__all__ = [
    # Retry
    'DependencyRetry',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'DeploymentError',
    'ValidationError',
    'OperationRejected',
    'OperationInProgressError',
    'ProviderError',
    'ResourceNotFoundError',
    'StepTimeoutError',
    'SSHError',
    'PartialFailure',
    'StateError',
    'StateCorruption',
    'CredentialError',
    'ConfigurationError',
    'TunnelError',
    'ErrorHandler',
    'error_handler',
    'is_not_found',

    # Logging
    'get_logger',
    'setup_logging',
]
