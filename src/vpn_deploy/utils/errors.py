"""Error handling framework for deploy and destroy operations."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass

import requests
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
)

from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur while operating a deployment."""
    VALIDATION = "validation"
    PROVIDER = "provider"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SSH = "ssh"
    STATE = "state"
    CREDENTIAL = "credential"
    CONFIGURATION = "configuration"
    QUOTA = "quota"
    PERMISSION = "permission"
    TUNNEL = "tunnel"
    PARTIAL = "partial"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Operation cannot continue
    ERROR = "error"  # Step failed
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    provider: Optional[str] = None
    operation: Optional[str] = None
    step: Optional[str] = None
    resource_kind: Optional[str] = None
    resource_id: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class DeploymentError(Exception):
    """Base exception for deployment errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize deployment error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = []

        lines.append(f"{self.severity.value.upper()}: {self.message}")

        if self.context.provider:
            lines.append(f"   Provider: {self.context.provider}")
        if self.context.step:
            lines.append(f"   Step: {self.context.step}")
        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'provider': self.context.provider,
                'operation': self.context.operation,
                'step': self.context.step,
                'resource_kind': self.context.resource_kind,
                'resource_id': self.context.resource_id,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ValidationError(DeploymentError):
    """Bad caller input. Raised before any state is mutated."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('category', ErrorCategory.VALIDATION)
        super().__init__(message, severity=ErrorSeverity.ERROR, **kwargs)


class OperationRejected(ValidationError):
    """The operation is not valid for the current deployment status."""
    pass


class OperationInProgressError(OperationRejected):
    """Another deploy or destroy currently holds the operation lock."""

    def __init__(self, message: str = "Another deploy or destroy operation is in progress", **kwargs):
        super().__init__(message, **kwargs)


class ProviderError(DeploymentError):
    """A call to a cloud provider or remote host failed."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('category', ErrorCategory.PROVIDER)
        super().__init__(message, severity=ErrorSeverity.ERROR, **kwargs)


class ResourceNotFoundError(ProviderError):
    """The remote resource no longer exists."""
    pass


class StepTimeoutError(ProviderError):
    """A pipeline step exceeded its deadline."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.TIMEOUT, **kwargs)


class SSHError(ProviderError):
    """Remote command execution failed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.SSH, **kwargs)


class PartialFailure(DeploymentError):
    """A step failed after earlier steps already changed remote state."""

    def __init__(self, message: str, remaining: Optional[List[str]] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PARTIAL,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )
        self.remaining = remaining or []


class StateError(DeploymentError):
    """Error related to state management."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class StateCorruption(StateError):
    """The persisted deployment record could not be read."""

    def __init__(self, message: str, quarantined_path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.severity = ErrorSeverity.WARNING
        self.quarantined_path = quarantined_path


class CredentialError(DeploymentError):
    """Missing or invalid provider credentials."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CREDENTIAL,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class ConfigurationError(DeploymentError):
    """Error in the settings file."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )
        self.errors = errors or []

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  * {location}: {msg}")

        return "\n".join(error_lines)


class TunnelError(DeploymentError):
    """The local tunnel transport failed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.TUNNEL,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


# AWS error codes meaning the resource is already gone
AWS_NOT_FOUND_CODES = {
    'InvalidVpcID.NotFound',
    'InvalidSubnetID.NotFound',
    'InvalidInternetGatewayID.NotFound',
    'InvalidRouteTableID.NotFound',
    'InvalidAssociationID.NotFound',
    'InvalidGroup.NotFound',
    'InvalidGroupId.NotFound',
    'InvalidKeyPair.NotFound',
    'InvalidInstanceID.NotFound',
    'InvalidAllocationID.NotFound',
    'InvalidAddressID.NotFound',
    'InvalidNetworkInterfaceID.NotFound',
    'Gateway.NotAttached',
}


def aws_error_code(error: ClientError) -> str:
    """Return the AWS error code of a ClientError."""
    return error.response.get('Error', {}).get('Code', '')


def is_not_found(error: Exception) -> bool:
    """Check whether an exception means the resource no longer exists.

    Args:
        error: Exception raised by a provider call

    Returns:
        True for "already gone" responses
    """
    if isinstance(error, ResourceNotFoundError):
        return True
    if isinstance(error, ClientError):
        return aws_error_code(error) in AWS_NOT_FOUND_CODES
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return error.response.status_code == 404
    return False


class ErrorHandler:
    """Handles and categorizes errors from providers and other sources."""

    # Mapping of AWS error codes to error categories and suggestions
    AWS_ERROR_MAPPING = {
        # Credential errors
        'AuthFailure': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials are invalid',
            'suggestions': [
                'Check the access key ID and secret access key',
                'Save new credentials with: vpn-deploy credentials set-aws',
            ]
        },
        'InvalidClientTokenId': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials are invalid or expired',
            'suggestions': [
                'Check that your AWS credentials are correctly configured',
                'Update credentials if they have expired'
            ]
        },
        'SignatureDoesNotMatch': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credential signature is invalid',
            'suggestions': [
                'Verify your AWS secret access key is correct',
                'Regenerate AWS credentials if necessary'
            ]
        },

        # Permission errors
        'UnauthorizedOperation': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Operation not authorized',
            'suggestions': [
                'Grant the IAM user EC2 permissions (AmazonEC2FullAccess)',
                'Verify you are operating in the correct AWS region'
            ]
        },
        'OptInRequired': {
            'category': ErrorCategory.PERMISSION,
            'message': 'The region or service requires opt-in',
            'suggestions': [
                'Enable the region in the AWS account settings',
                'Choose a different region'
            ]
        },

        # Quota errors
        'InstanceLimitExceeded': {
            'category': ErrorCategory.QUOTA,
            'message': 'Instance quota exceeded',
            'suggestions': [
                'Request a service quota increase',
                'Terminate unused instances in this region'
            ]
        },
        'VcpuLimitExceeded': {
            'category': ErrorCategory.QUOTA,
            'message': 'vCPU quota exceeded',
            'suggestions': [
                'Request a vCPU quota increase',
                'Choose a smaller instance type'
            ]
        },
        'InsufficientInstanceCapacity': {
            'category': ErrorCategory.QUOTA,
            'message': 'Insufficient capacity (quota) for this instance type',
            'suggestions': [
                'Retry later or pick a different region',
                'Choose a different instance type'
            ]
        },
        'AddressLimitExceeded': {
            'category': ErrorCategory.QUOTA,
            'message': 'Elastic IP quota exceeded',
            'suggestions': [
                'Release unused Elastic IP addresses',
                'Request an Elastic IP quota increase'
            ]
        },
        'VpcLimitExceeded': {
            'category': ErrorCategory.QUOTA,
            'message': 'VPC quota exceeded',
            'suggestions': [
                'Delete unused VPCs in this region',
                'Request a VPC quota increase'
            ]
        },

        # Network errors
        'RequestLimitExceeded': {
            'category': ErrorCategory.NETWORK,
            'message': 'API rate limit exceeded',
            'suggestions': [
                'Wait a moment and retry the operation',
            ]
        },
        'ServiceUnavailable': {
            'category': ErrorCategory.NETWORK,
            'message': 'AWS service temporarily unavailable',
            'suggestions': [
                'Wait a few moments and retry',
                'Check AWS Service Health Dashboard'
            ]
        }
    }

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> DeploymentError:
        """Handle an exception and convert to DeploymentError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            DeploymentError with categorization and suggestions
        """
        context = context or ErrorContext()

        # Handle already-wrapped DeploymentError
        if isinstance(error, DeploymentError):
            if error.context.step is None:
                error.context.step = context.step
            if error.context.provider is None:
                error.context.provider = context.provider
            return error

        if isinstance(error, ClientError):
            return self._handle_aws_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return CredentialError(
                message='AWS credentials are missing or incomplete',
                context=context,
                cause=error,
                suggestions=['Save credentials with: vpn-deploy credentials set-aws']
            )

        if isinstance(error, requests.HTTPError):
            return self._handle_http_error(error, context)

        if isinstance(error, (EndpointConnectionError, requests.ConnectionError, ConnectionError)):
            return ProviderError(
                message=f'Network error: {str(error)}',
                category=ErrorCategory.NETWORK,
                context=context,
                cause=error,
                suggestions=[
                    'Check your internet connection',
                    'Check if a VPN or proxy is interfering'
                ]
            )

        if isinstance(error, (requests.Timeout, TimeoutError)):
            return StepTimeoutError(
                message=f'Timed out: {str(error)}',
                context=context,
                cause=error
            )

        if isinstance(error, BotoCoreError):
            return ProviderError(
                message=f'AWS SDK error: {str(error)}',
                context=context,
                cause=error
            )

        # Unknown error
        return DeploymentError(
            message=str(error) or type(error).__name__,
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def _handle_aws_error(
        self,
        error: ClientError,
        context: ErrorContext
    ) -> DeploymentError:
        """Handle AWS ClientError.

        Args:
            error: The ClientError
            context: Error context

        Returns:
            Categorized DeploymentError
        """
        error_code = aws_error_code(error) or 'Unknown'
        error_message = error.response.get('Error', {}).get('Message', str(error))
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')

        if error_code in AWS_NOT_FOUND_CODES:
            return ResourceNotFoundError(
                message=f"Resource not found ({error_code}): {error_message}",
                context=context,
                cause=error
            )

        error_info = self.AWS_ERROR_MAPPING.get(error_code)
        if error_info:
            if error_info['category'] == ErrorCategory.CREDENTIAL:
                return CredentialError(
                    message=f"{error_info['message']}: {error_message}",
                    context=context,
                    cause=error,
                    suggestions=error_info['suggestions']
                )
            return ProviderError(
                message=f"{error_info['message']}: {error_message}",
                category=error_info['category'],
                context=context,
                cause=error,
                suggestions=error_info['suggestions']
            )

        return ProviderError(
            message=f"AWS Error ({error_code}): {error_message}",
            context=context,
            cause=error,
            suggestions=[
                'Check AWS documentation for this error code',
                f'AWS Request ID: {context.request_id}'
            ]
        )

    def _handle_http_error(
        self,
        error: requests.HTTPError,
        context: ErrorContext
    ) -> DeploymentError:
        """Handle an HTTP error from the DigitalOcean API."""
        response = error.response
        status = response.status_code if response is not None else None
        body = ''
        if response is not None:
            try:
                body = response.json().get('message', '')
            except ValueError:
                body = response.text[:200]

        if status == 404:
            return ResourceNotFoundError(
                message=f"Resource not found: {body or error}",
                context=context,
                cause=error
            )
        if status in (401, 403):
            return CredentialError(
                message=f"DigitalOcean rejected the API token: {body or error}",
                context=context,
                cause=error,
                suggestions=['Save a new token with: vpn-deploy credentials set-do']
            )
        if status == 422 and 'limit' in body.lower():
            return ProviderError(
                message=f"DigitalOcean quota reached: {body}",
                category=ErrorCategory.QUOTA,
                context=context,
                cause=error
            )
        return ProviderError(
            message=f"DigitalOcean API error {status}: {body or error}",
            context=context,
            cause=error
        )

    def log_error(self, error: DeploymentError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        # Log full error details at debug level
        self.logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
