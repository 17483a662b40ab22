"""Utility modules for logging, AWS client management, retries, polling and errors."""

from static_edge.utils.aws_client import AWSClientManager, CallerIdentity
from static_edge.utils.retry import RetryStrategy, with_retry
from static_edge.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ProvisioningError,
    ConfigurationError,
    ConfigurationMissing,
    CredentialError,
    CheckpointError,
    CheckpointLockError,
    AlreadyExistsConflict,
    TransientProviderError,
    OptimisticConcurrencyConflict,
    PollTimeout,
    ValidationTimeout,
    PermanentProviderError,
    ErrorHandler,
    error_handler
)
from static_edge.utils.polling import PollResult, PollStatus, poll_until
from static_edge.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # AWS Client
    'AWSClientManager',
    'CallerIdentity',

    # Retry and polling
    'RetryStrategy',
    'with_retry',
    'PollResult',
    'PollStatus',
    'poll_until',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ProvisioningError',
    'ConfigurationError',
    'ConfigurationMissing',
    'CredentialError',
    'CheckpointError',
    'CheckpointLockError',
    'AlreadyExistsConflict',
    'TransientProviderError',
    'OptimisticConcurrencyConflict',
    'PollTimeout',
    'ValidationTimeout',
    'PermanentProviderError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
