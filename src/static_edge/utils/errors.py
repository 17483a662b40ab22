"""Error taxonomy for provisioning and translation of AWS failures into it.

Provisioners never let a raw ``botocore`` exception escape. Every failure is
converted by :data:`error_handler` into a :class:`ProvisioningError` subclass,
and the pipeline driver decides from the subclass alone whether to reuse an
existing resource, refetch and retry, or stop and leave the checkpoint where
it is.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from static_edge.utils.logging import get_logger
from static_edge.utils.retry import RetryStrategy

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Broad area an error belongs to."""
    CONFIGURATION = "configuration"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    STATE = "state"
    CONFLICT = "conflict"
    CONCURRENCY = "concurrency"
    NETWORK = "network"
    TIMEOUT = "timeout"
    PROVISIONING = "provisioning"
    AWS = "aws"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ErrorContext:
    """Where an error happened."""
    resource_kind: Optional[str] = None
    resource_id: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    aws_operation: Optional[str] = None
    error_code: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class ProvisioningError(Exception):
    """Base class for every failure the pipeline reports.

    Subclasses set ``category``, ``severity`` and ``default_suggestions`` as
    class attributes; any of them can still be overridden per instance.
    """

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.ERROR
    default_suggestions: List[str] = []

    def __init__(
        self,
        message: str,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        if severity is not None:
            self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = list(suggestions if suggestions is not None else self.default_suggestions)

    @property
    def error_code(self) -> Optional[str]:
        """AWS error code, when the failure came from an API response."""
        return self.context.error_code

    def to_user_message(self) -> str:
        """Render the error for the terminal, numbered suggestions last."""
        lines = [f"{self.severity.value.upper()}: {self.message}"]
        details = (
            ('Resource', self.context.resource_id),
            ('Operation', self.context.operation),
            ('Cause', self.cause),
        )
        lines.extend(f"   {label}: {value}" for label, value in details if value)

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            lines.extend(f"   {number}. {text}" for number, text in enumerate(self.suggestions, 1))
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': asdict(self.context),
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions,
        }


class ConfigurationError(ProvisioningError):
    """Invalid or missing settings."""
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL


class ConfigurationMissing(ConfigurationError):
    """A command needs stages that were never run for this domain."""
    default_suggestions = [
        'Run "static-edge provision <domain>" to start provisioning from the beginning',
    ]


class CredentialError(ProvisioningError):
    category = ErrorCategory.CREDENTIAL
    severity = ErrorSeverity.CRITICAL


class CheckpointError(ProvisioningError):
    """Checkpoint file is unreadable, unwritable, or the change would break it."""
    category = ErrorCategory.STATE
    severity = ErrorSeverity.CRITICAL


class CheckpointLockError(CheckpointError):
    """Another process is provisioning the same domain."""


class AlreadyExistsConflict(ProvisioningError):
    """A create call found the resource already there."""
    category = ErrorCategory.CONFLICT
    severity = ErrorSeverity.INFO


class TransientProviderError(ProvisioningError):
    """Throttling, service or network failure that outlasted call-site retries."""
    category = ErrorCategory.NETWORK
    default_suggestions = [
        'Re-run the command; progress up to the failing stage is saved',
        'Check the AWS Health Dashboard if the problem persists',
    ]


class OptimisticConcurrencyConflict(ProvisioningError):
    """A conditional update carried a stale ETag."""
    category = ErrorCategory.CONCURRENCY
    default_suggestions = [
        'Re-fetch the current configuration and apply the change again',
    ]


class PollTimeout(ProvisioningError):
    """A bounded wait ended before the resource settled."""
    category = ErrorCategory.TIMEOUT
    default_suggestions = [
        'Re-run the command later; it resumes from the saved stage',
    ]


class ValidationTimeout(PollTimeout):
    """The certificate was still pending validation when polling gave up."""
    default_suggestions = [
        'Verify the hosted zone name servers are configured at your registrar',
        'Check delegation with: dig NS <domain>',
        'Re-run the command later; it resumes polling the same certificate',
    ]


class PermanentProviderError(ProvisioningError):
    """AWS refused the request and repeating it will not help."""
    category = ErrorCategory.PROVISIONING
    severity = ErrorSeverity.CRITICAL


class KnownError(NamedTuple):
    category: ErrorCategory
    summary: str
    suggestions: List[str]


class ErrorHandler:
    """Classifies AWS and network exceptions into the provisioning errors above."""

    # A create call failed because the thing already exists
    ALREADY_EXISTS_CODES = frozenset({
        'HostedZoneAlreadyExists',
        'OriginAccessControlAlreadyExists',
        'DistributionAlreadyExists',
        'BucketAlreadyOwnedByYou',
        'ResourceAlreadyExistsException',
    })

    # If-Match carried an ETag that is no longer current
    CONCURRENCY_CODES = frozenset({
        'PreconditionFailed',
        'InvalidIfMatchVersion',
    })

    TRANSIENT_CODES = RetryStrategy.RETRYABLE_ERROR_CODES | {
        'ServiceUnavailableException',
        '500',
        '503',
    }

    NETWORK_ERRORS = RetryStrategy.RETRYABLE_EXCEPTIONS

    KNOWN_ERRORS = {
        'InvalidClientTokenId': KnownError(
            ErrorCategory.CREDENTIAL,
            'AWS credentials are invalid',
            ['Verify credentials using: aws sts get-caller-identity'],
        ),
        'ExpiredToken': KnownError(
            ErrorCategory.CREDENTIAL,
            'AWS session token has expired',
            ['Refresh the session, for example: aws sso login --profile <profile>'],
        ),
        'AccessDenied': KnownError(
            ErrorCategory.PERMISSION,
            'Access denied',
            [
                'Provisioning needs route53, acm, cloudfront, s3 and sts permissions',
                'Check the IAM policies attached to the active profile',
            ],
        ),
        'AccessDeniedException': KnownError(
            ErrorCategory.PERMISSION,
            'Access denied',
            ['Check the IAM policies attached to the active profile'],
        ),
        'NoSuchBucket': KnownError(
            ErrorCategory.PROVISIONING,
            'Bucket does not exist',
            [
                'Check the bucket name in static-edge.yaml or --bucket',
                'Run "static-edge publish" to create the bucket and upload content',
            ],
        ),
        'BucketAlreadyExists': KnownError(
            ErrorCategory.PROVISIONING,
            'Bucket name is taken by another account',
            ['Bucket names are global; choose a different bucket name'],
        ),
        'NoSuchDistribution': KnownError(
            ErrorCategory.PROVISIONING,
            'CloudFront distribution not found',
            [
                'Check the distribution id in the checkpoint or static-edge.yaml',
                'The distribution may have been deleted outside static-edge',
            ],
        ),
        'NoSuchHostedZone': KnownError(
            ErrorCategory.PROVISIONING,
            'Hosted zone not found',
            [
                'The zone may have been deleted outside static-edge',
                'Delete the checkpoint file to provision the zone again',
            ],
        ),
        'CNAMEAlreadyExists': KnownError(
            ErrorCategory.CONFLICT,
            'Alias is already attached to another CloudFront distribution',
            ['Remove the alias from the other distribution first'],
        ),
        'InvalidViewerCertificate': KnownError(
            ErrorCategory.PROVISIONING,
            'CloudFront cannot use the certificate',
            [
                'CloudFront certificates must live in us-east-1',
                'The certificate must cover every alias on the distribution',
            ],
        ),
        'InvalidChangeBatch': KnownError(
            ErrorCategory.PROVISIONING,
            'Route 53 rejected the record change',
            ['Look for a conflicting record at the same name; a CNAME cannot sit at the zone apex'],
        ),
        'LimitExceededException': KnownError(
            ErrorCategory.PROVISIONING,
            'AWS service quota reached',
            [
                'Delete unused certificates or distributions',
                'Request a quota increase in the Service Quotas console',
            ],
        ),
        'ValidationException': KnownError(
            ErrorCategory.CONFIGURATION,
            'AWS rejected a request parameter',
            ['The message from AWS names the offending parameter'],
        ),
    }

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> ProvisioningError:
        """Classify ``error``.

        Args:
            error: Exception raised by a boto3 call or by our own code
            context: Where it happened; completed with AWS response details

        Returns:
            The matching ProvisioningError; one passed in is returned unchanged
        """
        if isinstance(error, ProvisioningError):
            return error

        context = context or ErrorContext()

        if isinstance(error, ClientError):
            return self._from_client_error(error, context)

        if isinstance(error, NoCredentialsError):
            return CredentialError(
                'No AWS credentials found',
                context=context,
                cause=error,
                suggestions=['Configure credentials with: aws configure', 'Or pass --profile <name>'],
            )
        if isinstance(error, PartialCredentialsError):
            return CredentialError(
                'Incomplete AWS credentials',
                context=context,
                cause=error,
                suggestions=['Check the profile in ~/.aws/credentials has both keys'],
            )

        if isinstance(error, self.NETWORK_ERRORS):
            return TransientProviderError(f'Network error: {error}', context=context, cause=error)

        if isinstance(error, BotoCoreError):
            return PermanentProviderError(f'AWS SDK error: {error}', context=context, cause=error)

        return ProvisioningError(
            str(error),
            context=context,
            cause=error,
            suggestions=['Check logs in .static-edge/logs for more details'],
        )

    def _from_client_error(self, error: ClientError, context: ErrorContext) -> ProvisioningError:
        details = error.response.get('Error', {})
        code = details.get('Code', 'Unknown')
        text = details.get('Message', str(error))

        context.error_code = code
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        context.aws_operation = context.aws_operation or error.operation_name

        if code in self.ALREADY_EXISTS_CODES:
            return AlreadyExistsConflict(f"Resource already exists ({code}): {text}", context=context, cause=error)
        if code in self.CONCURRENCY_CODES:
            return OptimisticConcurrencyConflict(
                f"Concurrent modification detected ({code}): {text}", context=context, cause=error
            )
        if code in self.TRANSIENT_CODES:
            return TransientProviderError(f"AWS service error ({code}): {text}", context=context, cause=error)

        known = self.KNOWN_ERRORS.get(code)
        if known is None:
            return PermanentProviderError(
                f"AWS error ({code}): {text}",
                category=ErrorCategory.AWS,
                context=context,
                cause=error,
                suggestions=[f'AWS request id: {context.request_id}'],
            )

        error_class = CredentialError if known.category is ErrorCategory.CREDENTIAL else PermanentProviderError
        return error_class(
            f"{known.summary}: {text}",
            category=known.category,
            context=context,
            cause=error,
            suggestions=known.suggestions,
        )

    def log_error(self, error: ProvisioningError) -> None:
        """Log the user-facing rendering at a level matching the severity."""
        level = {
            ErrorSeverity.CRITICAL: logger.error,
            ErrorSeverity.ERROR: logger.error,
            ErrorSeverity.WARNING: logger.warning,
        }.get(error.severity, logger.info)
        level(error.to_user_message())
        logger.debug(f"Error details: {error.to_dict()}")


error_handler = ErrorHandler()
