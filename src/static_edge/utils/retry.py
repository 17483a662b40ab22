"""Call-site retries with exponential backoff for AWS API calls."""

import random
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from botocore.exceptions import ClientError, ConnectTimeoutError, EndpointConnectionError, ReadTimeoutError

from static_edge.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class RetryStrategy:
    """Retries transient provider failures with capped exponential backoff.

    Existence conflicts and stale concurrency tokens are never retried here;
    they describe the resource rather than the network and are handled by the
    caller.
    """

    # Throttling and service-side failures across Route 53, ACM, CloudFront, S3 and STS
    RETRYABLE_ERROR_CODES = frozenset({
        'Throttling',
        'ThrottlingException',
        'TooManyRequestsException',
        'RequestLimitExceeded',
        'RequestThrottled',
        'RequestTimeout',
        'ServiceUnavailable',
        'InternalError',
        'InternalFailure',
        'ServiceException',
        # Route 53 rejects a change while the previous one to the zone is applying
        'PriorRequestNotComplete',
        # ACM returns this for a few seconds after request_certificate
        'RequestInProgressException',
        'SlowDown',
    })

    RETRYABLE_EXCEPTIONS = (
        EndpointConnectionError,
        ConnectTimeoutError,
        ReadTimeoutError,
        ConnectionError,
        TimeoutError,
    )

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        """Initialize retry strategy.

        Args:
            max_retries: Retries after the first attempt
            base_delay: Delay in seconds before the first retry
            max_delay: Upper bound on any single delay
            exponential_base: Growth factor of the delay per retry
            jitter: Add up to 10% random jitter to each delay
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    @classmethod
    def from_config(cls, config: Any) -> "RetryStrategy":
        """Build a strategy from a ``RetryConfig``."""
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
        )

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Whether ``error`` on 0-indexed ``attempt`` warrants another try."""
        if attempt >= self.max_retries:
            return False

        if isinstance(error, self.RETRYABLE_EXCEPTIONS):
            return True

        if isinstance(error, ClientError):
            if self.error_code(error) in self.RETRYABLE_ERROR_CODES:
                return True
            status = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0)
            return status >= 500

        return False

    def get_delay(self, attempt: int) -> float:
        """Seconds to wait before retrying after 0-indexed ``attempt``."""
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)
        return delay

    def execute_with_retry(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Call ``func`` until it succeeds or fails with a non-retryable error.

        Returns:
            Result of the successful call

        Raises:
            The last exception once retries are exhausted
        """
        operation = getattr(func, '__name__', 'call')
        attempt = 0
        while True:
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                if not self.should_retry(e, attempt):
                    if attempt > 0:
                        logger.error(f"{operation} failed after {attempt} retries: {self.describe(e)}")
                    raise

                delay = self.get_delay(attempt)
                logger.warning(
                    f"{operation} attempt {attempt + 1}/{self.max_retries + 1} failed: "
                    f"{self.describe(e)}. Retrying in {delay:.2f}s"
                )
                time.sleep(delay)
                attempt += 1
                continue

            if attempt > 0:
                logger.info(f"{operation} succeeded after {attempt} retries")
            return result

    @staticmethod
    def error_code(error: ClientError) -> str:
        return error.response.get('Error', {}).get('Code', '')

    def describe(self, error: Exception) -> str:
        if isinstance(error, ClientError):
            message = error.response.get('Error', {}).get('Message', str(error))
            return f"{self.error_code(error) or 'Unknown'}: {message}"
        return f"{type(error).__name__}: {error}"


def with_retry(max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 30.0):
    """Decorate a function so transient provider errors are retried.

    Example:
        @with_retry(max_retries=3)
        def caller_identity(sts):
            return sts.get_caller_identity()
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        strategy = RetryStrategy(max_retries=max_retries, base_delay=base_delay, max_delay=max_delay)

        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return strategy.execute_with_retry(func, *args, **kwargs)

        return wrapper

    return decorator
