"""Base provisioner shared by every AWS-facing component."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from static_edge.utils.aws_client import AWSClientManager
from static_edge.utils.errors import ErrorContext, ProvisioningError, error_handler
from static_edge.utils.logging import get_logger
from static_edge.utils.retry import RetryStrategy

logger = get_logger(__name__)


class ChangeType(Enum):
    """Type of change applied to a resource."""
    CREATE = "create"
    UPDATE = "update"
    NO_CHANGE = "no_change"


@dataclass
class ChangeResult:
    """Outcome of a mutating operation on one resource."""
    resource_kind: str
    identifier: Optional[str]
    change_type: ChangeType
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.change_type != ChangeType.NO_CHANGE


class BaseProvisioner:
    """Base class for components that call one AWS service.

    Every provider call goes through ``_call`` so that transient errors are
    retried at the call site and whatever still fails is translated into the
    provisioning error taxonomy.
    """

    service_name = ""

    def __init__(
        self,
        clients: AWSClientManager,
        retry_strategy: Optional[RetryStrategy] = None,
        region: Optional[str] = None
    ):
        """Initialize provisioner.

        Args:
            clients: Client manager used to build boto3 clients
            retry_strategy: Retry policy for transient errors
            region: Region for the service client (ignored for pinned services)
        """
        self.clients = clients
        self.retry_strategy = retry_strategy or RetryStrategy()
        self.region = region

    @property
    def client(self):
        return self.clients.get_client(self.service_name, self.region)

    def _call(self, operation: str, client=None, retry: bool = True, **kwargs) -> Dict[str, Any]:
        """Invoke a boto3 operation with retries and error translation.

        Args:
            operation: boto3 method name, e.g. ``get_distribution_config``
            client: Client to use instead of ``self.client``
            retry: False for reads made inside a polling loop, where each
                failed read already counts as one poll attempt
            **kwargs: Parameters for the API call

        Returns:
            The API response

        Raises:
            ProvisioningError: Translated provider error
        """
        client = client or self.client
        method = getattr(client, operation)

        try:
            if not retry:
                return method(**kwargs)
            return self.retry_strategy.execute_with_retry(method, **kwargs)
        except ProvisioningError:
            raise
        except Exception as e:
            context = ErrorContext(
                operation=operation,
                aws_service=self.service_name,
                aws_operation=operation,
            )
            raise error_handler.handle_exception(e, context) from e
