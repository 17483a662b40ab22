"""boto3 session and client handling for the services a static site touches."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError

from static_edge.utils.logging import get_logger
from static_edge.utils.retry import with_retry

logger = get_logger(__name__)

GLOBAL_REGION = 'us-east-1'

# CloudFront reads viewer certificates from ACM in us-east-1 only, and its
# control plane is served from there too. Route 53 is global.
PINNED_REGIONS = {
    'acm': GLOBAL_REGION,
    'cloudfront': GLOBAL_REGION,
    'route53': GLOBAL_REGION,
}


@dataclass
class CallerIdentity:
    """Who the configured credentials resolve to."""
    account_id: str
    arn: str
    user_id: str
    profile: Optional[str] = None


class AWSClientManager:
    """Lazily builds one boto3 session and caches a client per service and region.

    Buckets are regional while certificates, distributions and hosted zones are
    not, so callers ask for a client by service and let the manager place it.
    """

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        max_pool_connections: int = 10
    ):
        """Initialize the client manager.

        Args:
            profile: Named AWS profile; the default credential chain when omitted
            region: Fallback region for regional services such as S3 and STS
            max_pool_connections: Connection pool size per client
        """
        self.profile = profile
        self.region = region
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}
        self._identity: Optional[CallerIdentity] = None

        # Standard-mode retries cover throttling inside botocore; RetryStrategy
        # still wraps each provisioner call.
        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={'mode': 'standard', 'max_attempts': 3},
            connect_timeout=10,
            read_timeout=60,
        )

    @property
    def session(self) -> boto3.Session:
        if self._session is None:
            options = {}
            if self.profile:
                options['profile_name'] = self.profile
            if self.region:
                options['region_name'] = self.region
            self._session = boto3.Session(**options)
            logger.info(
                f"Using AWS profile {self.profile or 'default'} "
                f"(region {self._session.region_name or 'unset'})"
            )
        return self._session

    def client_region(self, service_name: str, region: Optional[str] = None) -> Optional[str]:
        """Region a client for ``service_name`` must be created in."""
        return PINNED_REGIONS.get(service_name, region or self.region)

    def get_client(self, service_name: str, region: Optional[str] = None):
        """Return the cached client for ``service_name``, creating it on first use.

        Args:
            service_name: boto3 service name such as ``s3`` or ``route53``
            region: Region for regional services; ignored for pinned ones

        Returns:
            A boto3 client
        """
        placed = self.client_region(service_name, region)
        key = f"{service_name}@{placed or 'default'}"

        client = self._clients.get(key)
        if client is None:
            options = {'config': self._boto_config}
            if placed:
                options['region_name'] = placed
            client = self.session.client(service_name, **options)
            self._clients[key] = client
            logger.debug(f"Created {service_name} client in {placed or 'the session region'}")
        return client

    def caller_identity(self) -> CallerIdentity:
        """Resolve and remember the identity behind the active credentials.

        Raises:
            NoCredentialsError: No credentials could be located
            PartialCredentialsError: The located credentials are incomplete
            ClientError: STS rejected the credentials
        """
        if self._identity is None:
            try:
                response = _get_caller_identity(self.get_client('sts'))
            except (NoCredentialsError, PartialCredentialsError) as e:
                logger.error(f"AWS credentials unavailable: {e}")
                raise
            except ClientError as e:
                code = e.response.get('Error', {}).get('Code', 'Unknown')
                logger.error(f"STS rejected the AWS credentials ({code})")
                raise

            self._identity = CallerIdentity(
                account_id=response['Account'],
                arn=response['Arn'],
                user_id=response['UserId'],
                profile=self.profile,
            )
            logger.info(f"Acting as {self._identity.arn} in account {self._identity.account_id}")
        return self._identity

    def get_account_id(self) -> str:
        return self.caller_identity().account_id


@with_retry(max_retries=3, base_delay=1.0)
def _get_caller_identity(sts) -> Dict[str, Any]:
    return sts.get_caller_identity()
