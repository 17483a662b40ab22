"""Migrates a site to an access-controlled origin and locks down its bucket."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from static_edge.state.models import ResourceKind
from static_edge.utils.errors import ErrorContext, PollTimeout, error_handler
from static_edge.utils.logging import get_logger
from .base import BaseProvisioner, ChangeType
from .distribution import DistributionConfigurator
from .probe import ResourceDescriptor, ResourceProbe
from .storage import StorageManager, cloudfront_read_policy

logger = get_logger(__name__)

# CloudFront limits origin access control names to 64 characters
MAX_ACCESS_CONTROL_NAME = 64

AccessControlCallback = Callable[[str], None]


def access_control_name(bucket: str) -> str:
    return f"{bucket}-oac"[:MAX_ACCESS_CONTROL_NAME]


@dataclass
class HardeningResult:
    """What the hardener did."""
    access_control_id: str
    access_control_created: bool
    origin_change: ChangeType
    distribution_domain: str
    website_disabled: bool


class SecurityHardener(BaseProvisioner):
    """Moves the distribution off the public website endpoint.

    The steps run in a fixed order: origin access control, account lookup,
    origin migration (waiting for deployment), bucket policy and public
    access block, and finally disabling website hosting. The bucket is only
    locked down after CloudFront reads it through the access control, so the
    site stays reachable throughout.
    """

    service_name = "cloudfront"

    def __init__(
        self,
        clients,
        distribution: DistributionConfigurator,
        storage: StorageManager,
        retry_strategy=None,
        probe: Optional[ResourceProbe] = None
    ):
        super().__init__(clients, retry_strategy)
        self.distribution = distribution
        self.storage = storage
        self.probe = probe or ResourceProbe()

    def harden(
        self,
        distribution_id: str,
        bucket: str,
        bucket_region: str,
        access_control_id: Optional[str] = None,
        on_access_control: Optional[AccessControlCallback] = None
    ) -> HardeningResult:
        """Harden one distribution and its bucket.

        Args:
            distribution_id: Distribution serving the site
            bucket: Bucket holding the site content
            bucket_region: Region of the bucket
            access_control_id: Access control recorded by an earlier run
            on_access_control: Called with the access control id as soon as
                it is known, before any further step runs

        Returns:
            HardeningResult

        Raises:
            PollTimeout: If the distribution does not finish deploying
        """
        # 1. Origin access control
        created = False
        if access_control_id is None:
            access_control_id, created = self.ensure_access_control(bucket)
        if on_access_control:
            on_access_control(access_control_id)

        # 2. Account that owns the distribution
        account_id = self._account_id()
        distribution_arn = f"arn:aws:cloudfront::{account_id}:distribution/{distribution_id}"

        # 3. Migrate the origin and wait for it to deploy
        change = self.distribution.apply_origin_access_control(
            distribution_id, access_control_id, bucket, bucket_region
        )
        deployed = self.distribution.await_deployed(distribution_id)
        if not deployed.is_success():
            raise PollTimeout(
                f"Distribution {distribution_id} did not deploy the access-controlled origin: {deployed.reason}",
                context=ErrorContext(
                    resource_kind=ResourceKind.DISTRIBUTION.value,
                    resource_id=distribution_id,
                    operation="await_deployed",
                ),
            )

        # 4. Only this distribution may read the bucket
        self.storage.put_bucket_policy(bucket, cloudfront_read_policy(bucket, distribution_arn))
        self.storage.block_public_access(bucket)

        # 5. Website endpoint is no longer needed
        website_disabled = self.storage.delete_website(bucket)

        logger.info(f"Hardened distribution {distribution_id} and bucket {bucket}")
        return HardeningResult(
            access_control_id=access_control_id,
            access_control_created=created,
            origin_change=change.change_type,
            distribution_domain=deployed.value,
            website_disabled=website_disabled,
        )

    def _account_id(self) -> str:
        try:
            return self.clients.get_account_id()
        except Exception as e:
            context = ErrorContext(operation="get_caller_identity", aws_service="sts")
            raise error_handler.handle_exception(e, context) from e

    def ensure_access_control(self, bucket: str) -> Tuple[str, bool]:
        """Create or reuse the bucket's origin access control.

        Returns:
            Tuple of (access control id, was_created)
        """
        name = access_control_name(bucket)

        def create() -> str:
            response = self._call(
                "create_origin_access_control",
                OriginAccessControlConfig={
                    "Name": name,
                    "Description": f"Access control for s3://{bucket}",
                    "SigningProtocol": "sigv4",
                    "SigningBehavior": "always",
                    "OriginAccessControlOriginType": "s3",
                },
            )
            return response["OriginAccessControl"]["Id"]

        return self.probe.ensure(
            ResourceDescriptor(
                kind=ResourceKind.ACCESS_CONTROL,
                name=name,
                create=create,
                lookup=lambda: self.find_access_control(name),
                conflict_codes=frozenset({"OriginAccessControlAlreadyExists"}),
                lookup_first=True,
            )
        )

    def find_access_control(self, name: str) -> Optional[str]:
        params: Dict[str, Any] = {}
        while True:
            control_list = self._call("list_origin_access_controls", **params).get("OriginAccessControlList", {})
            for summary in control_list.get("Items", []):
                if summary.get("Name") == name:
                    return summary["Id"]
            if not control_list.get("IsTruncated"):
                return None
            params["Marker"] = control_list["NextMarker"]
