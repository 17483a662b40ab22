"""S3 bucket management for site content."""

import json
from typing import Any, Dict, Optional, Tuple

from static_edge.state.models import ResourceKind
from static_edge.utils.errors import ProvisioningError
from static_edge.utils.logging import get_logger
from .base import BaseProvisioner
from .probe import ResourceDescriptor, ResourceProbe

logger = get_logger(__name__)

NOT_FOUND_CODES = frozenset({"404", "NoSuchBucket", "NotFound"})

# Regions whose website endpoint uses "s3-website-<region>" instead of "s3-website.<region>"
LEGACY_WEBSITE_REGIONS = frozenset({
    "us-east-1",
    "us-west-1",
    "us-west-2",
    "eu-west-1",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-northeast-1",
    "sa-east-1",
})


def website_endpoint(bucket: str, region: str) -> str:
    """Static website hosting endpoint of a bucket."""
    separator = "-" if region in LEGACY_WEBSITE_REGIONS else "."
    return f"{bucket}.s3-website{separator}{region}.amazonaws.com"


def rest_endpoint(bucket: str, region: str) -> str:
    """Regional REST endpoint of a bucket, used for access-controlled origins."""
    return f"{bucket}.s3.{region}.amazonaws.com"


def public_read_policy(bucket: str) -> Dict[str, Any]:
    """Bucket policy that lets anyone read objects through the website endpoint."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "PublicReadGetObject",
                "Effect": "Allow",
                "Principal": "*",
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{bucket}/*",
            }
        ],
    }


def bucket_origin_hosts(bucket: str, region: str) -> frozenset:
    """Every hostname under which a CloudFront origin can reach this bucket."""
    return frozenset({
        website_endpoint(bucket, region),
        rest_endpoint(bucket, region),
        f"{bucket}.s3.amazonaws.com",
    })


def cloudfront_read_policy(bucket: str, distribution_arn: str) -> Dict[str, Any]:
    """Bucket policy that lets only one CloudFront distribution read objects."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowCloudFrontServicePrincipal",
                "Effect": "Allow",
                "Principal": {"Service": "cloudfront.amazonaws.com"},
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{bucket}/*",
                "Condition": {"StringEquals": {"AWS:SourceArn": distribution_arn}},
            }
        ],
    }


class StorageManager(BaseProvisioner):
    """Bucket lifecycle and content operations for one bucket region."""

    service_name = "s3"

    def __init__(self, clients, region: str, retry_strategy=None, probe: Optional[ResourceProbe] = None):
        super().__init__(clients, retry_strategy, region=region)
        self.probe = probe or ResourceProbe()

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self._call("head_bucket", Bucket=bucket)
        except ProvisioningError as e:
            if e.error_code in NOT_FOUND_CODES:
                return False
            raise
        return True

    def ensure_bucket(self, bucket: str) -> Tuple[str, bool]:
        """Create the bucket in this manager's region unless it already exists.

        Returns:
            Tuple of (bucket name, was_created)
        """
        def create() -> str:
            params: Dict[str, Any] = {"Bucket": bucket}
            # us-east-1 rejects an explicit location constraint
            if self.region != "us-east-1":
                params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
            self._call("create_bucket", **params)
            return bucket

        return self.probe.ensure(
            ResourceDescriptor(
                kind=ResourceKind.BUCKET,
                name=bucket,
                create=create,
                lookup=lambda: bucket if self.bucket_exists(bucket) else None,
                conflict_codes=frozenset({"BucketAlreadyOwnedByYou"}),
                lookup_first=True,
            )
        )

    def website_enabled(self, bucket: str) -> bool:
        try:
            self._call("get_bucket_website", Bucket=bucket)
        except ProvisioningError as e:
            if e.error_code == "NoSuchWebsiteConfiguration":
                return False
            raise
        return True

    def enable_website(self, bucket: str) -> bool:
        """Serve the bucket as a public static website.

        Turns on website hosting with ``index.html`` as index and error
        document, removes a public access block that would hide a public
        policy, and grants anonymous ``s3:GetObject``. Each step only writes
        when the bucket is not already in that state.

        Returns:
            True if anything was changed
        """
        changed = False
        if not self.website_enabled(bucket):
            self._call(
                "put_bucket_website",
                Bucket=bucket,
                WebsiteConfiguration={
                    "IndexDocument": {"Suffix": "index.html"},
                    "ErrorDocument": {"Key": "index.html"},
                },
            )
            logger.info(f"Enabled website hosting on {bucket}")
            changed = True

        if self._public_access_blocked(bucket):
            self._call("delete_public_access_block", Bucket=bucket)
            logger.info(f"Removed public access block from {bucket}")
            changed = True

        policy = public_read_policy(bucket)
        if self.get_bucket_policy(bucket) != policy:
            self.put_bucket_policy(bucket, policy)
            changed = True
        return changed

    def get_bucket_policy(self, bucket: str) -> Optional[Dict[str, Any]]:
        try:
            response = self._call("get_bucket_policy", Bucket=bucket)
        except ProvisioningError as e:
            if e.error_code == "NoSuchBucketPolicy":
                return None
            raise
        return json.loads(response["Policy"])

    def _public_access_blocked(self, bucket: str) -> bool:
        try:
            response = self._call("get_public_access_block", Bucket=bucket)
        except ProvisioningError as e:
            if e.error_code == "NoSuchPublicAccessBlockConfiguration":
                return False
            raise
        settings = response.get("PublicAccessBlockConfiguration", {})
        return bool(settings.get("BlockPublicPolicy") or settings.get("RestrictPublicBuckets"))

    def put_bucket_policy(self, bucket: str, policy: Dict[str, Any]) -> None:
        """Overwrite the bucket policy."""
        self._call("put_bucket_policy", Bucket=bucket, Policy=json.dumps(policy))
        logger.info(f"Updated bucket policy on {bucket}")

    def block_public_access(self, bucket: str) -> None:
        self._call(
            "put_public_access_block",
            Bucket=bucket,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": True,
                "IgnorePublicAcls": True,
                "BlockPublicPolicy": True,
                "RestrictPublicBuckets": True,
            },
        )
        logger.info(f"Blocked public access on {bucket}")

    def delete_website(self, bucket: str) -> bool:
        """Disable static website hosting.

        Returns:
            True if hosting was disabled, False if it was not configured
        """
        try:
            self._call("delete_bucket_website", Bucket=bucket)
        except ProvisioningError as e:
            if e.error_code == "NoSuchWebsiteConfiguration":
                logger.debug(f"Website hosting already disabled on {bucket}")
                return False
            raise
        logger.info(f"Disabled website hosting on {bucket}")
        return True

    def upload_file(
        self,
        bucket: str,
        key: str,
        path: str,
        content_type: str,
        cache_control: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> None:
        """Upload one file as an object."""
        params: Dict[str, Any] = {
            "Bucket": bucket,
            "Key": key,
            "ContentType": content_type,
            "CacheControl": cache_control,
        }
        if metadata:
            params["Metadata"] = metadata

        with open(path, "rb") as f:
            params["Body"] = f.read()
        self._call("put_object", **params)
        logger.debug(f"Uploaded s3://{bucket}/{key} ({content_type})")

    def object_exists(self, bucket: str, key: str) -> bool:
        try:
            self._call("head_object", Bucket=bucket, Key=key)
        except ProvisioningError as e:
            if e.error_code in NOT_FOUND_CODES or e.error_code == "NoSuchKey":
                return False
            raise
        return True
