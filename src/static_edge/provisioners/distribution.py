"""CloudFront distribution configuration with optimistic concurrency."""

import copy
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from static_edge.config.models import PollingConfig, PollingSettings
from static_edge.state.models import ResourceKind
from static_edge.utils.logging import get_logger
from static_edge.utils.polling import PollResult, poll_until
from .base import BaseProvisioner, ChangeResult, ChangeType
from .probe import ResourceDescriptor, ResourceProbe
from .storage import bucket_origin_hosts, rest_endpoint, website_endpoint

logger = get_logger(__name__)

# AWS managed cache policy "CachingOptimized"
CACHING_OPTIMIZED_POLICY_ID = "658327ea-f89d-4fab-a63d-7e88639e58f6"

MINIMUM_PROTOCOL_VERSION = "TLSv1.2_2021"
STATUS_DEPLOYED = "Deployed"

ConfigMutation = Callable[[Dict[str, Any]], None]


def distribution_comment(domain: str) -> str:
    """Comment that marks a distribution as belonging to a site."""
    return f"static-edge:{domain}"


def _set_list(config: Dict[str, Any], key: str, items: List[Any]) -> None:
    if items:
        config[key] = {"Quantity": len(items), "Items": items}
    else:
        config[key] = {"Quantity": 0}


def s3_origin_id(bucket: str) -> str:
    return f"S3-{bucket}"


class DistributionConfigurator(BaseProvisioner):
    """Reads and mutates CloudFront distribution configurations.

    Every mutation fetches the configuration together with its ETag and sends
    the update with ``IfMatch``. If another writer changed the distribution in
    between, CloudFront rejects the update and ``OptimisticConcurrencyConflict``
    is raised; the caller re-fetches and tries again. Updates are never forced.
    """

    service_name = "cloudfront"

    def __init__(
        self,
        clients,
        polling: Optional[PollingSettings] = None,
        retry_strategy=None,
        probe: Optional[ResourceProbe] = None
    ):
        super().__init__(clients, retry_strategy)
        self.polling = polling or PollingSettings()
        self.probe = probe or ResourceProbe()

    def get_config(self, distribution_id: str) -> Tuple[Dict[str, Any], str]:
        """Fetch a distribution config and its concurrency token.

        Returns:
            Tuple of (DistributionConfig, ETag)
        """
        response = self._call("get_distribution_config", Id=distribution_id)
        return response["DistributionConfig"], response["ETag"]

    def describe(self, distribution_id: str, retry: bool = True) -> Dict[str, Any]:
        return self._call("get_distribution", retry=retry, Id=distribution_id)["Distribution"]

    def uses_website_origin(self, distribution_id: str, bucket: str, bucket_region: str) -> bool:
        """Whether any origin of the distribution is the bucket's website endpoint."""
        config, _ = self.get_config(distribution_id)
        endpoint = website_endpoint(bucket, bucket_region)
        return any(
            origin["DomainName"].lower() == endpoint
            for origin in config.get("Origins", {}).get("Items", [])
        )

    def get_access_control(self, access_control_id: str) -> Dict[str, Any]:
        return self._call("get_origin_access_control", Id=access_control_id)["OriginAccessControl"]

    def _apply(self, distribution_id: str, mutation: ConfigMutation, description: str) -> ChangeResult:
        """Fetch, mutate and conditionally update a distribution config."""
        config, etag = self.get_config(distribution_id)
        desired = copy.deepcopy(config)
        mutation(desired)

        if desired == config:
            logger.info(f"Distribution {distribution_id} already has {description}")
            return ChangeResult(ResourceKind.DISTRIBUTION.value, distribution_id, ChangeType.NO_CHANGE)

        response = self._call(
            "update_distribution",
            Id=distribution_id,
            IfMatch=etag,
            DistributionConfig=desired,
        )
        logger.info(f"Updated distribution {distribution_id}: {description}")
        return ChangeResult(
            ResourceKind.DISTRIBUTION.value,
            distribution_id,
            ChangeType.UPDATE,
            details={"etag": response.get("ETag"), "status": response.get("Distribution", {}).get("Status")},
        )

    def apply_alias(
        self,
        distribution_id: str,
        domain: str,
        certificate_arn: str,
        alternative_names: Optional[List[str]] = None
    ) -> ChangeResult:
        """Bind the site's names and certificate to a distribution.

        Only the aliases and the viewer certificate are changed.

        Args:
            distribution_id: Distribution to update
            domain: Apex domain
            certificate_arn: Issued certificate covering every alias
            alternative_names: Extra aliases; defaults to www.<domain>
        """
        aliases = self.aliases_for(domain, alternative_names)

        def mutate(config: Dict[str, Any]) -> None:
            current = config.get("Aliases", {}).get("Items", [])
            if sorted(current) != aliases:
                _set_list(config, "Aliases", aliases)

            viewer_certificate = config.get("ViewerCertificate", {})
            if not self._certificate_matches(viewer_certificate, certificate_arn):
                config["ViewerCertificate"] = {
                    "ACMCertificateArn": certificate_arn,
                    "SSLSupportMethod": "sni-only",
                    "MinimumProtocolVersion": MINIMUM_PROTOCOL_VERSION,
                    "CertificateSource": "acm",
                    "CloudFrontDefaultCertificate": False,
                }

        return self._apply(distribution_id, mutate, f"aliases {', '.join(aliases)}")

    def apply_origin_access_control(
        self,
        distribution_id: str,
        access_control_id: str,
        bucket: str,
        bucket_region: str
    ) -> ChangeResult:
        """Point the distribution at the bucket through an origin access control.

        Every origin that targets the bucket (website or REST endpoint) is
        replaced by one S3 origin signed with the access control. Cache
        behaviours that targeted a replaced origin are retargeted, and a
        default root object is set since the website endpoint no longer
        serves index documents.
        """
        origin_id = s3_origin_id(bucket)
        hosts = bucket_origin_hosts(bucket, bucket_region)

        def mutate(config: Dict[str, Any]) -> None:
            origins = config.get("Origins", {}).get("Items", [])
            replaced = [origin for origin in origins if origin["DomainName"].lower() in hosts]
            replaced_ids = {origin["Id"] for origin in replaced}
            template = replaced[0] if replaced else {}

            new_origin = {key: value for key, value in template.items() if key != "CustomOriginConfig"}
            s3_origin_config = dict(new_origin.get("S3OriginConfig", {}))
            s3_origin_config["OriginAccessIdentity"] = ""
            new_origin.update({
                "Id": origin_id,
                "DomainName": rest_endpoint(bucket, bucket_region),
                "S3OriginConfig": s3_origin_config,
                "OriginAccessControlId": access_control_id,
            })
            new_origin.setdefault("OriginPath", "")
            new_origin.setdefault("CustomHeaders", {"Quantity": 0})

            # the access-controlled origin takes the place of the first replaced one
            updated = []
            for origin in origins:
                if origin["Id"] not in replaced_ids:
                    updated.append(origin)
                elif new_origin not in updated:
                    updated.append(new_origin)
            if not replaced:
                updated.append(new_origin)
            _set_list(config, "Origins", updated)

            default_behavior = config.get("DefaultCacheBehavior", {})
            if not replaced_ids or default_behavior.get("TargetOriginId") in replaced_ids:
                default_behavior["TargetOriginId"] = origin_id
            for behavior in config.get("CacheBehaviors", {}).get("Items", []):
                if behavior.get("TargetOriginId") in replaced_ids:
                    behavior["TargetOriginId"] = origin_id

            if not config.get("DefaultRootObject"):
                config["DefaultRootObject"] = "index.html"

        return self._apply(distribution_id, mutate, f"origin access control {access_control_id}")

    def await_deployed(self, distribution_id: str, polling: Optional[PollingConfig] = None) -> PollResult:
        """Poll until the distribution reports ``Deployed``.

        Returns:
            Succeeded with the distribution's domain name, or TimedOut
        """
        polling = polling or self.polling.distribution

        def check() -> Optional[PollResult]:
            distribution = self.describe(distribution_id, retry=False)
            if distribution["Status"] == STATUS_DEPLOYED:
                return PollResult.succeeded(distribution["DomainName"])
            return None

        return poll_until(
            check,
            interval=polling.interval,
            max_attempts=polling.max_attempts,
            description=f"distribution {distribution_id} deployment",
        )

    def ensure_distribution(self, domain: str, bucket: str, bucket_region: str) -> Tuple[str, bool]:
        """Create or reuse a distribution fronting the bucket's website endpoint.

        Returns:
            Tuple of (distribution id, was_created)
        """
        def create() -> str:
            response = self._call(
                "create_distribution",
                DistributionConfig=self._initial_config(domain, bucket, bucket_region),
            )
            return response["Distribution"]["Id"]

        return self.probe.ensure(
            ResourceDescriptor(
                kind=ResourceKind.DISTRIBUTION,
                name=domain,
                create=create,
                lookup=lambda: self.find_distribution(domain),
                conflict_codes=frozenset({"DistributionAlreadyExists"}),
                lookup_first=True,
            )
        )

    def find_distribution(self, domain: str) -> Optional[str]:
        """Find the site's distribution by its comment or by an alias."""
        comment = distribution_comment(domain)
        params: Dict[str, Any] = {}
        while True:
            distribution_list = self._call("list_distributions", **params).get("DistributionList", {})
            for summary in distribution_list.get("Items", []):
                aliases = summary.get("Aliases", {}).get("Items", [])
                if summary.get("Comment") == comment or domain in aliases:
                    return summary["Id"]
            if not distribution_list.get("IsTruncated"):
                return None
            params["Marker"] = distribution_list["NextMarker"]

    def verify(
        self,
        distribution_id: str,
        domain: str,
        certificate_arn: str,
        alternative_names: Optional[List[str]] = None
    ) -> List[str]:
        """Compare the live distribution with the provisioned state. Read-only.

        Returns:
            Human-readable problems; empty when everything matches
        """
        distribution = self.describe(distribution_id)
        config = distribution["DistributionConfig"]
        problems = []

        current_aliases = set(config.get("Aliases", {}).get("Items", []))
        missing = [alias for alias in self.aliases_for(domain, alternative_names) if alias not in current_aliases]
        if missing:
            problems.append(f"aliases missing from distribution: {', '.join(missing)}")

        if not self._certificate_matches(config.get("ViewerCertificate", {}), certificate_arn):
            problems.append(f"viewer certificate is not {certificate_arn}")

        if not config.get("Enabled", False):
            problems.append("distribution is disabled")

        if distribution.get("Status") != STATUS_DEPLOYED:
            problems.append(f"distribution status is {distribution.get('Status')}")

        return problems

    def invalidate(self, distribution_id: str, paths: Optional[List[str]] = None) -> str:
        """Create a cache invalidation.

        Returns:
            Invalidation id
        """
        paths = paths or ["/*"]
        response = self._call(
            "create_invalidation",
            DistributionId=distribution_id,
            InvalidationBatch={
                "Paths": {"Quantity": len(paths), "Items": paths},
                "CallerReference": f"static-edge-{int(time.time() * 1000)}",
            },
        )
        invalidation_id = response["Invalidation"]["Id"]
        logger.info(f"Created invalidation {invalidation_id} for {distribution_id}: {', '.join(paths)}")
        return invalidation_id

    @staticmethod
    def aliases_for(domain: str, alternative_names: Optional[List[str]] = None) -> List[str]:
        names = alternative_names if alternative_names is not None else [f"www.{domain}"]
        return sorted({domain, *names})

    @staticmethod
    def _certificate_matches(viewer_certificate: Dict[str, Any], certificate_arn: str) -> bool:
        return (
            viewer_certificate.get("ACMCertificateArn") == certificate_arn
            and viewer_certificate.get("SSLSupportMethod") == "sni-only"
            and viewer_certificate.get("MinimumProtocolVersion") == MINIMUM_PROTOCOL_VERSION
            and not viewer_certificate.get("CloudFrontDefaultCertificate", False)
        )

    @staticmethod
    def _initial_config(domain: str, bucket: str, bucket_region: str) -> Dict[str, Any]:
        origin_id = f"S3-Website-{bucket}"
        return {
            "CallerReference": f"{domain}-static-edge",
            "Comment": distribution_comment(domain),
            "Enabled": True,
            "Aliases": {"Quantity": 0},
            "DefaultRootObject": "index.html",
            "Origins": {
                "Quantity": 1,
                "Items": [
                    {
                        "Id": origin_id,
                        "DomainName": website_endpoint(bucket, bucket_region),
                        "OriginPath": "",
                        "CustomHeaders": {"Quantity": 0},
                        "CustomOriginConfig": {
                            "HTTPPort": 80,
                            "HTTPSPort": 443,
                            "OriginProtocolPolicy": "http-only",
                            "OriginSslProtocols": {"Quantity": 1, "Items": ["TLSv1.2"]},
                            "OriginReadTimeout": 30,
                            "OriginKeepaliveTimeout": 5,
                        },
                    }
                ],
            },
            "DefaultCacheBehavior": {
                "TargetOriginId": origin_id,
                "ViewerProtocolPolicy": "redirect-to-https",
                "AllowedMethods": {
                    "Quantity": 2,
                    "Items": ["GET", "HEAD"],
                    "CachedMethods": {"Quantity": 2, "Items": ["GET", "HEAD"]},
                },
                "Compress": True,
                "CachePolicyId": CACHING_OPTIMIZED_POLICY_ID,
            },
            "PriceClass": "PriceClass_100",
            "HttpVersion": "http2and3",
            "IsIPV6Enabled": True,
            "ViewerCertificate": {"CloudFrontDefaultCertificate": True},
        }
