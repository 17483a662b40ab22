"""Read-only status report for a provisioned site."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from static_edge.config.models import SiteConfig
from static_edge.provisioners.certificate import FAILED_STATUSES, CertificateHandle, CertificateIssuer
from static_edge.provisioners.distribution import STATUS_DEPLOYED, DistributionConfigurator
from static_edge.provisioners.dns import DnsSynchronizer
from static_edge.provisioners.storage import StorageManager
from static_edge.state.checkpoint import CheckpointStore
from static_edge.state.models import ManagedResource, ResourceKind, ResourceStatus, Stage
from static_edge.utils.aws_client import AWSClientManager
from static_edge.utils.errors import ProvisioningError
from static_edge.utils.logging import get_logger
from static_edge.utils.retry import RetryStrategy

logger = get_logger(__name__)

# Error codes meaning the recorded resource no longer exists
MISSING_CODES = frozenset({
    "NoSuchHostedZone",
    "ResourceNotFoundException",
    "NoSuchDistribution",
    "NoSuchOriginAccessControl",
    "NoSuchBucket",
    "404",
})

RESOURCE_ORDER = [
    ResourceKind.BUCKET,
    ResourceKind.ZONE,
    ResourceKind.CERTIFICATE,
    ResourceKind.DISTRIBUTION,
    ResourceKind.ACCESS_CONTROL,
]


@dataclass
class StatusReport:
    """Checkpoint stage plus the live state of every managed resource."""
    domain: str
    stage: Optional[Stage]
    resources: List[ManagedResource] = field(default_factory=list)

    @property
    def has_checkpoint(self) -> bool:
        return self.stage is not None

    def resource(self, kind: ResourceKind) -> Optional[ManagedResource]:
        for resource in self.resources:
            if resource.kind == kind:
                return resource
        return None


class StatusReporter:
    """Probes the site's resources concurrently without changing anything."""

    def __init__(
        self,
        clients: AWSClientManager,
        store: CheckpointStore,
        site: Optional[SiteConfig] = None,
        retry_strategy: Optional[RetryStrategy] = None,
        max_workers: int = 5
    ):
        self.store = store
        self.site = site
        self.max_workers = max_workers
        retry_strategy = retry_strategy or RetryStrategy()

        self.dns = DnsSynchronizer(clients, retry_strategy)
        self.certificates = CertificateIssuer(clients, self.dns, retry_strategy=retry_strategy)
        self.distribution = DistributionConfigurator(clients, retry_strategy=retry_strategy)
        self.storage = StorageManager(clients, site.bucket_region, retry_strategy) if site else None

    def report(self, domain: str) -> StatusReport:
        """Build the status report for a domain.

        Args:
            domain: Site domain

        Returns:
            StatusReport; resources without a recorded identifier are PENDING
        """
        checkpoint = self.store.load(domain)
        report = StatusReport(domain=domain, stage=checkpoint.stage if checkpoint else None)

        identifiers: Dict[ResourceKind, Optional[str]] = dict(checkpoint.resources()) if checkpoint else {}
        distribution_id = identifiers.get(ResourceKind.DISTRIBUTION) or (self.site.distribution_id if self.site else None)
        identifiers[ResourceKind.DISTRIBUTION] = distribution_id
        if self.site:
            identifiers[ResourceKind.BUCKET] = self.site.bucket

        probes: Dict[ResourceKind, Callable[[str], ManagedResource]] = {
            ResourceKind.BUCKET: self._probe_bucket,
            ResourceKind.ZONE: self._probe_zone,
            ResourceKind.CERTIFICATE: self._probe_certificate,
            ResourceKind.DISTRIBUTION: self._probe_distribution,
            ResourceKind.ACCESS_CONTROL: self._probe_access_control,
        }

        futures = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for kind in RESOURCE_ORDER:
                identifier = identifiers.get(kind)
                if not identifier:
                    continue
                futures[kind] = executor.submit(self._run_probe, kind, identifier, probes[kind])

        for kind in RESOURCE_ORDER:
            if kind in futures:
                report.resources.append(futures[kind].result())
            elif kind != ResourceKind.BUCKET or self.site:
                report.resources.append(
                    ManagedResource(kind=kind, identifier=identifiers.get(kind), status=ResourceStatus.PENDING)
                )

        return report

    def _run_probe(
        self,
        kind: ResourceKind,
        identifier: str,
        probe: Callable[[str], ManagedResource]
    ) -> ManagedResource:
        try:
            return probe(identifier)
        except ProvisioningError as e:
            if e.error_code in MISSING_CODES:
                return ManagedResource(kind=kind, identifier=identifier, status=ResourceStatus.MISSING)
            logger.warning(f"Could not probe {kind.value} {identifier}: {e.message}")
            return ManagedResource(
                kind=kind,
                identifier=identifier,
                status=ResourceStatus.UNKNOWN,
                details={"error": e.message},
            )

    def _probe_bucket(self, bucket: str) -> ManagedResource:
        exists = self.storage.bucket_exists(bucket)
        return ManagedResource(
            kind=ResourceKind.BUCKET,
            identifier=bucket,
            status=ResourceStatus.READY if exists else ResourceStatus.MISSING,
            details={"region": self.site.bucket_region},
        )

    def _probe_zone(self, zone_id: str) -> ManagedResource:
        zone = self.dns.get_zone(zone_id)
        return ManagedResource(
            kind=ResourceKind.ZONE,
            identifier=zone_id,
            status=ResourceStatus.READY,
            details={"name_servers": zone.get("DelegationSet", {}).get("NameServers", [])},
        )

    def _probe_certificate(self, arn: str) -> ManagedResource:
        description = self.certificates.describe(CertificateHandle(arn=arn, domain=""))
        if description.is_issued:
            status = ResourceStatus.READY
        elif description.status in FAILED_STATUSES:
            status = ResourceStatus.FAILED
        else:
            status = ResourceStatus.PENDING
        details = {"status": description.status}
        if description.failure_reason:
            details["failure_reason"] = description.failure_reason
        return ManagedResource(kind=ResourceKind.CERTIFICATE, identifier=arn, status=status, details=details)

    def _probe_distribution(self, distribution_id: str) -> ManagedResource:
        distribution = self.distribution.describe(distribution_id)
        aliases = distribution.get("DistributionConfig", {}).get("Aliases", {}).get("Items", [])
        return ManagedResource(
            kind=ResourceKind.DISTRIBUTION,
            identifier=distribution_id,
            status=ResourceStatus.READY if distribution["Status"] == STATUS_DEPLOYED else ResourceStatus.PENDING,
            details={
                "status": distribution["Status"],
                "domain_name": distribution.get("DomainName"),
                "aliases": aliases,
            },
        )

    def _probe_access_control(self, access_control_id: str) -> ManagedResource:
        access_control = self.distribution.get_access_control(access_control_id)
        name = access_control.get("OriginAccessControlConfig", {}).get("Name")
        return ManagedResource(
            kind=ResourceKind.ACCESS_CONTROL,
            identifier=access_control_id,
            status=ResourceStatus.READY,
            details={"name": name},
        )
