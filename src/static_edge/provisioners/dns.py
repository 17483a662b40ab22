"""Route 53 hosted zone and record management."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from static_edge.config.models import PollingConfig
from static_edge.state.models import ResourceKind
from static_edge.utils.logging import get_logger
from static_edge.utils.polling import PollResult, poll_until
from .base import BaseProvisioner
from .probe import ResourceDescriptor, ResourceProbe

logger = get_logger(__name__)

# Fixed hosted zone id used for every alias record that targets CloudFront
CLOUDFRONT_HOSTED_ZONE_ID = "Z2FDTNDATAQYW2"

CHANGE_INSYNC = "INSYNC"


def fqdn(name: str) -> str:
    """Normalize a record name to lower case with a trailing dot."""
    name = name.strip().lower()
    return name if name.endswith(".") else f"{name}."


def strip_zone_prefix(zone_id: str) -> str:
    """Turn ``/hostedzone/Z123`` into ``Z123``."""
    return zone_id.split("/")[-1]


@dataclass
class DnsRecord:
    """One record set to upsert.

    Either ``values`` (with ``ttl``) or ``alias_target`` is set.
    """
    name: str
    record_type: str
    values: List[str] = field(default_factory=list)
    ttl: int = 300
    alias_target: Optional[Dict[str, Any]] = None

    @classmethod
    def cname(cls, name: str, target: str, ttl: int = 300) -> "DnsRecord":
        return cls(name=name, record_type="CNAME", values=[target], ttl=ttl)

    @classmethod
    def cloudfront_alias(cls, name: str, distribution_domain: str, record_type: str = "A") -> "DnsRecord":
        return cls(
            name=name,
            record_type=record_type,
            alias_target={
                "HostedZoneId": CLOUDFRONT_HOSTED_ZONE_ID,
                "DNSName": fqdn(distribution_domain),
                "EvaluateTargetHealth": False,
            },
        )

    @property
    def key(self) -> Tuple[str, str]:
        return fqdn(self.name), self.record_type

    def to_change(self) -> Dict[str, Any]:
        """Build an UPSERT change for ``change_resource_record_sets``."""
        record_set: Dict[str, Any] = {"Name": fqdn(self.name), "Type": self.record_type}
        if self.alias_target:
            record_set["AliasTarget"] = self.alias_target
        else:
            record_set["TTL"] = self.ttl
            record_set["ResourceRecords"] = [{"Value": value} for value in self.values]
        return {"Action": "UPSERT", "ResourceRecordSet": record_set}


@dataclass
class ChangeHandle:
    """Pending Route 53 change. ``change_id`` is None when nothing was submitted."""
    zone_id: str
    change_id: Optional[str]
    status: str = CHANGE_INSYNC
    record_count: int = 0


class DnsSynchronizer(BaseProvisioner):
    """Keeps the site's hosted zone and records in the desired state.

    Every record write is an ``UPSERT``, so re-running a stage never fails on
    a record an earlier run already wrote.
    """

    service_name = "route53"

    def __init__(self, clients, retry_strategy=None, probe: Optional[ResourceProbe] = None):
        super().__init__(clients, retry_strategy)
        self.probe = probe or ResourceProbe()

    def ensure_zone(self, domain: str) -> Tuple[str, bool]:
        """Create or reuse the public hosted zone for a domain.

        Args:
            domain: Apex domain

        Returns:
            Tuple of (zone id without the ``/hostedzone/`` prefix, was_created)
        """
        def create() -> str:
            response = self._call(
                "create_hosted_zone",
                Name=domain,
                CallerReference=f"{domain}-static-edge",
                HostedZoneConfig={"Comment": f"static-edge:{domain}", "PrivateZone": False},
            )
            return strip_zone_prefix(response["HostedZone"]["Id"])

        return self.probe.ensure(
            ResourceDescriptor(
                kind=ResourceKind.ZONE,
                name=domain,
                create=create,
                lookup=lambda: self.find_zone(domain),
                conflict_codes=frozenset({"HostedZoneAlreadyExists"}),
                lookup_first=True,
            )
        )

    def find_zone(self, domain: str) -> Optional[str]:
        """Find the public hosted zone for a domain by name."""
        response = self._call("list_hosted_zones_by_name", DNSName=domain, MaxItems="10")
        for zone in response.get("HostedZones", []):
            if zone["Name"] == fqdn(domain) and not zone.get("Config", {}).get("PrivateZone", False):
                return strip_zone_prefix(zone["Id"])
        return None

    def get_zone(self, zone_id: str) -> Dict[str, Any]:
        """Describe a hosted zone and its delegation set."""
        return self._call("get_hosted_zone", Id=zone_id)

    def name_servers(self, zone_id: str) -> List[str]:
        """Name servers the registrar must delegate the domain to."""
        response = self.get_zone(zone_id)
        return list(response.get("DelegationSet", {}).get("NameServers", []))

    def upsert(self, zone_id: str, records: List[DnsRecord], comment: str = "static-edge") -> ChangeHandle:
        """Upsert record sets in one change batch.

        Records that share a name and type are collapsed to the last one.

        Args:
            zone_id: Hosted zone to write to
            records: Record sets to upsert
            comment: Change batch comment

        Returns:
            Handle to pass to ``await_propagation``
        """
        unique: Dict[Tuple[str, str], DnsRecord] = {}
        for record in records:
            unique[record.key] = record

        if not unique:
            logger.debug(f"No records to upsert in zone {zone_id}")
            return ChangeHandle(zone_id=zone_id, change_id=None)

        response = self._call(
            "change_resource_record_sets",
            HostedZoneId=zone_id,
            ChangeBatch={
                "Comment": comment,
                "Changes": [record.to_change() for record in unique.values()],
            },
        )
        change_info = response["ChangeInfo"]
        names = ", ".join(f"{name} {rtype}" for name, rtype in unique)
        logger.info(f"Upserted {len(unique)} record(s) in zone {zone_id}: {names}")

        return ChangeHandle(
            zone_id=zone_id,
            change_id=change_info["Id"],
            status=change_info["Status"],
            record_count=len(unique),
        )

    def await_propagation(self, handle: ChangeHandle, polling: PollingConfig) -> PollResult:
        """Wait until Route 53 reports the change as ``INSYNC``.

        Returns:
            Succeeded with the handle, or TimedOut when the bound is exceeded
        """
        if handle.change_id is None or handle.status == CHANGE_INSYNC:
            result = PollResult.succeeded(handle)
            result.attempts = 0
            return result

        def check() -> Optional[PollResult]:
            response = self._call("get_change", retry=False, Id=handle.change_id)
            handle.status = response["ChangeInfo"]["Status"]
            if handle.status == CHANGE_INSYNC:
                return PollResult.succeeded(handle)
            return None

        return poll_until(
            check,
            interval=polling.interval,
            max_attempts=polling.max_attempts,
            description=f"DNS change {handle.change_id}",
        )

    def find_record(self, zone_id: str, name: str, record_type: str) -> Optional[Dict[str, Any]]:
        """Read one record set, or None if it does not exist."""
        response = self._call(
            "list_resource_record_sets",
            HostedZoneId=zone_id,
            StartRecordName=fqdn(name),
            StartRecordType=record_type,
            MaxItems="1",
        )
        for record_set in response.get("ResourceRecordSets", []):
            if fqdn(record_set["Name"]) == fqdn(name) and record_set["Type"] == record_type:
                return record_set
        return None
