"""ACM certificate issuing with DNS validation."""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from static_edge.config.models import PollingConfig, PollingSettings
from static_edge.state.models import ResourceKind
from static_edge.utils.logging import get_logger
from static_edge.utils.polling import PollResult, poll_until
from .base import BaseProvisioner
from .dns import DnsRecord, DnsSynchronizer
from .probe import ResourceDescriptor, ResourceProbe

logger = get_logger(__name__)

STATUS_ISSUED = "ISSUED"
STATUS_PENDING_VALIDATION = "PENDING_VALIDATION"

# Statuses from which a certificate never becomes ISSUED
FAILED_STATUSES = frozenset({
    "FAILED",
    "VALIDATION_TIMED_OUT",
    "REVOKED",
    "EXPIRED",
    "INACTIVE",
})

REUSABLE_STATUSES = [STATUS_ISSUED, STATUS_PENDING_VALIDATION]


def idempotency_token(domain: str, names: List[str]) -> str:
    """Deterministic token so a repeated request returns the same certificate.

    ACM accepts at most 32 word characters.
    """
    digest = hashlib.sha256("|".join([domain] + sorted(names)).encode("utf-8"))
    return digest.hexdigest()[:32]


@dataclass
class ValidationRecord:
    """CNAME record ACM expects to find for one validated name."""
    name: str
    record_type: str
    value: str

    def to_dns_record(self) -> DnsRecord:
        return DnsRecord(name=self.name, record_type=self.record_type, values=[self.value])


@dataclass
class CertificateHandle:
    """A requested certificate."""
    arn: str
    domain: str
    alternative_names: List[str] = field(default_factory=list)
    created: bool = False

    @property
    def names(self) -> List[str]:
        return [self.domain] + [name for name in self.alternative_names if name != self.domain]


@dataclass
class CertificateDescription:
    """Current provider view of a certificate."""
    status: str
    validation_records: List[ValidationRecord]
    failure_reason: Optional[str] = None
    pending_names: List[str] = field(default_factory=list)

    @property
    def is_issued(self) -> bool:
        return self.status == STATUS_ISSUED

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_STATUSES


class CertificateIssuer(BaseProvisioner):
    """Requests a DNS-validated certificate and drives it to a terminal state.

    Certificates are always requested in us-east-1, the only region whose
    certificates CloudFront accepts.
    """

    service_name = "acm"

    def __init__(
        self,
        clients,
        dns: DnsSynchronizer,
        polling: Optional[PollingSettings] = None,
        retry_strategy=None,
        probe: Optional[ResourceProbe] = None
    ):
        super().__init__(clients, retry_strategy)
        self.dns = dns
        self.polling = polling or PollingSettings()
        self.probe = probe or ResourceProbe()

    def issue(self, domain: str, alternative_names: Optional[List[str]] = None) -> CertificateHandle:
        """Request a certificate, reusing a pending or issued one for the same names.

        Args:
            domain: Apex domain
            alternative_names: Subject alternative names

        Returns:
            Handle of the requested or reused certificate
        """
        alternative_names = [name for name in (alternative_names or []) if name != domain]

        def create() -> str:
            params: Dict[str, Any] = {
                "DomainName": domain,
                "ValidationMethod": "DNS",
                "IdempotencyToken": idempotency_token(domain, alternative_names),
                "Options": {"CertificateTransparencyLoggingPreference": "ENABLED"},
            }
            if alternative_names:
                params["SubjectAlternativeNames"] = [domain] + alternative_names
            return self._call("request_certificate", **params)["CertificateArn"]

        arn, created = self.probe.ensure(
            ResourceDescriptor(
                kind=ResourceKind.CERTIFICATE,
                name=domain,
                create=create,
                lookup=lambda: self.find_certificate(domain, alternative_names),
                lookup_first=True,
            )
        )
        return CertificateHandle(arn=arn, domain=domain, alternative_names=alternative_names, created=created)

    def find_certificate(self, domain: str, alternative_names: List[str]) -> Optional[str]:
        """Find an issued or pending certificate covering every requested name.

        Issued certificates are preferred over pending ones.
        """
        required = {domain, *alternative_names}
        candidates: Dict[str, List[str]] = {status: [] for status in REUSABLE_STATUSES}

        params: Dict[str, Any] = {"CertificateStatuses": REUSABLE_STATUSES}
        while True:
            response = self._call("list_certificates", **params)
            for summary in response.get("CertificateSummaryList", []):
                if summary.get("DomainName") != domain:
                    continue
                certificate = self._call(
                    "describe_certificate", CertificateArn=summary["CertificateArn"]
                )["Certificate"]
                covered = set(certificate.get("SubjectAlternativeNames", [])) | {domain}
                status = certificate.get("Status")
                if required <= covered and status in candidates:
                    candidates[status].append(certificate["CertificateArn"])

            next_token = response.get("NextToken")
            if not next_token:
                break
            params["NextToken"] = next_token

        for status in REUSABLE_STATUSES:
            if candidates[status]:
                return candidates[status][0]
        return None

    def describe(self, handle: CertificateHandle, retry: bool = True) -> CertificateDescription:
        """Read status and validation records of a certificate."""
        certificate = self._call("describe_certificate", retry=retry, CertificateArn=handle.arn)["Certificate"]

        records: List[ValidationRecord] = []
        pending_names: List[str] = []
        seen = set()
        for option in certificate.get("DomainValidationOptions", []):
            resource_record = option.get("ResourceRecord")
            if not resource_record:
                pending_names.append(option.get("DomainName", ""))
                continue
            record = ValidationRecord(
                name=resource_record["Name"],
                record_type=resource_record["Type"],
                value=resource_record["Value"],
            )
            # apex and wildcard names share one validation record
            key = (record.name.lower(), record.record_type, record.value)
            if key not in seen:
                seen.add(key)
                records.append(record)

        return CertificateDescription(
            status=certificate["Status"],
            validation_records=records,
            failure_reason=certificate.get("FailureReason"),
            pending_names=pending_names,
        )

    def publish_validation_records(self, handle: CertificateHandle, zone_id: str) -> PollResult:
        """Write the certificate's validation records into the hosted zone.

        ACM exposes the records a few seconds after the request, so this first
        waits (bounded) for them to appear, then upserts them and waits for
        the change to propagate.

        Args:
            handle: Certificate to validate
            zone_id: Hosted zone that serves the domain

        Returns:
            Propagation result, or the failed/timed-out wait for the records
        """
        def records_ready() -> Optional[PollResult]:
            description = self.describe(handle, retry=False)
            if description.is_failed:
                return PollResult.failed(self._failure_message(handle, description))
            if description.is_issued or (description.validation_records and not description.pending_names):
                return PollResult.succeeded(description.validation_records)
            return None

        records_result = poll_until(
            records_ready,
            interval=self.polling.validation_records.interval,
            max_attempts=self.polling.validation_records.max_attempts,
            description=f"validation records of {handle.arn}",
        )
        if not records_result.is_success():
            return records_result

        records: List[ValidationRecord] = records_result.value
        change = self.dns.upsert(
            zone_id,
            [record.to_dns_record() for record in records],
            comment=f"ACM validation for {handle.domain}",
        )
        return self.dns.await_propagation(change, self.polling.dns)

    def await_issued(self, handle: CertificateHandle, polling: Optional[PollingConfig] = None) -> PollResult:
        """Poll until the certificate is issued or fails.

        Returns:
            Succeeded with the ARN, Failed with the provider's reason, or TimedOut
        """
        polling = polling or self.polling.certificate

        def check() -> Optional[PollResult]:
            description = self.describe(handle, retry=False)
            if description.is_issued:
                return PollResult.succeeded(handle.arn)
            if description.is_failed:
                return PollResult.failed(self._failure_message(handle, description))
            logger.debug(f"Certificate {handle.arn} is {description.status}")
            return None

        return poll_until(
            check,
            interval=polling.interval,
            max_attempts=polling.max_attempts,
            description=f"certificate {handle.arn}",
        )

    @staticmethod
    def _failure_message(handle: CertificateHandle, description: CertificateDescription) -> str:
        reason = description.failure_reason or "no reason given"
        return f"certificate for {handle.domain} is {description.status}: {reason}"
