"""Resumable provisioning pipeline driven by the persisted checkpoint."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Type

from static_edge.config.models import PollingSettings, RetryConfig, SiteConfig
from static_edge.provisioners.certificate import CertificateHandle, CertificateIssuer
from static_edge.provisioners.distribution import DistributionConfigurator
from static_edge.provisioners.dns import DnsRecord, DnsSynchronizer
from static_edge.provisioners.hardening import SecurityHardener
from static_edge.provisioners.probe import ResourceProbe
from static_edge.provisioners.storage import StorageManager
from static_edge.state.checkpoint import CheckpointStore
from static_edge.state.models import Checkpoint, ResourceKind, Stage
from static_edge.utils.aws_client import AWSClientManager
from static_edge.utils.errors import (
    CheckpointLockError,
    ConfigurationMissing,
    ErrorContext,
    OptimisticConcurrencyConflict,
    PermanentProviderError,
    PollTimeout,
    ProvisioningError,
    ValidationTimeout,
    error_handler,
)
from static_edge.utils.logging import LogContext, get_logger
from static_edge.utils.polling import PollResult
from static_edge.utils.retry import RetryStrategy

logger = get_logger(__name__)


class PipelineStatus(Enum):
    """Overall outcome of a pipeline run."""
    SUCCESS = "success"
    NO_CHANGE = "no_change"
    FAILED = "failed"


@dataclass
class PipelineResult:
    """Result of one provisioning or hardening run."""

    domain: str
    status: PipelineStatus
    start_stage: Stage
    final_stage: Stage
    completed_stages: List[Stage] = field(default_factory=list)
    error: Optional[ProvisioningError] = None
    warnings: List[str] = field(default_factory=list)
    name_servers: List[str] = field(default_factory=list)
    endpoint: Optional[str] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        return self.status != PipelineStatus.FAILED

    def is_failed(self) -> bool:
        return self.status == PipelineStatus.FAILED


# Called with the stage that just completed and the stage now current
StageCallback = Callable[[Stage, Stage], None]


class PipelineDriver:
    """Walks one domain through the provisioning stages.

    The checkpoint's stage says what has already been done. Each transition
    runs one component operation; when it succeeds the stage advances and the
    checkpoint is saved before the next transition starts. New provider
    identifiers are saved as soon as they exist, so a failure in the middle
    of a stage never loses a created resource. Re-running after a failure
    resumes at the stage that failed.
    """

    def __init__(
        self,
        site: SiteConfig,
        clients: AWSClientManager,
        store: CheckpointStore,
        polling: Optional[PollingSettings] = None,
        retry: Optional[RetryConfig] = None,
        max_conflict_retries: int = 3,
        on_stage: Optional[StageCallback] = None
    ):
        """Initialize the driver.

        Args:
            site: Site being provisioned
            clients: Client manager for every AWS service
            store: Checkpoint repository
            polling: Bounds for every wait
            retry: Call-site retry settings for transient errors
            max_conflict_retries: Re-fetch attempts after a stale concurrency token
            on_stage: Progress callback invoked after every completed stage
        """
        self.site = site
        self.store = store
        self.polling = polling or PollingSettings()
        self.max_conflict_retries = max_conflict_retries
        self.on_stage = on_stage

        retry = retry or RetryConfig()
        retry_strategy = RetryStrategy.from_config(retry)
        probe = ResourceProbe()

        self.dns = DnsSynchronizer(clients, retry_strategy, probe=probe)
        self.certificates = CertificateIssuer(
            clients, self.dns, polling=self.polling, retry_strategy=retry_strategy, probe=probe
        )
        self.distribution = DistributionConfigurator(
            clients, polling=self.polling, retry_strategy=retry_strategy, probe=probe
        )
        self.storage = StorageManager(clients, site.bucket_region, retry_strategy, probe=probe)
        self.hardener = SecurityHardener(
            clients, self.distribution, self.storage, retry_strategy=retry_strategy, probe=probe
        )

        self._transitions: Dict[Stage, Callable[[Checkpoint], None]] = {
            Stage.START: self._ensure_zone,
            Stage.ZONE_READY: self._request_certificate,
            Stage.CERT_REQUESTED: self._publish_validation_records,
            Stage.VALIDATION_RECORDS_PUBLISHED: self._await_certificate,
            Stage.CERT_ISSUED: self._alias_distribution,
            Stage.DISTRIBUTION_ALIASED: self._finalize_dns,
            Stage.DNS_FINALIZED: self._harden,
            Stage.HARDENED: self._verify,
        }
        self._result: Optional[PipelineResult] = None

    @property
    def domain(self) -> str:
        return self.site.domain

    def run(self) -> PipelineResult:
        """Run or resume the pipeline until ``Done`` or the first failure.

        Returns:
            PipelineResult; failures are reported in it rather than raised
        """
        start_time = time.time()
        checkpoint: Optional[Checkpoint] = None
        result = PipelineResult(self.domain, PipelineStatus.SUCCESS, Stage.START, Stage.START)
        self._result = result

        with LogContext(domain=self.domain) as log_context:
            try:
                with self.store.lock(self.domain):
                    try:
                        checkpoint = self.store.load(self.domain) or Checkpoint(domain=self.domain)
                        result.start_stage = checkpoint.stage

                        if checkpoint.is_done:
                            self._verify_only(checkpoint, result)
                        else:
                            logger.info(f"Provisioning {self.domain} from stage {checkpoint.stage.value}")
                            self._run_stages(checkpoint, result, log_context)
                    except ProvisioningError as e:
                        self._fail(result, checkpoint, e)
            except CheckpointLockError as e:
                self._fail(result, None, e)

        if checkpoint is not None:
            result.final_stage = checkpoint.stage
        result.duration = time.time() - start_time
        return result

    def harden(self) -> PipelineResult:
        """Run only the hardener against an already provisioned distribution.

        The stage advances from ``DnsFinalized`` to ``Hardened``; at any other
        stage the checkpoint's stage is left alone.
        """
        start_time = time.time()
        checkpoint: Optional[Checkpoint] = None
        result = PipelineResult(self.domain, PipelineStatus.SUCCESS, Stage.START, Stage.START)
        self._result = result

        with LogContext(domain=self.domain, stage="harden"):
            try:
                with self.store.lock(self.domain):
                    try:
                        checkpoint = self.store.load(self.domain)
                        if checkpoint is None:
                            raise ConfigurationMissing(f"No checkpoint found for {self.domain}")
                        result.start_stage = checkpoint.stage
                        if not checkpoint.distribution_id:
                            raise ConfigurationMissing(
                                f"Checkpoint for {self.domain} has no distribution yet "
                                f"(stage {checkpoint.stage.value})"
                            )

                        self._with_conflict_retries(self._harden, checkpoint)
                        if checkpoint.stage == Stage.DNS_FINALIZED:
                            self._advance(checkpoint, Stage.HARDENED, result)
                    except ProvisioningError as e:
                        self._fail(result, checkpoint, e)
            except CheckpointLockError as e:
                self._fail(result, None, e)

        if checkpoint is not None:
            result.final_stage = checkpoint.stage
        result.duration = time.time() - start_time
        return result

    def _run_stages(self, checkpoint: Checkpoint, result: PipelineResult, log_context: LogContext) -> None:
        while not checkpoint.is_done:
            stage = checkpoint.stage
            log_context.update(stage=stage.value)
            stage_start = time.time()

            self._with_conflict_retries(self._transitions[stage], checkpoint)
            self._advance(checkpoint, stage.next(), result)

            logger.info(
                f"Completed {stage.value} -> {checkpoint.stage.value}",
                extra={"duration": round(time.time() - stage_start, 3)},
            )

        logger.info(f"Provisioning of {self.domain} is complete")

    def _advance(self, checkpoint: Checkpoint, stage: Stage, result: PipelineResult) -> None:
        previous = checkpoint.stage
        checkpoint.advance(stage)
        self.store.save(checkpoint)
        result.completed_stages.append(previous)
        if self.on_stage:
            self.on_stage(previous, stage)

    def _with_conflict_retries(self, transition: Callable[[Checkpoint], None], checkpoint: Checkpoint) -> None:
        for attempt in range(self.max_conflict_retries + 1):
            try:
                transition(checkpoint)
                return
            except OptimisticConcurrencyConflict as e:
                if attempt >= self.max_conflict_retries:
                    raise
                logger.warning(
                    f"Concurrent modification ({e.error_code}); re-fetching and retrying "
                    f"({attempt + 1}/{self.max_conflict_retries})"
                )

    def _fail(self, result: PipelineResult, checkpoint: Optional[Checkpoint], error: ProvisioningError) -> None:
        result.status = PipelineStatus.FAILED
        result.error = error
        error_handler.log_error(error)

        # Partial progress is kept; identifiers were saved as they were created
        if checkpoint is not None and not checkpoint.is_done and not isinstance(error, ConfigurationMissing):
            try:
                self.store.save(checkpoint)
            except ProvisioningError as save_error:
                logger.error(f"Could not persist checkpoint for {self.domain}: {save_error.message}")

    def _record(self, checkpoint: Checkpoint, kind: ResourceKind, identifier: str) -> None:
        if checkpoint.record(kind, identifier):
            self.store.save(checkpoint)
            logger.info(
                f"Recorded {kind.value} {identifier}",
                extra={"resource_kind": kind.value, "resource_id": identifier},
            )

    def _certificate(self, checkpoint: Checkpoint) -> CertificateHandle:
        return CertificateHandle(
            arn=self._require_id(checkpoint, ResourceKind.CERTIFICATE),
            domain=self.domain,
            alternative_names=self.site.certificate_names(),
        )

    def _require_id(self, checkpoint: Checkpoint, kind: ResourceKind) -> str:
        identifier = checkpoint.identifier(kind)
        if not identifier:
            raise ConfigurationMissing(
                f"Checkpoint for {self.domain} is at {checkpoint.stage.value} but has no {kind.value} identifier",
                suggestions=[f"Delete {self.store.state_dir / (self.domain + '.json')} and provision again"],
            )
        return identifier

    def _require(
        self,
        poll_result: PollResult,
        what: str,
        kind: ResourceKind,
        resource_id: Optional[str],
        timeout_error: Type[PollTimeout] = PollTimeout
    ):
        """Turn a non-successful wait into the matching error."""
        if poll_result.is_success():
            return poll_result.value

        context = ErrorContext(resource_kind=kind.value, resource_id=resource_id, operation=what)
        if poll_result.is_failed():
            raise PermanentProviderError(f"{what} failed: {poll_result.reason}", context=context)
        raise timeout_error(f"Timed out waiting for {what}: {poll_result.reason}", context=context)

    # Transitions

    def _ensure_zone(self, checkpoint: Checkpoint) -> None:
        zone_id = checkpoint.hosted_zone_id
        if zone_id is None:
            zone_id, _ = self.dns.ensure_zone(self.domain)
            self._record(checkpoint, ResourceKind.ZONE, zone_id)

        name_servers = self.dns.name_servers(zone_id)
        if self._result is not None:
            self._result.name_servers = name_servers
        logger.info(f"Delegate {self.domain} to: {', '.join(name_servers)}")

    def _request_certificate(self, checkpoint: Checkpoint) -> None:
        if checkpoint.certificate_arn is None:
            handle = self.certificates.issue(self.domain, self.site.certificate_names())
            self._record(checkpoint, ResourceKind.CERTIFICATE, handle.arn)

    def _publish_validation_records(self, checkpoint: Checkpoint) -> None:
        zone_id = self._require_id(checkpoint, ResourceKind.ZONE)
        handle = self._certificate(checkpoint)
        poll_result = self.certificates.publish_validation_records(handle, zone_id)
        self._require(poll_result, "certificate validation records", ResourceKind.CERTIFICATE, handle.arn)

    def _await_certificate(self, checkpoint: Checkpoint) -> None:
        handle = self._certificate(checkpoint)
        poll_result = self.certificates.await_issued(handle)
        self._require(
            poll_result, "certificate issuance", ResourceKind.CERTIFICATE, handle.arn,
            timeout_error=ValidationTimeout,
        )

    def _alias_distribution(self, checkpoint: Checkpoint) -> None:
        distribution_id = checkpoint.distribution_id
        if distribution_id is None:
            if self.site.distribution_id:
                distribution_id = self.site.distribution_id
            else:
                distribution_id, _ = self.distribution.ensure_distribution(
                    self.domain, self.site.bucket, self.site.bucket_region
                )
            self._record(checkpoint, ResourceKind.DISTRIBUTION, distribution_id)
        elif self.site.distribution_id and self.site.distribution_id != distribution_id:
            logger.warning(
                f"Configured distribution {self.site.distribution_id} differs from the checkpoint; "
                f"using {distribution_id}"
            )

        # the website origin serves traffic until hardening swaps it out
        if self.distribution.uses_website_origin(distribution_id, self.site.bucket, self.site.bucket_region):
            self.storage.enable_website(self.site.bucket)

        certificate_arn = self._require_id(checkpoint, ResourceKind.CERTIFICATE)
        self.distribution.apply_alias(
            distribution_id, self.domain, certificate_arn, self.site.certificate_names()
        )
        poll_result = self.distribution.await_deployed(distribution_id)
        endpoint = self._require(poll_result, "distribution deployment", ResourceKind.DISTRIBUTION, distribution_id)
        if self._result is not None:
            self._result.endpoint = endpoint

    def _finalize_dns(self, checkpoint: Checkpoint) -> None:
        zone_id = self._require_id(checkpoint, ResourceKind.ZONE)
        distribution_id = self._require_id(checkpoint, ResourceKind.DISTRIBUTION)

        poll_result = self.distribution.await_deployed(distribution_id)
        endpoint = self._require(poll_result, "distribution deployment", ResourceKind.DISTRIBUTION, distribution_id)
        if self._result is not None:
            self._result.endpoint = endpoint

        records = [DnsRecord.cloudfront_alias(self.domain, endpoint)]
        for name in self.site.certificate_names():
            if not name.startswith("*."):
                records.append(DnsRecord.cname(name, endpoint))

        change = self.dns.upsert(zone_id, records, comment=f"Point {self.domain} at CloudFront")
        poll_result = self.dns.await_propagation(change, self.polling.dns)
        self._require(poll_result, "DNS propagation", ResourceKind.ZONE, zone_id)

    def _harden(self, checkpoint: Checkpoint) -> None:
        distribution_id = self._require_id(checkpoint, ResourceKind.DISTRIBUTION)
        hardening = self.hardener.harden(
            distribution_id,
            self.site.bucket,
            self.site.bucket_region,
            access_control_id=checkpoint.access_control_id,
            on_access_control=lambda access_control_id: self._record(
                checkpoint, ResourceKind.ACCESS_CONTROL, access_control_id
            ),
        )
        if self._result is not None:
            self._result.endpoint = hardening.distribution_domain

    def _verify(self, checkpoint: Checkpoint) -> None:
        problems = self._check_distribution(checkpoint)
        if problems:
            distribution_id = checkpoint.distribution_id
            raise PermanentProviderError(
                f"Distribution {distribution_id} does not match the provisioned state: {'; '.join(problems)}",
                context=ErrorContext(
                    resource_kind=ResourceKind.DISTRIBUTION.value,
                    resource_id=distribution_id,
                    operation="verify",
                ),
                suggestions=["Check for manual changes to the distribution in the CloudFront console"],
            )

    def _check_distribution(self, checkpoint: Checkpoint) -> List[str]:
        return self.distribution.verify(
            self._require_id(checkpoint, ResourceKind.DISTRIBUTION),
            self.domain,
            self._require_id(checkpoint, ResourceKind.CERTIFICATE),
            self.site.certificate_names(),
        )

    def _verify_only(self, checkpoint: Checkpoint, result: PipelineResult) -> None:
        """Read-only check of a finished site. Never writes."""
        logger.info(f"{self.domain} is already provisioned; verifying")
        result.status = PipelineStatus.NO_CHANGE
        result.warnings = self._check_distribution(checkpoint)
        for warning in result.warnings:
            logger.warning(f"Drift detected: {warning}")
