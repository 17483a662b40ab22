"""Tests for the read-only status report."""

from static_edge.orchestrator.status import StatusReporter
from static_edge.state.models import Checkpoint, ResourceKind, ResourceStatus, Stage


class TestStatusReporter:
    def test_without_checkpoint(self, clients, store):
        report = StatusReporter(clients, store).report("example.com")

        assert report.has_checkpoint is False
        assert [resource.kind for resource in report.resources] == [
            ResourceKind.ZONE,
            ResourceKind.CERTIFICATE,
            ResourceKind.DISTRIBUTION,
            ResourceKind.ACCESS_CONTROL,
        ]
        assert all(resource.status == ResourceStatus.PENDING for resource in report.resources)

    def test_after_full_run(self, make_driver, site, clients, store, retry_strategy):
        make_driver(site).run()
        writes = len(clients.writes())

        report = StatusReporter(clients, store, site=site, retry_strategy=retry_strategy).report("example.com")

        assert report.stage == Stage.DONE
        assert [resource.kind for resource in report.resources][0] == ResourceKind.BUCKET
        assert all(resource.status == ResourceStatus.READY for resource in report.resources)
        assert len(report.resource(ResourceKind.ZONE).details["name_servers"]) == 4
        assert report.resource(ResourceKind.DISTRIBUTION).details["aliases"] == ["example.com", "www.example.com"]
        assert len(clients.writes()) == writes

    def test_partial_progress(self, clients, store, retry_strategy):
        arn = clients.acm.add_certificate("example.com", ["example.com"], status="PENDING_VALIDATION")
        zone_id = clients.route53.add_zone("example.com")
        store.save(Checkpoint(domain="example.com", hosted_zone_id=zone_id, certificate_arn=arn,
                              stage=Stage.CERT_REQUESTED))

        report = StatusReporter(clients, store, retry_strategy=retry_strategy).report("example.com")

        assert report.stage == Stage.CERT_REQUESTED
        assert report.resource(ResourceKind.ZONE).status == ResourceStatus.READY
        assert report.resource(ResourceKind.CERTIFICATE).status == ResourceStatus.PENDING
        assert report.resource(ResourceKind.DISTRIBUTION).status == ResourceStatus.PENDING
        assert report.resource(ResourceKind.DISTRIBUTION).identifier is None

    def test_deleted_resources_are_missing(self, clients, store, retry_strategy):
        store.save(Checkpoint(
            domain="example.com",
            hosted_zone_id="ZGONE",
            certificate_arn="arn:aws:acm:us-east-1:123456789012:certificate/gone",
            distribution_id="EGONE",
            access_control_id="OACGONE",
            stage=Stage.DONE,
        ))

        report = StatusReporter(clients, store, retry_strategy=retry_strategy).report("example.com")

        assert all(resource.status == ResourceStatus.MISSING for resource in report.resources)

    def test_failed_certificate(self, clients, store, retry_strategy):
        arn = clients.acm.add_certificate("example.com", ["example.com"], status="FAILED")
        clients.acm.certificates[arn]["FailureReason"] = "CAA_ERROR"
        store.save(Checkpoint(domain="example.com", certificate_arn=arn, stage=Stage.VALIDATION_RECORDS_PUBLISHED))

        report = StatusReporter(clients, store, retry_strategy=retry_strategy).report("example.com")

        certificate = report.resource(ResourceKind.CERTIFICATE)
        assert certificate.status == ResourceStatus.FAILED
        assert certificate.details["failure_reason"] == "CAA_ERROR"

    def test_configured_distribution_without_checkpoint(self, clients, store, site, retry_strategy):
        clients.cloudfront.add_website_distribution("E15LH122NSBXHW", "example-web", "us-west-2")
        site = site.model_copy(update={"distribution_id": "E15LH122NSBXHW"})

        report = StatusReporter(clients, store, site=site, retry_strategy=retry_strategy).report("example.com")

        distribution = report.resource(ResourceKind.DISTRIBUTION)
        assert distribution.identifier == "E15LH122NSBXHW"
        assert distribution.status == ResourceStatus.READY
        assert report.resource(ResourceKind.BUCKET).status == ResourceStatus.READY
