"""Tests for ACM certificate issuing."""

import pytest

from static_edge.provisioners.certificate import CertificateHandle, CertificateIssuer, idempotency_token
from static_edge.provisioners.dns import DnsSynchronizer
from static_edge.utils.polling import PollStatus


@pytest.fixture
def dns(clients, retry_strategy):
    return DnsSynchronizer(clients, retry_strategy)


@pytest.fixture
def issuer(clients, dns, polling, retry_strategy):
    return CertificateIssuer(clients, dns, polling=polling, retry_strategy=retry_strategy)


@pytest.fixture
def zone_id(dns):
    zone_id, _ = dns.ensure_zone("example.com")
    return zone_id


class TestIdempotencyToken:
    def test_stable_and_order_independent(self):
        token = idempotency_token("example.com", ["www.example.com", "blog.example.com"])
        assert token == idempotency_token("example.com", ["blog.example.com", "www.example.com"])
        assert len(token) == 32
        assert token.isalnum()

    def test_differs_per_name_set(self):
        assert idempotency_token("example.com", ["www.example.com"]) != idempotency_token("example.com", [])


class TestIssue:
    def test_requests_dns_validated_certificate(self, issuer, clients):
        handle = issuer.issue("example.com", ["www.example.com"])

        certificate = clients.acm.certificates[handle.arn]
        assert handle.created is True
        assert certificate["DomainName"] == "example.com"
        assert certificate["SubjectAlternativeNames"] == ["example.com", "www.example.com"]
        assert handle.names == ["example.com", "www.example.com"]

    def test_apex_in_alternative_names_is_ignored(self, issuer):
        handle = issuer.issue("example.com", ["example.com", "www.example.com"])
        assert handle.alternative_names == ["www.example.com"]

    def test_reuses_pending_certificate(self, issuer, clients):
        first = issuer.issue("example.com", ["www.example.com"])
        second = issuer.issue("example.com", ["www.example.com"])

        assert second.arn == first.arn
        assert second.created is False
        assert clients.acm.calls("request_certificate") == 1

    def test_prefers_issued_certificate(self, issuer, clients):
        clients.acm.add_certificate("example.com", ["example.com", "www.example.com"], status="PENDING_VALIDATION")
        issued = clients.acm.add_certificate("example.com", ["example.com", "www.example.com"])

        assert issuer.issue("example.com", ["www.example.com"]).arn == issued

    def test_ignores_certificate_missing_names(self, issuer, clients):
        partial = clients.acm.add_certificate("example.com", ["example.com"])

        handle = issuer.issue("example.com", ["www.example.com"])

        assert handle.arn != partial
        assert handle.created is True


class TestValidation:
    def test_publishes_validation_records(self, issuer, clients, zone_id):
        handle = issuer.issue("example.com", ["www.example.com"])

        result = issuer.publish_validation_records(handle, zone_id)

        assert result.is_success()
        for name in ("example.com", "www.example.com"):
            expected = clients.acm.validation_record(name)
            record = clients.route53.find_record(expected["Name"], "CNAME")
            assert record["ResourceRecords"] == [{"Value": expected["Value"]}]

    def test_waits_for_records_to_appear(self, issuer, clients, zone_id):
        clients.acm.records_delay = 2
        handle = issuer.issue("example.com", ["www.example.com"])

        assert issuer.publish_validation_records(handle, zone_id).is_success()

    def test_records_never_appear(self, issuer, clients, zone_id):
        clients.acm.records_delay = 100
        handle = issuer.issue("example.com", ["www.example.com"])

        result = issuer.publish_validation_records(handle, zone_id)

        assert result.status == PollStatus.TIMED_OUT
        assert clients.route53.calls("change_resource_record_sets") == 0

    def test_republishing_is_harmless(self, issuer, clients, zone_id):
        handle = issuer.issue("example.com", ["www.example.com"])

        assert issuer.publish_validation_records(handle, zone_id).is_success()
        assert issuer.publish_validation_records(handle, zone_id).is_success()

    def test_issued_after_records_published(self, issuer, zone_id):
        handle = issuer.issue("example.com", ["www.example.com"])
        issuer.publish_validation_records(handle, zone_id)

        result = issuer.await_issued(handle)

        assert result.is_success()
        assert result.value == handle.arn

    def test_failed_certificate(self, issuer, clients, zone_id):
        clients.acm.failure_reason = "CAA_ERROR"
        handle = issuer.issue("example.com", ["www.example.com"])
        issuer.publish_validation_records(handle, zone_id)

        result = issuer.await_issued(handle)

        assert result.is_failed()
        assert "CAA_ERROR" in result.reason

    def test_not_issued_without_records(self, issuer):
        handle = issuer.issue("example.com", ["www.example.com"])
        assert issuer.await_issued(handle).is_timed_out()

    def test_describe_collapses_shared_records(self, issuer, clients):
        handle = CertificateHandle(arn=clients.acm.add_certificate("example.com", ["example.com"]),
                                   domain="example.com")
        certificate = clients.acm.certificates[handle.arn]
        certificate["SubjectAlternativeNames"] = ["example.com", "example.com"]

        description = issuer.describe(handle)

        assert len(description.validation_records) == 1
        assert description.is_issued
