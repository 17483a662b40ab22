"""Tests for origin access control migration and bucket lockdown."""

import json

import pytest

from static_edge.provisioners.base import ChangeType
from static_edge.provisioners.distribution import DistributionConfigurator
from static_edge.provisioners.hardening import SecurityHardener, access_control_name
from static_edge.provisioners.storage import (
    StorageManager,
    bucket_origin_hosts,
    cloudfront_read_policy,
    public_read_policy,
    website_endpoint,
)
from static_edge.utils.errors import PermanentProviderError, PollTimeout

DISTRIBUTION_ARN = "arn:aws:cloudfront::123456789012:distribution/E15LH122NSBXHW"


@pytest.fixture
def storage(clients, retry_strategy):
    return StorageManager(clients, "us-west-2", retry_strategy)


@pytest.fixture
def hardener(clients, polling, retry_strategy, storage):
    distribution = DistributionConfigurator(clients, polling=polling, retry_strategy=retry_strategy)
    return SecurityHardener(clients, distribution, storage, retry_strategy=retry_strategy)


@pytest.fixture
def distribution_id(clients):
    return clients.cloudfront.add_website_distribution("E15LH122NSBXHW", "example-web", "us-west-2")


class TestHarden:
    def test_steps_run_in_order(self, hardener, clients, distribution_id):
        seen = []
        result = hardener.harden(distribution_id, "example-web", "us-west-2", on_access_control=seen.append)

        assert seen == [result.access_control_id]
        assert result.access_control_created is True
        assert result.origin_change == ChangeType.UPDATE
        assert result.website_disabled is True

        operations = [op for _, op in clients.writes()]
        assert operations == [
            "create_origin_access_control",
            "update_distribution",
            "put_bucket_policy",
            "put_public_access_block",
            "delete_bucket_website",
        ]

    def test_policy_grants_only_the_distribution(self, hardener, clients, distribution_id):
        hardener.harden(distribution_id, "example-web", "us-west-2")

        policy = json.loads(clients.s3.buckets["example-web"]["policy"])
        assert policy == cloudfront_read_policy("example-web", DISTRIBUTION_ARN)
        assert policy["Statement"][0]["Resource"] == "arn:aws:s3:::example-web/*"

    def test_bucket_untouched_until_deployed(self, hardener, clients, distribution_id):
        clients.cloudfront.deploy_polls = 50

        with pytest.raises(PollTimeout):
            hardener.harden(distribution_id, "example-web", "us-west-2")

        bucket = clients.s3.buckets["example-web"]
        assert bucket["policy"] is None
        assert bucket["website"] is True

    def test_second_run_is_harmless(self, hardener, clients, distribution_id):
        first = hardener.harden(distribution_id, "example-web", "us-west-2")
        second = hardener.harden(
            distribution_id, "example-web", "us-west-2", access_control_id=first.access_control_id
        )

        assert second.access_control_created is False
        assert second.origin_change == ChangeType.NO_CHANGE
        assert second.website_disabled is False
        assert clients.cloudfront.calls("create_origin_access_control") == 1

    def test_reuses_access_control_by_name(self, hardener, clients, distribution_id):
        control_id, _ = hardener.ensure_access_control("example-web")

        result = hardener.harden(distribution_id, "example-web", "us-west-2")

        assert result.access_control_id == control_id
        assert result.access_control_created is False

    def test_missing_bucket_fails_after_migration(self, hardener, clients, distribution_id):
        del clients.s3.buckets["example-web"]

        with pytest.raises(PermanentProviderError) as excinfo:
            hardener.harden(distribution_id, "example-web", "us-west-2")
        assert excinfo.value.error_code == "NoSuchBucket"


class TestStorage:
    def test_website_endpoint(self):
        assert website_endpoint("site", "us-west-2") == "site.s3-website-us-west-2.amazonaws.com"
        assert website_endpoint("site", "eu-central-1") == "site.s3-website.eu-central-1.amazonaws.com"

    def test_access_control_name_is_bounded(self):
        assert access_control_name("example-web") == "example-web-oac"
        assert len(access_control_name("b" * 63)) <= 64

    def test_bucket_exists(self, storage):
        assert storage.bucket_exists("example-web") is True
        assert storage.bucket_exists("missing-bucket") is False

    def test_ensure_bucket(self, storage, clients):
        assert storage.ensure_bucket("example-web") == ("example-web", False)
        assert storage.ensure_bucket("new-bucket") == ("new-bucket", True)
        assert clients.s3.buckets["new-bucket"]["region"] == "us-west-2"

    def test_upload_file(self, storage, clients, tmp_path):
        path = tmp_path / "index.html"
        path.write_text("<h1>hi</h1>")

        storage.upload_file("example-web", "index.html", str(path), "text/html", "max-age=60", {"a": "b"})

        uploaded = clients.s3.buckets["example-web"]["objects"]["index.html"]
        assert uploaded["Body"] == b"<h1>hi</h1>"
        assert uploaded["ContentType"] == "text/html"
        assert uploaded["Metadata"] == {"a": "b"}

    def test_origin_hosts_are_exact(self):
        hosts = bucket_origin_hosts("example", "us-west-2")
        assert hosts == {
            "example.s3-website-us-west-2.amazonaws.com",
            "example.s3.us-west-2.amazonaws.com",
            "example.s3.amazonaws.com",
        }
        assert "example.com.s3.us-west-2.amazonaws.com" not in hosts

    def test_enable_website_on_new_bucket(self, storage, clients):
        storage.ensure_bucket("new-bucket")
        bucket = clients.s3.buckets["new-bucket"]
        assert bucket["website"] is False
        assert bucket["public_access_block"] is not None

        assert storage.enable_website("new-bucket") is True

        assert bucket["website"] is True
        assert bucket["website_config"]["ErrorDocument"] == {"Key": "index.html"}
        assert bucket["public_access_block"] is None
        assert json.loads(bucket["policy"]) == public_read_policy("new-bucket")

    def test_enable_website_is_idempotent(self, storage, clients):
        storage.ensure_bucket("new-bucket")
        storage.enable_website("new-bucket")
        writes = len(clients.writes())

        assert storage.enable_website("new-bucket") is False
        assert len(clients.writes()) == writes

    def test_object_exists(self, storage, clients, tmp_path):
        path = tmp_path / "robots.txt"
        path.write_text("User-agent: *")
        storage.upload_file("example-web", "robots.txt", str(path), "text/plain", "max-age=60")

        assert storage.object_exists("example-web", "robots.txt") is True
        assert storage.object_exists("example-web", "sitemap.xml") is False
