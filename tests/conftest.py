"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from static_edge.config.models import PollingConfig, PollingSettings, RetryConfig, SiteConfig
from static_edge.orchestrator.pipeline import PipelineDriver
from static_edge.state.checkpoint import CheckpointStore
from static_edge.utils.retry import RetryStrategy

from fakes import FakeClientManager


@pytest.fixture
def clients() -> FakeClientManager:
    """Fake AWS accounts with an existing website bucket."""
    manager = FakeClientManager()
    manager.s3.add_bucket("example-web", region="us-west-2", website=True)
    return manager


@pytest.fixture
def store(tmp_path: Path) -> CheckpointStore:
    return CheckpointStore(str(tmp_path / "state"))


@pytest.fixture
def site() -> SiteConfig:
    return SiteConfig(domain="example.com", bucket="example-web", bucket_region="us-west-2")


@pytest.fixture
def polling() -> PollingSettings:
    """Polling bounds with no sleeping."""
    return PollingSettings(
        dns=PollingConfig(interval=0, max_attempts=5),
        certificate=PollingConfig(interval=0, max_attempts=5),
        validation_records=PollingConfig(interval=0, max_attempts=5),
        distribution=PollingConfig(interval=0, max_attempts=5),
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_retries=2, base_delay=0, max_delay=0)


@pytest.fixture
def retry_strategy() -> RetryStrategy:
    return RetryStrategy(max_retries=2, base_delay=0, max_delay=0, jitter=False)


@pytest.fixture
def make_driver(clients, store, polling, retry_config):
    """Factory for a PipelineDriver wired to the fakes."""
    def factory(site_config: SiteConfig, **kwargs) -> PipelineDriver:
        kwargs.setdefault("polling", polling)
        kwargs.setdefault("retry", retry_config)
        return PipelineDriver(site=site_config, clients=clients, store=store, **kwargs)

    return factory
