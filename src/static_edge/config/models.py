"""Pydantic models for configuration schema."""

import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

DOMAIN_PATTERN = re.compile(r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")

VALID_REGIONS = [
    "us-east-1",
    "us-east-2",
    "us-west-1",
    "us-west-2",
    "eu-west-1",
    "eu-west-2",
    "eu-west-3",
    "eu-central-1",
    "eu-north-1",
    "ap-northeast-1",
    "ap-northeast-2",
    "ap-northeast-3",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-south-1",
    "sa-east-1",
    "ca-central-1",
]


def normalize_domain(value: str) -> str:
    """Lower-case a domain and strip a trailing dot."""
    return value.strip().lower().rstrip(".")


class PollingConfig(BaseModel):
    """Bounds for one kind of wait."""

    interval: float = Field(..., ge=0, description="Seconds between checks")
    max_attempts: int = Field(..., ge=1, description="Upper bound on the number of checks")


class PollingSettings(BaseModel):
    """Polling bounds for every eventually-consistent resource."""

    dns: PollingConfig = Field(default_factory=lambda: PollingConfig(interval=10, max_attempts=60))
    certificate: PollingConfig = Field(
        default_factory=lambda: PollingConfig(interval=30, max_attempts=30)
    )
    validation_records: PollingConfig = Field(
        default_factory=lambda: PollingConfig(interval=5, max_attempts=12)
    )
    distribution: PollingConfig = Field(
        default_factory=lambda: PollingConfig(interval=30, max_attempts=60)
    )


class RetryConfig(BaseModel):
    """Call-site retry settings for transient provider errors."""

    max_retries: int = Field(3, ge=0, le=10)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(30.0, ge=0)

    @model_validator(mode="after")
    def validate_delays(self):
        """Validate that the delay cap is not below the base delay."""
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self


class SiteConfig(BaseModel):
    """One static site: the domain and the bucket that holds its content."""

    domain: str = Field(..., min_length=1)
    bucket: str = Field(..., min_length=3, max_length=63, pattern="^[a-z0-9][a-z0-9.-]+[a-z0-9]$")
    bucket_region: str = Field("us-east-1", min_length=1)
    distribution_id: Optional[str] = Field(
        None, pattern="^E[A-Z0-9]+$", description="Existing distribution; created when absent"
    )
    alternative_names: Optional[List[str]] = Field(
        None, description="Extra certificate names; defaults to www.<domain>"
    )

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        """Validate and normalize the apex domain."""
        v = normalize_domain(v)
        if not DOMAIN_PATTERN.match(v):
            raise ValueError(f"Invalid domain name: {v}")
        return v

    @field_validator("bucket_region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate AWS region format."""
        if v not in VALID_REGIONS:
            raise ValueError(
                f"Invalid AWS region: {v}. Must be one of: {', '.join(VALID_REGIONS)}"
            )
        return v

    @field_validator("alternative_names")
    @classmethod
    def validate_alternative_names(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        names = []
        for name in v:
            name = normalize_domain(name)
            if not DOMAIN_PATTERN.match(name.replace("*.", "", 1)):
                raise ValueError(f"Invalid alternative name: {name}")
            if name not in names:
                names.append(name)
        return names

    @model_validator(mode="after")
    def validate_names_under_domain(self):
        """Alternative names must be subdomains of the site domain."""
        for name in self.alternative_names or []:
            if name == self.domain or not name.endswith(f".{self.domain}"):
                raise ValueError(f"Alternative name {name} must be a subdomain of {self.domain}")
        return self

    @property
    def www_name(self) -> str:
        return f"www.{self.domain}"

    def certificate_names(self) -> List[str]:
        """Subject alternative names requested alongside the apex domain."""
        if self.alternative_names is None:
            return [self.www_name]
        return list(self.alternative_names)


class StaticEdgeConfig(BaseModel):
    """Top-level configuration file schema."""

    sites: List[SiteConfig] = Field(default_factory=list)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    max_conflict_retries: int = Field(3, ge=0, le=10)
    state_dir: str = Field(".static-edge/state", min_length=1)

    @field_validator("sites")
    @classmethod
    def validate_unique_domains(cls, v: List[SiteConfig]) -> List[SiteConfig]:
        """Validate that each domain is configured once."""
        seen = set()
        for site in v:
            if site.domain in seen:
                raise ValueError(f"Duplicate site domain: {site.domain}")
            seen.add(site.domain)
        return v
