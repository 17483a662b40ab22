"""Configuration management for static-edge."""

from .models import (
    PollingConfig,
    PollingSettings,
    RetryConfig,
    SiteConfig,
    StaticEdgeConfig,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "PollingConfig",
    "PollingSettings",
    "RetryConfig",
    "SiteConfig",
    "StaticEdgeConfig",
    "Config",
    "ConfigValidationError",
]
