"""Loading of ``static-edge.yaml`` and resolution of per-site settings."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from static_edge.utils.errors import ConfigurationError
from static_edge.utils.logging import get_logger
from .models import PollingSettings, RetryConfig, SiteConfig, StaticEdgeConfig, normalize_domain

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = "static-edge.yaml"


def _located(error: ValidationError, prefix: Optional[List[Any]] = None) -> List[Dict]:
    return [{"loc": list(prefix or []) + list(item["loc"]), "msg": item["msg"]} for item in error.errors()]


class ConfigValidationError(ConfigurationError):
    """The configuration file or a command line override failed validation.

    ``errors`` holds one ``{"loc": [...], "msg": ...}`` entry per problem.
    """

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.errors = errors or []
        super().__init__(message)

    def __str__(self) -> str:
        lines = [self.message]
        if self.errors:
            lines.append("")
        for problem in self.errors:
            where = " -> ".join(str(part) for part in problem.get("loc", [])) or "(document)"
            lines.append(f"  - {where}: {problem.get('msg', 'invalid value')}")
        return "\n".join(lines)

    def to_user_message(self) -> str:
        return f"{self.severity.value.upper()}: {self}"


class Config:
    """Settings for a command run.

    The file is optional. Without one every setting keeps its default and a
    site can still be described entirely by command line options.

    Example:
        config = Config("static-edge.yaml").load()
        site = config.get_site("example.com", bucket="example-web")
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration.

        Args:
            config_path: Path given with ``--config``; when omitted
                ``static-edge.yaml`` in the working directory is read if present
        """
        self.explicit = config_path is not None
        self.config_path = Path(config_path or DEFAULT_CONFIG_FILE)
        self.settings = StaticEdgeConfig()

    def load(self) -> "Config":
        """Read and validate the file.

        Returns:
            Self, so construction and loading chain

        Raises:
            ConfigurationError: An explicitly named file does not exist
            ConfigValidationError: The YAML is malformed or fails validation
        """
        if not self.config_path.exists():
            if self.explicit:
                raise ConfigurationError(f"Configuration file not found: {self.config_path}")
            logger.debug(f"{self.config_path} not present; using defaults")
            return self

        try:
            document = yaml.safe_load(self.config_path.read_text())
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"{self.config_path} is not valid YAML: {e}")

        try:
            self.settings = StaticEdgeConfig.model_validate(document or {})
        except ValidationError as e:
            problems = _located(e)
            raise ConfigValidationError(f"{self.config_path} has {len(problems)} invalid setting(s)", problems)

        logger.debug(f"Loaded {len(self.settings.sites)} site(s) from {self.config_path}")
        return self

    @property
    def polling(self) -> PollingSettings:
        return self.settings.polling

    @property
    def retry(self) -> RetryConfig:
        return self.settings.retry

    @property
    def max_conflict_retries(self) -> int:
        return self.settings.max_conflict_retries

    @property
    def state_dir(self) -> str:
        return self.settings.state_dir

    def find_site(self, domain: str) -> Optional[SiteConfig]:
        wanted = normalize_domain(domain)
        return next((site for site in self.settings.sites if site.domain == wanted), None)

    def get_site(
        self,
        domain: str,
        bucket: Optional[str] = None,
        bucket_region: Optional[str] = None,
        distribution_id: Optional[str] = None,
    ) -> SiteConfig:
        """Settings for ``domain`` with any command line options layered on top.

        Raises:
            ConfigurationError: The domain is not configured and no bucket was given
            ConfigValidationError: An option holds an invalid value
        """
        configured = self.find_site(domain)
        fields: Dict[str, Any] = configured.model_dump() if configured else {"domain": domain}
        for name, value in (("bucket", bucket), ("bucket_region", bucket_region),
                            ("distribution_id", distribution_id)):
            if value is not None:
                fields[name] = value

        if not fields.get("bucket"):
            raise ConfigurationError(
                f"No site configured for {domain}",
                suggestions=[
                    f"Add {domain} to the sites list in {self.config_path}",
                    "Or pass --bucket (and optionally --bucket-region) on the command line",
                ],
            )

        try:
            return SiteConfig(**fields)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid settings for {domain}", _located(e))
