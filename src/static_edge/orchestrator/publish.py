"""Uploads a built site directory and refreshes the CDN cache."""

import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from static_edge.config.models import SiteConfig
from static_edge.provisioners.distribution import DistributionConfigurator
from static_edge.provisioners.storage import StorageManager
from static_edge.utils.errors import ConfigurationError, PermanentProviderError
from static_edge.utils.logging import get_logger

logger = get_logger(__name__)

SHORT_CACHE = "public, max-age=3600"
LONG_CACHE = "public, max-age=31536000, immutable"

# Cache-Control and Content-Type per file extension
ASSET_RULES: Dict[str, Dict[str, str]] = {
    ".html": {"cache_control": "public, max-age=3600, must-revalidate", "content_type": "text/html; charset=utf-8"},
    ".css": {"cache_control": LONG_CACHE, "content_type": "text/css; charset=utf-8"},
    ".js": {"cache_control": LONG_CACHE, "content_type": "application/javascript; charset=utf-8"},
    ".png": {"cache_control": LONG_CACHE, "content_type": "image/png"},
    ".jpg": {"cache_control": LONG_CACHE, "content_type": "image/jpeg"},
    ".ico": {"cache_control": LONG_CACHE, "content_type": "image/x-icon"},
    ".xml": {"cache_control": SHORT_CACHE, "content_type": "application/xml; charset=utf-8"},
    ".txt": {"cache_control": SHORT_CACHE, "content_type": "text/plain; charset=utf-8"},
}

HTML_SECURITY_METADATA = {
    "x-frame-options": "DENY",
    "x-content-type-options": "nosniff",
    "referrer-policy": "strict-origin-when-cross-origin",
}

SKIPPED_DIRECTORIES = frozenset({"node_modules", ".git", ".static-edge", "__pycache__"})
SKIPPED_FILES = frozenset({
    "package.json",
    "package-lock.json",
    "README.md",
    "static-edge.yaml",
    ".DS_Store",
})

# Objects confirmed with a HEAD request after upload, when part of the site
VERIFIED_KEYS = ("index.html", "robots.txt", "sitemap.xml")


@dataclass
class UploadItem:
    """One file to upload."""
    path: str
    key: str
    content_type: str
    cache_control: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class PublishResult:
    """Outcome of a publish run."""
    bucket: str
    uploaded: List[str] = field(default_factory=list)
    invalidation_id: Optional[str] = None
    bucket_created: bool = False
    website_enabled: bool = False
    verified: List[str] = field(default_factory=list)


def upload_settings(path: str) -> Dict[str, str]:
    """Cache-Control and Content-Type for a file, by extension."""
    extension = os.path.splitext(path)[1].lower()
    rule = ASSET_RULES.get(extension)
    if rule:
        return dict(rule)
    content_type, _ = mimetypes.guess_type(path)
    return {"cache_control": SHORT_CACHE, "content_type": content_type or "application/octet-stream"}


class ContentPublisher:
    """Publishes site content to the bucket behind the distribution."""

    def __init__(self, storage: StorageManager, distribution: DistributionConfigurator):
        self.storage = storage
        self.distribution = distribution

    def collect(self, directory: str) -> List[UploadItem]:
        """Walk a directory and build the upload list.

        Tooling directories and files are skipped. Keys use forward slashes
        relative to ``directory``.
        """
        root = Path(directory)
        items = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(name for name in dirnames if name not in SKIPPED_DIRECTORIES)
            for filename in sorted(filenames):
                if filename in SKIPPED_FILES:
                    continue
                path = Path(dirpath) / filename
                key = path.relative_to(root).as_posix()
                settings = upload_settings(filename)
                items.append(
                    UploadItem(
                        path=str(path),
                        key=key,
                        content_type=settings["content_type"],
                        cache_control=settings["cache_control"],
                        metadata=dict(HTML_SECURITY_METADATA) if key.endswith(".html") else {},
                    )
                )
        return items

    def publish(
        self,
        site: SiteConfig,
        directory: str,
        distribution_id: Optional[str] = None
    ) -> PublishResult:
        """Upload a directory to the site bucket and invalidate the CDN.

        Args:
            site: Site whose bucket receives the files
            directory: Built site directory
            distribution_id: Distribution to invalidate; skipped when None

        Returns:
            PublishResult

        Raises:
            ConfigurationError: If the directory does not exist or is empty
            PermanentProviderError: If an uploaded entry point cannot be read back
        """
        if not os.path.isdir(directory):
            raise ConfigurationError(f"Site directory not found: {directory}")

        items = self.collect(directory)
        if not items:
            raise ConfigurationError(f"No files to publish in {directory}")

        _, created = self.storage.ensure_bucket(site.bucket)
        result = PublishResult(bucket=site.bucket, bucket_created=created)
        if created:
            # a new bucket has not been hardened yet; serve it until it is
            result.website_enabled = self.storage.enable_website(site.bucket)

        for item in items:
            self.storage.upload_file(
                site.bucket,
                item.key,
                item.path,
                content_type=item.content_type,
                cache_control=item.cache_control,
                metadata=item.metadata or None,
            )
            result.uploaded.append(item.key)
        logger.info(f"Uploaded {len(result.uploaded)} file(s) to s3://{site.bucket}")
        result.verified = self.verify(site.bucket, result.uploaded)

        if distribution_id:
            result.invalidation_id = self.distribution.invalidate(distribution_id, ["/*"])
        else:
            logger.info("No distribution recorded yet; skipping cache invalidation")

        return result

    def verify(self, bucket: str, uploaded: List[str]) -> List[str]:
        """Confirm the entry point and crawler files are readable in the bucket.

        Returns:
            Keys that were checked

        Raises:
            PermanentProviderError: If an uploaded key cannot be found
        """
        keys = [key for key in VERIFIED_KEYS if key in uploaded]
        missing = [key for key in keys if not self.storage.object_exists(bucket, key)]
        if missing:
            raise PermanentProviderError(
                f"Uploaded objects missing from s3://{bucket}: {', '.join(missing)}",
                suggestions=["Re-run publish; S3 may have rejected part of the upload"],
            )
        if keys:
            logger.info(f"Verified {', '.join(keys)} in s3://{bucket}")
        return keys
