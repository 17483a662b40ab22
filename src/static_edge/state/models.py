"""Checkpoint and managed-resource data models."""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from static_edge.utils.errors import CheckpointError


class Stage(str, Enum):
    """Provisioning stages in execution order. ``DONE`` is terminal."""

    START = "Start"
    ZONE_READY = "ZoneReady"
    CERT_REQUESTED = "CertRequested"
    VALIDATION_RECORDS_PUBLISHED = "ValidationRecordsPublished"
    CERT_ISSUED = "CertIssued"
    DISTRIBUTION_ALIASED = "DistributionAliased"
    DNS_FINALIZED = "DnsFinalized"
    HARDENED = "Hardened"
    DONE = "Done"

    @property
    def position(self) -> int:
        """Position of the stage in the pipeline."""
        return list(Stage).index(self)

    def next(self) -> Optional["Stage"]:
        """Stage that follows this one, or None for ``DONE``."""
        stages = list(Stage)
        position = stages.index(self)
        return stages[position + 1] if position + 1 < len(stages) else None

    def is_before(self, other: "Stage") -> bool:
        return self.position < other.position


class ResourceKind(str, Enum):
    """Kinds of provider resources the pipeline manages."""

    ZONE = "Zone"
    CERTIFICATE = "Certificate"
    DISTRIBUTION = "Distribution"
    ACCESS_CONTROL = "AccessControl"
    BUCKET = "Bucket"


class ResourceStatus(str, Enum):
    """Coarse lifecycle status of a managed resource."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    MISSING = "missing"
    UNKNOWN = "unknown"


class ManagedResource(BaseModel):
    """A provider resource referenced by the checkpoint."""

    kind: ResourceKind
    identifier: Optional[str] = Field(None, description="Provider-assigned id; never fabricated")
    status: ResourceStatus = ResourceStatus.UNKNOWN
    details: Dict[str, Any] = Field(default_factory=dict)


# Checkpoint attribute that holds the identifier for each resource kind
IDENTIFIER_FIELDS = {
    ResourceKind.ZONE: "hosted_zone_id",
    ResourceKind.CERTIFICATE: "certificate_arn",
    ResourceKind.DISTRIBUTION: "distribution_id",
    ResourceKind.ACCESS_CONTROL: "access_control_id",
}


class Checkpoint(BaseModel):
    """Persisted progress of the provisioning pipeline for one domain.

    The stage only moves forward and an identifier, once recorded, is never
    cleared or replaced. Both rules are enforced by ``advance`` and
    ``record``; callers should not assign the attributes directly.
    """

    model_config = ConfigDict(populate_by_name=True)

    domain: str = Field(..., min_length=1)
    hosted_zone_id: Optional[str] = Field(None, alias="hostedZoneId")
    certificate_arn: Optional[str] = Field(None, alias="certificateArn")
    distribution_id: Optional[str] = Field(None, alias="distributionId")
    access_control_id: Optional[str] = Field(None, alias="accessControlId")
    stage: Stage = Stage.START

    @property
    def is_done(self) -> bool:
        return self.stage == Stage.DONE

    def advance(self, stage: Stage) -> None:
        """Move to ``stage``.

        Raises:
            CheckpointError: If ``stage`` comes before the current stage
        """
        if stage.is_before(self.stage):
            raise CheckpointError(
                f"Refusing to move {self.domain} back from {self.stage.value} to {stage.value}"
            )
        self.stage = stage

    def record(self, kind: ResourceKind, identifier: str) -> bool:
        """Store the identifier of a resource.

        Args:
            kind: Resource kind the identifier belongs to
            identifier: Provider-assigned identifier

        Returns:
            True if the checkpoint changed, False if it already held this id

        Raises:
            CheckpointError: If the identifier is empty or differs from the stored one
        """
        if not identifier:
            raise CheckpointError(f"Cannot record an empty {kind.value} identifier for {self.domain}")

        field_name = IDENTIFIER_FIELDS[kind]
        current = getattr(self, field_name)
        if current == identifier:
            return False
        if current is not None:
            raise CheckpointError(
                f"{kind.value} for {self.domain} is already recorded as {current}; "
                f"refusing to replace it with {identifier}"
            )
        setattr(self, field_name, identifier)
        return True

    def identifier(self, kind: ResourceKind) -> Optional[str]:
        return getattr(self, IDENTIFIER_FIELDS[kind])

    def resources(self) -> List[Tuple[ResourceKind, Optional[str]]]:
        """All identifier slots in pipeline order."""
        return [(kind, self.identifier(kind)) for kind in IDENTIFIER_FIELDS]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the on-disk JSON shape (camelCase keys)."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls.model_validate(data)
