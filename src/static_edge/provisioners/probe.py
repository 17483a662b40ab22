"""Create-or-reuse wrapper around a single creation call."""

from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional, Tuple

from static_edge.state.models import ResourceKind
from static_edge.utils.errors import (
    AlreadyExistsConflict,
    ErrorContext,
    PermanentProviderError,
    ProvisioningError,
)
from static_edge.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ResourceDescriptor:
    """How to create a resource and how to find it if it already exists.

    Attributes:
        kind: Kind of resource being ensured
        name: Human-readable name used in logs and errors
        create: Creates the resource and returns its identifier
        lookup: Returns the identifier of the existing resource, or None
        conflict_codes: Provider error codes that mean "already exists"
        lookup_first: Look up before creating, for providers that never
            report a conflict and would otherwise create a duplicate
    """
    kind: ResourceKind
    name: str
    create: Callable[[], str]
    lookup: Callable[[], Optional[str]]
    conflict_codes: FrozenSet[str] = frozenset()
    lookup_first: bool = False


class ResourceProbe:
    """Makes creation idempotent by absorbing "already exists" conflicts."""

    def ensure(self, descriptor: ResourceDescriptor) -> Tuple[str, bool]:
        """Create the resource, or recover the identifier of the existing one.

        Args:
            descriptor: Resource to ensure

        Returns:
            Tuple of (identifier, was_created)

        Raises:
            PermanentProviderError: If creation conflicts but the lookup finds
                nothing, or creation returns no identifier
            ProvisioningError: Any error unrelated to existence
        """
        kind = descriptor.kind.value

        if descriptor.lookup_first:
            identifier = descriptor.lookup()
            if identifier:
                logger.info(f"Reusing existing {kind} {descriptor.name}: {identifier}")
                return identifier, False

        try:
            identifier = descriptor.create()
        except ProvisioningError as e:
            if not self._is_conflict(e, descriptor):
                raise

            logger.info(f"{kind} {descriptor.name} already exists ({e.error_code}), looking it up")
            identifier = descriptor.lookup()
            if not identifier:
                raise PermanentProviderError(
                    f"{kind} {descriptor.name} already exists but could not be found",
                    context=ErrorContext(
                        resource_kind=kind,
                        resource_id=descriptor.name,
                        operation="lookup",
                        error_code=e.error_code,
                    ),
                    cause=e,
                    suggestions=[
                        "The resource may belong to another account or be in a transitional state",
                        "Wait a few minutes and re-run the command",
                    ],
                )
            logger.info(f"Reusing existing {kind} {descriptor.name}: {identifier}")
            return identifier, False

        if not identifier:
            raise PermanentProviderError(
                f"Creating {kind} {descriptor.name} returned no identifier",
                context=ErrorContext(resource_kind=kind, resource_id=descriptor.name, operation="create"),
            )

        logger.info(f"Created {kind} {descriptor.name}: {identifier}")
        return identifier, True

    @staticmethod
    def _is_conflict(error: ProvisioningError, descriptor: ResourceDescriptor) -> bool:
        if error.error_code and error.error_code in descriptor.conflict_codes:
            return True
        return isinstance(error, AlreadyExistsConflict)
