"""State management module for resumable provisioning."""

from .checkpoint import CheckpointStore
from .models import Checkpoint, ManagedResource, ResourceKind, ResourceStatus, Stage

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "ManagedResource",
    "ResourceKind",
    "ResourceStatus",
    "Stage",
]
