"""Checkpoint store for resumable provisioning."""

import fcntl
import json
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from pydantic import ValidationError

from static_edge.state.models import Checkpoint
from static_edge.utils.errors import CheckpointError, CheckpointLockError
from static_edge.utils.logging import get_logger

logger = get_logger(__name__)


class CheckpointStore:
    """Persists one checkpoint record per domain as a JSON file.

    Writes go to a temporary file that is fsynced and then renamed over the
    previous record, so a crash mid-write leaves the last good checkpoint in
    place. The store does no locking of its own on ``save``; callers that may
    run concurrently must hold ``lock(domain)``.
    """

    def __init__(self, state_dir: str):
        """
        Initialize CheckpointStore.

        Args:
            state_dir: Directory holding ``<domain>.json`` checkpoint files
        """
        self.state_dir = Path(state_dir)

    def _get_checkpoint_path(self, domain: str) -> Path:
        return self.state_dir / f"{domain}.json"

    def _get_lock_path(self, domain: str) -> Path:
        return self.state_dir / f"{domain}.lock"

    def load(self, domain: str) -> Optional[Checkpoint]:
        """
        Load the checkpoint for a domain.

        Args:
            domain: Domain the checkpoint belongs to

        Returns:
            Checkpoint, or None if no checkpoint exists

        Raises:
            CheckpointError: If the checkpoint file is corrupted or invalid
        """
        checkpoint_path = self._get_checkpoint_path(domain)

        if not checkpoint_path.exists():
            return None

        try:
            with open(checkpoint_path, "r") as f:
                data = json.load(f)
            checkpoint = Checkpoint.from_dict(data)
        except json.JSONDecodeError as e:
            raise CheckpointError(f"Failed to parse checkpoint file {checkpoint_path}: {e}", cause=e)
        except ValidationError as e:
            raise CheckpointError(f"Invalid checkpoint file {checkpoint_path}: {e}", cause=e)
        except OSError as e:
            raise CheckpointError(f"Failed to read checkpoint file {checkpoint_path}: {e}", cause=e)

        if checkpoint.domain != domain:
            raise CheckpointError(
                f"Checkpoint file {checkpoint_path} belongs to {checkpoint.domain}, not {domain}"
            )

        logger.debug(f"Loaded checkpoint for {domain} at stage {checkpoint.stage.value}")
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        """
        Atomically overwrite the checkpoint for ``checkpoint.domain``.

        Args:
            checkpoint: Checkpoint to persist

        Raises:
            CheckpointError: If the checkpoint cannot be written
        """
        checkpoint_path = self._get_checkpoint_path(checkpoint.domain)
        temp_path = checkpoint_path.with_name(f".{checkpoint_path.name}.tmp")

        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)

            with open(temp_path, "w") as f:
                json.dump(checkpoint.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            # Atomic rename
            temp_path.replace(checkpoint_path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise CheckpointError(f"Failed to save checkpoint {checkpoint_path}: {e}", cause=e)

        logger.debug(f"Saved checkpoint for {checkpoint.domain} at stage {checkpoint.stage.value}")

    def exists(self, domain: str) -> bool:
        return self._get_checkpoint_path(domain).exists()

    def delete(self, domain: str) -> bool:
        """
        Remove the checkpoint for a domain.

        Returns:
            True if a checkpoint was deleted, False if none existed
        """
        checkpoint_path = self._get_checkpoint_path(domain)
        if checkpoint_path.exists():
            checkpoint_path.unlink()
            return True
        return False

    def list_domains(self) -> List[str]:
        """List all domains that have a checkpoint."""
        if not self.state_dir.exists():
            return []
        return sorted(path.stem for path in self.state_dir.glob("*.json"))

    @contextmanager
    def lock(self, domain: str, timeout: float = 30.0) -> Iterator[None]:
        """
        Hold an exclusive lock on the domain's checkpoint.

        Args:
            domain: Domain to lock
            timeout: Seconds to wait for another holder to release the lock

        Raises:
            CheckpointLockError: If the lock cannot be acquired in time
        """
        lock_path = self._get_lock_path(domain)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        lock_fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)

        try:
            start_time = time.time()
            while True:
                try:
                    fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.time() - start_time > timeout:
                        raise CheckpointLockError(
                            f"Another static-edge process is working on {domain} "
                            f"(lock {lock_path} held for more than {timeout:g}s)"
                        )
                    time.sleep(0.1)

            try:
                yield
            finally:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)
        finally:
            os.close(lock_fd)
