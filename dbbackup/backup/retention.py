"""
Retention policy enforcement for backups.

Deletes dump artifacts whose backend-reported modification time is older
than the retention window. Names are never parsed for dates.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from dbbackup.errors import StorageError, ArtifactNotFoundError
from dbbackup.models import SweepResult
from .compression import is_dump_artifact
from .storage import ArtifactStore


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetentionSweeper:
    """
    Removes expired artifacts from one store.

    A sweep never raises: listing and deletion problems are collected in the
    returned SweepResult.
    """

    def __init__(self, store: ArtifactStore, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize retention sweeper.

        Args:
            store: Store to sweep
            clock: Returns the current aware datetime (defaults to UTC now)
        """
        self.store = store
        self.clock = clock or utcnow
        self.logs: List[str] = []

    def sweep(self, max_age_days: int) -> SweepResult:
        """
        Delete artifacts older than max_age_days.

        Args:
            max_age_days: Retention window in days; zero or less disables the sweep

        Returns:
            SweepResult with deleted paths and collected errors
        """
        result = SweepResult()

        if max_age_days is None or max_age_days <= 0:
            self._log(f"Retention disabled (max age {max_age_days}), skipping sweep")
            result.skipped = True
            return result

        cutoff = self.clock() - timedelta(days=max_age_days)
        self._log(f"Sweeping artifacts older than {cutoff.isoformat()} ({max_age_days} days)")

        try:
            artifacts = self.store.list()
        except StorageError as e:
            error_msg = f"Failed to list artifacts: {e}"
            self._log(error_msg, logging.WARNING)
            result.errors.append(error_msg)
            return result

        to_delete = [
            artifact for artifact in artifacts
            if is_dump_artifact(artifact.path) and _as_aware(artifact.timestamp) < cutoff
        ]

        for artifact in to_delete:
            try:
                self.store.delete(artifact.path)
                result.deleted.append(artifact.path)
                self._log(f"Deleted artifact: {artifact.path}")
            except ArtifactNotFoundError:
                # Already gone; nothing left to expire
                self._log(f"Artifact already removed: {artifact.path}", logging.DEBUG)
            except StorageError as e:
                error_msg = f"Failed to delete {artifact.path}: {e}"
                self._log(error_msg, logging.WARNING)
                result.errors.append(error_msg)

        self._log(
            f"Retention sweep complete. "
            f"Deleted: {len(result.deleted)}, "
            f"Kept: {len(artifacts) - len(to_delete)}, "
            f"Errors: {len(result.errors)}"
        )

        return result

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level for the module logger
        """
        timestamp = utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def _as_aware(timestamp: datetime) -> datetime:
    # Backends report UTC; a naive value is taken to be UTC as well
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp
