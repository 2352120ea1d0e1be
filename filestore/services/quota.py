"""
Per-project storage quota accounting.

Quota-affecting operations on one project run one at a time: an in-process
lock keyed by project id plus a row lock on the project for databases that
support SELECT ... FOR UPDATE. Different projects never wait on each other.
Usage is always recomputed from the ACTIVE resources, never adjusted
incrementally, so an earlier partial failure heals on the next mutation.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator

from filestore.config.app_config import BYTES_PER_MB
from filestore.models import Project

from .exceptions import StorageLimitExceededError
from .metadata import MetadataStore

logger = logging.getLogger(__name__)


class QuotaLedger:
    """Serializes and accounts quota-affecting work per project."""

    def __init__(self, metadata: MetadataStore):
        self.metadata = metadata
        # Locks disappear once no operation holds a reference to them
        self._locks: 'weakref.WeakValueDictionary[int, threading.Lock]' = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, project_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[project_id] = lock
            return lock

    @contextmanager
    def locked_project(self, project_id: int) -> Iterator[Project]:
        """
        Hold the project exclusively for the duration of the block.

        Commits when the block finishes, rolls back when it raises; the lock
        is released only after either.
        """
        lock = self._lock_for(project_id)
        with lock:
            try:
                project = self.metadata.find_project_for_update(project_id)
                yield project
                self.metadata.commit()
            except BaseException:
                self.metadata.rollback()
                raise

    def check_capacity(self, project: Project, additional_bytes: int) -> None:
        current = project.storage_size or 0
        limit = project.max_storage_size or 0
        if current + additional_bytes > limit:
            logger.info(
                f"Rejected {additional_bytes} bytes for project {project.id}: "
                f"used {current} of {limit}")
            raise StorageLimitExceededError(
                f"Storage limit exceeded. Current: {current // BYTES_PER_MB} MB, "
                f"Limit: {limit // BYTES_PER_MB} MB")

    def recalculate(self, project_id: int) -> int:
        """Recompute usage from ACTIVE resources and store it. Call with the project locked."""
        total = self.metadata.sum_active_resource_sizes(project_id)
        self.metadata.update_project_storage_size(project_id, total)
        logger.debug(f"Updated project {project_id} storage size to {total}")
        return total

