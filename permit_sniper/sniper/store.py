"""
Job Record Store.

The authoritative, in-memory table of job state keyed by job ID.

Provides:
- create / get / list / mutate / delete
- Per-job serialization: a job's mutations (and their broadcasts) are
  totally ordered
- Snapshot reads: records are frozen, so callers never hold a live reference
- Terminal guard: a finished job's record can no longer be mutated
- Field guard: identity, target and timing fields never change, and
  booked_range must be one of the job's desired ranges
"""

import logging
import threading
from typing import Any, Optional

from .broadcast import BroadcastHub
from .entities import SniperJob
from .errors import InvalidOperationError, JobNotFoundError, JobFinalizedError


logger = logging.getLogger(__name__)


IMMUTABLE_FIELDS = frozenset({
    "job_id",
    "permit_id",
    "permit_name",
    "division_id",
    "desired_ranges",
    "group_size",
    "window_opens_at",
    "created_at",
})


class JobRecordStore:
    """
    Keyed store of SniperJob records.

    Locking:
    - _map_lock guards the dict itself (insert, remove, iteration)
    - one lock per job ID serializes read-modify-write and broadcast for that job
    """

    def __init__(self, hub: Optional[BroadcastHub] = None):
        self.hub = hub or BroadcastHub()
        self._jobs: dict[str, SniperJob] = {}
        self._key_locks: dict[str, threading.RLock] = {}
        self._map_lock = threading.Lock()

    def _key_lock(self, job_id: str) -> threading.RLock:
        with self._map_lock:
            lock = self._key_locks.get(job_id)
            if lock is None:
                lock = threading.RLock()
                self._key_locks[job_id] = lock
            return lock

    def create(self, job: SniperJob) -> SniperJob:
        """
        Insert a new job and broadcast it.

        Raises:
            InvalidOperationError: If a job with the same ID already exists
        """
        with self._key_lock(job.job_id):
            with self._map_lock:
                if job.job_id in self._jobs:
                    raise InvalidOperationError(f"Job already exists: {job.job_id}")
                self._jobs[job.job_id] = job
            self.hub.publish(job)
        return job

    def load(self, job: SniperJob) -> SniperJob:
        """Insert or replace a record as-is (used when restoring a snapshot)."""
        with self._key_lock(job.job_id):
            with self._map_lock:
                self._jobs[job.job_id] = job
        return job

    def get(self, job_id: str) -> Optional[SniperJob]:
        with self._map_lock:
            return self._jobs.get(job_id)

    def require(self, job_id: str) -> SniperJob:
        """Get a job or raise JobNotFoundError."""
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list(self) -> list[SniperJob]:
        """All jobs, oldest first."""
        with self._map_lock:
            jobs = list(self._jobs.values())
        return sorted(jobs, key=lambda j: j.created_at)

    def mutate(self, job_id: str, **changes: Any) -> SniperJob:
        """
        Apply a partial update, stamp updated_at, and broadcast the result.

        Args:
            job_id: Job to update
            **changes: Field values to replace

        Returns:
            The new snapshot

        Raises:
            JobNotFoundError: If the job does not exist
            JobFinalizedError: If the job already reached a terminal status
            InvalidOperationError: If an immutable field is changed, or
                booked_range is not one of the desired ranges
        """
        frozen = IMMUTABLE_FIELDS.intersection(changes)
        if frozen:
            raise InvalidOperationError(
                f"Cannot change {', '.join(sorted(frozen))} on job {job_id}"
            )

        with self._key_lock(job_id):
            current = self.require(job_id)
            if current.status.is_terminal:
                raise JobFinalizedError(job_id, current.status.value)

            booked = changes.get("booked_range")
            if booked is not None and booked not in current.desired_ranges:
                raise InvalidOperationError(
                    f"Booked range {booked.describe()} is not a desired range of job {job_id}"
                )

            updated = current.evolve(**changes)
            with self._map_lock:
                if job_id not in self._jobs:
                    raise JobNotFoundError(job_id)
                self._jobs[job_id] = updated

            self.hub.publish(updated)
            return updated

    def delete(self, job_id: str) -> bool:
        """Remove a job. Returns False if it did not exist."""
        with self._key_lock(job_id):
            with self._map_lock:
                removed = self._jobs.pop(job_id, None)
                self._key_locks.pop(job_id, None)
        if removed is not None:
            logger.debug(f"Deleted job {job_id}")
        return removed is not None

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._jobs)
