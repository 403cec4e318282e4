"""
Recovery Manager for sniper jobs.

Reconciles the persisted snapshot with a fresh process on startup:
1. pending, window + max watch already passed -> failed
2. pending, credentials present -> re-armed
3. pending, no credentials -> stays pending, awaiting re-entry
4. pre-warming / watching / booking -> failed (session and credentials are gone)
5. terminal -> loaded as-is

Recovery is idempotent: running it twice over the same snapshot gives the
same records.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from .config import SniperConfig
from .credentials import CredentialVault
from .entities import SniperJob, SniperStatus, utc_now
from .persistence import JobSnapshotStore
from .scheduler import Scheduler
from .store import JobRecordStore


logger = logging.getLogger(__name__)

WINDOW_PASSED_MESSAGE = "Window has already passed (server was offline)."
AWAITING_CREDENTIALS_MESSAGE = "Awaiting credentials (server restarted). Re-enter them to resume."
INTERRUPTED_MESSAGE = "Interrupted while the server was offline."


class RecoveryManager:
    """Loads persisted jobs and decides what each one does next."""

    def __init__(
        self,
        store: JobRecordStore,
        vault: CredentialVault,
        scheduler: Scheduler,
        persistence: JobSnapshotStore,
        config: SniperConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.vault = vault
        self.scheduler = scheduler
        self.persistence = persistence
        self.config = config
        self.clock = clock

    def recover_on_startup(self) -> dict:
        """
        Load the snapshot into the store and reconcile every job.

        Returns:
            Recovery statistics
        """
        stats = {
            "loaded": 0,
            "rearmed": 0,
            "awaiting_credentials": 0,
            "expired": 0,
            "interrupted": 0,
            "errors": [],
        }

        logger.info(f"Loading sniper jobs from {self.persistence.path}...")
        jobs = self.persistence.load_all()
        for job in jobs:
            self.store.load(job)
        stats["loaded"] = len(jobs)

        for job in jobs:
            try:
                outcome = self._recover_job(job)
                if outcome:
                    stats[outcome] += 1
            except Exception as e:
                logger.error(f"[sniper:{job.short_id}] Recovery error: {e}")
                stats["errors"].append(f"{job.job_id}: {e}")

        self.persistence.save_all(self.store.list)

        logger.info(
            f"Recovery complete: "
            f"{stats['loaded']} loaded, "
            f"{stats['rearmed']} scheduled, "
            f"{stats['awaiting_credentials']} awaiting credentials, "
            f"{stats['expired']} expired, "
            f"{stats['interrupted']} interrupted"
        )
        return stats

    def _recover_job(self, job: SniperJob) -> str:
        if job.status.is_active:
            logger.info(f"[sniper:{job.short_id}] Was {job.status.value} when the server stopped")
            self.store.mutate(job.job_id, status=SniperStatus.FAILED, message=INTERRUPTED_MESSAGE)
            return "interrupted"

        if job.status != SniperStatus.PENDING:
            return ""

        deadline = job.window_opens_at + timedelta(seconds=self.config.max_watch_seconds)
        if deadline <= self.clock():
            logger.info(f"[sniper:{job.short_id}] Window passed while offline")
            self.store.mutate(job.job_id, status=SniperStatus.FAILED, message=WINDOW_PASSED_MESSAGE)
            return "expired"

        if self.vault.has(job.job_id):
            self.scheduler.arm(job)
            return "rearmed"

        self.store.mutate(job.job_id, message=AWAITING_CREDENTIALS_MESSAGE)
        return "awaiting_credentials"
