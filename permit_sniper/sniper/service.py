"""
Sniper Service - Main entry point for the sniper core.

This service wires the sniper components together:
- JobRecordStore + BroadcastHub (authoritative state, live updates)
- CredentialVault (volatile credentials)
- JobSnapshotStore (crash-safe snapshot)
- AvailabilitySource + SessionFactory (external capabilities)
- AcquisitionEngine (per-job state machine)
- Scheduler (triggers, workers, cancellation)
- RecoveryManager (startup reconciliation)

Usage:
    service = SniperService.create(jobs_file)
    service.start()
    job = service.create_job(request)
    ...
    service.shutdown()
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .availability import AvailabilitySource, RecGovAvailabilitySource
from .broadcast import BroadcastHub, Subscriber
from .config import SniperConfig
from .credentials import CredentialVault
from .engine import AcquisitionEngine
from .entities import (
    Credentials,
    SniperJob,
    SniperJobRequest,
    SniperStatus,
    utc_now,
)
from .errors import (
    InvalidOperationError,
    JobFinalizedError,
    ValidationError,
)
from .persistence import JobSnapshotStore
from .recgov_session import RecGovSession
from .recovery import RecoveryManager
from .scheduler import Scheduler
from .session import Session, SessionFactory
from .store import JobRecordStore


logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user."
SHUTDOWN_MESSAGE = "Interrupted by server shutdown."


def recgov_session_factory(config: SniperConfig) -> SessionFactory:
    """Session factory producing a RecGovSession per job."""

    def factory(job: SniperJob) -> Session:
        return RecGovSession(
            job.permit_id,
            base_url=config.recgov_base_url,
            timeout=config.session_timeout_seconds,
            headless=config.headless,
        )

    return factory


class SniperService:
    """
    Lifecycle management surface for sniper jobs.

    Provides:
    - Component initialization and wiring
    - Startup with recovery
    - Graceful shutdown drain
    - API-friendly methods for job operations
    """

    def __init__(
        self,
        store: JobRecordStore,
        vault: CredentialVault,
        persistence: JobSnapshotStore,
        availability: AvailabilitySource,
        engine: AcquisitionEngine,
        scheduler: Scheduler,
        recovery_manager: RecoveryManager,
        config: SniperConfig,
    ):
        """
        Initialize SniperService with all components.

        Use SniperService.create() for convenient construction.
        """
        self.store = store
        self.vault = vault
        self.persistence = persistence
        self.availability = availability
        self.engine = engine
        self.scheduler = scheduler
        self.recovery_manager = recovery_manager
        self.config = config

        self._started = False

    @classmethod
    def create(
        cls,
        jobs_file: str | Path,
        config: Optional[SniperConfig] = None,
        availability: Optional[AvailabilitySource] = None,
        session_factory: Optional[SessionFactory] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "SniperService":
        """
        Create a SniperService with all components wired together.

        Args:
            jobs_file: Path to the JSON job snapshot
            config: Timing constants (defaults to SniperConfig())
            availability: Availability source (defaults to recreation.gov)
            session_factory: Session factory (defaults to RecGovSession)
            clock: Current-time source

        Returns:
            Configured SniperService
        """
        config = config or SniperConfig()

        store = JobRecordStore(BroadcastHub())
        vault = CredentialVault()
        persistence = JobSnapshotStore(jobs_file)

        if availability is None:
            availability = RecGovAvailabilitySource(
                base_url=config.recgov_base_url,
                timeout=config.availability_timeout_seconds,
            )
        if session_factory is None:
            session_factory = recgov_session_factory(config)

        engine = AcquisitionEngine(
            store=store,
            vault=vault,
            availability=availability,
            session_factory=session_factory,
            config=config,
            checkpoint=lambda: persistence.save_all(store.list),
            clock=clock,
        )
        scheduler = Scheduler(engine=engine, config=config, clock=clock)
        recovery_manager = RecoveryManager(
            store=store,
            vault=vault,
            scheduler=scheduler,
            persistence=persistence,
            config=config,
            clock=clock,
        )

        return cls(
            store=store,
            vault=vault,
            persistence=persistence,
            availability=availability,
            engine=engine,
            scheduler=scheduler,
            recovery_manager=recovery_manager,
            config=config,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._started

    def start(self, run_recovery: bool = True) -> dict:
        """
        Start the service, reloading persisted jobs first.

        Returns:
            Recovery statistics (empty if recovery was skipped or already started)
        """
        if self._started:
            logger.warning("Sniper service already started")
            return {}

        stats = {}
        if run_recovery:
            stats = self.recovery_manager.recover_on_startup()

        self._started = True
        logger.info("Sniper service started")
        return stats

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Drain every job and stop.

        - pending jobs stay pending in the snapshot (resumable after restart)
        - pre-warming / watching / booking jobs are failed
        - all timers cancelled, workers signalled and joined
        - every session released, including those kept for in-cart jobs
        - credentials wiped, final snapshot written
        """
        logger.info("Shutting down sniper service...")

        for job in self.store.list():
            if not job.status.is_active:
                continue
            self.scheduler.cancel(job.job_id)
            try:
                self.store.mutate(job.job_id, status=SniperStatus.FAILED, message=SHUTDOWN_MESSAGE)
            except JobFinalizedError:
                pass

        drained = self.scheduler.shutdown(timeout)
        self.vault.clear()
        self._checkpoint()
        self.availability.close()

        self._started = False
        logger.info(f"Sniper service stopped ({drained} runtimes drained)")

    # =========================================================================
    # Job Operations
    # =========================================================================

    @staticmethod
    def validate_request(request: SniperJobRequest) -> None:
        """
        Reject malformed requests before a job exists.

        Raises:
            ValidationError: On the first problem found
        """
        if not (request.permit_id or "").strip():
            raise ValidationError("Missing required field: permit_id")
        if not (request.division_id or "").strip():
            raise ValidationError("Missing required field: division_id")
        if request.window_opens_at is None:
            raise ValidationError("Missing required field: window_opens_at")
        if not request.desired_ranges:
            raise ValidationError("At least one desired date range is required")
        for date_range in request.desired_ranges:
            if not date_range.is_valid:
                raise ValidationError(
                    f"End date must be after start date "
                    f"(got {date_range.start_date.isoformat()} to {date_range.end_date.isoformat()})"
                )
        if request.group_size is None or request.group_size < 1:
            raise ValidationError("Group size must be a positive integer")
        if not request.email or not request.password:
            raise ValidationError(
                "Missing credentials: email and password are required for booking automation"
            )

    def create_job(self, request: SniperJobRequest) -> SniperJob:
        """
        Validate, store, persist and schedule a new job.

        Raises:
            ValidationError: If the request is malformed
        """
        self.validate_request(request)

        job = SniperJob.create(request)
        self.vault.put(job.job_id, request.credentials)
        self.store.create(job)
        self._checkpoint()

        delay = self.scheduler.arm(job)
        logger.info(
            f"[sniper:{job.short_id}] Created for permit {job.permit_id} "
            f"({len(job.desired_ranges)} ranges, pre-warm in {delay or 0:.0f}s)"
        )
        return self.store.require(job.job_id)

    def list_jobs(self) -> list[SniperJob]:
        return self.store.list()

    def get_job(self, job_id: str) -> SniperJob:
        """
        Raises:
            JobNotFoundError: If the job does not exist
        """
        return self.store.require(job_id)

    def needs_credentials(self, job_id: str) -> bool:
        """True if an unfinished job has no credentials in memory."""
        job = self.store.require(job_id)
        return not job.is_terminal() and not self.vault.has(job_id)

    def supply_credentials(self, job_id: str, email: str, password: str) -> SniperJob:
        """
        Supply or replace credentials. A pending job is re-armed at once.

        Raises:
            JobNotFoundError: If the job does not exist
            ValidationError: If email or password is missing
            InvalidOperationError: If the job already finished
        """
        job = self.store.require(job_id)
        if not email or not password:
            raise ValidationError("email and password are required")
        if job.is_terminal():
            raise InvalidOperationError(
                f"Cannot update credentials: job is already {job.status.value}"
            )

        self.vault.put(job_id, Credentials(email=email, password=password))
        job = self.store.mutate(job_id, message=f"Credentials updated. {job.message}")

        if job.status == SniperStatus.PENDING:
            self.scheduler.arm(job)

        logger.info(f"[sniper:{job.short_id}] Credentials updated")
        return self.store.require(job_id)

    def cancel_job(self, job_id: str) -> SniperJob:
        """
        Cancel a job in any non-terminal state.

        Stops its trigger and worker, discards its credentials, marks it
        cancelled, releases its session, and persists.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidOperationError: If the job already finished
        """
        job = self.store.require(job_id)
        if job.is_terminal():
            raise InvalidOperationError(f"Cannot cancel: job is already {job.status.value}")

        self.scheduler.cancel(job_id)
        self.vault.discard(job_id)

        try:
            job = self.store.mutate(job_id, status=SniperStatus.CANCELLED, message=CANCELLED_MESSAGE)
        except JobFinalizedError:
            # The worker reached a terminal state first
            job = self.store.require(job_id)

        if job.status != SniperStatus.IN_CART:
            self.scheduler.release(job_id, self.config.cancel_join_timeout_seconds)

        self._checkpoint()
        logger.info(f"[sniper:{job.short_id}] Cancel requested, now {job.status.value}")
        return job

    def delete_job(self, job_id: str) -> bool:
        """
        Cancel (if unfinished), release any kept session, and remove the job.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self.store.require(job_id)

        if not job.is_terminal():
            self.scheduler.cancel(job_id)
            try:
                self.store.mutate(job_id, status=SniperStatus.CANCELLED, message=CANCELLED_MESSAGE)
            except JobFinalizedError:
                pass

        self.scheduler.release(job_id, self.config.cancel_join_timeout_seconds)
        self.vault.discard(job_id)
        self.store.delete(job_id)
        self._checkpoint()

        logger.info(f"[sniper:{job.short_id}] Deleted")
        return True

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to live job snapshots. Returns the unsubscribe function."""
        return self.store.hub.subscribe(callback)

    def _checkpoint(self) -> bool:
        return self.persistence.save_all(self.store.list)
