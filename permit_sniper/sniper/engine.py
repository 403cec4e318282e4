"""
Acquisition Engine for sniper jobs.

Drives one job through its phases:
1. pre-warming: open session, sign in, navigate, set group size; then sleep
   until the window opens
2. watching: poll availability every poll interval until a fully available
   range appears or the watch deadline passes
3. booking: claim the found range; on failure, re-check the other ranges in
   priority order and claim the first still fully available
4. in-cart | failed

What the Engine MUST NOT do:
- Retry pre-warm steps (a broken session before the window is structural)
- Escalate a single failed poll or claim into a job failure
- Close the session of a job that reached in-cart
- Write to a job after it became terminal (the store refuses)
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from .availability import AvailabilitySource
from .config import SniperConfig
from .credentials import CredentialVault
from .entities import (
    Credentials,
    DateRange,
    SniperJob,
    SniperStatus,
    utc_now,
)
from .errors import (
    JobCancelledError,
    JobFinalizedError,
    SessionError,
)
from .session import Session, SessionFactory, SessionLease
from .store import JobRecordStore


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class AcquisitionEngine:
    """
    The per-job state machine.

    One engine instance serves all jobs; each call to run() is one job's
    control flow and carries that job's cancellation event and session lease.
    """

    def __init__(
        self,
        store: JobRecordStore,
        vault: CredentialVault,
        availability: AvailabilitySource,
        session_factory: SessionFactory,
        config: SniperConfig,
        checkpoint: Optional[Callable[[], None]] = None,
        clock: Clock = utc_now,
    ):
        """
        Args:
            store: Job Record Store (authoritative state)
            vault: Credential table
            availability: Availability source used while watching and booking
            session_factory: Builds a Session for a job
            config: Timing constants
            checkpoint: Called at every phase boundary to persist all jobs
            clock: Returns the current aware UTC time
        """
        self.store = store
        self.vault = vault
        self.availability = availability
        self.session_factory = session_factory
        self.config = config
        self.checkpoint = checkpoint or (lambda: None)
        self.clock = clock

    # =========================================================================
    # Entry Point
    # =========================================================================

    def run(self, job_id: str, cancel_event: threading.Event, lease: SessionLease) -> None:
        """
        Run a pending job to a terminal state.

        Returns without change if the job is gone or no longer pending, and
        leaves the job pending (with a message) if credentials are missing.
        """
        job = self.store.get(job_id)
        if job is None:
            logger.warning(f"[sniper:{job_id[:8]}] Trigger fired for unknown job")
            return
        if job.status != SniperStatus.PENDING:
            logger.info(f"[sniper:{job.short_id}] Not pending ({job.status.value}), skipping run")
            return

        credentials = self.vault.get(job_id)
        if credentials is None:
            logger.info(f"[sniper:{job.short_id}] Cannot start: no credentials")
            self._update(
                job_id,
                message="Cannot start: credentials not provided. Re-enter them to resume.",
            )
            return

        try:
            session = self._pre_warm(job, credentials, cancel_event, lease)
            self._wait_for_window(job, cancel_event)
            found = self._watch(job, cancel_event)
            self._book(job, found, session, cancel_event)

        except (JobCancelledError, JobFinalizedError):
            logger.info(f"[sniper:{job.short_id}] Stopped: job was cancelled or finalized")

        except SessionError as e:
            if cancel_event.is_set():
                return
            logger.error(f"[sniper:{job.short_id}] Pre-warm failed: {e}")
            self._finish(job_id, SniperStatus.FAILED, f"Pre-warm failed: {e}")

        except Exception as e:
            if cancel_event.is_set():
                return
            logger.exception(f"[sniper:{job.short_id}] Unexpected error")
            self._finish(job_id, SniperStatus.FAILED, f"Sniper failed: {e}")

        finally:
            current = self.store.get(job_id)
            if current is None or current.status != SniperStatus.IN_CART:
                lease.release()

    # =========================================================================
    # Phases
    # =========================================================================

    def _pre_warm(
        self,
        job: SniperJob,
        credentials: Credentials,
        cancel_event: threading.Event,
        lease: SessionLease,
    ) -> Session:
        """Open a session, sign in, navigate to the first range, set group size."""
        self._check_cancelled(job.job_id, cancel_event)
        self._update(
            job.job_id,
            status=SniperStatus.PRE_WARMING,
            message="Launching browser and signing in...",
        )
        self.checkpoint()

        try:
            session = self.session_factory(job)
            lease.attach(session)
            session.open()
            self._check_cancelled(job.job_id, cancel_event)

            session.sign_in(credentials)
            self._check_cancelled(job.job_id, cancel_event)

            session.select_target(job.division_id, job.desired_ranges[0].start_date)
            self._check_cancelled(job.job_id, cancel_event)

            session.set_group_size(job.group_size)
        except (JobCancelledError, SessionError):
            raise
        except Exception as e:
            raise SessionError(str(e) or e.__class__.__name__) from e

        logger.info(f"[sniper:{job.short_id}] Pre-warm complete")
        return session

    def _wait_for_window(self, job: SniperJob, cancel_event: threading.Event) -> None:
        remaining = (job.window_opens_at - self.clock()).total_seconds()
        if remaining > 0:
            self._update(
                job.job_id,
                message=f"Pre-warmed. Waiting {round(remaining)}s for window to open...",
            )
            logger.info(f"[sniper:{job.short_id}] Waiting {remaining:.1f}s for window")
            self._sleep(job.job_id, cancel_event, remaining)
        self._check_cancelled(job.job_id, cancel_event)

    def _watch(self, job: SniperJob, cancel_event: threading.Event) -> Optional[DateRange]:
        """
        Poll until a fully available range is found or the watch deadline passes.

        Returns:
            The found range, or None on timeout (the job is then failed)
        """
        self._update(
            job.job_id,
            status=SniperStatus.WATCHING,
            message="Window open! Polling for availability...",
        )
        self.checkpoint()

        deadline = self.clock() + timedelta(seconds=self.config.max_watch_seconds)
        attempts = self.store.require(job.job_id).attempts

        while self.clock() < deadline:
            self._check_cancelled(job.job_id, cancel_event)
            attempts += 1

            found = None
            try:
                found = self.availability.query(
                    job.permit_id, job.division_id, job.desired_ranges
                )
            except Exception as e:
                logger.warning(f"[sniper:{job.short_id}] Poll #{attempts} failed: {e}")
                self._check_cancelled(job.job_id, cancel_event)
                self._update(
                    job.job_id,
                    attempts=attempts,
                    message=f"Poll #{attempts}: API error ({e}). Retrying...",
                )
            else:
                self._check_cancelled(job.job_id, cancel_event)
                if found is not None:
                    logger.info(
                        f"[sniper:{job.short_id}] Poll #{attempts}: found {found.describe()}"
                    )
                    self._update(
                        job.job_id,
                        attempts=attempts,
                        message=f"Availability detected for {found.describe()}! Attempting to book...",
                    )
                    return found

                self._update(
                    job.job_id,
                    attempts=attempts,
                    message=(
                        f"Poll #{attempts}: No availability yet. "
                        f"Next check in {self.config.poll_interval_seconds}s..."
                    ),
                )

            remaining = (deadline - self.clock()).total_seconds()
            self._sleep(
                job.job_id, cancel_event, min(self.config.poll_interval_seconds, remaining)
            )

        logger.info(f"[sniper:{job.short_id}] Watch deadline reached after {attempts} polls")
        self._finish(
            job.job_id,
            SniperStatus.FAILED,
            f"No availability detected after {attempts} polls "
            f"({self.config.max_watch_seconds:g}s). Window may have passed.",
        )
        return None

    def _book(
        self,
        job: SniperJob,
        found: Optional[DateRange],
        session: Session,
        cancel_event: threading.Event,
    ) -> None:
        """Claim the found range, falling back through the others in priority order."""
        if found is None:
            return

        self._update(
            job.job_id,
            status=SniperStatus.BOOKING,
            message=f"Booking {found.describe()}...",
        )
        self.checkpoint()

        if self._try_claim(job, session, found, cancel_event):
            self._finish(
                job.job_id,
                SniperStatus.IN_CART,
                f"Permit for {found.describe()} added to cart! Complete your purchase on recreation.gov.",
                booked_range=found,
            )
            return

        attempted = {found}
        for fallback in job.desired_ranges:
            if fallback in attempted:
                continue
            attempted.add(fallback)
            self._check_cancelled(job.job_id, cancel_event)

            try:
                available = self.availability.query(job.permit_id, job.division_id, [fallback])
            except Exception as e:
                logger.warning(
                    f"[sniper:{job.short_id}] Re-check of {fallback.describe()} failed: {e}"
                )
                continue
            self._check_cancelled(job.job_id, cancel_event)
            if available is None:
                continue

            self._update(
                job.job_id,
                message=f"Primary range taken. Trying fallback: {fallback.describe()}...",
            )
            if self._try_claim(job, session, fallback, cancel_event):
                self._finish(
                    job.job_id,
                    SniperStatus.IN_CART,
                    f"Permit for {fallback.describe()} (fallback) added to cart! "
                    f"Complete your purchase on recreation.gov.",
                    booked_range=fallback,
                )
                return

        attempts = self.store.require(job.job_id).attempts
        self._finish(
            job.job_id,
            SniperStatus.FAILED,
            f"Could not book any of the desired date ranges after {attempts} polls.",
        )

    def _try_claim(
        self,
        job: SniperJob,
        session: Session,
        date_range: DateRange,
        cancel_event: threading.Event,
    ) -> bool:
        try:
            claimed = session.claim(date_range) is True
        except Exception as e:
            logger.warning(f"[sniper:{job.short_id}] Claim of {date_range.describe()} failed: {e}")
            claimed = False

        self._check_cancelled(job.job_id, cancel_event)
        if not claimed:
            logger.info(f"[sniper:{job.short_id}] Claim not confirmed for {date_range.describe()}")
        return claimed

    # =========================================================================
    # Helpers
    # =========================================================================

    def _update(self, job_id: str, **changes) -> SniperJob:
        return self.store.mutate(job_id, **changes)

    def _finish(self, job_id: str, status: SniperStatus, message: str, **changes) -> None:
        self.store.mutate(job_id, status=status, message=message, **changes)
        self.checkpoint()

    def _sleep(self, job_id: str, cancel_event: threading.Event, seconds: float) -> None:
        """Sleep, waking immediately (and raising) if the job is cancelled."""
        if cancel_event.wait(max(0.0, seconds)):
            raise JobCancelledError(job_id)

    @staticmethod
    def _check_cancelled(job_id: str, cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise JobCancelledError(job_id)
