"""
Scheduler for sniper jobs.

Converts a job's window opening instant into an execution trigger:
- fire_at = window_opens_at - pre_warm_lead
- now < fire_at: arm a threading.Timer for the remaining delay
- otherwise: start the worker immediately

Per job it owns one JobRuntime: the cancellation Event, the SessionLease,
the armed Timer and the worker Thread.

What Scheduler MUST NOT do:
- Run two workers for the same job at once
- Mutate job records (the Acquisition Engine and the service do that)
- Block callers on a worker, except in release() and shutdown()
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from .config import SniperConfig
from .engine import AcquisitionEngine
from .entities import SniperJob, SniperStatus, utc_now
from .session import SessionLease


logger = logging.getLogger(__name__)


class JobRuntime:
    """Runtime handles for one job: cancel signal, session lease, timer, worker."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        self.cancel_event = threading.Event()
        self.lease = SessionLease(job_id)
        self.timer: Optional[threading.Timer] = None
        self.worker: Optional[threading.Thread] = None
        self.generation = 0
        # Set when arm() is called while the worker runs; honoured on worker exit
        self.rearm_requested = False

    @property
    def is_running(self) -> bool:
        return self.worker is not None and self.worker.is_alive()

    @property
    def is_reusable(self) -> bool:
        return not self.cancel_event.is_set() and not self.lease.released


class Scheduler:
    """
    Arms and fires per-job triggers.

    Re-arming a job replaces its previous timer. Each arm bumps the job's
    generation, so a timer that fires after being replaced does nothing.
    """

    def __init__(
        self,
        engine: AcquisitionEngine,
        config: SniperConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.engine = engine
        self.config = config
        self.clock = clock

        self._runtimes: dict[str, JobRuntime] = {}
        self._lock = threading.Lock()

    def fire_delay(self, job: SniperJob) -> float:
        """Seconds until the pre-warm trigger should fire (0 if already due)."""
        remaining = (job.window_opens_at - self.clock()).total_seconds()
        return max(0.0, remaining - self.config.pre_warm_lead_seconds)

    # =========================================================================
    # Arming
    # =========================================================================

    def arm(self, job: SniperJob) -> Optional[float]:
        """
        Arm (or re-arm) the trigger for a job.

        If a worker is already running the request is remembered, and the job
        is re-armed when that worker exits while the job is still pending.

        Returns:
            Delay in seconds until firing, or None if a worker is already running
        """
        with self._lock:
            runtime = self._runtimes.get(job.job_id)
            if runtime is not None and runtime.is_running:
                runtime.rearm_requested = True
                logger.debug(f"[sniper:{job.short_id}] Worker running, re-arm deferred to its exit")
                return None
            return self._arm_locked(job, runtime)

    def _arm_locked(self, job: SniperJob, runtime: Optional[JobRuntime]) -> float:
        # Caller holds self._lock
        if runtime is None or not runtime.is_reusable:
            runtime = JobRuntime(job.job_id)
            self._runtimes[job.job_id] = runtime

        runtime.generation += 1
        if runtime.timer is not None:
            runtime.timer.cancel()
            runtime.timer = None

        delay = self.fire_delay(job)
        if delay <= 0:
            logger.info(f"[sniper:{job.short_id}] Pre-warm time already passed, starting now")
            self._start_worker(runtime)
        else:
            timer = threading.Timer(delay, self._fire, args=(job.job_id, runtime.generation))
            timer.daemon = True
            timer.name = f"sniper-timer-{job.short_id}"
            runtime.timer = timer
            timer.start()
            logger.info(f"[sniper:{job.short_id}] Pre-warm armed in {delay:.1f}s")
        return delay

    def _fire(self, job_id: str, generation: int) -> None:
        with self._lock:
            runtime = self._runtimes.get(job_id)
            if runtime is None or runtime.generation != generation:
                return
            if runtime.cancel_event.is_set() or runtime.is_running:
                return
            runtime.timer = None
            self._start_worker(runtime)

    def _start_worker(self, runtime: JobRuntime) -> None:
        # Caller holds self._lock
        worker = threading.Thread(
            target=self._run_worker,
            args=(runtime,),
            name=f"sniper-{runtime.job_id[:8]}",
            daemon=True,
        )
        runtime.worker = worker
        worker.start()

    def _run_worker(self, runtime: JobRuntime) -> None:
        try:
            self.engine.run(runtime.job_id, runtime.cancel_event, runtime.lease)
        except Exception:
            logger.exception(f"[sniper:{runtime.job_id[:8]}] Worker crashed")
        finally:
            with self._lock:
                if runtime.worker is threading.current_thread():
                    runtime.worker = None
                rearmed = self._take_rearm(runtime)
                # Keep the runtime while its lease may still hold a session
                if (
                    not rearmed
                    and runtime.lease.released
                    and runtime.timer is None
                    and self._runtimes.get(runtime.job_id) is runtime
                ):
                    del self._runtimes[runtime.job_id]

    def _take_rearm(self, runtime: JobRuntime) -> bool:
        # Caller holds self._lock
        requested = runtime.rearm_requested
        runtime.rearm_requested = False
        if not requested or runtime.cancel_event.is_set():
            return False
        if self._runtimes.get(runtime.job_id) is not runtime:
            return False
        job = self.engine.store.get(runtime.job_id)
        if job is None or job.status != SniperStatus.PENDING:
            return False
        logger.info(f"[sniper:{job.short_id}] Re-arming after worker exit")
        self._arm_locked(job, runtime)
        return True

    # =========================================================================
    # Cancellation & Release
    # =========================================================================

    def cancel(self, job_id: str) -> bool:
        """
        Signal a job's worker to stop and disarm its timer. Does not block.

        Returns:
            True if the job had a runtime
        """
        with self._lock:
            runtime = self._runtimes.get(job_id)
            if runtime is None:
                return False
            runtime.cancel_event.set()
            if runtime.timer is not None:
                runtime.timer.cancel()
                runtime.timer = None
        logger.info(f"[sniper:{job_id[:8]}] Cancellation signalled")
        return True

    def release(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """
        Cancel, wait for the worker to unwind, and release the job's session.

        Returns:
            True if a session was closed by this call
        """
        with self._lock:
            runtime = self._runtimes.pop(job_id, None)
            if runtime is None:
                return False
            runtime.cancel_event.set()
            if runtime.timer is not None:
                runtime.timer.cancel()
                runtime.timer = None
            worker = runtime.worker

        self._join(runtime, worker, timeout)
        return runtime.lease.release()

    def shutdown(self, timeout: Optional[float] = None) -> int:
        """
        Stop every job: disarm timers, signal and join workers, release all
        sessions including those kept for in-cart jobs.

        Returns:
            Number of runtimes drained
        """
        timeout = self.config.cancel_join_timeout_seconds if timeout is None else timeout

        with self._lock:
            runtimes = list(self._runtimes.values())
            self._runtimes.clear()
            for runtime in runtimes:
                runtime.cancel_event.set()
                if runtime.timer is not None:
                    runtime.timer.cancel()
                    runtime.timer = None

        for runtime in runtimes:
            self._join(runtime, runtime.worker, timeout)
            runtime.lease.release()

        if runtimes:
            logger.info(f"Scheduler drained {len(runtimes)} job runtimes")
        return len(runtimes)

    def _join(
        self,
        runtime: JobRuntime,
        worker: Optional[threading.Thread],
        timeout: Optional[float],
    ) -> None:
        if worker is None or worker is threading.current_thread():
            return
        timeout = self.config.cancel_join_timeout_seconds if timeout is None else timeout
        worker.join(timeout)
        if worker.is_alive():
            logger.warning(
                f"[sniper:{runtime.job_id[:8]}] Worker did not stop within {timeout}s"
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def is_armed(self, job_id: str) -> bool:
        with self._lock:
            runtime = self._runtimes.get(job_id)
            return runtime is not None and runtime.timer is not None

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            runtime = self._runtimes.get(job_id)
            return runtime is not None and runtime.is_running

    def runtime_count(self) -> int:
        with self._lock:
            return len(self._runtimes)
