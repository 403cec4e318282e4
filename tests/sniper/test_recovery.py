"""
Recovery Manager Tests.

Startup reconciliation of the persisted snapshot:
- Expired pending jobs fail
- Pending jobs with credentials are re-armed
- Pending jobs without credentials await re-entry
- Jobs caught mid-flight are failed
- Terminal jobs load untouched
- Running recovery twice gives the same records
"""

from datetime import datetime, timedelta, timezone

import pytest

from permit_sniper.sniper import (
    SniperConfig,
    SniperJob,
    SniperService,
    SniperStatus,
)
from permit_sniper.sniper.recovery import (
    AWAITING_CREDENTIALS_MESSAGE,
    INTERRUPTED_MESSAGE,
    WINDOW_PASSED_MESSAGE,
)

from .conftest import RANGE_A, FakeAvailabilitySource, FakeSessionFactory, open_nights


NOW = datetime(2026, 3, 1, 14, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return NOW


@pytest.fixture
def recovery_config() -> SniperConfig:
    return SniperConfig(pre_warm_lead_seconds=120, max_watch_seconds=300)


@pytest.fixture
def seed(snapshot, make_request):
    """Write jobs to the snapshot as a previous process would have."""

    def _seed(*specs) -> list[SniperJob]:
        jobs = []
        for window_offset, status in specs:
            job = SniperJob.create(
                make_request(window_opens_at=NOW + timedelta(seconds=window_offset))
            ).evolve(status=status)
            jobs.append(job)
        snapshot.save_all(jobs)
        return jobs

    return _seed


@pytest.fixture
def restart(jobs_file, recovery_config):
    """Start a fresh service over the snapshot, frozen at NOW."""
    built = []

    def _restart(credentials_for=()) -> tuple[SniperService, dict]:
        sessions = FakeSessionFactory()
        svc = SniperService.create(
            jobs_file=jobs_file,
            config=recovery_config,
            availability=FakeAvailabilitySource(fallback=open_nights(RANGE_A)),
            session_factory=sessions,
            clock=_clock,
        )
        for job_id, credentials in credentials_for:
            svc.vault.put(job_id, credentials)
        stats = svc.start()
        built.append(svc)
        return svc, stats

    yield _restart

    for svc in built:
        svc.shutdown(timeout=2.0)


class TestRecoverOnStartup:

    def test_empty_snapshot(self, restart):
        svc, stats = restart()

        assert stats["loaded"] == 0
        assert svc.list_jobs() == []

    def test_pending_past_watch_deadline_fails(self, seed, restart):
        (job,) = seed((-301, SniperStatus.PENDING))

        svc, stats = restart()

        recovered = svc.get_job(job.job_id)
        assert recovered.status == SniperStatus.FAILED
        assert recovered.message == WINDOW_PASSED_MESSAGE
        assert stats["expired"] == 1

    def test_pending_inside_watch_deadline_is_not_expired(self, seed, restart):
        (job,) = seed((-60, SniperStatus.PENDING))

        svc, stats = restart()

        assert svc.get_job(job.job_id).status == SniperStatus.PENDING
        assert stats["expired"] == 0

    def test_pending_without_credentials_awaits_reentry(self, seed, restart):
        (job,) = seed((3600, SniperStatus.PENDING))

        svc, stats = restart()

        recovered = svc.get_job(job.job_id)
        assert recovered.status == SniperStatus.PENDING
        assert recovered.message == AWAITING_CREDENTIALS_MESSAGE
        assert svc.needs_credentials(job.job_id)
        assert not svc.scheduler.is_armed(job.job_id)
        assert stats["awaiting_credentials"] == 1

    def test_pending_with_credentials_is_rearmed(self, seed, restart, make_request):
        (job,) = seed((3600, SniperStatus.PENDING))

        svc, stats = restart(credentials_for=[(job.job_id, make_request().credentials)])

        assert svc.scheduler.is_armed(job.job_id)
        assert stats["rearmed"] == 1
        assert svc.get_job(job.job_id).status == SniperStatus.PENDING

    @pytest.mark.parametrize(
        "status",
        [SniperStatus.PRE_WARMING, SniperStatus.WATCHING, SniperStatus.BOOKING],
    )
    def test_mid_flight_job_is_failed(self, seed, restart, status):
        (job,) = seed((3600, status))

        svc, stats = restart()

        recovered = svc.get_job(job.job_id)
        assert recovered.status == SniperStatus.FAILED
        assert recovered.message == INTERRUPTED_MESSAGE
        assert stats["interrupted"] == 1

    @pytest.mark.parametrize(
        "status",
        [SniperStatus.IN_CART, SniperStatus.FAILED, SniperStatus.CANCELLED],
    )
    def test_terminal_job_untouched(self, seed, restart, status):
        (job,) = seed((-3600, status))

        svc, _ = restart()

        assert svc.get_job(job.job_id) == job

    def test_mixed_snapshot_stats(self, seed, restart):
        seed(
            (-3600, SniperStatus.PENDING),
            (3600, SniperStatus.PENDING),
            (10, SniperStatus.WATCHING),
            (-7200, SniperStatus.IN_CART),
        )

        _, stats = restart()

        assert stats["loaded"] == 4
        assert stats["expired"] == 1
        assert stats["awaiting_credentials"] == 1
        assert stats["interrupted"] == 1
        assert stats["rearmed"] == 0
        assert stats["errors"] == []

    def test_recovery_is_persisted(self, seed, restart, snapshot):
        (job,) = seed((-3600, SniperStatus.PENDING))

        restart()

        assert snapshot.load_all()[0].status == SniperStatus.FAILED

    def test_idempotent(self, seed, restart, snapshot):
        seed(
            (-3600, SniperStatus.PENDING),
            (3600, SniperStatus.PENDING),
            (10, SniperStatus.BOOKING),
            (-7200, SniperStatus.CANCELLED),
        )

        first, _ = restart()
        first_view = {
            j.job_id: (j.status, j.message, j.booked_range) for j in first.list_jobs()
        }
        first.shutdown(timeout=2.0)

        second, _ = restart()
        second_view = {
            j.job_id: (j.status, j.message, j.booked_range) for j in second.list_jobs()
        }

        assert second_view == first_view

    def test_restart_after_shutdown_keeps_pending_job(self, jobs_file, make_request):
        config = SniperConfig(pre_warm_lead_seconds=0.2)
        svc = SniperService.create(
            jobs_file=jobs_file,
            config=config,
            availability=FakeAvailabilitySource(),
            session_factory=FakeSessionFactory(),
        )
        svc.start(run_recovery=False)
        job = svc.create_job(
            make_request(window_opens_at=datetime.now(timezone.utc) + timedelta(hours=1))
        )
        svc.shutdown(timeout=2.0)

        reborn = SniperService.create(
            jobs_file=jobs_file,
            config=config,
            availability=FakeAvailabilitySource(),
            session_factory=FakeSessionFactory(),
        )
        reborn.start()
        try:
            recovered = reborn.get_job(job.job_id)
            assert recovered.status == SniperStatus.PENDING
            assert recovered.message == AWAITING_CREDENTIALS_MESSAGE
            assert reborn.needs_credentials(job.job_id)
        finally:
            reborn.shutdown(timeout=2.0)
