"""
Acquisition Engine Tests.

Drives AcquisitionEngine.run() directly (no scheduler) against the fake
availability source and session:
- Phase progression and session step order
- Pre-warm failures are structural (no retry)
- Poll failures are transient
- Watch deadline
- Booking fallback through the priority list
- Cancellation during the window wait and during an in-flight poll
- Session kept for in-cart, released exactly once otherwise
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from permit_sniper.sniper import (
    AcquisitionEngine,
    AvailabilityError,
    SessionLease,
    SniperConfig,
    SniperJob,
    SniperStatus,
)
from permit_sniper.sniper.entities import utc_now

from .conftest import (
    RANGE_A,
    RANGE_B,
    RANGE_C,
    FakeAvailabilitySource,
    FakeSessionFactory,
    open_nights,
    wait_for,
)


def _past() -> datetime:
    return datetime.now(timezone.utc) - timedelta(seconds=1)


@pytest.fixture
def checkpoint():
    return MagicMock()


@pytest.fixture
def build_engine(store, vault, fast_config, checkpoint):
    """Engine factory so tests can swap availability/session behaviour."""

    def _build(availability, sessions) -> AcquisitionEngine:
        return AcquisitionEngine(
            store=store,
            vault=vault,
            availability=availability,
            session_factory=sessions,
            config=fast_config,
            checkpoint=checkpoint,
        )

    return _build


@pytest.fixture
def add_job(store, vault, make_request):
    """Create a job in the store, with credentials unless told otherwise."""

    def _add(with_credentials: bool = True, **overrides) -> SniperJob:
        overrides.setdefault("window_opens_at", _past())
        request = make_request(**overrides)
        job = SniperJob.create(request)
        store.create(job)
        if with_credentials:
            vault.put(job.job_id, request.credentials)
        return job

    return _add


def _run(engine, job, cancel_event=None, lease=None):
    cancel_event = cancel_event or threading.Event()
    lease = lease or SessionLease(job.job_id)
    engine.run(job.job_id, cancel_event, lease)
    return lease


class TestHappyPath:
    """pending -> pre-warming -> watching -> booking -> in-cart."""

    def test_reaches_in_cart_with_found_range(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(fallback=open_nights(RANGE_A))
        sessions = FakeSessionFactory()
        job = add_job()

        lease = _run(build_engine(availability, sessions), job)

        final = store.get(job.job_id)
        assert final.status == SniperStatus.IN_CART
        assert final.booked_range == RANGE_A
        assert final.attempts == 1
        assert "added to cart" in final.message
        assert lease.session is sessions.last

    def test_session_steps_in_order(self, build_engine, add_job):
        sessions = FakeSessionFactory()
        job = add_job()

        _run(build_engine(FakeAvailabilitySource(fallback=open_nights(RANGE_A)), sessions), job)

        assert sessions.last.calls == [
            ("open",),
            ("sign_in", "hiker@example.com"),
            ("select_target", "166", RANGE_A.start_date),
            ("set_group_size", 2),
            ("claim", RANGE_A),
        ]

    def test_session_kept_open_in_cart(self, build_engine, add_job):
        sessions = FakeSessionFactory()
        job = add_job()

        lease = _run(build_engine(FakeAvailabilitySource(fallback=open_nights(RANGE_A)), sessions), job)

        assert sessions.last.close_count == 0
        assert not lease.released

    def test_status_progression_broadcast(self, build_engine, add_job, hub):
        statuses = []
        hub.subscribe(lambda j: statuses.append(j.status))
        job = add_job()

        _run(build_engine(FakeAvailabilitySource(fallback=open_nights(RANGE_A)), FakeSessionFactory()), job)

        distinct = [s for i, s in enumerate(statuses) if i == 0 or statuses[i - 1] != s]
        assert distinct == [
            SniperStatus.PENDING,
            SniperStatus.PRE_WARMING,
            SniperStatus.WATCHING,
            SniperStatus.BOOKING,
            SniperStatus.IN_CART,
        ]

    def test_checkpoint_at_phase_boundaries(self, build_engine, add_job, checkpoint):
        job = add_job()

        _run(build_engine(FakeAvailabilitySource(fallback=open_nights(RANGE_A)), FakeSessionFactory()), job)

        # pre-warming, watching, booking, in-cart
        assert checkpoint.call_count >= 4

    def test_second_range_selected_when_first_has_a_gap(self, build_engine, add_job, store):
        remaining = open_nights(RANGE_A, RANGE_B)
        remaining[RANGE_A.nights()[1]] = 0
        sessions = FakeSessionFactory()
        job = add_job(desired_ranges=(RANGE_A, RANGE_B))

        _run(build_engine(FakeAvailabilitySource(fallback=remaining), sessions), job)

        assert store.get(job.job_id).booked_range == RANGE_B
        assert sessions.last.claimed_ranges == [RANGE_B]

    def test_waits_for_window_before_polling(self, build_engine, add_job, hub):
        window = datetime.now(timezone.utc) + timedelta(milliseconds=150)
        watching_at = []
        messages = []

        def on_update(j):
            messages.append(j.message)
            if j.status == SniperStatus.WATCHING and not watching_at:
                watching_at.append(utc_now())

        hub.subscribe(on_update)
        job = add_job(window_opens_at=window)

        _run(build_engine(FakeAvailabilitySource(fallback=open_nights(RANGE_A)), FakeSessionFactory()), job)

        assert watching_at[0] >= window - timedelta(milliseconds=20)
        assert any(m.startswith("Pre-warmed. Waiting") for m in messages)


class TestStartConditions:

    def test_missing_credentials_stays_pending(self, build_engine, add_job, store):
        sessions = FakeSessionFactory()
        job = add_job(with_credentials=False)

        _run(build_engine(FakeAvailabilitySource(), sessions), job)

        final = store.get(job.job_id)
        assert final.status == SniperStatus.PENDING
        assert final.message.startswith("Cannot start: credentials not provided")
        assert sessions.sessions == []

    def test_non_pending_job_is_left_alone(self, build_engine, add_job, store):
        sessions = FakeSessionFactory()
        job = add_job()
        store.mutate(job.job_id, status=SniperStatus.CANCELLED, message="Cancelled by user.")

        _run(build_engine(FakeAvailabilitySource(), sessions), job)

        assert store.get(job.job_id).message == "Cancelled by user."
        assert sessions.sessions == []

    def test_unknown_job_is_ignored(self, build_engine):
        engine = build_engine(FakeAvailabilitySource(), FakeSessionFactory())
        engine.run("missing", threading.Event(), SessionLease("missing"))


class TestPreWarmFailures:
    """Structural: fail immediately, never retried."""

    def test_sign_in_failure_fails_job(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(fallback=open_nights(RANGE_A))
        sessions = FakeSessionFactory(fail_step="sign_in")
        job = add_job()

        _run(build_engine(availability, sessions), job)

        final = store.get(job.job_id)
        assert final.status == SniperStatus.FAILED
        assert final.message == "Pre-warm failed: sign_in failed"
        assert availability.calls == []
        assert len(sessions.sessions) == 1
        assert sessions.last.close_count == 1

    def test_unexpected_step_error_surfaces_cause(self, build_engine, add_job, store):
        sessions = FakeSessionFactory(fail_step="open", error=RuntimeError("chrome not found"))
        job = add_job()

        _run(build_engine(FakeAvailabilitySource(), sessions), job)

        final = store.get(job.job_id)
        assert final.status == SniperStatus.FAILED
        assert "chrome not found" in final.message
        assert sessions.last.close_count == 1

    def test_factory_failure_fails_job(self, build_engine, add_job, store):
        def broken_factory(job):
            raise RuntimeError("no browser available")

        job = add_job()

        _run(build_engine(FakeAvailabilitySource(), broken_factory), job)

        assert store.get(job.job_id).status == SniperStatus.FAILED
        assert "no browser available" in store.get(job.job_id).message


class TestWatching:

    def test_poll_errors_are_transient(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(
            responses=[AvailabilityError("HTTP 503"), None, open_nights(RANGE_A)]
        )
        job = add_job()

        _run(build_engine(availability, FakeSessionFactory()), job)

        final = store.get(job.job_id)
        assert final.status == SniperStatus.IN_CART
        assert final.attempts == 3

    def test_poll_error_logged_into_message(self, build_engine, add_job, hub):
        messages = []
        hub.subscribe(lambda j: messages.append(j.message))
        availability = FakeAvailabilitySource(
            responses=[AvailabilityError("HTTP 503")], fallback=open_nights(RANGE_A)
        )
        job = add_job()

        _run(build_engine(availability, FakeSessionFactory()), job)

        assert "Poll #1: API error (HTTP 503). Retrying..." in messages

    def test_watch_deadline_fails_with_attempt_count(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(fallback=None)
        sessions = FakeSessionFactory()
        job = add_job()

        _run(build_engine(availability, sessions), job)

        final = store.get(job.job_id)
        assert final.status == SniperStatus.FAILED
        assert final.message.startswith(f"No availability detected after {final.attempts} polls")
        assert final.attempts == len(availability.calls)
        assert final.attempts >= 2
        assert sessions.last.close_count == 1
        assert sessions.last.claimed_ranges == []

    def test_watch_deadline_not_overslept_by_poll_interval(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(fallback=None)
        engine = build_engine(availability, FakeSessionFactory())
        engine.config = SniperConfig(poll_interval_seconds=2.0, max_watch_seconds=0.3)
        job = add_job()

        started = time.monotonic()
        _run(engine, job)
        elapsed = time.monotonic() - started

        assert store.get(job.job_id).status == SniperStatus.FAILED
        assert len(availability.calls) == 1
        assert elapsed < 1.0


class TestBookingFallback:
    """Claim failure falls back through the other ranges in priority order."""

    def test_fallback_to_next_available_range(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(fallback=open_nights(RANGE_A, RANGE_B, RANGE_C))
        sessions = FakeSessionFactory(claim_results=[False, True])
        job = add_job(desired_ranges=(RANGE_A, RANGE_B, RANGE_C))

        _run(build_engine(availability, sessions), job)

        final = store.get(job.job_id)
        assert final.status == SniperStatus.IN_CART
        assert final.booked_range == RANGE_B
        assert "(fallback)" in final.message
        assert sessions.last.claimed_ranges == [RANGE_A, RANGE_B]
        assert availability.calls[-1] == (RANGE_B,)

    def test_fallback_skips_ranges_no_longer_available(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(
            responses=[
                open_nights(RANGE_A, RANGE_B, RANGE_C),
                open_nights(RANGE_A),
                open_nights(RANGE_C),
            ]
        )
        sessions = FakeSessionFactory(claim_results=[False, True])
        job = add_job(desired_ranges=(RANGE_A, RANGE_B, RANGE_C))

        _run(build_engine(availability, sessions), job)

        assert store.get(job.job_id).booked_range == RANGE_C
        assert sessions.last.claimed_ranges == [RANGE_A, RANGE_C]

    def test_found_range_not_first_falls_back_to_earlier_range(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(
            responses=[open_nights(RANGE_B), open_nights(RANGE_A)]
        )
        sessions = FakeSessionFactory(claim_results=[False, True])
        job = add_job(desired_ranges=(RANGE_A, RANGE_B))

        _run(build_engine(availability, sessions), job)

        assert sessions.last.claimed_ranges == [RANGE_B, RANGE_A]
        assert store.get(job.job_id).booked_range == RANGE_A

    def test_claim_exception_counts_as_failed_claim(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(fallback=open_nights(RANGE_A, RANGE_B))
        sessions = FakeSessionFactory(claim_results=[RuntimeError("stale element"), True])
        job = add_job(desired_ranges=(RANGE_A, RANGE_B))

        _run(build_engine(availability, sessions), job)

        assert store.get(job.job_id).booked_range == RANGE_B

    def test_all_claims_fail(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(fallback=open_nights(RANGE_A, RANGE_B))
        sessions = FakeSessionFactory(claim_results=[False, False])
        job = add_job(desired_ranges=(RANGE_A, RANGE_B))

        _run(build_engine(availability, sessions), job)

        final = store.get(job.job_id)
        assert final.status == SniperStatus.FAILED
        assert final.message.startswith("Could not book any of the desired date ranges")
        assert final.booked_range is None
        assert sessions.last.close_count == 1

    def test_recheck_error_moves_on(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(
            responses=[
                open_nights(RANGE_A, RANGE_B, RANGE_C),
                AvailabilityError("timeout"),
                open_nights(RANGE_C),
            ]
        )
        sessions = FakeSessionFactory(claim_results=[False, True])
        job = add_job(desired_ranges=(RANGE_A, RANGE_B, RANGE_C))

        _run(build_engine(availability, sessions), job)

        assert store.get(job.job_id).booked_range == RANGE_C


class TestCancellation:
    """Every suspension point wakes on the job's cancel event."""

    def test_cancel_during_window_wait(self, build_engine, add_job, store):
        sessions = FakeSessionFactory()
        job = add_job(window_opens_at=datetime.now(timezone.utc) + timedelta(seconds=30))
        engine = build_engine(FakeAvailabilitySource(fallback=open_nights(RANGE_A)), sessions)
        cancel_event = threading.Event()
        lease = SessionLease(job.job_id)

        worker = threading.Thread(target=engine.run, args=(job.job_id, cancel_event, lease))
        worker.start()
        assert wait_for(lambda: store.get(job.job_id).message.startswith("Pre-warmed. Waiting"))

        cancel_event.set()
        worker.join(timeout=1.0)

        assert not worker.is_alive()
        assert store.get(job.job_id).status == SniperStatus.PRE_WARMING
        assert sessions.last.close_count == 1

    def test_cancel_races_in_flight_poll(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(fallback=open_nights(RANGE_A))
        availability.gate = threading.Event()
        sessions = FakeSessionFactory()
        job = add_job()
        engine = build_engine(availability, sessions)
        cancel_event = threading.Event()
        lease = SessionLease(job.job_id)

        worker = threading.Thread(target=engine.run, args=(job.job_id, cancel_event, lease))
        worker.start()
        assert availability.query_started.wait(2.0)

        # What the service does on cancel: signal, mark, release
        cancel_event.set()
        store.mutate(job.job_id, status=SniperStatus.CANCELLED, message="Cancelled by user.")
        lease.release()
        availability.gate.set()
        worker.join(timeout=1.0)

        final = store.get(job.job_id)
        assert final.status == SniperStatus.CANCELLED
        assert final.booked_range is None
        assert sessions.last.claimed_ranges == []
        assert sessions.last.close_count == 1

    def test_cancel_during_poll_interval(self, build_engine, add_job, store):
        availability = FakeAvailabilitySource(fallback=None)
        sessions = FakeSessionFactory()
        job = add_job()
        engine = build_engine(availability, sessions)
        engine.config = SniperConfig(
            poll_interval_seconds=30.0, max_watch_seconds=60.0
        )
        cancel_event = threading.Event()

        worker = threading.Thread(
            target=engine.run, args=(job.job_id, cancel_event, SessionLease(job.job_id))
        )
        worker.start()
        assert wait_for(lambda: store.get(job.job_id).attempts == 1)

        cancel_event.set()
        worker.join(timeout=1.0)

        assert not worker.is_alive()
        assert len(availability.calls) == 1
        assert sessions.last.close_count == 1
