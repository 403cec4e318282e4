"""
Sniper Test Fixtures.

Base fixtures:
  - Fast SniperConfig (sub-second phases)
  - Scripted availability source
  - Recording session factory
  - Store / vault / snapshot on tmp_path

Helpers:
  - make_request: valid SniperJobRequest with overridable fields
  - wait_for: poll a predicate until true or timeout
  - open_nights: availability map with every night of some ranges open
"""

import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from permit_sniper.sniper import (
    AvailabilitySource,
    BroadcastHub,
    CredentialVault,
    DateRange,
    JobRecordStore,
    JobSnapshotStore,
    Session,
    SessionError,
    SniperConfig,
    SniperJobRequest,
    SniperService,
    select_available_range,
)


RANGE_A = DateRange(date(2026, 7, 15), date(2026, 7, 18))
RANGE_B = DateRange(date(2026, 7, 20), date(2026, 7, 23))
RANGE_C = DateRange(date(2026, 8, 1), date(2026, 8, 3))


def open_nights(*ranges: DateRange, remaining: int = 4) -> dict:
    """Availability map where every night of the given ranges has capacity."""
    nights = {}
    for date_range in ranges:
        for night in date_range.nights():
            nights[night] = remaining
    return nights


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll until predicate() is true. Returns the final result."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeAvailabilitySource(AvailabilitySource):
    """
    Scripted availability source.

    Each query consumes the next scripted response; once the script is
    exhausted, `fallback` is used for every further query. A response is:
    - dict {date: remaining}: run through the real selection rule
    - Exception instance: raised
    - None: nothing available
    """

    def __init__(self, responses: Optional[list] = None, fallback=None):
        self.responses = list(responses or [])
        self.fallback = fallback
        self.calls: list[tuple] = []
        self.query_started = threading.Event()
        self.gate: Optional[threading.Event] = None
        self.closed = False

    def query(self, permit_id, division_id, ranges):
        self.calls.append(tuple(ranges))
        self.query_started.set()
        if self.gate is not None:
            self.gate.wait(5)

        item = self.responses.pop(0) if self.responses else self.fallback
        if isinstance(item, Exception):
            raise item
        if item is None:
            return None
        return select_available_range(item, ranges)

    def close(self):
        self.closed = True


class FakeSession(Session):
    """
    Session that records every step and counts closes.

    With a claim_gate, claim() sets claim_started and then blocks until the
    gate is set, like a checkout that is still in flight.
    """

    def __init__(self, claim_results: Optional[list] = None, fail_step: Optional[str] = None,
                 error: Optional[Exception] = None,
                 claim_gate: Optional[threading.Event] = None):
        self.claim_results = list(claim_results) if claim_results is not None else [True]
        self.fail_step = fail_step
        self.error = error or SessionError(f"{fail_step} failed")
        self.calls: list[tuple] = []
        self.close_count = 0
        self.claim_gate = claim_gate
        self.claim_started = threading.Event()
        self._lock = threading.Lock()

    def _step(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail_step == name:
            raise self.error

    def open(self):
        self._step("open")

    def sign_in(self, credentials):
        self._step("sign_in", credentials.email)

    def select_target(self, division_id, start_date):
        self._step("select_target", division_id, start_date)

    def set_group_size(self, group_size):
        self._step("set_group_size", group_size)

    def claim(self, date_range):
        self._step("claim", date_range)
        self.claim_started.set()
        if self.claim_gate is not None:
            self.claim_gate.wait(5)
        result = self.claim_results.pop(0) if self.claim_results else False
        if isinstance(result, Exception):
            raise result
        return result

    def close(self):
        with self._lock:
            self.close_count += 1

    @property
    def claimed_ranges(self) -> list:
        return [call[1] for call in self.calls if call[0] == "claim"]


class FakeSessionFactory:
    """Builds FakeSessions with shared settings and keeps every one built."""

    def __init__(self, **session_kwargs):
        self.session_kwargs = session_kwargs
        self.sessions: list[FakeSession] = []

    def __call__(self, job) -> FakeSession:
        session = FakeSession(**self.session_kwargs)
        self.sessions.append(session)
        return session

    @property
    def last(self) -> Optional[FakeSession]:
        return self.sessions[-1] if self.sessions else None


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fast_config() -> SniperConfig:
    """Timing shrunk so whole scenarios finish in well under a second."""
    return SniperConfig(
        pre_warm_lead_seconds=0.2,
        poll_interval_seconds=0.02,
        max_watch_seconds=0.3,
        availability_timeout_seconds=1.0,
        session_timeout_seconds=1.0,
        cancel_join_timeout_seconds=2.0,
    )


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture
def store(hub) -> JobRecordStore:
    return JobRecordStore(hub)


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault()


@pytest.fixture
def jobs_file(tmp_path):
    return tmp_path / "sniper-jobs.json"


@pytest.fixture
def snapshot(jobs_file) -> JobSnapshotStore:
    return JobSnapshotStore(jobs_file)


@pytest.fixture
def availability() -> FakeAvailabilitySource:
    return FakeAvailabilitySource(fallback=open_nights(RANGE_A))


@pytest.fixture
def sessions() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def make_request() -> Callable[..., SniperJobRequest]:
    """Factory for valid requests; window opens 50ms from now by default."""

    def _make(**overrides) -> SniperJobRequest:
        fields = {
            "permit_id": "233262",
            "permit_name": "Half Dome Day Hike",
            "division_id": "166",
            "desired_ranges": (RANGE_A,),
            "group_size": 2,
            "window_opens_at": datetime.now(timezone.utc) + timedelta(milliseconds=50),
            "email": "hiker@example.com",
            "password": "s3cret-pass",
        }
        fields.update(overrides)
        fields["desired_ranges"] = tuple(fields["desired_ranges"])
        return SniperJobRequest(**fields)

    return _make


@pytest.fixture
def service(jobs_file, fast_config, availability, sessions):
    """Fully wired service with fake adapters; drained after the test."""
    svc = SniperService.create(
        jobs_file=jobs_file,
        config=fast_config,
        availability=availability,
        session_factory=sessions,
    )
    svc.start(run_recovery=False)
    yield svc
    svc.shutdown(timeout=2.0)
