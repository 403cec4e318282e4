"""
Sniper Domain Entities.

- DateRange: Entry/exit date pair, expands to the reserved nights
- SniperStatus: Phases of the acquisition state machine
- SniperJob: One scheduled acquisition attempt (immutable snapshot)
- Credentials: Sign-in secrets, held in memory only
- SniperJobRequest: What a caller supplies to create a job

SniperJob is a frozen dataclass. The Job Record Store swaps whole records
on every mutation, so any SniperJob handed out is a stable snapshot.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Any
import uuid


class SniperStatus(str, Enum):
    """
    Job phases.

    pending -> pre-warming -> watching -> booking -> in-cart
    Any non-terminal phase may end in failed or cancelled.
    """

    PENDING = "pending"
    PRE_WARMING = "pre-warming"
    WATCHING = "watching"
    BOOKING = "booking"
    IN_CART = "in-cart"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """True while an engine owns the job (past pending, not yet finished)."""
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset(
    {SniperStatus.IN_CART, SniperStatus.FAILED, SniperStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset(
    {SniperStatus.PRE_WARMING, SniperStatus.WATCHING, SniperStatus.BOOKING}
)


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Get current time as ISO format string."""
    return utc_now().isoformat().replace("+00:00", "Z")


def parse_instant(value: str | datetime) -> datetime:
    """
    Parse an ISO timestamp into an aware UTC datetime.

    Naive values are taken to be UTC. A trailing "Z" is accepted.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class DateRange:
    """
    An entry date and an exit date.

    The reserved nights are [start_date, end_date): entering July 15 and
    exiting July 18 reserves the nights of the 15th, 16th and 17th.
    """

    start_date: date
    end_date: date

    @classmethod
    def parse(cls, start: str | date, end: str | date) -> "DateRange":
        """Build a range from YYYY-MM-DD strings (or dates)."""
        start_date = start if isinstance(start, date) else date.fromisoformat(start)
        end_date = end if isinstance(end, date) else date.fromisoformat(end)
        return cls(start_date=start_date, end_date=end_date)

    @property
    def is_valid(self) -> bool:
        return self.end_date > self.start_date

    def nights(self) -> list[date]:
        """Every night covered by the range, start inclusive, end exclusive."""
        count = (self.end_date - self.start_date).days
        return [self.start_date + timedelta(days=offset) for offset in range(count)]

    def describe(self) -> str:
        """Human-readable form, e.g. '2026-07-15 to 2026-07-18 (3 nights)'."""
        count = len(self.nights())
        suffix = "" if count == 1 else "s"
        return f"{self.start_date.isoformat()} to {self.end_date.isoformat()} ({count} night{suffix})"

    def to_dict(self) -> dict:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DateRange":
        return cls.parse(data["start_date"], data["end_date"])


def expand_range(date_range: DateRange) -> list[date]:
    """Expand a DateRange into its individual nights."""
    return date_range.nights()


@dataclass(frozen=True)
class Credentials:
    """Sign-in secrets. Never persisted, never broadcast, never logged."""

    email: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class SniperJobRequest:
    """Everything a caller supplies to create a job."""

    permit_id: str
    division_id: str
    desired_ranges: tuple[DateRange, ...]
    group_size: int
    window_opens_at: datetime
    email: str
    password: str = field(repr=False)
    permit_name: str = ""

    @property
    def credentials(self) -> Credentials:
        return Credentials(email=self.email, password=self.password)


@dataclass(frozen=True)
class SniperJob:
    """
    A single scheduled acquisition attempt.

    Mutability rules:
    - job_id, permit_id, division_id, desired_ranges, group_size,
      window_opens_at, created_at: Immutable
    - status, attempts, message, booked_range, updated_at: Changed only
      through the Job Record Store, which replaces the whole record
    - booked_range, when set, is one of desired_ranges
    """

    job_id: str
    permit_id: str
    division_id: str
    desired_ranges: tuple[DateRange, ...]
    group_size: int
    window_opens_at: datetime
    permit_name: str = ""
    status: SniperStatus = SniperStatus.PENDING
    attempts: int = 0
    message: str = ""
    booked_range: Optional[DateRange] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def create(cls, request: SniperJobRequest) -> "SniperJob":
        """Create a new pending job with a generated ID."""
        now = now_iso()
        window = parse_instant(request.window_opens_at)
        return cls(
            job_id=generate_uuid(),
            permit_id=request.permit_id,
            division_id=request.division_id,
            desired_ranges=tuple(request.desired_ranges),
            group_size=request.group_size,
            window_opens_at=window,
            permit_name=request.permit_name,
            status=SniperStatus.PENDING,
            attempts=0,
            message=f"Scheduled. Window opens at {format_instant(window)}.",
            booked_range=None,
            created_at=now,
            updated_at=now,
        )

    @property
    def short_id(self) -> str:
        return self.job_id[:8]

    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def evolve(self, **changes: Any) -> "SniperJob":
        """Return a copy with changes applied and updated_at stamped."""
        changes.setdefault("updated_at", now_iso())
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Plain JSON-compatible form, used for persistence and broadcast."""
        return {
            "job_id": self.job_id,
            "permit_id": self.permit_id,
            "permit_name": self.permit_name,
            "division_id": self.division_id,
            "desired_ranges": [r.to_dict() for r in self.desired_ranges],
            "group_size": self.group_size,
            "window_opens_at": format_instant(self.window_opens_at),
            "status": self.status.value,
            "attempts": self.attempts,
            "message": self.message,
            "booked_range": self.booked_range.to_dict() if self.booked_range else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SniperJob":
        booked = data.get("booked_range")
        return cls(
            job_id=data["job_id"],
            permit_id=data["permit_id"],
            permit_name=data.get("permit_name", ""),
            division_id=data["division_id"],
            desired_ranges=tuple(DateRange.from_dict(r) for r in data["desired_ranges"]),
            group_size=int(data["group_size"]),
            window_opens_at=parse_instant(data["window_opens_at"]),
            status=SniperStatus(data["status"]),
            attempts=int(data.get("attempts", 0)),
            message=data.get("message", ""),
            booked_range=DateRange.from_dict(booked) if booked else None,
            created_at=data.get("created_at") or now_iso(),
            updated_at=data.get("updated_at") or now_iso(),
        )
