"""
Sniper Core Module.

Job scheduling and acquisition engine:
- entities / store / broadcast: job records and live updates
- availability / session: external capabilities
- engine: per-job state machine
- scheduler / recovery / service: triggers, restart reconciliation, lifecycle
"""

from .entities import (
    SniperStatus,
    DateRange,
    Credentials,
    SniperJob,
    SniperJobRequest,
    expand_range,
)
from .errors import (
    SniperError,
    ValidationError,
    InvalidOperationError,
    JobNotFoundError,
    JobFinalizedError,
    SessionError,
    AvailabilityError,
    JobCancelledError,
)
from .config import SniperConfig
from .broadcast import BroadcastHub
from .store import JobRecordStore
from .credentials import CredentialVault
from .persistence import JobSnapshotStore
from .availability import (
    AvailabilitySource,
    RecGovAvailabilitySource,
    select_available_range,
    spanning_window,
)
from .session import Session, SessionLease
from .recgov_session import RecGovSession
from .engine import AcquisitionEngine
from .scheduler import Scheduler
from .recovery import RecoveryManager
from .service import SniperService

__all__ = [
    # Entities
    "SniperStatus",
    "DateRange",
    "Credentials",
    "SniperJob",
    "SniperJobRequest",
    "expand_range",
    # Errors
    "SniperError",
    "ValidationError",
    "InvalidOperationError",
    "JobNotFoundError",
    "JobFinalizedError",
    "SessionError",
    "AvailabilityError",
    "JobCancelledError",
    # Components
    "SniperConfig",
    "BroadcastHub",
    "JobRecordStore",
    "CredentialVault",
    "JobSnapshotStore",
    "AvailabilitySource",
    "RecGovAvailabilitySource",
    "select_available_range",
    "spanning_window",
    "Session",
    "SessionLease",
    "RecGovSession",
    "AcquisitionEngine",
    "Scheduler",
    "RecoveryManager",
    "SniperService",
]
