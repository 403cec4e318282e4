"""
Timing and timeout configuration for the sniper core.
"""

from dataclasses import dataclass

# Defaults
PRE_WARM_LEAD_SECONDS = 2 * 60
POLL_INTERVAL_SECONDS = 1.5
MAX_WATCH_SECONDS = 5 * 60
AVAILABILITY_TIMEOUT_SECONDS = 10.0
SESSION_TIMEOUT_SECONDS = 30.0
CANCEL_JOIN_TIMEOUT_SECONDS = 5.0
RECGOV_BASE_URL = "https://www.recreation.gov"


@dataclass(frozen=True)
class SniperConfig:
    """
    Timing constants for scheduling and polling.

    pre_warm_lead_seconds: how long before the window the session is set up
    poll_interval_seconds: delay between availability polls while watching
    max_watch_seconds: how long to keep polling after the window opens
    availability_timeout_seconds: bound on a single availability request
    session_timeout_seconds: bound on a single session step
    cancel_join_timeout_seconds: how long cancel waits for a worker to unwind
    """

    pre_warm_lead_seconds: float = PRE_WARM_LEAD_SECONDS
    poll_interval_seconds: float = POLL_INTERVAL_SECONDS
    max_watch_seconds: float = MAX_WATCH_SECONDS
    availability_timeout_seconds: float = AVAILABILITY_TIMEOUT_SECONDS
    session_timeout_seconds: float = SESSION_TIMEOUT_SECONDS
    cancel_join_timeout_seconds: float = CANCEL_JOIN_TIMEOUT_SECONDS
    recgov_base_url: str = RECGOV_BASE_URL
    headless: bool = True
