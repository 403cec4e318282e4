"""
Sniper-specific exceptions.

Categories:
- Validation: request rejected before a job exists
- Lifecycle: operation not allowed for the job's current state
- Structural: session setup failures, never retried
- Transient: a single availability poll failing, retried within the phase
- Cancellation: unwinds a job's control flow
"""


class SniperError(Exception):
    """Base exception for all sniper errors."""
    pass


class ValidationError(SniperError):
    """
    Raised when a job request is malformed.

    Examples:
    - No desired date ranges
    - A range whose end date is not after its start date
    - Missing credentials
    """
    pass


class InvalidOperationError(SniperError):
    """
    Raised when an operation does not fit the job's current state.

    Examples:
    - Cancelling a job that already finished
    - Supplying credentials to a finished job
    """
    pass


class JobNotFoundError(SniperError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobFinalizedError(InvalidOperationError):
    """
    Raised when mutating a job that already reached a terminal status.

    Keeps a late engine write from overwriting a cancellation, and a late
    cancellation from overwriting a success.
    """

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} is already {status}")


class SessionError(SniperError):
    """Raised when a session step fails (open, sign-in, navigation, group size)."""
    pass


class AvailabilityError(SniperError):
    """Raised when a single availability query fails (HTTP, network, payload)."""
    pass


class JobCancelledError(SniperError):
    """Raised inside a job's control flow once its cancellation signal is set."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job cancelled: {job_id}")
