"""
Session capability.

A Session is one exclusive automation session against the reservation site,
owned by a single job's control flow. Each step may fail independently.

claim() must return True only on an explicit positive confirmation that the
range is in the cart. Anything less is False.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, Optional

from .entities import Credentials, DateRange, SniperJob


logger = logging.getLogger(__name__)


class Session(ABC):
    """Abstract automation session."""

    @abstractmethod
    def open(self) -> None:
        """Start the session (e.g. launch the browser)."""
        ...

    @abstractmethod
    def sign_in(self, credentials: Credentials) -> None:
        """Sign in. Raises SessionError on failure."""
        ...

    @abstractmethod
    def select_target(self, division_id: str, start_date: date) -> None:
        """Navigate to the availability view for a division and date."""
        ...

    @abstractmethod
    def set_group_size(self, group_size: int) -> None:
        """Set the party size."""
        ...

    @abstractmethod
    def claim(self, date_range: DateRange) -> bool:
        """Try to put the range in the cart. True only when confirmed."""
        ...

    @abstractmethod
    def close(self) -> None:
        """End the session and free its resources."""
        ...


SessionFactory = Callable[[SniperJob], Session]


class SessionLease:
    """
    Holds at most one Session for a job and closes it exactly once.

    release() may be called from any thread, any number of times, before or
    after a session is attached. Only the first call that finds an attached
    session closes it. A session attached after release() is closed at once.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._session: Optional[Session] = None
        self._released = False
        self._lock = threading.Lock()

    def attach(self, session: Session) -> None:
        with self._lock:
            if not self._released:
                self._session = session
                return
        logger.info(f"[sniper:{self.job_id[:8]}] Session attached after release, closing")
        self._close(session)

    @property
    def session(self) -> Optional[Session]:
        with self._lock:
            return self._session

    @property
    def released(self) -> bool:
        with self._lock:
            return self._released

    def release(self) -> bool:
        """
        Close the attached session, if any.

        Returns:
            True if this call closed a session
        """
        with self._lock:
            if self._released:
                return False
            self._released = True
            session, self._session = self._session, None

        if session is None:
            return False
        self._close(session)
        return True

    def _close(self, session: Session) -> None:
        try:
            session.close()
            logger.info(f"[sniper:{self.job_id[:8]}] Session released")
        except Exception as e:
            logger.warning(f"[sniper:{self.job_id[:8]}] Error closing session: {e}")
