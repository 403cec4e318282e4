"""
Broadcast Hub for job-state changes.

Fans every published job snapshot out to the current subscribers.
Delivery is best-effort: a failing subscriber is logged and skipped,
never allowed to affect other subscribers or the mutation that published.
"""

import logging
import threading
from typing import Callable

from .entities import SniperJob


logger = logging.getLogger(__name__)

Subscriber = Callable[[SniperJob], None]


class BroadcastHub:
    """
    Fan-out of job snapshots to zero or more observers.

    Deliveries are serialized, so each subscriber sees snapshots in the
    order they were published.
    """

    def __init__(self):
        self._subscribers: dict[int, Subscriber] = {}
        self._next_token = 0
        self._lock = threading.Lock()
        self._deliver_lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for job snapshots.

        Returns:
            A function that removes the subscription. Calling it twice is harmless.
        """
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, job: SniperJob) -> None:
        """Deliver a snapshot to every current subscriber."""
        with self._lock:
            callbacks = list(self._subscribers.values())

        with self._deliver_lock:
            for callback in callbacks:
                try:
                    callback(job)
                except Exception as e:
                    logger.warning(f"Subscriber error while publishing job {job.job_id}: {e}")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
