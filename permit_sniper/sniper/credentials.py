"""
Volatile credential table.

Credentials live only in this process's memory, keyed by job ID.
They are never written to the snapshot file and never broadcast.
"""

import threading
from typing import Optional

from .entities import Credentials


class CredentialVault:
    """Thread-safe in-memory map of job ID -> Credentials."""

    def __init__(self):
        self._credentials: dict[str, Credentials] = {}
        self._lock = threading.Lock()

    def put(self, job_id: str, credentials: Credentials) -> None:
        with self._lock:
            self._credentials[job_id] = credentials

    def get(self, job_id: str) -> Optional[Credentials]:
        with self._lock:
            return self._credentials.get(job_id)

    def has(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._credentials

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._credentials.pop(job_id, None)

    def clear(self) -> None:
        with self._lock:
            self._credentials.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._credentials)
