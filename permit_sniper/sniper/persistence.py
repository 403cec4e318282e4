"""
Persistence Gateway for sniper jobs.

Durable snapshot of every job record for crash recovery, stored as a JSON
list in data/sniper-jobs.json. Credentials are excluded by construction:
SniperJob carries none.

- save_all: overwrite-whole-set, idempotent, atomic (temp file + rename)
- save_all may be given a callable; it is read under the write lock, so the
  last write always carries the newest records
- load_all: empty list when no snapshot exists or it cannot be read
- Failures are logged and reported as False, never raised
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Iterable, Union

from .entities import SniperJob


logger = logging.getLogger(__name__)


class JobSnapshotStore:
    """JSON-file snapshot of SniperJob records."""

    def __init__(self, path: str | Path):
        """
        Args:
            path: Snapshot file path. Parent directories are created on save.
        """
        self.path = Path(path)
        self._lock = threading.Lock()

    def save_all(
        self,
        jobs: Union[Iterable[SniperJob], Callable[[], Iterable[SniperJob]]],
    ) -> bool:
        """
        Replace the snapshot with the given jobs.

        Args:
            jobs: The records, or a callable returning them. A callable is
                read under the write lock, so concurrent savers cannot
                overwrite a newer snapshot with an older one.

        Returns:
            True if written, False on any I/O or serialization error
        """
        tmp_path = self.path.with_name(self.path.name + ".tmp")

        with self._lock:
            if callable(jobs):
                jobs = jobs()
            payload = [job.to_dict() for job in jobs]
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self.path)
                return True
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Failed to persist {len(payload)} jobs to {self.path}: {e}")
                return False

    def load_all(self) -> list[SniperJob]:
        """
        Load every job from the snapshot.

        Records that cannot be parsed are skipped with a warning.
        """
        with self._lock:
            if not self.path.exists():
                return []

            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Ignoring unreadable job snapshot {self.path}: {e}")
                return []

        if not isinstance(data, list):
            logger.warning(f"Ignoring job snapshot {self.path}: expected a list")
            return []

        jobs = []
        for record in data:
            try:
                jobs.append(SniperJob.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed job record in {self.path}: {e}")
        return jobs
