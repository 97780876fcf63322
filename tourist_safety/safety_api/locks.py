"""Per-subject mutual exclusion.

Detection passes for one subject arrive from request threads and from the
location-update consumer thread. The read-check-insert reconciliation and the
score read-modify-write must not interleave for the same subject; different
subjects never block each other.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class SubjectLockRegistry:
    """Hands out one re-entrant lock per subject id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, subject_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(subject_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[subject_id] = lock
            return lock

    @contextmanager
    def hold(self, subject_id: str) -> Iterator[None]:
        """Hold the subject's lock for the duration of the block.

        Re-entrant, so the ledger can be called while reconciliation holds it.
        """
        lock = self.get(subject_id)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared registry for the process
subject_locks = SubjectLockRegistry()
