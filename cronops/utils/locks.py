import threading
from collections import defaultdict
from contextlib import contextmanager

class KeyedLocks:
    """One re-entrant lock per key, created on first use"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = defaultdict(threading.RLock)

    def get(self, key):
        with self._guard:
            return self._locks[key]

    @contextmanager
    def hold(self, key):
        lock = self.get(key)
        with lock:
            yield


# Serialises bookkeeping writes and pause-vs-fire per job
job_locks = KeyedLocks()

# Serialises count-then-activate per user
user_locks = KeyedLocks()
