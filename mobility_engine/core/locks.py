"""Per-patient mutual exclusion.

Protocol assignment and progression evaluation both read and then write a
patient's rows. Two concurrent runs for the same patient would interleave
those steps, so callers hold the patient's lock for the whole operation.
"""

import threading
import weakref
from collections.abc import Generator
from contextlib import contextmanager

_registry_lock = threading.Lock()
# Entries drop out once no caller holds the lock
_patient_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()


def _lock_for(patient_id: str) -> threading.Lock:
    with _registry_lock:
        lock = _patient_locks.get(patient_id)
        if lock is None:
            lock = threading.Lock()
            _patient_locks[patient_id] = lock
        return lock


@contextmanager
def patient_lock(patient_id: str) -> Generator[None, None, None]:
    """Hold the lock for one patient for the duration of the block."""
    lock = _lock_for(patient_id)
    with lock:
        yield
