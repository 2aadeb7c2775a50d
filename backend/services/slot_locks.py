"""In-process serialization of admissions for one (date, time slot).

Row locks (``SELECT ... FOR UPDATE``) serialize admissions across processes on
PostgreSQL. SQLite ignores them, so every write path touching a slot's
occupancy also holds this lock for the whole transaction.
"""

import weakref
from contextlib import contextmanager
from threading import Lock


class _SlotLock:
    __slots__ = ('lock', '__weakref__')

    def __init__(self):
        self.lock = Lock()


_registry_lock = Lock()
_slot_locks: 'weakref.WeakValueDictionary[tuple[str, str], _SlotLock]' = weakref.WeakValueDictionary()


def _lock_for(date_index: str, time_slot: str) -> _SlotLock:
    key = (date_index, time_slot)
    with _registry_lock:
        slot_lock = _slot_locks.get(key)
        if slot_lock is None:
            slot_lock = _SlotLock()
            _slot_locks[key] = slot_lock
        return slot_lock


@contextmanager
def slot_guard(date_index: str, time_slot: str):
    slot_lock = _lock_for(date_index, time_slot)
    with slot_lock.lock:
        yield
