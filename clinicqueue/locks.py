# clinicqueue/locks.py
"""Single-writer critical sections per doctor and per (doctor, day).

Two layers: a keyed in-process mutex for threads of one worker, and a
``SELECT ... FOR UPDATE`` on the doctor row so that separate workers sharing a
PostgreSQL database serialize too (SQLite ignores the row lock).
"""
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Tuple

from sqlalchemy.orm import Session

from . import models


class KeyedLocks:
    """Mutex per key, dropped again once nobody holds or waits for it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, Tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                lock, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    def __len__(self):
        with self._guard:
            return len(self._locks)


doctor_locks = KeyedLocks()
day_queue_locks = KeyedLocks()


def _locked_doctor(db: Session, doctor_id: int):
    return db.query(models.Doctor).filter(
        models.Doctor.id == doctor_id
    ).with_for_update().populate_existing().first()


@contextmanager
def doctor_lock(db: Session, doctor_id: int):
    """Hold the write lock for one doctor's availability state.

    Yields the doctor row (locked ``FOR UPDATE``) or None if it does not exist.
    """
    with doctor_locks.hold(doctor_id):
        yield _locked_doctor(db, doctor_id)


@contextmanager
def day_queue_lock(db: Session, doctor_id: int, slot_date: str):
    """Hold the write lock for one doctor's day-queue.

    The doctor lock is always taken first, then the day lock. Yields the doctor
    row (locked ``FOR UPDATE``) or None if it does not exist. The row lock
    lasts until the caller commits or rolls back.
    """
    with doctor_locks.hold(doctor_id):
        with day_queue_locks.hold((doctor_id, slot_date)):
            yield _locked_doctor(db, doctor_id)
