from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, Generator, Hashable, List

from sqlalchemy.orm import Session

from .config import Settings
from .models import AppSetting


def _normalize_weekdays(values: Any) -> List[int]:
    days: List[int] = []
    for value in values or []:
        try:
            day = int(value)
        except (TypeError, ValueError):
            continue
        if 1 <= day <= 7 and day not in days:
            days.append(day)
    return sorted(days)


@dataclass(slots=True)
class Preferences:
    """Work quota settings used when totals are computed locally."""

    work_hours_per_day: int = 8
    work_days: List[int] = field(default_factory=lambda: [7, 1, 2, 3, 4])
    first_weekday: int = 7


class RuntimeState:
    """Preferences that can be adjusted at runtime plus the reconciliation locks.

    Reconciliation passes touching the same collection must not interleave;
    :meth:`locked` hands out one lock per collection key.
    """

    def __init__(self, base_settings: Settings):
        self._lock = RLock()
        self._collection_locks: Dict[Hashable, RLock] = {}
        self.work_hours_per_day: int = max(0, int(base_settings.work_hours_per_day))
        self.work_days: List[int] = _normalize_weekdays(base_settings.work_days)
        self.first_weekday: int = base_settings.first_weekday

    def preferences(self) -> Preferences:
        with self._lock:
            return Preferences(
                work_hours_per_day=self.work_hours_per_day,
                work_days=list(self.work_days),
                first_weekday=self.first_weekday,
            )

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "work_hours_per_day": self.work_hours_per_day,
                "work_days": list(self.work_days),
                "first_weekday": self.first_weekday,
            }

    def apply(self, updates: Dict[str, Any]) -> None:
        with self._lock:
            if "work_hours_per_day" in updates and updates["work_hours_per_day"] is not None:
                self.work_hours_per_day = max(0, int(updates["work_hours_per_day"]))
            if "work_days" in updates and updates["work_days"] is not None:
                self.work_days = _normalize_weekdays(updates["work_days"])
            if "first_weekday" in updates and updates["first_weekday"] is not None:
                day = int(updates["first_weekday"])
                if 1 <= day <= 7:
                    self.first_weekday = day

    def load_from_db(self, session: Session) -> None:
        records = session.query(AppSetting).all()
        if not records:
            return
        decoded: Dict[str, Any] = {}
        for record in records:
            if record.key == "work_days":
                try:
                    decoded["work_days"] = json.loads(record.value)
                except json.JSONDecodeError:
                    continue
            elif record.key in {"work_hours_per_day", "first_weekday"}:
                decoded[record.key] = int(record.value) if record.value else None
        if decoded:
            self.apply(decoded)

    def persist(self, session: Session, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if key == "work_days":
                value = json.dumps(_normalize_weekdays(value))
            elif key in {"work_hours_per_day", "first_weekday"}:
                value = "" if value in (None, "") else str(int(value))
            else:
                continue
            record = session.query(AppSetting).filter(AppSetting.key == key).one_or_none()
            if record:
                record.value = value
            else:
                session.add(AppSetting(key=key, value=value))
        session.commit()

    def collection_lock(self, key: Hashable) -> RLock:
        with self._lock:
            lock = self._collection_locks.get(key)
            if lock is None:
                lock = RLock()
                self._collection_locks[key] = lock
            return lock

    @contextmanager
    def locked(self, *keys: Hashable) -> Generator[None, None, None]:
        # Sorted acquisition keeps two passes over overlapping collections from deadlocking.
        ordered = sorted(set(keys), key=repr)
        locks = [self.collection_lock(key) for key in ordered]
        acquired: List[RLock] = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
