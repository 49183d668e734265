"""Daily ceiling on automatic approvals.

``DailyCapGuard`` keeps its counter in process memory, so every instance
enforces its own cap and the effective limit is ``cap * instances``.
``DatabaseDailyCapGuard`` keeps a day-bucketed row in the shared store and is
the one to use when several instances run behind a load balancer.
"""
from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import date
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rebate import db
from rebate.config import get_settings
from rebate.core.logging import get_logger
from rebate.models.daily_counter import DailyApprovalCounter
from rebate.utils.time import utctoday

logger = get_logger(__name__)


class SlotGuard(Protocol):
    max_per_day: int
    # True when a reservation is rolled back together with the caller's session.
    joins_transaction: bool

    def try_reserve_slot(self, db_session: Session | None = None) -> bool: ...

    def release_slot(self, db_session: Session | None = None) -> None: ...

    def used_today(self, db_session: Session | None = None) -> int: ...


class DailyCapGuard:
    """In-process counter with lazy calendar-day rollover."""

    joins_transaction = False

    def __init__(self, max_per_day: int, *, today: Callable[[], date] = utctoday) -> None:
        self.max_per_day = max_per_day
        self._today = today
        self._day = today()
        self._count = 0
        self._lock = threading.Lock()

    def _rollover(self) -> None:
        current = self._today()
        if current != self._day:
            self._day = current
            self._count = 0

    def try_reserve_slot(self, db_session: Session | None = None) -> bool:
        with self._lock:
            self._rollover()
            if self._count >= self.max_per_day:
                logger.warning(
                    "Daily auto-approval cap reached",
                    extra={"day": self._day.isoformat(), "max_per_day": self.max_per_day},
                )
                return False
            self._count += 1
            return True

    def release_slot(self, db_session: Session | None = None) -> None:
        with self._lock:
            self._rollover()
            self._count = max(self._count - 1, 0)

    def used_today(self, db_session: Session | None = None) -> int:
        with self._lock:
            self._rollover()
            return self._count


class DatabaseDailyCapGuard:
    """Shared counter using a conditional increment on the day's bucket row.

    When a session is passed in, the change joins that session's transaction
    and is persisted by the caller's commit; otherwise a short-lived session
    commits it immediately.
    """

    joins_transaction = True

    def __init__(self, max_per_day: int, *, today: Callable[[], date] = utctoday) -> None:
        self.max_per_day = max_per_day
        self._today = today

    def _bucket(self) -> str:
        return self._today().isoformat()

    def _increment(self, session: Session, day: str) -> bool:
        result = session.execute(
            update(DailyApprovalCounter)
            .where(
                DailyApprovalCounter.day == day,
                DailyApprovalCounter.count < self.max_per_day,
            )
            .values(count=DailyApprovalCounter.count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _bucket_exists(self, session: Session, day: str) -> bool:
        return session.scalar(select(DailyApprovalCounter.id).where(DailyApprovalCounter.day == day)) is not None

    def try_reserve_slot(self, db_session: Session | None = None) -> bool:
        if self.max_per_day <= 0:
            return False
        day = self._bucket()
        with db.session_scope(db_session) as session:
            if self._increment(session, day):
                return True
            if self._bucket_exists(session, day):
                logger.warning(
                    "Daily auto-approval cap reached",
                    extra={"day": day, "max_per_day": self.max_per_day},
                )
                return False
            try:
                with session.begin_nested():
                    session.add(DailyApprovalCounter(day=day, count=1))
            except IntegrityError:
                # Another instance created the bucket first.
                return self._increment(session, day)
            return True

    def release_slot(self, db_session: Session | None = None) -> None:
        with db.session_scope(db_session) as session:
            session.execute(
                update(DailyApprovalCounter)
                .where(DailyApprovalCounter.day == self._bucket(), DailyApprovalCounter.count > 0)
                .values(count=DailyApprovalCounter.count - 1)
                .execution_options(synchronize_session=False)
            )

    def used_today(self, db_session: Session | None = None) -> int:
        with db.session_scope(db_session) as session:
            value = session.scalar(
                select(DailyApprovalCounter.count).where(DailyApprovalCounter.day == self._bucket())
            )
        return int(value or 0)


_memory_guard: DailyCapGuard | None = None
_memory_guard_lock = threading.Lock()


def get_daily_cap_guard() -> SlotGuard:
    """Return the guard selected by ``DAILY_CAP_BACKEND``."""

    global _memory_guard
    settings = get_settings()
    if settings.DAILY_CAP_BACKEND == "memory":
        with _memory_guard_lock:
            if _memory_guard is None or _memory_guard.max_per_day != settings.AUTO_APPROVAL_MAX_DAILY:
                _memory_guard = DailyCapGuard(settings.AUTO_APPROVAL_MAX_DAILY)
            return _memory_guard
    return DatabaseDailyCapGuard(settings.AUTO_APPROVAL_MAX_DAILY)


def reset_memory_guard() -> None:
    global _memory_guard
    with _memory_guard_lock:
        _memory_guard = None


__all__ = [
    "SlotGuard",
    "DailyCapGuard",
    "DatabaseDailyCapGuard",
    "get_daily_cap_guard",
    "reset_memory_guard",
]
