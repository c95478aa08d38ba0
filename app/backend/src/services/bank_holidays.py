"""Bank holiday lookups."""

from __future__ import annotations

from datetime import date, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.models import BankHoliday

LOGGER = structlog.get_logger(__name__)

ACTIVE_STATUS = "Active"


class BankHolidayCalendar:
    """Answers whether a date is an active bank holiday.

    Answers are memoised for the lifetime of the instance, so create one per
    generation run rather than sharing it across runs.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._known: dict[date, bool] = {}

    def is_bank_holiday(self, day: date) -> bool:
        if day not in self._known:
            match = self._session.execute(
                select(BankHoliday.id)
                .where(BankHoliday.registered_on == day, BankHoliday.status == ACTIVE_STATUS)
                .limit(1)
            ).scalar_one_or_none()
            self._known[day] = match is not None
            if match is not None:
                LOGGER.debug("bank_holiday_detected", day=day.isoformat())
        return self._known[day]

    def preload(self, start: date, end: date) -> None:
        """Fetch every active holiday in ``[start, end]`` with one query."""

        holidays = set(
            self._session.execute(
                select(BankHoliday.registered_on).where(
                    BankHoliday.registered_on >= start,
                    BankHoliday.registered_on <= end,
                    BankHoliday.status == ACTIVE_STATUS,
                )
            ).scalars()
        )
        cursor = start
        while cursor <= end:
            self._known[cursor] = cursor in holidays
            cursor += timedelta(days=1)


__all__ = ["BankHolidayCalendar"]
