"""Bank holiday calendar model."""

from __future__ import annotations

from datetime import date

from sqlalchemy import Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.backend.src.db.base import Base


class BankHoliday(Base):
    __tablename__ = "bank_holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    registered_on: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Active")


__all__ = ["BankHoliday"]
