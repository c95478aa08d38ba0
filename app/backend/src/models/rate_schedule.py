"""Client rate schedule model."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Time, func
from sqlalchemy.orm import Mapped, mapped_column

from app.backend.src.db.base import Base


class ClientRateSchedule(Base):
    """A billing rule configured directly against a client."""

    __tablename__ = "client_rate_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    authority_type: Mapped[str] = mapped_column(String(64), nullable=False, default="private")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Day tags as entered on the rate screens: "monday", "mon", "bank_holiday".
    days_covered: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    time_from: Mapped[time | None] = mapped_column(Time, nullable=True)
    time_until: Mapped[time | None] = mapped_column(Time, nullable=True)
    charge_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    base_rate: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    rate_15_minutes: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    rate_30_minutes: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    rate_45_minutes: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    rate_60_minutes: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    bank_holiday_multiplier: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    is_vatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


__all__ = ["ClientRateSchedule"]
