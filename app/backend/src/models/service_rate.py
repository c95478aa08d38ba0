"""Shared service rates and their client assignments."""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Integer, Numeric, String, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base


class ServiceRate(Base):
    """A branch-wide rate definition that clients are assigned to."""

    __tablename__ = "service_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    branch_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    service_code: Mapped[str] = mapped_column(String(64), nullable=False)
    rate_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    applicable_days: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    time_from: Mapped[time | None] = mapped_column(Time, nullable=True)
    time_until: Mapped[time | None] = mapped_column(Time, nullable=True)
    bank_holiday_multiplier: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    is_vatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")

    assignments: Mapped[list["ClientRateAssignment"]] = relationship(
        "ClientRateAssignment", back_populates="service_rate"
    )


class ClientRateAssignment(Base):
    """Links a client to a shared :class:`ServiceRate`."""

    __tablename__ = "client_rate_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    service_rate_id: Mapped[int] = mapped_column(
        ForeignKey("service_rates.id"), nullable=False, index=True
    )
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    service_rate: Mapped[ServiceRate] = relationship("ServiceRate", back_populates="assignments")


__all__ = ["ClientRateAssignment", "ServiceRate"]
