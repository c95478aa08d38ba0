"""Scheduled visit model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base

COMPLETED_VISIT_STATUSES: tuple[str, ...] = ("done", "completed")


class Visit(Base):
    """A service occurrence written by the scheduling subsystem.

    Billing only reads visits, apart from flagging them invoiced once an
    invoice line item references them.
    """

    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    branch_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    actual_start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    actual_end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="scheduled")
    is_invoiced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    included_in_invoice_id: Mapped[int | None] = mapped_column(
        ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True
    )

    client: Mapped["Client"] = relationship("Client", back_populates="visits")


__all__ = ["COMPLETED_VISIT_STATUSES", "Visit"]
