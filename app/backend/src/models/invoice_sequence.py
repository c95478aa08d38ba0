"""Counter rows backing invoice number reservation."""

from __future__ import annotations

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.backend.src.db.base import Base


class InvoiceSequence(Base):
    """Last reserved invoice sequence value for an organization and prefix."""

    __tablename__ = "invoice_sequences"
    __table_args__ = (
        UniqueConstraint("organization_id", "prefix", name="uq_invoice_sequences_org_prefix"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    prefix: Mapped[str] = mapped_column(String(32), nullable=False)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


__all__ = ["InvoiceSequence"]
