"""Per-client accounting settings blocks."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.backend.src.db.base import Base


class ClientGeneralAccountingSettings(Base):
    """General accounting settings; decides who pays for the client's care."""

    __tablename__ = "client_general_accounting_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(
        ForeignKey("clients.id"), nullable=False, unique=True, index=True
    )
    service_payer: Mapped[str | None] = mapped_column(String(64), nullable=True)
    authority_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invoice_method: Mapped[str | None] = mapped_column(String(32), nullable=True)


class ClientPrivateAccountingSettings(Base):
    """Settings used when the client pays privately."""

    __tablename__ = "client_private_accounting_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(
        ForeignKey("clients.id"), nullable=False, unique=True, index=True
    )
    charge_based_on: Mapped[str | None] = mapped_column(String(32), nullable=True)
    extra_time_calculation: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    credit_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ClientAuthorityAccountingSettings(Base):
    """Settings used when a funding authority pays for the client."""

    __tablename__ = "client_authority_accounting_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(
        ForeignKey("clients.id"), nullable=False, unique=True, index=True
    )
    authority_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    charge_based_on: Mapped[str | None] = mapped_column(String(32), nullable=True)
    extra_time_calculation: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    credit_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    contract_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)


__all__ = [
    "ClientAuthorityAccountingSettings",
    "ClientGeneralAccountingSettings",
    "ClientPrivateAccountingSettings",
]
