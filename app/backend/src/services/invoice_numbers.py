"""Invoice number reservation."""

from __future__ import annotations

from datetime import date

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.models import Invoice, InvoiceSequence

LOGGER = structlog.get_logger(__name__)


def period_prefix(issue_date: date, prefix: str | None = None) -> str:
    """Return the ``<prefix>-<yyyy>-<mm>`` stem for ``issue_date``."""

    stem = prefix if prefix is not None else get_settings().invoice_number_prefix
    return f"{stem}-{issue_date.year:04d}-{issue_date.month:02d}"


def format_invoice_number(stem: str, value: int) -> str:
    return f"{stem}-{value:04d}"


class InvoiceNumberAllocator:
    """Reserve invoice numbers from a locked counter row.

    One ``invoice_sequences`` row exists per organization and monthly prefix.
    The increment is flushed but never committed here, so the reservation
    becomes durable with the caller's invoice header and is returned to the
    pool if that transaction rolls back.
    """

    def __init__(self, session: Session, *, prefix: str | None = None) -> None:
        self._session = session
        self._prefix = prefix

    def _locked_counter(self, organization_id: str, stem: str) -> InvoiceSequence | None:
        return self._session.execute(
            select(InvoiceSequence)
            .where(
                InvoiceSequence.organization_id == organization_id,
                InvoiceSequence.prefix == stem,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _highest_issued(self, organization_id: str, stem: str) -> int:
        # Numbers issued before the counter existed still occupy the sequence.
        numbers = self._session.execute(
            select(Invoice.invoice_number).where(
                Invoice.organization_id == organization_id,
                Invoice.invoice_number.like(f"{stem}-%"),
            )
        ).scalars()
        highest = 0
        for number in numbers:
            suffix = number[len(stem) + 1 :]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return highest

    def allocate(self, organization_id: str, issue_date: date) -> str:
        stem = period_prefix(issue_date, self._prefix)
        counter = self._locked_counter(organization_id, stem)

        if counter is None:
            seed = self._highest_issued(organization_id, stem)
            savepoint = self._session.begin_nested()
            try:
                counter = InvoiceSequence(
                    organization_id=organization_id, prefix=stem, current_value=seed + 1
                )
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                number = format_invoice_number(stem, counter.current_value)
                LOGGER.info(
                    "invoice_sequence_created",
                    organization_id=organization_id,
                    prefix=stem,
                    seeded_from=seed,
                    invoice_number=number,
                )
                return number
            except IntegrityError:
                LOGGER.info(
                    "invoice_sequence_race_retry", organization_id=organization_id, prefix=stem
                )
                savepoint.rollback()
                counter = self._locked_counter(organization_id, stem)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        number = format_invoice_number(stem, counter.current_value)
        LOGGER.debug("invoice_number_allocated", organization_id=organization_id, invoice_number=number)
        return number

    def peek(self, organization_id: str, issue_date: date) -> int | None:
        """Return the last reserved value for the period without reserving."""

        stem = period_prefix(issue_date, self._prefix)
        counter = self._session.execute(
            select(InvoiceSequence).where(
                InvoiceSequence.organization_id == organization_id,
                InvoiceSequence.prefix == stem,
            )
        ).scalar_one_or_none()
        return counter.current_value if counter else None


__all__ = ["InvoiceNumberAllocator", "format_invoice_number", "period_prefix"]
