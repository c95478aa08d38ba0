"""Repair invoiced flags from line item back-references."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.models import ExtraTimeRecord, InvoiceLineItem, Visit
from app.backend.src.schemas.invoice import ReconciliationReport

from .metrics import invoice_reference_repairs_total

LOGGER = structlog.get_logger(__name__)


def reconcile_invoice_references(
    session: Session, *, organization_id: str | None = None
) -> ReconciliationReport:
    """Flag every visit and extra-time record that a line item references.

    Marking records invoiced after an invoice is written is best effort, so a
    record can be billed while still looking un-invoiced. This brings the flags
    back in line with the line items. The caller commits.
    """

    visit_query = (
        select(Visit, InvoiceLineItem.invoice_id)
        .join(InvoiceLineItem, InvoiceLineItem.visit_id == Visit.id)
        .where(Visit.is_invoiced.is_(False))
        .order_by(Visit.id)
    )
    extra_query = (
        select(ExtraTimeRecord, InvoiceLineItem.invoice_id)
        .join(InvoiceLineItem, InvoiceLineItem.extra_time_record_id == ExtraTimeRecord.id)
        .where(ExtraTimeRecord.invoiced.is_(False))
        .order_by(ExtraTimeRecord.id)
    )
    if organization_id is not None:
        visit_query = visit_query.where(InvoiceLineItem.organization_id == organization_id)
        extra_query = extra_query.where(InvoiceLineItem.organization_id == organization_id)

    report = ReconciliationReport()
    for visit, invoice_id in session.execute(visit_query).all():
        if visit.is_invoiced:
            continue
        visit.is_invoiced = True
        visit.included_in_invoice_id = invoice_id
        report.visits_relinked += 1

    for record, invoice_id in session.execute(extra_query).all():
        if record.invoiced:
            continue
        record.invoiced = True
        record.invoice_id = invoice_id
        report.extra_time_relinked += 1

    session.flush()
    invoice_reference_repairs_total.labels(kind="visit").inc(report.visits_relinked)
    invoice_reference_repairs_total.labels(kind="extra_time").inc(report.extra_time_relinked)
    LOGGER.info(
        "invoice_references_reconciled",
        organization_id=organization_id,
        visits_relinked=report.visits_relinked,
        extra_time_relinked=report.extra_time_relinked,
    )
    return report


__all__ = ["reconcile_invoice_references"]
