"""Invoice generation for single visits and billing periods.

Both entry points follow the same write sequence per invoice:

1. price every visit (and any included extra time) in memory;
2. reserve a number and commit the header;
3. commit the line items, deleting the header again if that fails;
4. flag the source records invoiced.

Step 4 is best effort. The line item back-references are authoritative, and
:func:`app.backend.src.services.reconciliation.reconcile_invoice_references`
repairs any flag that failed to stick.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal

import structlog
from sqlalchemy import exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.models import (
    COMPLETED_VISIT_STATUSES,
    Client,
    ExtraTimeRecord,
    Invoice,
    InvoiceLineItem,
    Visit,
)
from app.backend.src.schemas.billing import (
    BillableVisit,
    BillingConfig,
    BillingPreview,
    BillingSummary,
    DayType,
)
from app.backend.src.schemas.invoice import (
    BulkGenerationProgress,
    BulkGenerationResult,
    ClientGenerationError,
    ClientInvoiceSummary,
    InvoiceRead,
    VisitInvoiceResult,
    VisitInvoiceStatus,
)

from .bank_holidays import BankHolidayCalendar
from .billing_config import resolve_billing_config
from .errors import (
    BillingPreconditionError,
    InvoicePersistenceError,
    RateRuleError,
    VisitNotFoundError,
)
from .invoice_numbers import InvoiceNumberAllocator
from .metrics import (
    invoice_generation_outcomes_total,
    invoice_generation_seconds,
    invoices_generated_total,
)
from .rate_schedules import resolve_rate_rules
from .visit_billing import VisitBillingCalculator

LOGGER = structlog.get_logger(__name__)

APPROVED_EXTRA_TIME = "approved"
SINGLE_VISIT_STATUS = "draft"
PERIOD_STATUS = "pending"

ProgressCallback = Callable[[BulkGenerationProgress], None]


class _ClientSkipped(Exception):
    """Raised inside a period run when a client has nothing billable."""


@dataclass
class _PendingInvoice:
    """Everything needed to write one invoice, computed before any write."""

    client_id: int
    client_name: str
    config: BillingConfig
    summary: BillingSummary
    visits: list[Visit]
    extra_time: list[ExtraTimeRecord] = field(default_factory=list)
    line_items: list[InvoiceLineItem] = field(default_factory=list)

    @property
    def net_amount(self) -> Decimal:
        return sum((item.line_total for item in self.line_items), Decimal("0.00"))

    @property
    def vat_amount(self) -> Decimal:
        return sum((item.vat_amount for item in self.line_items), Decimal("0.00"))


def _clamp_to_day(service_date: date, moment: datetime) -> time:
    if moment.date() > service_date:
        return time.max
    return moment.time()


def billable_visit_from_record(visit: Visit, *, is_bank_holiday: bool) -> BillableVisit:
    """Reduce a stored visit to same-day wall-clock times.

    Visits crossing midnight are billed up to the end of their start day.
    """

    service_date = visit.start_time.date()
    actual_start = actual_end = None
    if visit.actual_start_time is not None and visit.actual_end_time is not None:
        actual_start = visit.actual_start_time.time()
        actual_end = _clamp_to_day(visit.actual_start_time.date(), visit.actual_end_time)
    return BillableVisit(
        id=visit.id,
        client_id=visit.client_id,
        service_date=service_date,
        planned_start=visit.start_time.time(),
        planned_end=_clamp_to_day(service_date, visit.end_time),
        actual_start=actual_start,
        actual_end=actual_end,
        is_bank_holiday=is_bank_holiday,
        service_title=visit.service_title,
    )


def _build_calculator(
    session: Session, client_id: int, config: BillingConfig, on_date: date | None
) -> VisitBillingCalculator | None:
    rules = resolve_rate_rules(session, client_id, on_date=on_date)
    if not rules:
        return None
    settings = get_settings()
    return VisitBillingCalculator(
        rules,
        config.use_actual_time,
        vat_rate=settings.billing_vat_rate,
        default_bank_holiday_multiplier=settings.billing_default_bank_holiday_multiplier,
        round_up_past_hour=settings.billing_round_up_past_hour,
    )


def _line_items_for(
    organization_id: str,
    summary: BillingSummary,
    extra_time: Iterable[ExtraTimeRecord],
) -> list[InvoiceLineItem]:
    rows = [
        InvoiceLineItem(
            organization_id=organization_id,
            visit_id=item.visit_id,
            description=item.description,
            visit_date=item.service_date,
            duration_minutes=item.billed_minutes,
            rate_type_applied=item.charge_strategy.value,
            unit_price=item.unit_rate,
            quantity=item.quantity,
            line_total=item.line_total,
            vat_amount=item.vat_amount,
            is_vatable=item.is_vatable,
            bank_holiday_multiplier_applied=item.multiplier,
            day_type=item.day_type.value,
        )
        for item in summary.line_items
    ]
    for record in extra_time:
        description = f"Extra time on {record.work_date.isoformat()} ({record.extra_time_minutes} min)"
        if record.reason:
            description += f": {record.reason}"
        rows.append(
            InvoiceLineItem(
                organization_id=organization_id,
                visit_id=None,
                extra_time_record_id=record.id,
                description=description,
                visit_date=record.work_date,
                duration_minutes=record.extra_time_minutes,
                rate_type_applied=DayType.EXTRA_TIME.value,
                unit_price=Decimal(record.total_cost),
                quantity=Decimal(1),
                line_total=Decimal(record.total_cost).quantize(Decimal("0.01")),
                vat_amount=Decimal("0.00"),
                is_vatable=False,
                bank_holiday_multiplier_applied=Decimal(1),
                day_type=DayType.EXTRA_TIME.value,
            )
        )
    return rows


def _write_line_items(session: Session, invoice: Invoice, rows: Sequence[InvoiceLineItem]) -> None:
    for row in rows:
        row.invoice_id = invoice.id
    session.add_all(rows)
    session.flush()
    session.commit()


def _delete_orphaned_header(session: Session, invoice_id: int, invoice_number: str) -> None:
    try:
        orphan = session.get(Invoice, invoice_id)
        if orphan is not None:
            session.delete(orphan)
            session.commit()
        LOGGER.warning("invoice_header_removed", invoice_id=invoice_id, invoice_number=invoice_number)
    except SQLAlchemyError:
        session.rollback()
        LOGGER.exception(
            "invoice_header_cleanup_failed", invoice_id=invoice_id, invoice_number=invoice_number
        )


def _mark_invoiced(
    session: Session,
    invoice_id: int,
    visits: Iterable[Visit],
    extra_time: Iterable[ExtraTimeRecord],
) -> None:
    for visit in visits:
        visit.is_invoiced = True
        visit.included_in_invoice_id = invoice_id
    for record in extra_time:
        record.invoiced = True
        record.invoice_id = invoice_id
    session.commit()


def _persist_invoice(
    session: Session,
    pending: _PendingInvoice,
    *,
    organization_id: str,
    branch_id: str | None,
    issue_date: date,
    status: str,
    description: str,
    start_date: date,
    end_date: date,
    visit_id: int | None = None,
) -> Invoice:
    config = pending.config
    net_amount = pending.net_amount
    vat_amount = pending.vat_amount
    try:
        invoice_number = InvoiceNumberAllocator(session).allocate(organization_id, issue_date)
        invoice = Invoice(
            client_id=pending.client_id,
            organization_id=organization_id,
            branch_id=branch_id,
            invoice_number=invoice_number,
            description=description,
            net_amount=net_amount,
            vat_amount=vat_amount,
            total_amount=net_amount + vat_amount,
            invoice_date=issue_date,
            due_date=issue_date + timedelta(days=config.credit_period_days),
            status=status,
            bill_to_type=config.payer_type.value,
            authority_id=config.authority_id,
            authority_reference=config.authority_reference,
            booked_time_minutes=pending.summary.total_billable_minutes,
            generated_from_booking=True,
            invoice_method=config.invoice_method,
            start_date=start_date,
            end_date=end_date,
            visit_id=visit_id,
        )
        session.add(invoice)
        session.flush()
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        LOGGER.exception("invoice_header_write_failed", client_id=pending.client_id)
        raise InvoicePersistenceError(f"Failed to write invoice header: {exc}") from exc

    invoice_id = invoice.id
    try:
        _write_line_items(session, invoice, pending.line_items)
    except SQLAlchemyError as exc:
        session.rollback()
        LOGGER.exception(
            "invoice_line_items_write_failed",
            client_id=pending.client_id,
            invoice_id=invoice_id,
            invoice_number=invoice_number,
        )
        _delete_orphaned_header(session, invoice_id, invoice_number)
        raise InvoicePersistenceError(
            f"Failed to write line items for invoice {invoice_number}: {exc}",
            invoice_number=invoice_number,
        ) from exc

    try:
        _mark_invoiced(session, invoice_id, pending.visits, pending.extra_time)
    except SQLAlchemyError:
        session.rollback()
        LOGGER.warning(
            "invoice_source_flag_failed",
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            visit_ids=[visit.id for visit in pending.visits],
            extra_time_ids=[record.id for record in pending.extra_time],
        )

    invoices_generated_total.labels(mode="visit" if visit_id is not None else "period").inc()
    LOGGER.info(
        "invoice_created",
        invoice_id=invoice_id,
        invoice_number=invoice_number,
        client_id=pending.client_id,
        net_amount=str(net_amount),
        line_items=len(pending.line_items),
    )
    return invoice


def _is_referenced_by_line_item(session: Session, visit_id: int) -> bool:
    return (
        session.execute(
            select(InvoiceLineItem.id).where(InvoiceLineItem.visit_id == visit_id).limit(1)
        ).scalar_one_or_none()
        is not None
    )


def _unbilled_extra_time_filter():
    return (
        ExtraTimeRecord.status == APPROVED_EXTRA_TIME,
        ExtraTimeRecord.invoiced.is_(False),
        ~exists().where(InvoiceLineItem.extra_time_record_id == ExtraTimeRecord.id),
    )


def generate_invoice_for_visit(
    session: Session,
    visit_id: int,
    *,
    organization_id: str | None,
    issue_date: date | None = None,
) -> VisitInvoiceResult:
    """Invoice one visit, unless it has already been invoiced.

    Returns ``already_invoiced`` or ``skipped`` results instead of raising when
    there is nothing to bill.
    """

    if not organization_id:
        raise BillingPreconditionError("Organization ID is required")

    visit = session.execute(
        select(Visit).where(Visit.id == visit_id, Visit.organization_id == organization_id)
    ).scalar_one_or_none()
    if visit is None:
        raise VisitNotFoundError(visit_id)

    if visit.is_invoiced or _is_referenced_by_line_item(session, visit.id):
        LOGGER.info("visit_already_invoiced", visit_id=visit.id)
        invoice_generation_outcomes_total.labels(mode="visit", outcome="already_invoiced").inc()
        return VisitInvoiceResult(visit_id=visit.id, status=VisitInvoiceStatus.ALREADY_INVOICED)

    def skipped(reason: str) -> VisitInvoiceResult:
        LOGGER.info("visit_invoice_skipped", visit_id=visit.id, reason=reason)
        invoice_generation_outcomes_total.labels(mode="visit", outcome="skipped").inc()
        return VisitInvoiceResult(visit_id=visit.id, status=VisitInvoiceStatus.SKIPPED, reason=reason)

    issue_date = issue_date or date.today()
    service_date = visit.start_time.date()

    with invoice_generation_seconds.labels(mode="visit").time():
        config = resolve_billing_config(session, visit.client_id)
        try:
            calculator = _build_calculator(session, visit.client_id, config, service_date)
        except RateRuleError as exc:
            return skipped(str(exc))
        if calculator is None:
            return skipped("No rate schedule configured for client")

        calendar = BankHolidayCalendar(session)
        billable = billable_visit_from_record(
            visit, is_bank_holiday=calendar.is_bank_holiday(service_date)
        )
        try:
            summary = calculator.calculate([billable])
        except ValueError as exc:
            return skipped(str(exc))
        if not summary.line_items:
            return skipped("No rate rule matches the visit")

        extra_time: list[ExtraTimeRecord] = []
        if config.include_extra_time:
            extra_time = list(
                session.execute(
                    select(ExtraTimeRecord)
                    .where(ExtraTimeRecord.visit_id == visit.id, *_unbilled_extra_time_filter())
                    .order_by(ExtraTimeRecord.id)
                ).scalars()
            )

        pending = _PendingInvoice(
            client_id=visit.client_id,
            client_name=visit.client.full_name,
            config=config,
            summary=summary,
            visits=[visit],
            extra_time=extra_time,
            line_items=_line_items_for(organization_id, summary, extra_time),
        )
        invoice = _persist_invoice(
            session,
            pending,
            organization_id=organization_id,
            branch_id=visit.branch_id,
            issue_date=issue_date,
            status=SINGLE_VISIT_STATUS,
            description=f"{visit.service_title or 'Care visit'} on {service_date.isoformat()}",
            start_date=service_date,
            end_date=service_date,
            visit_id=visit.id,
        )

    invoice_generation_outcomes_total.labels(mode="visit", outcome="created").inc()
    return VisitInvoiceResult(
        visit_id=visit.id,
        status=VisitInvoiceStatus.CREATED,
        invoice=InvoiceRead.model_validate(invoice),
    )


def preview_client_billing(
    session: Session,
    client_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> BillingPreview:
    """Price a client's un-invoiced completed visits without writing anything."""

    config = resolve_billing_config(session, client_id)
    query = select(Visit).where(
        Visit.client_id == client_id,
        Visit.status.in_(COMPLETED_VISIT_STATUSES),
        Visit.is_invoiced.is_(False),
        ~exists().where(InvoiceLineItem.visit_id == Visit.id),
    )
    if start_date is not None:
        query = query.where(Visit.start_time >= datetime.combine(start_date, time.min))
    if end_date is not None:
        query = query.where(
            Visit.start_time < datetime.combine(end_date + timedelta(days=1), time.min)
        )
    visits = list(session.execute(query.order_by(Visit.start_time, Visit.id)).scalars())

    calculator = _build_calculator(session, client_id, config, start_date)
    if calculator is None:
        summary = BillingSummary(unmatched_visit_ids=tuple(visit.id for visit in visits))
    else:
        calendar = BankHolidayCalendar(session)
        summary = calculator.calculate(
            billable_visit_from_record(
                visit, is_bank_holiday=calendar.is_bank_holiday(visit.start_time.date())
            )
            for visit in visits
        )
    return BillingPreview(client_id=client_id, config=config, summary=summary)


def _load_period_visits(
    session: Session, organization_id: str, branch_id: str, start_date: date, end_date: date
) -> list[Visit]:
    window_start = datetime.combine(start_date, time.min)
    window_end = datetime.combine(end_date + timedelta(days=1), time.min)
    return list(
        session.execute(
            select(Visit)
            .where(
                Visit.organization_id == organization_id,
                Visit.branch_id == branch_id,
                Visit.status.in_(COMPLETED_VISIT_STATUSES),
                Visit.start_time >= window_start,
                Visit.start_time < window_end,
                Visit.is_invoiced.is_(False),
                ~exists().where(InvoiceLineItem.visit_id == Visit.id),
            )
            .order_by(Visit.client_id, Visit.start_time, Visit.id)
        ).scalars()
    )


def _load_period_extra_time(
    session: Session, branch_id: str, start_date: date, end_date: date
) -> list[ExtraTimeRecord]:
    return list(
        session.execute(
            select(ExtraTimeRecord)
            .where(
                ExtraTimeRecord.branch_id == branch_id,
                ExtraTimeRecord.work_date >= start_date,
                ExtraTimeRecord.work_date <= end_date,
                *_unbilled_extra_time_filter(),
            )
            .order_by(ExtraTimeRecord.client_id, ExtraTimeRecord.work_date, ExtraTimeRecord.id)
        ).scalars()
    )


def generate_invoices_for_period(
    session: Session,
    *,
    organization_id: str | None,
    branch_id: str | None,
    start_date: date,
    end_date: date,
    period_type: str = "custom",
    issue_date: date | None = None,
    on_progress: ProgressCallback | None = None,
) -> BulkGenerationResult:
    """Invoice every un-invoiced completed visit of a branch within a period.

    Clients are invoiced one at a time; a failure for one client is recorded
    in the result and never stops the run.
    """

    if not organization_id:
        raise BillingPreconditionError("Organization ID is required")
    if not branch_id:
        raise BillingPreconditionError("Branch ID is required")
    if start_date > end_date:
        raise BillingPreconditionError("start_date must not be after end_date")

    issue_date = issue_date or date.today()
    log = LOGGER.bind(
        organization_id=organization_id,
        branch_id=branch_id,
        start_date=start_date.isoformat(),
        end_date=end_date.isoformat(),
        period_type=period_type,
    )
    log.info("period_invoice_generation_started")

    result = BulkGenerationResult()
    with invoice_generation_seconds.labels(mode="period").time():
        visits = _load_period_visits(session, organization_id, branch_id, start_date, end_date)
        if not visits:
            result.message = "No completed visits found for the selected period"
            log.info("period_invoice_generation_empty")
            return result

        visits_by_client: dict[int, list[Visit]] = {}
        for visit in visits:
            visits_by_client.setdefault(visit.client_id, []).append(visit)

        extra_by_client: dict[int, list[ExtraTimeRecord]] = {}
        for record in _load_period_extra_time(session, branch_id, start_date, end_date):
            extra_by_client.setdefault(record.client_id, []).append(record)

        clients = {
            client.id: client
            for client in session.execute(
                select(Client).where(Client.id.in_(visits_by_client))
            ).scalars()
        }

        calendar = BankHolidayCalendar(session)
        calendar.preload(start_date, end_date)

        client_ids = sorted(visits_by_client)
        total = len(client_ids)
        for index, client_id in enumerate(client_ids, start=1):
            client = clients.get(client_id)
            client_name = client.full_name if client is not None else f"Client {client_id}"
            client_visits = visits_by_client[client_id]
            if on_progress is not None:
                on_progress(
                    BulkGenerationProgress(current=index, total=total, current_client=client_name)
                )

            try:
                summary_row = _generate_client_invoice(
                    session,
                    client_id=client_id,
                    client_name=client_name,
                    visits=client_visits,
                    extra_time=extra_by_client.get(client_id, []),
                    calendar=calendar,
                    organization_id=organization_id,
                    branch_id=branch_id,
                    start_date=start_date,
                    end_date=end_date,
                    issue_date=issue_date,
                )
            except Exception as exc:  # noqa: BLE001
                session.rollback()
                log.warning(
                    "client_invoice_failed",
                    client_id=client_id,
                    reason=str(exc),
                    error_type=type(exc).__name__,
                )
                result.errors.append(
                    ClientGenerationError(
                        client_id=client_id,
                        client_name=client_name,
                        reason=str(exc),
                        visit_count=len(client_visits),
                    )
                )
                invoice_generation_outcomes_total.labels(mode="period", outcome="error").inc()
                continue

            result.invoices.append(summary_row)
            result.total_amount += summary_row.amount
            invoice_generation_outcomes_total.labels(mode="period", outcome="created").inc()

    result.success_count = len(result.invoices)
    result.error_count = len(result.errors)
    log.info(
        "period_invoice_generation_finished",
        success_count=result.success_count,
        error_count=result.error_count,
        total_amount=str(result.total_amount),
    )
    return result


def _generate_client_invoice(
    session: Session,
    *,
    client_id: int,
    client_name: str,
    visits: list[Visit],
    extra_time: list[ExtraTimeRecord],
    calendar: BankHolidayCalendar,
    organization_id: str,
    branch_id: str,
    start_date: date,
    end_date: date,
    issue_date: date,
) -> ClientInvoiceSummary:
    config = resolve_billing_config(session, client_id)
    calculator = _build_calculator(session, client_id, config, start_date)
    if calculator is None:
        raise _ClientSkipped("No rate schedule configured for client")

    billable = [
        billable_visit_from_record(
            visit, is_bank_holiday=calendar.is_bank_holiday(visit.start_time.date())
        )
        for visit in visits
    ]
    summary = calculator.calculate(billable)
    if not summary.line_items:
        raise _ClientSkipped("No rate rule matches any visit in the period")
    if summary.unmatched_visit_ids:
        LOGGER.warning(
            "visits_left_unbilled",
            client_id=client_id,
            visit_ids=list(summary.unmatched_visit_ids),
        )

    matched_ids = {item.visit_id for item in summary.line_items}
    included_extra = extra_time if config.include_extra_time else []
    pending = _PendingInvoice(
        client_id=client_id,
        client_name=client_name,
        config=config,
        summary=summary,
        visits=[visit for visit in visits if visit.id in matched_ids],
        extra_time=included_extra,
        line_items=_line_items_for(organization_id, summary, included_extra),
    )
    invoice = _persist_invoice(
        session,
        pending,
        organization_id=organization_id,
        branch_id=branch_id,
        issue_date=issue_date,
        status=PERIOD_STATUS,
        description=f"Care services {start_date.isoformat()} to {end_date.isoformat()}",
        start_date=start_date,
        end_date=end_date,
    )
    return ClientInvoiceSummary(
        client_id=client_id,
        client_name=client_name,
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        amount=invoice.total_amount,
        line_item_count=len(pending.line_items),
        unmatched_visit_ids=list(summary.unmatched_visit_ids),
    )


__all__ = [
    "billable_visit_from_record",
    "generate_invoice_for_visit",
    "generate_invoices_for_period",
    "preview_client_billing",
]
