"""Tests for single-visit and period invoice generation."""

from __future__ import annotations

import os
import sys
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_care_billing.db")

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.backend.src.db import Base, get_engine, session_scope
from app.backend.src.models import (
    BankHoliday,
    Client,
    ClientGeneralAccountingSettings,
    ClientPrivateAccountingSettings,
    ClientRateSchedule,
    ExtraTimeRecord,
    Invoice,
    InvoiceLineItem,
    Visit,
)
from app.backend.src.schemas.invoice import BulkGenerationProgress, VisitInvoiceStatus
from app.backend.src.services import invoice_generation
from app.backend.src.services.errors import (
    BillingPreconditionError,
    InvoicePersistenceError,
    VisitNotFoundError,
)
from app.backend.src.services.invoice_generation import (
    generate_invoice_for_visit,
    generate_invoices_for_period,
)

ORG = "org-1"
BRANCH = "br-1"
ISSUE_DATE = date(2024, 2, 1)
JANUARY = (date(2024, 1, 1), date(2024, 1, 31))


@pytest.fixture(autouse=True)
def setup_database() -> None:  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _add_client(
    session,
    first_name: str,
    last_name: str,
    *,
    hourly_rate: Decimal | None = Decimal("15.00"),
    credit_period_days: int | None = None,
    extra_time: bool = False,
) -> Client:
    client = Client(organization_id=ORG, branch_id=BRANCH, first_name=first_name, last_name=last_name)
    session.add(client)
    session.flush()
    session.add(ClientGeneralAccountingSettings(client_id=client.id, service_payer="self_funder"))
    session.add(
        ClientPrivateAccountingSettings(
            client_id=client.id,
            charge_based_on="planned_time",
            extra_time_calculation=extra_time,
            credit_period_days=credit_period_days,
        )
    )
    if hourly_rate is not None:
        session.add(
            ClientRateSchedule(
                client_id=client.id,
                start_date=date(2023, 1, 1),
                days_covered=["mon", "tue", "wed", "thu", "fri", "sat", "sun", "bank_holiday"],
                charge_type="rate_per_hour",
                base_rate=hourly_rate,
                bank_holiday_multiplier=Decimal("1.5"),
            )
        )
    session.flush()
    return client


def _add_visit(
    session,
    client: Client,
    start: datetime,
    minutes: int = 90,
    *,
    status: str = "completed",
) -> Visit:
    visit = Visit(
        client_id=client.id,
        organization_id=ORG,
        branch_id=BRANCH,
        service_title="Personal care",
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        status=status,
    )
    session.add(visit)
    session.flush()
    return visit


def test_single_visit_requires_organization() -> None:
    with session_scope() as session:
        with pytest.raises(BillingPreconditionError):
            generate_invoice_for_visit(session, 1, organization_id="")


def test_single_visit_unknown_visit_raises() -> None:
    with session_scope() as session:
        with pytest.raises(VisitNotFoundError):
            generate_invoice_for_visit(session, 999, organization_id=ORG)


def test_single_visit_creates_draft_invoice() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash", credit_period_days=14)
        visit = _add_visit(session, client, datetime(2024, 1, 3, 9, 0))
        visit_id = visit.id

    with session_scope() as session:
        result = generate_invoice_for_visit(
            session, visit_id, organization_id=ORG, issue_date=ISSUE_DATE
        )

    assert result.status is VisitInvoiceStatus.CREATED
    invoice = result.invoice
    assert invoice is not None
    assert invoice.status == "draft"
    assert invoice.invoice_number == "INV-2024-02-0001"
    assert invoice.net_amount == Decimal("22.50")
    assert invoice.due_date == ISSUE_DATE + timedelta(days=14)
    assert len(invoice.line_items) == 1
    assert invoice.line_items[0].visit_id == visit_id

    with session_scope() as session:
        stored = session.get(Visit, visit_id)
        assert stored.is_invoiced is True
        assert stored.included_in_invoice_id == invoice.id


def test_single_visit_is_not_invoiced_twice() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash")
        visit_id = _add_visit(session, client, datetime(2024, 1, 3, 9, 0)).id

    with session_scope() as session:
        generate_invoice_for_visit(session, visit_id, organization_id=ORG, issue_date=ISSUE_DATE)
    with session_scope() as session:
        again = generate_invoice_for_visit(session, visit_id, organization_id=ORG)
        assert session.query(Invoice).count() == 1

    assert again.status is VisitInvoiceStatus.ALREADY_INVOICED
    assert again.invoice is None


def test_line_item_reference_blocks_reinvoicing_when_flag_was_lost() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash")
        visit_id = _add_visit(session, client, datetime(2024, 1, 3, 9, 0)).id

    with session_scope() as session:
        generate_invoice_for_visit(session, visit_id, organization_id=ORG, issue_date=ISSUE_DATE)
    with session_scope() as session:
        visit = session.get(Visit, visit_id)
        visit.is_invoiced = False
        visit.included_in_invoice_id = None

    with session_scope() as session:
        result = generate_invoice_for_visit(session, visit_id, organization_id=ORG)

    assert result.status is VisitInvoiceStatus.ALREADY_INVOICED


def test_single_visit_without_rates_is_skipped() -> None:
    with session_scope() as session:
        client = _add_client(session, "Bea", "Brown", hourly_rate=None)
        visit_id = _add_visit(session, client, datetime(2024, 1, 3, 9, 0)).id

    with session_scope() as session:
        result = generate_invoice_for_visit(session, visit_id, organization_id=ORG)
        assert session.query(Invoice).count() == 0

    assert result.status is VisitInvoiceStatus.SKIPPED
    assert result.reason


def test_line_item_failure_removes_orphaned_header(monkeypatch: pytest.MonkeyPatch) -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash")
        visit_id = _add_visit(session, client, datetime(2024, 1, 3, 9, 0)).id

    def failing_write(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise SQLAlchemyError("line items unavailable")

    monkeypatch.setattr(invoice_generation, "_write_line_items", failing_write)

    with session_scope() as session:
        with pytest.raises(InvoicePersistenceError) as excinfo:
            generate_invoice_for_visit(session, visit_id, organization_id=ORG, issue_date=ISSUE_DATE)

    assert excinfo.value.invoice_number == "INV-2024-02-0001"
    with session_scope() as session:
        assert session.query(Invoice).count() == 0
        assert session.query(InvoiceLineItem).count() == 0
        assert session.get(Visit, visit_id).is_invoiced is False


def test_single_visit_includes_attached_extra_time() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash", extra_time=True)
        visit = _add_visit(session, client, datetime(2024, 1, 3, 9, 0))
        session.add(
            ExtraTimeRecord(
                client_id=client.id,
                branch_id=BRANCH,
                visit_id=visit.id,
                work_date=date(2024, 1, 3),
                extra_time_minutes=20,
                total_cost=Decimal("6.00"),
                status="approved",
            )
        )
        visit_id = visit.id

    with session_scope() as session:
        result = generate_invoice_for_visit(
            session, visit_id, organization_id=ORG, issue_date=ISSUE_DATE
        )

    assert result.invoice is not None
    assert result.invoice.net_amount == Decimal("28.50")
    assert {item.day_type for item in result.invoice.line_items} == {"weekday", "extra_time"}


def test_period_without_visits_returns_message() -> None:
    with session_scope() as session:
        result = generate_invoices_for_period(
            session, organization_id=ORG, branch_id=BRANCH, start_date=JANUARY[0], end_date=JANUARY[1]
        )

    assert result.success_count == 0
    assert result.error_count == 0
    assert result.message


@pytest.mark.parametrize(
    ("organization_id", "branch_id", "start", "end"),
    [
        ("", BRANCH, JANUARY[0], JANUARY[1]),
        (ORG, None, JANUARY[0], JANUARY[1]),
        (ORG, BRANCH, JANUARY[1], JANUARY[0]),
    ],
)
def test_period_preconditions(organization_id, branch_id, start, end) -> None:  # type: ignore[no-untyped-def]
    with session_scope() as session:
        with pytest.raises(BillingPreconditionError):
            generate_invoices_for_period(
                session,
                organization_id=organization_id,
                branch_id=branch_id,
                start_date=start,
                end_date=end,
            )


def test_period_run_isolates_client_failures() -> None:
    with session_scope() as session:
        ann = _add_client(session, "Ann", "Ash")
        bea = _add_client(session, "Bea", "Brown", hourly_rate=None)
        cal = _add_client(session, "Cal", "Cole", hourly_rate=Decimal("20.00"))
        _add_visit(session, ann, datetime(2024, 1, 3, 9, 0))
        _add_visit(session, bea, datetime(2024, 1, 4, 9, 0))
        _add_visit(session, bea, datetime(2024, 1, 5, 9, 0))
        _add_visit(session, cal, datetime(2024, 1, 5, 14, 0), minutes=60)
        bea_id = bea.id

    progress: list[BulkGenerationProgress] = []
    with session_scope() as session:
        result = generate_invoices_for_period(
            session,
            organization_id=ORG,
            branch_id=BRANCH,
            start_date=JANUARY[0],
            end_date=JANUARY[1],
            issue_date=ISSUE_DATE,
            on_progress=progress.append,
        )

    assert result.success_count == 2
    assert result.error_count == 1
    error = result.errors[0]
    assert error.client_id == bea_id
    assert error.client_name == "Bea Brown"
    assert error.visit_count == 2
    assert result.total_amount == Decimal("42.50")
    assert [step.current_client for step in progress] == ["Ann Ash", "Bea Brown", "Cal Cole"]
    assert [step.current for step in progress] == [1, 2, 3]
    assert all(step.total == 3 for step in progress)

    with session_scope() as session:
        invoices = session.query(Invoice).order_by(Invoice.id).all()
        assert [invoice.status for invoice in invoices] == ["pending", "pending"]
        assert [invoice.invoice_number for invoice in invoices] == [
            "INV-2024-02-0001",
            "INV-2024-02-0002",
        ]
        unbilled = session.query(Visit).filter(Visit.client_id == bea_id).all()
        assert all(visit.is_invoiced is False for visit in unbilled)


def test_second_period_run_invoices_nothing() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash")
        _add_visit(session, client, datetime(2024, 1, 3, 9, 0))
        _add_visit(session, client, datetime(2024, 1, 10, 9, 0))

    with session_scope() as session:
        first = generate_invoices_for_period(
            session, organization_id=ORG, branch_id=BRANCH, start_date=JANUARY[0], end_date=JANUARY[1]
        )
    with session_scope() as session:
        second = generate_invoices_for_period(
            session, organization_id=ORG, branch_id=BRANCH, start_date=JANUARY[0], end_date=JANUARY[1]
        )
        assert session.query(Invoice).count() == 1

    assert first.success_count == 1
    assert second.success_count == 0
    assert second.message


def test_period_run_only_picks_completed_visits_in_range() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash")
        _add_visit(session, client, datetime(2024, 1, 31, 20, 0))
        _add_visit(session, client, datetime(2024, 1, 15, 9, 0), status="done")
        _add_visit(session, client, datetime(2024, 1, 16, 9, 0), status="cancelled")
        _add_visit(session, client, datetime(2024, 2, 1, 9, 0))

    with session_scope() as session:
        result = generate_invoices_for_period(
            session, organization_id=ORG, branch_id=BRANCH, start_date=JANUARY[0], end_date=JANUARY[1]
        )

    assert result.invoices[0].line_item_count == 2


def test_period_invoice_totals_match_line_items_and_due_date() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash", credit_period_days=14, extra_time=True)
        _add_visit(session, client, datetime(2024, 1, 3, 9, 0))
        _add_visit(session, client, datetime(2024, 1, 4, 9, 0), minutes=60)
        session.add(
            ExtraTimeRecord(
                client_id=client.id,
                branch_id=BRANCH,
                work_date=date(2024, 1, 4),
                extra_time_minutes=15,
                total_cost=Decimal("3.75"),
                status="approved",
            )
        )
        session.add(
            ExtraTimeRecord(
                client_id=client.id,
                branch_id=BRANCH,
                work_date=date(2024, 1, 5),
                extra_time_minutes=30,
                total_cost=Decimal("7.50"),
                status="pending",
            )
        )

    with session_scope() as session:
        generate_invoices_for_period(
            session,
            organization_id=ORG,
            branch_id=BRANCH,
            start_date=JANUARY[0],
            end_date=JANUARY[1],
            issue_date=ISSUE_DATE,
        )

    with session_scope() as session:
        invoice = session.query(Invoice).one()
        assert invoice.net_amount == sum(item.line_total for item in invoice.line_items)
        assert invoice.net_amount == Decimal("41.25")
        assert invoice.total_amount == invoice.net_amount + invoice.vat_amount
        assert invoice.due_date == ISSUE_DATE + timedelta(days=14)
        assert len(invoice.line_items) == 3
        records = session.query(ExtraTimeRecord).order_by(ExtraTimeRecord.id).all()
        assert [record.invoiced for record in records] == [True, False]
        assert records[0].invoice_id == invoice.id


def test_extra_time_alone_does_not_create_an_invoice() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash", extra_time=True)
        session.add(
            ExtraTimeRecord(
                client_id=client.id,
                branch_id=BRANCH,
                work_date=date(2024, 1, 4),
                extra_time_minutes=15,
                total_cost=Decimal("3.75"),
                status="approved",
            )
        )

    with session_scope() as session:
        result = generate_invoices_for_period(
            session, organization_id=ORG, branch_id=BRANCH, start_date=JANUARY[0], end_date=JANUARY[1]
        )
        assert session.query(Invoice).count() == 0

    assert result.success_count == 0


def test_bank_holiday_visits_use_multiplier() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash", hourly_rate=Decimal("20.00"))
        _add_visit(session, client, datetime(2024, 1, 1, 9, 0), minutes=60)
        session.add(BankHoliday(registered_on=date(2024, 1, 1), title="New Year's Day"))

    with session_scope() as session:
        generate_invoices_for_period(
            session, organization_id=ORG, branch_id=BRANCH, start_date=JANUARY[0], end_date=JANUARY[1]
        )

    with session_scope() as session:
        item = session.query(InvoiceLineItem).one()
        assert item.line_total == Decimal("30.00")
        assert item.day_type == "bank_holiday"
        assert item.bank_holiday_multiplier_applied == Decimal("1.5")


def test_flag_failure_does_not_undo_invoice(monkeypatch: pytest.MonkeyPatch) -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash")
        visit_id = _add_visit(session, client, datetime(2024, 1, 3, 9, 0)).id

    def failing_mark(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise SQLAlchemyError("flag update failed")

    monkeypatch.setattr(invoice_generation, "_mark_invoiced", failing_mark)

    with session_scope() as session:
        result = generate_invoices_for_period(
            session, organization_id=ORG, branch_id=BRANCH, start_date=JANUARY[0], end_date=JANUARY[1]
        )

    assert result.success_count == 1
    monkeypatch.undo()

    with session_scope() as session:
        assert session.get(Visit, visit_id).is_invoiced is False
        rerun = generate_invoices_for_period(
            session, organization_id=ORG, branch_id=BRANCH, start_date=JANUARY[0], end_date=JANUARY[1]
        )
        assert session.query(Invoice).count() == 1

    assert rerun.success_count == 0


def test_single_visit_numbering_continues_after_a_gap() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash")
        for number in ("INV-2024-02-0001", "INV-2024-02-0003"):
            session.add(
                Invoice(
                    client_id=client.id,
                    organization_id=ORG,
                    invoice_number=number,
                    invoice_date=ISSUE_DATE,
                    due_date=ISSUE_DATE + timedelta(days=30),
                )
            )
        visit_id = _add_visit(session, client, datetime(2024, 1, 3, 9, 0)).id

    with session_scope() as session:
        result = generate_invoice_for_visit(
            session, visit_id, organization_id=ORG, issue_date=ISSUE_DATE
        )

    assert result.status is VisitInvoiceStatus.CREATED
    assert result.invoice.invoice_number == "INV-2024-02-0004"


def test_period_run_reports_visits_without_a_matching_rate() -> None:
    with session_scope() as session:
        client = _add_client(session, "Ann", "Ash", hourly_rate=None)
        session.add(
            ClientRateSchedule(
                client_id=client.id,
                start_date=date(2023, 1, 1),
                days_covered=["mon", "tue", "wed", "thu", "fri"],
                charge_type="rate_per_hour",
                base_rate=Decimal("15.00"),
            )
        )
        matched_id = _add_visit(session, client, datetime(2024, 1, 3, 9, 0)).id
        saturday_id = _add_visit(session, client, datetime(2024, 1, 6, 9, 0)).id

    with session_scope() as session:
        result = generate_invoices_for_period(
            session,
            organization_id=ORG,
            branch_id=BRANCH,
            start_date=JANUARY[0],
            end_date=JANUARY[1],
            issue_date=ISSUE_DATE,
        )

    assert result.success_count == 1
    summary = result.invoices[0]
    assert summary.line_item_count == 1
    assert summary.amount == Decimal("22.50")
    assert summary.unmatched_visit_ids == [saturday_id]

    with session_scope() as session:
        assert session.get(Visit, matched_id).is_invoiced is True
        assert session.get(Visit, saturday_id).is_invoiced is False
