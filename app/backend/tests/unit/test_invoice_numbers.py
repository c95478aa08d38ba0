"""Tests for invoice number reservation."""

from __future__ import annotations

import os
import sys
from datetime import date
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_care_billing.db")

import pytest

from app.backend.src.db import Base, get_engine, session_scope
from app.backend.src.models import Client, Invoice, InvoiceSequence
from app.backend.src.services.invoice_numbers import InvoiceNumberAllocator, period_prefix


@pytest.fixture(autouse=True)
def setup_database() -> None:  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def test_period_prefix_uses_year_and_month() -> None:
    assert period_prefix(date(2024, 3, 9), "INV") == "INV-2024-03"


def test_allocations_increase_within_a_month() -> None:
    with session_scope() as session:
        allocator = InvoiceNumberAllocator(session)
        first = allocator.allocate("org-1", date(2024, 1, 15))
        second = allocator.allocate("org-1", date(2024, 1, 20))

    assert first == "INV-2024-01-0001"
    assert second == "INV-2024-01-0002"


def test_each_month_and_organization_has_its_own_sequence() -> None:
    with session_scope() as session:
        allocator = InvoiceNumberAllocator(session)
        allocator.allocate("org-1", date(2024, 1, 15))
        february = allocator.allocate("org-1", date(2024, 2, 1))
        other_org = allocator.allocate("org-2", date(2024, 1, 15))

    assert february == "INV-2024-02-0001"
    assert other_org == "INV-2024-01-0001"


def test_sequence_survives_across_sessions() -> None:
    with session_scope() as session:
        InvoiceNumberAllocator(session).allocate("org-1", date(2024, 1, 15))

    with session_scope() as session:
        number = InvoiceNumberAllocator(session).allocate("org-1", date(2024, 1, 16))
        counter = session.query(InvoiceSequence).one()
        assert counter.current_value == 2

    assert number == "INV-2024-01-0002"


def test_new_counter_is_seeded_from_existing_invoices() -> None:
    with session_scope() as session:
        client = Client(organization_id="org-1", branch_id="br-1", first_name="Di")
        session.add(client)
        session.flush()
        for number in ("INV-2024-01-0001", "INV-2024-01-0002"):
            session.add(
                Invoice(
                    client_id=client.id,
                    organization_id="org-1",
                    invoice_number=number,
                    invoice_date=date(2024, 1, 5),
                    due_date=date(2024, 2, 4),
                )
            )

    with session_scope() as session:
        number = InvoiceNumberAllocator(session).allocate("org-1", date(2024, 1, 31))

    assert number == "INV-2024-01-0003"


def test_custom_prefix() -> None:
    with session_scope() as session:
        number = InvoiceNumberAllocator(session, prefix="CB").allocate("org-1", date(2024, 5, 1))

    assert number == "CB-2024-05-0001"


def test_new_counter_skips_past_gaps_in_issued_numbers() -> None:
    with session_scope() as session:
        client = Client(organization_id="org-1", branch_id="br-1", first_name="Di")
        session.add(client)
        session.flush()
        for number in ("INV-2024-02-0001", "INV-2024-02-0003", "INV-2024-02-draft"):
            session.add(
                Invoice(
                    client_id=client.id,
                    organization_id="org-1",
                    invoice_number=number,
                    invoice_date=date(2024, 2, 5),
                    due_date=date(2024, 3, 6),
                )
            )

    with session_scope() as session:
        number = InvoiceNumberAllocator(session).allocate("org-1", date(2024, 2, 20))

    assert number == "INV-2024-02-0004"
