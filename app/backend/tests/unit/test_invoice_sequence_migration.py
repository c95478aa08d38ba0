"""Tests for the invoice sequence migration."""

from __future__ import annotations

import importlib
import os
import sys
from datetime import date
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_care_billing.db")

import pytest

from app.backend.src.db import Base, get_engine, session_scope
from app.backend.src.models import Client, Invoice, InvoiceSequence
from app.backend.src.services.invoice_numbers import InvoiceNumberAllocator

migration = importlib.import_module(
    "app.backend.src.db.migrations.20241015_add_invoice_sequences"
)


@pytest.fixture(autouse=True)
def setup_database() -> None:  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    InvoiceSequence.__table__.drop(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def test_upgrade_seeds_counters_from_highest_number() -> None:
    with session_scope() as session:
        client = Client(organization_id="org-1", branch_id="br-1", first_name="Eve")
        session.add(client)
        session.flush()
        for organization_id, number in [
            ("org-1", "INV-2024-01-0001"),
            ("org-1", "INV-2024-01-0007"),
            ("org-1", "INV-2024-02-0003"),
            ("org-2", "INV-2024-01-0002"),
            ("org-2", "legacy-42"),
        ]:
            session.add(
                Invoice(
                    client_id=client.id,
                    organization_id=organization_id,
                    invoice_number=number,
                    invoice_date=date(2024, 1, 31),
                    due_date=date(2024, 3, 1),
                )
            )

    migration.upgrade()
    migration.upgrade()

    with session_scope() as session:
        counters = {
            (row.organization_id, row.prefix): row.current_value
            for row in session.query(InvoiceSequence).all()
        }
        next_number = InvoiceNumberAllocator(session).allocate("org-1", date(2024, 1, 31))

    assert counters == {
        ("org-1", "INV-2024-01"): 7,
        ("org-1", "INV-2024-02"): 3,
        ("org-2", "INV-2024-01"): 2,
    }
    assert next_number == "INV-2024-01-0008"
