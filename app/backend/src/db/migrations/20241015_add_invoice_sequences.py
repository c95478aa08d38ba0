"""Add invoice number counters and seed them from issued invoices."""

from __future__ import annotations

import re
from collections import defaultdict

from sqlalchemy import inspect, select

from app.backend.src.db import get_engine
from app.backend.src.models import Invoice, InvoiceSequence

NUMBER_PATTERN = re.compile(r"^(?P<prefix>.+-\d{4}-\d{2})-(?P<value>\d+)$")


def _highest_issued(rows) -> dict[tuple[str, str], int]:
    """Return the highest issued value per ``(organization, prefix)``."""

    highest: dict[tuple[str, str], int] = defaultdict(int)
    for organization_id, invoice_number in rows:
        match = NUMBER_PATTERN.match(invoice_number or "")
        if match is None:
            continue
        key = (organization_id, match.group("prefix"))
        highest[key] = max(highest[key], int(match.group("value")))
    return dict(highest)


def upgrade() -> None:
    """Apply the migration."""

    engine = get_engine()
    with engine.begin() as connection:
        inspector = inspect(connection)
        if not inspector.has_table(InvoiceSequence.__tablename__):
            InvoiceSequence.__table__.create(bind=connection)

        sequences = InvoiceSequence.__table__
        existing = {
            (row.organization_id, row.prefix)
            for row in connection.execute(select(sequences.c.organization_id, sequences.c.prefix))
        }

        invoices = Invoice.__table__
        rows = connection.execute(select(invoices.c.organization_id, invoices.c.invoice_number))
        for (organization_id, prefix), value in sorted(_highest_issued(rows).items()):
            if (organization_id, prefix) in existing:
                continue
            connection.execute(
                sequences.insert().values(
                    organization_id=organization_id, prefix=prefix, current_value=value
                )
            )


__all__ = ["upgrade"]
