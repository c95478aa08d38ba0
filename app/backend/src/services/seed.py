"""Utilities for seeding development data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from app.backend.src.models import (
    BankHoliday,
    Client,
    ClientGeneralAccountingSettings,
    ClientPrivateAccountingSettings,
    ClientRateSchedule,
    Visit,
)

DEFAULT_ORGANIZATION_ID = "org-demo"
DEFAULT_BRANCH_ID = "branch-demo"
DEFAULT_CLIENT_FIRST_NAME = "Ada"
DEFAULT_CLIENT_LAST_NAME = "Lovelace"


@dataclass
class SeedResult:
    """Information about the seeded client and its visits."""

    client: Client
    client_created: bool
    visits_created: int


def seed_demo_client(
    session: Session,
    *,
    organization_id: str = DEFAULT_ORGANIZATION_ID,
    branch_id: str = DEFAULT_BRANCH_ID,
    first_name: str = DEFAULT_CLIENT_FIRST_NAME,
    last_name: str = DEFAULT_CLIENT_LAST_NAME,
    month_start: date | None = None,
) -> SeedResult:
    """Ensure a demo client with settings, a rate schedule and a month of visits exists.

    Visits are only added when the client is created, so running the seed
    twice leaves the data unchanged.
    """

    client = (
        session.query(Client)
        .filter(
            Client.organization_id == organization_id,
            Client.first_name == first_name,
            Client.last_name == last_name,
        )
        .one_or_none()
    )
    if client is not None:
        return SeedResult(client=client, client_created=False, visits_created=0)

    month_start = month_start or date.today().replace(day=1)
    client = Client(
        organization_id=organization_id,
        branch_id=branch_id,
        first_name=first_name,
        last_name=last_name,
    )
    session.add(client)
    session.flush()

    session.add_all(
        [
            ClientGeneralAccountingSettings(
                client_id=client.id, service_payer="self_funder", invoice_method="per_period"
            ),
            ClientPrivateAccountingSettings(
                client_id=client.id,
                charge_based_on="planned_time",
                extra_time_calculation=False,
                credit_period_days=14,
            ),
            ClientRateSchedule(
                client_id=client.id,
                start_date=month_start,
                days_covered=["mon", "tue", "wed", "thu", "fri", "sat", "sun", "bank_holiday"],
                time_from=time(0, 0),
                time_until=time(0, 0),
                charge_type="rate_per_hour",
                base_rate=Decimal("18.50"),
                bank_holiday_multiplier=Decimal("1.5"),
                is_vatable=False,
                is_active=True,
            ),
        ]
    )

    visits_created = 0
    for offset in range(0, 28, 3):
        start = datetime.combine(month_start + timedelta(days=offset), time(9, 0))
        session.add(
            Visit(
                client_id=client.id,
                organization_id=organization_id,
                branch_id=branch_id,
                service_title="Personal care",
                start_time=start,
                end_time=start + timedelta(minutes=60 if offset % 2 else 45),
                status="completed",
            )
        )
        visits_created += 1

    holiday = month_start + timedelta(days=6)
    if session.query(BankHoliday).filter(BankHoliday.registered_on == holiday).one_or_none() is None:
        session.add(BankHoliday(registered_on=holiday, title="Demo bank holiday"))

    session.flush()
    return SeedResult(client=client, client_created=True, visits_created=visits_created)


__all__ = ["SeedResult", "seed_demo_client"]
