"""Value types shared by the rate resolver, config resolver and calculator."""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

WEEKDAY_CODES: tuple[str, ...] = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
TIER_MINUTES: tuple[int, ...] = (15, 30, 45, 60)
MINUTES_PER_DAY = 24 * 60


class ChargeStrategy(str, Enum):
    """Closed set of pricing formulas a rate rule can apply."""

    RATE_PER_HOUR = "rate_per_hour"
    FLAT_RATE = "flat_rate"
    PRO_RATA_PER_MINUTE = "rate_per_minutes_pro_rata"
    DURATION_TIERED = "rate_per_minutes_flat_rate"


class PayerType(str, Enum):
    PRIVATE = "private"
    AUTHORITY = "authority"


class DayType(str, Enum):
    WEEKDAY = "weekday"
    WEEKEND = "weekend"
    BANK_HOLIDAY = "bank_holiday"
    EXTRA_TIME = "extra_time"


def _minutes(moment: time) -> int:
    return moment.hour * 60 + moment.minute


class RateRule(BaseModel):
    """Canonical billing rule, whichever table it was stored in."""

    model_config = ConfigDict(frozen=True)

    id: int
    source: Literal["schedule", "assignment"] = "schedule"
    client_id: int
    start_date: date
    end_date: date | None = None
    weekdays: frozenset[str] = frozenset(WEEKDAY_CODES)
    covers_bank_holiday: bool = False
    time_from: time = time(0, 0)
    time_until: time = time(0, 0)
    charge_strategy: ChargeStrategy = ChargeStrategy.RATE_PER_HOUR
    base_rate: Decimal
    tier_rates: dict[int, Decimal] = Field(default_factory=dict)
    bank_holiday_multiplier: Decimal | None = None
    is_vatable: bool = False
    is_active: bool = True

    def covers_date(self, day: date) -> bool:
        if day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date

    def covers_time(self, moment: time) -> bool:
        """Return whether ``moment`` falls in the ``[time_from, time_until)`` window.

        Equal bounds cover the whole day; a start later than the end wraps
        past midnight.
        """

        if self.time_from == self.time_until:
            return True
        if self.time_from < self.time_until:
            return self.time_from <= moment < self.time_until
        return moment >= self.time_from or moment < self.time_until

    @property
    def window_minutes(self) -> int:
        span = _minutes(self.time_until) - _minutes(self.time_from)
        if span <= 0:
            span += MINUTES_PER_DAY
        return span

    @property
    def sort_key(self) -> tuple[int, int]:
        return (0 if self.source == "schedule" else 1, self.id)


class BillableVisit(BaseModel):
    """A visit reduced to what the calculator needs: one date, wall-clock times."""

    model_config = ConfigDict(frozen=True)

    id: int
    client_id: int
    service_date: date
    planned_start: time
    planned_end: time
    actual_start: time | None = None
    actual_end: time | None = None
    is_bank_holiday: bool = False
    service_title: str | None = None

    @property
    def weekday_code(self) -> str:
        return WEEKDAY_CODES[self.service_date.weekday()]

    @property
    def has_actual_times(self) -> bool:
        return self.actual_start is not None and self.actual_end is not None


class BillingLineItem(BaseModel):
    """Priced result for a single visit."""

    model_config = ConfigDict(frozen=True)

    visit_id: int
    rule_id: int
    description: str
    service_date: date
    planned_minutes: int
    actual_minutes: int | None
    billed_minutes: int
    charge_strategy: ChargeStrategy
    base_rate: Decimal
    unit_rate: Decimal
    multiplier: Decimal
    line_total: Decimal
    is_vatable: bool
    vat_amount: Decimal
    is_bank_holiday: bool
    day_type: DayType
    rounded_up_to_hour: bool = False

    @property
    def quantity(self) -> Decimal:
        return (Decimal(self.billed_minutes) / Decimal(60)).quantize(Decimal("0.0001"))


class BillingSummary(BaseModel):
    """Aggregate of a calculator run."""

    model_config = ConfigDict(frozen=True)

    line_items: tuple[BillingLineItem, ...] = ()
    unmatched_visit_ids: tuple[int, ...] = ()
    net_amount: Decimal = Decimal("0.00")
    vat_amount: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")
    total_billable_minutes: int = 0


class GeneralBillingSettings(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    service_payer: str | None = None
    authority_id: str | None = None
    invoice_method: str | None = None


class PrivateBillingSettings(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    charge_based_on: str | None = None
    extra_time_calculation: bool | None = None
    credit_period_days: int | None = None


class AuthorityBillingSettings(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    authority_id: str | None = None
    charge_based_on: str | None = None
    extra_time_calculation: bool | None = None
    credit_period_days: int | None = None
    contract_reference: str | None = None


class BillingConfig(BaseModel):
    """Effective billing behaviour for one client, resolved per run."""

    model_config = ConfigDict(frozen=True)

    payer_type: PayerType = PayerType.PRIVATE
    use_actual_time: bool = False
    credit_period_days: int = 30
    include_extra_time: bool = False
    authority_id: str | None = None
    authority_reference: str | None = None
    invoice_method: str | None = None


class BillingPreview(BaseModel):
    """Priced view of a client's un-invoiced visits; nothing is persisted."""

    client_id: int
    config: BillingConfig
    summary: BillingSummary


__all__ = [
    "AuthorityBillingSettings",
    "BillableVisit",
    "BillingConfig",
    "BillingLineItem",
    "BillingPreview",
    "BillingSummary",
    "ChargeStrategy",
    "DayType",
    "GeneralBillingSettings",
    "PayerType",
    "PrivateBillingSettings",
    "RateRule",
    "TIER_MINUTES",
    "WEEKDAY_CODES",
]
