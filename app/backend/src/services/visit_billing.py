"""Price visits against a client's rate rules."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal

import structlog

from app.backend.src.schemas.billing import (
    BillableVisit,
    BillingLineItem,
    BillingSummary,
    ChargeStrategy,
    DayType,
    RateRule,
)

LOGGER = structlog.get_logger(__name__)

CENT = Decimal("0.01")
SIXTY = Decimal(60)

_StrategyHandler = Callable[[RateRule, int], tuple[Decimal, Decimal]]


def _round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def minutes_between(start: time, end: time) -> int:
    """Return the rounded wall-clock minutes from ``start`` to ``end``."""

    anchor = date(2000, 1, 1)
    delta = datetime.combine(anchor, end) - datetime.combine(anchor, start)
    seconds = delta.total_seconds()
    if seconds < 0:
        raise ValueError(f"Visit ends at {end} before it starts at {start}")
    return int((Decimal(str(seconds)) / SIXTY).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _hourly(rule: RateRule, minutes: int) -> tuple[Decimal, Decimal]:
    return rule.base_rate * Decimal(minutes) / SIXTY, rule.base_rate


def _flat(rule: RateRule, minutes: int) -> tuple[Decimal, Decimal]:
    return rule.base_rate, rule.base_rate


def _pro_rata(rule: RateRule, minutes: int) -> tuple[Decimal, Decimal]:
    return rule.base_rate * Decimal(minutes), rule.base_rate


def _tiered(rule: RateRule, minutes: int) -> tuple[Decimal, Decimal]:
    for tier in sorted(rule.tier_rates):
        if minutes <= tier:
            price = rule.tier_rates[tier]
            return price, price
    return rule.base_rate, rule.base_rate


# Each handler returns (amount before multiplier, unit rate shown on the line).
STRATEGY_HANDLERS: dict[ChargeStrategy, _StrategyHandler] = {
    ChargeStrategy.RATE_PER_HOUR: _hourly,
    ChargeStrategy.FLAT_RATE: _flat,
    ChargeStrategy.PRO_RATA_PER_MINUTE: _pro_rata,
    ChargeStrategy.DURATION_TIERED: _tiered,
}

_STRATEGY_LABELS = {
    ChargeStrategy.RATE_PER_HOUR: "hourly rate",
    ChargeStrategy.FLAT_RATE: "flat rate",
    ChargeStrategy.PRO_RATA_PER_MINUTE: "per-minute rate",
    ChargeStrategy.DURATION_TIERED: "duration rate",
}


class VisitBillingCalculator:
    """Stateless pricing of visits for one client.

    The calculator does no I/O: rules, the time basis and bank-holiday flags
    are all supplied up front, so the same inputs always give the same
    output.
    """

    def __init__(
        self,
        rate_rules: Sequence[RateRule],
        use_actual_time: bool = False,
        *,
        vat_rate: Decimal = Decimal("0.20"),
        default_bank_holiday_multiplier: Decimal = Decimal("1.5"),
        round_up_past_hour: bool = False,
    ) -> None:
        self.rate_rules = tuple(sorted(rate_rules, key=lambda rule: rule.sort_key))
        self.use_actual_time = use_actual_time
        self.vat_rate = Decimal(vat_rate)
        self.default_bank_holiday_multiplier = Decimal(default_bank_holiday_multiplier)
        self.round_up_past_hour = round_up_past_hour

    def _billing_window(self, visit: BillableVisit) -> tuple[time, time]:
        if self.use_actual_time and visit.has_actual_times:
            return visit.actual_start, visit.actual_end  # type: ignore[return-value]
        return visit.planned_start, visit.planned_end

    def billed_minutes(self, visit: BillableVisit) -> tuple[int, bool]:
        """Return ``(minutes, rounded_up)`` for the visit's billing window."""

        start, end = self._billing_window(visit)
        minutes = minutes_between(start, end)
        if self.round_up_past_hour and minutes > 60 and minutes % 60:
            return (minutes // 60 + 1) * 60, True
        return minutes, False

    def find_rate_rule(self, visit: BillableVisit) -> RateRule | None:
        """Pick the rule that prices ``visit``, or ``None``.

        Candidates must be active, cover the service date and contain the
        planned start time, even when actual times price the duration. On a
        bank holiday, rules flagged for bank holidays win over plain weekday
        rules. Remaining ties go to the narrowest
        window, then the most recent start date, then the lowest id.
        """

        candidates = [
            rule
            for rule in self.rate_rules
            if rule.is_active
            and rule.covers_date(visit.service_date)
            and rule.covers_time(visit.planned_start)
        ]

        matches: list[RateRule] = []
        if visit.is_bank_holiday:
            matches = [rule for rule in candidates if rule.covers_bank_holiday]
        if not matches:
            matches = [rule for rule in candidates if visit.weekday_code in rule.weekdays]
        if not matches:
            return None

        return min(
            matches,
            key=lambda rule: (
                rule.window_minutes,
                -rule.start_date.toordinal(),
                rule.sort_key,
            ),
        )

    def _day_type(self, visit: BillableVisit) -> DayType:
        if visit.is_bank_holiday:
            return DayType.BANK_HOLIDAY
        if visit.service_date.weekday() >= 5:
            return DayType.WEEKEND
        return DayType.WEEKDAY

    def calculate_visit(self, visit: BillableVisit) -> BillingLineItem | None:
        rule = self.find_rate_rule(visit)
        if rule is None:
            LOGGER.info(
                "visit_rate_unmatched",
                visit_id=visit.id,
                client_id=visit.client_id,
                service_date=visit.service_date.isoformat(),
            )
            return None

        minutes, rounded_up = self.billed_minutes(visit)
        amount, unit_rate = STRATEGY_HANDLERS[rule.charge_strategy](rule, minutes)

        multiplier = Decimal(1)
        if visit.is_bank_holiday:
            multiplier = (
                rule.bank_holiday_multiplier
                if rule.bank_holiday_multiplier is not None
                else self.default_bank_holiday_multiplier
            )
            amount *= multiplier

        line_total = _round_money(amount)
        vat_amount = _round_money(line_total * self.vat_rate) if rule.is_vatable else Decimal("0.00")

        planned_minutes = minutes_between(visit.planned_start, visit.planned_end)
        actual_minutes = (
            minutes_between(visit.actual_start, visit.actual_end)  # type: ignore[arg-type]
            if visit.has_actual_times
            else None
        )

        description = (
            f"{visit.service_title or 'Care visit'} on {visit.service_date.isoformat()}"
            f" ({minutes} min, {_STRATEGY_LABELS[rule.charge_strategy]})"
        )
        if visit.is_bank_holiday:
            description += f" - bank holiday x{multiplier.normalize()}"

        return BillingLineItem(
            visit_id=visit.id,
            rule_id=rule.id,
            description=description,
            service_date=visit.service_date,
            planned_minutes=planned_minutes,
            actual_minutes=actual_minutes,
            billed_minutes=minutes,
            charge_strategy=rule.charge_strategy,
            base_rate=rule.base_rate,
            unit_rate=unit_rate,
            multiplier=multiplier,
            line_total=line_total,
            is_vatable=rule.is_vatable,
            vat_amount=vat_amount,
            is_bank_holiday=visit.is_bank_holiday,
            day_type=self._day_type(visit),
            rounded_up_to_hour=rounded_up,
        )

    def calculate(self, visits: Iterable[BillableVisit]) -> BillingSummary:
        line_items: list[BillingLineItem] = []
        unmatched: list[int] = []
        for visit in visits:
            item = self.calculate_visit(visit)
            if item is None:
                unmatched.append(visit.id)
            else:
                line_items.append(item)

        net_amount = sum((item.line_total for item in line_items), Decimal("0.00"))
        vat_amount = sum((item.vat_amount for item in line_items), Decimal("0.00"))
        return BillingSummary(
            line_items=tuple(line_items),
            unmatched_visit_ids=tuple(unmatched),
            net_amount=net_amount,
            vat_amount=vat_amount,
            total_amount=net_amount + vat_amount,
            total_billable_minutes=sum(item.billed_minutes for item in line_items),
        )


__all__ = ["STRATEGY_HANDLERS", "VisitBillingCalculator", "minutes_between"]
