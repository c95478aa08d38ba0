"""Unit tests for visit pricing."""

from __future__ import annotations

import sys
from datetime import date, time
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

import pytest

from app.backend.src.schemas.billing import (
    WEEKDAY_CODES,
    BillableVisit,
    ChargeStrategy,
    DayType,
    RateRule,
)
from app.backend.src.services.visit_billing import VisitBillingCalculator

WEDNESDAY = date(2024, 1, 3)
SATURDAY = date(2024, 1, 6)
WEEKDAYS = frozenset(WEEKDAY_CODES[:5])


def _rule(rule_id: int = 1, **overrides: object) -> RateRule:
    values: dict[str, object] = {
        "id": rule_id,
        "client_id": 1,
        "start_date": date(2023, 1, 1),
        "weekdays": frozenset(WEEKDAY_CODES),
        "charge_strategy": ChargeStrategy.RATE_PER_HOUR,
        "base_rate": Decimal("15.00"),
    }
    values.update(overrides)
    return RateRule(**values)


def _visit(
    visit_id: int = 100,
    *,
    day: date = WEDNESDAY,
    start: time = time(9, 0),
    end: time = time(10, 30),
    **overrides: object,
) -> BillableVisit:
    return BillableVisit(
        id=visit_id,
        client_id=1,
        service_date=day,
        planned_start=start,
        planned_end=end,
        **overrides,
    )


def test_hourly_rate_prorates_by_minutes() -> None:
    calculator = VisitBillingCalculator([_rule()])

    item = calculator.calculate_visit(_visit())

    assert item is not None
    assert item.billed_minutes == 90
    assert item.line_total == Decimal("22.50")
    assert item.charge_strategy is ChargeStrategy.RATE_PER_HOUR
    assert item.day_type is DayType.WEEKDAY


def test_flat_rate_ignores_duration() -> None:
    calculator = VisitBillingCalculator(
        [_rule(charge_strategy=ChargeStrategy.FLAT_RATE, base_rate=Decimal("50"))]
    )

    item = calculator.calculate_visit(_visit(end=time(13, 0)))

    assert item is not None
    assert item.line_total == Decimal("50.00")


def test_pro_rata_bills_per_minute() -> None:
    calculator = VisitBillingCalculator(
        [_rule(charge_strategy=ChargeStrategy.PRO_RATA_PER_MINUTE, base_rate=Decimal("0.50"))]
    )

    item = calculator.calculate_visit(_visit(end=time(9, 40)))

    assert item is not None
    assert item.billed_minutes == 40
    assert item.line_total == Decimal("20.00")


@pytest.mark.parametrize(
    ("end", "expected"),
    [
        (time(9, 10), Decimal("5.00")),
        (time(9, 20), Decimal("9.00")),
        (time(9, 45), Decimal("15.00")),
        (time(10, 15), Decimal("40.00")),
    ],
)
def test_duration_tiers_pick_smallest_tier_covering_the_visit(end: time, expected: Decimal) -> None:
    rule = _rule(
        charge_strategy=ChargeStrategy.DURATION_TIERED,
        base_rate=Decimal("40.00"),
        tier_rates={15: Decimal("5.00"), 30: Decimal("9.00"), 60: Decimal("15.00")},
    )
    calculator = VisitBillingCalculator([rule])

    item = calculator.calculate_visit(_visit(end=end))

    assert item is not None
    assert item.line_total == expected


def test_duration_tiers_without_configured_tiers_use_base_rate() -> None:
    rule = _rule(charge_strategy=ChargeStrategy.DURATION_TIERED, base_rate=Decimal("12.00"))

    item = VisitBillingCalculator([rule]).calculate_visit(_visit(end=time(9, 20)))

    assert item is not None
    assert item.line_total == Decimal("12.00")


def test_bank_holiday_applies_rule_multiplier() -> None:
    rule = _rule(
        base_rate=Decimal("20.00"),
        covers_bank_holiday=True,
        bank_holiday_multiplier=Decimal("1.5"),
    )
    calculator = VisitBillingCalculator([rule])

    item = calculator.calculate_visit(_visit(end=time(10, 0), is_bank_holiday=True))

    assert item is not None
    assert item.line_total == Decimal("30.00")
    assert item.multiplier == Decimal("1.5")
    assert item.is_bank_holiday is True
    assert item.day_type is DayType.BANK_HOLIDAY


def test_bank_holiday_without_rule_multiplier_uses_default() -> None:
    rule = _rule(base_rate=Decimal("20.00"), covers_bank_holiday=True)

    item = VisitBillingCalculator(
        [rule], default_bank_holiday_multiplier=Decimal("2")
    ).calculate_visit(_visit(end=time(10, 0), is_bank_holiday=True))

    assert item is not None
    assert item.line_total == Decimal("40.00")


def test_bank_holiday_rules_take_precedence_over_weekday_rules() -> None:
    weekday_rule = _rule(1, weekdays=WEEKDAYS, base_rate=Decimal("15.00"))
    holiday_rule = _rule(
        2,
        weekdays=frozenset(),
        covers_bank_holiday=True,
        base_rate=Decimal("25.00"),
        bank_holiday_multiplier=Decimal("1"),
    )
    calculator = VisitBillingCalculator([weekday_rule, holiday_rule])

    holiday = calculator.calculate_visit(_visit(end=time(10, 0), is_bank_holiday=True))
    ordinary = calculator.calculate_visit(_visit(end=time(10, 0)))

    assert holiday is not None and holiday.rule_id == 2
    assert holiday.line_total == Decimal("25.00")
    assert ordinary is not None and ordinary.rule_id == 1
    assert ordinary.line_total == Decimal("15.00")


def test_bank_holiday_falls_back_to_weekday_rule() -> None:
    calculator = VisitBillingCalculator([_rule(weekdays=WEEKDAYS)])

    item = calculator.calculate_visit(_visit(end=time(10, 0), is_bank_holiday=True))

    assert item is not None
    assert item.line_total == Decimal("22.50")


def test_vat_is_added_only_for_vatable_rules() -> None:
    calculator = VisitBillingCalculator(
        [_rule(1, is_vatable=True, weekdays=frozenset({"wed"})), _rule(2, weekdays=frozenset({"thu"}))],
        vat_rate=Decimal("0.20"),
    )

    summary = calculator.calculate([_visit(1), _visit(2, day=date(2024, 1, 4))])

    vatable, exempt = summary.line_items
    assert vatable.vat_amount == Decimal("4.50")
    assert exempt.vat_amount == Decimal("0.00")
    assert summary.net_amount == Decimal("45.00")
    assert summary.vat_amount == Decimal("4.50")
    assert summary.total_amount == Decimal("49.50")


def test_actual_time_is_used_only_when_enabled_and_recorded() -> None:
    visit = _visit(actual_start=time(9, 0), actual_end=time(10, 0))
    planned_only = _visit(2)

    actual = VisitBillingCalculator([_rule()], use_actual_time=True)
    planned = VisitBillingCalculator([_rule()], use_actual_time=False)

    assert actual.calculate_visit(visit).line_total == Decimal("15.00")
    assert planned.calculate_visit(visit).line_total == Decimal("22.50")
    assert actual.calculate_visit(planned_only).line_total == Decimal("22.50")


def test_unmatched_visits_are_reported() -> None:
    calculator = VisitBillingCalculator([_rule(weekdays=WEEKDAYS)])

    summary = calculator.calculate([_visit(1), _visit(2, day=SATURDAY)])

    assert [item.visit_id for item in summary.line_items] == [1]
    assert summary.unmatched_visit_ids == (2,)


def test_inactive_and_out_of_range_rules_are_ignored() -> None:
    rules = [
        _rule(1, is_active=False),
        _rule(2, start_date=date(2024, 2, 1)),
        _rule(3, end_date=date(2023, 12, 31)),
    ]

    assert VisitBillingCalculator(rules).find_rate_rule(_visit()) is None


def test_time_window_end_is_exclusive() -> None:
    rule = _rule(time_from=time(8, 0), time_until=time(12, 0))
    calculator = VisitBillingCalculator([rule])

    assert calculator.find_rate_rule(_visit(start=time(8, 0), end=time(9, 0))) is not None
    assert calculator.find_rate_rule(_visit(start=time(12, 0), end=time(13, 0))) is None


def test_time_window_can_wrap_midnight() -> None:
    rule = _rule(time_from=time(22, 0), time_until=time(6, 0))
    calculator = VisitBillingCalculator([rule])

    assert calculator.find_rate_rule(_visit(start=time(23, 0), end=time(23, 30))) is not None
    assert calculator.find_rate_rule(_visit(start=time(5, 0), end=time(5, 30))) is not None
    assert calculator.find_rate_rule(_visit(start=time(9, 0), end=time(9, 30))) is None


def test_rule_is_matched_on_planned_start_when_billing_actual_time() -> None:
    day = _rule(1, base_rate=Decimal("20.00"), time_from=time(8, 0), time_until=time(20, 0))
    night = _rule(2, base_rate=Decimal("30.00"), time_from=time(20, 0), time_until=time(8, 0))
    calculator = VisitBillingCalculator([day, night], use_actual_time=True)
    visit = _visit(
        start=time(8, 0),
        end=time(9, 0),
        actual_start=time(7, 55),
        actual_end=time(8, 55),
    )

    item = calculator.calculate_visit(visit)

    assert item is not None
    assert item.rule_id == 1
    assert item.line_total == Decimal("20.00")


def test_narrowest_window_wins_overlapping_rules() -> None:
    all_day = _rule(1, base_rate=Decimal("15.00"))
    morning = _rule(2, base_rate=Decimal("20.00"), time_from=time(8, 0), time_until=time(12, 0))
    calculator = VisitBillingCalculator([all_day, morning])

    item = calculator.calculate_visit(_visit(end=time(10, 0)))

    assert item is not None
    assert item.rule_id == 2
    assert item.line_total == Decimal("20.00")


def test_latest_start_date_breaks_equal_window_ties() -> None:
    older = _rule(1, start_date=date(2023, 1, 1), base_rate=Decimal("15.00"))
    newer = _rule(2, start_date=date(2023, 6, 1), base_rate=Decimal("16.00"))

    rule = VisitBillingCalculator([newer, older]).find_rate_rule(_visit())

    assert rule is not None
    assert rule.id == 2


def test_round_up_past_hour_bills_whole_hours() -> None:
    calculator = VisitBillingCalculator([_rule()], round_up_past_hour=True)

    long_visit = calculator.calculate_visit(_visit())
    short_visit = calculator.calculate_visit(_visit(2, end=time(9, 45)))

    assert long_visit is not None
    assert long_visit.billed_minutes == 120
    assert long_visit.rounded_up_to_hour is True
    assert long_visit.line_total == Decimal("30.00")
    assert short_visit is not None
    assert short_visit.billed_minutes == 45


def test_end_before_start_raises() -> None:
    calculator = VisitBillingCalculator([_rule()])

    with pytest.raises(ValueError):
        calculator.calculate([_visit(start=time(10, 0), end=time(9, 0))])


def test_calculation_is_deterministic() -> None:
    rules = [_rule(1), _rule(2, time_from=time(8, 0), time_until=time(18, 0), is_vatable=True)]
    visits = [_visit(1), _visit(2, day=SATURDAY, end=time(11, 0)), _visit(3, is_bank_holiday=True)]

    first = VisitBillingCalculator(rules).calculate(visits)
    second = VisitBillingCalculator(list(reversed(rules))).calculate(visits)

    assert first == second
