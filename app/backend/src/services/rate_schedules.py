"""Resolve the active rate rules of a client.

Rates live in two shapes: rows in ``client_rate_schedules`` written by the
current rate screens, and older assignments of shared ``service_rates`` to a
client. Both are mapped onto :class:`RateRule` here so nothing downstream
has to know which table a rule came from.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, time
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.backend.src.models import ClientRateAssignment, ClientRateSchedule, ServiceRate
from app.backend.src.schemas.billing import TIER_MINUTES, WEEKDAY_CODES, ChargeStrategy, RateRule

from .errors import RateRuleError

LOGGER = structlog.get_logger(__name__)

BANK_HOLIDAY_TAG = "bank_holiday"
FULL_DAY = (time(0, 0), time(0, 0))

_DAY_ALIASES: dict[str, str] = {}
for _code, _name in zip(
    WEEKDAY_CODES,
    ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"),
):
    _DAY_ALIASES[_code] = _code
    _DAY_ALIASES[_name] = _code
    _DAY_ALIASES[_name[:3]] = _code

_CHARGE_TAGS: dict[str, ChargeStrategy] = {
    "rate_per_hour": ChargeStrategy.RATE_PER_HOUR,
    "hourly_rate": ChargeStrategy.RATE_PER_HOUR,
    "hourly": ChargeStrategy.RATE_PER_HOUR,
    "flat_rate": ChargeStrategy.FLAT_RATE,
    "daily_flat_rate": ChargeStrategy.FLAT_RATE,
    "flat": ChargeStrategy.FLAT_RATE,
    "rate_per_minutes_pro_rata": ChargeStrategy.PRO_RATA_PER_MINUTE,
    "pro_rata": ChargeStrategy.PRO_RATA_PER_MINUTE,
    "per_minute": ChargeStrategy.PRO_RATA_PER_MINUTE,
    "rate_per_minutes_flat_rate": ChargeStrategy.DURATION_TIERED,
    "hour_minutes": ChargeStrategy.DURATION_TIERED,
    "tiered": ChargeStrategy.DURATION_TIERED,
}


def parse_charge_strategy(tag: str | None) -> ChargeStrategy:
    """Map a stored charge tag onto :class:`ChargeStrategy`.

    An unset tag bills by the hour.
    """

    if tag is None or not tag.strip():
        return ChargeStrategy.RATE_PER_HOUR
    strategy = _CHARGE_TAGS.get(tag.strip().lower())
    if strategy is None:
        raise RateRuleError(f"Unsupported charge type '{tag}'")
    return strategy


def normalize_days(tags: Iterable[str] | None) -> tuple[frozenset[str], bool]:
    """Return ``(weekday codes, covers bank holiday)`` for stored day tags.

    An empty or missing list covers every day including bank holidays.
    """

    cleaned = [str(tag).strip().lower() for tag in (tags or []) if str(tag).strip()]
    if not cleaned:
        return frozenset(WEEKDAY_CODES), True

    weekdays: set[str] = set()
    covers_bank_holiday = False
    for tag in cleaned:
        if tag.replace(" ", "_").replace("-", "_") == BANK_HOLIDAY_TAG:
            covers_bank_holiday = True
            continue
        code = _DAY_ALIASES.get(tag)
        if code is None:
            raise RateRuleError(f"Unknown day '{tag}' in rate days")
        weekdays.add(code)
    return frozenset(weekdays), covers_bank_holiday


def normalize_window(time_from: time | None, time_until: time | None) -> tuple[time, time]:
    if time_from is None and time_until is None:
        return FULL_DAY
    return time_from or time(0, 0), time_until or time(0, 0)


def _tier_rates(row: ClientRateSchedule) -> dict[int, Decimal]:
    tiers: dict[int, Decimal] = {}
    for minutes in TIER_MINUTES:
        value = getattr(row, f"rate_{minutes}_minutes", None)
        if value is not None and Decimal(value) > 0:
            tiers[minutes] = Decimal(value)
    return tiers


def normalize_rate_schedule(row: ClientRateSchedule) -> RateRule:
    """Map a ``client_rate_schedules`` row onto a :class:`RateRule`."""

    weekdays, covers_bank_holiday = normalize_days(row.days_covered)
    time_from, time_until = normalize_window(row.time_from, row.time_until)
    return RateRule(
        id=row.id,
        source="schedule",
        client_id=row.client_id,
        start_date=row.start_date,
        end_date=row.end_date,
        weekdays=weekdays,
        covers_bank_holiday=covers_bank_holiday,
        time_from=time_from,
        time_until=time_until,
        charge_strategy=parse_charge_strategy(row.charge_type),
        base_rate=Decimal(row.base_rate),
        tier_rates=_tier_rates(row),
        bank_holiday_multiplier=(
            Decimal(row.bank_holiday_multiplier)
            if row.bank_holiday_multiplier is not None
            else None
        ),
        is_vatable=bool(row.is_vatable),
        is_active=bool(row.is_active),
    )


def normalize_rate_assignment(assignment: ClientRateAssignment, rate: ServiceRate) -> RateRule:
    """Map a client assignment of a shared service rate onto a :class:`RateRule`.

    Assignment dates narrow the shared rate's effective range when set.
    """

    weekdays, covers_bank_holiday = normalize_days(rate.applicable_days)
    time_from, time_until = normalize_window(rate.time_from, rate.time_until)

    start_date = max(
        (value for value in (rate.effective_from, assignment.start_date) if value is not None)
    )
    end_candidates = [value for value in (rate.effective_to, assignment.end_date) if value is not None]
    end_date = min(end_candidates) if end_candidates else None

    return RateRule(
        id=assignment.id,
        source="assignment",
        client_id=assignment.client_id,
        start_date=start_date,
        end_date=end_date,
        weekdays=weekdays,
        covers_bank_holiday=covers_bank_holiday,
        time_from=time_from,
        time_until=time_until,
        charge_strategy=parse_charge_strategy(rate.rate_type),
        base_rate=Decimal(rate.amount),
        bank_holiday_multiplier=(
            Decimal(rate.bank_holiday_multiplier)
            if rate.bank_holiday_multiplier is not None
            else None
        ),
        is_vatable=bool(rate.is_vatable),
        is_active=bool(assignment.is_active) and (rate.status or "").lower() == "active",
    )


def resolve_rate_rules(
    session: Session, client_id: int, *, on_date: date | None = None
) -> list[RateRule]:
    """Return the client's active rate rules, sorted by id.

    Falls back to rate assignments only when no active schedule row exists.
    When ``on_date`` is given, rules that have ended before it are dropped.
    An empty list means the client cannot be billed.
    """

    schedules = (
        session.execute(
            select(ClientRateSchedule)
            .where(
                ClientRateSchedule.client_id == client_id,
                ClientRateSchedule.is_active.is_(True),
            )
            .order_by(ClientRateSchedule.id)
        )
        .scalars()
        .all()
    )
    if schedules:
        rules = [normalize_rate_schedule(row) for row in schedules]
        source = "schedule"
    else:
        assignments = (
            session.execute(
                select(ClientRateAssignment)
                .where(
                    ClientRateAssignment.client_id == client_id,
                    ClientRateAssignment.is_active.is_(True),
                )
                .options(selectinload(ClientRateAssignment.service_rate))
                .order_by(ClientRateAssignment.id)
            )
            .scalars()
            .all()
        )
        rules = [
            normalize_rate_assignment(assignment, assignment.service_rate)
            for assignment in assignments
        ]
        rules = [rule for rule in rules if rule.is_active]
        source = "assignment"

    if on_date is not None:
        rules = [rule for rule in rules if rule.end_date is None or rule.end_date >= on_date]

    LOGGER.info("rate_rules_resolved", client_id=client_id, source=source, count=len(rules))
    return sorted(rules, key=lambda rule: rule.sort_key)


__all__ = [
    "normalize_days",
    "normalize_rate_assignment",
    "normalize_rate_schedule",
    "normalize_window",
    "parse_charge_strategy",
    "resolve_rate_rules",
]
