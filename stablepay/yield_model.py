"""Lock-period, yield accrual and lock-status model.

This is the only place the lock-period APY table and the yield formula live. The API, the
metrics service and the CLI all import from here so the figures shown to users cannot drift.

Yield is simple, non-compounding interest:

    hourly_rate = apy / 100 / 365 / 24
    accrued     = floor(principal * hourly_rate * hours)

This is an approximation for display. The vault contract computes the authoritative figure.
"""

import math
from collections.abc import Sequence
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

from stablepay.constants import (
    DAYS_PER_LOCK_MONTH,
    HOURS_PER_YEAR,
    LOCK_PERIOD_TABLE,
    MS_PER_DAY,
    SECONDS_PER_HOUR,
    YIELD_ESTIMATE_REFRESH_SECONDS,
)
from stablepay.errors import InvalidLockPeriod
from stablepay.formatters import iso_utc
from stablepay.models import Deposit, LockPeriodOption, LockStatus, YieldAccrualState

_OPTIONS: tuple[LockPeriodOption, ...] = tuple(
    LockPeriodOption(months=months, apy=apy, label=label, description=description)
    for months, apy, label, description in LOCK_PERIOD_TABLE
)
_OPTIONS_BY_MONTHS: dict[float, LockPeriodOption] = {o.months: o for o in _OPTIONS}


def lock_period_options() -> tuple[LockPeriodOption, ...]:
    """All offered lock periods, shortest first."""
    return _OPTIONS


def lock_period_option(months) -> LockPeriodOption:
    """Look up one lock period. Raises InvalidLockPeriod for anything not in the table."""
    if isinstance(months, bool) or not isinstance(months, (int, float)):
        raise InvalidLockPeriod(months)
    if not math.isfinite(months):
        raise InvalidLockPeriod(months)
    option = _OPTIONS_BY_MONTHS.get(months)
    if option is None:
        raise InvalidLockPeriod(months)
    return option


def apy_for_lock_period(months) -> float:
    """APY (percent) for a lock period. Unknown periods are rejected, never defaulted."""
    return lock_period_option(months).apy


def parse_lock_period(value) -> float:
    """Parse a lock period from a path segment or JSON value ("6", "0.5", 6) and validate it."""
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError as ex:
            raise InvalidLockPeriod(value) from ex
    return lock_period_option(value).months


def lock_duration_seconds(months) -> int:
    """Length of a lock in seconds: 30-day months, 15 days for the half-month option."""
    option = lock_period_option(months)
    days = Decimal(str(option.months)) * DAYS_PER_LOCK_MONTH
    return int(days * 24 * SECONDS_PER_HOUR)


def lock_until_for(deposit_timestamp: int, months) -> int:
    """Estimated unlock time (epoch seconds) for a deposit made at `deposit_timestamp`."""
    return int(deposit_timestamp) + lock_duration_seconds(months)


def estimate_accrued_yield(principal: int, apy_percent: float, elapsed_hours: float) -> int:
    """Estimate yield accrued on `principal` (smallest unit) over `elapsed_hours`.

    The APY must be the one snapshotted at deposit time. The result is floored to the smallest
    currency unit so an estimate never overstates what can be withdrawn. Negative elapsed time
    (clock skew) counts as zero.
    """
    if not math.isfinite(float(apy_percent)) or not math.isfinite(float(elapsed_hours)):
        raise ValueError(f"apy_percent and elapsed_hours must be finite, got {apy_percent}, {elapsed_hours}")
    if principal < 0:
        raise ValueError(f"principal must be >= 0, got {principal}")
    if principal == 0:
        return 0
    if apy_percent < 0:
        raise ValueError(f"apy_percent must be >= 0, got {apy_percent}")
    hours = max(0.0, float(elapsed_hours))
    if hours == 0:
        return 0
    accrued = Decimal(int(principal)) * Decimal(str(apy_percent)) * Decimal(str(hours)) / (100 * HOURS_PER_YEAR)
    return int(accrued.to_integral_value(rounding=ROUND_FLOOR))


def blended_apy(deposits: Sequence[Deposit]) -> float | None:
    """Principal-weighted APY snapshot across `deposits`, to 2 places; None when there are none."""
    total = sum(d.principal for d in deposits)
    if total <= 0:
        return None
    weighted = sum(Decimal(d.principal) * Decimal(str(d.apy_snapshot)) for d in deposits) / total
    return float(weighted.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def whole_hours_between(since: float, now: float) -> int:
    """Completed hours from `since` to `now`, never negative."""
    return max(0, int((now - since) // SECONDS_PER_HOUR))


def refresh_accrual(
    state: YieldAccrualState | None,
    *,
    principal: int,
    apy_percent: float,
    accrual_start: float,
    now: float,
    refresh_seconds: int = YIELD_ESTIMATE_REFRESH_SECONDS,
) -> YieldAccrualState:
    """Return a fresh accrual state, or `state` itself if it is younger than `refresh_seconds`.

    The estimate covers whole hours since `accrual_start`, the last time an authoritative yield
    figure was known.
    """
    if state is not None and 0 <= now - state.last_computed_at < refresh_seconds:
        return state
    hours = whole_hours_between(accrual_start, now)
    return YieldAccrualState(
        last_computed_at=now,
        accrued_amount=estimate_accrued_yield(principal, apy_percent, hours),
    )


def lock_status(lock_until_epoch_seconds: int, now_epoch_millis: float) -> LockStatus:
    """Locked iff the lock ends strictly after now; days remaining rounds partial days up."""
    remaining_ms = int(lock_until_epoch_seconds) * 1000 - now_epoch_millis
    is_locked = remaining_ms > 0
    if not is_locked:
        return LockStatus(is_locked=False, days_remaining=0, unlock_date=None)
    return LockStatus(
        is_locked=True,
        days_remaining=max(0, math.ceil(remaining_ms / MS_PER_DAY)),
        unlock_date=iso_utc(int(lock_until_epoch_seconds)),
    )


UNLOCKED = LockStatus(is_locked=False, days_remaining=0, unlock_date=None)
