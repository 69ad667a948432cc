import math

import pytest
from conftest import ALICE

from stablepay.errors import InvalidLockPeriod
from stablepay.models import Deposit, YieldAccrualState
from stablepay.yield_model import (
    apy_for_lock_period,
    blended_apy,
    estimate_accrued_yield,
    lock_period_option,
    lock_period_options,
    lock_status,
    lock_until_for,
    parse_lock_period,
    refresh_accrual,
    whole_hours_between,
)

DAY = 86_400


@pytest.mark.parametrize(
    ("months", "apy"),
    [
        (0.5, 7),
        (1, 8),
        (2, 8.5),
        (3, 9),
        (4, 9.5),
        (5, 10),
        (6, 10.5),
        (7, 11),
        (8, 11.5),
        (9, 12),
        (10, 12.5),
        (11, 13),
        (12, 14),
    ],
)
def test_apy_for_lock_period(months, apy):
    assert apy_for_lock_period(months) == apy


def test_lock_period_table_is_ordered_and_strictly_increasing():
    options = lock_period_options()
    assert len(options) == 13
    assert [o.months for o in options] == sorted(o.months for o in options)
    apys = [o.apy for o in options]
    assert all(a < b for a, b in zip(apys, apys[1:]))
    assert options[0].label == "15 Days"
    assert options[-1].label == "12 Months"


@pytest.mark.parametrize("months", [0, 13, -1, 1.5, 0.25, math.nan, math.inf, "6", None, True])
def test_unknown_lock_period_is_rejected(months):
    with pytest.raises(InvalidLockPeriod):
        apy_for_lock_period(months)


def test_invalid_lock_period_is_also_a_value_error():
    with pytest.raises(ValueError):
        lock_period_option(24)


def test_parse_lock_period_accepts_strings_and_numbers():
    assert parse_lock_period("0.5") == 0.5
    assert parse_lock_period(" 6 ") == 6
    assert parse_lock_period(12) == 12
    with pytest.raises(InvalidLockPeriod):
        parse_lock_period("six")
    with pytest.raises(InvalidLockPeriod):
        parse_lock_period("13")


def test_lock_until_uses_thirty_day_months():
    assert lock_until_for(0, 0.5) == 15 * DAY
    assert lock_until_for(0, 1) == 30 * DAY
    assert lock_until_for(1_000, 12) == 1_000 + 360 * DAY


def test_estimate_accrued_yield_known_values():
    # 50,000 USDC at 13% for 24 hours
    assert estimate_accrued_yield(50_000_000_000, 13, 24) == 17_808_219
    # 1,000 USDC at 8% for a full year
    assert estimate_accrued_yield(1_000_000_000, 8, 8_760) == 80_000_000
    # floored, never rounded up
    assert estimate_accrued_yield(1, 14, 1) == 0


def test_estimate_accrued_yield_edge_cases():
    assert estimate_accrued_yield(0, 14, 1_000) == 0
    assert estimate_accrued_yield(0, -1, 1_000) == 0
    assert estimate_accrued_yield(1_000_000, 10, -5) == 0
    assert estimate_accrued_yield(1_000_000, 0, 100) == 0
    with pytest.raises(ValueError):
        estimate_accrued_yield(-1, 10, 1)
    with pytest.raises(ValueError):
        estimate_accrued_yield(1_000_000, -0.5, 1)


@pytest.mark.parametrize(
    ("apy", "hours"), [(13, math.inf), (13, math.nan), (math.inf, 24), (math.nan, 24), (13, -math.inf)]
)
def test_estimate_accrued_yield_rejects_non_finite_inputs(apy, hours):
    with pytest.raises(ValueError, match="finite"):
        estimate_accrued_yield(50_000_000_000, apy, hours)


def test_blended_apy():
    assert blended_apy([]) is None
    one = Deposit(ALICE, 1_000_000, 0, 6, 10.5, 0)
    assert blended_apy([one]) == 10.5
    big = Deposit(ALICE, 50_000_000_000, 0, 11, 13, 0)
    small = Deposit(ALICE, 10_000_000, 0, 1, 8, 0)
    assert blended_apy([big, small]) == 13.0
    assert blended_apy([Deposit(ALICE, 1, 0, 0.5, 7, 0), Deposit(ALICE, 2, 0, 12, 14, 0)]) == 11.67


def test_estimate_is_monotonic_in_time():
    values = [estimate_accrued_yield(25_000_000_000, 10.5, h) for h in range(0, 200, 7)]
    assert values == sorted(values)


def test_whole_hours_between():
    assert whole_hours_between(0, 3_599) == 0
    assert whole_hours_between(0, 3_600) == 1
    assert whole_hours_between(0, 7_199) == 1
    assert whole_hours_between(100, 0) == 0


def test_refresh_accrual_recomputes_at_most_hourly():
    kwargs = {"principal": 50_000_000_000, "apy_percent": 13, "accrual_start": 0}
    first = refresh_accrual(None, now=24 * 3_600, **kwargs)
    assert first == YieldAccrualState(last_computed_at=24 * 3_600, accrued_amount=17_808_219)

    same = refresh_accrual(first, now=24 * 3_600 + 3_599, **kwargs)
    assert same is first

    later = refresh_accrual(first, now=25 * 3_600, **kwargs)
    assert later.last_computed_at == 25 * 3_600
    assert later.accrued_amount == estimate_accrued_yield(50_000_000_000, 13, 25)


def test_lock_status_locked_with_partial_day_rounds_up():
    now_ms = 1_000_000 * 1_000
    status = lock_status(1_000_000 + DAY + 1, now_ms)
    assert status.is_locked
    assert status.days_remaining == 2
    assert status.unlock_date == "1970-01-13T13:46:41.000Z"


def test_lock_status_exact_boundaries():
    now_s = 1_700_000_000
    assert lock_status(now_s + DAY, now_s * 1_000).days_remaining == 1
    assert lock_status(now_s, now_s * 1_000 - 1).days_remaining == 1

    unlocked = lock_status(now_s, now_s * 1_000)
    assert not unlocked.is_locked
    assert unlocked.days_remaining == 0
    assert unlocked.unlock_date is None


def test_lock_status_in_the_past():
    status = lock_status(0, 1_700_000_000_000)
    assert status.is_locked is False
    assert status.days_remaining == 0
