"""Console output formatting."""

from stablepay.formatters import format_apy, format_usdc, short_address
from stablepay.models import LockPeriodOption, StablePayMetrics


def print_lock_periods(options: tuple[LockPeriodOption, ...], onchain_apy: dict[float, int | None] | None = None) -> None:
    """Print the lock-period table, optionally next to the contract's own rates."""
    print("=" * 70)
    print("🔒 LOCK PERIODS")
    print("=" * 70)
    for o in options:
        line = f"   {o.label:<10} {format_apy(o.apy):>6}   {o.description}"
        if onchain_apy is not None:
            rate = onchain_apy.get(o.months)
            if rate is None:
                line += "   (on-chain: n/a)"
            else:
                marker = "✅" if rate == o.apy else "⚠️"
                line += f"   {marker} on-chain: {format_apy(rate)}"
        print(line)
    print("")


def print_metrics(address: str, m: StablePayMetrics) -> None:
    """Print one user's metrics."""
    source_emoji = "🔗" if m.source == "onchain" else "🧮"
    print(f"\n👤 {short_address(address)}  {source_emoji} {m.source}")
    print("   " + "─" * 50)
    print(f"   💰 Balance:       {format_usdc(m.user_balance, decimals=6)}")
    print(f"   📈 Yield earned:  {format_usdc(m.yield_earned, decimals=6)}")
    if m.estimated_yield:
        print(f"      • On-chain:    {format_usdc(m.onchain_yield, decimals=6)}")
        print(f"      • Estimated:   {format_usdc(m.estimated_yield, decimals=6)} ({m.hours_elapsed}h)")
    print(f"   📊 APY:           {format_apy(m.apy)}")
    lock = m.lock_status
    if lock.is_locked:
        print(f"   🔒 Locked until {lock.unlock_date} ({lock.days_remaining} days remaining)")
    else:
        print("   🔓 Unlocked")
    print(f"   🕐 Updated:       {m.last_updated}")


def print_estimate(principal: int, apy: float, hours: int, accrued: int) -> None:
    print(f"💵 Principal: {format_usdc(principal, decimals=6)}")
    print(f"📊 APY:       {format_apy(apy)}")
    print(f"⏱️  Elapsed:   {hours}h")
    print(f"📈 Accrued:   {format_usdc(accrued, decimals=6)}")
