"""Per-user vault metrics: on-chain figures plus a labelled local yield estimate."""

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from stablepay.cache import Clock, TTLCache, system_clock
from stablepay.constants import ONCHAIN_REFRESH_SECONDS, RPC_BATCH_SIZE, YIELD_ESTIMATE_REFRESH_SECONDS
from stablepay.contracts import VaultClient
from stablepay.formatters import iso_utc, require_address
from stablepay.models import Deposit, StablePayMetrics, VaultPosition, YieldAccrualState
from stablepay.onchain import SOURCE_ESTIMATED, SOURCE_ONCHAIN, collect_positions, read_vault_position
from stablepay.validation import validate_vault_position
from stablepay.yield_model import UNLOCKED, blended_apy, lock_status, refresh_accrual, whole_hours_between

logger = logging.getLogger(__name__)

# Recorded deposits of an address, oldest first.
DepositLookup = Callable[[str], Sequence[Deposit]]


@dataclass(frozen=True)
class _Anchor:
    """Last point where the yield figure was authoritative."""

    at: float
    onchain_yield: int


class MetricsService:
    """Serves the metrics endpoint.

    Positions are read on-chain and cached for `onchain_ttl` seconds. While reads succeed the
    reported yield is the vault's own figure. When a read fails, the last good figure is kept
    and a local estimate for the whole hours since then is added on top, refreshed at most once
    per `estimate_ttl`, and the response is labelled `estimated`. Each recorded deposit accrues
    at its own APY snapshot from its own start.
    """

    def __init__(
        self,
        client: VaultClient,
        deposits: DepositLookup,
        *,
        clock: Clock = system_clock,
        onchain_ttl: float = ONCHAIN_REFRESH_SECONDS,
        estimate_ttl: float = YIELD_ESTIMATE_REFRESH_SECONDS,
        batch_size: int = RPC_BATCH_SIZE,
    ) -> None:
        self.client = client
        self._deposits = deposits
        self._clock = clock
        self.onchain_ttl = onchain_ttl
        self.estimate_ttl = estimate_ttl
        self.batch_size = batch_size
        self._positions = TTLCache(onchain_ttl, clock)
        self._lock = threading.Lock()
        self._anchors: dict[str, _Anchor] = {}
        self._accrual: dict[str, dict[Deposit, YieldAccrualState]] = {}
        self._watched: set[str] = set()
        self._last_onchain_refresh: float | None = None
        self._last_estimate_refresh: float | None = None

    # Positions

    def _remember(self, position: VaultPosition, now: float) -> None:
        for issue in validate_vault_position(position, now=now):
            logger.warning("Vault position check: %s", issue)
        self._positions.set(position.address, position)
        if position.source == SOURCE_ONCHAIN:
            with self._lock:
                self._anchors[position.address] = _Anchor(at=now, onchain_yield=position.yield_available)
                self._accrual.pop(position.address, None)

    def position(self, address: str) -> VaultPosition:
        """Cached position for `address`, read on-chain when the cache entry has expired."""
        key = require_address(address)
        cached = self._positions.get(key)
        if cached is not None:
            return cached
        position = read_vault_position(self.client, key, self._deposits(key))
        self._remember(position, self._clock())
        return position

    def prefetch(
        self, addresses: Iterable[str], on_position: Callable[[VaultPosition], None] | None = None
    ) -> dict[str, VaultPosition]:
        """Read many positions in rate-limited batches and cache them."""
        keys = [require_address(a) for a in addresses]
        recorded = {k: self._deposits(k) for k in keys}
        positions = collect_positions(
            self.client, keys, recorded, batch_size=self.batch_size, on_position=on_position
        )
        now = self._clock()
        for position in positions.values():
            self._remember(position, now)
        return positions

    def invalidate(self, address: str) -> None:
        """Forget the cached position so the next read goes on-chain."""
        self._positions.invalidate(require_address(address))

    # Metrics

    def _estimate(self, key: str, recorded: Sequence[Deposit], now: float) -> tuple[int, int, int]:
        """(onchain_yield, estimated_yield, hours_elapsed) for a position whose reads failed.

        A deposit accrues from the last good on-chain read, or from its own timestamp when it
        was made after that read or no read ever succeeded.
        """
        with self._lock:
            anchor = self._anchors.get(key)
            onchain_yield = anchor.onchain_yield if anchor else 0
            if not recorded:
                return onchain_yield, 0, 0
            previous = self._accrual.get(key, {})
            states: dict[Deposit, YieldAccrualState] = {}
            total = hours = 0
            for deposit in recorded:
                start = float(deposit.deposit_timestamp)
                if anchor is not None:
                    start = max(start, anchor.at)
                state = refresh_accrual(
                    previous.get(deposit),
                    principal=deposit.principal,
                    apy_percent=deposit.apy_snapshot,
                    accrual_start=start,
                    now=now,
                    refresh_seconds=self.estimate_ttl,
                )
                states[deposit] = state
                total += state.accrued_amount
                hours = max(hours, whole_hours_between(start, state.last_computed_at))
            self._accrual[key] = states
        return onchain_yield, total, hours

    def get_metrics(self, address: str) -> StablePayMetrics:
        key = require_address(address)
        with self._lock:
            self._watched.add(key)
        position = self.position(key)
        recorded = self._deposits(key)
        now = self._clock()

        if position.source == SOURCE_ONCHAIN:
            onchain_yield, estimated_yield, hours = position.yield_available, 0, 0
        else:
            onchain_yield, estimated_yield, hours = self._estimate(key, recorded, now)

        lock = lock_status(position.deposit.lock_until, now * 1000) if position.deposit else UNLOCKED
        age = self._positions.age(key) or 0.0
        return StablePayMetrics(
            user_balance=position.balance,
            yield_earned=onchain_yield + estimated_yield,
            onchain_yield=onchain_yield,
            estimated_yield=estimated_yield,
            source=SOURCE_ONCHAIN if position.source == SOURCE_ONCHAIN else SOURCE_ESTIMATED,
            lock_status=lock,
            apy=blended_apy(recorded),
            last_updated=iso_utc(now - age),
            hours_elapsed=hours,
            contract_address=self.client.vault_address,
        )

    # Refresh timers

    def refresh_due(self, now: float) -> tuple[bool, bool]:
        """Whether the (on-chain, estimate) refreshes are due at `now`."""
        onchain = self._last_onchain_refresh is None or now - self._last_onchain_refresh >= self.onchain_ttl
        estimate = self._last_estimate_refresh is None or now - self._last_estimate_refresh >= self.estimate_ttl
        return onchain, estimate

    def tick(self) -> int:
        """Run whichever refresh is due for every watched address; returns positions re-read."""
        now = self._clock()
        onchain_due, estimate_due = self.refresh_due(now)
        with self._lock:
            watched = sorted(self._watched)
        refreshed = 0
        if onchain_due:
            self._last_onchain_refresh = now
            self._positions.purge_expired()
            stale = [a for a in watched if a not in self._positions]
            if stale:
                refreshed = len(self.prefetch(stale))
                logger.debug("Refreshed %d vault positions", refreshed)
        if estimate_due:
            self._last_estimate_refresh = now
            for key in watched:
                position = self._positions.get(key)
                if position is not None and position.is_estimated:
                    self._estimate(key, self._deposits(key), now)
        return refreshed


class MetricsPoller(threading.Thread):
    """Background thread calling `service.tick()` every `interval` seconds until stopped."""

    def __init__(self, service: MetricsService, interval: float = ONCHAIN_REFRESH_SECONDS) -> None:
        super().__init__(name="stablepay-metrics-poller", daemon=True)
        self.service = service
        self.interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.service.tick()
            except Exception as ex:  # pylint: disable=broad-exception-caught
                logger.warning("Metrics refresh failed: %s", ex)

    def stop(self) -> None:
        self._stop_event.set()
