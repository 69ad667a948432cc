"""On-chain position reads with a labelled local fallback."""

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence

from stablepay.contracts import VaultClient
from stablepay.formatters import require_address
from stablepay.models import Deposit, OnchainDeposit, VaultPosition

logger = logging.getLogger(__name__)

SOURCE_ONCHAIN = "onchain"
SOURCE_ESTIMATED = "estimated"


def _position_from_records(recorded: Sequence[Deposit]) -> tuple[int, OnchainDeposit | None]:
    if not recorded:
        return 0, None
    principal = sum(d.principal for d in recorded)
    lock_until = max(d.lock_until for d in recorded)
    return principal, OnchainDeposit(amount=principal, lock_until=lock_until, yield_earned=0)


def read_vault_position(client: VaultClient, address: str, recorded: Sequence[Deposit] = ()) -> VaultPosition:
    """Read a user's balance, deposit and claimable yield from the vault.

    The on-chain figures are ground truth. A read that fails is logged and replaced by what
    this backend recorded for the address: principals summed, latest unlock time. The position
    is then labelled `estimated` and lists the failed reads in `errors`. Yield is never guessed: a failed
    `getYieldAvailable` counts as zero on-chain yield and the metrics estimate covers it.
    """
    key = require_address(address)
    errors: list[str] = []
    fallback_balance, fallback_deposit = _position_from_records(recorded)

    try:
        balance = client.balance_of(key)
    except Exception as ex:  # pylint: disable=broad-exception-caught
        logger.warning("balanceOf failed for %s: %s", key, ex)
        errors.append(f"balanceOf: {ex}")
        balance = fallback_balance

    try:
        deposit: OnchainDeposit | None = client.get_user_deposit(key)
    except Exception as ex:  # pylint: disable=broad-exception-caught
        logger.warning("getUserDeposit failed for %s: %s", key, ex)
        errors.append(f"getUserDeposit: {ex}")
        deposit = fallback_deposit

    try:
        yield_available = client.get_yield_available(key)
    except Exception as ex:  # pylint: disable=broad-exception-caught
        logger.warning("getYieldAvailable failed for %s: %s", key, ex)
        errors.append(f"getYieldAvailable: {ex}")
        yield_available = 0

    return VaultPosition(
        address=key,
        balance=balance,
        deposit=deposit,
        yield_available=yield_available,
        source=SOURCE_ESTIMATED if errors else SOURCE_ONCHAIN,
        errors=tuple(errors),
    )


def collect_positions(
    client: VaultClient,
    addresses: Iterable[str],
    recorded: Mapping[str, Sequence[Deposit]] | None = None,
    *,
    batch_size: int,
    on_position: Callable[[VaultPosition], None] | None = None,
) -> dict[str, VaultPosition]:
    """Read positions for many addresses in rate-limited batches."""
    recorded = recorded or {}
    keys = [require_address(a) for a in addresses]
    thunks = [lambda k=k: read_vault_position(client, k, recorded.get(k, ())) for k in keys]
    positions = client.limiter.execute_batch(thunks, batch_size=batch_size, limit_each=False, on_result=on_position)
    return dict(zip(keys, positions, strict=True))
