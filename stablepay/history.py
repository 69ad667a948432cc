"""Vault event history of one wallet, scanned from eth_getLogs in block chunks."""

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any

from stablepay.constants import LOG_CHUNK_BLOCKS, VAULT_EVENT_SIGNATURES, WALLET_HISTORY_BLOCKS, ZERO_ADDRESS
from stablepay.contracts import VaultClient
from stablepay.formatters import as_int, normalize_hex_str, require_address
from stablepay.models import VaultEvent, WalletHistory

logger = logging.getLogger(__name__)


def topic0(signature: str) -> str:
    """Compute topic0 (event signature hash) for an event signature."""
    from web3 import Web3  # pylint: disable=import-outside-toplevel

    return normalize_hex_str(Web3.keccak(text=signature))


def address_topic(address: str) -> str:
    """An indexed address argument as a 32-byte topic."""
    return "0x" + "0" * 24 + require_address(address)[2:]


def topic_address(topic) -> str:
    return "0x" + normalize_hex_str(topic)[-40:].lower()


def data_words(data) -> list[int]:
    """The 32-byte words of a log's data field as unsigned ints."""
    raw = normalize_hex_str(data)[2:]
    return [int(raw[i : i + 64], 16) for i in range(0, len(raw) - len(raw) % 64, 64)]


def iter_block_ranges(start: int, end: int, chunk_size: int) -> Iterable[tuple[int, int]]:
    """Iterate over inclusive block ranges in chunks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    cur = start
    while cur <= end:
        yield cur, min(end, cur + chunk_size - 1)
        cur += chunk_size


def _wallet_queries(owner_topic: str) -> list[tuple[str, list[str | None]]]:
    t = {kind: topic0(signature) for kind, signature in VAULT_EVENT_SIGNATURES.items()}
    return [
        ("deposit", [t["deposit"], None, owner_topic]),
        ("withdrawal", [t["withdrawal"], None, None, owner_topic]),
        ("yield_claim", [t["yield_claim"], owner_topic]),
        ("transfer_out", [t["transfer"], owner_topic]),
        ("transfer_in", [t["transfer"], None, owner_topic]),
    ]


def decode_event(kind: str, log: dict[str, Any]) -> VaultEvent | None:
    """Decode a raw log of `kind`; None for share mints and burns, which deposits and withdrawals cover."""
    topics = log["topics"]
    words = data_words(log.get("data") or "0x")
    fields: dict[str, Any] = {
        "kind": kind,
        "tx_hash": normalize_hex_str(log["transactionHash"]).lower(),
        "block_number": as_int(log["blockNumber"]),
        "transaction_index": as_int(log.get("transactionIndex")),
        "log_index": as_int(log.get("logIndex")),
    }
    if kind == "deposit":
        assets, shares, lock_until = words[:3]
        return VaultEvent(**fields, amount=assets, shares=shares, lock_until=lock_until)
    if kind == "withdrawal":
        assets, shares = words[:2]
        return VaultEvent(**fields, amount=assets, shares=shares, counterparty=topic_address(topics[2]))
    if kind == "yield_claim":
        return VaultEvent(**fields, amount=words[0])
    counterparty = topic_address(topics[2] if kind == "transfer_out" else topics[1])
    if counterparty == ZERO_ADDRESS:
        return None
    return VaultEvent(**fields, amount=words[0], counterparty=counterparty)


def scan_wallet_events(
    client: VaultClient,
    address: str,
    *,
    window_blocks: int = WALLET_HISTORY_BLOCKS,
    chunk_size: int = LOG_CHUNK_BLOCKS,
    on_chunk: Callable[[int], None] | None = None,
) -> WalletHistory:
    """Deposits, withdrawals, yield claims and share transfers of `address` in recent blocks.

    Each event type is fetched separately. A type whose log query fails is logged and listed
    in `errors`; the others are still returned. `on_chunk(total_chunks)` is called after each
    log request.
    """
    key = require_address(address)
    latest = client.block_number()
    start = max(0, latest - window_blocks)
    ranges = list(iter_block_ranges(start, latest, chunk_size))
    queries = _wallet_queries(address_topic(key))
    total_chunks = len(ranges) * len(queries)

    events: dict[tuple[str, int], VaultEvent] = {}
    errors: list[str] = []
    for kind, topics in queries:
        logs: list[dict[str, Any]] = []
        try:
            for a, b in ranges:
                logs.extend(client.get_logs(a, b, topics))
                if on_chunk is not None:
                    on_chunk(total_chunks)
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.warning("%s log scan failed for %s: %s", kind, key, ex)
            errors.append(f"{kind}: {ex}")
            continue
        for log in logs:
            try:
                event = decode_event(kind, log)
            except (KeyError, IndexError, ValueError) as ex:
                logger.warning("Skipping malformed %s log for %s: %s", kind, key, ex)
                continue
            # A transfer to oneself matches both transfer queries.
            if event is not None:
                events.setdefault((event.tx_hash, event.log_index), event)

    timestamps: dict[int, int | None] = {}
    for block in sorted({e.block_number for e in events.values()}):
        try:
            timestamps[block] = client.block_timestamp(block)
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.warning("get_block(%d) failed: %s", block, ex)
            timestamps[block] = None

    ordered = sorted(
        events.values(), key=lambda e: (e.block_number, e.transaction_index, e.log_index), reverse=True
    )
    return WalletHistory(
        address=key,
        from_block=start,
        to_block=latest,
        events=tuple(replace(e, timestamp=timestamps[e.block_number]) for e in ordered),
        errors=tuple(errors),
    )
