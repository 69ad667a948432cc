import logging

import pytest
from conftest import ALICE, BOB, CAROL, vault_log

from stablepay.constants import VAULT_EVENT_SIGNATURES, ZERO_ADDRESS
from stablepay.errors import InvalidAddress
from stablepay.history import (
    address_topic,
    data_words,
    decode_event,
    iter_block_ranges,
    scan_wallet_events,
    topic0,
    topic_address,
)

USDC_1K = 1_000_000_000


def test_topic0_is_the_keccak_of_the_signature():
    assert topic0("Transfer(address,address,uint256)") == (
        "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
    )


def test_address_topics():
    topic = address_topic("0xAbCdEf0000000000000000000000000000000001")
    assert topic == "0x000000000000000000000000abcdef0000000000000000000000000000000001"
    assert topic_address(topic) == "0xabcdef0000000000000000000000000000000001"
    assert topic_address(bytes.fromhex(topic[2:])) == "0xabcdef0000000000000000000000000000000001"


def test_data_words():
    assert data_words("0x") == []
    assert data_words("0x" + f"{5:064x}" + f"{7:064x}") == [5, 7]
    # a trailing partial word is ignored
    assert data_words("0x" + f"{5:064x}" + "ff") == [5]


def test_iter_block_ranges():
    assert list(iter_block_ranges(10, 25, 10)) == [(10, 19), (20, 25)]
    assert list(iter_block_ranges(5, 5, 100)) == [(5, 5)]
    assert list(iter_block_ranges(6, 5, 100)) == []
    with pytest.raises(ValueError):
        list(iter_block_ranges(0, 10, 0))


def test_decode_skips_share_mints():
    mint = vault_log("transfer", [ZERO_ADDRESS, ALICE], [USDC_1K], block=1)
    assert decode_event("transfer_in", mint) is None

    deposit = vault_log("deposit", [ALICE, ALICE], [USDC_1K, 999, 1_800_000_000], block=3, log_index=2)
    event = decode_event("deposit", deposit)
    assert (event.kind, event.amount, event.shares, event.lock_until) == ("deposit", USDC_1K, 999, 1_800_000_000)
    assert (event.block_number, event.log_index) == (3, 2)


@pytest.fixture
def alice_logs(w3):
    w3.provider.logs.extend(
        [
            vault_log("deposit", [ALICE, ALICE], [50 * USDC_1K, 50 * USDC_1K, 1_730_000_000], block=15_000),
            vault_log("transfer", [ZERO_ADDRESS, ALICE], [50 * USDC_1K], block=15_000, log_index=1),
            vault_log("deposit", [BOB, BOB], [USDC_1K, USDC_1K, 1_730_000_000], block=15_500),
            vault_log("transfer", [ALICE, CAROL], [USDC_1K], block=16_000),
            vault_log("transfer", [BOB, ALICE], [2 * USDC_1K], block=16_500),
            vault_log("yield_claim", [ALICE], [12_345_678], block=17_000),
            vault_log("withdrawal", [ALICE, BOB, ALICE], [5 * USDC_1K, 5 * USDC_1K], block=18_000),
            # outside the scanned window
            vault_log("deposit", [ALICE, ALICE], [USDC_1K, USDC_1K, 0], block=9_000),
        ]
    )
    return w3


def test_scan_wallet_events(vault_client, alice_logs):
    chunks = []

    history = scan_wallet_events(vault_client, ALICE, on_chunk=chunks.append)

    assert (history.from_block, history.to_block) == (10_000, 20_000)
    assert history.errors == ()
    assert [e.kind for e in history.events] == ["withdrawal", "yield_claim", "transfer_in", "transfer_out", "deposit"]
    withdrawal, claim, transfer_in, transfer_out, deposit = history.events
    assert withdrawal.counterparty == BOB
    assert claim.amount == 12_345_678
    assert transfer_in.counterparty == BOB
    assert transfer_out.counterparty == CAROL
    assert deposit.lock_until == 1_730_000_000
    assert deposit.timestamp == 1_700_000_000 + 15_000 * 2

    assert history.summary() == {
        "totalDeposits": 1,
        "totalWithdrawals": 1,
        "totalYieldClaims": 1,
        "totalTransfers": 2,
        "totalDepositAmount": str(50 * USDC_1K),
        "totalWithdrawalAmount": str(5 * USDC_1K),
        "totalYieldClaimed": "12345678",
    }

    # 6 chunks of 2,000 blocks for each of the 5 queries
    assert len(chunks) == 30 and set(chunks) == {30}
    requests = alice_logs.provider.requests
    assert (requests[0]["fromBlock"], requests[0]["toBlock"]) == (hex(10_000), hex(11_999))
    assert requests[5]["fromBlock"] == requests[5]["toBlock"] == hex(20_000)


def test_scan_keeps_other_event_types_when_one_query_fails(vault_client, alice_logs, caplog):
    claim_topic = topic0(VAULT_EVENT_SIGNATURES["yield_claim"])
    alice_logs.provider.error_for_topic0[claim_topic] = {"code": -32005, "message": "limit exceeded"}

    with caplog.at_level(logging.WARNING, logger="stablepay.history"):
        history = scan_wallet_events(vault_client, ALICE)

    assert [e.kind for e in history.events] == ["withdrawal", "transfer_in", "transfer_out", "deposit"]
    [error] = history.errors
    assert error.startswith("yield_claim: RPC error")
    assert "limit exceeded" in caplog.text


def test_scan_tolerates_missing_block_times_and_bad_logs(vault_client, w3):
    w3.provider.logs.append(vault_log("yield_claim", [ALICE], [1], block=19_000))
    truncated = vault_log("deposit", [ALICE, ALICE], [1], block=19_500)
    w3.provider.logs.append(truncated)
    w3.eth.block_times[19_000] = ConnectionError("rpc down")

    history = scan_wallet_events(vault_client, ALICE)

    [claim] = history.events
    assert claim.timestamp is None
    assert history.errors == ()


def test_transfer_to_self_is_listed_once(vault_client, w3):
    w3.provider.logs.append(vault_log("transfer", [ALICE, ALICE], [7], block=19_000))
    history = scan_wallet_events(vault_client, ALICE)
    assert len(history.events) == 1
    assert history.summary()["totalTransfers"] == 1


def test_scan_window_is_clamped_at_genesis(vault_client, w3):
    w3.eth.block_number = 1_500
    history = scan_wallet_events(vault_client, ALICE, chunk_size=1_000)
    assert (history.from_block, history.to_block) == (0, 1_500)
    assert len(w3.provider.requests) == 2 * 5


def test_scan_rejects_bad_address(vault_client):
    with pytest.raises(InvalidAddress):
        scan_wallet_events(vault_client, "0xnope")
