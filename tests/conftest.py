from typing import Any

import pytest

from stablepay.constants import VAULT_EVENT_SIGNATURES
from stablepay.contracts import VaultClient
from stablepay.errors import VendorError
from stablepay.history import address_topic, topic0
from stablepay.rate_limiter import SlidingWindowRateLimiter
from stablepay.storage import Storage

VAULT = "0x4bc7a35d6e09d102087ed84445137f04540a8790"
USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"


class FakeClock:
    """Manually advanced clock; `sleep` advances it instead of blocking."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class StubProvider:
    """KYC provider that confirms only the steps in `succeeds`."""

    def __init__(self, name, succeeds=(), error=None, steps=None):
        self.name = name
        self.succeeds = set(succeeds)
        self.error = error
        self.steps = steps
        self.calls = []

    def supports(self, step):
        return self.steps is None or step in self.steps

    def verify(self, step, request):
        self.calls.append(step)
        if step in self.succeeds:
            return {"provider": self.name, "step": step}
        if self.error is not None:
            raise self.error
        raise VendorError(self.name, f"{step} not confirmed")


class FakeFunction:
    def __init__(self, w3: "FakeWeb3", address: str, name: str, args: tuple) -> None:
        self.w3 = w3
        self.address = address
        self.name = name
        self.args = args

    def call(self) -> Any:
        self.w3.calls.append(self.name)
        result = self.w3.results.get(self.address, {}).get(self.name)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(*self.args)
        return result

    def build_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"to": self.address, "data": f"{self.name}{self.args}", **params}


class FakeFunctions:
    def __init__(self, w3: "FakeWeb3", address: str) -> None:
        self._w3 = w3
        self._address = address

    def __getattr__(self, name: str):
        return lambda *args: FakeFunction(self._w3, self._address, name, args)


class FakeContract:
    def __init__(self, w3: "FakeWeb3", address: str) -> None:
        self.address = address
        self.functions = FakeFunctions(w3, address)


class FakeEth:
    def __init__(self, w3: "FakeWeb3") -> None:
        self._w3 = w3
        self.gas_price = 1_000
        self.gas_estimate: int | Exception = 100_000
        self.block_number = 20_000
        self.block_times: dict[int, int | Exception] = {}

    def get_block(self, number: int) -> dict[str, Any]:
        ts = self.block_times.get(number, 1_700_000_000 + number * 2)
        if isinstance(ts, Exception):
            raise ts
        return {"number": number, "timestamp": ts}

    def contract(self, address: str, abi: list) -> FakeContract:
        return FakeContract(self._w3, address)

    def get_transaction_count(self, sender: str) -> int:
        return 7

    def estimate_gas(self, tx: dict) -> int:
        if isinstance(self.gas_estimate, Exception):
            raise self.gas_estimate
        return self.gas_estimate


class FakeProvider:
    """`make_request("eth_getLogs", [filter])` over an in-memory list of raw logs."""

    def __init__(self) -> None:
        self.logs: list[dict[str, Any]] = []
        self.requests: list[dict[str, Any]] = []
        self.error_for_topic0: dict[str, Any] = {}

    def make_request(self, method: str, params: list) -> dict[str, Any]:
        assert method == "eth_getLogs"
        [flt] = params
        self.requests.append(flt)
        topics = flt.get("topics") or []
        if topics and topics[0] in self.error_for_topic0:
            return {"error": self.error_for_topic0[topics[0]]}
        lo, hi = int(flt["fromBlock"], 16), int(flt["toBlock"], 16)
        result = []
        for log in self.logs:
            if log["address"].lower() != flt["address"].lower():
                continue
            if not lo <= int(log["blockNumber"], 16) <= hi:
                continue
            wanted = [(i, t) for i, t in enumerate(topics) if t is not None]
            if all(i < len(log["topics"]) and log["topics"][i] == t for i, t in wanted):
                result.append(log)
        return {"result": result}


def vault_log(
    kind: str, indexed: list[str], words: list[int], *, block: int, tx_index: int = 0, log_index: int = 0
) -> dict[str, Any]:
    """A raw eth_getLogs entry for a vault event, hex-encoded as an RPC node returns it."""
    return {
        "address": VAULT,
        "topics": [topic0(VAULT_EVENT_SIGNATURES[kind])] + [address_topic(a) for a in indexed],
        "data": "0x" + "".join(f"{w:064x}" for w in words),
        "blockNumber": hex(block),
        "transactionIndex": hex(tx_index),
        "logIndex": hex(log_index),
        "transactionHash": "0x" + f"{block:x}{tx_index:02x}".rjust(64, "0"),
    }


class FakeWeb3:
    """Just enough of web3.Web3 for VaultClient.

    `results[contract_address][function_name]` is the return value of `.call()`; an exception
    instance is raised instead, a callable is applied to the call arguments.
    """

    def __init__(self) -> None:
        self.results: dict[str, dict[str, Any]] = {VAULT: {}, USDC: {}}
        self.calls: list[str] = []
        self.eth = FakeEth(self)
        self.provider = FakeProvider()

    @staticmethod
    def to_checksum_address(address: str) -> str:
        return address.lower()

    def set_position(self, balance: int, amount: int, lock_until: int, yield_available: int) -> None:
        self.results[VAULT].update(
            {
                "balanceOf": balance,
                "getUserDeposit": (amount, lock_until, yield_available),
                "getYieldAvailable": yield_available,
            }
        )

    def fail_reads(self, exc: Exception | None = None) -> None:
        exc = exc or ConnectionError("rpc down")
        for name in ("balanceOf", "getUserDeposit", "getYieldAvailable"):
            self.results[VAULT][name] = exc


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_700_000_000.0)


@pytest.fixture
def w3() -> FakeWeb3:
    return FakeWeb3()


@pytest.fixture
def vault_client(w3: FakeWeb3, clock: FakeClock) -> VaultClient:
    limiter = SlidingWindowRateLimiter(max_calls=1000, clock=clock, sleep=clock.sleep)
    return VaultClient(w3, VAULT, USDC, limiter)


@pytest.fixture
def storage(tmp_path) -> Storage:
    s = Storage(f"sqlite:///{tmp_path / 'stablepay.db'}")
    s.create_tables()
    return s
