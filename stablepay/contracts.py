"""Contract interaction functions for the StablePay vault and USDC on Base."""

import logging
from typing import TYPE_CHECKING, Any

from stablepay.constants import BASE_CHAIN_ID, USDC_MIN_ABI, VAULT_MIN_ABI
from stablepay.errors import ValidationError
from stablepay.formatters import as_int, require_address
from stablepay.models import OnchainDeposit
from stablepay.rate_limiter import SlidingWindowRateLimiter
from stablepay.yield_model import lock_period_option

if TYPE_CHECKING:
    from web3 import Web3  # pragma: no cover

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 600_000
GAS_BUFFER_PERCENT = 120


class VaultClient:
    """Rate-limited access to the vault and USDC contracts.

    Every RPC round trip goes through `limiter`. Write operations are returned as unsigned
    transactions; signing happens in the user's wallet.
    """

    def __init__(
        self,
        w3: "Web3",
        vault_address: str,
        usdc_address: str,
        limiter: SlidingWindowRateLimiter,
        *,
        chain_id: int = BASE_CHAIN_ID,
    ) -> None:
        self.w3 = w3
        self.limiter = limiter
        self.chain_id = chain_id
        self.vault_address = w3.to_checksum_address(vault_address)
        self.usdc_address = w3.to_checksum_address(usdc_address)
        self.vault = w3.eth.contract(address=self.vault_address, abi=VAULT_MIN_ABI)
        self.usdc = w3.eth.contract(address=self.usdc_address, abi=USDC_MIN_ABI)

    def _checksum(self, address: str) -> str:
        return self.w3.to_checksum_address(require_address(address))

    def _call(self, fn: Any) -> Any:
        return self.limiter.execute(fn.call)

    # Reads

    def get_user_deposit(self, address: str) -> OnchainDeposit:
        amount, lock_until, yield_earned = self._call(self.vault.functions.getUserDeposit(self._checksum(address)))
        return OnchainDeposit(amount=as_int(amount), lock_until=as_int(lock_until), yield_earned=as_int(yield_earned))

    def get_yield_available(self, address: str) -> int:
        return as_int(self._call(self.vault.functions.getYieldAvailable(self._checksum(address))))

    def get_deposit_balance(self, address: str) -> int:
        return as_int(self._call(self.vault.functions.getDepositBalance(self._checksum(address))))

    def balance_of(self, address: str) -> int:
        """Vault share balance."""
        return as_int(self._call(self.vault.functions.balanceOf(self._checksum(address))))

    def usdc_balance(self, address: str) -> int:
        return as_int(self._call(self.usdc.functions.balanceOf(self._checksum(address))))

    def usdc_allowance(self, owner: str) -> int:
        """USDC the vault may pull from `owner`."""
        return as_int(self._call(self.usdc.functions.allowance(self._checksum(owner), self.vault_address)))

    def total_vault_balance(self) -> int:
        return as_int(self._call(self.vault.functions.getTotalVaultBalance()))

    def onchain_apy_for_lock_period(self, months: int) -> int:
        """The contract's own APY for a lock period, as returned (percent)."""
        return as_int(self._call(self.vault.functions.getAPYForLockPeriod(int(months))))

    # Logs and blocks

    def block_number(self) -> int:
        return as_int(self.limiter.execute(lambda: self.w3.eth.block_number))

    def block_timestamp(self, block_number: int) -> int:
        block = self.limiter.execute(self.w3.eth.get_block, int(block_number))
        return as_int(block["timestamp"])

    def get_logs(self, from_block: int, to_block: int, topics: list[str | None]) -> list[dict[str, Any]]:
        """Raw vault logs for [from_block, to_block] matching `topics`."""
        # provider.make_request skips web3 middleware; some RPCs want hex block numbers.
        filter_params = {
            "address": self.vault_address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": topics,
        }
        response = self.limiter.execute(self.w3.provider.make_request, "eth_getLogs", [filter_params])
        if "error" in response:
            raise RuntimeError(f"RPC error: {response['error']}")
        return response.get("result", [])

    # Unsigned transactions

    def _build(self, fn: Any, sender: str) -> dict[str, Any]:
        nonce = self.limiter.execute(self.w3.eth.get_transaction_count, sender)
        gas_price = self.limiter.execute(lambda: self.w3.eth.gas_price)
        tx = fn.build_transaction({"from": sender, "nonce": nonce, "chainId": self.chain_id, "gasPrice": gas_price})
        try:
            tx["gas"] = self.limiter.execute(self.w3.eth.estimate_gas, tx) * GAS_BUFFER_PERCENT // 100
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.warning("Gas estimation failed for %s, using %d: %s", sender, DEFAULT_GAS_LIMIT, ex)
            tx["gas"] = DEFAULT_GAS_LIMIT
        return dict(tx)

    def build_approve_tx(self, owner: str, amount: int) -> dict[str, Any]:
        """Approve the vault to pull `amount` USDC from `owner`."""
        if amount <= 0:
            raise ValidationError("Approve amount must be > 0")
        sender = self._checksum(owner)
        return self._build(self.usdc.functions.approve(self.vault_address, int(amount)), sender)

    def build_deposit_tx(self, owner: str, amount: int, lock_period_months) -> dict[str, Any]:
        """Deposit `amount` USDC into the vault under a lock period from the offered table."""
        option = lock_period_option(lock_period_months)
        if option.months != int(option.months):
            # depositWithLockPeriod takes whole months.
            raise ValidationError(f"{option.label} lock cannot be encoded as whole months on-chain")
        if amount <= 0:
            raise ValidationError("Deposit amount must be > 0")
        sender = self._checksum(owner)
        fn = self.vault.functions.depositWithLockPeriod(int(amount), sender, int(option.months))
        return self._build(fn, sender)

    def build_withdraw_tx(self, owner: str, amount: int) -> dict[str, Any]:
        if amount <= 0:
            raise ValidationError("Withdraw amount must be > 0")
        sender = self._checksum(owner)
        return self._build(self.vault.functions.withdraw(int(amount), sender, sender), sender)

    def build_claim_yield_tx(self, owner: str) -> dict[str, Any]:
        sender = self._checksum(owner)
        return self._build(self.vault.functions.claimYield(), sender)


def connect_web3(rpc_url: str, *, timeout: int) -> "Web3":
    """HTTP web3 connection to `rpc_url`."""
    try:
        from web3 import Web3
    except ImportError as ex:  # pragma: no cover
        raise RuntimeError("Missing dependency. Run: uv sync") from ex

    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
