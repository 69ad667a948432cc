"""Data models for the StablePay backend."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class LockPeriodOption:
    """One row of the lock-period table."""

    months: float
    apy: float  # percent, e.g. 10.5
    label: str
    description: str


@dataclass(frozen=True)
class Deposit:
    """A deposit as recorded by this backend when the user submits it.

    `apy_snapshot` is captured when the deposit is recorded and is never re-read from the
    lock-period table afterwards; the table may change but existing deposits keep their rate.
    """

    address: str
    principal: int  # smallest USDC unit (6 decimals)
    deposit_timestamp: int  # epoch seconds
    lock_period_months: float
    apy_snapshot: float
    lock_until: int  # epoch seconds
    tx_hash: str | None = None


@dataclass(frozen=True)
class YieldAccrualState:
    """Local yield estimate cache. Not authoritative: the vault contract is."""

    last_computed_at: float  # epoch seconds
    accrued_amount: int


@dataclass(frozen=True)
class LockStatus:
    """Lock state derived from the lock-until timestamp."""

    is_locked: bool
    days_remaining: int
    unlock_date: str | None  # ISO-8601 UTC, only when locked


@dataclass(frozen=True)
class OnchainDeposit:
    """Result of the vault's `getUserDeposit(address)`."""

    amount: int
    lock_until: int
    yield_earned: int


@dataclass(frozen=True)
class VaultPosition:
    """A user's vault position, either read on-chain or rebuilt from the recorded deposit."""

    address: str
    balance: int
    deposit: OnchainDeposit | None
    yield_available: int
    # "onchain" when every read succeeded, "estimated" when any figure came from local records.
    source: str
    errors: tuple[str, ...] = ()

    @property
    def is_estimated(self) -> bool:
        return self.source != "onchain"


@dataclass(frozen=True)
class StablePayMetrics:
    """Response of the metrics endpoint."""

    user_balance: int
    yield_earned: int  # onchain_yield + estimated_yield
    onchain_yield: int
    estimated_yield: int
    source: str
    lock_status: LockStatus
    apy: float | None
    last_updated: str
    hours_elapsed: int
    contract_address: str

    def to_json(self) -> dict[str, Any]:
        """Serialize with string amounts so no client loses precision."""
        return {
            "userBalance": str(self.user_balance),
            "yieldEarned": str(self.yield_earned),
            "onchainYield": str(self.onchain_yield),
            "estimatedYield": str(self.estimated_yield),
            "source": self.source,
            "lockStatus": {
                "isLocked": self.lock_status.is_locked,
                "daysRemaining": self.lock_status.days_remaining,
                "unlockDate": self.lock_status.unlock_date,
            },
            "apy": self.apy,
            "lastUpdated": self.last_updated,
            "hoursElapsed": self.hours_elapsed,
            "contractAddress": self.contract_address,
        }


@dataclass(frozen=True)
class KycStepResult:
    """Outcome of one verification step after trying every configured provider."""

    step: str
    weight: int
    success: bool
    provider: str | None = None  # the provider that succeeded
    data: dict[str, Any] = field(default_factory=dict)
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class KycRequest:
    """Input to the comprehensive KYC flow."""

    user_address: str
    full_name: str
    email: str
    verification_level: str
    phone: str | None = None
    pan_number: str | None = None
    bank_account: str | None = None
    ifsc_code: str | None = None
    upi_id: str | None = None


@dataclass(frozen=True)
class KycOutcome:
    """Aggregated KYC result."""

    verification_id: str
    level: str
    status: str  # pending | verified | rejected
    confidence: int
    steps: tuple[KycStepResult, ...]

    @property
    def errors(self) -> list[str]:
        return [e for s in self.steps for e in s.errors if not s.success]

    def to_json(self) -> dict[str, Any]:
        return {
            "success": True,
            "verificationId": self.verification_id,
            "kycLevel": self.level,
            "status": self.status,
            "confidenceScore": self.confidence,
            "steps": [
                {
                    "step": s.step,
                    "weight": s.weight,
                    "success": s.success,
                    "provider": s.provider,
                    "errors": list(s.errors),
                }
                for s in self.steps
            ],
            "message": f"KYC {self.status} with {self.confidence}% confidence",
        }


@dataclass(frozen=True)
class VaultEvent:
    """One vault log involving a wallet."""

    kind: str  # deposit | withdrawal | yield_claim | transfer_in | transfer_out
    tx_hash: str
    block_number: int
    transaction_index: int
    log_index: int
    amount: int  # USDC smallest unit for deposits, withdrawals and claims; vault shares for transfers
    shares: int | None = None
    lock_until: int | None = None
    counterparty: str | None = None  # receiver of a withdrawal, other side of a transfer
    timestamp: int | None = None  # block time, epoch seconds

    @property
    def is_transfer(self) -> bool:
        return self.kind in ("transfer_in", "transfer_out")


@dataclass(frozen=True)
class WalletHistory:
    """Vault events of one wallet over a block range, newest first."""

    address: str
    from_block: int
    to_block: int
    events: tuple[VaultEvent, ...]
    errors: tuple[str, ...] = ()

    def _of(self, kind: str) -> list[VaultEvent]:
        return [e for e in self.events if e.kind == kind]

    def summary(self) -> dict[str, Any]:
        deposits = self._of("deposit")
        withdrawals = self._of("withdrawal")
        claims = self._of("yield_claim")
        return {
            "totalDeposits": len(deposits),
            "totalWithdrawals": len(withdrawals),
            "totalYieldClaims": len(claims),
            "totalTransfers": sum(1 for e in self.events if e.is_transfer),
            "totalDepositAmount": str(sum(e.amount for e in deposits)),
            "totalWithdrawalAmount": str(sum(e.amount for e in withdrawals)),
            "totalYieldClaimed": str(sum(e.amount for e in claims)),
        }
