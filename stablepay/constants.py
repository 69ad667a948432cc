"""Constants and configuration for the StablePay backend."""

from decimal import Decimal

# Lock period (months) -> (APY percent, label, description). Ordered by months, APY strictly increasing.
LOCK_PERIOD_TABLE: tuple[tuple[float, float, str, str], ...] = (
    (0.5, 7, "15 Days", "Short-term liquidity with base returns"),
    (1, 8, "1 Month", "Higher than traditional savings accounts"),
    (2, 8.5, "2 Months", "Beat inflation with stable returns"),
    (3, 9, "3 Months", "Quarterly commitment with solid gains"),
    (4, 9.5, "4 Months", "Extended lock-in for enhanced yield"),
    (5, 10, "5 Months", "Mid-term strategy with growing returns"),
    (6, 10.5, "6 Months", "Semi-annual commitment, substantial APY"),
    (7, 11, "7 Months", "Extended commitment with premium rates"),
    (8, 11.5, "8 Months", "Long-term focus with excellent returns"),
    (9, 12, "9 Months", "Premium lock-in with superior yields"),
    (10, 12.5, "10 Months", "Extended tenure with exceptional rates"),
    (11, 13, "11 Months", "Near-annual commitment, premium APY"),
    (12, 14, "12 Months", "Maximum tenure with highest returns"),
)

# Unlock-date estimates use 30-day months; the 0.5 option is exactly 15 days.
DAYS_PER_LOCK_MONTH = 30

HOURS_PER_YEAR = 365 * 24
SECONDS_PER_HOUR = 3600
MS_PER_DAY = 86_400_000

USDC_DECIMALS = 6
USDC_UNIT = Decimal(10**USDC_DECIMALS)

# Refresh cadence: on-chain state is polled often, the local estimate hourly.
ONCHAIN_REFRESH_SECONDS = 30
YIELD_ESTIMATE_REFRESH_SECONDS = 3600

# Outbound RPC ceiling (the provider allows 50 rps).
RPC_MAX_CALLS_PER_SECOND = 45
RPC_WINDOW_SECONDS = 1.0
RPC_BATCH_SIZE = 10
RPC_BATCH_DELAY_SECONDS = 0.1

# KYC step weights; they do not need to sum to 100, scores are normalized.
KYC_STEP_WEIGHTS: dict[str, int] = {
    "digilocker": 30,
    "pan": 25,
    "face_liveness": 20,
    "bank": 15,
    "upi": 10,
}
KYC_VERIFIED_THRESHOLDS: dict[str, int] = {
    "basic": 60,
    "enhanced": 75,
    "premium": 90,
}
KYC_REJECTION_FLOOR = 40

# Base mainnet
BASE_CHAIN_ID = 8453
DEFAULT_BASE_RPC_URL = "https://mainnet.base.org"
USDC_ADDRESS_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
STABLEPAY_VAULT_ADDRESS = "0x4bc7a35d6e09d102087ed84445137f04540a8790"

# Minimal ABI for the StablePay vault - only the functions this backend reads or encodes.
VAULT_MIN_ABI: list[dict] = [
    {
        "type": "function",
        "name": "getUserDeposit",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "lockUntil", "type": "uint256"},
            {"name": "yieldEarned", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "getYieldAvailable",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getDepositBalance",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getTotalVaultBalance",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getAPYForLockPeriod",
        "stateMutability": "view",
        "inputs": [{"name": "lockPeriodMonths", "type": "uint256"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "depositWithLockPeriod",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "assets", "type": "uint256"},
            {"name": "receiver", "type": "address"},
            {"name": "lockPeriodMonths", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "withdraw",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "assets", "type": "uint256"},
            {"name": "receiver", "type": "address"},
            {"name": "owner", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "claimYield",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# Vault events scanned for wallet history. Indexed arguments are in the topics, the rest in data.
VAULT_EVENT_SIGNATURES: dict[str, str] = {
    "deposit": "Deposit(address,address,uint256,uint256,uint256)",  # caller, owner | assets, shares, lockUntil
    "withdrawal": "Withdraw(address,address,address,uint256,uint256)",  # caller, receiver, owner | assets, shares
    "yield_claim": "YieldClaimed(address,uint256)",  # user | amount
    "transfer": "Transfer(address,address,uint256)",  # from, to | value
}
ZERO_ADDRESS = "0x" + "0" * 40

# Wallet history covers the most recent blocks only, fetched in chunks.
WALLET_HISTORY_BLOCKS = 10_000
LOG_CHUNK_BLOCKS = 2_000

# Minimal ERC-20 ABI for USDC.
USDC_MIN_ABI: list[dict] = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

# KYC vendors
CASHFREE_PRODUCTION_URL = "https://api.cashfree.com/verification"
CASHFREE_SANDBOX_URL = "https://sandbox.cashfree.com/verification"
CASHFREE_API_VERSION = "2023-08-01"
SUREPASS_DEFAULT_URL = "https://kyc-api.surepass.io"
KYC_CONSENT_PURPOSE = "Identity verification for financial services"

DEFAULT_HTTP_TIMEOUT = 30
DEFAULT_PORT = 5000
DEFAULT_DATABASE_URL = "sqlite:///stablepay.db"
