"""Validation logic for API requests and on-chain reads."""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from stablepay.constants import KYC_VERIFIED_THRESHOLDS
from stablepay.errors import InvalidVerificationLevel, ValidationError
from stablepay.formatters import require_address, to_smallest_unit
from stablepay.models import KycRequest, VaultPosition

_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
_PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
_IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
_UPI_RE = re.compile(r"^[\w.\-]{2,256}@[a-zA-Z]{2,64}$")

# Anything locked further out than this is treated as a bad read (12-month max lock plus slack).
MAX_LOCK_HORIZON_SECONDS = 400 * 24 * 3600


def validate_vault_position(position: VaultPosition, *, now: float, warn_only: bool = True) -> list[str]:
    """
    Sanity-check a vault position read.

    Returns list of warnings. If warn_only=False, raises ValueError on the first issue.
    """
    issues: list[str] = []

    def flag(msg: str) -> None:
        issues.append(msg)
        if not warn_only:
            raise ValueError(msg)

    for name, value in (("balance", position.balance), ("yieldAvailable", position.yield_available)):
        if value < 0:
            flag(f"{position.address}: negative {name}: {value}")

    deposit = position.deposit
    if deposit is not None:
        if deposit.amount < 0 or deposit.yield_earned < 0:
            flag(f"{position.address}: negative deposit fields: {deposit}")
        if deposit.lock_until > now + MAX_LOCK_HORIZON_SECONDS:
            flag(f"{position.address}: lockUntil {deposit.lock_until} is beyond the longest lock period")
        if deposit.amount > 0 and position.balance == 0 and not position.is_estimated:
            flag(f"{position.address}: deposit of {deposit.amount} but zero vault balance")

    return issues


def require_fields(body: dict[str, Any], *names: str) -> None:
    missing = [n for n in names if body.get(n) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def validate_tx_hash(tx_hash: Any) -> str:
    if not isinstance(tx_hash, str) or not _TX_HASH_RE.match(tx_hash):
        raise ValidationError(f"Invalid transaction hash: {tx_hash!r}")
    return tx_hash.lower()


def validate_verification_level(level: Any) -> str:
    if level not in KYC_VERIFIED_THRESHOLDS:
        raise InvalidVerificationLevel(level)
    return level


def parse_kyc_request(body: dict[str, Any]) -> KycRequest:
    """Build a KycRequest from a JSON body (camelCase keys, as the web client sends them)."""
    require_fields(body, "userAddress", "fullName", "email")
    address = require_address(body["userAddress"])
    level = validate_verification_level(body.get("verificationLevel"))

    pan = body.get("panNumber")
    if pan:
        pan = str(pan).strip().upper()
        if not _PAN_RE.match(pan):
            raise ValidationError("Invalid PAN format")
    ifsc = body.get("ifscCode")
    if ifsc:
        ifsc = str(ifsc).strip().upper()
        if not _IFSC_RE.match(ifsc):
            raise ValidationError("Invalid IFSC code")
    upi = body.get("upiId")
    if upi:
        upi = str(upi).strip()
        if not _UPI_RE.match(upi):
            raise ValidationError("Invalid UPI id")

    return KycRequest(
        user_address=address,
        full_name=str(body["fullName"]).strip(),
        email=str(body["email"]).strip(),
        verification_level=level,
        phone=body.get("phone"),
        pan_number=pan or None,
        bank_account=body.get("bankAccount") or None,
        ifsc_code=ifsc or None,
        upi_id=upi or None,
    )


def parse_usdc_amount(body: dict[str, Any], *, field: str = "amount") -> int:
    """Parse a positive USDC amount given in whole units ("125.50")."""
    require_fields(body, field)
    amount = to_smallest_unit(body[field])
    if amount <= 0:
        raise ValidationError(f"{field} must be > 0")
    return amount


def parse_decimal(value: Any, *, field: str) -> Decimal:
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as ex:
        raise ValidationError(f"Invalid {field}: {value!r}") from ex
    if not d.is_finite() or d < 0:
        raise ValidationError(f"Invalid {field}: {value!r}")
    return d


def validate_payout_details(body: dict[str, Any]) -> str:
    """Check the bank or UPI payout details of an INR withdrawal; returns the verification type."""
    verification_type = body.get("verificationType") or "bank"
    if verification_type == "bank":
        require_fields(body, "bankAccount", "ifscCode")
        if not _IFSC_RE.match(str(body["ifscCode"]).strip().upper()):
            raise ValidationError("Invalid IFSC code")
    elif verification_type == "upi":
        require_fields(body, "upiId")
        if not _UPI_RE.match(str(body["upiId"]).strip()):
            raise ValidationError("Invalid UPI id")
    else:
        raise ValidationError(f"Invalid verificationType: {verification_type!r} (expected bank or upi)")
    return verification_type
