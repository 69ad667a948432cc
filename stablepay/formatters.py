"""Formatting and conversion utilities."""

import re
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation

from stablepay.constants import USDC_UNIT
from stablepay.errors import InvalidAddress, ValidationError

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def as_int(value, *, default: int = 0) -> int:
    """Convert value to int, handling various types."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        v = value.strip()
        if v.startswith("0x"):
            return int(v, 16)
        return int(v)
    return int(value)


def normalize_hex_str(value) -> str:
    """Normalize bytes, HexBytes or a hex string to 0x-prefixed form."""
    if isinstance(value, (bytes, bytearray)):
        return f"0x{value.hex()}"
    if hasattr(value, "hex") and not isinstance(value, str):
        hex_str = value.hex()
        return hex_str if hex_str.startswith("0x") else f"0x{hex_str}"
    s = str(value).strip()
    if s.lower().startswith("0x"):
        return f"0x{s[2:]}"
    return f"0x{s}"


def is_valid_address(address) -> bool:
    """True for 0x-prefixed 40-hex-digit strings."""
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def require_address(address) -> str:
    """Return the address lowercased, or raise InvalidAddress."""
    if not is_valid_address(address):
        raise InvalidAddress(address)
    return address.lower()


def to_smallest_unit(amount) -> int:
    """Convert a human USDC amount ("12.5", 12.5) to smallest units, truncating sub-unit dust."""
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as ex:
        raise ValidationError(f"Invalid USDC amount: {amount!r}") from ex
    if not value.is_finite():
        raise ValidationError(f"Invalid USDC amount: {amount!r}")
    return int((value * USDC_UNIT).to_integral_value(rounding=ROUND_DOWN))


def format_usdc(value: int, *, decimals: int = 2) -> str:
    """Format a smallest-unit amount as USDC."""
    usdc = Decimal(value) / USDC_UNIT
    s = f"{usdc:,.{decimals}f}"
    return f"{s} USDC"


def format_apy(apy: float | None) -> str:
    """Format an APY percentage; None means unknown."""
    if apy is None:
        return "n/a"
    return f"{Decimal(str(apy)).normalize():f}%"


def iso_utc(epoch_seconds: float) -> str:
    """ISO-8601 timestamp in UTC with millisecond precision and a Z suffix."""
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def short_address(address: str) -> str:
    """0x1234...abcd"""
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"
