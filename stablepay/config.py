"""Runtime settings read from the environment (and a local .env file)."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from stablepay.constants import (
    CASHFREE_PRODUCTION_URL,
    CASHFREE_SANDBOX_URL,
    DEFAULT_BASE_RPC_URL,
    DEFAULT_DATABASE_URL,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_PORT,
    RPC_MAX_CALLS_PER_SECOND,
    STABLEPAY_VAULT_ADDRESS,
    SUREPASS_DEFAULT_URL,
    USDC_ADDRESS_BASE,
)
from stablepay.errors import ConfigurationError
from stablepay.formatters import as_int, is_valid_address


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    vault_address: str
    usdc_address: str
    database_url: str
    port: int
    rpc_max_rps: int
    http_timeout: int
    cashfree_client_id: str | None = None
    cashfree_client_secret: str | None = None
    cashfree_base_url: str = CASHFREE_PRODUCTION_URL
    surepass_token: str | None = None
    surepass_base_url: str = SUREPASS_DEFAULT_URL
    # USD -> INR rate for withdrawal quotes; None means the caller must send one.
    inr_exchange_rate: str | None = None
    # Bearer token for the early-access admin routes; they are disabled without one.
    admin_api_token: str | None = None


def _positive_int(name: str, raw: str | None, default: int) -> int:
    if raw in (None, ""):
        return default
    try:
        value = as_int(raw)
    except ValueError as ex:
        raise ConfigurationError(f"{name} must be a positive integer, got {raw!r}") from ex
    if value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {raw!r}")
    return value


def load_settings(env: dict[str, str] | None = None, *, dotenv: bool = True) -> Settings:
    """Build Settings from `env` (default: os.environ after loading .env)."""
    if env is None:
        if dotenv:
            load_dotenv()
        env = dict(os.environ)

    vault = env.get("VAULT_ADDRESS") or STABLEPAY_VAULT_ADDRESS
    usdc = env.get("USDC_ADDRESS") or USDC_ADDRESS_BASE
    for name, value in (("VAULT_ADDRESS", vault), ("USDC_ADDRESS", usdc)):
        if not is_valid_address(value):
            raise ConfigurationError(f"{name} is not a valid address: {value!r}")

    sandbox = (env.get("CASHFREE_ENV") or "").lower() == "sandbox"
    return Settings(
        rpc_url=env.get("STABLEPAY_RPC_URL") or env.get("BASE_RPC_URL") or DEFAULT_BASE_RPC_URL,
        vault_address=vault,
        usdc_address=usdc,
        database_url=env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
        port=_positive_int("PORT", env.get("PORT"), DEFAULT_PORT),
        rpc_max_rps=_positive_int("RPC_MAX_RPS", env.get("RPC_MAX_RPS"), RPC_MAX_CALLS_PER_SECOND),
        http_timeout=_positive_int("RPC_TIMEOUT", env.get("RPC_TIMEOUT"), DEFAULT_HTTP_TIMEOUT),
        cashfree_client_id=env.get("CASHFREE_CLIENT_ID") or None,
        cashfree_client_secret=env.get("CASHFREE_CLIENT_SECRET") or None,
        cashfree_base_url=CASHFREE_SANDBOX_URL if sandbox else CASHFREE_PRODUCTION_URL,
        surepass_token=env.get("SUREPASS_API_TOKEN") or None,
        surepass_base_url=env.get("SUREPASS_BASE_URL") or SUREPASS_DEFAULT_URL,
        inr_exchange_rate=env.get("INR_EXCHANGE_RATE") or None,
        admin_api_token=env.get("ADMIN_API_TOKEN") or None,
    )
