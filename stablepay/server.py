"""JSON HTTP API served with the standard library's threaded HTTP server."""

import hashlib
import hmac
import json
import logging
import re
import secrets
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from stablepay.cache import Clock, system_clock
from stablepay.compliance import compliance_requirements, usdc_to_inr
from stablepay.contracts import VaultClient
from stablepay.errors import StablePayError, ValidationError
from stablepay.formatters import as_int, iso_utc, require_address
from stablepay.history import scan_wallet_events
from stablepay.kyc import STATUS_VERIFIED, KycProvider, perform_comprehensive_kyc
from stablepay.metrics import MetricsService
from stablepay.models import Deposit, LockPeriodOption, VaultEvent
from stablepay.storage import EarlyAccessSubmission, Storage, TransactionRecord, UserRecord, WithdrawalRequestRecord
from stablepay.validation import (
    parse_decimal,
    parse_kyc_request,
    parse_usdc_amount,
    require_fields,
    validate_payout_details,
    validate_tx_hash,
)
from stablepay.yield_model import lock_period_option, lock_period_options, lock_status, parse_lock_period

logger = logging.getLogger(__name__)

# Travel-rule originator data is kept for one year after completion.
TRAVEL_RULE_RETENTION = timedelta(days=365)
EARLY_ACCESS_FORM_TYPES = ("savings", "investment")
EARLY_ACCESS_MAX_PAGE_SIZE = 100
# Transactions the wallet broadcasts itself; deposits and INR withdrawals are recorded by their own routes.
CLIENT_TX_TYPES = ("approve", "withdrawal", "yield_claim")
TX_STATUSES = ("pending", "confirmed", "failed")
PASSWORD_MIN_LENGTH = 8
PASSWORD_HASH_ITERATIONS = 600_000


class NotFound(Exception):
    pass


class AccessDenied(Exception):
    """Admin route called without a valid token (401), or with admin routes disabled (403)."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        super().__init__(message)


def _option_json(o: LockPeriodOption) -> dict[str, Any]:
    return {"months": o.months, "apy": o.apy, "label": o.label, "description": o.description}


def _deposit_json(d: Deposit) -> dict[str, Any]:
    return {
        "userAddress": d.address,
        "principal": str(d.principal),
        "depositTimestamp": d.deposit_timestamp,
        "lockPeriodMonths": d.lock_period_months,
        "apy": d.apy_snapshot,
        "lockUntil": d.lock_until,
        "txHash": d.tx_hash,
    }


def _sha256(value: Any) -> str:
    return hashlib.sha256(value.encode() if isinstance(value, str) else json.dumps(value).encode()).hexdigest()


def _hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PASSWORD_HASH_ITERATIONS)
    return f"pbkdf2_sha256${PASSWORD_HASH_ITERATIONS}${salt.hex()}${digest.hex()}"


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return iso_utc((dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)).timestamp())


def _user_json(u: UserRecord) -> dict[str, Any]:
    return {
        "id": u.id,
        "username": u.username,
        "walletAddress": u.wallet_address,
        "email": u.email,
        "fullName": u.full_name,
        "kycStatus": u.kyc_status,
        "createdAt": _iso(u.created_at),
        "updatedAt": _iso(u.updated_at),
    }


def _transaction_json(t: TransactionRecord) -> dict[str, Any]:
    return {
        "id": t.id,
        "txHash": t.tx_hash or None,
        "type": t.type,
        "amount": str(t.amount),
        "status": t.status,
        "blockNumber": t.block_number,
        "createdAt": _iso(t.created_at),
    }


def _event_json(address: str, e: VaultEvent) -> dict[str, Any]:
    body: dict[str, Any] = {
        "id": f"{e.kind}-{e.tx_hash}-{e.log_index}",
        "type": e.kind,
        "address": address,
        "amount": str(e.amount),
        "timestamp": iso_utc(e.timestamp) if e.timestamp is not None else None,
        "txHash": e.tx_hash,
        "blockNumber": e.block_number,
        "status": "completed",
    }
    if e.shares is not None:
        body["shares"] = str(e.shares)
    if e.lock_until is not None:
        body["lockUntil"] = e.lock_until
    if e.kind == "withdrawal":
        body["receiver"] = e.counterparty
    elif e.is_transfer:
        body["from"], body["to"] = (address, e.counterparty) if e.kind == "transfer_out" else (e.counterparty, address)
    return body


def _submission_json(s: EarlyAccessSubmission) -> dict[str, Any]:
    extra = json.loads(s.payload or "{}")
    return {
        "id": s.id,
        "fullName": s.full_name,
        "email": s.email,
        "phoneNumber": s.phone_number,
        "formType": s.form_type,
        "walletAddress": s.wallet_address,
        "calculations": extra.get("calculations"),
        "submittedAt": _iso(s.created_at),
    }


def _query_int(query: dict[str, str], name: str, default: int, *, low: int, high: int | None = None) -> int:
    raw = query.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError as ex:
        raise ValidationError(f"Invalid {name}: {raw!r}") from ex
    if value < low or (high is not None and value > high):
        raise ValidationError(f"{name} out of range: {value}")
    return value


class StablePayApp:
    """Request routing and handlers, independent of the transport."""

    def __init__(
        self,
        *,
        client: VaultClient,
        storage: Storage,
        metrics: MetricsService,
        providers: list[KycProvider],
        clock: Clock = system_clock,
        inr_exchange_rate: str | None = None,
        admin_token: str | None = None,
    ) -> None:
        self.client = client
        self.storage = storage
        self.metrics = metrics
        self.providers = providers
        self.clock = clock
        self.inr_exchange_rate = inr_exchange_rate
        self.admin_token = admin_token
        # Handlers marked "query" also get the parsed query string; "admin" routes need the bearer token.
        self.routes: list[tuple[str, re.Pattern, Callable[..., tuple[int, Any]], frozenset[str]]] = []
        for method, pattern, handler, *flags in (
            ("GET", r"/health", self.health),
            ("GET", r"/api/lock-periods", self.get_lock_periods),
            ("GET", r"/api/lock-periods/(?P<months>[^/]+)", self.get_lock_period),
            ("GET", r"/api/stablepay/metrics/(?P<address>[^/]+)", self.get_metrics),
            ("GET", r"/api/vault/(?P<address>[^/]+)/deposit", self.get_vault_deposit),
            ("GET", r"/api/vault/(?P<address>[^/]+)/balances", self.get_vault_balances),
            ("GET", r"/api/pool/data", self.get_pool_data),
            ("POST", r"/api/deposits", self.post_deposit),
            ("GET", r"/api/deposits/(?P<address>[^/]+)", self.get_deposits),
            ("POST", r"/api/vault/tx/(?P<kind>approve|deposit|withdraw|claim)", self.post_vault_tx),
            ("POST", r"/api/kyc/comprehensive", self.post_kyc),
            ("GET", r"/api/kyc/status/(?P<address>[^/]+)", self.get_kyc_status),
            ("POST", r"/api/withdraw/inr", self.post_inr_withdrawal),
            ("GET", r"/api/travel-rule/wallet-status/(?P<address>[^/]+)", self.get_wallet_status),
            ("POST", r"/api/travel-rule/wallet-processed", self.post_wallet_processed),
            ("POST", r"/api/travel-rule/originator", self.post_originator),
            ("GET", r"/api/travel-rule/status/(?P<address>[^/]+)", self.get_travel_rule_status),
            ("POST", r"/api/travel-rule/compliance-requirements", self.post_compliance_requirements),
            ("GET", r"/api/wallet/(?P<address>[^/]+)/transactions", self.get_wallet_transactions),
            ("POST", r"/api/transactions", self.post_transaction),
            ("GET", r"/api/transactions/(?P<address>[^/]+)", self.get_transactions),
            ("POST", r"/api/users", self.post_user),
            ("GET", r"/api/users/(?P<user_id>[^/]+)", self.get_user),
            ("POST", r"/api/early-access/submit", self.post_early_access),
            ("GET", r"/api/early-access/submissions", self.get_early_access_submissions, "query", "admin"),
            ("GET", r"/api/early-access/stats", self.get_early_access_stats, "admin"),
        ):
            self.routes.append((method, re.compile(f"^{pattern}/?$"), handler, frozenset(flags)))

    def dispatch(
        self, method: str, path: str, body: dict[str, Any] | None = None, headers: Mapping[str, str] | None = None
    ) -> tuple[int, Any]:
        """Route a request; returns (status, JSON-serialisable payload)."""
        url = urlparse(path)
        path = url.path
        try:
            for route_method, pattern, handler, flags in self.routes:
                m = pattern.match(path)
                if m is None or route_method != method:
                    continue
                kwargs: dict[str, Any] = m.groupdict()
                if "admin" in flags:
                    self._check_admin(headers or {})
                if "query" in flags:
                    kwargs["query"] = {k: v[-1] for k, v in parse_qs(url.query).items()}
                if method == "POST":
                    if not isinstance(body, dict):
                        raise ValidationError("Request body must be a JSON object")
                    return handler(body, **kwargs)
                return handler(**kwargs)
            raise NotFound(path)
        except NotFound:
            return 404, {"error": f"Not found: {method} {path}"}
        except AccessDenied as ex:
            return ex.status, {"error": str(ex)}
        except StablePayError as ex:
            return 400, {"error": str(ex)}
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.exception("Unhandled error for %s %s", method, path)
            return 500, {"error": "Internal server error", "details": str(ex)}

    def _check_admin(self, headers: Mapping[str, str]) -> None:
        if not self.admin_token:
            raise AccessDenied(403, "Admin API is disabled")
        scheme, _, token = (headers.get("Authorization") or "").partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip().encode(), self.admin_token.encode()):
            raise AccessDenied(401, "Invalid or missing admin token")

    def now_iso(self) -> str:
        return iso_utc(self.clock())

    # Lock periods and metrics

    def health(self) -> tuple[int, Any]:
        return 200, {"status": "healthy", "timestamp": self.now_iso()}

    def get_lock_periods(self) -> tuple[int, Any]:
        return 200, {"lockPeriods": [_option_json(o) for o in lock_period_options()]}

    def get_lock_period(self, months: str) -> tuple[int, Any]:
        return 200, _option_json(lock_period_option(parse_lock_period(months)))

    def get_metrics(self, address: str) -> tuple[int, Any]:
        return 200, self.metrics.get_metrics(address).to_json()

    def get_vault_deposit(self, address: str) -> tuple[int, Any]:
        position = self.metrics.position(address)
        deposit = None
        if position.deposit is not None:
            status = lock_status(position.deposit.lock_until, self.clock() * 1000)
            deposit = {
                "amount": str(position.deposit.amount),
                "lockUntil": position.deposit.lock_until,
                "yieldEarned": str(position.deposit.yield_earned),
                "isLocked": status.is_locked,
                "daysRemaining": status.days_remaining,
                "unlockDate": status.unlock_date,
            }
        return 200, {
            "address": position.address,
            "balance": str(position.balance),
            "deposit": deposit,
            "yieldAvailable": str(position.yield_available),
            "source": position.source,
            "errors": list(position.errors),
            "lastUpdated": self.now_iso(),
        }

    def get_vault_balances(self, address: str) -> tuple[int, Any]:
        key = require_address(address)
        return 200, {
            "address": key,
            "usdcBalance": str(self.client.usdc_balance(key)),
            "usdcAllowance": str(self.client.usdc_allowance(key)),
            "depositBalance": str(self.client.get_deposit_balance(key)),
            "lastUpdated": self.now_iso(),
        }

    def get_pool_data(self) -> tuple[int, Any]:
        return 200, {
            "contractAddress": self.client.vault_address,
            "totalVaultBalance": str(self.client.total_vault_balance()),
            "lockPeriods": [_option_json(o) for o in lock_period_options()],
            "lastUpdated": self.now_iso(),
        }

    # Deposits and transactions

    def post_deposit(self, body: dict[str, Any]) -> tuple[int, Any]:
        require_fields(body, "userAddress", "amount", "lockPeriodMonths")
        address = require_address(body["userAddress"])
        months = parse_lock_period(body["lockPeriodMonths"])
        principal = parse_usdc_amount(body)
        tx_hash = validate_tx_hash(body["txHash"]) if body.get("txHash") else None
        ts = self._deposit_timestamp(body.get("depositTimestamp"))
        deposit = self.storage.record_deposit(address, principal, months, deposit_timestamp=ts, tx_hash=tx_hash)
        self.metrics.invalidate(address)
        return 201, _deposit_json(deposit)

    def _deposit_timestamp(self, value: Any) -> int:
        if value in (None, ""):
            return int(self.clock())
        if isinstance(value, bool):
            raise ValidationError(f"Invalid depositTimestamp: {value!r}")
        try:
            ts = as_int(value)
        except (TypeError, ValueError, OverflowError) as ex:
            raise ValidationError(f"Invalid depositTimestamp: {value!r}") from ex
        if ts < 0:
            raise ValidationError(f"depositTimestamp must be >= 0, got {ts}")
        return ts

    def get_deposits(self, address: str) -> tuple[int, Any]:
        deposits = self.storage.deposits_for(address)
        return 200, {"address": require_address(address), "deposits": [_deposit_json(d) for d in deposits]}

    def post_vault_tx(self, body: dict[str, Any], kind: str) -> tuple[int, Any]:
        require_fields(body, "userAddress")
        owner = require_address(body["userAddress"])
        if kind == "approve":
            tx = self.client.build_approve_tx(owner, parse_usdc_amount(body))
        elif kind == "deposit":
            require_fields(body, "lockPeriodMonths")
            months = parse_lock_period(body["lockPeriodMonths"])
            tx = self.client.build_deposit_tx(owner, parse_usdc_amount(body), months)
        elif kind == "withdraw":
            tx = self.client.build_withdraw_tx(owner, parse_usdc_amount(body))
        else:
            tx = self.client.build_claim_yield_tx(owner)
        return 200, {"kind": kind, "transaction": {k: v if isinstance(v, (int, str)) else str(v) for k, v in tx.items()}}

    def get_wallet_transactions(self, address: str) -> tuple[int, Any]:
        history = scan_wallet_events(self.client, address)
        return 200, {
            "address": history.address,
            "transactions": [_event_json(history.address, e) for e in history.events],
            "summary": history.summary(),
            "fromBlock": history.from_block,
            "toBlock": history.to_block,
            "errors": list(history.errors),
            "lastUpdated": self.now_iso(),
        }

    def post_transaction(self, body: dict[str, Any]) -> tuple[int, Any]:
        """Record a transaction the wallet broadcast, so it shows up before it is indexed."""
        require_fields(body, "userAddress", "txHash", "type")
        address = require_address(body["userAddress"])
        tx_hash = validate_tx_hash(body["txHash"])
        tx_type = body["type"]
        if tx_type not in CLIENT_TX_TYPES:
            raise ValidationError(f"type must be one of {', '.join(CLIENT_TX_TYPES)}")
        status = body.get("status") or "pending"
        if status not in TX_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(TX_STATUSES)}")
        # Claims are recorded before the claimed amount is known.
        amount = 0 if tx_type == "yield_claim" and body.get("amount") in (None, "") else parse_usdc_amount(body)
        record = self.storage.record_transaction(address, tx_hash, tx_type, amount, status=status)
        if tx_type != "approve":
            self.metrics.invalidate(address)
        return 201, _transaction_json(record)

    def get_transactions(self, address: str) -> tuple[int, Any]:
        records = self.storage.transactions_for(address)
        return 200, {"address": require_address(address), "transactions": [_transaction_json(t) for t in records]}

    # Users

    def post_user(self, body: dict[str, Any]) -> tuple[int, Any]:
        require_fields(body, "username", "password")
        username = str(body["username"]).strip()
        password = body["password"]
        if not isinstance(password, str) or len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(f"password must be at least {PASSWORD_MIN_LENGTH} characters")
        email = body.get("email") or None
        if email is not None and "@" not in str(email):
            raise ValidationError("Invalid email address")
        wallet = require_address(body["walletAddress"]) if body.get("walletAddress") else None
        if self.storage.get_user_by_username(username) is not None:
            raise ValidationError(f"Username already taken: {username!r}")
        user = self.storage.create_user(
            username,
            wallet,
            email=email,
            full_name=body.get("fullName") or None,
            password_hash=_hash_password(password),
        )
        return 201, _user_json(user)

    def get_user(self, user_id: str) -> tuple[int, Any]:
        try:
            key = int(user_id)
        except ValueError as ex:
            raise ValidationError("Invalid user id") from ex
        user = self.storage.get_user(key)
        if user is None:
            return 404, {"error": "User not found"}
        return 200, _user_json(user)

    # KYC

    def post_kyc(self, body: dict[str, Any]) -> tuple[int, Any]:
        request = parse_kyc_request(body)
        outcome = perform_comprehensive_kyc(request, self.providers)
        self.storage.save_kyc(request, outcome)
        return 200, outcome.to_json()

    def get_kyc_status(self, address: str) -> tuple[int, Any]:
        key = require_address(address)
        record = self.storage.latest_kyc(key)
        if record is None:
            return 200, {
                "userAddress": key,
                "status": "not_started",
                "verificationLevel": None,
                "completedSteps": [],
                "confidenceScore": 0,
                "lastUpdated": None,
                "canWithdraw": False,
            }
        steps = json.loads(record.verification_data or "[]")
        return 200, {
            "userAddress": key,
            "verificationId": record.verification_id,
            "status": record.status,
            "verificationLevel": record.verification_level,
            "completedSteps": [s["step"] for s in steps if s.get("success")],
            "confidenceScore": record.confidence_score,
            "lastUpdated": iso_utc(record.updated_at.replace(tzinfo=timezone.utc).timestamp()),
            "canWithdraw": record.status == STATUS_VERIFIED,
        }

    # INR withdrawals

    def post_inr_withdrawal(self, body: dict[str, Any]) -> tuple[int, Any]:
        require_fields(body, "userAddress", "amount", "txHash")
        address = require_address(body["userAddress"])
        usdc_amount = parse_usdc_amount(body)
        tx_hash = validate_tx_hash(body["txHash"])
        verification_type = validate_payout_details(body)

        kyc = self.storage.latest_kyc(address)
        if kyc is None or kyc.status != STATUS_VERIFIED:
            raise ValidationError("KYC verification is required before INR withdrawals")

        rate_value = body.get("exchangeRate") or self.inr_exchange_rate
        if rate_value in (None, ""):
            raise ValidationError("No USD/INR exchange rate available; pass exchangeRate")
        rate = parse_decimal(rate_value, field="exchangeRate")
        inr = usdc_to_inr(usdc_amount, rate)

        record = self.storage.create_withdrawal_request(
            WithdrawalRequestRecord(
                user_address=address,
                usdc_amount=usdc_amount,
                inr_amount=str(inr),
                tx_hash=tx_hash,
                verification_type=verification_type,
                bank_account=body.get("bankAccount"),
                ifsc_code=(body.get("ifscCode") or "").upper() or None,
                upi_id=body.get("upiId"),
            )
        )
        logger.info("INR withdrawal %s for %s: %s INR at %s", record.id, address, inr, rate)
        return 200, {
            "success": True,
            "withdrawalId": record.id,
            "usdcAmount": str(usdc_amount),
            "inrAmount": str(inr),
            "exchangeRate": str(rate),
            "status": record.status,
        }

    # Travel rule

    def get_wallet_status(self, address: str) -> tuple[int, Any]:
        record = self.storage.get_travel_rule(address)
        return 200, {
            "isNewWallet": record is None,
            "hasCompliance": record is not None and record.status == "completed",
        }

    def post_wallet_processed(self, body: dict[str, Any]) -> tuple[int, Any]:
        require_fields(body, "userAddress")
        address = require_address(body["userAddress"])
        existing = self.storage.get_travel_rule(address)
        if existing is None or existing.status != "completed":
            self.storage.upsert_travel_rule(address, status="skipped" if body.get("skipped") else "pending")
        return 200, {"success": True}

    def post_originator(self, body: dict[str, Any]) -> tuple[int, Any]:
        require_fields(body, "userAddress", "originatorInfo")
        address = require_address(body["userAddress"])
        info = body["originatorInfo"]
        if not isinstance(info, dict):
            raise ValidationError("originatorInfo must be an object")
        amount = parse_decimal(body.get("transactionAmount") or "0", field="transactionAmount")
        risk = body.get("riskAssessment") or {}
        if not isinstance(risk, dict):
            raise ValidationError("riskAssessment must be an object")
        requirements = compliance_requirements(amount, high_risk=risk.get("riskCategory") == "high")

        address_info = info.get("address") or {}
        # Only hashes and completeness flags are stored, never the personal data itself.
        stored = {
            "fullNameHash": _sha256(info.get("fullName") or ""),
            "addressHash": _sha256(address_info),
            "verificationLevel": info.get("idType") or "basic",
            "dataCompleteness": {
                "hasPersonalInfo": bool(info.get("fullName") and info.get("dateOfBirth")),
                "hasAddressInfo": bool(
                    isinstance(address_info, dict) and address_info.get("street") and address_info.get("city")
                ),
                "hasFinancialInfo": bool(info.get("accountNumber") and info.get("bankName")),
                "hasSourceOfFunds": bool(info.get("sourceOfFunds")),
                "hasPurposeOfTransaction": bool(info.get("purposeOfTransaction")),
            },
        }
        completed_at = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        self.storage.upsert_travel_rule(
            address,
            status="completed",
            transaction_amount=str(amount),
            compliance_level=requirements.level,
            originator_info=json.dumps(stored),
            risk_category=requirements.risk_category,
            additional_verification_required=requirements.additional_verification_required,
            completed_at=completed_at,
        )
        return 200, {
            "success": True,
            "complianceLevel": requirements.level,
            "additionalVerificationRequired": requirements.additional_verification_required,
            "expiryDate": iso_utc((completed_at + TRAVEL_RULE_RETENTION).timestamp()),
        }

    def get_travel_rule_status(self, address: str) -> tuple[int, Any]:
        record = self.storage.get_travel_rule(address)
        if record is None:
            return 200, {
                "isCompliant": False,
                "status": "pending",
                "complianceLevel": "basic",
                "lastUpdated": None,
                "isExpired": False,
                "additionalVerificationRequired": False,
                "dataCompleteness": {},
            }
        stored = json.loads(record.originator_info or "{}")
        is_expired = False
        if record.completed_at is not None:
            completed = record.completed_at.replace(tzinfo=timezone.utc)
            is_expired = completed + TRAVEL_RULE_RETENTION <= datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        return 200, {
            "isCompliant": record.status == "completed" and not is_expired,
            "status": record.status,
            "complianceLevel": record.compliance_level,
            "lastUpdated": iso_utc(record.updated_at.replace(tzinfo=timezone.utc).timestamp()),
            "isExpired": is_expired,
            "additionalVerificationRequired": record.additional_verification_required,
            "dataCompleteness": stored.get("dataCompleteness", {}),
        }

    def post_compliance_requirements(self, body: dict[str, Any]) -> tuple[int, Any]:
        amount = parse_decimal(body.get("transactionAmount") or "0", field="transactionAmount")
        requirements = compliance_requirements(
            amount, originator=body.get("originatorAddress"), beneficiary=body.get("beneficiaryAddress")
        )
        return 200, requirements.to_json()

    # Early access

    def post_early_access(self, body: dict[str, Any]) -> tuple[int, Any]:
        require_fields(body, "fullName", "email", "phoneNumber", "formType")
        if body["formType"] not in EARLY_ACCESS_FORM_TYPES:
            raise ValidationError(f"formType must be one of {', '.join(EARLY_ACCESS_FORM_TYPES)}")
        if "@" not in str(body["email"]):
            raise ValidationError("Invalid email address")
        wallet = require_address(body["walletAddress"]) if body.get("walletAddress") else None
        extra = {
            k: v for k, v in body.items() if k not in ("fullName", "email", "phoneNumber", "formType", "walletAddress")
        }
        submission = self.storage.submit_early_access(
            EarlyAccessSubmission(
                full_name=str(body["fullName"]).strip(),
                email=str(body["email"]).strip().lower(),
                phone_number=str(body["phoneNumber"]).strip(),
                form_type=body["formType"],
                payload=json.dumps(extra),
                wallet_address=wallet,
            )
        )
        return 201, {"success": True, "id": submission.id, "message": "Early access submission received"}

    def get_early_access_submissions(self, query: dict[str, str]) -> tuple[int, Any]:
        page = _query_int(query, "page", 1, low=1)
        limit = _query_int(query, "limit", 50, low=1, high=EARLY_ACCESS_MAX_PAGE_SIZE)
        form_type = query.get("formType") or None
        if form_type is not None and form_type not in EARLY_ACCESS_FORM_TYPES:
            raise ValidationError(f"formType must be one of {', '.join(EARLY_ACCESS_FORM_TYPES)}")
        sort_order = query.get("sortOrder") or "desc"
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be asc or desc")
        rows, total = self.storage.list_early_access(
            page=page, limit=limit, form_type=form_type, newest_first=sort_order == "desc"
        )
        return 200, {
            "success": True,
            "data": {
                "submissions": [_submission_json(s) for s in rows],
                "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
            },
        }

    def get_early_access_stats(self) -> tuple[int, Any]:
        since = datetime.fromtimestamp(self.clock(), tz=timezone.utc) - timedelta(days=1)
        stats = self.storage.early_access_stats(since=since)
        return 200, {"success": True, "data": {**stats, "lastUpdated": self.now_iso()}}


class APIHandler(BaseHTTPRequestHandler):
    app: StablePayApp  # set by make_server

    def log_message(self, format, *args):  # pylint: disable=redefined-builtin
        logger.debug("%s - %s", self.address_string(), format % args)

    def send_json(self, data: Any, status: int = 200) -> None:
        payload = json.dumps(data).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self._cors_headers()
        self.end_headers()
        self.wfile.write(payload)

    def _cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type, Authorization")

    def do_OPTIONS(self):
        """Handle CORS preflight requests."""
        self.send_response(204)
        self._cors_headers()
        self.end_headers()

    def do_GET(self):
        status, data = self.app.dispatch("GET", self.path, headers=self.headers)
        self.send_json(data, status)

    def do_POST(self):
        content_length = int(self.headers.get("Content-Length", 0))
        raw = self.rfile.read(content_length) if content_length else b""
        try:
            body = json.loads(raw) if raw else {}
        except ValueError:
            self.send_json({"error": "Invalid JSON body"}, 400)
            return
        status, data = self.app.dispatch("POST", self.path, body, headers=self.headers)
        self.send_json(data, status)


def make_server(app: StablePayApp, host: str = "0.0.0.0", port: int = 5000) -> ThreadingHTTPServer:
    """Threaded HTTP server bound to (host, port); port 0 picks a free one."""
    handler = type("StablePayHandler", (APIHandler,), {"app": app})
    return ThreadingHTTPServer((host, port), handler)
