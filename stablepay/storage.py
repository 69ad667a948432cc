"""SQL persistence for users, deposits, KYC and compliance records."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlmodel import BigInteger, Field, Session, SQLModel, create_engine, func, select

from stablepay.formatters import require_address
from stablepay.models import Deposit, KycOutcome, KycRequest
from stablepay.yield_model import apy_for_lock_period, lock_until_for

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_decimal(value: Any) -> Decimal:
    """Calculator figures from the web form; anything non-numeric counts as zero."""
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(0)
    return d if d.is_finite() else Decimal(0)


class UserRecord(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    wallet_address: str | None = Field(default=None, max_length=42, index=True)
    email: str | None = None
    full_name: str | None = None
    password_hash: str | None = None  # pbkdf2_sha256$iterations$salt$digest
    kyc_status: str = Field(default="pending")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class DepositRecord(SQLModel, table=True):
    __tablename__ = "deposits"

    id: int | None = Field(default=None, primary_key=True)
    user_address: str = Field(max_length=42, index=True)
    principal: int = Field(sa_type=BigInteger)
    deposit_timestamp: int = Field(sa_type=BigInteger)
    lock_period_months: float
    # Rate at the time of deposit; never recomputed from the lock-period table.
    apy_snapshot: float
    lock_until: int = Field(sa_type=BigInteger)
    tx_hash: str | None = Field(default=None, max_length=66)
    created_at: datetime = Field(default_factory=_utcnow)

    def to_deposit(self) -> Deposit:
        return Deposit(
            address=self.user_address,
            principal=self.principal,
            deposit_timestamp=self.deposit_timestamp,
            lock_period_months=self.lock_period_months,
            apy_snapshot=self.apy_snapshot,
            lock_until=self.lock_until,
            tx_hash=self.tx_hash,
        )


class KycRecord(SQLModel, table=True):
    __tablename__ = "kyc_records"

    id: int | None = Field(default=None, primary_key=True)
    user_address: str = Field(max_length=42, index=True)
    full_name: str
    email: str
    phone_number: str | None = None
    pan_number: str | None = None
    verification_id: str
    verification_level: str
    status: str = Field(default="pending")
    confidence_score: int = 0
    verification_data: str | None = None  # JSON
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class TransactionRecord(SQLModel, table=True):
    __tablename__ = "transactions"

    id: int | None = Field(default=None, primary_key=True)
    user_address: str = Field(max_length=42, index=True)
    tx_hash: str = Field(max_length=66)
    type: str  # deposit | withdrawal | transfer_in | transfer_out | yield_claim
    amount: int = Field(sa_type=BigInteger)
    status: str = Field(default="pending")
    block_number: int | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class WithdrawalRequestRecord(SQLModel, table=True):
    __tablename__ = "withdrawal_requests"

    id: int | None = Field(default=None, primary_key=True)
    user_address: str = Field(max_length=42, index=True)
    usdc_amount: int = Field(sa_type=BigInteger)
    inr_amount: str  # decimal string, 2 places
    tx_hash: str = Field(max_length=66)
    verification_type: str  # bank | upi
    bank_account: str | None = None
    ifsc_code: str | None = None
    upi_id: str | None = None
    status: str = Field(default="processing")
    created_at: datetime = Field(default_factory=_utcnow)
    processed_at: datetime | None = None


class TravelRuleRecord(SQLModel, table=True):
    __tablename__ = "travel_rule_compliance"

    id: int | None = Field(default=None, primary_key=True)
    user_address: str = Field(max_length=42, unique=True, index=True)
    status: str = Field(default="pending")  # pending | completed | skipped
    transaction_amount: str | None = None
    transaction_currency: str = Field(default="USD", max_length=3)
    compliance_level: str = Field(default="basic")
    originator_info: str | None = None  # JSON
    risk_category: str = Field(default="low")
    additional_verification_required: bool = False
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class EarlyAccessSubmission(SQLModel, table=True):
    __tablename__ = "early_access_submissions"

    id: int | None = Field(default=None, primary_key=True)
    full_name: str
    email: str = Field(index=True)
    phone_number: str
    form_type: str  # savings | investment
    payload: str  # JSON of the remaining form fields
    wallet_address: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class Storage:
    """Repository over a SQLModel engine. SQLite by default, Postgres via DATABASE_URL."""

    def __init__(self, database_url: str) -> None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, connect_args=connect_args)

    def create_tables(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    # Users

    def create_user(self, username: str, wallet_address: str | None = None, **fields: Any) -> UserRecord:
        user = UserRecord(
            username=username,
            wallet_address=require_address(wallet_address) if wallet_address else None,
            **fields,
        )
        with Session(self.engine) as session:
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def get_user(self, user_id: int) -> UserRecord | None:
        with Session(self.engine) as session:
            return session.get(UserRecord, user_id)

    def get_user_by_username(self, username: str) -> UserRecord | None:
        with Session(self.engine) as session:
            return session.exec(select(UserRecord).where(UserRecord.username == username)).first()

    def get_user_by_address(self, address: str) -> UserRecord | None:
        with Session(self.engine) as session:
            stmt = select(UserRecord).where(UserRecord.wallet_address == require_address(address))
            return session.exec(stmt).first()

    # Deposits

    def record_deposit(
        self,
        address: str,
        principal: int,
        lock_period_months,
        *,
        deposit_timestamp: int,
        tx_hash: str | None = None,
    ) -> Deposit:
        """Record a deposit, snapshotting the APY offered for its lock period right now."""
        if principal <= 0:
            raise ValueError("principal must be > 0")
        apy = apy_for_lock_period(lock_period_months)
        record = DepositRecord(
            user_address=require_address(address),
            principal=int(principal),
            deposit_timestamp=int(deposit_timestamp),
            lock_period_months=float(lock_period_months),
            apy_snapshot=apy,
            lock_until=lock_until_for(deposit_timestamp, lock_period_months),
            tx_hash=tx_hash,
        )
        with Session(self.engine) as session:
            session.add(record)
            session.add(
                TransactionRecord(
                    user_address=record.user_address,
                    tx_hash=tx_hash or "",
                    type="deposit",
                    amount=record.principal,
                    status="pending",
                )
            )
            session.commit()
            session.refresh(record)
            logger.info("Recorded deposit of %d for %s at %s%% APY", record.principal, record.user_address, apy)
            return record.to_deposit()

    def deposits_for(self, address: str) -> list[Deposit]:
        """Deposits of `address`, oldest first."""
        with Session(self.engine) as session:
            stmt = (
                select(DepositRecord)
                .where(DepositRecord.user_address == require_address(address))
                .order_by(DepositRecord.deposit_timestamp, DepositRecord.id)
            )
            return [r.to_deposit() for r in session.exec(stmt).all()]

    # Transactions

    def record_transaction(
        self, address: str, tx_hash: str, tx_type: str, amount: int, *, status: str = "pending"
    ) -> TransactionRecord:
        record = TransactionRecord(
            user_address=require_address(address), tx_hash=tx_hash, type=tx_type, amount=int(amount), status=status
        )
        with Session(self.engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    def transactions_for(self, address: str) -> list[TransactionRecord]:
        with Session(self.engine) as session:
            stmt = (
                select(TransactionRecord)
                .where(TransactionRecord.user_address == require_address(address))
                .order_by(TransactionRecord.id)
            )
            return list(session.exec(stmt).all())

    # KYC

    def save_kyc(self, request: KycRequest, outcome: KycOutcome) -> KycRecord:
        record = KycRecord(
            user_address=require_address(request.user_address),
            full_name=request.full_name,
            email=request.email,
            phone_number=request.phone,
            pan_number=request.pan_number,
            verification_id=outcome.verification_id,
            verification_level=outcome.level,
            status=outcome.status,
            confidence_score=outcome.confidence,
            verification_data=json.dumps(outcome.to_json()["steps"]),
        )
        with Session(self.engine) as session:
            session.add(record)
            user = session.exec(select(UserRecord).where(UserRecord.wallet_address == record.user_address)).first()
            if user is not None:
                user.kyc_status = outcome.status
                user.updated_at = _utcnow()
                session.add(user)
            session.commit()
            session.refresh(record)
            return record

    def latest_kyc(self, address: str) -> KycRecord | None:
        with Session(self.engine) as session:
            stmt = (
                select(KycRecord)
                .where(KycRecord.user_address == require_address(address))
                .order_by(KycRecord.id.desc())
            )
            return session.exec(stmt).first()

    # Withdrawals and travel rule

    def create_withdrawal_request(self, record: WithdrawalRequestRecord) -> WithdrawalRequestRecord:
        with Session(self.engine) as session:
            session.add(record)
            session.add(
                TransactionRecord(
                    user_address=record.user_address,
                    tx_hash=record.tx_hash,
                    type="withdrawal",
                    amount=record.usdc_amount,
                )
            )
            session.commit()
            session.refresh(record)
            return record

    def upsert_travel_rule(self, address: str, **fields: Any) -> TravelRuleRecord:
        key = require_address(address)
        with Session(self.engine) as session:
            record = session.exec(select(TravelRuleRecord).where(TravelRuleRecord.user_address == key)).first()
            if record is None:
                record = TravelRuleRecord(user_address=key)
            for name, value in fields.items():
                setattr(record, name, value)
            record.updated_at = _utcnow()
            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    def get_travel_rule(self, address: str) -> TravelRuleRecord | None:
        with Session(self.engine) as session:
            stmt = select(TravelRuleRecord).where(TravelRuleRecord.user_address == require_address(address))
            return session.exec(stmt).first()

    # Early access

    def submit_early_access(self, submission: EarlyAccessSubmission) -> EarlyAccessSubmission:
        with Session(self.engine) as session:
            session.add(submission)
            session.commit()
            session.refresh(submission)
            return submission

    def early_access_count(self) -> int:
        with Session(self.engine) as session:
            return session.exec(select(func.count()).select_from(EarlyAccessSubmission)).one()

    def list_early_access(
        self, *, page: int = 1, limit: int = 50, form_type: str | None = None, newest_first: bool = True
    ) -> tuple[list[EarlyAccessSubmission], int]:
        """One page of submissions and the total matching `form_type`."""
        with Session(self.engine) as session:
            stmt = select(EarlyAccessSubmission)
            count = select(func.count()).select_from(EarlyAccessSubmission)
            if form_type:
                stmt = stmt.where(EarlyAccessSubmission.form_type == form_type)
                count = count.where(EarlyAccessSubmission.form_type == form_type)
            order = EarlyAccessSubmission.created_at.desc() if newest_first else EarlyAccessSubmission.created_at
            stmt = stmt.order_by(order, EarlyAccessSubmission.id.desc() if newest_first else EarlyAccessSubmission.id)
            rows = session.exec(stmt.offset((page - 1) * limit).limit(limit)).all()
            return list(rows), session.exec(count).one()

    def early_access_stats(self, *, since: datetime) -> dict[str, Any]:
        """Counts by form type, submissions since `since`, and totals of the calculator figures."""
        with Session(self.engine) as session:
            rows = session.exec(select(EarlyAccessSubmission)).all()
        by_type = {"savings": 0, "investment": 0}
        savings = returns = Decimal(0)
        recent = 0
        for row in rows:
            by_type[row.form_type] = by_type.get(row.form_type, 0) + 1
            created = row.created_at if row.created_at.tzinfo else row.created_at.replace(tzinfo=timezone.utc)
            if created >= since:
                recent += 1
            calculations = json.loads(row.payload or "{}").get("calculations") or {}
            if isinstance(calculations, dict):
                savings += _as_decimal(calculations.get("totalSavings5Years"))
                returns += _as_decimal(calculations.get("totalYield5Years"))
        return {
            "totalSubmissions": len(rows),
            "formTypeBreakdown": by_type,
            "recentSubmissions": recent,
            "totalCalculatedSavings": str(savings),
            "totalCalculatedReturns": str(returns),
        }
