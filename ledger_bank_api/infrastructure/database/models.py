"""SQLAlchemy ORM models matching migrations/versions"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from ledger_bank_api.utils.time_utils import utcnow

Base = declarative_base()

MONEY = Numeric(15, 2)


def new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class User(TimestampMixin, Base):
    """Registered user"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user")
    status = Column(String(20), nullable=False, default="ACTIVE")
    password_hash = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    verified = Column(Boolean, nullable=False, default=False)
    suspended = Column(Boolean, nullable=False, default=False)
    deleted = Column(Boolean, nullable=False, default=False)

    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE" and self.active and not self.suspended and not self.deleted


class RefreshToken(TimestampMixin, Base):
    """Issued refresh token, tracked by jti for revocation"""

    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    jti = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="refresh_tokens")


class Bank(TimestampMixin, Base):
    """Financial institution"""

    __tablename__ = "banks"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True)
    country = Column(String(3), nullable=False)
    code = Column(String(32), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="ACTIVE")
    logo_url = Column(Text, nullable=True)
    api_endpoint = Column(Text, nullable=True)
    integration_module = Column(String(255), nullable=True)

    branches = relationship("BankBranch", back_populates="bank", cascade="all, delete-orphan")


class BankBranch(TimestampMixin, Base):
    """Branch of a bank"""

    __tablename__ = "bank_branches"

    id = Column(String(36), primary_key=True, default=new_id)
    bank_id = Column(String(36), ForeignKey("banks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    country = Column(String(3), nullable=False)
    iban = Column(String(34), nullable=True, unique=True)
    swift_code = Column(String(11), nullable=True, unique=True)
    routing_number = Column(String(9), nullable=True)

    bank = relationship("Bank", back_populates="branches")


class UserBankLogin(TimestampMixin, Base):
    """A user's credentials/connection at a bank branch"""

    __tablename__ = "user_bank_logins"
    __table_args__ = (
        UniqueConstraint("user_id", "bank_branch_id", "username", name="uq_user_bank_logins_user_branch_username"),
        CheckConstraint("sync_frequency >= 300 AND sync_frequency <= 86400", name="ck_user_bank_logins_sync_frequency"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    bank_branch_id = Column(String(36), ForeignKey("bank_branches.id"), nullable=False, index=True)
    username = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    last_sync_at = Column(DateTime, nullable=True)
    sync_frequency = Column(Integer, nullable=False, default=3600)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)
    scope = Column(Text, nullable=True)
    provider_user_id = Column(String(255), nullable=True)

    bank_branch = relationship("BankBranch")
    accounts = relationship("UserBankAccount", back_populates="login")


class UserBankAccount(TimestampMixin, Base):
    """Bank account owned by a user, reached through one of their logins"""

    __tablename__ = "user_bank_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0 OR account_type = 'CREDIT'", name="ck_user_bank_accounts_balance_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_bank_login_id = Column(String(36), ForeignKey("user_bank_logins.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    currency = Column(String(3), nullable=False)
    account_type = Column(String(20), nullable=False)
    balance = Column(MONEY, nullable=False, default=0)
    last_four = Column(String(4), nullable=True)
    account_name = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="ACTIVE")
    last_sync_at = Column(DateTime, nullable=True)
    external_account_id = Column(String(255), nullable=True, unique=True)

    login = relationship("UserBankLogin", back_populates="accounts")


class UserPayment(TimestampMixin, Base):
    """Payment request against an account; completed exactly once by the processor"""

    __tablename__ = "user_payments"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_user_payments_amount_positive"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_bank_account_id = Column(String(36), ForeignKey("user_bank_accounts.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    direction = Column(String(10), nullable=False)
    payment_type = Column(String(20), nullable=False)
    description = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    posted_at = Column(DateTime, nullable=True)
    external_transaction_id = Column(String(64), nullable=True, unique=True)
    failure_reason = Column(String(64), nullable=True)


class Transaction(TimestampMixin, Base):
    """Append-only ledger entry"""

    __tablename__ = "transactions"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),)

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey("user_bank_accounts.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    direction = Column(String(10), nullable=False)
    description = Column(String(255), nullable=False)
    posted_at = Column(DateTime, nullable=False, index=True)
    external_transaction_id = Column(String(64), nullable=True, unique=True)


class Job(Base):
    """Background job queue with retry tracking"""

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=new_id)
    queue = Column(String(50), nullable=False, index=True)
    worker = Column(String(100), nullable=False)
    args = Column(JSON, nullable=False)
    state = Column(String(20), nullable=False, default="available", index=True)
    priority = Column(Integer, nullable=False, default=0)
    attempt = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    errors = Column(JSON, nullable=False, default=lambda: [])
    scheduled_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    attempted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    discarded_at = Column(DateTime, nullable=True)
    inserted_at = Column(DateTime, nullable=False, default=utcnow)
