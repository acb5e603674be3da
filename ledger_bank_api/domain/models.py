"""Domain models - enums and pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPPORT = "support"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


class BankStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class LoginStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ERROR = "ERROR"


class AccountType(str, Enum):
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT = "CREDIT"
    INVESTMENT = "INVESTMENT"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    CLOSED = "CLOSED"


class Direction(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class PaymentType(str, Enum):
    TRANSFER = "TRANSFER"
    PAYMENT = "PAYMENT"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class JobState(str, Enum):
    AVAILABLE = "available"
    EXECUTING = "executing"
    COMPLETED = "completed"
    RETRYABLE = "retryable"
    DISCARDED = "discarded"
    CANCELLED = "cancelled"


STAFF_ROLES = (UserRole.ADMIN.value, UserRole.SUPPORT.value)


@dataclass
class AccountSnapshot:
    """Cached view of an account balance"""

    account_id: str
    user_id: str
    currency: str
    account_type: str
    status: str
    balance: Decimal
    last_sync_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "user_id": self.user_id,
            "currency": self.currency,
            "account_type": self.account_type,
            "status": self.status,
            "balance": str(self.balance),
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AccountSnapshot":
        return cls(
            account_id=data["account_id"],
            user_id=data["user_id"],
            currency=data["currency"],
            account_type=data["account_type"],
            status=data["status"],
            balance=Decimal(data["balance"]),
            last_sync_at=datetime.fromisoformat(data["last_sync_at"]) if data.get("last_sync_at") else None,
        )


@dataclass
class BankTransaction:
    """Transaction reported by an external bank API"""

    external_transaction_id: str
    amount: Decimal
    direction: str
    description: str
    posted_at: datetime


@dataclass
class BankAccount:
    """Account reported by an external bank API"""

    external_account_id: str
    currency: str
    account_type: str
    balance: Decimal
    last_four: str
    account_name: str
    transactions: List[BankTransaction] = field(default_factory=list)
