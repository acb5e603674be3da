"""Data access layer for ledger entities"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Query, Session

from ledger_bank_api.domain.pagination import Pagination, Sort
from ledger_bank_api.infrastructure.database.models import (
    Bank,
    BankBranch,
    RefreshToken,
    Transaction,
    User,
    UserBankAccount,
    UserBankLogin,
    UserPayment,
)


def apply_sort(query: Query, model, sorts: Sequence[Sort], default: Sequence) -> Query:
    """Order by the requested clauses, falling back to ``default`` columns"""
    if not sorts:
        return query.order_by(*default)
    clauses = []
    for sort in sorts:
        column = getattr(model, sort.field)
        clauses.append(column.desc() if sort.direction == "desc" else column.asc())
    return query.order_by(*clauses)


def page(query: Query, pagination: Optional[Pagination]) -> Tuple[List, int]:
    """Return one page of results plus the total row count"""
    if pagination is None:
        items = query.all()
        return items, len(items)
    total = query.order_by(None).count()
    items = query.offset(pagination.offset).limit(pagination.page_size).all()
    return items, total


def apply_filters(query: Query, model, filters: Optional[Dict]) -> Query:
    for name, value in (filters or {}).items():
        if value is not None:
            query = query.filter(getattr(model, name) == value)
    return query


class UserRepository:
    """Repository for users"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **attrs) -> User:
        user = User(**attrs)
        self.db.add(user)
        self.db.flush()
        return user

    def get(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.lower()).first()

    def list(
        self,
        filters: Optional[Dict] = None,
        sorts: Sequence[Sort] = (),
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[User], int]:
        query = apply_filters(self.db.query(User), User, filters)
        query = apply_sort(query, User, sorts, [User.created_at.desc()])
        return page(query, pagination)

    def statistics(self) -> Dict[str, int]:
        """Counts of users overall, active, admins and suspended"""
        total, active, admins, suspended = self.db.query(
            func.count(User.id),
            func.coalesce(func.sum(case((User.status == "ACTIVE", 1), else_=0)), 0),
            func.coalesce(func.sum(case((User.role == "admin", 1), else_=0)), 0),
            func.coalesce(func.sum(case((User.status == "SUSPENDED", 1), else_=0)), 0),
        ).one()
        return {
            "total_users": int(total),
            "active_users": int(active),
            "admin_users": int(admins),
            "suspended_users": int(suspended),
        }


class RefreshTokenRepository:
    """Repository for refresh tokens"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, user_id: str, jti: str, expires_at: datetime) -> RefreshToken:
        token = RefreshToken(user_id=user_id, jti=jti, expires_at=expires_at)
        self.db.add(token)
        self.db.flush()
        return token

    def get_by_jti(self, jti: str) -> Optional[RefreshToken]:
        return self.db.query(RefreshToken).filter(RefreshToken.jti == jti).first()

    def revoke(self, token: RefreshToken, now: datetime) -> RefreshToken:
        if token.revoked_at is None:
            token.revoked_at = now
            self.db.flush()
        return token

    def revoke_if_active(self, jti: str, now: datetime) -> bool:
        """Revoke in a single conditional UPDATE; False when another request got there first"""
        updated = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.jti == jti, RefreshToken.revoked_at.is_(None))
            .update({"revoked_at": now}, synchronize_session=False)
        )
        return updated == 1

    def revoke_all_for_user(self, user_id: str, now: datetime) -> int:
        count = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .update({RefreshToken.revoked_at: now}, synchronize_session="fetch")
        )
        self.db.flush()
        return count

    def list_active(self, user_id: str, now: datetime) -> List[RefreshToken]:
        return (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.created_at.desc())
            .all()
        )

    def delete_expired(self, now: datetime) -> int:
        count = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.expires_at <= now)
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return count


class BankRepository:
    """Repository for banks and their branches"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **attrs) -> Bank:
        bank = Bank(**attrs)
        self.db.add(bank)
        self.db.flush()
        return bank

    def get(self, bank_id: str) -> Optional[Bank]:
        return self.db.get(Bank, bank_id)

    def list(
        self,
        filters: Optional[Dict] = None,
        sorts: Sequence[Sort] = (),
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[Bank], int]:
        query = apply_filters(self.db.query(Bank), Bank, filters)
        query = apply_sort(query, Bank, sorts, [Bank.name.asc()])
        return page(query, pagination)

    def create_branch(self, **attrs) -> BankBranch:
        branch = BankBranch(**attrs)
        self.db.add(branch)
        self.db.flush()
        return branch

    def get_branch(self, branch_id: str) -> Optional[BankBranch]:
        return self.db.get(BankBranch, branch_id)

    def list_branches(self, bank_id: str) -> List[BankBranch]:
        return (
            self.db.query(BankBranch)
            .filter(BankBranch.bank_id == bank_id)
            .order_by(BankBranch.name.asc())
            .all()
        )


class LoginRepository:
    """Repository for user bank logins"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **attrs) -> UserBankLogin:
        login = UserBankLogin(**attrs)
        self.db.add(login)
        self.db.flush()
        return login

    def get(self, login_id: str) -> Optional[UserBankLogin]:
        return self.db.get(UserBankLogin, login_id)

    def list(self, user_id: Optional[str] = None) -> List[UserBankLogin]:
        query = self.db.query(UserBankLogin)
        if user_id is not None:
            query = query.filter(UserBankLogin.user_id == user_id)
        return query.order_by(UserBankLogin.created_at.desc()).all()

    def list_active(self) -> List[UserBankLogin]:
        return self.db.query(UserBankLogin).filter(UserBankLogin.status == "ACTIVE").all()

    def delete(self, login: UserBankLogin) -> None:
        self.db.delete(login)
        self.db.flush()


class AccountRepository:
    """Repository for user bank accounts"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **attrs) -> UserBankAccount:
        account = UserBankAccount(**attrs)
        self.db.add(account)
        self.db.flush()
        return account

    def get(self, account_id: str) -> Optional[UserBankAccount]:
        return self.db.get(UserBankAccount, account_id)

    def get_for_update(self, account_id: str) -> Optional[UserBankAccount]:
        """Fetch and lock the account row until the transaction ends"""
        return (
            self.db.query(UserBankAccount)
            .filter(UserBankAccount.id == account_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_external_id(self, external_account_id: str) -> Optional[UserBankAccount]:
        return (
            self.db.query(UserBankAccount)
            .filter(UserBankAccount.external_account_id == external_account_id)
            .first()
        )

    def list(
        self,
        user_id: Optional[str] = None,
        filters: Optional[Dict] = None,
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[UserBankAccount], int]:
        query = self.db.query(UserBankAccount)
        if user_id is not None:
            query = query.filter(UserBankAccount.user_id == user_id)
        query = apply_filters(query, UserBankAccount, filters)
        query = query.order_by(UserBankAccount.created_at.desc())
        return page(query, pagination)

    def list_for_login(self, login_id: str) -> List[UserBankAccount]:
        return (
            self.db.query(UserBankAccount)
            .filter(UserBankAccount.user_bank_login_id == login_id)
            .all()
        )

    def delete(self, account: UserBankAccount) -> None:
        self.db.delete(account)
        self.db.flush()


class PaymentRepository:
    """Repository for user payments"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **attrs) -> UserPayment:
        payment = UserPayment(**attrs)
        self.db.add(payment)
        self.db.flush()
        return payment

    def get(self, payment_id: str) -> Optional[UserPayment]:
        return self.db.get(UserPayment, payment_id)

    def get_for_update(self, payment_id: str) -> Optional[UserPayment]:
        """Fetch and lock the payment row until the transaction ends"""
        return (
            self.db.query(UserPayment)
            .filter(UserPayment.id == payment_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def list(
        self,
        user_id: Optional[str] = None,
        account_id: Optional[str] = None,
        filters: Optional[Dict] = None,
        sorts: Sequence[Sort] = (),
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[UserPayment], int]:
        query = self.db.query(UserPayment)
        if user_id is not None:
            query = query.filter(UserPayment.user_id == user_id)
        if account_id is not None:
            query = query.filter(UserPayment.user_bank_account_id == account_id)
        query = apply_filters(query, UserPayment, filters)
        query = apply_sort(
            query,
            UserPayment,
            sorts,
            [UserPayment.posted_at.desc(), UserPayment.created_at.desc()],
        )
        return page(query, pagination)

    def find_recent_duplicate(
        self,
        account_id: str,
        amount: Decimal,
        direction: str,
        description: Optional[str],
        since: datetime,
    ) -> Optional[UserPayment]:
        """Same account, amount, direction and description created after ``since``"""
        query = self.db.query(UserPayment).filter(
            UserPayment.user_bank_account_id == account_id,
            UserPayment.amount == amount,
            UserPayment.direction == direction,
            UserPayment.created_at >= since,
            UserPayment.status.in_(["PENDING", "PROCESSING", "COMPLETED"]),
        )
        if description is None:
            query = query.filter(UserPayment.description.is_(None))
        else:
            query = query.filter(UserPayment.description == description)
        return query.first()

    def has_pending(self, account_id: str) -> bool:
        return (
            self.db.query(UserPayment.id)
            .filter(
                UserPayment.user_bank_account_id == account_id,
                UserPayment.status.in_(["PENDING", "PROCESSING"]),
            )
            .first()
            is not None
        )

    def has_any(self, account_ids: Sequence[str]) -> bool:
        if not account_ids:
            return False
        return (
            self.db.query(UserPayment.id)
            .filter(UserPayment.user_bank_account_id.in_(list(account_ids)))
            .first()
            is not None
        )

    def delete(self, payment: UserPayment) -> None:
        self.db.delete(payment)
        self.db.flush()


class TransactionRepository:
    """Repository for ledger transactions. Rows are never updated or deleted."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **attrs) -> Transaction:
        transaction = Transaction(**attrs)
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get(self, transaction_id: str) -> Optional[Transaction]:
        return self.db.get(Transaction, transaction_id)

    def exists_external_id(self, external_transaction_id: str) -> bool:
        return (
            self.db.query(Transaction.id)
            .filter(Transaction.external_transaction_id == external_transaction_id)
            .first()
            is not None
        )

    def has_any(self, account_ids: Sequence[str]) -> bool:
        if not account_ids:
            return False
        return (
            self.db.query(Transaction.id)
            .filter(Transaction.account_id.in_(list(account_ids)))
            .first()
            is not None
        )

    def list_for_account(
        self,
        account_id: str,
        direction: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        sorts: Sequence[Sort] = (),
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[Transaction], int]:
        query = self.db.query(Transaction).filter(Transaction.account_id == account_id)
        if direction is not None:
            query = query.filter(Transaction.direction == direction)
        if date_from is not None:
            query = query.filter(Transaction.posted_at >= date_from)
        if date_to is not None:
            query = query.filter(Transaction.posted_at <= date_to)
        query = apply_sort(query, Transaction, sorts, [Transaction.posted_at.desc()])
        return page(query, pagination)

    def sum_debits_since(self, account_id: str, since: datetime) -> Decimal:
        """Total debited from the account since ``since``"""
        total = (
            self.db.query(func.coalesce(func.sum(Transaction.amount), 0))
            .filter(
                Transaction.account_id == account_id,
                Transaction.direction == "DEBIT",
                Transaction.posted_at >= since,
            )
            .scalar()
        )
        return Decimal(str(total))
