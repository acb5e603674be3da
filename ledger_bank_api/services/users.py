"""User management, authentication and refresh token storage"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_bank_api.config import settings
from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.domain.models import STAFF_ROLES, UserRole, UserStatus
from ledger_bank_api.domain.pagination import Pagination, Sort
from ledger_bank_api.domain.passwords import dummy_verify, hash_password, verify_password
from ledger_bank_api.infrastructure.database.models import RefreshToken, User
from ledger_bank_api.infrastructure.database.repositories import RefreshTokenRepository, UserRepository
from ledger_bank_api.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USER_SORT_FIELDS = ("email", "full_name", "role", "status", "created_at")
STATS_CACHE_KEY = "users:stats"


def min_password_length(role: str) -> int:
    if role in STAFF_ROLES:
        return settings.staff_password_min_length
    return settings.password_min_length


def validate_password(password: str, role: str, confirmation: Optional[str] = None) -> None:
    minimum = min_password_length(role)
    if not password or len(password) < minimum:
        raise DomainException(
            "invalid_password_format",
            f"Password must be at least {minimum} characters",
            {"min_length": minimum},
        )
    if len(password) > settings.password_max_length:
        raise DomainException(
            "invalid_password_format",
            f"Password must be at most {settings.password_max_length} characters",
        )
    if confirmation is not None and confirmation != password:
        raise DomainException("invalid_password_format", "Password confirmation does not match")


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email) or len(email) > 255:
        raise DomainException("invalid_email_format", "Invalid email address", {"email": email})
    return email


class UserService:
    """Operations on users and their refresh tokens"""

    def __init__(self, db: Session, cache=None):
        self.db = db
        self.cache = cache
        self.users = UserRepository(db)
        self.tokens = RefreshTokenRepository(db)

    # Users

    def create_user(self, attrs: Dict[str, Any], allow_role: bool = False) -> User:
        """
        Register a user.

        Public registration (``allow_role=False``) always creates a regular
        user; only admins creating users may pick the role.
        """
        role = attrs.get("role") if allow_role and attrs.get("role") else UserRole.USER.value
        if role not in {r.value for r in UserRole}:
            raise DomainException("validation_error", f"Invalid role: {role}", {"role": role})
        email = normalize_email(attrs.get("email", ""))
        full_name = (attrs.get("full_name") or "").strip()
        if not full_name:
            raise DomainException("missing_fields", "full_name is required", {"fields": ["full_name"]})
        validate_password(attrs.get("password", ""), role, attrs.get("password_confirmation"))

        if self.users.get_by_email(email) is not None:
            raise DomainException("email_already_exists", "Email is already registered", {"email": email})

        try:
            user = self.users.create(
                email=email,
                full_name=full_name,
                role=role,
                password_hash=hash_password(attrs["password"]),
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DomainException("email_already_exists", "Email is already registered", {"email": email}) from e

        self._invalidate_stats()
        logger.info("User created", extra={"user_id": user.id, "role": role})
        return user

    def get_user(self, user_id: str) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise DomainException("user_not_found", "User not found", {"user_id": user_id})
        return user

    def get_user_by_email(self, email: str) -> User:
        user = self.users.get_by_email(email)
        if user is None:
            raise DomainException("user_not_found", "User not found")
        return user

    def list_users(
        self,
        filters: Optional[Dict[str, Any]] = None,
        sorts: Sequence[Sort] = (),
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[User], int]:
        return self.users.list(filters, sorts, pagination)

    def list_users_by_role(self, role: str) -> List[User]:
        if role not in {r.value for r in UserRole}:
            raise DomainException("validation_error", f"Invalid role: {role}", {"role": role})
        users, _ = self.users.list({"role": role})
        return users

    def update_user(self, user: User, attrs: Dict[str, Any]) -> User:
        if "email" in attrs and attrs["email"] is not None:
            email = normalize_email(attrs["email"])
            existing = self.users.get_by_email(email)
            if existing is not None and existing.id != user.id:
                raise DomainException("email_already_exists", "Email is already registered", {"email": email})
            user.email = email
        if attrs.get("full_name") is not None:
            user.full_name = attrs["full_name"].strip()
        if attrs.get("role") is not None:
            if attrs["role"] not in {r.value for r in UserRole}:
                raise DomainException("validation_error", f"Invalid role: {attrs['role']}")
            user.role = attrs["role"]
        if attrs.get("status") is not None:
            self._set_status(user, attrs["status"])
        if attrs.get("verified") is not None:
            user.verified = attrs["verified"]
        self.db.commit()
        self._invalidate_stats()
        return user

    def change_password(
        self, user: User, current_password: str, new_password: str, confirmation: Optional[str] = None
    ) -> User:
        if not verify_password(current_password, user.password_hash):
            raise DomainException("invalid_password", "Current password is incorrect")
        validate_password(new_password, user.role, confirmation)
        user.password_hash = hash_password(new_password)
        # Existing sessions end with a password change
        self.tokens.revoke_all_for_user(user.id, utcnow())
        self.db.commit()
        return user

    def delete_user(self, user: User) -> User:
        """Soft delete: the row stays for ledger history"""
        self._set_status(user, UserStatus.DELETED.value)
        self.tokens.revoke_all_for_user(user.id, utcnow())
        self.db.commit()
        self._invalidate_stats()
        logger.info("User deleted", extra={"user_id": user.id})
        return user

    def suspend_user(self, user: User) -> User:
        self._set_status(user, UserStatus.SUSPENDED.value)
        self.tokens.revoke_all_for_user(user.id, utcnow())
        self.db.commit()
        self._invalidate_stats()
        return user

    def activate_user(self, user: User) -> User:
        self._set_status(user, UserStatus.ACTIVE.value)
        self.db.commit()
        self._invalidate_stats()
        return user

    def get_user_statistics(self) -> Dict[str, int]:
        if self.cache is None:
            return self.users.statistics()
        return self.cache.get_or_put(STATS_CACHE_KEY, self.users.statistics, settings.stats_cache_ttl)

    def authenticate_user(self, email: str, password: str) -> User:
        """Check credentials in constant time whether or not the email exists"""
        user = self.users.get_by_email((email or "").strip().lower())
        if user is None:
            dummy_verify()
            raise DomainException("invalid_credentials", "Invalid email or password")
        if not verify_password(password or "", user.password_hash):
            raise DomainException("invalid_credentials", "Invalid email or password")
        if not user.is_active:
            raise DomainException("account_inactive", "User account is not active", {"status": user.status})
        return user

    def _set_status(self, user: User, status: str) -> None:
        if status not in {s.value for s in UserStatus}:
            raise DomainException("validation_error", f"Invalid status: {status}", {"status": status})
        user.status = status
        user.active = status == UserStatus.ACTIVE.value
        user.suspended = status == UserStatus.SUSPENDED.value
        user.deleted = status == UserStatus.DELETED.value

    def _invalidate_stats(self) -> None:
        if self.cache is not None:
            self.cache.delete(STATS_CACHE_KEY)

    # Refresh tokens

    def create_refresh_token(self, user_id: str, jti: str, expires_at: datetime) -> RefreshToken:
        if expires_at <= utcnow():
            raise DomainException("validation_error", "Refresh token expiry must be in the future")
        return self.tokens.create(user_id, jti, expires_at)

    def get_refresh_token(self, jti: str) -> RefreshToken:
        token = self.tokens.get_by_jti(jti)
        if token is None:
            raise DomainException("token_not_found", "Refresh token not found")
        return token

    def revoke_refresh_token(self, jti: str) -> RefreshToken:
        token = self.get_refresh_token(jti)
        self.tokens.revoke(token, utcnow())
        self.db.commit()
        return token

    def revoke_all_refresh_tokens(self, user_id: str) -> int:
        count = self.tokens.revoke_all_for_user(user_id, utcnow())
        self.db.commit()
        return count

    def list_active_refresh_tokens(self, user_id: str) -> List[RefreshToken]:
        return self.tokens.list_active(user_id, utcnow())

    def cleanup_expired_refresh_tokens(self) -> int:
        count = self.tokens.delete_expired(utcnow())
        self.db.commit()
        if count:
            logger.info("Expired refresh tokens removed", extra={"count": count})
        return count
