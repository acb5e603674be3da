"""Dependency injection for FastAPI endpoints"""

from typing import Callable, Optional

from fastapi import Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.domain.pagination import DEFAULT_PAGE_SIZE, Pagination
from ledger_bank_api.infrastructure.database.models import User
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.services.auth import AuthService

bearer_scheme = HTTPBearer(auto_error=False)


def get_cache(request: Request):
    """Cache adapter created with the app"""
    return request.app.state.cache


def get_pagination(
    page: int = Query(1, description="1-based page number"),
    page_size: int = Query(DEFAULT_PAGE_SIZE, description="Items per page (max 100)"),
) -> Pagination:
    return Pagination(page=page, page_size=page_size)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the active user behind the bearer access token"""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise DomainException("invalid_token", "Missing or malformed Authorization header")
    return AuthService(db).get_user_from_token(credentials.credentials)


def require(allowed: Callable[[User], bool]):
    """Dependency that only lets users satisfying the ``allowed`` rule through"""

    def checker(user: User = Depends(get_current_user)) -> User:
        if not allowed(user):
            raise DomainException("insufficient_permissions", "Insufficient permissions", {"role": user.role})
        return user

    return checker


def ensure(allowed: bool, reason: str = "forbidden", message: str = "Access denied") -> None:
    if not allowed:
        raise DomainException(reason, message)
