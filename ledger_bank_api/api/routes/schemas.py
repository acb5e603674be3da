"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class Page(BaseModel, Generic[T]):
    """Paged list response"""

    data: List[T]
    pagination: PaginationMeta


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Auth


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register"""

    email: str = Field(..., max_length=255)
    full_name: str = Field(..., min_length=1, max_length=255)
    password: str
    password_confirmation: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class UserResponse(ORMModel):
    id: str
    email: str
    full_name: str
    role: str
    status: str
    active: bool
    verified: bool
    suspended: bool
    deleted: bool
    created_at: datetime
    updated_at: datetime


class TokenResponse(BaseModel):
    """Response for login, register and refresh"""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserResponse


# Users


class UserCreateRequest(RegisterRequest):
    role: str = "user"


class UserUpdateRequest(BaseModel):
    email: Optional[str] = Field(None, max_length=255)
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    role: Optional[str] = None
    status: Optional[str] = None
    verified: Optional[bool] = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    password: str
    password_confirmation: Optional[str] = None


class UserStatsResponse(BaseModel):
    total_users: int
    active_users: int
    admin_users: int
    suspended_users: int


# Banks


class BankCreateRequest(BaseModel):
    name: str
    country: str
    code: str
    status: str = "ACTIVE"
    logo_url: Optional[str] = None
    api_endpoint: Optional[str] = None
    integration_module: Optional[str] = None


class BankUpdateRequest(BaseModel):
    name: Optional[str] = None
    country: Optional[str] = None
    code: Optional[str] = None
    status: Optional[str] = None
    logo_url: Optional[str] = None
    api_endpoint: Optional[str] = None
    integration_module: Optional[str] = None


class BankResponse(ORMModel):
    id: str
    name: str
    country: str
    code: str
    status: str
    logo_url: Optional[str] = None
    api_endpoint: Optional[str] = None
    integration_module: Optional[str] = None
    created_at: datetime


class BranchCreateRequest(BaseModel):
    name: str
    country: Optional[str] = None
    iban: Optional[str] = Field(None, max_length=34)
    swift_code: Optional[str] = None
    routing_number: Optional[str] = None


class BranchResponse(ORMModel):
    id: str
    bank_id: str
    name: str
    country: str
    iban: Optional[str] = None
    swift_code: Optional[str] = None
    routing_number: Optional[str] = None


# Bank logins


class LoginCreateRequest(BaseModel):
    bank_branch_id: str
    username: str
    sync_frequency: int = 3600
    status: str = "ACTIVE"
    scope: Optional[str] = None
    provider_user_id: Optional[str] = None


class LoginUpdateRequest(BaseModel):
    username: Optional[str] = None
    sync_frequency: Optional[int] = None
    status: Optional[str] = None
    scope: Optional[str] = None


class LoginResponse(ORMModel):
    """OAuth tokens are never returned"""

    id: str
    user_id: str
    bank_branch_id: str
    username: str
    status: str
    last_sync_at: Optional[datetime] = None
    sync_frequency: int
    scope: Optional[str] = None
    provider_user_id: Optional[str] = None
    created_at: datetime


# Accounts


class AccountCreateRequest(BaseModel):
    user_bank_login_id: str
    currency: str
    account_type: str
    balance: Decimal = Decimal("0")
    last_four: Optional[str] = None
    account_name: Optional[str] = None
    external_account_id: Optional[str] = None


class AccountUpdateRequest(BaseModel):
    account_name: Optional[str] = None
    status: Optional[str] = None
    last_four: Optional[str] = None
    balance: Optional[Decimal] = None
    currency: Optional[str] = None
    account_type: Optional[str] = None


class AccountResponse(ORMModel):
    id: str
    user_id: str
    user_bank_login_id: str
    currency: str
    account_type: str
    balance: Decimal
    last_four: Optional[str] = None
    account_name: Optional[str] = None
    status: str
    last_sync_at: Optional[datetime] = None
    external_account_id: Optional[str] = None
    created_at: datetime


class BalanceResponse(BaseModel):
    account_id: str
    currency: str
    account_type: str
    status: str
    balance: Decimal
    last_sync_at: Optional[datetime] = None
    needs_sync: bool


class TransactionResponse(ORMModel):
    id: str
    account_id: str
    user_id: str
    amount: Decimal
    direction: str
    description: str
    posted_at: datetime
    external_transaction_id: Optional[str] = None


# Payments


class PaymentCreateRequest(BaseModel):
    user_bank_account_id: str
    amount: Decimal
    direction: str
    payment_type: str
    description: Optional[str] = None


class PaymentUpdateRequest(BaseModel):
    description: Optional[str] = None
    payment_type: Optional[str] = None


class PaymentResponse(ORMModel):
    id: str
    user_bank_account_id: str
    user_id: str
    amount: Decimal
    direction: str
    payment_type: str
    description: Optional[str] = None
    status: str
    posted_at: Optional[datetime] = None
    external_transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime


class JobAccepted(BaseModel):
    """Response for endpoints that enqueue background work"""

    job_id: str
    queue: str
    state: str
    message: str


def paged(schema, items, total: int, pagination) -> dict:
    """Build a ``Page`` body from ORM rows"""
    return {
        "data": [schema.model_validate(item) for item in items],
        "pagination": pagination.meta(total),
    }
