"""Domain-specific exceptions and the error reason catalog.

Every failure the service reports is a ``DomainException`` carrying a reason
code. The reason determines the category, and the category determines the HTTP
status, whether the operation may be retried and how long to wait between
attempts.
"""

import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional

CATEGORY_REASONS: Dict[str, tuple] = {
    "validation": (
        "invalid_amount_format",
        "missing_fields",
        "invalid_direction",
        "invalid_email_format",
        "invalid_password_format",
        "validation_error",
    ),
    "not_found": (
        "user_not_found",
        "account_not_found",
        "payment_not_found",
        "token_not_found",
        "bank_not_found",
        "branch_not_found",
        "login_not_found",
        "transaction_not_found",
        "not_found",
    ),
    "authentication": (
        "invalid_credentials",
        "invalid_password",
        "invalid_token",
        "token_expired",
        "token_revoked",
        "invalid_token_type",
        "invalid_issuer",
        "invalid_audience",
        "token_not_yet_valid",
        "missing_required_claims",
    ),
    "authorization": (
        "forbidden",
        "unauthorized_access",
        "insufficient_permissions",
    ),
    "conflict": (
        "email_already_exists",
        "already_processed",
        "duplicate_transaction",
        "conflict",
    ),
    "business_rule": (
        "insufficient_funds",
        "account_inactive",
        "daily_limit_exceeded",
        "amount_exceeds_limit",
        "negative_amount",
        "negative_balance",
    ),
    "rate_limit": ("rate_limit_exceeded",),
    "external_dependency": (
        "timeout",
        "service_unavailable",
        "bank_api_error",
        "payment_provider_error",
    ),
    "system": (
        "internal_server_error",
        "database_error",
        "configuration_error",
    ),
}

REASON_CATEGORY: Dict[str, str] = {
    reason: category for category, reasons in CATEGORY_REASONS.items() for reason in reasons
}

CATEGORY_STATUS: Dict[str, int] = {
    "validation": 400,
    "not_found": 404,
    "authentication": 401,
    "authorization": 403,
    "conflict": 409,
    "business_rule": 422,
    "rate_limit": 429,
    "external_dependency": 503,
    "system": 500,
}

# category -> (max retries, delay in milliseconds)
RETRY_POLICY: Dict[str, tuple] = {
    "external_dependency": (3, 1000),
    "system": (2, 500),
}

SENSITIVE_KEYS = frozenset(
    {"password", "password_hash", "access_token", "refresh_token", "secret", "private_key", "api_key"}
)


def category_for(reason: str) -> str:
    """Unknown reasons are treated as system errors"""
    return REASON_CATEGORY.get(reason, "system")


def new_correlation_id() -> str:
    return secrets.token_hex(16)


class DomainException(Exception):
    """Base exception for domain layer"""

    def __init__(
        self,
        reason: str,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        self.reason = reason
        self.message = message or reason.replace("_", " ").capitalize()
        self.context = context or {}
        self.correlation_id = correlation_id or new_correlation_id()
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    @property
    def category(self) -> str:
        return category_for(self.reason)

    @property
    def http_status(self) -> int:
        return CATEGORY_STATUS[self.category]

    @property
    def retryable(self) -> bool:
        return self.category in RETRY_POLICY

    @property
    def max_retries(self) -> int:
        return RETRY_POLICY.get(self.category, (0, 0))[0]

    @property
    def retry_delay_ms(self) -> int:
        return RETRY_POLICY.get(self.category, (0, 0))[1]

    def to_response(self) -> Dict[str, Any]:
        """Client-facing error body with sensitive context removed"""
        details = {key: value for key, value in self.context.items() if key not in SENSITIVE_KEYS}
        return {
            "error": {
                "type": self.category,
                "reason": self.reason,
                "message": self.message,
                "code": self.http_status,
                "details": details,
                "correlation_id": self.correlation_id,
                "timestamp": self.timestamp.isoformat(),
            }
        }

    def __repr__(self) -> str:
        return f"DomainException(reason={self.reason!r}, message={self.message!r})"


class BankAPIError(DomainException):
    """Bank API returned an error or is unavailable"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__("bank_api_error", message, context)
