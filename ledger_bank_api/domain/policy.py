"""Permission rules.

Pure functions over the acting user and the target resource. ``user`` is
``None`` when the caller is the system itself (background workers).
Admins may do everything, support staff may read anything and assist with
pending payments and syncs, regular users only act on their own resources.
"""

from typing import Any, Iterable, Optional

from ledger_bank_api.domain.models import STAFF_ROLES, PaymentStatus, UserRole

OWNER_UPDATABLE_ACCOUNT_FIELDS = frozenset({"account_name", "status"})
SELF_UPDATABLE_USER_FIELDS = frozenset({"email", "full_name"})


def is_admin(user) -> bool:
    return user is not None and user.role == UserRole.ADMIN.value


def is_staff(user) -> bool:
    return user is not None and user.role in STAFF_ROLES


def owns(user, resource) -> bool:
    return user is not None and resource.user_id == user.id


def can_view_user(user, target) -> bool:
    return is_staff(user) or (user is not None and user.id == target.id)


def can_update_user(user, target, fields: Iterable[str]) -> bool:
    if is_admin(user):
        return True
    if user is None or user.id != target.id:
        return False
    return set(fields) <= SELF_UPDATABLE_USER_FIELDS


def can_list_users(user) -> bool:
    return is_staff(user)


def can_manage_users(user) -> bool:
    return is_admin(user)


def can_view_statistics(user) -> bool:
    return is_admin(user)


def can_manage_banks(user) -> bool:
    return is_admin(user)


def can_view_login(user, login) -> bool:
    return is_staff(user) or owns(user, login)


def can_manage_login(user, login) -> bool:
    return is_admin(user) or owns(user, login)


def can_sync_login(user: Optional[Any], login) -> bool:
    return user is None or is_staff(user) or owns(user, login)


def can_view_account(user, account) -> bool:
    return is_staff(user) or owns(user, account)


def can_update_account(user, account, fields: Iterable[str]) -> bool:
    """Owners may only rename an account or change its status"""
    if is_admin(user):
        return True
    if not owns(user, account):
        return False
    return set(fields) <= OWNER_UPDATABLE_ACCOUNT_FIELDS


def can_delete_account(user, account) -> bool:
    return is_admin(user) or owns(user, account)


def can_create_payment(user, account) -> bool:
    return is_staff(user) or owns(user, account)


def can_view_payment(user, payment) -> bool:
    return is_staff(user) or owns(user, payment)


def can_modify_payment(user, payment) -> bool:
    return is_admin(user) or owns(user, payment)


def can_process_payment(user: Optional[Any], payment) -> bool:
    if user is None or is_admin(user):
        return True
    return owns(user, payment) and payment.status == PaymentStatus.PENDING.value


def can_cancel_payment(user, payment) -> bool:
    if payment.status != PaymentStatus.PENDING.value:
        return False
    return is_staff(user) or owns(user, payment)
