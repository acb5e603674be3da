"""User administration endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ledger_bank_api.api.dependencies import ensure, get_cache, get_current_user, get_pagination, require
from ledger_bank_api.api.routes.schemas import (
    Page,
    UserCreateRequest,
    UserResponse,
    UserStatsResponse,
    UserUpdateRequest,
    paged,
)
from ledger_bank_api.domain import policy
from ledger_bank_api.domain.pagination import Pagination, parse_sort
from ledger_bank_api.infrastructure.database.models import User
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.services.users import USER_SORT_FIELDS, UserService

router = APIRouter()

user_admin = require(policy.can_manage_users)
user_readers = require(policy.can_list_users)
statistics_readers = require(policy.can_view_statistics)


@router.get("/users", response_model=Page[UserResponse])
def list_users(
    status: Optional[str] = None,
    role: Optional[str] = None,
    active: Optional[bool] = None,
    verified: Optional[bool] = None,
    suspended: Optional[bool] = None,
    deleted: Optional[bool] = None,
    sort: Optional[str] = Query(None, description="e.g. email:asc,created_at:desc"),
    pagination: Pagination = Depends(get_pagination),
    _: User = Depends(user_readers),
    db: Session = Depends(get_db),
):
    filters = {
        "status": status,
        "role": role,
        "active": active,
        "verified": verified,
        "suspended": suspended,
        "deleted": deleted,
    }
    users, total = UserService(db).list_users(filters, parse_sort(sort, USER_SORT_FIELDS), pagination)
    return paged(UserResponse, users, total, pagination)


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    body: UserCreateRequest,
    _: User = Depends(user_admin),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    return UserService(db, cache).create_user(body.model_dump(), allow_role=True)


@router.get("/users/stats", response_model=UserStatsResponse)
def user_statistics(_: User = Depends(statistics_readers), db: Session = Depends(get_db), cache=Depends(get_cache)):
    return UserService(db, cache).get_user_statistics()


@router.get("/users/role/{role}", response_model=list[UserResponse])
def users_by_role(role: str, _: User = Depends(user_readers), db: Session = Depends(get_db)):
    return UserService(db).list_users_by_role(role)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(user_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    target = UserService(db).get_user(user_id)
    ensure(policy.can_view_user(user, target))
    return target


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    body: UserUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    service = UserService(db, cache)
    target = service.get_user(user_id)
    attrs = body.model_dump(exclude_none=True)
    ensure(
        policy.can_update_user(user, target, attrs.keys()),
        "insufficient_permissions",
        "Not allowed to change these fields",
    )
    return service.update_user(target, attrs)


@router.delete("/users/{user_id}", response_model=UserResponse)
def delete_user(user_id: str, _: User = Depends(user_admin), db: Session = Depends(get_db), cache=Depends(get_cache)):
    service = UserService(db, cache)
    return service.delete_user(service.get_user(user_id))


@router.post("/users/{user_id}/suspend", response_model=UserResponse)
def suspend_user(user_id: str, _: User = Depends(user_admin), db: Session = Depends(get_db), cache=Depends(get_cache)):
    service = UserService(db, cache)
    return service.suspend_user(service.get_user(user_id))


@router.post("/users/{user_id}/activate", response_model=UserResponse)
def activate_user(user_id: str, _: User = Depends(user_admin), db: Session = Depends(get_db), cache=Depends(get_cache)):
    service = UserService(db, cache)
    return service.activate_user(service.get_user(user_id))
