"""Bank and branch endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ledger_bank_api.api.dependencies import get_cache, get_current_user, get_pagination, require
from ledger_bank_api.api.routes.schemas import (
    BankCreateRequest,
    BankResponse,
    BankUpdateRequest,
    BranchCreateRequest,
    BranchResponse,
    Page,
    paged,
)
from ledger_bank_api.domain import policy
from ledger_bank_api.domain.pagination import Pagination, parse_sort
from ledger_bank_api.infrastructure.database.models import User
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.services.banking import BANK_SORT_FIELDS, BankingService

router = APIRouter()

bank_admin = require(policy.can_manage_banks)


@router.get("/banks", response_model=Page[BankResponse])
def list_banks(
    status: Optional[str] = None,
    country: Optional[str] = None,
    sort: Optional[str] = None,
    pagination: Pagination = Depends(get_pagination),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    banks, total = BankingService(db).list_banks(
        {"status": status, "country": country},
        parse_sort(sort, BANK_SORT_FIELDS),
        pagination,
    )
    return paged(BankResponse, banks, total, pagination)


@router.get("/banks/active")
def active_banks(_: User = Depends(get_current_user), db: Session = Depends(get_db), cache=Depends(get_cache)):
    return {"data": BankingService(db, cache).list_active_banks()}


@router.post("/banks", response_model=BankResponse, status_code=201)
def create_bank(body: BankCreateRequest, _: User = Depends(bank_admin), db: Session = Depends(get_db), cache=Depends(get_cache)):
    return BankingService(db, cache).create_bank(body.model_dump())


@router.get("/banks/{bank_id}", response_model=BankResponse)
def get_bank(bank_id: str, _: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return BankingService(db).get_bank(bank_id)


@router.put("/banks/{bank_id}", response_model=BankResponse)
def update_bank(
    bank_id: str,
    body: BankUpdateRequest,
    _: User = Depends(bank_admin),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    service = BankingService(db, cache)
    return service.update_bank(service.get_bank(bank_id), body.model_dump(exclude_none=True))


@router.get("/banks/{bank_id}/branches", response_model=list[BranchResponse])
def list_branches(bank_id: str, _: User = Depends(get_current_user), db: Session = Depends(get_db)):
    service = BankingService(db)
    service.get_bank(bank_id)
    return service.list_branches(bank_id)


@router.post("/banks/{bank_id}/branches", response_model=BranchResponse, status_code=201)
def create_branch(bank_id: str, body: BranchCreateRequest, _: User = Depends(bank_admin), db: Session = Depends(get_db)):
    service = BankingService(db)
    return service.create_branch(service.get_bank(bank_id), body.model_dump())


@router.get("/branches/{branch_id}", response_model=BranchResponse)
def get_branch(branch_id: str, _: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return BankingService(db).get_branch(branch_id)
