"""Payment endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ledger_bank_api.api.dependencies import ensure, get_cache, get_current_user, get_pagination
from ledger_bank_api.api.routes.schemas import (
    JobAccepted,
    Page,
    PaymentCreateRequest,
    PaymentResponse,
    PaymentUpdateRequest,
    paged,
)
from ledger_bank_api.domain import policy
from ledger_bank_api.domain.pagination import Pagination, parse_sort
from ledger_bank_api.infrastructure.database.models import User
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.services.banking import BankingService
from ledger_bank_api.services.payments import PAYMENT_SORT_FIELDS, PaymentService

router = APIRouter()


def _load(service: PaymentService, payment_id: str, user: User):
    payment = service.get_payment(payment_id)
    ensure(policy.can_view_payment(user, payment), "unauthorized_access", "Payment belongs to another user")
    return payment


@router.get("/payments", response_model=Page[PaymentResponse])
def list_payments(
    status: Optional[str] = None,
    direction: Optional[str] = None,
    payment_type: Optional[str] = None,
    sort: Optional[str] = None,
    pagination: Pagination = Depends(get_pagination),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user_id = None if policy.is_staff(user) else user.id
    payments, total = PaymentService(db).list_payments(
        user_id,
        {"status": status, "direction": direction, "payment_type": payment_type},
        parse_sort(sort, PAYMENT_SORT_FIELDS),
        pagination,
    )
    return paged(PaymentResponse, payments, total, pagination)


@router.post("/payments", response_model=PaymentResponse, status_code=201)
def create_payment(body: PaymentCreateRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return PaymentService(db).create_payment(user, body.model_dump())


@router.get("/payments/account/{account_id}", response_model=Page[PaymentResponse])
def payments_for_account(
    account_id: str,
    pagination: Pagination = Depends(get_pagination),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    account = BankingService(db).get_account(account_id)
    ensure(policy.can_view_account(user, account), "unauthorized_access", "Account belongs to another user")
    payments, total = PaymentService(db).list_for_account(account.id, pagination)
    return paged(PaymentResponse, payments, total, pagination)


@router.get("/payments/{payment_id}", response_model=PaymentResponse)
def get_payment(payment_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _load(PaymentService(db), payment_id, user)


@router.put("/payments/{payment_id}", response_model=PaymentResponse)
def update_payment(
    payment_id: str,
    body: PaymentUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = PaymentService(db)
    payment = _load(service, payment_id, user)
    ensure(policy.can_modify_payment(user, payment), "unauthorized_access", "Payment belongs to another user")
    return service.update_payment(payment, body.model_dump(exclude_none=True))


@router.delete("/payments/{payment_id}", status_code=204)
def delete_payment(payment_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    service = PaymentService(db)
    payment = _load(service, payment_id, user)
    ensure(policy.can_modify_payment(user, payment), "unauthorized_access", "Payment belongs to another user")
    service.delete_payment(payment)


@router.post("/payments/{payment_id}/process", response_model=JobAccepted, status_code=202)
def process_payment(
    payment_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Queue the payment for the ledger processor"""
    service = PaymentService(db, cache)
    payment = _load(service, payment_id, user)
    ensure(policy.can_process_payment(user, payment), "unauthorized_access", "Not allowed to process this payment")
    job = service.schedule_processing(payment)
    body = JobAccepted(job_id=job.id, queue=job.queue, state=job.state, message="Payment queued for processing")
    return JSONResponse(status_code=202, content=body.model_dump())


@router.post("/payments/{payment_id}/cancel", response_model=PaymentResponse)
def cancel_payment(payment_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    service = PaymentService(db)
    payment = _load(service, payment_id, user)
    return service.cancel_payment(payment, user)
