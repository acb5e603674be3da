"""User bank login endpoints"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ledger_bank_api.api.dependencies import ensure, get_current_user
from ledger_bank_api.api.routes.schemas import JobAccepted, LoginCreateRequest, LoginResponse, LoginUpdateRequest
from ledger_bank_api.domain import policy
from ledger_bank_api.infrastructure.database.models import User
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.services.banking import BankingService
from ledger_bank_api.workers.bank_sync_worker import BankSyncWorker
from ledger_bank_api.workers.queue import JobQueue

router = APIRouter()


def enqueue_sync(db: Session, login_id: str) -> JSONResponse:
    job = JobQueue(db).enqueue(BankSyncWorker.name, {"login_id": login_id}, queue=BankSyncWorker.queue)
    body = JobAccepted(job_id=job.id, queue=job.queue, state=job.state, message="Bank sync scheduled")
    return JSONResponse(status_code=202, content=body.model_dump())


@router.get("/user-bank-logins", response_model=list[LoginResponse])
def list_logins(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    user_id = None if policy.is_staff(user) else user.id
    return BankingService(db).list_logins(user_id)


@router.post("/user-bank-logins", response_model=LoginResponse, status_code=201)
def create_login(body: LoginCreateRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return BankingService(db).create_login(user, body.model_dump())


@router.get("/user-bank-logins/{login_id}", response_model=LoginResponse)
def get_login(login_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    login = BankingService(db).get_login(login_id)
    ensure(policy.can_view_login(user, login))
    return login


@router.put("/user-bank-logins/{login_id}", response_model=LoginResponse)
def update_login(
    login_id: str,
    body: LoginUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = BankingService(db)
    login = service.get_login(login_id)
    ensure(policy.can_manage_login(user, login))
    return service.update_login(login, body.model_dump(exclude_none=True))


@router.delete("/user-bank-logins/{login_id}", status_code=204)
def delete_login(login_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    service = BankingService(db)
    login = service.get_login(login_id)
    ensure(policy.can_manage_login(user, login))
    service.delete_login(login)


@router.post("/user-bank-logins/{login_id}/sync", response_model=JobAccepted, status_code=202)
def sync_login(login_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    login = BankingService(db).get_login(login_id)
    ensure(policy.can_sync_login(user, login))
    return enqueue_sync(db, login.id)


@router.post("/sync/{login_id}", response_model=JobAccepted, status_code=202)
def sync_alias(login_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return sync_login(login_id, user, db)
