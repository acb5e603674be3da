"""Registration, login, token refresh, logout and current user endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ledger_bank_api.api.dependencies import get_cache, get_current_user
from ledger_bank_api.api.routes.schemas import (
    LoginRequest,
    LogoutRequest,
    PasswordChangeRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from ledger_bank_api.infrastructure.database.models import User
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.services.auth import AuthService
from ledger_bank_api.services.users import UserService

router = APIRouter()


@router.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(body: RegisterRequest, db: Session = Depends(get_db), cache=Depends(get_cache)):
    """Public registration; the new user always gets the ``user`` role"""
    user = UserService(db, cache).create_user(body.model_dump(), allow_role=False)
    auth = AuthService(db)
    return {
        "access_token": auth.generate_access_token(user),
        "refresh_token": auth.generate_refresh_token(user),
        "token_type": "Bearer",
        "expires_in": auth.config.access_token_ttl_seconds,
        "user": user,
    }


@router.post("/auth/login", response_model=TokenResponse)
def login(body: LoginRequest, db: Session = Depends(get_db)):
    return AuthService(db).login(body.email, body.password)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(body: RefreshRequest, db: Session = Depends(get_db)):
    return AuthService(db).refresh(body.refresh_token)


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return user


@router.put("/me/password", response_model=UserResponse)
def change_password(
    body: PasswordChangeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return UserService(db).change_password(user, body.current_password, body.password, body.password_confirmation)


@router.post("/logout")
def logout(
    body: LogoutRequest | None = None,
    refresh_token: Optional[str] = Query(None, description="Revoke only this refresh token"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Revoke one refresh token when given, otherwise every token of the user"""
    auth = AuthService(db)
    token = refresh_token or (body.refresh_token if body is not None else None)
    if token:
        auth.logout(token, user)
        return {"message": "Logged out", "revoked": 1}
    revoked = auth.logout_all(user.id)
    return {"message": "Logged out from all sessions", "revoked": revoked}
