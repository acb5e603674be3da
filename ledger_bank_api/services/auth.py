"""JWT access/refresh tokens with refresh rotation and revocation"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import jwt
from sqlalchemy.orm import Session

from ledger_bank_api.config import Settings, settings
from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.infrastructure.database.models import User
from ledger_bank_api.services.users import UserService
from ledger_bank_api.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

ALGO = "HS256"
MIN_SECRET_LENGTH = 32
REQUIRED_CLAIMS = ["exp", "iat", "nbf", "iss", "aud", "sub", "jti"]


def validate_secret(config: Settings = settings) -> None:
    if not config.jwt_secret or len(config.jwt_secret) < MIN_SECRET_LENGTH:
        raise DomainException(
            "configuration_error",
            f"JWT secret must be at least {MIN_SECRET_LENGTH} characters",
        )


class AuthService:
    """Issues and verifies tokens on top of ``UserService``"""

    def __init__(self, db: Session, config: Settings = settings):
        validate_secret(config)
        self.db = db
        self.config = config
        self.users = UserService(db)

    def _mint(self, user: User, token_type: str, ttl: int) -> tuple[str, Dict[str, Any]]:
        now = int(time.time())
        payload = {
            "iss": self.config.jwt_issuer,
            "aud": self.config.jwt_audience,
            "sub": user.id,
            "email": user.email,
            "role": user.role,
            "type": token_type,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "nbf": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, self.config.jwt_secret, algorithm=ALGO), payload

    def generate_access_token(self, user: User) -> str:
        token, _ = self._mint(user, "access", self.config.access_token_ttl_seconds)
        return token

    def generate_refresh_token(self, user: User) -> str:
        """Mint a refresh token and store its jti so it can be revoked"""
        token, payload = self._mint(user, "refresh", self.config.refresh_token_ttl_seconds)
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc).replace(tzinfo=None)
        self.users.create_refresh_token(user.id, payload["jti"], expires_at)
        self.db.commit()
        return token

    def _decode(self, token: str, expected_type: str) -> Dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=[ALGO],
                audience=self.config.jwt_audience,
                issuer=self.config.jwt_issuer,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            raise DomainException("token_expired", "Token has expired") from e
        except jwt.InvalidIssuerError as e:
            raise DomainException("invalid_issuer", "Invalid token issuer") from e
        except jwt.InvalidAudienceError as e:
            raise DomainException("invalid_audience", "Invalid token audience") from e
        except jwt.ImmatureSignatureError as e:
            raise DomainException("token_not_yet_valid", "Token is not yet valid") from e
        except jwt.MissingRequiredClaimError as e:
            raise DomainException("missing_required_claims", f"Missing claim: {e.claim}") from e
        except jwt.InvalidTokenError as e:
            raise DomainException("invalid_token", "Invalid token") from e

        if claims.get("type") != expected_type:
            raise DomainException("invalid_token_type", f"Expected a {expected_type} token")
        return claims

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        return self._decode(token, "access")

    def verify_refresh_token(self, token: str) -> Dict[str, Any]:
        """Decode a refresh token and check it has not been revoked"""
        claims = self._decode(token, "refresh")
        stored = self.users.tokens.get_by_jti(claims["jti"])
        if stored is None:
            raise DomainException("invalid_token", "Unknown refresh token")
        if stored.revoked_at is not None:
            raise DomainException("token_revoked", "Refresh token has been revoked")
        return claims

    def get_user_from_token(self, token: str) -> User:
        claims = self.verify_access_token(token)
        user = self.users.users.get(claims["sub"])
        if user is None:
            raise DomainException("invalid_token", "Token subject no longer exists")
        if not user.is_active:
            raise DomainException("invalid_token", "User account is not active")
        return user

    def _token_pair(self, user: User) -> Dict[str, Any]:
        return {
            "access_token": self.generate_access_token(user),
            "refresh_token": self.generate_refresh_token(user),
            "token_type": "Bearer",
            "expires_in": self.config.access_token_ttl_seconds,
            "user": user,
        }

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.users.authenticate_user(email, password)
        logger.info("User logged in", extra={"user_id": user.id})
        return self._token_pair(user)

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """Rotate: revoke the presented refresh token and issue a new pair"""
        claims = self.verify_refresh_token(refresh_token)
        user = self.users.users.get(claims["sub"])
        if user is None or not user.is_active:
            raise DomainException("invalid_token", "Token subject is not active")
        if not self.users.tokens.revoke_if_active(claims["jti"], utcnow()):
            self.db.rollback()
            raise DomainException("token_revoked", "Refresh token has been revoked")
        self.db.commit()
        return self._token_pair(user)

    def logout(self, refresh_token: str, user: Optional[User] = None) -> None:
        claims = self._decode(refresh_token, "refresh")
        if user is not None and claims["sub"] != user.id:
            raise DomainException("forbidden", "Token belongs to another user")
        self.users.revoke_refresh_token(claims["jti"])

    def logout_all(self, user_id: str) -> int:
        return self.users.revoke_all_refresh_tokens(user_id)
