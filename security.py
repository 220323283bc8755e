"""
Authentication & authorization.

Password hashing uses passlib's bcrypt context, session tokens are HS256
JWTs from python-jose carrying the username and role.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ValidationError as SchemaError

from config import Settings
from errors import Forbidden, TokenRejected, Unauthenticated
from schemas import Role

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


class Identity(BaseModel):
    username: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin


class PasswordHasher:
    def __init__(self, rounds: int = 12):
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        if not hashed_password:
            return False
        try:
            return self.pwd_context.verify(plain_password, hashed_password)
        except ValueError:
            return False


class TokenSigner:
    """Issues and verifies session tokens with a process-wide key."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_hours: int = 24):
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.lifetime = timedelta(hours=expire_hours)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenSigner":
        return cls(settings.jwt_secret, settings.jwt_algorithm, settings.token_expire_hours)

    def issue_session(self, username: str, role: Role, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        to_encode = {
            "sub": username,
            "role": Role(role).value,
            "iat": issued_at,
            "exp": issued_at + self.lifetime,
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self.algorithm)

    def verify_session(self, token: str) -> Identity:
        """Return the identity in token or raise TokenRejected.

        Bad signatures, malformed tokens and expired tokens are all rejected;
        there is no clock-skew leeway.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except JWTError:
            raise TokenRejected("Invalid or expired token")
        if "exp" not in payload:
            raise TokenRejected("Invalid or expired token")
        try:
            return Identity(username=payload.get("sub"), role=payload.get("role"))
        except SchemaError:
            raise TokenRejected("Invalid or expired token")


def require_role(identity: Identity, expected: Role) -> Identity:
    if identity.role != expected:
        raise Forbidden(f"{Role(expected).value.capitalize()} access required", username=identity.username)
    return identity


def require_self_or_admin(identity: Identity, target_username: str) -> Identity:
    if not identity.is_admin and identity.username != target_username:
        raise Forbidden("Access denied", username=identity.username, target=target_username)
    return identity


# FastAPI dependencies

def get_optional_identity(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Identity]:
    if not token:
        return None
    return request.app.state.signer.verify_session(token)


def get_current_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    if identity is None:
        raise Unauthenticated("Access token required")
    return identity


def get_admin_identity(identity: Identity = Depends(get_current_identity)) -> Identity:
    return require_role(identity, Role.admin)
