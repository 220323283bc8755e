"""
Application configuration, loaded once at startup.

JWT_SECRET has no fallback: a missing or weak signing key stops the
process instead of silently issuing forgeable tokens.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from errors import ConfigurationError

MIN_SECRET_LENGTH = 32

# Placeholder values that ship in sample configs and must never sign tokens.
KNOWN_PLACEHOLDER_SECRETS = {
    "your-super-secret-jwt-key-change-in-production",
    "dev-secret-key-change",
    "super-secret-key-change-me",
    "changeme",
    "secret",
}


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    jwt_secret: str = Field(..., repr=False)
    jwt_algorithm: str = "HS256"
    token_expire_hours: int = Field(24, ge=1)
    database_path: str = "./database.json"
    bcrypt_rounds: int = Field(12, ge=4, le=31)
    environment: str = "development"
    admin_username: Optional[str] = None
    admin_email: Optional[str] = None
    admin_password: Optional[str] = Field(None, repr=False)


def _int_var(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def check_secret(secret: Optional[str]) -> str:
    if secret is None or not secret.strip():
        raise ConfigurationError("JWT_SECRET is not set; refusing to start without a signing key")
    if secret.strip().lower() in KNOWN_PLACEHOLDER_SECRETS:
        raise ConfigurationError("JWT_SECRET is a known placeholder value; set a real signing key")
    if len(secret) < MIN_SECRET_LENGTH:
        raise ConfigurationError(f"JWT_SECRET must be at least {MIN_SECRET_LENGTH} characters long")
    return secret


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment, failing fast on unsafe values."""
    env = os.environ if env is None else env

    rounds = _int_var(env, "BCRYPT_ROUNDS", 12)
    if not 4 <= rounds <= 31:
        raise ConfigurationError(f"BCRYPT_ROUNDS must be between 4 and 31, got {rounds}")
    expire_hours = _int_var(env, "TOKEN_EXPIRE_HOURS", 24)
    if expire_hours < 1:
        raise ConfigurationError(f"TOKEN_EXPIRE_HOURS must be positive, got {expire_hours}")

    return Settings(
        jwt_secret=check_secret(env.get("JWT_SECRET")),
        token_expire_hours=expire_hours,
        database_path=env.get("DATABASE_PATH") or "./database.json",
        bcrypt_rounds=rounds,
        environment=(env.get("ENVIRONMENT") or "development").lower(),
        admin_username=env.get("ADMIN_USERNAME") or None,
        admin_email=env.get("ADMIN_EMAIL") or None,
        admin_password=env.get("ADMIN_PASSWORD") or None,
    )
