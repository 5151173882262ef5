import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from backoffice.core.config import Settings, get_settings
from backoffice.core.errors import Unauthenticated
from backoffice.core.roles import Role, normalize_roles

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
REFRESH_COOKIE_NAME = "refreshToken"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Identity snapshot carried by an access token."""

    user_id: int
    email: str
    name: str
    roles: tuple[Role, ...]
    active: bool = True

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @property
    def subject(self) -> str:
        return str(self.user_id)


def _get_secret(name: str) -> str:
    secret = os.getenv(name)
    if not secret:
        raise RuntimeError(f"{name} is not set")
    return secret


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def burn_password_check() -> None:
    # Keeps the "unknown email" path as slow as a real verification.
    pwd_context.dummy_verify()


def _encode(payload: dict, secret_name: str, ttl: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = payload.copy()
    to_encode.update({"iat": now, "exp": now + ttl})
    return jwt.encode(to_encode, _get_secret(secret_name), algorithm=ALGORITHM)


def _decode(token: str, secret_name: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(token, _get_secret(secret_name), algorithms=[ALGORITHM])
    except ExpiredSignatureError as exc:
        raise Unauthenticated("Token expired") from exc
    except JWTError as exc:
        raise Unauthenticated("Invalid token") from exc
    if payload.get("type") != expected_type:
        raise Unauthenticated("Invalid token type")
    return payload


def _subject_id(payload: dict) -> int:
    sub = str(payload.get("sub") or "")
    if not sub.isdigit():
        raise Unauthenticated("Invalid token")
    return int(sub)


def create_access_token(user, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "name": user.name,
        "roles": [role.value for role in normalize_roles(user.role)],
        "active": bool(user.is_active),
        "type": ACCESS_TOKEN_TYPE,
    }
    return _encode(payload, "ACCESS_TOKEN_SECRET", timedelta(minutes=settings.access_token_expire_minutes))


def create_refresh_token(user, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    payload = {"sub": str(user.id), "type": REFRESH_TOKEN_TYPE}
    return _encode(payload, "REFRESH_TOKEN_SECRET", timedelta(days=settings.refresh_token_expire_days))


def decode_access_token(token: str) -> Principal:
    payload = _decode(token, "ACCESS_TOKEN_SECRET", ACCESS_TOKEN_TYPE)
    return Principal(
        user_id=_subject_id(payload),
        email=str(payload.get("email") or ""),
        name=str(payload.get("name") or ""),
        roles=tuple(normalize_roles(payload.get("roles"))),
        active=payload.get("active") is not False,
    )


def decode_refresh_token(token: str) -> int:
    return _subject_id(_decode(token, "REFRESH_TOKEN_SECRET", REFRESH_TOKEN_TYPE))


def refresh_cookie_options(settings: Settings | None = None) -> dict:
    settings = settings or get_settings()
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "none" if settings.is_production else "lax",
        "max_age": settings.refresh_token_expire_days * 24 * 60 * 60,
        "path": "/",
    }


def get_current_principal(token: str | None = Depends(oauth2_scheme)) -> Principal:
    if not token:
        raise Unauthenticated("Not authenticated")
    principal = decode_access_token(token)
    if not principal.active:
        raise Unauthenticated("Account is not active")
    return principal
