"""Account lifecycle: registration, login, refresh and admin transitions.

Registration creates an inactive account; an admin activation is needed
before login succeeds. Role and activation transitions are idempotent.
"""
import logging
import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.core.clock import utc_now_naive
from backoffice.core.config import Settings, get_settings
from backoffice.core.errors import Conflict, Forbidden, InvalidInput, NotFound, Unauthenticated
from backoffice.core.namespace import canonical_document_number
from backoffice.core.roles import Role, normalize_roles
from backoffice.core.security import burn_password_check, hash_password, verify_password
from backoffice.db.models.client import Client
from backoffice.db.models.user import User
from backoffice.services.preapprovals import consume_preapproval, find_live_preapproval

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

INVALID_CREDENTIALS = "Invalid credentials"
ACCOUNT_PENDING = "Account pending activation"
ACCOUNT_DEACTIVATED = "Account is deactivated"

EDITABLE_USER_FIELDS = ("name", "document_number", "phone")


def normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def validate_email(email: str) -> None:
    if not EMAIL_RE.match(email):
        raise InvalidInput("Invalid email format")


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "roles": user.role_names,
        "active": bool(user.is_active),
        "document_number": user.document_number,
        "phone": user.phone,
        "activated_at": user.activated_at.isoformat() if user.activated_at else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def register_account(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    roles=None,
    document_number: str | None = None,
    phone: str | None = None,
    settings: Settings | None = None,
) -> User:
    settings = settings or get_settings()
    name = str(name or "").strip()
    email = normalize_email(email)
    if not name or not email or not password:
        raise InvalidInput("Name, email and password are required")
    validate_email(email)
    if len(password) < settings.password_min_length:
        raise InvalidInput(f"Password must be at least {settings.password_min_length} characters")

    if get_user_by_email(db, email) is not None:
        raise Conflict("Email is already registered")

    preapproval = find_live_preapproval(db, email)
    if preapproval is not None:
        role = preapproval.roles[0]
        consume_preapproval(preapproval)
    else:
        role = normalize_roles(roles)[0]

    user = User(
        name=name,
        email=email,
        hashed_password=hash_password(password),
        role=role.value,
        is_active=False,
        document_number=canonical_document_number(document_number),
        phone=(phone or "").strip() or None,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Email is already registered") from exc
    db.refresh(user)
    return user


def authenticate(db: Session, *, email: str, password: str) -> User:
    """Check credentials; unknown email and wrong password look identical."""
    user = get_user_by_email(db, email)
    if user is None:
        burn_password_check()
        raise Unauthenticated(INVALID_CREDENTIALS)
    if not verify_password(password or "", user.hashed_password):
        raise Unauthenticated(INVALID_CREDENTIALS)
    ensure_can_sign_in(user)
    return user


def ensure_can_sign_in(user: User) -> None:
    if user.is_active is False:
        raise Forbidden(ACCOUNT_PENDING if user.activated_at is None else ACCOUNT_DEACTIVATED)


def user_for_refresh(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise Unauthenticated("User not found")
    ensure_can_sign_in(user)
    return user


def set_admin_role(db: Session, user: User, *, grant: bool) -> bool:
    target = Role.ADMIN if grant else Role.USER
    if user.roles == [target]:
        return False
    user.role = target.value
    db.flush()
    return True


def set_active(db: Session, user: User, *, active: bool) -> bool:
    if bool(user.is_active) == active:
        return False
    user.is_active = active
    if active:
        user.activated_at = utc_now_naive()
    db.flush()
    return True


def update_user_fields(db: Session, user: User, fields: dict) -> dict:
    changes: dict = {}
    for name in EDITABLE_USER_FIELDS:
        if name not in fields or fields[name] is None:
            continue
        value = str(fields[name]).strip()
        if name == "name" and not value:
            raise InvalidInput("Name cannot be empty")
        value = value or None
        if name == "document_number":
            value = canonical_document_number(value)
        if getattr(user, name) != value:
            changes[name] = {"old": getattr(user, name), "new": value}
            setattr(user, name, value)
    db.flush()
    return changes


def delete_account(db: Session, user: User) -> None:
    if db.query(Client).filter(Client.user_id == user.id).first() is not None:
        raise Conflict("User still owns a client profile")
    db.delete(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("User is still referenced by other records") from exc
