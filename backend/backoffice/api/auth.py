import logging

from fastapi import APIRouter, Cookie, Depends, Request, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backoffice.core.api_response import success_response_payload
from backoffice.core.config import get_settings
from backoffice.core.errors import AppError, Unauthenticated
from backoffice.core.metrics import increment_counter
from backoffice.core.observability import log_business_event
from backoffice.core.rate_limit import check_rate_limit, record_attempt
from backoffice.core.security import (
    REFRESH_COOKIE_NAME,
    Principal,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_current_principal,
    refresh_cookie_options,
)
from backoffice.db.models.user import User
from backoffice.db.session import get_db
from backoffice.services.accounts import (
    authenticate,
    get_user_or_404,
    normalize_email,
    register_account,
    serialize_user,
    user_for_refresh,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class RegisterIn(BaseModel):
    name: str
    email: str
    password: str
    roles: list[str] | str | None = None
    document_number: str | None = None
    phone: str | None = None


class LoginIn(BaseModel):
    email: str
    password: str


def _issue_session(response: Response, user: User) -> dict:
    settings = get_settings()
    response.set_cookie(REFRESH_COOKIE_NAME, create_refresh_token(user, settings), **refresh_cookie_options(settings))
    return {
        "access_token": create_access_token(user, settings),
        "token_type": "bearer",
        "user": serialize_user(user),
    }


def _clear_session(response: Response) -> None:
    options = refresh_cookie_options()
    response.delete_cookie(
        REFRESH_COOKIE_NAME,
        path=options["path"],
        secure=options["secure"],
        httponly=options["httponly"],
        samesite=options["samesite"],
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, request: Request, db: Session = Depends(get_db)):
    increment_counter("auth_register_total")
    user = register_account(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        roles=payload.roles,
        document_number=payload.document_number,
        phone=payload.phone,
    )
    log_business_event(logger, request, event="auth.register", email=user.email, roles=",".join(user.role_names))
    return success_response_payload(
        request,
        data={
            "message": "Registration received. An administrator must activate the account.",
            "pending_activation": True,
            "user": serialize_user(user),
        },
    )


@router.post("/login")
def login(payload: LoginIn, request: Request, response: Response, db: Session = Depends(get_db)):
    settings = get_settings()
    email = normalize_email(payload.email)
    check_rate_limit(
        db,
        email,
        "login",
        limit=settings.login_rate_limit,
        window_minutes=settings.login_rate_window_minutes,
    )
    try:
        user = authenticate(db, email=email, password=payload.password)
    except AppError:
        record_attempt(db, email, "login", succeeded=False)
        increment_counter("auth_login_total", result="rejected")
        log_business_event(logger, request, event="auth.login", result="rejected", email=email)
        raise
    record_attempt(db, email, "login", succeeded=True)
    increment_counter("auth_login_total", result="success")
    log_business_event(logger, request, event="auth.login", result="success", email=email)
    return success_response_payload(request, data=_issue_session(response, user))


@router.post("/refresh")
def refresh(
    request: Request,
    response: Response,
    refresh_token: str | None = Cookie(default=None, alias=REFRESH_COOKIE_NAME),
    db: Session = Depends(get_db),
):
    if not refresh_token:
        raise Unauthenticated("Missing refresh token")
    user = user_for_refresh(db, decode_refresh_token(refresh_token))
    increment_counter("auth_refresh_total")
    return success_response_payload(request, data=_issue_session(response, user))


@router.post("/logout")
def logout(request: Request, response: Response):
    _clear_session(response)
    return success_response_payload(request, data={"message": "Logged out"})


@router.get("/me")
def me(request: Request, principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return success_response_payload(request, data=serialize_user(get_user_or_404(db, principal.user_id)))
