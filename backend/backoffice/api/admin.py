import logging
from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.orm import Session

from backoffice.core.api_response import paged_meta, success_response_payload
from backoffice.core.errors import NotFound
from backoffice.core.paging import paginate_query
from backoffice.core.permissions import Action, require_action
from backoffice.core.roles import Role
from backoffice.core.security import Principal
from backoffice.db.models.admin_audit_log import AdminAuditLog
from backoffice.db.models.user import User
from backoffice.db.session import get_db
from backoffice.services.accounts import (
    delete_account,
    get_user_or_404,
    normalize_email,
    serialize_user,
    set_active,
    set_admin_role,
    update_user_fields,
    validate_email,
)
from backoffice.services.audit import log_admin_action
from backoffice.services.clients import release_admin_assignments
from backoffice.services.preapprovals import (
    delete_preapproval,
    list_preapprovals,
    serialize_preapproval,
    upsert_preapproval,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


class PreapprovalIn(BaseModel):
    email: str
    roles: list[str] | str | None = None
    days_valid: int | None = 30
    invited_by: str | None = None
    notes: str | None = None


class UserUpdateIn(BaseModel):
    name: str | None = None
    document_number: str | None = None
    phone: str | None = None


@router.post("/preapprovals", status_code=201)
def create_preapproval(
    payload: PreapprovalIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.MANAGE_PREAPPROVALS)),
):
    email = normalize_email(payload.email)
    validate_email(email)
    entry = upsert_preapproval(
        db,
        email=email,
        roles=payload.roles,
        days_valid=payload.days_valid,
        invited_by=payload.invited_by or admin.email,
        notes=payload.notes,
    )
    log_admin_action(
        db,
        request,
        admin,
        "preapproval_upsert",
        target_email=email,
        meta_json={"roles": [r.value for r in entry.roles], "days_valid": payload.days_valid},
    )
    db.commit()
    return success_response_payload(request, data=serialize_preapproval(entry))


@router.get("/preapprovals")
def get_preapprovals(
    request: Request,
    db: Session = Depends(get_db),
    _admin: Principal = Depends(require_action(Action.MANAGE_PREAPPROVALS)),
):
    items = list_preapprovals(db)
    return success_response_payload(request, data={"items": [serialize_preapproval(x) for x in items]})


@router.delete("/preapprovals/{email}")
def remove_preapproval(
    email: str,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.MANAGE_PREAPPROVALS)),
):
    email = normalize_email(email)
    if not delete_preapproval(db, email):
        raise NotFound("Preapproval not found")
    log_admin_action(db, request, admin, "preapproval_delete", target_email=email)
    db.commit()
    return success_response_payload(request, data={"ok": True, "email": email})


@router.get("/users")
def list_users(
    request: Request,
    status: Literal["all", "active", "pending", "deactivated"] = "all",
    role: Literal["admin", "user"] | None = None,
    q: str = "",
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    _admin: Principal = Depends(require_action(Action.LIST_USERS)),
):
    query = db.query(User)
    if status == "active":
        query = query.filter(User.is_active.is_(True))
    elif status == "pending":
        query = query.filter(User.is_active.is_(False), User.activated_at.is_(None))
    elif status == "deactivated":
        query = query.filter(User.is_active.is_(False), User.activated_at.is_not(None))
    if role is not None:
        query = query.filter(User.role == Role(role).value)
    if q.strip():
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(User.email.ilike(pattern), User.name.ilike(pattern)))
    query = query.order_by(User.id.asc())

    users, total, safe_page, safe_page_size = paginate_query(query, page=page, page_size=page_size)
    return success_response_payload(
        request,
        data={"items": [serialize_user(u) for u in users]},
        meta=paged_meta(total=total, page=safe_page, page_size=safe_page_size),
    )


@router.get("/users/{user_id}")
def get_user(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    _admin: Principal = Depends(require_action(Action.LIST_USERS)),
):
    return success_response_payload(request, data=serialize_user(get_user_or_404(db, user_id)))


@router.patch("/users/{user_id}")
def update_user(
    user_id: int,
    payload: UserUpdateIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.EDIT_USER)),
):
    user = get_user_or_404(db, user_id)
    changes = update_user_fields(db, user, payload.model_dump(exclude_unset=True))
    if changes:
        log_admin_action(
            db,
            request,
            admin,
            "update_user",
            target_user_id=user.id,
            target_email=user.email,
            meta_json={"changes": changes},
        )
    db.commit()
    return success_response_payload(request, data=serialize_user(user))


def _role_change(db: Session, request: Request, admin: Principal, user_id: int, *, grant: bool) -> dict:
    user = get_user_or_404(db, user_id)
    previous = user.role_names
    changed = set_admin_role(db, user, grant=grant)
    released: list[int] = []
    if changed and not grant:
        released = release_admin_assignments(db, user.id)
    if changed:
        log_admin_action(
            db,
            request,
            admin,
            "grant_admin" if grant else "revoke_admin",
            target_user_id=user.id,
            target_email=user.email,
            meta_json={"old_roles": previous, "new_roles": user.role_names, "released_client_ids": released},
        )
    db.commit()
    return success_response_payload(request, data={"changed": changed, "user": serialize_user(user)})


@router.post("/users/{user_id}/grant-admin")
def grant_admin(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.GRANT_ADMIN)),
):
    return _role_change(db, request, admin, user_id, grant=True)


@router.post("/users/{user_id}/revoke-admin")
def revoke_admin(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.REVOKE_ADMIN)),
):
    return _role_change(db, request, admin, user_id, grant=False)


def _activation(db: Session, request: Request, admin: Principal, user_id: int, *, active: bool) -> dict:
    user = get_user_or_404(db, user_id)
    changed = set_active(db, user, active=active)
    if changed:
        log_admin_action(
            db,
            request,
            admin,
            "activate" if active else "deactivate",
            target_user_id=user.id,
            target_email=user.email,
        )
    db.commit()
    return success_response_payload(request, data={"changed": changed, "user": serialize_user(user)})


@router.post("/users/{user_id}/activate")
def activate_user(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.SET_ACTIVE)),
):
    return _activation(db, request, admin, user_id, active=True)


@router.post("/users/{user_id}/deactivate")
def deactivate_user(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.SET_ACTIVE)),
):
    return _activation(db, request, admin, user_id, active=False)


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.DELETE_USER)),
):
    user = get_user_or_404(db, user_id)
    email = user.email
    delete_account(db, user)
    log_admin_action(db, request, admin, "delete_user", target_email=email, meta_json={"user_id": user_id})
    db.commit()
    return success_response_payload(request, data={"ok": True, "id": user_id})


@router.get("/audit")
def list_audit_logs(
    request: Request,
    action: str | None = None,
    page: int = 1,
    page_size: int = 50,
    db: Session = Depends(get_db),
    _admin: Principal = Depends(require_action(Action.VIEW_AUDIT)),
):
    query = db.query(AdminAuditLog)
    if action:
        query = query.filter(AdminAuditLog.action == action)
    query = query.order_by(AdminAuditLog.id.desc())
    rows, total, safe_page, safe_page_size = paginate_query(query, page=page, page_size=page_size)
    items = [
        {
            "id": row.id,
            "actor_user_id": row.actor_user_id,
            "target_user_id": row.target_user_id,
            "target_email": row.target_email,
            "action": row.action,
            "meta": row.meta_json or {},
            "ip": row.ip,
            "created_at": row.created_at.isoformat(),
        }
        for row in rows
    ]
    return success_response_payload(
        request,
        data={"items": items},
        meta=paged_meta(total=total, page=safe_page, page_size=safe_page_size),
    )
