import logging
from datetime import date

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backoffice.core.api_response import paged_meta, success_response_payload
from backoffice.core.errors import NotFound
from backoffice.core.permissions import Action, authorize_client, require_action
from backoffice.core.security import Principal, get_current_principal
from backoffice.db.session import get_db
from backoffice.services.audit import log_admin_action
from backoffice.services.clients import (
    CLIENT_FIELDS,
    OWNER_EDITABLE_FIELDS,
    assign_admin,
    create_client,
    get_client_for_user,
    get_client_or_none,
    list_clients,
    serialize_client,
    update_client,
)

router = APIRouter(prefix="/api/clients", tags=["clients"])
logger = logging.getLogger(__name__)


class ClientFields(BaseModel):
    full_name: str | None = None
    document_type: str | None = None
    document_number: str | None = None
    birth_date: date | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    contact_info: str | None = None


class ClientCreateIn(ClientFields):
    user_id: int
    assigned_admin_id: int | None = None


class AssignAdminIn(BaseModel):
    admin_id: int | None = None


@router.post("", status_code=status.HTTP_201_CREATED)
def create(
    payload: ClientCreateIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.MANAGE_CLIENTS)),
):
    client = create_client(
        db,
        user_id=payload.user_id,
        fields=payload.model_dump(include=set(CLIENT_FIELDS)),
        assigned_admin_id=payload.assigned_admin_id,
    )
    log_admin_action(
        db,
        request,
        admin,
        "client_create",
        target_user_id=client.user_id,
        meta_json={"client_id": client.id, "document_number": client.document_number},
    )
    db.commit()
    db.refresh(client)
    return success_response_payload(request, data=serialize_client(client))


@router.get("")
def list_all(
    request: Request,
    q: str = "",
    assigned_admin_id: int | None = None,
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    _admin: Principal = Depends(require_action(Action.MANAGE_CLIENTS)),
):
    clients, total, safe_page, safe_page_size = list_clients(
        db,
        q=q,
        assigned_admin_id=assigned_admin_id,
        page=page,
        page_size=page_size,
    )
    return success_response_payload(
        request,
        data={"items": [serialize_client(c) for c in clients]},
        meta=paged_meta(total=total, page=safe_page, page_size=safe_page_size),
    )


@router.get("/me")
def my_client(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    client = get_client_for_user(db, principal.user_id)
    if client is None:
        raise NotFound("Client not found")
    return success_response_payload(request, data=serialize_client(client, include_owner=False))


@router.get("/{client_id}")
def get_one(
    client_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    client = authorize_client(db, principal, get_client_or_none(db, client_id), Action.READ_CLIENT)
    return success_response_payload(request, data=serialize_client(client, include_owner=principal.is_admin))


@router.patch("/{client_id}")
def update(
    client_id: int,
    payload: ClientFields,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    client = authorize_client(db, principal, get_client_or_none(db, client_id), Action.WRITE_CLIENT)
    allowed = CLIENT_FIELDS if principal.is_admin else OWNER_EDITABLE_FIELDS
    changes = update_client(db, client, payload.model_dump(exclude_unset=True), allowed=allowed)
    if changes and principal.is_admin:
        log_admin_action(
            db,
            request,
            principal,
            "client_update",
            target_user_id=client.user_id,
            meta_json={"client_id": client.id, "changes": {k: str(v) for k, v in changes.items()}},
        )
    db.commit()
    db.refresh(client)
    return success_response_payload(request, data=serialize_client(client, include_owner=principal.is_admin))


@router.post("/{client_id}/assign-admin")
def assign(
    client_id: int,
    payload: AssignAdminIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.ASSIGN_CLIENT)),
):
    client = get_client_or_none(db, client_id)
    if client is None:
        raise NotFound("Client not found")
    changed = assign_admin(db, client, payload.admin_id)
    if changed:
        log_admin_action(
            db,
            request,
            admin,
            "client_assign_admin",
            target_user_id=client.user_id,
            meta_json={"client_id": client.id, "admin_id": payload.admin_id},
        )
    db.commit()
    db.refresh(client)
    return success_response_payload(request, data={"changed": changed, "client": serialize_client(client)})
