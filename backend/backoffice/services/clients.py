from datetime import date

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from backoffice.core.errors import Conflict, InvalidInput, NotFound
from backoffice.core.namespace import canonical_document_number
from backoffice.core.paging import paginate_query
from backoffice.db.models.client import Client
from backoffice.db.models.client_document import ClientDocument
from backoffice.db.models.user import User

CLIENT_FIELDS = (
    "full_name",
    "document_type",
    "document_number",
    "birth_date",
    "phone",
    "email",
    "address",
    "contact_info",
)
OWNER_EDITABLE_FIELDS = ("phone", "email", "address", "contact_info")


def _clean(value):
    if isinstance(value, str):
        return value.strip() or None
    return value


def serialize_client(client: Client, *, include_owner: bool = True) -> dict:
    data = {
        "id": client.id,
        "user_id": client.user_id,
        "assigned_admin_id": client.assigned_admin_id,
        "full_name": client.full_name,
        "document_type": client.document_type,
        "document_number": client.document_number,
        "birth_date": client.birth_date.isoformat() if isinstance(client.birth_date, date) else None,
        "phone": client.phone,
        "email": client.email,
        "address": client.address,
        "contact_info": client.contact_info,
        "created_at": client.created_at.isoformat() if client.created_at else None,
        "updated_at": client.updated_at.isoformat() if client.updated_at else None,
    }
    if include_owner and client.user is not None:
        data["user"] = {
            "id": client.user.id,
            "name": client.user.name,
            "email": client.user.email,
            "roles": client.user.role_names,
            "active": bool(client.user.is_active),
        }
    if include_owner and client.assigned_admin is not None:
        data["assigned_admin"] = {
            "id": client.assigned_admin.id,
            "name": client.assigned_admin.name,
            "email": client.assigned_admin.email,
        }
    return data


def get_client_or_none(db: Session, client_id: int) -> Client | None:
    return db.get(Client, client_id)


def get_client_for_user(db: Session, user_id: int) -> Client | None:
    return db.query(Client).filter(Client.user_id == user_id).first()


def get_client_by_document_number(db: Session, document_number: str | None) -> Client | None:
    if not document_number:
        return None
    return db.query(Client).filter(Client.document_number == document_number).first()


def _ensure_document_number_free(db: Session, document_number: str | None, *, exclude_id: int | None = None) -> None:
    if not document_number:
        return
    existing = get_client_by_document_number(db, document_number)
    if existing is not None and existing.id != exclude_id:
        raise Conflict("Document number already belongs to another client")


def _ensure_no_stored_documents(db: Session, client: Client) -> None:
    # Stored keys embed the document number.
    stored = (
        db.query(ClientDocument)
        .filter(ClientDocument.client_id == client.id, ClientDocument.is_active.is_(True))
        .first()
    )
    if stored is not None:
        raise Conflict("Client has stored documents under the current document number")


def _require_admin_user(db: Session, admin_id: int) -> User:
    admin = db.get(User, admin_id)
    if admin is None or not admin.is_admin:
        raise InvalidInput("Assigned admin must be an existing admin user")
    return admin


def create_client(db: Session, *, user_id: int, fields: dict, assigned_admin_id: int | None = None) -> Client:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    if get_client_for_user(db, user.id) is not None:
        raise Conflict("User already has a client profile")

    values = {name: _clean(fields.get(name)) for name in CLIENT_FIELDS}
    values["full_name"] = values["full_name"] or user.name
    values["document_number"] = canonical_document_number(values["document_number"] or user.document_number)
    values["phone"] = values["phone"] or user.phone
    values["email"] = (values["email"] or user.email).lower()
    _ensure_document_number_free(db, values["document_number"])
    if assigned_admin_id is not None:
        _require_admin_user(db, assigned_admin_id)

    client = Client(user_id=user.id, assigned_admin_id=assigned_admin_id, **values)
    db.add(client)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("User already has a client profile") from exc
    return client


def update_client(db: Session, client: Client, fields: dict, *, allowed: tuple[str, ...] = CLIENT_FIELDS) -> dict:
    changes: dict = {}
    for name in allowed:
        if name not in fields or fields[name] is None:
            continue
        value = _clean(fields[name])
        if name == "full_name" and not value:
            raise InvalidInput("Full name cannot be empty")
        if name == "email" and value:
            value = value.lower()
        if name == "document_number":
            value = canonical_document_number(value)
            if value != client.document_number:
                _ensure_document_number_free(db, value, exclude_id=client.id)
                _ensure_no_stored_documents(db, client)
        if getattr(client, name) != value:
            changes[name] = value
            setattr(client, name, value)
    db.flush()
    return changes


def assign_admin(db: Session, client: Client, admin_id: int | None) -> bool:
    if admin_id is not None:
        _require_admin_user(db, admin_id)
    if client.assigned_admin_id == admin_id:
        return False
    client.assigned_admin_id = admin_id
    db.flush()
    return True


def release_admin_assignments(db: Session, admin_id: int) -> list[int]:
    """Unassign every client handled by ``admin_id``; returns their ids."""
    clients = db.query(Client).filter(Client.assigned_admin_id == admin_id).order_by(Client.id.asc()).all()
    for client in clients:
        client.assigned_admin_id = None
    db.flush()
    return [client.id for client in clients]


def list_clients(db: Session, *, q: str = "", assigned_admin_id: int | None = None, page: int = 1, page_size: int = 20):
    query = db.query(Client).join(User, Client.user_id == User.id).options(
        joinedload(Client.user),
        joinedload(Client.assigned_admin),
    )
    if q.strip():
        pattern = f"%{q.strip()}%"
        query = query.filter(
            or_(
                Client.full_name.ilike(pattern),
                Client.document_number.ilike(pattern),
                User.email.ilike(pattern),
            )
        )
    if assigned_admin_id is not None:
        query = query.filter(Client.assigned_admin_id == assigned_admin_id)
    query = query.order_by(Client.full_name.asc(), Client.id.asc())
    return paginate_query(query, page=page, page_size=page_size)
