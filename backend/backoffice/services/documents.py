import logging

from sqlalchemy.orm import Session

from backoffice.core.clock import utc_now_naive
from backoffice.core.errors import InvalidInput, NotFound
from backoffice.core.namespace import KeyNamespace, StorageActor
from backoffice.core.paging import paginate_query
from backoffice.core.security import Principal
from backoffice.db.models.client import Client
from backoffice.db.models.client_document import ClientDocument
from backoffice.services.clients import get_client_by_document_number, get_client_for_user
from backoffice.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

FOLDER_CONTENT_TYPE = "application/x-directory"
MAX_RECENT_LIMIT = 50


def storage_actor_for(db: Session, principal: Principal) -> StorageActor:
    """Build the storage actor from a fresh lookup of the caller's Client."""
    if principal.is_admin:
        return StorageActor(user_id=principal.subject, is_admin=True)
    client = get_client_for_user(db, principal.user_id)
    return StorageActor(
        user_id=principal.subject,
        is_admin=False,
        document_number=client.document_number if client is not None else None,
    )


def serialize_document(document: ClientDocument) -> dict:
    return {
        "id": document.id,
        "client_id": document.client_id,
        "document_number": document.document_number,
        "folder": document.folder,
        "file_name": document.file_name,
        "original_name": document.original_name,
        "size": document.file_size,
        "content_type": document.mime_type,
        "key": document.storage_key,
        "uploaded_by_id": document.uploaded_by_id,
        "uploaded_at": document.uploaded_at.isoformat() if document.uploaded_at else None,
        "last_accessed": document.last_accessed.isoformat() if document.last_accessed else None,
        "download_count": document.download_count,
        "is_active": document.is_active,
        "metadata": document.meta_json or {},
    }


def _client_for_number(db: Session, document_number: str) -> Client:
    client = get_client_by_document_number(db, document_number)
    if client is None:
        raise NotFound("Client not found")
    return client


def upload_document(
    db: Session,
    store: ObjectStore,
    namespace: KeyNamespace,
    *,
    principal: Principal,
    actor: StorageActor,
    subfolder: str | None,
    file_name: str,
    content_type: str | None,
    body: bytes,
    max_bytes: int,
) -> dict:
    if len(body) > max_bytes:
        raise InvalidInput("File is too large")
    resolved = namespace.resolve_key(actor, subfolder, file_name)
    folder = resolved.folder
    content_type = content_type or "application/octet-stream"

    client = None
    if folder.client_scoped:
        client = _client_for_number(db, folder.document_number)

    store.put(
        resolved.key,
        body,
        content_type,
        metadata={"user-id": actor.user_id, "folder": folder.path},
    )

    record = None
    if client is not None:
        now = utc_now_naive()
        record = db.query(ClientDocument).filter(ClientDocument.storage_key == resolved.key).first()
        if record is None:
            record = ClientDocument(storage_key=resolved.key, download_count=0, uploaded_at=now)
            db.add(record)
        record.client_id = client.id
        record.document_number = folder.document_number
        record.folder = folder.path
        record.file_name = resolved.file_name
        record.original_name = file_name or resolved.file_name
        record.file_size = len(body)
        record.mime_type = content_type
        record.uploaded_by_id = principal.user_id
        record.uploaded_at = now
        record.is_active = True
        record.meta_json = {"uploaded_by_email": principal.email}
        db.commit()

    return {
        "key": resolved.key,
        "name": resolved.file_name,
        "folder": folder.path,
        "size": len(body),
        "content_type": content_type,
        "document_id": record.id if record is not None else None,
    }


def create_folder(store: ObjectStore, namespace: KeyNamespace, *, actor: StorageActor, subfolder: str | None) -> dict:
    if not str(subfolder or "").strip():
        raise InvalidInput("Subfolder required")
    folder = namespace.parse_folder(actor, subfolder)
    if folder.client_scoped and not folder.document_number:
        raise InvalidInput("Client document number required")
    prefix = namespace.folder_prefix(actor, folder)
    store.put(prefix, b"", FOLDER_CONTENT_TYPE, metadata={"user-id": actor.user_id, "folder": folder.path})
    return {"folder": folder.path, "key": prefix, "created": True}


def list_recent(
    store: ObjectStore,
    namespace: KeyNamespace,
    *,
    actor: StorageActor,
    subfolder: str | None,
    limit: int = 10,
) -> dict:
    limit = max(1, min(limit, MAX_RECENT_LIMIT))
    prefix = namespace.resolve_prefix(actor, subfolder)
    objects = [obj for obj in store.list(prefix, max_keys=limit * 5) if not obj.key.endswith("/")]
    objects.sort(key=lambda obj: obj.last_modified.timestamp() if obj.last_modified else 0, reverse=True)
    items = [
        {
            "key": obj.key,
            "name": obj.name,
            "size": obj.size,
            "last_modified": obj.last_modified.isoformat() if obj.last_modified else None,
        }
        for obj in objects[:limit]
    ]
    return {"items": items, "prefix": prefix}


def download_url(
    db: Session,
    store: ObjectStore,
    namespace: KeyNamespace,
    *,
    actor: StorageActor,
    key: str,
    expires_in: int,
) -> dict:
    key = namespace.authorize_key(actor, key)
    record = db.query(ClientDocument).filter(ClientDocument.storage_key == key).first()
    url = store.signed_download_url(key, expires_in, filename=record.original_name if record else None)
    if record is not None:
        record.download_count = (record.download_count or 0) + 1
        record.last_accessed = utc_now_naive()
        db.commit()
    return {"url": url, "key": key, "expires_in": expires_in}


def delete_document(db: Session, store: ObjectStore, namespace: KeyNamespace, *, actor: StorageActor, key: str) -> None:
    key = namespace.authorize_key(actor, key)
    store.delete(key)
    deleted = db.query(ClientDocument).filter(ClientDocument.storage_key == key).delete(synchronize_session=False)
    db.commit()
    logger.info("document_deleted key=%s records=%s", key, deleted)


def list_client_documents(db: Session, *, document_number: str, page: int = 1, page_size: int = 20):
    query = (
        db.query(ClientDocument)
        .filter(ClientDocument.document_number == document_number, ClientDocument.is_active.is_(True))
        .order_by(ClientDocument.uploaded_at.desc(), ClientDocument.id.desc())
    )
    return paginate_query(query, page=page, page_size=page_size)


def purge_client_documents(db: Session, store: ObjectStore, namespace: KeyNamespace, *, document_number: str) -> dict:
    prefix = namespace.client_prefix(document_number)
    objects_deleted = store.delete_prefix(prefix)
    records_deleted = (
        db.query(ClientDocument)
        .filter(ClientDocument.storage_key.startswith(prefix, autoescape=True))
        .delete(synchronize_session=False)
    )
    db.commit()
    return {"prefix": prefix, "objects_deleted": objects_deleted, "records_deleted": int(records_deleted or 0)}


def sync_documents(db: Session, store: ObjectStore) -> dict:
    """Drop metadata rows whose object no longer exists in the store."""
    checked = 0
    orphaned: list[str] = []
    for record in db.query(ClientDocument).all():
        checked += 1
        if not store.exists(record.storage_key):
            orphaned.append(record.storage_key)
            db.delete(record)
    db.commit()
    for key in orphaned:
        logger.info("document_orphan_removed key=%s", key)
    return {"checked": checked, "orphaned": len(orphaned)}
