import logging

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backoffice.core.api_response import paged_meta, success_response_payload
from backoffice.core.config import get_settings
from backoffice.core.errors import InvalidInput
from backoffice.core.metrics import increment_counter
from backoffice.core.namespace import KeyNamespace, canonical_document_number
from backoffice.core.observability import log_business_event
from backoffice.core.permissions import Action, authorize_client, require_action
from backoffice.core.security import Principal, get_current_principal
from backoffice.db.session import get_db
from backoffice.services.audit import log_admin_action
from backoffice.services.clients import get_client_by_document_number
from backoffice.services.documents import (
    create_folder,
    delete_document,
    download_url,
    list_client_documents,
    list_recent,
    purge_client_documents,
    serialize_document,
    storage_actor_for,
    upload_document,
)
from backoffice.storage.object_store import ObjectStore, get_object_store

router = APIRouter(prefix="/api/docs", tags=["docs"])
logger = logging.getLogger(__name__)


class FolderIn(BaseModel):
    subfolder: str


def get_key_namespace() -> KeyNamespace:
    return KeyNamespace.from_settings(get_settings())


@router.get("/health")
def docs_health(
    request: Request,
    store: ObjectStore = Depends(get_object_store),
    _principal: Principal = Depends(get_current_principal),
):
    settings = get_settings()
    return success_response_payload(
        request,
        data={
            "storage_configured": bool(store.bucket),
            "base_prefix": settings.s3_base_prefix,
            "allowed_folders": settings.docs_allowed_folders,
            "max_file_mb": settings.docs_max_file_mb,
        },
    )


@router.post("/upload", status_code=201)
async def upload(
    request: Request,
    file: UploadFile = File(...),
    subfolder: str | None = Form(default=None),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    namespace: KeyNamespace = Depends(get_key_namespace),
    principal: Principal = Depends(get_current_principal),
):
    settings = get_settings()
    body = await file.read()
    actor = storage_actor_for(db, principal)
    result = upload_document(
        db,
        store,
        namespace,
        principal=principal,
        actor=actor,
        subfolder=subfolder,
        file_name=file.filename or "",
        content_type=file.content_type,
        body=body,
        max_bytes=settings.docs_max_file_mb * 1024 * 1024,
    )
    increment_counter("docs_upload_total")
    log_business_event(logger, request, event="docs.upload", key=result["key"], size=result["size"])
    return success_response_payload(request, data=result)


@router.post("/folder", status_code=201)
def make_folder(
    payload: FolderIn,
    request: Request,
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    namespace: KeyNamespace = Depends(get_key_namespace),
    principal: Principal = Depends(get_current_principal),
):
    result = create_folder(store, namespace, actor=storage_actor_for(db, principal), subfolder=payload.subfolder)
    return success_response_payload(request, data=result)


@router.get("/recent")
def recent(
    request: Request,
    subfolder: str | None = None,
    limit: int = 10,
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    namespace: KeyNamespace = Depends(get_key_namespace),
    principal: Principal = Depends(get_current_principal),
):
    result = list_recent(store, namespace, actor=storage_actor_for(db, principal), subfolder=subfolder, limit=limit)
    return success_response_payload(request, data=result)


@router.get("/download-url")
def get_download_url(
    key: str,
    request: Request,
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    namespace: KeyNamespace = Depends(get_key_namespace),
    principal: Principal = Depends(get_current_principal),
):
    result = download_url(
        db,
        store,
        namespace,
        actor=storage_actor_for(db, principal),
        key=key,
        expires_in=get_settings().docs_signed_url_ttl,
    )
    increment_counter("docs_download_total")
    return success_response_payload(request, data=result)


@router.delete("/object")
def delete_object(
    key: str,
    request: Request,
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    namespace: KeyNamespace = Depends(get_key_namespace),
    principal: Principal = Depends(get_current_principal),
):
    delete_document(db, store, namespace, actor=storage_actor_for(db, principal), key=key)
    increment_counter("docs_delete_total")
    log_business_event(logger, request, event="docs.delete", key=key, user_id=principal.user_id)
    return success_response_payload(request, data={"deleted": True, "key": key})


@router.get("/clients/{document_number}/documents")
def client_documents(
    document_number: str,
    request: Request,
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    client = get_client_by_document_number(db, canonical_document_number(document_number))
    client = authorize_client(db, principal, client, Action.READ_DOCUMENT)
    documents, total, safe_page, safe_page_size = list_client_documents(
        db,
        document_number=client.document_number,
        page=page,
        page_size=page_size,
    )
    return success_response_payload(
        request,
        data={"items": [serialize_document(d) for d in documents]},
        meta=paged_meta(total=total, page=safe_page, page_size=safe_page_size),
    )


@router.delete("/clients/{document_number}")
def purge_client(
    document_number: str,
    request: Request,
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    namespace: KeyNamespace = Depends(get_key_namespace),
    admin: Principal = Depends(require_action(Action.PURGE_CLIENT_DOCUMENTS)),
):
    number = canonical_document_number(document_number)
    if not number:
        raise InvalidInput("Document number required")
    result = purge_client_documents(db, store, namespace, document_number=number)
    log_admin_action(db, request, admin, "client_documents_purge", meta_json=result)
    db.commit()
    return success_response_payload(request, data=result)
