import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from backoffice.api.admin import router as admin_router
from backoffice.api.auth import router as auth_router
from backoffice.api.clients import router as clients_router
from backoffice.api.docs import router as docs_router
from backoffice.api.tasks import router as tasks_router
from backoffice.core.api_response import error_response_payload, get_request_id, success_response_payload
from backoffice.core.config import get_settings
from backoffice.core.metrics import increment_counter, snapshot_metrics
from backoffice.core.permissions import Action, require_action
from backoffice.core.security import Principal
from backoffice.db.session import SessionLocal
from backoffice.services.provisioning import provision_admins
from backoffice.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if getattr(app.state, "object_store", None) is None:
        app.state.object_store = ObjectStore.from_settings(settings)
    if settings.admin_emails:
        db: Session = SessionLocal()
        try:
            result = provision_admins(db, settings.admin_emails)
            logger.info(
                "admin_provisioning promoted=%s unchanged=%s preapproved=%s",
                result.promoted,
                result.unchanged,
                result.preapproved,
            )
        finally:
            db.close()
    yield


app = FastAPI(title="Back Office API", lifespan=lifespan)
app.include_router(auth_router)
app.include_router(admin_router)
app.include_router(clients_router)
app.include_router(docs_router)
app.include_router(tasks_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    request.state.request_id = request_id
    started_at = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started_at) * 1000
    response.headers["X-Request-ID"] = request_id
    if request.url.path != "/api/metrics":
        increment_counter(
            "http_requests_total",
            method=request.method.upper(),
            path=request.url.path,
            status=str(response.status_code),
        )
    logger.info(
        "http_request request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


def _count_error(request: Request, code: str) -> None:
    increment_counter(
        "http_errors_total",
        code=code,
        path=request.url.path,
        method=request.method.upper(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    _count_error(request, str(exc.status_code))
    return JSONResponse(
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
        content=error_response_payload(
            request,
            code=getattr(exc, "code", None) or f"http_{exc.status_code}",
            message=message,
        ),
    )


def _validation_details(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": str(err.get("msg", "")), "type": str(err.get("type", ""))}
        for err in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    _count_error(request, "422")
    return JSONResponse(
        status_code=422,
        content=error_response_payload(
            request,
            code="validation_error",
            message="Validation error",
            details=_validation_details(exc),
        ),
    )


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    _count_error(request, "409")
    logger.warning("integrity_error request_id=%s error=%s", get_request_id(request), exc.orig)
    return JSONResponse(
        status_code=409,
        content=error_response_payload(request, code="conflict", message="Conflicting record"),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    _count_error(request, "500")
    logger.exception("Unhandled error request_id=%s", get_request_id(request), exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_response_payload(
            request,
            code="internal_error",
            message="Internal server error",
        ),
    )


@app.get("/health")
def health(request: Request):
    return {"ok": True, "status": "ok", "request_id": get_request_id(request)}


@app.get("/api/metrics")
def metrics(request: Request, _: Principal = Depends(require_action(Action.VIEW_METRICS))):
    return success_response_payload(request, data={"counters": snapshot_metrics()})
