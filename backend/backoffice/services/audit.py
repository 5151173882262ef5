import logging

from fastapi import Request
from sqlalchemy.orm import Session

from backoffice.core.clock import utc_now_naive
from backoffice.core.metrics import increment_counter
from backoffice.core.observability import client_ip, log_business_event
from backoffice.core.security import Principal
from backoffice.db.models.admin_audit_log import AdminAuditLog

logger = logging.getLogger(__name__)


def log_admin_action(
    db: Session,
    request: Request,
    actor: Principal,
    action: str,
    *,
    target_user_id: int | None = None,
    target_email: str | None = None,
    meta_json: dict | None = None,
) -> AdminAuditLog:
    entry = AdminAuditLog(
        actor_user_id=actor.user_id,
        target_user_id=target_user_id,
        target_email=target_email,
        action=action,
        meta_json=meta_json,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent", "")[:255] or None,
        created_at=utc_now_naive(),
    )
    db.add(entry)
    db.flush()
    increment_counter("admin_action_total", action=action)
    log_business_event(
        logger,
        request,
        event="admin.action",
        action=action,
        actor_email=actor.email,
        target_email=target_email or "-",
    )
    return entry
