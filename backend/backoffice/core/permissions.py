"""Authorization policy.

Every protected operation is decided here, in a fixed order:
authentication, coarse role gate, self-protection, then resource
ownership. The first failing step decides the outcome.
"""
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from backoffice.core.errors import AppError, Forbidden, NotFound, Unauthenticated
from backoffice.core.security import Principal, get_current_principal
from backoffice.db.models.client import Client
from backoffice.db.models.task import Task
from backoffice.db.models.user import User
from backoffice.db.session import get_db


class Action(str, Enum):
    MANAGE_PREAPPROVALS = "preapprovals.manage"
    LIST_USERS = "users.list"
    EDIT_USER = "users.edit"
    GRANT_ADMIN = "users.grant_admin"
    REVOKE_ADMIN = "users.revoke_admin"
    SET_ACTIVE = "users.set_active"
    DELETE_USER = "users.delete"
    MANAGE_CLIENTS = "clients.manage"
    ASSIGN_CLIENT = "clients.assign"
    PURGE_CLIENT_DOCUMENTS = "documents.purge"
    CREATE_TASK = "tasks.create"
    DELETE_TASK = "tasks.delete"
    VIEW_METRICS = "metrics.view"
    VIEW_AUDIT = "audit.view"
    READ_CLIENT = "clients.read"
    WRITE_CLIENT = "clients.write"
    READ_DOCUMENT = "documents.read"
    WRITE_DOCUMENT = "documents.write"


ADMIN_ACTIONS: frozenset[Action] = frozenset(
    {
        Action.MANAGE_PREAPPROVALS,
        Action.LIST_USERS,
        Action.EDIT_USER,
        Action.GRANT_ADMIN,
        Action.REVOKE_ADMIN,
        Action.SET_ACTIVE,
        Action.DELETE_USER,
        Action.MANAGE_CLIENTS,
        Action.ASSIGN_CLIENT,
        Action.PURGE_CLIENT_DOCUMENTS,
        Action.CREATE_TASK,
        Action.DELETE_TASK,
        Action.VIEW_METRICS,
        Action.VIEW_AUDIT,
    }
)

SELF_PROTECTED_ACTIONS: frozenset[Action] = frozenset(
    {Action.GRANT_ADMIN, Action.REVOKE_ADMIN, Action.SET_ACTIVE, Action.DELETE_USER}
)

OWNERSHIP_ACTIONS: frozenset[Action] = frozenset(
    {Action.READ_CLIENT, Action.WRITE_CLIENT, Action.READ_DOCUMENT, Action.WRITE_DOCUMENT}
)

SELF_PROTECTION_MESSAGES: dict[Action, str] = {
    Action.GRANT_ADMIN: "You cannot change your own role",
    Action.REVOKE_ADMIN: "You cannot change your own role",
    Action.SET_ACTIVE: "You cannot change your own activation state",
    Action.DELETE_USER: "You cannot delete your own account",
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    error: AppError | None = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(True)

    @classmethod
    def deny(cls, error: AppError) -> "Decision":
        return cls(False, error)

    @property
    def reason(self) -> str | None:
        return self.error.message if self.error else None

    def raise_for_deny(self) -> None:
        if self.error is not None:
            raise self.error


def authorize(
    principal: Principal | None,
    action: Action,
    *,
    target_user_id: int | None = None,
    caller_client: Client | None = None,
    owner_user_id: int | None = None,
) -> Decision:
    """Decide whether ``principal`` may perform ``action``.

    ``caller_client`` is the caller's own Client record, looked up fresh
    for the request; ``owner_user_id`` is the identity owning the target
    Client or document record, when there is one.
    """
    if principal is None or not principal.active:
        return Decision.deny(Unauthenticated())

    if action in ADMIN_ACTIONS and not principal.is_admin:
        return Decision.deny(Forbidden("Admin role required"))

    if action in SELF_PROTECTED_ACTIONS and target_user_id is not None and target_user_id == principal.user_id:
        return Decision.deny(Forbidden(SELF_PROTECTION_MESSAGES[action]))

    if action in OWNERSHIP_ACTIONS and not principal.is_admin:
        if caller_client is None or caller_client.user_id != principal.user_id:
            return Decision.deny(NotFound("Client not found"))
        if owner_user_id is not None and owner_user_id != principal.user_id:
            return Decision.deny(NotFound("Client not found"))

    return Decision.allow()


def resolve_caller_client(db: Session, principal: Principal) -> Client | None:
    return db.query(Client).filter(Client.user_id == principal.user_id).first()


def authorize_client(db: Session, principal: Principal, client: Client | None, action: Action) -> Client:
    """Ownership gate for a Client record; missing and foreign look the same."""
    caller_client = None if principal.is_admin else resolve_caller_client(db, principal)
    authorize(
        principal,
        action,
        caller_client=caller_client,
        owner_user_id=client.user_id if client is not None else None,
    ).raise_for_deny()
    if client is None:
        raise NotFound("Client not found")
    return client


def task_assignee_filter(principal: Principal, *, assigned_to: int | None = None, mine: bool = False) -> int | None:
    """Return the assignee id a task listing must be restricted to, if any."""
    if not principal.is_admin or mine:
        return principal.user_id
    return assigned_to


def can_view_task(principal: Principal, task: Task) -> bool:
    return principal.is_admin or task.assigned_to_id == principal.user_id


def can_edit_task(principal: Principal, task: Task) -> bool:
    return principal.is_admin or principal.user_id in {task.assigned_to_id, task.created_by_id}


def _path_user_id(request: Request) -> int | None:
    raw = request.path_params.get("user_id")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def require_action(action: Action):
    """FastAPI dependency enforcing the role gate and self-protection.

    Admin actions also re-read the caller's account so a revoked or
    deactivated admin cannot keep acting on a still-valid token.
    """

    def _dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
    ) -> Principal:
        authorize(principal, action, target_user_id=_path_user_id(request)).raise_for_deny()
        if action in ADMIN_ACTIONS:
            live = db.get(User, principal.user_id)
            if live is None or not live.is_active or not live.is_admin:
                raise Forbidden("Admin role required")
        return principal

    return _dependency
