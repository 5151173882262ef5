import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backoffice.core.api_response import paged_meta, success_response_payload
from backoffice.core.errors import Forbidden, NotFound
from backoffice.core.metrics import increment_counter
from backoffice.core.observability import log_business_event
from backoffice.core.permissions import (
    Action,
    can_edit_task,
    can_view_task,
    require_action,
    task_assignee_filter,
)
from backoffice.core.security import Principal, get_current_principal
from backoffice.db.models.task import Task
from backoffice.db.session import get_db
from backoffice.services.tasks import (
    add_comment,
    create_task,
    dashboard_stats,
    get_active_task,
    list_tasks,
    serialize_comment,
    serialize_task,
    soft_delete_task,
    update_task,
)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


class TaskCreateIn(BaseModel):
    title: str
    assigned_to_id: int
    due_date: datetime
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    category: str | None = None
    client_id: int | None = None
    client_name: str | None = None
    case_number: str | None = None
    tags: list[str] | None = None
    estimated_hours: float | None = None


class TaskUpdateIn(BaseModel):
    title: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    category: str | None = None
    due_date: datetime | None = None
    assigned_to_id: int | None = None
    client_id: int | None = None
    client_name: str | None = None
    case_number: str | None = None
    tags: list[str] | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None


class CommentIn(BaseModel):
    text: str


def _visible_task(db: Session, principal: Principal, task_id: int) -> Task:
    task = get_active_task(db, task_id)
    if not can_view_task(principal, task):
        raise NotFound("Task not found")
    return task


@router.get("")
def list_all(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    priority: str | None = None,
    assigned_to: int | None = None,
    client_id: int | None = None,
    search: str | None = None,
    mine: bool = False,
    overdue: bool = False,
    upcoming: bool = False,
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    tasks, total, safe_page, safe_page_size = list_tasks(
        db,
        assignee_id=task_assignee_filter(principal, assigned_to=assigned_to, mine=mine),
        status=status_filter,
        priority=priority,
        client_id=client_id,
        search=search,
        overdue=overdue,
        upcoming=upcoming,
        page=page,
        page_size=page_size,
    )
    return success_response_payload(
        request,
        data={"items": [serialize_task(t) for t in tasks]},
        meta=paged_meta(total=total, page=safe_page, page_size=safe_page_size),
    )


@router.get("/stats/dashboard")
def dashboard(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return success_response_payload(request, data=dashboard_stats(db, principal))


@router.get("/{task_id}")
def get_one(
    task_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    task = _visible_task(db, principal, task_id)
    return success_response_payload(request, data=serialize_task(task, with_comments=True))


@router.post("", status_code=status.HTTP_201_CREATED)
def create(
    payload: TaskCreateIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.CREATE_TASK)),
):
    task = create_task(db, creator=admin, data=payload.model_dump())
    db.commit()
    db.refresh(task)
    increment_counter("tasks_total", action="create")
    log_business_event(logger, request, event="tasks.create", task_id=task.id, assigned_to=task.assigned_to_id)
    return success_response_payload(request, data=serialize_task(task))


@router.patch("/{task_id}")
def update(
    task_id: int,
    payload: TaskUpdateIn,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    task = _visible_task(db, principal, task_id)
    if not can_edit_task(principal, task):
        raise Forbidden("You cannot edit this task")
    update_task(db, task, editor=principal, data=payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(task)
    increment_counter("tasks_total", action="update")
    return success_response_payload(request, data=serialize_task(task))


@router.delete("/{task_id}")
def delete(
    task_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_action(Action.DELETE_TASK)),
):
    task = get_active_task(db, task_id)
    soft_delete_task(db, task)
    db.commit()
    increment_counter("tasks_total", action="delete")
    log_business_event(logger, request, event="tasks.delete", task_id=task_id, actor=admin.email)
    return success_response_payload(request, data={"deleted": True, "id": task_id})


@router.post("/{task_id}/comments", status_code=status.HTTP_201_CREATED)
def comment(
    task_id: int,
    payload: CommentIn,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    task = _visible_task(db, principal, task_id)
    created = add_comment(db, task, author=principal, text=payload.text)
    db.commit()
    db.refresh(created)
    return success_response_payload(request, data=serialize_comment(created))
