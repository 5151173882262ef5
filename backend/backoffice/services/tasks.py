import math
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session, joinedload

from backoffice.core.clock import to_naive_utc, utc_now_naive
from backoffice.core.errors import InvalidInput, NotFound
from backoffice.core.paging import paginate_query
from backoffice.core.security import Principal
from backoffice.db.models.client import Client
from backoffice.db.models.task import (
    OPEN_TASK_STATUSES,
    TASK_CATEGORIES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    Task,
    TaskComment,
)
from backoffice.db.models.user import User

UPCOMING_LIST_DAYS = 7
UPCOMING_DASHBOARD_DAYS = 3
EDITABLE_TASK_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "category",
    "due_date",
    "client_name",
    "case_number",
    "tags",
    "estimated_hours",
    "actual_hours",
)


def is_overdue(task: Task, now: datetime | None = None) -> bool:
    now = now or utc_now_naive()
    return task.status in OPEN_TASK_STATUSES and task.due_date < now


def days_remaining(task: Task, now: datetime | None = None) -> int:
    if task.status == "completed":
        return 0
    now = now or utc_now_naive()
    return math.ceil((task.due_date - now).total_seconds() / 86400)


def completed_date_for(status: str, current: datetime | None, now: datetime | None = None) -> datetime | None:
    """Completion timestamp implied by ``status``: kept, stamped or cleared."""
    if status != "completed":
        return None
    return current or now or utc_now_naive()


def _choice(value: str, allowed: tuple[str, ...], field: str) -> str:
    if value not in allowed:
        raise InvalidInput(f"Invalid {field}: {value}")
    return value


def _person(user: User | None) -> dict | None:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email}


def serialize_comment(comment: TaskComment) -> dict:
    return {
        "id": comment.id,
        "user": _person(comment.user),
        "text": comment.text,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
    }


def serialize_task(task: Task, *, now: datetime | None = None, with_comments: bool = False) -> dict:
    now = now or utc_now_naive()
    data = {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "category": task.category,
        "due_date": task.due_date.isoformat(),
        "start_date": task.start_date.isoformat() if task.start_date else None,
        "completed_date": task.completed_date.isoformat() if task.completed_date else None,
        "assigned_to": _person(task.assigned_to),
        "created_by": _person(task.created_by),
        "client": (
            {"id": task.client.id, "full_name": task.client.full_name, "document_number": task.client.document_number}
            if task.client is not None
            else None
        ),
        "client_name": task.client_name,
        "case_number": task.case_number,
        "tags": list(task.tags or []),
        "estimated_hours": task.estimated_hours,
        "actual_hours": task.actual_hours,
        "version": task.version,
        "is_overdue": is_overdue(task, now),
        "days_remaining": days_remaining(task, now),
    }
    if with_comments:
        data["comments"] = [serialize_comment(c) for c in task.comments]
    return data


def get_active_task(db: Session, task_id: int) -> Task:
    task = db.get(Task, task_id)
    if task is None or not task.is_active:
        raise NotFound("Task not found")
    return task


def _require_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise InvalidInput("Assigned user not found")
    return user


def _require_client(db: Session, client_id: int) -> Client:
    client = db.get(Client, client_id)
    if client is None:
        raise InvalidInput("Client not found")
    return client


def _clean_tags(tags) -> list[str]:
    if not isinstance(tags, list):
        return []
    return [str(tag).strip() for tag in tags if str(tag).strip()]


def create_task(db: Session, *, creator: Principal, data: dict) -> Task:
    title = str(data.get("title") or "").strip()
    if not title or not data.get("assigned_to_id") or not data.get("due_date"):
        raise InvalidInput("Required fields: title, assigned_to_id, due_date")
    _require_user(db, data["assigned_to_id"])
    client = _require_client(db, data["client_id"]) if data.get("client_id") else None
    status = _choice(data.get("status") or "pending", TASK_STATUSES, "status")
    now = utc_now_naive()

    task = Task(
        title=title,
        description=data.get("description"),
        status=status,
        priority=_choice(data.get("priority") or "medium", TASK_PRIORITIES, "priority"),
        category=_choice(data.get("category") or "other", TASK_CATEGORIES, "category"),
        due_date=to_naive_utc(data["due_date"]),
        start_date=now,
        completed_date=completed_date_for(status, None, now),
        assigned_to_id=data["assigned_to_id"],
        created_by_id=creator.user_id,
        client_id=client.id if client else None,
        client_name=data.get("client_name") or (client.full_name if client else None),
        case_number=data.get("case_number"),
        tags=_clean_tags(data.get("tags")),
        estimated_hours=data.get("estimated_hours"),
        is_active=True,
        version=1,
    )
    db.add(task)
    db.flush()
    return task


def update_task(db: Session, task: Task, *, editor: Principal, data: dict) -> Task:
    for name in EDITABLE_TASK_FIELDS:
        if name not in data:
            continue
        value = data[name]
        if name == "title":
            value = str(value or "").strip()
            if not value:
                raise InvalidInput("Title cannot be empty")
        elif name == "status":
            value = _choice(value, TASK_STATUSES, "status")
        elif name == "priority":
            value = _choice(value, TASK_PRIORITIES, "priority")
        elif name == "category":
            value = _choice(value, TASK_CATEGORIES, "category")
        elif name == "tags":
            value = _clean_tags(value)
        elif name == "due_date":
            if value is None:
                raise InvalidInput("Due date cannot be empty")
            value = to_naive_utc(value)
        setattr(task, name, value)

    if editor.is_admin:
        if data.get("assigned_to_id") is not None:
            task.assigned_to_id = _require_user(db, data["assigned_to_id"]).id
        if "client_id" in data:
            task.client_id = _require_client(db, data["client_id"]).id if data["client_id"] else None

    task.completed_date = completed_date_for(task.status, task.completed_date)
    task.version = (task.version or 1) + 1
    db.flush()
    return task


def soft_delete_task(db: Session, task: Task) -> None:
    task.is_active = False
    db.flush()


def add_comment(db: Session, task: Task, *, author: Principal, text: str) -> TaskComment:
    text = str(text or "").strip()
    if not text:
        raise InvalidInput("Comment cannot be empty")
    comment = TaskComment(task_id=task.id, user_id=author.user_id, text=text, created_at=utc_now_naive())
    db.add(comment)
    db.flush()
    db.refresh(task)
    return comment


def _base_query(db: Session) -> Query:
    return db.query(Task).options(
        joinedload(Task.assigned_to),
        joinedload(Task.created_by),
        joinedload(Task.client),
    ).filter(Task.is_active.is_(True))


def list_tasks(
    db: Session,
    *,
    assignee_id: int | None,
    status: str | None = None,
    priority: str | None = None,
    client_id: int | None = None,
    search: str | None = None,
    overdue: bool = False,
    upcoming: bool = False,
    page: int = 1,
    page_size: int = 20,
):
    now = utc_now_naive()
    query = _base_query(db)
    if assignee_id is not None:
        query = query.filter(Task.assigned_to_id == assignee_id)
    if status:
        query = query.filter(Task.status == status)
    if priority:
        query = query.filter(Task.priority == priority)
    if client_id is not None:
        query = query.filter(Task.client_id == client_id)
    if overdue:
        query = query.filter(Task.due_date < now, Task.status.in_(OPEN_TASK_STATUSES))
    if upcoming:
        query = query.filter(
            Task.due_date >= now,
            Task.due_date <= now + timedelta(days=UPCOMING_LIST_DAYS),
            Task.status.in_(OPEN_TASK_STATUSES),
        )
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Task.title.ilike(pattern),
                Task.description.ilike(pattern),
                Task.client_name.ilike(pattern),
                Task.case_number.ilike(pattern),
            )
        )
    query = query.order_by(Task.due_date.asc(), Task.id.asc())
    return paginate_query(query, page=page, page_size=page_size)


def dashboard_stats(db: Session, principal: Principal) -> dict:
    now = utc_now_naive()
    scope = db.query(Task).filter(Task.is_active.is_(True))
    if not principal.is_admin:
        scope = scope.filter(Task.assigned_to_id == principal.user_id)

    open_scope = scope.filter(Task.status.in_(OPEN_TASK_STATUSES))
    stats = {
        "my_tasks": scope.filter(Task.assigned_to_id == principal.user_id).count(),
        "pending": scope.filter(Task.status == "pending").count(),
        "in_progress": scope.filter(Task.status == "in_progress").count(),
        "overdue": open_scope.filter(Task.due_date < now).count(),
        "upcoming": open_scope.filter(
            Task.due_date >= now,
            Task.due_date <= now + timedelta(days=UPCOMING_DASHBOARD_DAYS),
        ).count(),
    }
    if principal.is_admin:
        stats["completed_this_week"] = scope.filter(
            Task.status == "completed",
            Task.completed_date >= now - timedelta(days=7),
        ).count()

    recent = (
        _base_query(db)
        .filter(Task.assigned_to_id == principal.user_id, Task.status.in_(OPEN_TASK_STATUSES))
        .order_by(Task.due_date.asc())
        .limit(5)
        .all()
    )
    return {
        "stats": stats,
        "recent_tasks": [
            {
                "id": task.id,
                "title": task.title,
                "client": task.client_name or (task.client.full_name if task.client else None),
                "due_date": task.due_date.isoformat(),
                "priority": task.priority,
                "status": task.status,
                "is_overdue": is_overdue(task, now),
            }
            for task in recent
        ],
    }
