from backoffice.db.models.admin_audit_log import AdminAuditLog
from backoffice.db.models.auth_attempt import AuthAttempt
from backoffice.db.models.client import Client
from backoffice.db.models.client_document import ClientDocument
from backoffice.db.models.preapproval import PreapprovedEmail
from backoffice.db.models.task import Task, TaskComment
from backoffice.db.models.user import User

__all__ = [
    "AdminAuditLog",
    "AuthAttempt",
    "Client",
    "ClientDocument",
    "PreapprovedEmail",
    "Task",
    "TaskComment",
    "User",
]
