import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from backoffice.core.roles import Role, normalize_roles
from backoffice.services.accounts import get_user_by_email, normalize_email, set_active, validate_email
from backoffice.services.preapprovals import upsert_preapproval

logger = logging.getLogger(__name__)

PROVISIONER = "setup-admin"


@dataclass
class ProvisionResult:
    promoted: int = 0
    unchanged: int = 0
    preapproved: int = 0


def provision_admin(db: Session, email: str, roles=None) -> str:
    """Make ``email`` an admin now, or preapprove it as one if it has no account."""
    email = normalize_email(email)
    validate_email(email)
    role = normalize_roles(roles, default_role=Role.ADMIN)[0]

    user = get_user_by_email(db, email)
    if user is not None:
        changed = False
        if user.roles != [role]:
            user.role = role.value
            changed = True
        if role is Role.ADMIN:
            changed = set_active(db, user, active=True) or changed
        db.commit()
        logger.info("provision_admin email=%s result=%s", email, "promoted" if changed else "unchanged")
        return "promoted" if changed else "unchanged"

    upsert_preapproval(
        db,
        email=email,
        roles=[role],
        days_valid=None,
        invited_by=PROVISIONER,
        notes="Grant admin access",
        default_role=Role.ADMIN,
    )
    db.commit()
    logger.info("provision_admin email=%s result=preapproved", email)
    return "preapproved"


def provision_admins(db: Session, emails: list[str]) -> ProvisionResult:
    result = ProvisionResult()
    for email in emails:
        outcome = provision_admin(db, email)
        setattr(result, outcome, getattr(result, outcome) + 1)
    return result
