from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from backoffice.core.clock import utc_now_naive
from backoffice.core.roles import Role, normalize_roles
from backoffice.db.models.preapproval import PreapprovedEmail


def serialize_preapproval(entry: PreapprovedEmail) -> dict:
    return {
        "email": entry.email,
        "roles": [role.value for role in entry.roles],
        "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
        "used": bool(entry.used),
        "invited_by": entry.invited_by,
        "notes": entry.notes,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def upsert_preapproval(
    db: Session,
    *,
    email: str,
    roles=None,
    days_valid: int | None = 30,
    invited_by: str | None = None,
    notes: str | None = None,
    default_role: Role = Role.USER,
    now: datetime | None = None,
) -> PreapprovedEmail:
    """Create or reset the preapproval for ``email``; resets ``used``."""
    now = now or utc_now_naive()
    expires_at = now + timedelta(days=days_valid) if days_valid else None
    role = normalize_roles(roles, default_role=default_role)[0].value

    entry = db.query(PreapprovedEmail).filter(PreapprovedEmail.email == email).first()
    if entry is None:
        entry = PreapprovedEmail(email=email, created_at=now)
        db.add(entry)
    entry.role = role
    entry.expires_at = expires_at
    entry.used = False
    entry.used_at = None
    entry.invited_by = invited_by
    entry.notes = notes
    db.flush()
    return entry


def find_live_preapproval(db: Session, email: str, *, now: datetime | None = None) -> PreapprovedEmail | None:
    """Unused, unexpired entry for ``email``. Expired entries are dropped on sight."""
    now = now or utc_now_naive()
    entry = db.query(PreapprovedEmail).filter(PreapprovedEmail.email == email).first()
    if entry is None:
        return None
    if entry.is_expired(now):
        db.delete(entry)
        db.flush()
        return None
    if entry.used:
        return None
    return entry


def consume_preapproval(entry: PreapprovedEmail, *, now: datetime | None = None) -> None:
    entry.used = True
    entry.used_at = now or utc_now_naive()


def list_preapprovals(db: Session, *, now: datetime | None = None) -> list[PreapprovedEmail]:
    now = now or utc_now_naive()
    items = db.query(PreapprovedEmail).order_by(PreapprovedEmail.created_at.desc(), PreapprovedEmail.id.desc()).all()
    return [item for item in items if not item.is_expired(now)]


def delete_preapproval(db: Session, email: str) -> bool:
    entry = db.query(PreapprovedEmail).filter(PreapprovedEmail.email == email).first()
    if entry is None:
        return False
    db.delete(entry)
    db.flush()
    return True


def purge_expired_preapprovals(db: Session, *, now: datetime | None = None) -> int:
    now = now or utc_now_naive()
    deleted = (
        db.query(PreapprovedEmail)
        .filter(PreapprovedEmail.expires_at.is_not(None), PreapprovedEmail.expires_at <= now)
        .delete(synchronize_session=False)
    )
    db.commit()
    return int(deleted or 0)
