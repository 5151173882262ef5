from datetime import timedelta

from sqlalchemy.orm import Session

from backoffice.core.clock import utc_now_naive
from backoffice.core.errors import TooManyRequests
from backoffice.db.models.auth_attempt import AuthAttempt


def check_rate_limit(db: Session, email: str, action: str, *, limit: int, window_minutes: int) -> None:
    since = utc_now_naive() - timedelta(minutes=window_minutes)
    attempts = (
        db.query(AuthAttempt)
        .filter(AuthAttempt.email == email, AuthAttempt.action == action, AuthAttempt.created_at >= since)
        .count()
    )
    if attempts >= limit:
        raise TooManyRequests()


def record_attempt(db: Session, email: str, action: str, *, succeeded: bool | None = None) -> None:
    db.add(AuthAttempt(email=email, action=action, succeeded=succeeded, created_at=utc_now_naive()))
    db.commit()
