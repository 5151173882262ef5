from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.core.clock import utc_now_naive
from backoffice.core.roles import Role, normalize_roles
from backoffice.db.base import Base


class PreapprovedEmail(Base):
    __tablename__ = "preapproved_emails"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    role: Mapped[str] = mapped_column(String(20), default=Role.USER.value)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    used: Mapped[bool] = mapped_column(Boolean, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    invited_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)

    @property
    def roles(self) -> list[Role]:
        return normalize_roles(self.role)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now
