import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrportal.database import Base


class OverrideEffect(str, enum.Enum):
    GRANT = "grant"
    DENY = "deny"


class UserPermissionOverride(Base):
    """Per-user exception to role-derived permissions within one tenant.

    An override always has the final say for its permission. Overrides with
    an `expires_at` in the past are ignored by resolution.
    """

    __tablename__ = "user_permission_overrides"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    permission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("permissions.id"), nullable=False
    )
    effect: Mapped[OverrideEffect] = mapped_column(
        SAEnum(
            OverrideEffect,
            native_enum=False,
            length=10,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime)
    reason: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(36))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    permission = relationship("Permission", lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", "permission_id", name="uq_user_override"),
    )
