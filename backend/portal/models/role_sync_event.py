"""
Append-only audit trail of role mutation attempts.

One row per terminal outcome of the role actuator: success, retries
exhausted, or permanent failure. Never updated or deleted.
"""

import enum

from sqlalchemy import Column, String, Boolean, Integer, Text, DateTime, Index, Enum as SAEnum

from portal.db_base import Base
from portal.models.base import generate_uuid, utcnow


class RoleSyncAction(str, enum.Enum):
    ASSIGN = "assign"
    REMOVE = "remove"


class RoleSyncEvent(Base):
    """Audit row for one role mutation attempt."""

    __tablename__ = "role_sync_events"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    discord_user_id = Column(String(64), nullable=False)
    role_id = Column(String(64), nullable=False)
    action = Column(
        SAEnum(
            RoleSyncAction,
            name="role_sync_action",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    success = Column(Boolean, nullable=False)
    outcome = Column(
        String(32),
        nullable=False,
        comment="Actuator outcome code (granted, revoked, unchanged, not_member, ...)"
    )
    attempts = Column(Integer, nullable=False, default=1)
    source = Column(
        String(32),
        nullable=True,
        comment="Entry point that triggered the sync (webhook, reconcile, join)"
    )
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_role_sync_events_user_created", "discord_user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RoleSyncEvent(user={self.discord_user_id}, action={self.action}, "
            f"success={self.success})>"
        )
