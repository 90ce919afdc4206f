"""
Application model for the membership review queue.

One active application exists per external identity (Discord user id).
Review moves an application from PENDING to APPROVED, REJECTED or WAITLISTED;
an admin "reopen" resets it to PENDING.

Only APPROVED applications may ever hold the member role.
"""

import enum

from sqlalchemy import Column, String, DateTime, Enum as SAEnum

from portal.db_base import Base
from portal.models.base import TimestampMixin, generate_uuid


class ApplicationStatus(str, enum.Enum):
    """Human review outcome."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WAITLISTED = "waitlisted"


class Application(Base, TimestampMixin):
    """Membership application submitted by an external identity."""

    __tablename__ = "applications"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    discord_user_id = Column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="External identity id (one application per identity)"
    )

    status = Column(
        SAEnum(
            ApplicationStatus,
            name="application_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=ApplicationStatus.PENDING,
        comment="Review status"
    )

    reviewed_by = Column(
        String(255),
        nullable=True,
        comment="Reviewer identity"
    )

    reviewed_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the review decision was made"
    )

    @property
    def is_approved(self) -> bool:
        return self.status == ApplicationStatus.APPROVED

    def __repr__(self) -> str:
        return f"<Application(id={self.id}, status={self.status})>"
