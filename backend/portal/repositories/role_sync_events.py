"""
Append-only writer for the role sync audit log.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from portal.models.role_sync_event import RoleSyncEvent, RoleSyncAction


class RoleSyncEventRepository:

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def record(
        self,
        discord_user_id: str,
        role_id: str,
        action: RoleSyncAction,
        success: bool,
        outcome: str,
        attempts: int = 1,
        source: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> RoleSyncEvent:
        event = RoleSyncEvent(
            discord_user_id=discord_user_id,
            role_id=role_id,
            action=action,
            success=success,
            outcome=outcome,
            attempts=attempts,
            source=source,
            error_message=error_message,
        )
        self.db_session.add(event)
        self.db_session.commit()
        return event

    def list_for_identity(self, discord_user_id: str) -> List[RoleSyncEvent]:
        return self.db_session.query(RoleSyncEvent).filter(
            RoleSyncEvent.discord_user_id == discord_user_id,
        ).order_by(RoleSyncEvent.created_at.asc()).all()
