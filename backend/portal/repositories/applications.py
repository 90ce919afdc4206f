"""
Application repository: status reads by identity and the admin reopen.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from portal.models.application import Application, ApplicationStatus
from portal.platform.errors import NotFoundError

logger = logging.getLogger(__name__)


class ApplicationRepository:

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get(self, application_id: str) -> Optional[Application]:
        return self.db_session.query(Application).filter(
            Application.id == application_id,
        ).first()

    def get_by_identity(self, discord_user_id: str) -> Optional[Application]:
        return self.db_session.query(Application).filter(
            Application.discord_user_id == discord_user_id,
        ).first()

    def status_for_identity(self, discord_user_id: str) -> Optional[ApplicationStatus]:
        application = self.get_by_identity(discord_user_id)
        return application.status if application else None

    def reopen(self, application_id: str) -> Application:
        """
        Reset a reviewed application to pending.

        Reviewer fields are cleared. From this point on the role policy
        denies the role for the identity.

        Raises:
            NotFoundError: If the application does not exist
        """
        application = self.get(application_id)
        if application is None:
            raise NotFoundError("Application", application_id)

        if application.status == ApplicationStatus.PENDING:
            return application

        previous_status = application.status
        application.status = ApplicationStatus.PENDING
        application.reviewed_by = None
        application.reviewed_at = None
        self.db_session.commit()

        logger.info("Application reopened", extra={
            "application_id": application_id,
            "previous_status": previous_status.value,
        })
        return application
