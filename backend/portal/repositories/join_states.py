"""
Single-use ledger for join-state tokens.

Mirrors the webhook ledger: the primary key on the nonce decides whether a
state token has been presented before.
"""

from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.models.join_state_nonce import ConsumedJoinState


class JoinStateNonceRepository:

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def consume(self, nonce: str, application_id: str, expires_at: datetime) -> bool:
        """
        Mark a nonce as used.

        Returns:
            True on first use, False if the nonce was already consumed
        """
        if self.db_session.get(ConsumedJoinState, nonce) is not None:
            return False

        self.db_session.add(ConsumedJoinState(
            nonce=nonce,
            application_id=application_id,
            expires_at=expires_at,
        ))
        try:
            self.db_session.commit()
            return True
        except IntegrityError:
            # two callbacks raced with the same state
            self.db_session.rollback()
            return False

