"""
Signed, time-bound state tokens for the join flow.

The token binds an OAuth round trip to the application that started it.
It is an HS256 JWT carrying the application id, a random nonce and
issued-at/expiry claims. Verification happens before any side effect; the
join flow records each nonce on first use so a state cannot be replayed.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

JOIN_STATE_ISSUER = "portal-join"
JOIN_STATE_ALGORITHM = "HS256"


class JoinStateError(Exception):
    """State token is forged, malformed or expired."""
    pass


class JoinStateExpiredError(JoinStateError):
    """State token was valid but is older than the allowed age."""
    pass


@dataclass(frozen=True)
class JoinStateClaims:
    application_id: str
    nonce: str
    issued_at: datetime
    expires_at: datetime


class JoinStateSigner:
    """Issues and verifies join-state tokens with a server-held secret."""

    def __init__(self, secret: str, max_age_seconds: int = 15 * 60):
        if not secret:
            raise ValueError("Join state secret is required")
        self._secret = secret
        self.max_age_seconds = max_age_seconds

    def issue(self, application_id: str, now: Optional[datetime] = None) -> str:
        """Create a state token for the given application."""
        now = now or datetime.now(timezone.utc)
        exp = now + timedelta(seconds=self.max_age_seconds)
        payload = {
            "sub": application_id,
            "nonce": secrets.token_urlsafe(16),
            "iss": JOIN_STATE_ISSUER,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=JOIN_STATE_ALGORITHM)

    def verify(self, token: str) -> JoinStateClaims:
        """
        Verify a state token.

        Raises:
            JoinStateExpiredError: If the token has expired
            JoinStateError: If the token is malformed or the signature is wrong
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JOIN_STATE_ALGORITHM],
                issuer=JOIN_STATE_ISSUER,
                options={"require": ["sub", "iat", "exp", "nonce"]},
            )
        except jwt.ExpiredSignatureError:
            raise JoinStateExpiredError("Join state has expired")
        except jwt.InvalidTokenError as e:
            logger.warning("Rejected join state", extra={"reason": type(e).__name__})
            raise JoinStateError(f"Invalid join state: {str(e)}")

        return JoinStateClaims(
            application_id=str(payload["sub"]),
            nonce=str(payload["nonce"]),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
