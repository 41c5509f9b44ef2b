"""
Shared-secret checks for score submission and administrative operations.
"""

import hmac
import logging
from typing import Optional

from scoreboard.utils.leaderboard_exceptions import InvalidInputError, UnauthorizedError

logger = logging.getLogger(__name__)

ADMIN_HEADER = 'X-Admin-Secret'


def secrets_match(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; an unset expected secret never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode('utf-8'), expected.encode('utf-8'))


class SecretChecker:
    """Holds the configured secrets and raises the matching error on mismatch."""

    def __init__(self, submit_secret: str, admin_secret: str):
        self.submit_secret = submit_secret
        self.admin_secret = admin_secret

    def check_submit(self, secret: Optional[str], player_id: str = None):
        if not secrets_match(secret, self.submit_secret):
            logger.warning(f"Rejected submission with bad secret for player {player_id}")
            raise InvalidInputError("secret", "credential rejected")

    def check_admin(self, secret: Optional[str], operation: str):
        if not secrets_match(secret, self.admin_secret):
            logger.warning(f"Rejected {operation}: bad admin secret")
            raise UnauthorizedError(operation)
