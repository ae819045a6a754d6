"""Outbound notifications for account events."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from app.models.user import User

logger = logging.getLogger(__name__)


class PasswordResetNotifier(Protocol):
    """Delivers a reset token to the account owner (mail, SMS, ...)."""

    def send_password_reset(self, user: User, token: str, expires_at: datetime) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records that a reset was issued. The secret is logged only in debug mode."""

    def __init__(self, debug: bool = False) -> None:
        self.debug = debug

    def send_password_reset(self, user: User, token: str, expires_at: datetime) -> None:
        if self.debug:
            logger.info("Password reset token for user %s: %s (expires %s)", user.id, token, expires_at.isoformat())
        else:
            logger.info("Password reset issued for user %s (expires %s)", user.id, expires_at.isoformat())
