"""
Post-redirect notices for the login screen.

A (message, severity) pair is written to the ephemeral scope before redirecting
and consumed exactly once by the login screen.
"""

import logging
from typing import Optional

from otpverify.core.errors import Severity
from otpverify.core.storage import LOGIN_MESSAGE_KEY, LOGIN_MESSAGE_TYPE_KEY, KeyValueStore
from otpverify.schemas.verification import Notice

logger = logging.getLogger(__name__)


class LoginNotices:

    def __init__(self, store: KeyValueStore):
        self.store = store

    def push(self, message: str, severity: Severity) -> None:
        self.store.set(LOGIN_MESSAGE_KEY, message)
        self.store.set(LOGIN_MESSAGE_TYPE_KEY, severity.value)

    def consume(self) -> Optional[Notice]:
        """Read and clear the pending notice (None if there is none)"""
        message = self.store.get(LOGIN_MESSAGE_KEY)
        raw_severity = self.store.get(LOGIN_MESSAGE_TYPE_KEY)
        self.store.remove(LOGIN_MESSAGE_KEY)
        self.store.remove(LOGIN_MESSAGE_TYPE_KEY)
        if not message:
            return None

        try:
            severity = Severity(raw_severity)
        except ValueError:
            logger.warning(f"Unknown login notice severity {raw_severity!r}, using info")
            severity = Severity.INFO
        return Notice(message=message, severity=severity)
