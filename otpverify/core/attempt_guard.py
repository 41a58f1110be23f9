"""
Client-side mirror of the server's attempt and lockout accounting.

The guard never computes attempts on its own. Its state is a tagged variant
updated only from parsed server responses:

    OpenState -> WarningState(n) -> LockedState(until)

Locked is one-directional for a session instance; only a fresh page load
(a new guard) starts Open again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from otpverify.core.config import settings

logger = logging.getLogger(__name__)


def locked_message(minutes: Optional[int] = None) -> str:
    minutes = settings.LOCKOUT_MINUTES if minutes is None else minutes
    return f"Account is locked due to too many failed attempts. Please wait {minutes} minutes."


def attempts_text(n: int) -> str:
    return f"{n} attempt{'' if n == 1 else 's'} remaining"


@dataclass(frozen=True)
class OpenState:
    pass


@dataclass(frozen=True)
class WarningState:
    attempts_remaining: int


@dataclass(frozen=True)
class LockedState:
    message: str
    until: Optional[datetime] = None


GuardState = Union[OpenState, WarningState, LockedState]


class AttemptGuard:
    """
    Tracks remaining attempts and lockout as reported by the server.

    Args:
        max_attempts: Attempt budget the server grants per code (display only)
    """

    def __init__(self, max_attempts: Optional[int] = None):
        self.max_attempts = max_attempts or settings.MAX_VERIFICATION_ATTEMPTS
        self._state: GuardState = OpenState()
        self._last_reported = self.max_attempts

    @property
    def state(self) -> GuardState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return isinstance(self._state, LockedState)

    @property
    def attempts_remaining(self) -> int:
        """Last server-reported count (the full budget until one is reported)"""
        return self._last_reported

    @property
    def lockout_until(self) -> Optional[datetime]:
        return self._state.until if isinstance(self._state, LockedState) else None

    def warning(self) -> Optional[str]:
        """Remaining-attempts notice, shown only in the Warning state"""
        if isinstance(self._state, WarningState):
            return attempts_text(self._state.attempts_remaining)
        return None

    def record_failure(self, server_attempts_remaining: int) -> None:
        """
        Mirror an incorrect-code response.

        The count is kept as reported; only a negative value is floored at 0.
        Reaching 0 does not lock; the server sends an explicit lockout next.
        Ignored once locked.
        """
        if self.is_locked:
            logger.info("Ignoring attempt count reported after lockout")
            return

        n = max(0, int(server_attempts_remaining))
        self._last_reported = n
        self._state = WarningState(n) if n < self.max_attempts else OpenState()

    def record_lockout(self, server_lockout_message: Optional[str] = None, until: Optional[datetime] = None) -> None:
        self._state = LockedState(message=server_lockout_message or locked_message(), until=until)
        self._last_reported = 0
        logger.warning(f"Verification locked by server (until={until.isoformat() if until else 'unknown'})")

    def record_fresh_budget(self) -> bool:
        """
        Return to Open after the server confirmed a new code was issued.

        Returns:
            False (no-op) when locked: the client never unlocks itself
        """
        if self.is_locked:
            return False
        self._state = OpenState()
        self._last_reported = self.max_attempts
        return True

    def can_submit(self) -> bool:
        return not self.is_locked
