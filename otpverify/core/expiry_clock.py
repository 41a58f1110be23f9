"""
Code expiry countdown.

The countdown is always derived from an absolute expiry timestamp persisted in
the durable scope (otpExpiry, ISO-8601), never from a decremented counter, so a
reload at any moment shows the same remaining time. Resend eligibility shares
this window: a new code can be requested only once the current one expired.
"""

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from otpverify.core.config import settings
from otpverify.core.storage import OTP_EXPIRY_KEY, KeyValueStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_countdown(seconds: int) -> str:
    """Format seconds as m:ss (e.g. 599 -> "9:59")"""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def countdown_urgency(seconds: int) -> str:
    """normal above 5 minutes, warning above 1 minute, critical otherwise"""
    if seconds > 300:
        return "normal"
    if seconds > 60:
        return "warning"
    return "critical"


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ExpiryClock:
    """
    Countdown to the absolute expiry of the current code.

    Args:
        store: Durable store holding the otpExpiry timestamp
        validity_seconds: Lifetime of a freshly issued code
        now: Wall clock, injectable for tests
    """

    def __init__(
        self,
        store: KeyValueStore,
        validity_seconds: Optional[int] = None,
        now: Optional[Clock] = None,
    ):
        self.store = store
        self.validity_seconds = validity_seconds or settings.OTP_VALIDITY_SECONDS
        self.now = now or utcnow
        self._expiry_at: Optional[datetime] = None

    @property
    def expiry_at(self) -> Optional[datetime]:
        return self._expiry_at

    def start(self, duration_seconds: Optional[int] = None) -> datetime:
        """Start a new window at now + duration and persist it"""
        duration = self.validity_seconds if duration_seconds is None else duration_seconds
        self._expiry_at = self.now() + timedelta(seconds=duration)
        self.store.set(OTP_EXPIRY_KEY, self._expiry_at.isoformat())
        logger.info(f"Code countdown started: {duration} seconds")
        return self._expiry_at

    def restore(self) -> Optional[int]:
        """
        Reload the persisted expiry and return the remaining seconds.

        Returns:
            Remaining seconds (>= 0), or None if nothing usable is persisted
        """
        raw = self.store.get(OTP_EXPIRY_KEY)
        if not raw:
            return None
        expiry_at = _parse_timestamp(raw)
        if expiry_at is None:
            logger.warning(f"Ignoring unparseable {OTP_EXPIRY_KEY} value: {raw!r}")
            return None
        self._expiry_at = expiry_at
        return self.remaining()

    def ensure_started(self) -> int:
        """Restore the persisted window, or start one on first entry"""
        remaining = self.restore()
        if remaining is None:
            self.start()
            return self.validity_seconds
        logger.info(f"Countdown restored: {remaining} seconds")
        return remaining

    def remaining(self, now: Optional[datetime] = None) -> int:
        if self._expiry_at is None:
            return 0
        delta = (self._expiry_at - (now or self.now())).total_seconds()
        return max(0, math.floor(delta))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self._expiry_at is not None and self.remaining(now) == 0

    def clear(self) -> None:
        self._expiry_at = None
        self.store.remove(OTP_EXPIRY_KEY)


class CountdownTicker:
    """
    Cancellable periodic task driving the visible countdown.

    Calls on_tick with the remaining seconds once per interval and stops by
    itself after calling on_expired when the countdown reaches zero.
    """

    def __init__(
        self,
        clock: ExpiryClock,
        on_tick: Callable[[int], None],
        on_expired: Callable[[], None],
        interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.clock = clock
        self.on_tick = on_tick
        self.on_expired = on_expired
        self.interval = settings.COUNTDOWN_TICK_SECONDS if interval is None else interval
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            remaining = self.clock.remaining()
            self.on_tick(remaining)
            if remaining <= 0:
                self.on_expired()
                return
            await self._sleep(self.interval)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
