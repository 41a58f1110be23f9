"""
Unit tests for the expiry countdown.

Tests:
- Starting and persisting the window
- Restoring after a reload
- Countdown formatting
- The cancellable ticker
"""

import asyncio
import pytest
from datetime import timedelta

from otpverify.core.expiry_clock import CountdownTicker, ExpiryClock, countdown_urgency, format_countdown
from otpverify.core.storage import MemoryStore, OTP_EXPIRY_KEY


class TestExpiryWindow:
    """Test start/restore/remaining"""

    def test_start_persists_absolute_expiry(self, clock):
        store = MemoryStore()
        expiry_clock = ExpiryClock(store, now=clock)

        expiry_at = expiry_clock.start()

        assert expiry_at == clock() + timedelta(seconds=600)
        assert store.get(OTP_EXPIRY_KEY) == expiry_at.isoformat()
        assert expiry_clock.remaining() == 600

    def test_restore_without_persisted_expiry(self, clock):
        assert ExpiryClock(MemoryStore(), now=clock).restore() is None

    @pytest.mark.parametrize("reload_after", [0, 1, 59, 300, 599, 600, 601, 5000])
    def test_restore_is_independent_of_reload_timing(self, clock, reload_after):
        """A reload at t sees max(0, expiryAt - t)"""
        store = MemoryStore()
        ExpiryClock(store, now=clock).start()

        clock.advance(reload_after)
        restored = ExpiryClock(store, now=clock).restore()

        assert restored == max(0, 600 - reload_after)

    def test_restore_accepts_zulu_timestamps(self, clock):
        store = MemoryStore()
        store.set(OTP_EXPIRY_KEY, "2024-01-01T12:05:00.000Z")
        assert ExpiryClock(store, now=clock).restore() == 300

    def test_unparseable_expiry_is_ignored(self, clock):
        store = MemoryStore()
        store.set(OTP_EXPIRY_KEY, "not a timestamp")
        assert ExpiryClock(store, now=clock).restore() is None

    def test_ensure_started_only_starts_once(self, clock):
        store = MemoryStore()
        assert ExpiryClock(store, now=clock).ensure_started() == 600

        clock.advance(120)
        assert ExpiryClock(store, now=clock).ensure_started() == 480

    def test_expired_at_zero(self, clock):
        expiry_clock = ExpiryClock(MemoryStore(), now=clock)
        expiry_clock.start()
        clock.advance(599)
        assert expiry_clock.is_expired() is False
        clock.advance(1)
        assert expiry_clock.is_expired() is True
        assert expiry_clock.remaining() == 0

    def test_clear_removes_persisted_expiry(self, clock):
        store = MemoryStore()
        expiry_clock = ExpiryClock(store, now=clock)
        expiry_clock.start()
        expiry_clock.clear()
        assert store.get(OTP_EXPIRY_KEY) is None
        assert expiry_clock.is_expired() is False


class TestCountdownFormatting:
    """Test display helpers"""

    @pytest.mark.parametrize("seconds,expected", [(600, "10:00"), (599, "9:59"), (61, "1:01"), (5, "0:05"), (0, "0:00")])
    def test_format(self, seconds, expected):
        assert format_countdown(seconds) == expected

    @pytest.mark.parametrize("seconds,expected", [(600, "normal"), (301, "normal"), (300, "warning"), (61, "warning"), (60, "critical"), (0, "critical")])
    def test_urgency(self, seconds, expected):
        assert countdown_urgency(seconds) == expected


class TestCountdownTicker:
    """Test the periodic ticker"""

    @pytest.mark.asyncio
    async def test_ticks_until_expired_then_stops(self, clock):
        expiry_clock = ExpiryClock(MemoryStore(), now=clock)
        expiry_clock.start(3)
        ticks = []
        expired = []

        async def fake_sleep(seconds):
            clock.advance(seconds)
            await asyncio.sleep(0)

        ticker = CountdownTicker(expiry_clock, ticks.append, lambda: expired.append(True), interval=1, sleep=fake_sleep)
        ticker.start()
        await ticker._task

        assert ticks == [3, 2, 1, 0]
        assert expired == [True]
        assert ticker.running is False

    @pytest.mark.asyncio
    async def test_cancel_stops_ticking(self, clock):
        expiry_clock = ExpiryClock(MemoryStore(), now=clock)
        expiry_clock.start()
        ticks = []
        gate = asyncio.Event()

        async def blocking_sleep(seconds):
            await gate.wait()

        ticker = CountdownTicker(expiry_clock, ticks.append, lambda: None, sleep=blocking_sleep)
        ticker.start()
        await asyncio.sleep(0)
        assert ticker.running is True

        ticker.cancel()
        gate.set()
        await asyncio.sleep(0)

        assert ticker.running is False
        assert ticks == [600]
