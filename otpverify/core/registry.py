"""
Per-browser registry of verification sessions for the HTTP surface.

A browser is identified by two cookies: a long-lived device id naming its
durable scope, and a session id naming its ephemeral scope. Loading the
verification page replaces the browser's session instance, which is the only
way a locked AttemptGuard starts over.

The registry is bounded: browsers idle for longer than
SESSION_IDLE_TIMEOUT_SECONDS are evicted, and beyond MAX_TRACKED_BROWSERS the
least recently seen ones go first. Eviction only forgets the in-process
objects; data already written to a file or Redis durable store stays there.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Mapping, Optional, Tuple

from otpverify.core.config import settings
from otpverify.core.expiry_clock import Clock, ExpiryClock, utcnow
from otpverify.core.identity import IdentityResolver
from otpverify.core.notices import LoginNotices
from otpverify.core.storage import KeyValueStore, MemoryStore, StorageScopes, get_durable_store
from otpverify.core.verification import VerificationSession
from otpverify.services.verification_api import VerificationAPI

logger = logging.getLogger(__name__)

BrowserKey = Tuple[str, str]


class SessionRegistry:

    def __init__(
        self,
        durable_store_factory: Callable[[str], KeyValueStore] = get_durable_store,
        now: Optional[Clock] = None,
        idle_timeout_seconds: Optional[int] = None,
        max_browsers: Optional[int] = None,
    ):
        self.durable_store_factory = durable_store_factory
        self.now = now
        self.idle_timeout_seconds = (
            settings.SESSION_IDLE_TIMEOUT_SECONDS if idle_timeout_seconds is None else idle_timeout_seconds
        )
        self.max_browsers = settings.MAX_TRACKED_BROWSERS if max_browsers is None else max_browsers
        self._durable: Dict[str, KeyValueStore] = {}
        self._ephemeral: Dict[str, MemoryStore] = {}
        self._sessions: Dict[BrowserKey, VerificationSession] = {}
        self._last_seen: Dict[BrowserKey, datetime] = {}

    def _now(self) -> datetime:
        return (self.now or utcnow)()

    def _touch(self, device_id: str, session_id: str) -> None:
        self._last_seen[(device_id, session_id)] = self._now()

    def durable_store(self, device_id: str) -> KeyValueStore:
        if device_id not in self._durable:
            self._durable[device_id] = self.durable_store_factory(device_id)
        return self._durable[device_id]

    def ephemeral_store(self, session_id: str) -> MemoryStore:
        return self._ephemeral.setdefault(session_id, MemoryStore())

    def scopes(self, device_id: str, session_id: str) -> StorageScopes:
        return StorageScopes(
            durable=self.durable_store(device_id),
            ephemeral=self.ephemeral_store(session_id),
        )

    def open(
        self,
        device_id: str,
        session_id: str,
        api: VerificationAPI,
        query_params: Optional[Mapping[str, str]] = None,
    ) -> VerificationSession:
        """Build a fresh session for a page load, disposing the previous one"""
        key = (device_id, session_id)
        self._touch(device_id, session_id)
        self.prune(keep=key)

        previous = self._sessions.pop(key, None)
        if previous is not None:
            previous.dispose()

        scopes = self.scopes(device_id, session_id)
        session = VerificationSession(
            api=api,
            resolver=IdentityResolver(scopes, query_params),
            clock=ExpiryClock(scopes.durable, now=self.now),
        )
        session.open()
        self._sessions[key] = session
        return session

    def get(self, device_id: str, session_id: str) -> Optional[VerificationSession]:
        session = self._sessions.get((device_id, session_id))
        if session is not None:
            self._touch(device_id, session_id)
        return session

    def get_or_open(self, device_id: str, session_id: str, api: VerificationAPI) -> VerificationSession:
        session = self.get(device_id, session_id)
        if session is None:
            logger.info("No verification session for this browser yet, opening one")
            session = self.open(device_id, session_id, api)
        return session

    def release_if_finished(self, device_id: str, session_id: str) -> bool:
        """
        Drop a session that reached a terminal outcome (verified or account not found).

        The browser's ephemeral scope is kept so the login notice can still be consumed.
        """
        session = self._sessions.get((device_id, session_id))
        if session is None or not session.is_finished:
            return False
        del self._sessions[(device_id, session_id)]
        session.dispose()
        return True

    def discard(self, device_id: str, session_id: str) -> None:
        session = self._sessions.pop((device_id, session_id), None)
        if session is not None:
            session.dispose()

    def notices(self, session_id: str) -> LoginNotices:
        # Unknown browsers get a throwaway store rather than a new tracked scope
        return LoginNotices(self._ephemeral.get(session_id) or MemoryStore())

    def prune(self, keep: Optional[BrowserKey] = None) -> int:
        """
        Evict idle browsers, then the least recently seen ones over the cap.

        Args:
            keep: Browser being opened; never evicted and counted against the cap

        Returns:
            Number of browsers evicted
        """
        cutoff = self._now() - timedelta(seconds=self.idle_timeout_seconds)
        candidates = [item for item in self._last_seen.items() if item[0] != keep]
        stale = [key for key, seen in candidates if seen < cutoff]
        fresh = sorted((item for item in candidates if item[1] >= cutoff), key=lambda item: item[1])

        capacity = self.max_browsers - 1 if keep in self._last_seen else self.max_browsers
        overflow = len(fresh) - max(capacity, 0)
        if overflow > 0:
            stale.extend(key for key, _ in fresh[:overflow])

        for key in stale:
            self._evict(key)
        if stale:
            logger.info(f"Evicted {len(stale)} verification browser(s), {len(self._last_seen)} tracked")
        return len(stale)

    def _evict(self, key: BrowserKey) -> None:
        device_id, session_id = key
        self._last_seen.pop(key, None)
        self.discard(device_id, session_id)
        if not any(k[0] == device_id for k in self._last_seen):
            self._durable.pop(device_id, None)
        if not any(k[1] == session_id for k in self._last_seen):
            self._ephemeral.pop(session_id, None)

    def stats(self) -> Dict[str, int]:
        return {
            "browsers": len(self._last_seen),
            "sessions": len(self._sessions),
            "durable_scopes": len(self._durable),
            "ephemeral_scopes": len(self._ephemeral),
        }

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.dispose()
        self._sessions.clear()
