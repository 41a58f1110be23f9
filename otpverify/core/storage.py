"""
Key-value storage scopes for the verification flow.

Two scopes exist, mirroring the browser storage the flow was designed around:
- durable: survives a browser restart (file or Redis backed)
- ephemeral: survives a page reload but not a restart (in-memory)

The backend for the durable scope is selected by settings.DURABLE_STORE_BACKEND.
"""

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from typing import Dict, Optional

import redis

from otpverify.core.config import settings

logger = logging.getLogger(__name__)

# Storage keys shared by registration, verification and login
PENDING_EMAIL_KEY = "pendingVerificationEmail"
OTP_EXPIRY_KEY = "otpExpiry"
LOGIN_MESSAGE_KEY = "loginMessage"
LOGIN_MESSAGE_TYPE_KEY = "loginMessageType"

_NAMESPACE_RE = re.compile(r"[^A-Za-z0-9_-]")


class KeyValueStore:
    """Abstract base class for storage scopes"""

    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None"""
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        """Store a value"""
        raise NotImplementedError

    def remove(self, key: str) -> None:
        """Delete a key (no error if missing)"""
        raise NotImplementedError

    def ping(self) -> bool:
        """Check the backend is reachable"""
        return True


class MemoryStore(KeyValueStore):
    """In-process dictionary store, used for the ephemeral scope"""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileStore(KeyValueStore):
    """
    JSON file store, one file per namespace.

    Writes go through a temporary file and an atomic rename so a crash
    never leaves a half-written state file behind.
    """

    def __init__(self, base_dir: str, namespace: str):
        self.base_dir = base_dir
        os.makedirs(self.base_dir, exist_ok=True)
        safe_namespace = _NAMESPACE_RE.sub("_", namespace) or "default"
        self.file_path = os.path.join(self.base_dir, f"{safe_namespace}.json")

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.file_path):
            return {}
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable state file {self.file_path}, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: Dict[str, str]) -> None:
        if not data:
            # Nothing pending for this device
            if os.path.exists(self.file_path):
                os.remove(self.file_path)
            return
        fd, tmp_path = tempfile.mkstemp(dir=self.base_dir, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.file_path)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def ping(self) -> bool:
        return os.access(self.base_dir, os.W_OK)


class RedisStore(KeyValueStore):
    """
    Redis-backed store for the durable scope.

    Keys are prefixed with the namespace. Redis outages fail open: reads
    return None and writes are dropped, so the flow degrades to manual
    email entry instead of erroring.
    """

    def __init__(self, namespace: str, client: Optional[redis.Redis] = None):
        self.prefix = f"otpverify:{_NAMESPACE_RE.sub('_', namespace)}:"
        self.redis_client = client or redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            decode_responses=True
        )

    def get(self, key: str) -> Optional[str]:
        try:
            return self.redis_client.get(self.prefix + key)
        except redis.RedisError as e:
            logger.error(f"Redis read error for {key}: {e}")
            return None

    def set(self, key: str, value: str) -> None:
        try:
            self.redis_client.set(self.prefix + key, value)
        except redis.RedisError as e:
            logger.error(f"Redis write error for {key}: {e}")

    def remove(self, key: str) -> None:
        try:
            self.redis_client.delete(self.prefix + key)
        except redis.RedisError as e:
            logger.error(f"Redis delete error for {key}: {e}")

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError:
            return False


@dataclass
class StorageScopes:
    """The two storage scopes a verification session reads and writes"""
    durable: KeyValueStore
    ephemeral: KeyValueStore


def get_durable_store(namespace: str) -> KeyValueStore:
    """
    Build the durable store for a namespace based on configuration.

    Args:
        namespace: Identifier of the browser/device owning the state

    Returns:
        KeyValueStore: File, Redis or in-memory store
    """
    backend = settings.DURABLE_STORE_BACKEND
    if backend == "redis":
        return RedisStore(namespace)
    if backend == "file":
        return FileStore(settings.DURABLE_STORE_DIR, namespace)
    return MemoryStore()
