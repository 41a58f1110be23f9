"""
Unit tests for storage scopes and login notices.
"""

import json
import os
import pytest
import redis
from unittest.mock import MagicMock

from otpverify.core.errors import Severity
from otpverify.core.notices import LoginNotices
from otpverify.core.storage import FileStore, MemoryStore, RedisStore, get_durable_store
from otpverify.core.config import settings


class TestFileStore:
    """Test the JSON file backend"""

    def test_round_trip_across_instances(self, tmp_path):
        FileStore(str(tmp_path), "device-1").set("pendingVerificationEmail", "a@example.com")
        assert FileStore(str(tmp_path), "device-1").get("pendingVerificationEmail") == "a@example.com"

    def test_namespaces_are_isolated(self, tmp_path):
        FileStore(str(tmp_path), "device-1").set("k", "one")
        assert FileStore(str(tmp_path), "device-2").get("k") is None

    def test_namespace_cannot_escape_directory(self, tmp_path):
        store = FileStore(str(tmp_path), "../../etc/passwd")
        store.set("k", "v")
        assert store.file_path.startswith(str(tmp_path))

    def test_remove(self, tmp_path):
        store = FileStore(str(tmp_path), "device-1")
        store.set("k", "v")
        store.remove("k")
        store.remove("missing")
        assert store.get("k") is None

    def test_file_removed_once_empty(self, tmp_path):
        store = FileStore(str(tmp_path), "device-1")
        store.set("pendingVerificationEmail", "a@example.com")
        assert os.path.exists(store.file_path)

        store.remove("pendingVerificationEmail")

        assert not os.path.exists(store.file_path)
        assert list(tmp_path.iterdir()) == []

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        store = FileStore(str(tmp_path), "device-1")
        with open(store.file_path, "w") as f:
            f.write("{not json")
        assert store.get("k") is None

        store.set("k", "v")
        with open(store.file_path) as f:
            assert json.load(f) == {"k": "v"}


class TestRedisStore:
    """Test the Redis backend with a mocked client"""

    def test_keys_are_prefixed(self):
        client = MagicMock()
        client.get.return_value = "a@example.com"
        store = RedisStore("device-1", client=client)

        store.set("pendingVerificationEmail", "a@example.com")
        assert store.get("pendingVerificationEmail") == "a@example.com"

        client.set.assert_called_once_with("otpverify:device-1:pendingVerificationEmail", "a@example.com")
        client.get.assert_called_once_with("otpverify:device-1:pendingVerificationEmail")

    def test_outage_fails_open(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        client.set.side_effect = redis.ConnectionError("down")
        client.delete.side_effect = redis.ConnectionError("down")
        client.ping.side_effect = redis.ConnectionError("down")
        store = RedisStore("device-1", client=client)

        assert store.get("k") is None
        store.set("k", "v")
        store.remove("k")
        assert store.ping() is False


class TestDurableStoreFactory:

    def test_backend_selection(self, monkeypatch, tmp_path):
        monkeypatch.setattr(settings, "DURABLE_STORE_BACKEND", "file")
        monkeypatch.setattr(settings, "DURABLE_STORE_DIR", str(tmp_path))
        assert isinstance(get_durable_store("d"), FileStore)

        monkeypatch.setattr(settings, "DURABLE_STORE_BACKEND", "memory")
        assert isinstance(get_durable_store("d"), MemoryStore)


class TestLoginNotices:
    """Test consume-once semantics"""

    def test_consumed_exactly_once(self):
        notices = LoginNotices(MemoryStore())
        notices.push("Email verified successfully! You can now log in.", Severity.SUCCESS)

        first = notices.consume()
        assert first.message == "Email verified successfully! You can now log in."
        assert first.severity == Severity.SUCCESS
        assert notices.consume() is None

    def test_nothing_queued(self):
        assert LoginNotices(MemoryStore()).consume() is None

    def test_unknown_severity_falls_back_to_info(self):
        store = MemoryStore()
        store.set("loginMessage", "hello")
        store.set("loginMessageType", "shiny")
        assert LoginNotices(store).consume().severity == Severity.INFO
