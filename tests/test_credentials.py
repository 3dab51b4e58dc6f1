"""Tests for credential storage and ordering."""

import json
import os
import stat

import pytest

from firewall_advisor.credentials import (
    CredentialRing,
    JSONCredentialStore,
    clean_key,
    slot_name,
)


@pytest.fixture
def store(tmp_path) -> JSONCredentialStore:
    return JSONCredentialStore(tmp_path / "keys.json")


def _ring(store, environ=None, env_vars=None) -> CredentialRing:
    return CredentialRing(
        store,
        env_vars=env_vars if env_vars is not None else ["ANTHROPIC_API_KEY"],
        environ=environ if environ is not None else {},
    )


class TestHelpers:
    def test_slot_name(self):
        assert slot_name(0) == "api_key"
        assert slot_name(3) == "api_key_3"

    def test_clean_key_strips_all_whitespace(self):
        assert clean_key("  sk-ant-\n abc\tdef ") == "sk-ant-abcdef"


class TestJSONCredentialStore:
    """Tests for the file-backed store."""

    def test_missing_file_is_empty(self, store):
        assert store.get("api_key") is None

    def test_save_and_get(self, store):
        store.save("api_key", "secret")
        assert store.get("api_key") == "secret"

    def test_file_is_owner_only(self, store):
        store.save("api_key", "secret")
        mode = stat.S_IMODE(os.stat(store.path).st_mode)
        assert mode == 0o600

    def test_delete(self, store):
        store.save("api_key", "a")
        store.save("api_key_1", "b")
        store.delete("api_key")
        assert store.get("api_key") is None
        assert store.get("api_key_1") == "b"

    def test_delete_missing_is_noop(self, store):
        store.delete("api_key")
        assert not store.path.exists()

    def test_corrupt_file_is_empty(self, store):
        store.path.write_text("{not json")
        assert store.get("api_key") is None

    def test_creates_parent_directory(self, tmp_path):
        store = JSONCredentialStore(tmp_path / "nested" / "dir" / "keys.json")
        store.save("api_key", "x")
        assert json.loads(store.path.read_text()) == {"api_key": "x"}


class TestCredentialRing:
    """Tests for the ordered credential list."""

    def test_empty(self, store):
        ring = _ring(store)
        assert ring.credentials() == []
        assert len(ring) == 0

    def test_environment_first_then_slots(self, store):
        store.save("api_key", "primary")
        store.save("api_key_2", "backup2")
        store.save("api_key_1", "backup1")
        ring = _ring(store, environ={"ANTHROPIC_API_KEY": "from-env"})
        assert ring.credentials() == ["from-env", "primary", "backup1", "backup2"]

    def test_duplicates_removed(self, store):
        store.save("api_key", "same")
        ring = _ring(store, environ={"ANTHROPIC_API_KEY": "same"})
        assert ring.credentials() == ["same"]

    def test_multiple_env_vars_in_order(self, store):
        ring = _ring(
            store,
            environ={"B_KEY": "b", "A_KEY": "a"},
            env_vars=["A_KEY", "B_KEY"],
        )
        assert ring.credentials() == ["a", "b"]
        assert ring.env_source() == "A_KEY"

    def test_slots_beyond_backup_count_ignored(self, store):
        store.save("api_key_6", "ignored")
        assert _ring(store).credentials() == []

    def test_store_reread_each_call(self, store):
        ring = _ring(store)
        assert ring.credentials() == []
        store.save("api_key", "added-later")
        assert ring.credentials() == ["added-later"]

    def test_add_uses_next_free_slot(self, store):
        ring = _ring(store)
        assert ring.add("first") == 0
        assert ring.add("second") == 1
        assert store.get("api_key_1") == "second"

    def test_add_when_full_overwrites_primary(self, store):
        ring = _ring(store)
        for slot in ring.slots():
            ring.add(f"key{slot}", slot=slot)
        assert ring.next_available_slot() == 0

    def test_add_cleans_whitespace(self, store):
        ring = _ring(store)
        ring.add(" abc\n def ")
        assert store.get("api_key") == "abcdef"

    def test_add_empty_raises(self, store):
        with pytest.raises(ValueError, match="empty"):
            _ring(store).add(" \n ")

    def test_add_bad_slot_raises(self, store):
        with pytest.raises(ValueError, match="Slot"):
            _ring(store).add("x", slot=9)

    def test_remove(self, store):
        ring = _ring(store)
        ring.add("a")
        ring.add("b")
        ring.remove(0)
        assert ring.credentials() == ["b"]
        assert ring.next_available_slot() == 0

    def test_list_slots_masks_keys(self, store):
        ring = _ring(store)
        ring.add("sk-ant-REDACTED")
        slots = ring.list_slots()
        assert len(slots) == 1
        assert slots[0].slot == 0
        assert slots[0].prefix == "sk-ant-api03..."
