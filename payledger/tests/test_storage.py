"""
Unit Tests for the Record Store

Tests cover:
1. Defaults for missing, empty and corrupt files
2. Backup before overwrite
3. Save/load fidelity
4. Startup restoration from autosave shadows
5. Snapshots and the autosave timer
"""

import json
import time

import pytest

from payledger.storage import AutosaveTimer, Collection, RecordStore


class TestLoadDefaults:
    """Tests for load() fallbacks."""

    def test_missing_files_use_collection_defaults(self, tmp_path):
        """Test that missing files load as an empty mapping or list."""
        store = RecordStore(tmp_path / "nowhere")

        assert store.load(Collection.USERS) == {}
        assert store.load(Collection.TRANSACTIONS) == []
        assert store.load(Collection.GIFT_CARD_SUBMISSIONS) == []

    def test_empty_file_uses_default(self, tmp_path):
        """Test that a whitespace-only file loads as the default."""
        store = RecordStore(tmp_path)
        store.path(Collection.ADMIN_LOGS).write_text("   \n")

        assert store.load(Collection.ADMIN_LOGS) == []

    def test_corrupt_file_is_preserved_and_default_returned(self, tmp_path):
        """Test that malformed JSON never raises and is kept aside."""
        store = RecordStore(tmp_path)
        store.path(Collection.USERS).write_text('{"user_1": {"name": ')

        assert store.load(Collection.USERS) == {}

        # Verify the broken content was copied to a timestamped artifact
        artifacts = list(tmp_path.glob("users.json.corrupted-*"))
        assert len(artifacts) == 1
        assert artifacts[0].read_text() == '{"user_1": {"name": '

    def test_undecodable_bytes_are_treated_as_corrupt(self, tmp_path):
        """Test that invalid UTF-8 falls back to the default and is kept aside."""
        store = RecordStore(tmp_path)
        store.path(Collection.USERS).write_bytes(b'{"u1": "\xff\xfe"}')

        assert store.load(Collection.USERS) == {}

        artifacts = list(tmp_path.glob("users.json.corrupted-*"))
        assert len(artifacts) == 1
        assert artifacts[0].read_bytes() == b'{"u1": "\xff\xfe"}'

    def test_wrong_document_shape_is_treated_as_corrupt(self, tmp_path):
        """Test that a list where a mapping belongs falls back to the default."""
        store = RecordStore(tmp_path)
        store.path(Collection.USERS).write_text("[1, 2, 3]")

        assert store.load(Collection.USERS) == {}
        assert list(tmp_path.glob("users.json.corrupted-*"))


class TestSave:
    """Tests for save() and edit()."""

    def test_round_trip_is_deep_equal(self, store):
        """Test that loading after saving returns the same document."""
        document = [
            {"type": "admin_credit", "amount": 12.5, "note": "café", "nested": {"a": [1, 2]}},
            {"type": "admin_debit", "amount": 3.0, "status": None},
        ]

        assert store.save(Collection.TRANSACTIONS, document) is True
        assert store.load(Collection.TRANSACTIONS) == document

    def test_previous_content_is_copied_to_backup(self, store):
        """Test that the old document lands in .backup before overwrite."""
        store.save(Collection.USERS, {"u1": {"name": "First"}})
        store.save(Collection.USERS, {"u1": {"name": "Second"}})

        backup = store.path(Collection.USERS).with_name("users.json.backup")
        assert json.loads(backup.read_text()) == {"u1": {"name": "First"}}
        assert store.load(Collection.USERS) == {"u1": {"name": "Second"}}

    def test_no_temp_files_left_behind(self, store):
        """Test that atomic writes clean up after themselves."""
        store.save(Collection.TRANSACTIONS, [{"amount": 1}])

        assert not list(store.data_dir.glob(".*.tmp"))

    def test_unserializable_document_is_rejected_softly(self, store):
        """Test that save() reports failure instead of raising."""
        store.save(Collection.TRANSACTIONS, [{"amount": 1}])

        assert store.save(Collection.TRANSACTIONS, [{"amount": object()}]) is False
        assert store.load(Collection.TRANSACTIONS) == [{"amount": 1}]

    def test_edit_saves_on_clean_exit(self, store):
        """Test that edit() persists in-place changes."""
        with store.edit(Collection.ADMIN_LOGS) as logs:
            logs.append({"action": "login"})

        assert store.load(Collection.ADMIN_LOGS) == [{"action": "login"}]

    def test_edit_discards_changes_when_block_raises(self, store):
        """Test that edit() does not save if the block fails."""
        with pytest.raises(RuntimeError):
            with store.edit(Collection.ADMIN_LOGS) as logs:
                logs.append({"action": "login"})
                raise RuntimeError("boom")

        assert store.load(Collection.ADMIN_LOGS) == []


class TestInitialize:
    """Tests for startup initialization."""

    def test_creates_every_collection_file(self, tmp_path):
        """Test that initialize() writes default documents."""
        store = RecordStore(tmp_path / "data")

        assert store.initialize() == 0
        for collection in Collection:
            assert store.path(collection).exists()
        assert json.loads(store.path(Collection.USERS).read_text()) == {}

    def test_restores_missing_file_from_autosave(self, tmp_path):
        """Test that a missing main file is restored from its shadow."""
        store = RecordStore(tmp_path)
        shadow = tmp_path / "users.json.autosave"
        shadow.write_text(json.dumps({"u1": {"name": "Saved"}}))

        assert store.initialize() == 1
        assert store.load(Collection.USERS) == {"u1": {"name": "Saved"}}

    def test_corrupt_file_is_recreated(self, tmp_path):
        """Test that initialize() preserves and replaces a corrupt file."""
        store = RecordStore(tmp_path)
        store.path(Collection.TRANSACTIONS).write_text("not json")

        store.initialize()

        assert json.loads(store.path(Collection.TRANSACTIONS).read_text()) == []
        assert list(tmp_path.glob("transactions.json.corrupted-*"))

    def test_undecodable_file_is_recreated(self, tmp_path):
        """Test that initialize() survives invalid UTF-8 in a data file."""
        store = RecordStore(tmp_path)
        store.path(Collection.TRANSACTIONS).write_bytes(b"[\xff]")

        assert store.initialize() == 0

        assert store.load(Collection.TRANSACTIONS) == []
        assert list(tmp_path.glob("transactions.json.corrupted-*"))

    def test_undecodable_content_is_still_backed_up(self, tmp_path):
        """Test that save() copies undecodable bytes to .backup and proceeds."""
        store = RecordStore(tmp_path)
        store.path(Collection.ADMIN_LOGS).write_bytes(b"[\xff]")

        assert store.save(Collection.ADMIN_LOGS, [{"action": "login"}]) is True

        assert store.path(Collection.ADMIN_LOGS).with_name("admin_logs.json.backup").read_bytes() == b"[\xff]"
        assert store.load(Collection.ADMIN_LOGS) == [{"action": "login"}]


class TestShadows:
    """Tests for autosave snapshots and emergency backups."""

    def test_snapshot_writes_autosave_for_every_collection(self, store):
        """Test that snapshot() mirrors current content."""
        store.save(Collection.USERS, {"u1": {"name": "A"}})

        assert store.snapshot() == len(Collection)
        shadow = store.path(Collection.USERS).with_name("users.json.autosave")
        assert json.loads(shadow.read_text()) == {"u1": {"name": "A"}}

    def test_emergency_backup(self, store):
        """Test that an emergency copy is written next to the file."""
        store.save(Collection.USERS, {"u1": {"name": "A"}})

        target = store.emergency_backup(Collection.USERS)

        assert target is not None
        assert target.name.startswith("users.json.emergency-")
        assert json.loads(target.read_text()) == {"u1": {"name": "A"}}

    def test_autosave_timer_snapshots_until_stopped(self, store):
        """Test that the background timer writes shadows periodically."""
        store.save(Collection.TRANSACTIONS, [{"amount": 5}])
        shadow = store.path(Collection.TRANSACTIONS).with_name("transactions.json.autosave")

        timer = AutosaveTimer(store, interval_seconds=0.05)
        timer.start()
        try:
            deadline = time.monotonic() + 5
            while not shadow.exists() and time.monotonic() < deadline:
                time.sleep(0.02)
        finally:
            timer.stop()

        assert json.loads(shadow.read_text()) == [{"amount": 5}]
        assert not timer.is_alive()
