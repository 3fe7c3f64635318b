"""
Unit tests for the embedded bucket store.

Tests cover:
- Bucket creation and lookup
- Put/get/delete and key ordering
- Commit and rollback of write scopes
- Snapshot isolation of read scopes
- Close semantics and file permissions
- Online backups
"""

import os
import stat
import tempfile
import threading
from pathlib import Path

import pytest

from dbaas.boltgun_server.store import (
    BucketExistsError,
    BucketNameRequiredError,
    BucketNotFoundError,
    BucketStore,
    KeyRequiredError,
    StoreClosedError,
    StoreError,
    TransactionClosedError,
    TransactionNotWritableError,
)


class TestBucketStore:
    """Tests for BucketStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def store(self, data_dir):
        """Create an open store."""
        store = BucketStore(data_dir / "boltgun.db")
        store.open()
        yield store
        store.close()

    def test_open_creates_file_with_owner_only_mode(self, data_dir):
        """Store file is created with 0600 permissions."""
        path = data_dir / "nested" / "boltgun.db"
        store = BucketStore(path)
        store.open()
        try:
            assert path.exists()
            assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        finally:
            store.close()

    def test_reopen_keeps_data(self, data_dir):
        """Committed data survives close and reopen."""
        path = data_dir / "boltgun.db"
        store = BucketStore(path)
        store.open()
        store.update(lambda tx: tx.create_bucket("fruit").put("apple", "red"))
        store.close()

        reopened = BucketStore(path)
        reopened.open()
        try:
            assert reopened.view(lambda tx: tx.bucket("fruit").get("apple")) == b"red"
        finally:
            reopened.close()

    def test_put_get_delete(self, store):
        """Values round-trip through a bucket."""
        with store.write_transaction() as tx:
            bucket = tx.create_bucket_if_not_exists("fruit")
            bucket.put("apple", "red")
            bucket.put("banana", b"yellow")

        with store.read_transaction() as tx:
            bucket = tx.bucket("fruit")
            assert bucket.get("apple") == b"red"
            assert bucket.get(b"banana") == b"yellow"
            assert bucket.get("cherry") is None

        with store.write_transaction() as tx:
            tx.bucket("fruit").delete("apple")
            # Absent key is not an error
            tx.bucket("fruit").delete("cherry")

        assert store.view(lambda tx: tx.bucket("fruit").get("apple")) is None

    def test_put_replaces_value(self, store):
        """Second put overwrites the first."""
        with store.write_transaction() as tx:
            bucket = tx.create_bucket("fruit")
            bucket.put("apple", "red")
            bucket.put("apple", "green")

        assert store.view(lambda tx: tx.bucket("fruit").get("apple")) == b"green"

    def test_items_in_key_order(self, store):
        """Keys iterate in ascending byte order."""
        with store.write_transaction() as tx:
            bucket = tx.create_bucket("letters")
            for key in ["c", "a", "b"]:
                bucket.put(key, key.upper())

        with store.read_transaction() as tx:
            bucket = tx.bucket("letters")
            assert list(bucket.items()) == [(b"a", b"A"), (b"b", b"B"), (b"c", b"C")]
            assert len(bucket) == 3

    def test_buckets_are_isolated(self, store):
        """Same key in two buckets holds two values."""
        with store.write_transaction() as tx:
            tx.create_bucket("one").put("k", "1")
            tx.create_bucket("two").put("k", "2")

        with store.read_transaction() as tx:
            assert tx.bucket("one").get("k") == b"1"
            assert tx.bucket("two").get("k") == b"2"
            assert tx.buckets() == [b"one", b"two"]

    def test_bucket_lookup_never_creates(self, store):
        """Opening a missing bucket raises and creates nothing."""
        with pytest.raises(BucketNotFoundError):
            store.view(lambda tx: tx.bucket("missing"))
        with pytest.raises(BucketNotFoundError):
            store.update(lambda tx: tx.bucket("missing"))

        assert store.view(lambda tx: tx.has_bucket("missing")) is False

    def test_create_bucket_errors(self, store):
        """Duplicate and empty bucket names are rejected."""
        store.update(lambda tx: tx.create_bucket("fruit"))

        with pytest.raises(BucketExistsError):
            store.update(lambda tx: tx.create_bucket("fruit"))
        with pytest.raises(BucketNameRequiredError):
            store.update(lambda tx: tx.create_bucket(""))
        with pytest.raises(BucketNameRequiredError):
            store.update(lambda tx: tx.create_bucket_if_not_exists(""))

    def test_create_bucket_if_not_exists_keeps_entries(self, store):
        """Opening an existing bucket does not reset it."""
        store.update(lambda tx: tx.create_bucket("fruit").put("apple", "red"))
        store.update(lambda tx: tx.create_bucket_if_not_exists("fruit"))

        assert store.view(lambda tx: tx.bucket("fruit").get("apple")) == b"red"

    def test_empty_key_rejected(self, store):
        """Empty keys cannot be stored."""
        with pytest.raises(KeyRequiredError):
            store.update(lambda tx: tx.create_bucket("fruit").put("", "red"))

    def test_read_transaction_rejects_writes(self, store):
        """Mutations through a read scope fail."""
        store.update(lambda tx: tx.create_bucket("fruit"))

        with pytest.raises(TransactionNotWritableError):
            store.view(lambda tx: tx.bucket("fruit").put("apple", "red"))
        with pytest.raises(TransactionNotWritableError):
            store.view(lambda tx: tx.create_bucket("other"))

    def test_exception_rolls_back_scope(self, store):
        """Every write in a failed scope is discarded."""

        def _fail(tx):
            tx.create_bucket("fruit").put("apple", "red")
            raise ValueError("abort")

        with pytest.raises(ValueError, match="abort"):
            store.update(_fail)

        assert store.view(lambda tx: tx.has_bucket("fruit")) is False

    def test_update_returns_result(self, store):
        """update() and view() return the callback's result."""
        assert store.update(lambda tx: tx.create_bucket("fruit").name) == b"fruit"
        assert store.view(lambda tx: tx.buckets()) == [b"fruit"]

    def test_read_snapshot_ignores_later_commits(self, store):
        """A read scope keeps seeing the state from when it began."""
        store.update(lambda tx: tx.create_bucket("fruit").put("apple", "red"))

        with store.read_transaction() as tx:
            store.update(lambda wtx: wtx.bucket("fruit").put("apple", "green"))
            assert tx.bucket("fruit").get("apple") == b"red"

        assert store.view(lambda tx: tx.bucket("fruit").get("apple")) == b"green"

    def test_writers_are_serialized(self, data_dir):
        """A second writer cannot begin while the first holds the lock."""
        store = BucketStore(data_dir / "boltgun.db", busy_timeout_ms=50)
        store.open()
        holding = threading.Event()
        release = threading.Event()

        def _hold():
            with store.write_transaction() as tx:
                tx.create_bucket("fruit")
                holding.set()
                release.wait(5)

        thread = threading.Thread(target=_hold)
        thread.start()
        try:
            assert holding.wait(5)
            with pytest.raises(StoreError):
                store.update(lambda tx: tx.create_bucket("other"))
        finally:
            release.set()
            thread.join()
            store.close()

    def test_transaction_unusable_after_scope(self, store):
        """A transaction handle escaping its scope fails on use."""
        store.update(lambda tx: tx.create_bucket("fruit"))
        with store.read_transaction() as tx:
            bucket = tx.bucket("fruit")

        with pytest.raises(TransactionClosedError):
            bucket.get("apple")

    def test_closed_store_rejects_transactions(self, data_dir):
        """No scopes are granted after close()."""
        store = BucketStore(data_dir / "boltgun.db")
        store.open()
        store.close()

        assert store.is_open is False
        with pytest.raises(StoreClosedError):
            store.view(lambda tx: tx.buckets())

    def test_close_waits_for_active_transactions(self, data_dir):
        """close() blocks until in-flight scopes finish."""
        store = BucketStore(data_dir / "boltgun.db")
        store.open()
        inside = threading.Event()
        release = threading.Event()

        def _read():
            with store.read_transaction():
                inside.set()
                release.wait(5)

        reader = threading.Thread(target=_read)
        reader.start()
        assert inside.wait(5)

        closer = threading.Thread(target=store.close)
        closer.start()
        closer.join(0.2)
        assert closer.is_alive()

        release.set()
        reader.join()
        closer.join(5)
        assert not closer.is_alive()
        assert store.is_open is False

    def test_read_only_store(self, data_dir):
        """Read-only stores can read but never write."""
        path = data_dir / "boltgun.db"
        store = BucketStore(path)
        store.open()
        store.update(lambda tx: tx.create_bucket("fruit").put("apple", "red"))
        store.close()

        ro = BucketStore(path, read_only=True)
        ro.open()
        try:
            assert ro.view(lambda tx: tx.bucket("fruit").get("apple")) == b"red"
            with pytest.raises(TransactionNotWritableError):
                ro.update(lambda tx: tx.create_bucket("other"))
        finally:
            ro.close()

    def test_read_only_missing_file(self, data_dir):
        """Opening a missing file read-only fails."""
        with pytest.raises(StoreError):
            BucketStore(data_dir / "missing.db", read_only=True).open()

    def test_backup_to(self, store, data_dir):
        """Backup is a standalone copy of the whole store."""
        with store.write_transaction() as tx:
            tx.create_bucket("fruit").put("apple", "red")
            tx.create_bucket("veg").put("kale", "green")

        dest = data_dir / "backups" / "boltgun.bak"
        size = store.backup_to(dest)

        assert size == dest.stat().st_size
        assert size > 0
        assert stat.S_IMODE(os.stat(dest).st_mode) == 0o600
        assert sorted(p.name for p in dest.parent.iterdir()) == ["boltgun.bak"]

        # Later writes do not reach the existing backup
        store.update(lambda tx: tx.bucket("fruit").put("apple", "green"))

        copy = BucketStore(dest, read_only=True)
        copy.open()
        try:
            assert copy.view(lambda tx: tx.bucket("fruit").get("apple")) == b"red"
            assert copy.view(lambda tx: tx.bucket("veg").get("kale")) == b"green"
        finally:
            copy.close()

    def test_backup_overwrites_previous(self, store, data_dir):
        """A second backup replaces the first."""
        dest = data_dir / "boltgun.bak"
        store.update(lambda tx: tx.create_bucket("fruit").put("apple", "red"))
        store.backup_to(dest)
        store.update(lambda tx: tx.bucket("fruit").put("apple", "green"))
        store.backup_to(dest)

        copy = BucketStore(dest, read_only=True)
        copy.open()
        try:
            assert copy.view(lambda tx: tx.bucket("fruit").get("apple")) == b"green"
        finally:
            copy.close()

    def test_overlapping_backups_to_same_dest(self, store, data_dir):
        """Concurrent backups to one path each use their own temp file."""
        store.update(lambda tx: tx.create_bucket("fruit").put("apple", "red"))
        dest = data_dir / "boltgun.bak"
        errors = []

        def _backup():
            try:
                store.backup_to(dest)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=_backup) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert not list(data_dir.glob("*.tmp"))
        copy = BucketStore(dest, read_only=True)
        copy.open()
        try:
            assert copy.view(lambda tx: tx.bucket("fruit").get("apple")) == b"red"
        finally:
            copy.close()
