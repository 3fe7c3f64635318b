"""
Embedded bucket store for Boltgun.

This module wraps a single SQLite file as an ordered key-value store that is
partitioned into named buckets. Every access happens inside a transaction
scope granted by the store:

- read_transaction(): consistent snapshot, runs alongside the writer
- write_transaction(): one writer at a time, process-wide

Invariants:
    - A bucket exists only after it was created inside a write transaction
    - Keys iterate in ascending byte order within a bucket
    - A scope commits only when its body returns; any exception rolls back
      every mutation made in that scope
    - The store file is created with owner-only permissions (0600)

How to change safely:
    - Keep the table layout compatible with existing store and backup files
    - Never hold a transaction open across network I/O
    - Test rollback paths whenever adding a mutating operation

Table schema:
    buckets:
        - name BLOB PRIMARY KEY
        - created_at INTEGER (Unix ms)

    entries:
        - bucket BLOB
        - key BLOB
        - value BLOB
        - PRIMARY KEY (bucket, key)
"""

from __future__ import annotations

import logging
import os
import sqlite3
import tempfile
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreError(Exception):
    """Storage-layer failure."""

    pass


class StoreClosedError(StoreError):
    """Store is closed and accepts no new transactions."""

    pass


class BucketNotFoundError(StoreError):
    """Requested bucket does not exist."""

    pass


class BucketExistsError(StoreError):
    """Bucket already exists."""

    pass


class BucketNameRequiredError(StoreError):
    """Bucket name is empty."""

    pass


class KeyRequiredError(StoreError):
    """Entry key is empty."""

    pass


class TransactionNotWritableError(StoreError):
    """Mutation attempted through a read-only transaction."""

    pass


class TransactionClosedError(StoreError):
    """Transaction was used after its scope ended."""

    pass


def _to_bytes(value: bytes | str) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class Bucket:
    """A named partition of the store, bound to the transaction that opened it.

    Attributes:
        name: Bucket name as raw bytes
    """

    def __init__(self, tx: Transaction, name: bytes) -> None:
        self._tx = tx
        self.name = name

    def get(self, key: bytes | str) -> bytes | None:
        """Return the value stored under key, or None if absent."""
        row = self._tx._execute(
            "SELECT value FROM entries WHERE bucket = ? AND key = ?",
            (self.name, _to_bytes(key)),
        ).fetchone()
        return None if row is None else bytes(row[0])

    def put(self, key: bytes | str, value: bytes | str) -> None:
        """Set key to value, replacing any previous value.

        Raises:
            TransactionNotWritableError: If the transaction is read-only
            KeyRequiredError: If key is empty
        """
        self._tx._require_writable()
        key_bytes = _to_bytes(key)
        if not key_bytes:
            raise KeyRequiredError("Key required")
        self._tx._execute(
            "INSERT OR REPLACE INTO entries (bucket, key, value) VALUES (?, ?, ?)",
            (self.name, key_bytes, _to_bytes(value)),
        )

    def delete(self, key: bytes | str) -> None:
        """Remove key. Deleting an absent key is not an error."""
        self._tx._require_writable()
        self._tx._execute(
            "DELETE FROM entries WHERE bucket = ? AND key = ?",
            (self.name, _to_bytes(key)),
        )

    def items(self) -> Iterator[tuple[bytes, bytes]]:
        """Iterate (key, value) pairs in ascending key order."""
        rows = self._tx._execute(
            "SELECT key, value FROM entries WHERE bucket = ? ORDER BY key",
            (self.name,),
        ).fetchall()
        for key, value in rows:
            yield bytes(key), bytes(value)

    def __len__(self) -> int:
        row = self._tx._execute(
            "SELECT COUNT(*) FROM entries WHERE bucket = ?", (self.name,)
        ).fetchone()
        return int(row[0])


class Transaction:
    """Scoped access to the bucket namespace.

    Instances are only created by BucketStore and are valid until the
    scope that produced them ends.

    Attributes:
        writable: Whether mutations are allowed
    """

    def __init__(self, conn: sqlite3.Connection, writable: bool) -> None:
        self._conn = conn
        self.writable = writable
        self._closed = False

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        if self._closed:
            raise TransactionClosedError("Transaction has already ended")
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreError(f"Store operation failed: {e}") from e

    def _require_writable(self) -> None:
        if not self.writable:
            raise TransactionNotWritableError("Transaction is read-only")

    def has_bucket(self, name: bytes | str) -> bool:
        """Check whether a bucket exists."""
        row = self._execute(
            "SELECT 1 FROM buckets WHERE name = ?", (_to_bytes(name),)
        ).fetchone()
        return row is not None

    def bucket(self, name: bytes | str) -> Bucket:
        """Open an existing bucket. Never creates one.

        Raises:
            BucketNotFoundError: If the bucket does not exist
        """
        name_bytes = _to_bytes(name)
        if not self.has_bucket(name_bytes):
            raise BucketNotFoundError(f"Bucket not found: {name_bytes!r}")
        return Bucket(self, name_bytes)

    def create_bucket(self, name: bytes | str) -> Bucket:
        """Create a new bucket.

        Raises:
            BucketNameRequiredError: If name is empty
            BucketExistsError: If the bucket already exists
        """
        self._require_writable()
        name_bytes = _to_bytes(name)
        if not name_bytes:
            raise BucketNameRequiredError("Bucket name required")
        if self.has_bucket(name_bytes):
            raise BucketExistsError(f"Bucket already exists: {name_bytes!r}")
        self._execute(
            "INSERT INTO buckets (name, created_at) VALUES (?, ?)",
            (name_bytes, int(time.time() * 1000)),
        )
        return Bucket(self, name_bytes)

    def create_bucket_if_not_exists(self, name: bytes | str) -> Bucket:
        """Open a bucket, creating it first if absent.

        Raises:
            BucketNameRequiredError: If name is empty
        """
        self._require_writable()
        name_bytes = _to_bytes(name)
        if not name_bytes:
            raise BucketNameRequiredError("Bucket name required")
        self._execute(
            "INSERT OR IGNORE INTO buckets (name, created_at) VALUES (?, ?)",
            (name_bytes, int(time.time() * 1000)),
        )
        return Bucket(self, name_bytes)

    def buckets(self) -> list[bytes]:
        """List bucket names in ascending order."""
        rows = self._execute("SELECT name FROM buckets ORDER BY name").fetchall()
        return [bytes(row[0]) for row in rows]


class BucketStore:
    """Transactional bucket store backed by one SQLite file.

    Thread safety:
        A connection is created per transaction, so scopes may run on any
        thread. SQLite serializes writers (BEGIN IMMEDIATE) and, in WAL
        mode, gives readers a snapshot that writers do not disturb.

    Example:
        >>> store = BucketStore("/var/lib/boltgun/boltgun.db")
        >>> store.open()
        >>> with store.write_transaction() as tx:
        ...     tx.create_bucket_if_not_exists("fruit").put("apple", "red")
        >>> store.view(lambda tx: tx.bucket("fruit").get("apple"))
        b'red'
        >>> store.close()
    """

    def __init__(
        self,
        path: str | Path,
        mode: int = 0o600,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        read_only: bool = False,
    ) -> None:
        """Initialize the store. No file is touched until open().

        Args:
            path: Store file location
            mode: Permission bits used when creating the file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: How long a writer waits for the write lock
            read_only: Open an existing file without allowing writes
        """
        self.path = Path(path)
        self.mode = mode
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.read_only = read_only

        self._state = threading.Condition()
        self._active = 0
        self._closed = True

    @property
    def is_open(self) -> bool:
        return not self._closed

    def open(self) -> None:
        """Open the store file, creating it and its schema if needed.

        Raises:
            StoreError: If the file cannot be opened or initialized
        """
        if self.read_only:
            if not self.path.exists():
                raise StoreError(f"Store file not found: {self.path}")
        else:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.path, os.O_RDWR | os.O_CREAT, self.mode)
                os.close(fd)
            except OSError as e:
                raise StoreError(f"Unable to open store file {self.path}: {e}") from e

        conn = self._connect()
        try:
            if not self.read_only:
                if self.wal_mode:
                    conn.execute("PRAGMA journal_mode = WAL")
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS buckets (
                        name BLOB NOT NULL PRIMARY KEY,
                        created_at INTEGER NOT NULL
                    ) WITHOUT ROWID;

                    CREATE TABLE IF NOT EXISTS entries (
                        bucket BLOB NOT NULL,
                        key BLOB NOT NULL,
                        value BLOB NOT NULL,
                        PRIMARY KEY (bucket, key)
                    ) WITHOUT ROWID;
                """)
            else:
                conn.execute("SELECT COUNT(*) FROM buckets").fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Unable to initialize store {self.path}: {e}") from e
        finally:
            conn.close()

        with self._state:
            self._closed = False
        logger.info(
            "Opened bucket store",
            extra={"path": str(self.path), "read_only": self.read_only},
        )

    def close(self) -> None:
        """Stop granting transactions and wait for in-flight ones to finish."""
        with self._state:
            if self._closed:
                return
            self._closed = True
            while self._active:
                self._state.wait()
        logger.info("Closed bucket store", extra={"path": str(self.path)})

    def _connect(self) -> sqlite3.Connection:
        try:
            if self.read_only:
                conn = sqlite3.connect(
                    f"{self.path.resolve().as_uri()}?mode=ro",
                    uri=True,
                    timeout=self.busy_timeout_ms / 1000.0,
                    isolation_level=None,
                )
            else:
                conn = sqlite3.connect(
                    str(self.path),
                    timeout=self.busy_timeout_ms / 1000.0,
                    isolation_level=None,  # Explicit BEGIN/COMMIT below
                )
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute("PRAGMA synchronous = NORMAL")
        except sqlite3.Error as e:
            raise StoreError(f"Unable to connect to store {self.path}: {e}") from e
        return conn

    def _acquire(self) -> None:
        with self._state:
            if self._closed:
                raise StoreClosedError(f"Store is closed: {self.path}")
            self._active += 1

    def _release(self) -> None:
        with self._state:
            self._active -= 1
            self._state.notify_all()

    @contextmanager
    def _transaction(self, writable: bool) -> Iterator[Transaction]:
        if writable and self.read_only:
            raise TransactionNotWritableError(f"Store opened read-only: {self.path}")

        self._acquire()
        try:
            conn = self._connect()
            try:
                try:
                    if writable:
                        conn.execute("BEGIN IMMEDIATE")
                    else:
                        conn.execute("BEGIN")
                        # Pin the snapshot now instead of at the first query
                        conn.execute("SELECT COUNT(*) FROM buckets").fetchone()
                except sqlite3.Error as e:
                    raise StoreError(f"Unable to begin transaction: {e}") from e

                tx = Transaction(conn, writable)
                try:
                    yield tx
                except BaseException:
                    tx._closed = True
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise

                tx._closed = True
                try:
                    conn.execute("COMMIT" if writable else "ROLLBACK")
                except sqlite3.Error as e:
                    raise StoreError(f"Unable to commit transaction: {e}") from e
            finally:
                conn.close()
        finally:
            self._release()

    def read_transaction(self) -> AbstractContextManager[Transaction]:
        """Grant a read-only snapshot scope."""
        return self._transaction(writable=False)

    def write_transaction(self) -> AbstractContextManager[Transaction]:
        """Grant a read-write scope; commits on exit, rolls back on error."""
        return self._transaction(writable=True)

    def view(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn inside a read transaction and return its result."""
        with self.read_transaction() as tx:
            return fn(tx)

    def update(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn inside a write transaction and return its result.

        If fn raises, nothing it wrote is committed and the exception
        propagates to the caller.
        """
        with self.write_transaction() as tx:
            return fn(tx)

    def backup_to(self, dest: str | Path) -> int:
        """Write a consistent copy of the whole store to dest.

        The copy is taken inside a read transaction with the SQLite online
        backup API, written to a temporary file beside dest and then moved
        over dest, so dest is either the previous backup or the new one.

        Args:
            dest: Backup file location (created or overwritten)

        Returns:
            Size of the backup file in bytes
        """
        dest_path = Path(dest)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        # Unique per call so overlapping backups never share a temp file
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{dest_path.name}.", suffix=".tmp", dir=dest_path.parent
        )
        os.close(fd)
        tmp_path = Path(tmp_name)
        os.chmod(tmp_path, self.mode)

        try:
            with self.read_transaction() as tx:
                dest_conn = sqlite3.connect(str(tmp_path), isolation_level=None)
                try:
                    tx._conn.backup(dest_conn)
                    # Standalone single-file copy
                    dest_conn.execute("PRAGMA journal_mode = DELETE")
                except sqlite3.Error as e:
                    raise StoreError(f"Backup to {dest_path} failed: {e}") from e
                finally:
                    dest_conn.close()
            os.replace(tmp_path, dest_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        return dest_path.stat().st_size
