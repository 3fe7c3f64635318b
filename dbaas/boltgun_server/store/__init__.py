"""
Store module for Boltgun.

This module owns the embedded key-value engine:
- BucketStore: the single on-disk store handle
- Transaction: read or read-write scope over the bucket namespace
- Bucket: ordered key/value partition inside a transaction

Invariants:
    - All reads and writes happen inside a transaction scope
    - Write scopes are atomic and serialized process-wide
    - The store handle is passed explicitly, never held globally
"""

from .bucket_store import (
    Bucket,
    BucketExistsError,
    BucketNameRequiredError,
    BucketNotFoundError,
    BucketStore,
    KeyRequiredError,
    StoreClosedError,
    StoreError,
    Transaction,
    TransactionClosedError,
    TransactionNotWritableError,
)

__all__ = [
    "Bucket",
    "BucketExistsError",
    "BucketNameRequiredError",
    "BucketNotFoundError",
    "BucketStore",
    "KeyRequiredError",
    "StoreClosedError",
    "StoreError",
    "Transaction",
    "TransactionClosedError",
    "TransactionNotWritableError",
]
