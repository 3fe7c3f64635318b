"""
Boltgun Server - Authenticated HTTP access to an embedded bucket store.

This package implements a small key-value service built on:
- Named buckets holding ordered key/value entries
- SQLite as the embedded transactional engine (one file)
- Static client credentials exchanged for random bearer tokens
- Periodic full-store backups to a local file

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│    HTTP     │────▶│  BucketService  │
    │   (SDK)     │     │   Server    │     │ (auth + one txn)│
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                                                     ▼
                        ┌─────────────────────────────────────────┐
                        │        BucketStore (SQLite, WAL mode)   │
                        └─────────────────────────────────────────┘
                                             │
                                             ▼
                                       ┌───────────┐
                                       │  Backup   │
                                       │ Scheduler │
                                       └───────────┘

Invariants:
    - Every request is authenticated by token; there are no sessions
    - Each request runs in exactly one store transaction
    - Writes with an invalid token commit nothing
    - A credential's token never changes for the life of the store file

How to change safely:
    - Keep the registry key serialization stable (it identifies tokens)
    - Keep response messages stable (the SDK maps them to errors)
"""

from ._version import __version__

__all__ = ["__version__"]
