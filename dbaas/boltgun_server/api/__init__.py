"""
API module for Boltgun server.

This module provides the external interface:
- BucketService: authenticated bucket operations
- HTTP server binding the operations to routes

Invariants:
    - Every operation authenticates per request; there are no sessions
    - Each operation runs in exactly one store transaction
"""

from .http_server import create_http_app
from .service import BucketService, OperationResult

__all__ = [
    "BucketService",
    "OperationResult",
    "create_http_app",
]
