"""
Error types for Boltgun SDK.

This module defines all exception types raised by the SDK:
- BoltgunError: Base exception
- ConnectionError: Server connection issues
- AuthenticationError: Credentials or token rejected
- BucketNotFoundError: Bucket was never created
- KeyNotFoundError: Key absent from an existing bucket
- RequestError: Any other rejected request

Invariants:
    - All errors inherit from BoltgunError
    - Errors carry the HTTP status and server message when there is one
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BoltgunError(Exception):
    """Base exception for all Boltgun SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        status: HTTP status returned by the server, if any
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "BOLTGUN_ERROR"
        self.status = status
        self.details = details or {}


class ConnectionError(BoltgunError):
    """Failed to reach the Boltgun server.

    Raised when:
    - Server is unreachable
    - Connection times out
    - A successful response is not JSON
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class AuthenticationError(BoltgunError):
    """Credentials or token were rejected.

    Raised when:
    - Username/password is not registered
    - Request token matches no registered client
    - An operation is attempted before authenticate()
    """

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message, code="AUTHENTICATION_ERROR", status=status)


class BucketNotFoundError(BoltgunError):
    """Bucket does not exist on the server."""

    def __init__(self, bucket: str, status: Optional[int] = None) -> None:
        super().__init__(
            f"Bucket doesn't exist: {bucket}",
            code="BUCKET_NOT_FOUND",
            status=status,
            details={"bucket": bucket},
        )
        self.bucket = bucket


class KeyNotFoundError(BoltgunError):
    """Key does not exist in the bucket."""

    def __init__(self, bucket: str, key: str, status: Optional[int] = None) -> None:
        super().__init__(
            f"Key '{key}' not found in bucket '{bucket}'",
            code="KEY_NOT_FOUND",
            status=status,
            details={"bucket": bucket, "key": key},
        )
        self.bucket = bucket
        self.key = key


class RequestError(BoltgunError):
    """Server rejected the request for another reason.

    Raised when:
    - Request body is invalid (empty key or value)
    - Bucket name is reserved or empty
    - Server failed to complete the operation
    - Body was rejected before handling, e.g. too large (413)
    """

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message, code="REQUEST_ERROR", status=status)
