"""
Bucket operation handlers for Boltgun.

BucketService implements the four client operations. Each one parses the
raw request body, then runs exactly one store transaction that combines
authentication with the operation itself:

    ParseBody -> OpenTransaction -> CheckBucketExists (retrieve/remove)
              -> VerifyToken -> PerformOperation -> Respond

Invariants:
    - Body errors are answered before any store access
    - Bucket existence is checked before the token on retrieve/remove
    - A write with an invalid token commits nothing, not even the bucket
    - Transactions run in a worker thread and never span network I/O
    - Client operations cannot touch the registry bucket

How to change safely:
    - Keep error messages stable; the SDK maps them to exception types
    - Raise inside write scopes to abort them, never return early with
      partial writes
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..auth import Authenticator, InvalidTokenError
from ..store import (
    BucketNameRequiredError,
    BucketNotFoundError,
    BucketStore,
    StoreError,
    Transaction,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Response messages (clients match on these)
BODY_UNREADABLE = "Unable to read request body!"
INVALID_BODY = "Invalid request body!"
UNABLE_TO_AUTHENTICATE = "Unable to authenticate!"
INVALID_TOKEN = "Invalid request token!"
BUCKET_MISSING = "Bucket doesn't exist!"
BUCKET_RESERVED = "Bucket is reserved!"
BUCKET_OPEN_FAILED = "Unable to create or open requested bucket!"
KEY_RETRIEVE_FAILED = "Error retrieving requested key!"
KEY_DELETE_FAILED = "Error deleting requested key!"
RESPONSE_FAILED = "Unable to provide response!"


class KeyNotFoundError(Exception):
    """Requested key is absent from an existing bucket."""

    pass


class CredentialRequest(BaseModel):
    """Body of POST /authenticate."""

    model_config = ConfigDict(extra="ignore")

    username: str = Field("", description="Client username")
    password: str = Field("", description="Client password")


class UpdateRequest(BaseModel):
    """Body of POST /update."""

    model_config = ConfigDict(extra="ignore")

    key: str = Field("", description="Entry key")
    bucket: str = Field("", description="Target bucket, created if absent")
    value: str = Field("", description="Entry value")
    token: str = Field("", description="Base64 client token")


class KeyRequest(BaseModel):
    """Body of POST /retrieve and POST /remove."""

    model_config = ConfigDict(extra="ignore")

    key: str = Field("", description="Entry key")
    bucket: str = Field("", description="Existing bucket")
    token: str = Field("", description="Base64 client token")


@dataclass
class OperationResult:
    """HTTP status and JSON payload produced by an operation."""

    status: int
    payload: dict[str, Any]

    @classmethod
    def ok(cls, payload: dict[str, Any]) -> OperationResult:
        return cls(status=200, payload=payload)

    @classmethod
    def error(cls, status: int, message: str) -> OperationResult:
        return cls(status=status, payload={"error": message})


class BucketService:
    """Authenticated bucket operations over a BucketStore.

    Attributes:
        store: Store shared with the backup scheduler
        authenticator: Registry lookups for tokens and credentials

    Example:
        >>> service = BucketService(store)
        >>> result = await service.update(
        ...     b'{"bucket": "b", "key": "k", "value": "v", "token": "..."}'
        ... )
        >>> result.status, result.payload
        (200, {'success': True})
    """

    def __init__(self, store: BucketStore, authenticator: Authenticator | None = None) -> None:
        self.store = store
        self.authenticator = authenticator or Authenticator()

    def _parse(self, model: type[M], body: bytes) -> M | None:
        try:
            return model.model_validate_json(body)
        except ValidationError as e:
            logger.info(
                "Rejected request body",
                extra={"model": model.__name__, "errors": e.error_count()},
            )
            return None

    def _is_reserved(self, bucket: str) -> bool:
        return bucket == self.authenticator.bucket_name

    async def issue_token(self, body: bytes) -> OperationResult:
        """Exchange a registered username/password for its token."""
        if self._parse(CredentialRequest, body) is None:
            return OperationResult.error(400, INVALID_BODY)

        def _find(tx: Transaction) -> bytes | None:
            return self.authenticator.find_token_for(tx, body)

        try:
            token = await asyncio.to_thread(self.store.view, _find)
        except (StoreError, ValueError):
            logger.error("Token lookup failed", exc_info=True)
            return OperationResult.error(500, RESPONSE_FAILED)

        if token is None:
            logger.info("Authentication failed")
            return OperationResult.error(401, UNABLE_TO_AUTHENTICATE)
        return OperationResult.ok({"token": base64.b64encode(token).decode("ascii")})

    async def update(self, body: bytes) -> OperationResult:
        """Write key -> value into a bucket, creating the bucket if needed."""
        request = self._parse(UpdateRequest, body)
        if request is None or not request.key or not request.value:
            return OperationResult.error(400, INVALID_BODY)
        if self._is_reserved(request.bucket):
            return OperationResult.error(400, BUCKET_RESERVED)

        def _update(tx: Transaction) -> None:
            bucket = tx.create_bucket_if_not_exists(request.bucket)
            self.authenticator.require(tx, request.token)
            bucket.put(request.key, request.value)

        try:
            await asyncio.to_thread(self.store.update, _update)
        except BucketNameRequiredError:
            return OperationResult.error(400, BUCKET_OPEN_FAILED)
        except InvalidTokenError:
            logger.info("Rejected update with invalid token", extra={"bucket": request.bucket})
            return OperationResult.error(401, INVALID_TOKEN)
        except StoreError:
            logger.error(
                "Update transaction failed",
                exc_info=True,
                extra={"bucket": request.bucket},
            )
            return OperationResult.error(500, RESPONSE_FAILED)

        return OperationResult.ok({"success": True})

    async def retrieve(self, body: bytes) -> OperationResult:
        """Read the value stored under a key."""
        request = self._parse(KeyRequest, body)
        if request is None or not request.key:
            return OperationResult.error(400, INVALID_BODY)
        if self._is_reserved(request.bucket):
            return OperationResult.error(400, BUCKET_RESERVED)

        def _retrieve(tx: Transaction) -> bytes:
            bucket = tx.bucket(request.bucket)
            self.authenticator.require(tx, request.token)
            value = bucket.get(request.key)
            if value is None:
                raise KeyNotFoundError(request.key)
            return value

        try:
            value = await asyncio.to_thread(self.store.view, _retrieve)
        except BucketNotFoundError:
            logger.info("Retrieve from missing bucket", extra={"bucket": request.bucket})
            return OperationResult.error(400, BUCKET_MISSING)
        except InvalidTokenError:
            logger.info("Rejected retrieve with invalid token", extra={"bucket": request.bucket})
            return OperationResult.error(401, INVALID_TOKEN)
        except KeyNotFoundError:
            return OperationResult.error(400, KEY_RETRIEVE_FAILED)
        except StoreError:
            logger.error(
                "Retrieve transaction failed",
                exc_info=True,
                extra={"bucket": request.bucket},
            )
            return OperationResult.error(500, RESPONSE_FAILED)

        return OperationResult.ok({"value": value.decode("utf-8", errors="replace")})

    async def remove(self, body: bytes) -> OperationResult:
        """Delete a key. Deleting an absent key succeeds."""
        request = self._parse(KeyRequest, body)
        if request is None or not request.key:
            return OperationResult.error(400, INVALID_BODY)
        if self._is_reserved(request.bucket):
            return OperationResult.error(400, BUCKET_RESERVED)

        def _remove(tx: Transaction) -> None:
            bucket = tx.bucket(request.bucket)
            self.authenticator.require(tx, request.token)
            bucket.delete(request.key)

        try:
            await asyncio.to_thread(self.store.update, _remove)
        except BucketNotFoundError:
            logger.info("Remove from missing bucket", extra={"bucket": request.bucket})
            return OperationResult.error(400, BUCKET_MISSING)
        except InvalidTokenError:
            logger.info("Rejected remove with invalid token", extra={"bucket": request.bucket})
            return OperationResult.error(401, INVALID_TOKEN)
        except StoreError:
            logger.error(
                "Remove transaction failed",
                exc_info=True,
                extra={"bucket": request.bucket},
            )
            return OperationResult.error(400, KEY_DELETE_FAILED)

        return OperationResult.ok({"success": True})
