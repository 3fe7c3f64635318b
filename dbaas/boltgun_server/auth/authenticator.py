"""
Token authentication for Boltgun.

Two lookups run against the registry bucket, both inside a transaction
supplied by the caller:

- verify(): does a presented base64 token match any stored token?
- find_token_for(): which token belongs to a presented credential?

Both are linear scans in bucket order. The registry is small and static,
so an index by token is not needed.

Invariants:
    - Any stored token authenticates, whichever credential it belongs to
    - Credential matching compares decoded JSON, never raw bytes
    - An empty token never authenticates
"""

from __future__ import annotations

import base64
import hmac
import json
import logging
from typing import Any

from ..store import Transaction
from .credentials import REGISTRY_BUCKET

logger = logging.getLogger(__name__)


class InvalidTokenError(Exception):
    """Presented token does not match any registered client."""

    def __init__(self, message: str = "Invalid request token") -> None:
        super().__init__(message)


def _deep_equal(left: Any, right: Any) -> bool:
    """Compare decoded JSON values recursively.

    Numbers compare by value (1 == 1.0), booleans never equal numbers.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right):
        return False
    if isinstance(left, dict):
        return left.keys() == right.keys() and all(_deep_equal(left[k], right[k]) for k in left)
    if isinstance(left, list):
        return len(left) == len(right) and all(_deep_equal(a, b) for a, b in zip(left, right))
    return left == right


def json_equal(a: bytes | str, b: bytes | str) -> bool:
    """Check two JSON documents for structural equality.

    Key order and whitespace are ignored.

    Raises:
        ValueError: If either document is not valid JSON
    """
    try:
        left = json.loads(a)
    except json.JSONDecodeError as e:
        raise ValueError(f"Error decoding JSON A during comparison: {e}") from e
    try:
        right = json.loads(b)
    except json.JSONDecodeError as e:
        raise ValueError(f"Error decoding JSON B during comparison: {e}") from e
    return _deep_equal(left, right)


class Authenticator:
    """Checks presented tokens and credentials against the registry.

    Attributes:
        bucket_name: Name of the registry bucket
    """

    def __init__(self, bucket_name: str = REGISTRY_BUCKET) -> None:
        self.bucket_name = bucket_name

    def verify(self, tx: Transaction, presented_token: str) -> bool:
        """Check a base64 token against every stored token.

        Args:
            tx: Open transaction (read or write)
            presented_token: Token as sent by the client

        Returns:
            True if any registered client holds this token
        """
        if not presented_token or not tx.has_bucket(self.bucket_name):
            return False

        presented = presented_token.encode("utf-8")
        for _key, token in tx.bucket(self.bucket_name).items():
            if hmac.compare_digest(base64.b64encode(token), presented):
                return True
        return False

    def require(self, tx: Transaction, presented_token: str) -> None:
        """Like verify(), but raise instead of returning False.

        Raising inside a write scope rolls the whole transaction back.

        Raises:
            InvalidTokenError: If the token is not registered
        """
        if not self.verify(tx, presented_token):
            raise InvalidTokenError()

    def find_token_for(self, tx: Transaction, raw_credential: bytes | str) -> bytes | None:
        """Find the token registered for a credential.

        Args:
            tx: Open transaction
            raw_credential: Credential JSON exactly as received

        Returns:
            The stored token, or None when no registered credential is
            structurally equal to raw_credential
        """
        if not tx.has_bucket(self.bucket_name):
            logger.warning("Registry bucket missing", extra={"bucket": self.bucket_name})
            return None

        for key, token in tx.bucket(self.bucket_name).items():
            if json_equal(key, raw_credential):
                return token
        return None
