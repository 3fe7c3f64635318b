"""
Boltgun Client for Python SDK.

This module provides the client interface to a Boltgun server:
- authenticate(): exchange username/password for a token
- put()/get()/delete(): bucket operations using that token

Example:
    >>> async with BoltgunClient("http://localhost:8080") as client:
    ...     await client.authenticate("alice", "secret")
    ...     await client.put("fruit", "apple", "red")
    ...     await client.get("fruit", "apple")
    'red'

Invariants:
    - Every operation sends the token; the server keeps no session
    - Server error messages are mapped to typed exceptions
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from .errors import (
    AuthenticationError,
    BucketNotFoundError,
    ConnectionError,
    KeyNotFoundError,
    RequestError,
)

logger = logging.getLogger(__name__)

# Server error messages
_BUCKET_MISSING = "Bucket doesn't exist!"
_KEY_MISSING = "Error retrieving requested key!"


class BoltgunClient:
    """Async HTTP client for a Boltgun server.

    Attributes:
        base_url: Server URL, e.g. http://localhost:8080
        token: Base64 token used for bucket operations
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Server URL
            token: Previously issued token, if any
            timeout: Total timeout per request in seconds
            session: Existing aiohttp session to reuse (not closed by close())
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def connect(self) -> None:
        """Create the HTTP session if needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> BoltgunClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _post(self, path: str, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        await self.connect()
        url = f"{self.base_url}{path}"
        try:
            async with self._session.post(url, json=payload) as response:
                status = response.status
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    if status >= 400:
                        # Rejected before reaching a handler, e.g. body too large
                        return status, {"error": response.reason or f"HTTP {status}"}
                    raise ConnectionError(f"Invalid response from {url}: {e}", self.base_url) from e
                return status, body if isinstance(body, dict) else {}
        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(f"Failed to connect to {self.base_url}: {e}", self.base_url) from e
        except asyncio.TimeoutError as e:
            raise ConnectionError(
                f"Request to {url} timed out after {self.timeout}s", self.base_url
            ) from e

    def _require_token(self) -> str:
        if not self.token:
            raise AuthenticationError("Not authenticated; call authenticate() first")
        return self.token

    def _raise_for(self, status: int, body: dict[str, Any], bucket: str = "", key: str = "") -> None:
        message = body.get("error") or f"Request failed with status {status}"
        if status == 401:
            raise AuthenticationError(message, status=status)
        if message == _BUCKET_MISSING:
            raise BucketNotFoundError(bucket, status=status)
        if message == _KEY_MISSING:
            raise KeyNotFoundError(bucket, key, status=status)
        raise RequestError(message, status=status)

    async def authenticate(self, username: str, password: str) -> str:
        """Obtain the token for a registered credential.

        The token is kept on the client for later operations.

        Returns:
            Base64 token

        Raises:
            AuthenticationError: If the credential is not registered
        """
        status, body = await self._post(
            "/authenticate", {"username": username, "password": password}
        )
        if status != 200 or "token" not in body:
            self._raise_for(status, body)
        self.token = body["token"]
        logger.debug("Authenticated", extra={"username": username})
        return self.token

    async def put(self, bucket: str, key: str, value: str) -> None:
        """Store value under key, creating the bucket if needed."""
        status, body = await self._post(
            "/update",
            {"bucket": bucket, "key": key, "value": value, "token": self._require_token()},
        )
        if status != 200:
            self._raise_for(status, body, bucket, key)

    async def get(self, bucket: str, key: str) -> str:
        """Return the value stored under key.

        Raises:
            BucketNotFoundError: If the bucket was never created
            KeyNotFoundError: If the key is absent
        """
        status, body = await self._post(
            "/retrieve",
            {"bucket": bucket, "key": key, "token": self._require_token()},
        )
        if status != 200 or "value" not in body:
            self._raise_for(status, body, bucket, key)
        return body["value"]

    async def delete(self, bucket: str, key: str) -> None:
        """Delete key from bucket. Deleting an absent key succeeds.

        Raises:
            BucketNotFoundError: If the bucket was never created
        """
        status, body = await self._post(
            "/remove",
            {"bucket": bucket, "key": key, "token": self._require_token()},
        )
        if status != 200:
            self._raise_for(status, body, bucket, key)
