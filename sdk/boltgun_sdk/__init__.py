"""
Boltgun Python SDK - Client library for the Boltgun bucket service.

Example:
    >>> from boltgun_sdk import BoltgunClient
    >>>
    >>> async with BoltgunClient("http://localhost:8080") as client:
    ...     await client.authenticate("alice", "secret")
    ...     await client.put("fruit", "apple", "red")

Version: 0.1.0
"""

__version__ = "0.1.0"

from .client import BoltgunClient
from .errors import (
    AuthenticationError,
    BoltgunError,
    BucketNotFoundError,
    ConnectionError,
    KeyNotFoundError,
    RequestError,
)

__all__ = [
    "AuthenticationError",
    "BoltgunClient",
    "BoltgunError",
    "BucketNotFoundError",
    "ConnectionError",
    "KeyNotFoundError",
    "RequestError",
]
