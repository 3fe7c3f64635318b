"""
Credential registry for Boltgun.

Clients are provisioned from a static bootstrap file holding a JSON array of
{"username": ..., "password": ...} objects. Each distinct credential gets an
opaque 32-byte random token, stored in the registry bucket under the
credential's canonical JSON form:

    authed_clients:
        {"password":"...","username":"..."} -> <32 random bytes>

Invariants:
    - A credential keeps its token for the life of the store file
    - Provisioning never overwrites an existing token
    - The credential set is fixed for the process lifetime
    - Passwords and tokens are never logged

How to change safely:
    - Changing canonical key serialization orphans every issued token
    - New credential fields must be added to the canonical form deliberately
"""

from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..store import BucketStore, Transaction

logger = logging.getLogger(__name__)

REGISTRY_BUCKET = "authed_clients"
TOKEN_BYTES_LENGTH = 32


class CredentialFileError(Exception):
    """Bootstrap credentials file is missing or malformed."""

    pass


class ProvisioningError(Exception):
    """Token provisioning could not complete."""

    pass


@dataclass(frozen=True)
class Credential:
    """A registered username/password pair.

    Attributes:
        username: Client username
        password: Client password (excluded from repr)
    """

    username: str
    password: str = field(repr=False)

    @classmethod
    def from_dict(cls, data: Any) -> Credential:
        """Build a credential from a decoded JSON object.

        Raises:
            ValueError: If data is not an object with string username/password
        """
        if not isinstance(data, dict):
            raise ValueError(f"Credential must be an object, got {type(data).__name__}")
        username = data.get("username")
        password = data.get("password")
        if not isinstance(username, str) or not isinstance(password, str):
            raise ValueError("Credential requires string 'username' and 'password'")
        return cls(username=username, password=password)

    def to_dict(self) -> dict[str, str]:
        return {"username": self.username, "password": self.password}

    def to_key(self) -> bytes:
        """Canonical serialized form used as the registry key."""
        return json.dumps(
            self.to_dict(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")


def load_credentials(path: str | Path) -> list[Credential]:
    """Load the bootstrap credential list.

    Args:
        path: JSON file holding an array of credential objects

    Returns:
        Credentials in file order

    Raises:
        CredentialFileError: If the file cannot be read or parsed
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CredentialFileError(f"Could not read credentials file {path}: {e}") from e

    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CredentialFileError(f"Invalid JSON in credentials file {path}: {e}") from e

    if not isinstance(doc, list):
        raise CredentialFileError(f"Credentials file {path} must contain a JSON array")

    credentials = []
    for index, item in enumerate(doc):
        try:
            credentials.append(Credential.from_dict(item))
        except ValueError as e:
            raise CredentialFileError(f"Invalid credential at index {index} in {path}: {e}") from e

    logger.info(
        "Loaded credentials file",
        extra={"path": str(path), "credentials": len(credentials)},
    )
    return credentials


def generate_token() -> bytes:
    """Generate a fresh random client token."""
    return secrets.token_bytes(TOKEN_BYTES_LENGTH)


class CredentialRegistry:
    """Assigns and persists one token per registered credential.

    Attributes:
        store: BucketStore holding the registry bucket
        bucket_name: Name of the registry bucket

    Example:
        >>> registry = CredentialRegistry(store)
        >>> registry.provision(load_credentials("clients.json"))
        2
    """

    def __init__(
        self,
        store: BucketStore,
        bucket_name: str = REGISTRY_BUCKET,
        token_factory: Callable[[], bytes] = generate_token,
    ) -> None:
        self.store = store
        self.bucket_name = bucket_name
        self._token_factory = token_factory

    def provision(self, credentials: Iterable[Credential]) -> int:
        """Make sure every credential has a token.

        Runs in one write transaction: either every missing token is stored
        or none is.

        Args:
            credentials: Credentials to provision

        Returns:
            Number of tokens newly issued

        Raises:
            ProvisioningError: If a key cannot be serialized or a token
                cannot be generated
        """
        credentials = list(credentials)

        def _provision(tx: Transaction) -> int:
            bucket = tx.create_bucket_if_not_exists(self.bucket_name)
            issued = 0
            for credential in credentials:
                try:
                    key = credential.to_key()
                except (TypeError, ValueError) as e:
                    raise ProvisioningError(f"Unable to serialize credential: {e}") from e

                if bucket.get(key) is not None:
                    continue

                try:
                    token = self._token_factory()
                except Exception as e:
                    raise ProvisioningError(f"Error generating token: {e}") from e
                if len(token) != TOKEN_BYTES_LENGTH:
                    raise ProvisioningError(
                        f"Generated token has {len(token)} bytes, expected {TOKEN_BYTES_LENGTH}"
                    )

                bucket.put(key, token)
                issued += 1
            return issued

        issued = self.store.update(_provision)
        logger.info(
            "Provisioned client tokens",
            extra={"credentials": len(credentials), "issued": issued},
        )
        return issued

    def token_for(self, credential: Credential) -> bytes | None:
        """Return the stored token for a credential, if provisioned."""

        def _lookup(tx: Transaction) -> bytes | None:
            if not tx.has_bucket(self.bucket_name):
                return None
            return tx.bucket(self.bucket_name).get(credential.to_key())

        return self.store.view(_lookup)
