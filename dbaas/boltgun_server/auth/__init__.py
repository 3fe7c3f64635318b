"""
Authentication module for Boltgun.

This module handles client identity:
- Credential loading from the bootstrap file
- Token provisioning into the registry bucket
- Token verification and credential-to-token lookup

Invariants:
    - Tokens are 32 random bytes, base64 on the wire
    - Registry entries are only written at startup
    - Authentication is re-checked on every request
"""

from .authenticator import Authenticator, InvalidTokenError, json_equal
from .credentials import (
    REGISTRY_BUCKET,
    TOKEN_BYTES_LENGTH,
    Credential,
    CredentialFileError,
    CredentialRegistry,
    ProvisioningError,
    generate_token,
    load_credentials,
)

__all__ = [
    "Authenticator",
    "Credential",
    "CredentialFileError",
    "CredentialRegistry",
    "InvalidTokenError",
    "ProvisioningError",
    "REGISTRY_BUCKET",
    "TOKEN_BYTES_LENGTH",
    "generate_token",
    "json_equal",
    "load_credentials",
]
