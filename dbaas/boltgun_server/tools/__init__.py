"""
CLI tools for Boltgun administration.

This module provides command-line tools for:
- verify_backup: Check that a backup file is a usable store snapshot

Invariants:
    - Tools work offline (no running server required)
    - Tools never modify the files they inspect
"""

from .verify_backup import BackupVerifier, VerifyResult

__all__ = ["BackupVerifier", "VerifyResult"]
