"""
Boltgun Test Suite.

This package contains:
- unit/: Unit tests (temporary SQLite files, no network)
- integration/: Integration tests (aiohttp test server, SDK client)
"""
