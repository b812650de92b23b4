"""
Global state test suite.

This package contains:
- unit/: Unit tests (no network)
- integration/: Integration tests (aiohttp test server, in-memory engine)
"""
